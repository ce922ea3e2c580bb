"""
Operational commands for the quote kernel.

Usage:
    python -m quote_kernel.cli init-db [--db-url URL]
    python -m quote_kernel.cli sweep-idempotency [--db-url URL] [--loop]
    python -m quote_kernel.cli idempotency-stats [--db-url URL] [--organization ORG]
    python -m quote_kernel.cli calculate --file quote.json

The database URL defaults to the DATABASE_URL environment variable.  The
engine configuration is read from --config, then QUOTE_KERNEL_CONFIG, then
the packaged defaults.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path

DEFAULT_DB_URL = "sqlite:///quote_kernel.db"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quote_kernel",
        description="Quote kernel maintenance commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Engine configuration YAML (default: QUOTE_KERNEL_CONFIG or packaged defaults).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level.")
    sub = parser.add_subparsers(dest="command", required=True)

    def _with_db(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument(
            "--db-url",
            default=os.environ.get("DATABASE_URL", DEFAULT_DB_URL),
            help="Database URL (default: DATABASE_URL env or %(default)r).",
        )
        return p

    _with_db(sub.add_parser("init-db", help="Create all tables."))

    sweep = _with_db(sub.add_parser("sweep-idempotency", help="Delete expired idempotency records."))
    sweep.add_argument(
        "--loop",
        action="store_true",
        help="Keep sweeping on the configured interval until interrupted.",
    )

    stats = _with_db(sub.add_parser("idempotency-stats", help="Print idempotency record counts."))
    stats.add_argument("--organization", default=None, help="Limit counts to one organization.")

    calc = sub.add_parser("calculate", help="Price a quote payload without persisting it.")
    calc.add_argument("--file", type=Path, required=True, help="JSON file with line_items etc.")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    # Lazy imports so argument errors fail fast
    import yaml

    from quote_kernel.config import load_config
    from quote_kernel.exceptions import QuoteKernelError
    from quote_kernel.logging_config import configure_logging
    from quote_kernel.utils.hashing import render_json

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    if args.command == "calculate":
        from quote_kernel.services.quote_service import QuoteService

        try:
            payload = json.loads(args.file.read_text())
        except (OSError, ValueError) as e:
            print(f"ERROR: Cannot read {args.file}: {e}", file=sys.stderr)
            return 1
        # The preview never opens a session.
        service = QuoteService(session_factory=None, config=config)
        try:
            preview = service.calculate_quote(payload)
        except QuoteKernelError as e:
            print(f"ERROR: {e.code}: {e}", file=sys.stderr)
            return 1
        print(render_json(preview.to_dict()))
        return 0

    from quote_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
    from quote_kernel.services.idempotency_service import IdempotencyService

    init_engine_from_url(args.db_url)

    if args.command == "init-db":
        create_tables()
        print(f"Tables created at {args.db_url}")
        return 0

    idempotency = IdempotencyService(get_session_factory(), config.idempotency, retry=config.retry)

    if args.command == "idempotency-stats":
        tenant = None
        if args.organization:
            from quote_kernel.domain.tenancy import TenantContext

            tenant = TenantContext(organization_id=args.organization, user_id="cli")
        print(render_json(idempotency.get_stats(tenant).to_dict()))
        return 0

    if args.command == "sweep-idempotency":
        if not args.loop:
            removed = idempotency.cleanup_expired()
            print(f"Removed {removed} expired idempotency record(s)")
            return 0

        from quote_kernel.services.sweeper import IdempotencySweeper

        sweeper = IdempotencySweeper(idempotency, config.idempotency.sweep_interval_seconds)
        sweeper.start()
        try:
            while sweeper.is_running:
                time.sleep(1.0)
        except KeyboardInterrupt:
            pass
        finally:
            sweeper.stop()
        print(f"Sweeper stopped after {sweeper.sweeps} sweep(s)")
        return 0

    return 2


if __name__ == "__main__":
    sys.exit(main())
