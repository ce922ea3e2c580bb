"""
Engine Configuration (``quote_kernel.config``).

Responsibility
--------------
Parses a YAML document into the frozen ``EngineConfig`` consumed by every
service.  Policy tables (status transitions, locked statuses, operation
permissions) live here rather than as module-level globals so that tests
and deployments can substitute alternate policies at construction time.

Architecture position
---------------------
**Config layer** -- no dependency on models or services.  Domain objects
(``StatusMachine``, ``LockPolicy``) are built from these dataclasses.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a typo never silently
  falls back to a default.
* Every parsed object is a frozen dataclass.
* Transition targets must be known statuses.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong value type or unknown key  -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

CONFIG_ENV_VAR = "QUOTE_KERNEL_CONFIG"
DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

QUOTE_STATUSES = (
    "draft",
    "pending",
    "approved",
    "sent",
    "accepted",
    "rejected",
    "cancelled",
)


def _default_transitions() -> dict[str, frozenset[str]]:
    return {
        "draft": frozenset({"pending", "rejected", "cancelled"}),
        "pending": frozenset({"approved", "rejected", "cancelled"}),
        "approved": frozenset({"sent", "rejected", "cancelled"}),
        "sent": frozenset({"accepted", "rejected", "cancelled"}),
        "accepted": frozenset(),
        "rejected": frozenset(),
        "cancelled": frozenset(),
    }


def _default_operation_permissions() -> dict[str, str]:
    return {
        "create_quote": "quotes.create",
        "update_quote": "quotes.update",
        "transition_status": "quotes.update",
        "delete_quote": "quotes.delete",
        "get_quote": "quotes.view",
        "get_quote_versions": "quotes.view",
    }


@dataclass(frozen=True)
class PricingConfig:
    default_decimal_places: int = 2
    currency_decimal_places: dict[str, int] = field(default_factory=dict)
    tax_exempt_types: frozenset[str] = frozenset({"travel", "mileage", "expenses"})


@dataclass(frozen=True)
class StatusConfig:
    transitions: dict[str, frozenset[str]] = field(default_factory=_default_transitions)
    locked_statuses: frozenset[str] = frozenset({"approved", "accepted"})
    allow_same_state_noop: bool = False


@dataclass(frozen=True)
class PermissionConfig:
    force_edit: str = "quotes.force_edit"
    operations: dict[str, str] = field(default_factory=_default_operation_permissions)


# Width of idempotency_records.idempotency_key.
MAX_IDEMPOTENCY_KEY_LENGTH = 255


@dataclass(frozen=True)
class IdempotencyConfig:
    enabled: bool = True
    ttl_hours: float = 24
    max_key_length: int = 128
    sweep_interval_seconds: float = 3600.0


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay_seconds: float = 0.05
    max_delay_seconds: float = 1.0


@dataclass(frozen=True)
class VersioningConfig:
    version_on_material_change: bool = True


@dataclass(frozen=True)
class QuoteNumberConfig:
    prefix: str = "Q"
    padding: int = 4


@dataclass(frozen=True)
class EngineConfig:
    """Complete, immutable engine configuration."""

    pricing: PricingConfig = field(default_factory=PricingConfig)
    status: StatusConfig = field(default_factory=StatusConfig)
    permissions: PermissionConfig = field(default_factory=PermissionConfig)
    idempotency: IdempotencyConfig = field(default_factory=IdempotencyConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    versioning: VersioningConfig = field(default_factory=VersioningConfig)
    quote_numbers: QuoteNumberConfig = field(default_factory=QuoteNumberConfig)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _check_keys(section: str, data: dict[str, Any], cls: type) -> None:
    if not isinstance(data, dict):
        raise ValueError(f"Config section {section!r} must be a mapping")
    allowed = {f.name for f in fields(cls)}
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(
            f"Unknown key(s) in config section {section!r}: {sorted(unknown)}"
        )


def _positive_int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{section}.{key} must be a positive integer, got {value!r}")
    return value


def parse_pricing(data: dict[str, Any]) -> PricingConfig:
    _check_keys("pricing", data, PricingConfig)
    defaults = PricingConfig()
    places = data.get("currency_decimal_places", {}) or {}
    for code, dp in places.items():
        if isinstance(dp, bool) or not isinstance(dp, int) or dp < 0:
            raise ValueError(f"Decimal places for {code} must be >= 0, got {dp!r}")
    default_dp = data.get("default_decimal_places", defaults.default_decimal_places)
    if isinstance(default_dp, bool) or not isinstance(default_dp, int) or default_dp < 0:
        raise ValueError(f"pricing.default_decimal_places must be >= 0, got {default_dp!r}")
    return PricingConfig(
        default_decimal_places=default_dp,
        currency_decimal_places={str(k).upper(): v for k, v in places.items()},
        tax_exempt_types=frozenset(
            data.get("tax_exempt_types", defaults.tax_exempt_types)
        ),
    )


def parse_status(data: dict[str, Any]) -> StatusConfig:
    _check_keys("status", data, StatusConfig)
    defaults = StatusConfig()
    transitions = defaults.transitions
    if "transitions" in data:
        transitions = {}
        for source, targets in (data["transitions"] or {}).items():
            targets = frozenset(targets or ())
            for name in (source, *targets):
                if name not in QUOTE_STATUSES:
                    raise ValueError(f"Unknown quote status in transitions: {name!r}")
            transitions[source] = targets
        for name in QUOTE_STATUSES:
            transitions.setdefault(name, frozenset())
    locked = frozenset(data.get("locked_statuses", defaults.locked_statuses))
    for name in locked:
        if name not in QUOTE_STATUSES:
            raise ValueError(f"Unknown quote status in locked_statuses: {name!r}")
    return StatusConfig(
        transitions=transitions,
        locked_statuses=locked,
        allow_same_state_noop=bool(
            data.get("allow_same_state_noop", defaults.allow_same_state_noop)
        ),
    )


def parse_permissions(data: dict[str, Any]) -> PermissionConfig:
    _check_keys("permissions", data, PermissionConfig)
    defaults = PermissionConfig()
    operations = data.get("operations", defaults.operations)
    return PermissionConfig(
        force_edit=str(data.get("force_edit", defaults.force_edit)),
        operations=dict(operations or {}),
    )


def parse_idempotency(data: dict[str, Any]) -> IdempotencyConfig:
    _check_keys("idempotency", data, IdempotencyConfig)
    defaults = IdempotencyConfig()
    ttl = float(data.get("ttl_hours", defaults.ttl_hours))
    if ttl <= 0:
        raise ValueError(f"idempotency.ttl_hours must be positive, got {ttl}")
    max_key_length = _positive_int(
        "idempotency", "max_key_length",
        data.get("max_key_length", defaults.max_key_length),
    )
    if max_key_length > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValueError(
            f"idempotency.max_key_length must be at most {MAX_IDEMPOTENCY_KEY_LENGTH}, "
            f"got {max_key_length}"
        )
    return IdempotencyConfig(
        enabled=bool(data.get("enabled", defaults.enabled)),
        ttl_hours=ttl,
        max_key_length=max_key_length,
        sweep_interval_seconds=float(
            data.get("sweep_interval_seconds", defaults.sweep_interval_seconds)
        ),
    )


def parse_retry(data: dict[str, Any]) -> RetryConfig:
    _check_keys("retry", data, RetryConfig)
    defaults = RetryConfig()
    return RetryConfig(
        max_attempts=_positive_int(
            "retry", "max_attempts", data.get("max_attempts", defaults.max_attempts)
        ),
        base_delay_seconds=float(data.get("base_delay_seconds", defaults.base_delay_seconds)),
        max_delay_seconds=float(data.get("max_delay_seconds", defaults.max_delay_seconds)),
    )


def parse_versioning(data: dict[str, Any]) -> VersioningConfig:
    _check_keys("versioning", data, VersioningConfig)
    return VersioningConfig(
        version_on_material_change=bool(
            data.get("version_on_material_change", True)
        ),
    )


def parse_quote_numbers(data: dict[str, Any]) -> QuoteNumberConfig:
    _check_keys("quote_numbers", data, QuoteNumberConfig)
    defaults = QuoteNumberConfig()
    return QuoteNumberConfig(
        prefix=str(data.get("prefix", defaults.prefix)),
        padding=_positive_int(
            "quote_numbers", "padding", data.get("padding", defaults.padding)
        ),
    )


_SECTION_PARSERS = {
    "pricing": parse_pricing,
    "status": parse_status,
    "permissions": parse_permissions,
    "idempotency": parse_idempotency,
    "retry": parse_retry,
    "versioning": parse_versioning,
    "quote_numbers": parse_quote_numbers,
}


def parse_config(data: dict[str, Any] | None) -> EngineConfig:
    """
    Build an ``EngineConfig`` from a parsed YAML mapping.

    Missing sections take their dataclass defaults.

    Raises:
        ValueError: on unknown sections, unknown keys, or invalid values.
    """
    data = data or {}
    _check_keys("<root>", data, EngineConfig)
    return EngineConfig(**{
        name: parser(data.get(name) or {})
        for name, parser in _SECTION_PARSERS.items()
    })


def load_config(path: str | Path | None = None) -> EngineConfig:
    """
    Load configuration from ``path``, ``$QUOTE_KERNEL_CONFIG``, or the
    packaged defaults, in that order.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or DEFAULTS_PATH
    with open(path) as f:
        return parse_config(yaml.safe_load(f) or {})
