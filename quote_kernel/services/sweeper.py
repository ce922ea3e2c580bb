"""
IdempotencySweeper -- in-process purge of expired idempotency records.

Contract:
    Calls ``IdempotencyService.cleanup_expired`` on a fixed interval from a
    daemon thread.  ``tick()`` runs one sweep synchronously.

Invariants enforced:
    - A failed sweep is logged and the loop keeps going.
    - ``stop()`` interrupts the wait immediately and joins the thread.
"""

from __future__ import annotations

import threading

from quote_kernel.logging_config import get_logger
from quote_kernel.services.idempotency_service import IdempotencyService

logger = get_logger("services.sweeper")


class IdempotencySweeper:
    """Polling sweeper for expired idempotency records.

    Non-goals:
        - NOT a distributed job (every process may run one; deletes are
          idempotent).
    """

    def __init__(
        self,
        idempotency: IdempotencyService,
        interval_seconds: float = 3600.0,
    ):
        self._idempotency = idempotency
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._sweeps = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def sweeps(self) -> int:
        return self._sweeps

    def tick(self) -> int:
        """Run one sweep; returns the number of records removed."""
        try:
            removed = self._idempotency.cleanup_expired()
        except Exception:
            logger.exception("idempotency_sweep_failed")
            return 0
        self._sweeps += 1
        return removed

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="idempotency-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.info("sweeper_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait up to ``timeout`` seconds for the thread."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("sweeper_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
