# Overview: In-process background loop running the supplier inactivity sweep.

from __future__ import annotations

import threading

from flask import Flask

from .extensions import db


class SupplierSweepScheduler:
    """
    Runs supplier_service.deactivate_old_suppliers once at start, then every
    interval_seconds, on a daemon thread.

    - tick() is public so tests and the CLI can run one sweep synchronously.
    - A failed tick is logged; the next tick starts from scratch.
    - stop() wakes the loop and waits for it to exit.
    """

    def __init__(self, app: Flask, interval_seconds: int = 24 * 60 * 60):
        self.app = app
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> int | None:
        """Run one sweep. Returns the count deactivated, or None if it failed."""
        from .services import supplier_service

        with self.app.app_context():
            try:
                return supplier_service.deactivate_old_suppliers()
            except Exception:
                self.app.logger.exception("Supplier deactivation sweep failed")
                return None
            finally:
                db.session.remove()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="supplier-sweep",
            daemon=True,
        )
        self._thread.start()
        self.app.logger.info("Supplier sweep scheduled every %s seconds", self.interval_seconds)

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self.interval_seconds)
