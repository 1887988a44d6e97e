"""
Background maintenance

Periodically expires stale sessions, fails pending transfers that have
waited past the settlement timeout and drops old rate-limit windows.
"""

import threading
from typing import Dict, Optional

from .logging_config import get_logger, log_action


logger = get_logger("securebank.maintenance")


class MaintenanceWorker:
    """Runs ``BankingSystem.run_maintenance`` on a daemon thread"""

    def __init__(self, system, interval_seconds: float):
        self.system = system
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self.is_running():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="securebank-maintenance")
        self._thread.daemon = True
        self._thread.start()
        logger.info(f"Maintenance worker started, interval {self.interval_seconds}s")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Maintenance worker stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Dict[str, int]:
        """One sweep; a failed sweep is logged and retried on the next tick"""
        try:
            result = self.system.run_maintenance()
        except Exception:
            logger.exception("Maintenance run failed")
            return {}
        if any(result.values()):
            log_action(logger, "info", "Maintenance run completed",
                       action="maintenance", resource="system", extra=result)
        return result

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()
