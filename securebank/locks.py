"""
Per-account locking

Every money movement holds the locks of all accounts it touches for the
whole read-check-write sequence. Locks are always taken in sorted id order
so two transfers over the same pair of accounts cannot deadlock, and they
are taken before a storage transaction is opened, never inside one.
"""

import threading
from contextlib import contextmanager
from typing import Dict, List

from .errors import Busy
from .logging_config import get_logger


logger = get_logger("securebank.locks")


class AccountLocks:
    """Registry of re-entrant locks keyed by account id"""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[account_id] = lock
            return lock

    @contextmanager
    def acquire(self, *account_ids: str, timeout: float = None):
        """
        Hold the locks for ``account_ids`` for the duration of the block

        Raises:
            Busy: If any lock cannot be obtained within the timeout. Locks
                already taken are released first.
        """
        wait = self.timeout if timeout is None else timeout
        held: List[threading.RLock] = []
        try:
            for account_id in sorted(set(account_ids)):
                lock = self._lock_for(account_id)
                if not lock.acquire(timeout=wait):
                    logger.warning(f"Timed out waiting for lock on account {account_id}")
                    raise Busy()
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                lock.release()
