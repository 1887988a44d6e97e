"""
Tests for the background maintenance worker
"""

import logging
import threading
import time
from decimal import Decimal

from securebank.maintenance import MaintenanceWorker
from securebank.transactions import TransactionStatus

from helpers import FakeClock, build_system, create_customer, external_transfer


class TestMaintenanceWorker:

    def setup_method(self):
        self.clock = FakeClock()
        self.system = build_system(self.clock)

    def test_run_once_expires_stale_transfers(self):
        alice = create_customer(self.system, balance="5000")
        receipt = self.system.transaction_processor.initiate_transfer(
            alice, external_transfer("100")
        )
        self.clock.advance(hours=73)

        result = MaintenanceWorker(self.system, 60).run_once()

        assert result['transfers_expired'] == 1
        transaction = self.system.transaction_processor.get_transaction(receipt.transaction_id)
        assert transaction.status == TransactionStatus.FAILED
        assert transaction.failure_reason == "Settlement timed out"
        assert self.system.ledger.get_balance(alice.id) == Decimal("5000.00")

    def test_failed_run_is_logged_and_survived(self, monkeypatch, caplog):
        def broken():
            raise RuntimeError("storage offline")

        monkeypatch.setattr(self.system, "run_maintenance", broken)
        with caplog.at_level(logging.ERROR, logger="securebank.maintenance"):
            assert MaintenanceWorker(self.system, 60).run_once() == {}
        assert any("Maintenance run failed" in r.getMessage() for r in caplog.records)

    def test_runs_on_interval_until_stopped(self, monkeypatch):
        runs = []
        twice = threading.Event()

        def counting_run():
            runs.append(1)
            if len(runs) >= 2:
                twice.set()
            return {'sessions_expired': 0, 'transfers_expired': 0,
                    'rate_limit_windows_purged': 0}

        monkeypatch.setattr(self.system, "run_maintenance", counting_run)
        worker = MaintenanceWorker(self.system, 0.01)
        worker.start()
        try:
            assert worker.is_running()
            assert twice.wait(timeout=5)
        finally:
            worker.stop()

        assert not worker.is_running()
        stopped_at = len(runs)
        time.sleep(0.05)
        assert len(runs) == stopped_at

    def test_start_is_idempotent(self):
        worker = MaintenanceWorker(self.system, 60)
        worker.start()
        first = worker._thread
        worker.start()
        try:
            assert worker._thread is first
        finally:
            worker.stop()
