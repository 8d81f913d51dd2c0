import threading
import time
import unittest

from app.errors import NetworkError, ProtocolError
from app.schemas.price import PricedSnapshot
from app.services.price_refresher import PriceRefreshWorker


def _snapshot(bid: float = 1.0) -> PricedSnapshot:
    return PricedSnapshot(symbol="BTCUSDT", bid_price=bid, ask_price=bid + 1, mid_price=bid + 0.5, timestamp=1)


class ScriptedPriceService:
    def __init__(self, outcomes: list) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0
        self._lock = threading.Lock()

    def refresh(self) -> PricedSnapshot:
        with self._lock:
            self.calls += 1
            item = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(item, Exception):
            raise item
        return item


class BlockingPriceService:
    def __init__(self) -> None:
        self.release = threading.Event()
        self.calls = 0
        self._lock = threading.Lock()

    def refresh(self) -> PricedSnapshot:
        with self._lock:
            self.calls += 1
        self.release.wait(timeout=2.0)
        return _snapshot()


class PriceRefreshWorkerTest(unittest.TestCase):
    def _wait_until(self, predicate, timeout: float = 1.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.005)
        return predicate()

    def test_run_once_swallows_and_counts_failures(self):
        service = ScriptedPriceService([NetworkError("timeout"), ProtocolError("Empty response from Binance API")])
        worker = PriceRefreshWorker(price_service=service, interval_sec=60)

        self.assertIsNone(worker.run_once())
        self.assertIsNone(worker.run_once())

        metrics = worker.metrics()
        self.assertEqual(metrics["runs"], 2)
        self.assertEqual(metrics["failed"], 2)
        self.assertEqual(metrics["succeeded"], 0)
        self.assertEqual(metrics["last_error_kind"], "protocol")
        self.assertEqual(metrics["last_error"], "Empty response from Binance API")

    def test_run_once_swallows_unexpected_errors(self):
        service = ScriptedPriceService([RuntimeError("boom")])
        worker = PriceRefreshWorker(price_service=service, interval_sec=60)

        self.assertIsNone(worker.run_once())
        self.assertEqual(worker.metrics()["last_error_kind"], "RuntimeError")

    def test_trigger_propagates_errors(self):
        service = ScriptedPriceService([NetworkError("timeout")])
        worker = PriceRefreshWorker(price_service=service, interval_sec=60)

        with self.assertRaises(NetworkError):
            worker.trigger()
        self.assertEqual(worker.metrics()["failed"], 1)

    def test_trigger_returns_refreshed_snapshot(self):
        snapshot = _snapshot(42.0)
        worker = PriceRefreshWorker(price_service=ScriptedPriceService([snapshot]), interval_sec=60)

        self.assertIs(worker.trigger(), snapshot)
        self.assertEqual(worker.metrics()["succeeded"], 1)

    def test_start_refreshes_immediately_then_on_interval(self):
        service = ScriptedPriceService([_snapshot()])
        worker = PriceRefreshWorker(price_service=service, interval_sec=0.2)

        worker.start()
        try:
            self.assertTrue(self._wait_until(lambda: service.calls >= 1, timeout=0.15))
            self.assertTrue(self._wait_until(lambda: service.calls >= 3, timeout=1.0))
        finally:
            worker.stop()

        self.assertFalse(worker.is_running)

    def test_failed_ticks_do_not_stop_the_schedule(self):
        service = ScriptedPriceService([NetworkError("timeout")])
        worker = PriceRefreshWorker(price_service=service, interval_sec=0.02)

        worker.start()
        try:
            self.assertTrue(self._wait_until(lambda: worker.metrics()["failed"] >= 3))
        finally:
            worker.stop()

    def test_slow_refresh_does_not_delay_next_tick(self):
        service = BlockingPriceService()
        worker = PriceRefreshWorker(price_service=service, interval_sec=0.02)

        worker.start()
        try:
            # every refresh is still blocked, yet new ticks keep firing
            self.assertTrue(self._wait_until(lambda: service.calls >= 3))
        finally:
            worker.stop()
            service.release.set()

    def test_stop_returns_without_waiting_for_in_flight_refresh(self):
        service = BlockingPriceService()
        worker = PriceRefreshWorker(price_service=service, interval_sec=60)

        worker.start()
        self.assertTrue(self._wait_until(lambda: service.calls >= 1))
        started = time.monotonic()
        worker.stop()
        elapsed = time.monotonic() - started
        service.release.set()

        self.assertLess(elapsed, 1.0)
        self.assertFalse(worker.is_running)

    def test_start_is_idempotent(self):
        service = ScriptedPriceService([_snapshot()])
        worker = PriceRefreshWorker(price_service=service, interval_sec=60)

        worker.start()
        first_thread = worker._thread
        worker.start()
        try:
            self.assertIs(worker._thread, first_thread)
        finally:
            worker.stop()


if __name__ == "__main__":
    unittest.main()
