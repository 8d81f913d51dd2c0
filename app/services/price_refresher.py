from __future__ import annotations

import threading
import time

from app.errors import RefreshError
from app.schemas.price import PricedSnapshot


class PriceRefreshWorker:
    """Fixed-interval driver for PriceService.refresh().

    Every tick runs on its own short-lived thread, so a hung fetch never pushes back
    the next tick. Failures are logged and counted, never raised.
    """

    def __init__(self, *, price_service, interval_sec: float = 10.0) -> None:
        self.price_service = price_service
        self.interval_sec = interval_sec
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._metrics_lock = threading.Lock()
        self._metrics = {
            "runs": 0,
            "succeeded": 0,
            "failed": 0,
        }
        self._last_error: str | None = None
        self._last_error_kind: str | None = None

    def _record(self, *, error: Exception | None) -> None:
        with self._metrics_lock:
            self._metrics["runs"] += 1
            if error is None:
                self._metrics["succeeded"] += 1
                return
            self._metrics["failed"] += 1
            self._last_error = str(error)
            self._last_error_kind = getattr(error, "kind", type(error).__name__)

    def run_once(self, *, source: str = "tick") -> PricedSnapshot | None:
        try:
            snapshot = self.price_service.refresh()
        except RefreshError as exc:
            self._record(error=exc)
            print(f"[REFRESH][{source}_failed] kind={exc.kind} error={exc}", flush=True)
            return None
        except Exception as exc:
            self._record(error=exc)
            print(f"[REFRESH][{source}_failed] kind=unexpected error={exc!r}", flush=True)
            return None

        self._record(error=None)
        print(
            f"[REFRESH][{source}_ok] symbol={snapshot.symbol} bid={snapshot.bid_price} "
            f"ask={snapshot.ask_price} ts={snapshot.timestamp}",
            flush=True,
        )
        return snapshot

    def trigger(self) -> PricedSnapshot:
        try:
            snapshot = self.price_service.refresh()
        except Exception as exc:
            self._record(error=exc)
            raise
        self._record(error=None)
        return snapshot

    def _fire(self, source: str) -> None:
        threading.Thread(
            target=self.run_once,
            kwargs={"source": source},
            daemon=True,
            name=f"price-refresh-{source}",
        ).start()

    def _loop(self) -> None:
        self._fire("initial")
        started = time.monotonic()
        ticks = 0
        while True:
            ticks += 1
            wait_sec = max(started + ticks * self.interval_sec - time.monotonic(), 0.0)
            if self._stop_event.wait(wait_sec):
                break
            self._fire("tick")

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="price-refresh-worker")
        self._thread.start()
        print(f"[REFRESH][worker_start] interval_sec={self.interval_sec}", flush=True)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        print("[REFRESH][worker_stop]", flush=True)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def metrics(self) -> dict:
        with self._metrics_lock:
            return {
                **self._metrics,
                "running": self.is_running,
                "interval_sec": self.interval_sec,
                "last_error": self._last_error,
                "last_error_kind": self._last_error_kind,
            }
