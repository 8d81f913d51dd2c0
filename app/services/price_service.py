from __future__ import annotations

import threading
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Callable

from app.errors import InvalidDataError, RefreshError
from app.schemas.price import BookTicker, PricedSnapshot

PRICE_QUANTUM = Decimal("0.00000001")
# working precision for the exact price x rate product and the 8-decimal quantize
DECIMAL_PRECISION = 64
FRESH_WINDOW_MS = 15_000


def _now_ms() -> int:
    return int(time.time() * 1000)


def _parse_price(value: str, *, field_name: str) -> Decimal:
    try:
        price = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidDataError(f"Invalid price data received from Binance: {field_name}={value!r}") from exc
    if not price.is_finite() or price < 0:
        raise InvalidDataError(f"Invalid price data received from Binance: {field_name}={value!r}")
    return price


def _round_price(value: Decimal) -> float:
    # half away from zero on the exact decimal, not on the binary float
    return float(value.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP))


def apply_commission(ticker: BookTicker, commission: float, captured_at_ms: int) -> PricedSnapshot:
    """Widen the raw book by ``commission`` on both sides and round to 8 decimals.

    The bid is pushed down by ``1 - commission`` and the ask up by ``1 + commission``.
    The mid is taken from the unrounded adjusted prices, then each of the three
    values is rounded on its own.
    """
    bid_raw = _parse_price(ticker.bidPrice, field_name="bidPrice")
    ask_raw = _parse_price(ticker.askPrice, field_name="askPrice")
    rate = Decimal(str(commission))

    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        try:
            bid = bid_raw * (1 - rate)
            ask = ask_raw * (1 + rate)
            mid = (bid + ask) / 2
            prices = (_round_price(bid), _round_price(ask), _round_price(mid))
        except InvalidOperation as exc:
            raise InvalidDataError(
                f"Price out of range from Binance: bidPrice={ticker.bidPrice!r} askPrice={ticker.askPrice!r}"
            ) from exc

    return PricedSnapshot(
        symbol=ticker.symbol,
        bid_price=prices[0],
        ask_price=prices[1],
        mid_price=prices[2],
        timestamp=captured_at_ms,
    )


class PriceService:
    """Owns the single commission-adjusted snapshot; refreshed from the Binance client."""

    def __init__(
        self,
        *,
        client,
        commission: float,
        clock_ms: Callable[[], int] | None = None,
        fresh_window_ms: int = FRESH_WINDOW_MS,
    ) -> None:
        self.client = client
        self._commission = commission
        self._clock_ms = clock_ms or _now_ms
        self.fresh_window_ms = fresh_window_ms
        self._lock = threading.Lock()
        self._current: PricedSnapshot | None = None

    @property
    def commission(self) -> float:
        return self._commission

    def _publish(self, snapshot: PricedSnapshot) -> None:
        with self._lock:
            self._current = snapshot

    def refresh(self) -> PricedSnapshot:
        try:
            ticker = self.client.fetch_quote()
            snapshot = apply_commission(ticker, self._commission, captured_at_ms=0)
        except RefreshError as exc:
            print(f"[PRICE][refresh_error] kind={exc.kind} error={exc}", flush=True)
            raise

        # stamped once the transform has completed
        snapshot = snapshot.model_copy(update={"timestamp": self._clock_ms()})
        self._publish(snapshot)
        return snapshot

    def current(self) -> PricedSnapshot | None:
        with self._lock:
            return self._current

    def last_update_time(self) -> int:
        current = self.current()
        return current.timestamp if current is not None else 0

    def is_fresh(self, now_ms: int | None = None) -> bool:
        current = self.current()
        if current is None:
            return False
        ref = self._clock_ms() if now_ms is None else now_ms
        return (ref - current.timestamp) < self.fresh_window_ms
