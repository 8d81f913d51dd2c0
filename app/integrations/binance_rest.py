from __future__ import annotations

from typing import Any, Optional

import requests
from pydantic import ValidationError

from app.errors import NetworkError, ProtocolError, UpstreamError
from app.schemas.price import BookTicker


class BinanceRestClient:
    """Minimal Binance spot REST client: best bid/ask for one symbol plus a ping probe."""

    def __init__(
        self,
        base_url: str,
        *,
        symbol: str = "BTCUSDT",
        session: Optional[Any] = None,
        timeout_sec: float = 10.0,
        probe_timeout_sec: float = 5.0,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")

        self.base_url = base_url.rstrip("/")
        self.symbol = symbol
        self.session = session or requests
        self.timeout_sec = timeout_sec
        self.probe_timeout_sec = probe_timeout_sec

    @staticmethod
    def _status_code_from_error(exc: Exception) -> int | None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
        if isinstance(code, int):
            return code
        return None

    def fetch_quote(self) -> BookTicker:
        try:
            response = self.session.get(
                f"{self.base_url}/api/v3/ticker/bookTicker",
                params={"symbol": self.symbol},
                timeout=self.timeout_sec,
            )
            response.raise_for_status()
        except requests.Timeout as exc:
            raise NetworkError("timeout", "Network error: Binance API request timed out") from exc
        except requests.HTTPError as exc:
            status_code = self._status_code_from_error(exc)
            if status_code is None:
                raise NetworkError("unreachable", "Network error: Unable to reach Binance API") from exc
            reason = str(getattr(exc.response, "reason", "") or "")
            raise UpstreamError(status_code, reason) from exc
        except requests.RequestException as exc:
            raise NetworkError("unreachable", "Network error: Unable to reach Binance API") from exc

        if not response.content:
            raise ProtocolError("Empty response from Binance API")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProtocolError("Malformed JSON from Binance API") from exc
        if not isinstance(payload, dict) or not payload:
            raise ProtocolError("Empty response from Binance API")

        try:
            return BookTicker.model_validate(payload)
        except ValidationError as exc:
            missing = ",".join(str(err["loc"][0]) for err in exc.errors() if err.get("loc"))
            raise ProtocolError(f"Malformed ticker from Binance API: {missing}") from exc

    def probe(self) -> bool:
        try:
            response = self.session.get(
                f"{self.base_url}/api/v3/ping",
                timeout=self.probe_timeout_sec,
            )
            response.raise_for_status()
        except Exception:
            return False
        return True
