from __future__ import annotations


class RefreshError(Exception):
    """Recoverable failure while fetching or pricing the upstream quote."""

    kind = "refresh"


class NetworkError(RefreshError):
    kind = "network"

    def __init__(self, reason: str = "unreachable", message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or f"Network error: {reason}")


class UpstreamError(RefreshError):
    kind = "upstream"

    def __init__(self, status_code: int, reason_phrase: str = "") -> None:
        self.status_code = status_code
        self.reason_phrase = reason_phrase
        detail = f"{status_code} - {reason_phrase}" if reason_phrase else str(status_code)
        super().__init__(f"Binance API error: {detail}")


class ProtocolError(RefreshError):
    kind = "protocol"


class InvalidDataError(RefreshError):
    kind = "invalid_data"
