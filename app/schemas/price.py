from pydantic import BaseModel, ConfigDict, Field


class BookTicker(BaseModel):
    """Best bid/ask as returned by /api/v3/ticker/bookTicker. Prices stay as text."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    symbol: str
    bidPrice: str
    bidQty: str = ""
    askPrice: str
    askQty: str = ""


class PricedSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    symbol: str
    bid_price: float = Field(alias="bidPrice")
    ask_price: float = Field(alias="askPrice")
    mid_price: float = Field(alias="midPrice")
    timestamp: int


class PriceResponse(BaseModel):
    success: bool
    data: PricedSnapshot | None = None
    error: str | None = None
    timestamp: int
