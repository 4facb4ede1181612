import math
from numbers import Real
from typing import Any, Iterable, List, Literal, Mapping, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

Trend = Literal["uptrend", "downtrend", "no_clear_trend"]
Action = Literal["long", "short", "none"]

ETH_USD = "ETH/USD"
BTC_USD = "BTC/USD"
SOL_USD = "SOL/USD"
SYMBOLS = (ETH_USD, BTC_USD, SOL_USD)

PERIODS_PER_SERIES = 3


class InvalidInputError(ValueError):
    """Raised when candle input is missing, non-numeric or non-positive."""


class CandleInput(BaseModel):
    """Input model whose validation failures surface as InvalidInputError."""

    model_config = ConfigDict(frozen=True)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            label = data.get("symbol") or type(self).__name__
            raise InvalidInputError(f"{label}: {_first_error(e)}") from e


class Period(CandleInput):
    """One closed hourly candle reduced to close/high/low."""

    close: float = Field(..., description="Closing price.")
    high: float = Field(..., description="Highest traded price.")
    low: float = Field(..., description="Lowest traded price.")

    @field_validator("close", "high", "low", mode="before")
    @classmethod
    def _positive_number(cls, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, Real):
            raise ValueError(f"price must be a number, got {value!r}")
        value = float(value)
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"price must be finite and positive, got {value!r}")
        return value


class AssetSeries(CandleInput):
    """
    Three consecutive closed candles for one trading pair, oldest first.
    """

    symbol: str
    periods: Tuple[Period, Period, Period]

    @classmethod
    def from_candles(cls, symbol: str, rows: Iterable[Union[Period, Mapping[str, Any]]]) -> "AssetSeries":
        if rows is None or isinstance(rows, (str, bytes)):
            raise InvalidInputError(f"{symbol}: expected {PERIODS_PER_SERIES} periods, got {rows!r}")
        try:
            periods = [row if isinstance(row, Period) else Period(**row) for row in rows]
        except InvalidInputError as e:
            raise InvalidInputError(f"{symbol}: {e}") from e
        except TypeError as e:
            raise InvalidInputError(f"{symbol}: malformed period ({e})") from e
        return cls(symbol=symbol, periods=periods)

    @property
    def closes(self) -> List[float]:
        return [p.close for p in self.periods]

    @property
    def highs(self) -> List[float]:
        return [p.high for p in self.periods]

    @property
    def lows(self) -> List[float]:
        return [p.low for p in self.periods]


class LegCheck(BaseModel):
    """Outcome of testing one price leg (closes, highs or lows) against the margin."""

    values: List[float]
    deltas_pct: List[float]
    rises: bool
    falls: bool


class TrendAnalysis(BaseModel):
    symbol: str
    trend: Trend
    closes: LegCheck
    highs: LegCheck
    lows: LegCheck


class Decision(BaseModel):
    action: Action = Field(..., description="Trading action for ETH/USD.")
    rationale: str = Field(..., description="The satisfied comparisons behind the action.")

    def to_json(self) -> str:
        return self.model_dump_json()


def _first_error(error: ValidationError) -> str:
    detail = error.errors()[0]
    location = ".".join(str(part) for part in detail.get("loc", ()))
    return f"{location}: {detail.get('msg')}" if location else detail.get("msg", str(error))
