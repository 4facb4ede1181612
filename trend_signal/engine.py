import logging
from typing import Any, List, Optional, Union

from trend_signal.models import (
    BTC_USD,
    ETH_USD,
    SOL_USD,
    AssetSeries,
    Decision,
    InvalidInputError,
    LegCheck,
    TrendAnalysis,
)

logger = logging.getLogger(__name__)

# Minimum relative move per hour for a step to count as significant (0.3%).
MARGIN = 0.003
UP_FACTOR = 1 + MARGIN
DOWN_FACTOR = 1 - MARGIN

SeriesInput = Union[AssetSeries, List[Any]]


def coerce_series(series: SeriesInput, symbol: str) -> AssetSeries:
    """Accept an AssetSeries or raw close/high/low rows and return a validated series."""
    if isinstance(series, AssetSeries):
        if series.symbol != symbol:
            raise InvalidInputError(f"expected a {symbol} series, got {series.symbol}")
        return series
    return AssetSeries.from_candles(symbol, series)


def check_leg(values: List[float]) -> LegCheck:
    v1, v2, v3 = values
    return LegCheck(
        values=list(values),
        deltas_pct=[_pct(v1, v2), _pct(v2, v3)],
        rises=v2 >= v1 * UP_FACTOR and v3 >= v2 * UP_FACTOR,
        falls=v2 <= v1 * DOWN_FACTOR and v3 <= v2 * DOWN_FACTOR,
    )


def classify_trend(series: AssetSeries) -> TrendAnalysis:
    """
    Classify three candles as uptrend, downtrend or no_clear_trend.

    Condition A requires both consecutive closes to move by at least MARGIN in
    one direction. Condition B requires the highs or the lows to do the same.
    A trend needs both.
    """
    closes = check_leg(series.closes)
    highs = check_leg(series.highs)
    lows = check_leg(series.lows)

    if closes.rises and (highs.rises or lows.rises):
        trend = "uptrend"
    elif closes.falls and (highs.falls or lows.falls):
        trend = "downtrend"
    else:
        trend = "no_clear_trend"

    logger.debug("%s classified as %s (closes=%s)", series.symbol, trend, closes.values)
    return TrendAnalysis(symbol=series.symbol, trend=trend, closes=closes, highs=highs, lows=lows)


def primary_decision(eth: TrendAnalysis) -> Optional[Decision]:
    """Decide from ETH alone; None when ETH shows no clear trend."""
    if eth.trend == "uptrend":
        return Decision(action="long", rationale=f"{describe(eth)}. ETH/USD trend decides: long.")
    if eth.trend == "downtrend":
        return Decision(action="short", rationale=f"{describe(eth)}. ETH/USD trend decides: short.")
    return None


def secondary_decision(eth: TrendAnalysis, btc: TrendAnalysis, sol: TrendAnalysis) -> Decision:
    """Fall back to BTC and SOL when ETH shows no clear trend."""
    if btc.trend == "uptrend" and sol.trend == "uptrend":
        action, verdict = "long", "BTC/USD and SOL/USD both in uptrend: long"
    elif btc.trend == "downtrend" and sol.trend == "downtrend":
        action, verdict = "short", "BTC/USD and SOL/USD both in downtrend: short"
    else:
        action, verdict = "none", "BTC/USD and SOL/USD do not share a trend: none"

    rationale = f"{describe(eth)}. Secondary analysis: {describe(btc)}; {describe(sol)}. {verdict}."
    return Decision(action=action, rationale=rationale)


def decide(eth: SeriesInput, btc: SeriesInput, sol: SeriesInput) -> Decision:
    """
    Decide long/short/none for ETH/USD from the last three closed hourly candles
    of ETH/USD, BTC/USD and SOL/USD.

    All three inputs are validated before anything is classified, so malformed
    BTC or SOL data raises InvalidInputError even when ETH alone would decide.
    """
    eth_series = coerce_series(eth, ETH_USD)
    btc_series = coerce_series(btc, BTC_USD)
    sol_series = coerce_series(sol, SOL_USD)

    eth_analysis = classify_trend(eth_series)
    decision = primary_decision(eth_analysis)
    if decision is None:
        decision = secondary_decision(eth_analysis, classify_trend(btc_series), classify_trend(sol_series))

    logger.info("Decision for %s: %s", eth_series.symbol, decision.action)
    return decision


def describe(analysis: TrendAnalysis) -> str:
    """Render the comparisons behind a classification, citing values and deltas."""
    symbol = analysis.symbol
    if analysis.trend in ("uptrend", "downtrend"):
        up = analysis.trend == "uptrend"
        parts = [f"Condition A closes {_leg_text(analysis.closes)}"]
        for name, leg in (("highs", analysis.highs), ("lows", analysis.lows)):
            if (leg.rises if up else leg.falls):
                parts.append(f"Condition B {name} {_leg_text(leg)}")
        threshold = f"{'+' if up else '-'}{MARGIN * 100:.2f}%"
        return f"{symbol} {analysis.trend} (each step {threshold} or more): " + "; ".join(parts)

    closes = analysis.closes
    if closes.rises or closes.falls:
        direction = "up" if closes.rises else "down"
        return (
            f"{symbol} no clear trend: closes {_leg_text(closes)} satisfy Condition A ({direction}) "
            f"but neither highs {_leg_text(analysis.highs)} nor lows {_leg_text(analysis.lows)} confirm it"
        )
    return (
        f"{symbol} no clear trend: closes {_leg_text(closes)} do not move "
        f"{MARGIN * 100:.2f}% or more in one direction on both steps"
    )


def _pct(old: float, new: float) -> float:
    return (new - old) / old * 100


def _fmt(value: float) -> str:
    return f"{value:.10g}"


def _leg_text(leg: LegCheck) -> str:
    v1, v2, v3 = leg.values
    d1, d2 = leg.deltas_pct
    return f"{_fmt(v1)} -> {_fmt(v2)} ({d1:+.2f}%) -> {_fmt(v3)} ({d2:+.2f}%)"
