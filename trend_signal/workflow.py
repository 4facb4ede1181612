from llama_index.core.workflow import (
    Event,
    StartEvent,
    StopEvent,
    Workflow,
    step,
    Context,
)
from trend_signal.engine import classify_trend, coerce_series, primary_decision, secondary_decision
from trend_signal.market_data import MarketDataProvider
from trend_signal.models import (
    BTC_USD,
    ETH_USD,
    SOL_USD,
    SYMBOLS,
    AssetSeries,
    InvalidInputError,
    TrendAnalysis,
)
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)


# --- Events ---
class MarketSnapshotEvent(Event):
    snapshot: Dict[str, AssetSeries]

class SecondaryAnalysisEvent(Event):
    eth: TrendAnalysis
    btc: AssetSeries
    sol: AssetSeries

# --- Workflow ---
class TrendSignalWorkflow(Workflow):
    """
    fetch snapshot -> classify ETH/USD -> (only without a clear ETH trend) BTC/USD + SOL/USD

    The run result is a Decision.
    """

    def __init__(self, market_provider: Optional[MarketDataProvider] = None, timeout: float = 60, verbose: bool = False):
        super().__init__(timeout=timeout, verbose=verbose)
        self.market_provider = market_provider

    @step
    async def load_market(self, ctx: Context, ev: StartEvent) -> MarketSnapshotEvent:
        """Step 1: Market snapshot, either handed in or fetched"""
        snapshot = getattr(ev, "snapshot", None)
        if snapshot is None:
            if self.market_provider is None:
                raise InvalidInputError("No snapshot given and no market data provider configured")
            logger.info("Fetching market snapshot for %s", ", ".join(SYMBOLS))
            snapshot = self.market_provider.get_snapshot()

        missing = [symbol for symbol in SYMBOLS if symbol not in snapshot]
        if missing:
            raise InvalidInputError(f"Snapshot is missing {', '.join(missing)}")

        # validate everything up front, BTC/SOL included
        series = {symbol: coerce_series(snapshot[symbol], symbol) for symbol in SYMBOLS}
        return MarketSnapshotEvent(snapshot=series)

    @step
    async def analyze_primary(self, ctx: Context, ev: MarketSnapshotEvent) -> StopEvent | SecondaryAnalysisEvent:
        """Step 2: ETH/USD trend decides on its own when it is clear"""
        eth = classify_trend(ev.snapshot[ETH_USD])
        decision = primary_decision(eth)
        if decision is not None:
            logger.info("Primary decision: %s", decision.action)
            return StopEvent(result=decision)

        logger.info("%s shows no clear trend, checking %s and %s", ETH_USD, BTC_USD, SOL_USD)
        return SecondaryAnalysisEvent(eth=eth, btc=ev.snapshot[BTC_USD], sol=ev.snapshot[SOL_USD])

    @step
    async def analyze_secondary(self, ctx: Context, ev: SecondaryAnalysisEvent) -> StopEvent:
        """Step 3: BTC/USD and SOL/USD must agree"""
        decision = secondary_decision(ev.eth, classify_trend(ev.btc), classify_trend(ev.sol))
        logger.info("Secondary decision: %s", decision.action)
        return StopEvent(result=decision)
