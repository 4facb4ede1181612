import argparse
import asyncio
import datetime
import logging
import os
import sys

import ccxt
from pydantic import ValidationError
from trend_signal.backtest import run_backtest, save_report
from trend_signal.config import Settings
from trend_signal.market_data import MarketDataProvider
from trend_signal.models import SYMBOLS, Decision, InvalidInputError
from trend_signal.workflow import TrendSignalWorkflow

logger = logging.getLogger("trend_signal")

REPORT_FILE = "backtest_report.json"


def build_provider(settings: Settings, cache: bool = False) -> MarketDataProvider:
    return MarketDataProvider(
        exchange_id=settings.exchange_id,
        use_mock=settings.use_mock,
        mock_data_dir=settings.mock_data_dir,
        cache_dir=settings.cache_dir if cache else None,
        testnet=settings.exchange_testnet,
    )


async def run_signal(settings: Settings) -> Decision:
    market_provider = build_provider(settings)
    # fetched here so bad candles raise before the workflow starts
    snapshot = market_provider.get_snapshot()
    agent = TrendSignalWorkflow(
        market_provider=market_provider,
        timeout=settings.workflow_timeout,
    )
    return await agent.run(snapshot=snapshot)


def run_backtest_cycle(settings: Settings, report_path: str):
    market_provider = build_provider(settings, cache=True)

    end = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(hours=settings.backtest_offset_hours)
    end = end.replace(minute=0, second=0, microsecond=0)
    start = end - datetime.timedelta(hours=settings.backtest_hours)
    logger.info("Backtesting %s from %s to %s", ", ".join(SYMBOLS), start.isoformat(), end.isoformat())

    eth, btc, sol = (market_provider.fetch_history(symbol, start, end) for symbol in SYMBOLS)
    report = run_backtest(eth, btc, sol)
    save_report(report, report_path)
    return report


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="ETH/USD long/short/none signal from hourly candle trends")
    parser.add_argument("mode", nargs="?", choices=["signal", "backtest"], default="signal")
    parser.add_argument("--report", default=None, help="where to write the backtest report")
    parser.add_argument("--verbose", action="store_true", help="debug logging")
    args = parser.parse_args(argv)

    # 1. Configuration
    try:
        settings = Settings.from_env()
    except ValidationError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error("Invalid configuration: %s", e)
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Exchange %s (Mock: %s)", settings.exchange_id, settings.use_mock)

    # 2. Run
    try:
        if args.mode == "backtest":
            report_path = args.report or os.path.join(settings.cache_dir, REPORT_FILE)
            report = run_backtest_cycle(settings, report_path)
            print(f"Accuracy: {report.accuracy * 100:.2f}% ({report.correct}/{report.total})")
        else:
            decision = asyncio.run(run_signal(settings))
            print(decision.to_json())
    except InvalidInputError as e:
        logger.error("Invalid market data: %s", e)
        return 2
    except (ccxt.BaseError, FileNotFoundError) as e:
        logger.error("Market data unavailable: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
