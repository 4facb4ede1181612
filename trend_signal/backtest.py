import datetime
import logging
import os
from typing import List

import pandas as pd
from pydantic import BaseModel, Field

from trend_signal.engine import DOWN_FACTOR, UP_FACTOR, decide
from trend_signal.market_data import series_from_frame
from trend_signal.models import (
    BTC_USD,
    ETH_USD,
    PERIODS_PER_SERIES,
    SOL_USD,
    Action,
    InvalidInputError,
)

logger = logging.getLogger(__name__)


class BacktestMiss(BaseModel):
    index: int
    timestamp: str
    predicted: Action
    expected: Action
    rationale: str


class BacktestReport(BaseModel):
    """
    Accuracy of the decision rule against labelled ETH/USD history.
    """
    total: int = 0
    correct: int = 0
    accuracy: float = 0.0
    failures: List[BacktestMiss] = Field(default_factory=list)
    started_at: str = ""
    finished_at: str = ""


def label_candles(df: pd.DataFrame) -> List[Action]:
    """
    Label each candle with the action that would have paid off on the next one.

    long when the next high reaches close * UP_FACTOR, short when the next low
    reaches close * DOWN_FACTOR. When both happen the label is short. The last
    candle has no successor and is labelled none.
    """
    closes = df['close'].tolist()
    highs = df['high'].tolist()
    lows = df['low'].tolist()

    labels: List[Action] = []
    for i in range(len(closes) - 1):
        long_cond = highs[i + 1] >= closes[i] * UP_FACTOR
        short_cond = lows[i + 1] <= closes[i] * DOWN_FACTOR
        if short_cond:
            labels.append("short")
        elif long_cond:
            labels.append("long")
        else:
            labels.append("none")
    if closes:
        labels.append("none")
    return labels


def align_frames(eth_df: pd.DataFrame, btc_df: pd.DataFrame, sol_df: pd.DataFrame):
    common = eth_df.index.intersection(btc_df.index).intersection(sol_df.index).sort_values()
    return eth_df.loc[common], btc_df.loc[common], sol_df.loc[common]


def run_backtest(
    eth_df: pd.DataFrame,
    btc_df: pd.DataFrame,
    sol_df: pd.DataFrame,
    window: int = PERIODS_PER_SERIES,
) -> BacktestReport:
    """Slide a three-candle window over aligned history and score each decision."""
    started_at = datetime.datetime.now().isoformat()
    eth_df, btc_df, sol_df = align_frames(eth_df, btc_df, sol_df)
    if len(eth_df) < window + 1:
        raise InvalidInputError(
            f"Not enough aligned candles to backtest: need {window + 1}, got {len(eth_df)}"
        )

    labels = label_candles(eth_df)
    report = BacktestReport(started_at=started_at)

    # the window ending at the last candle has no label to compare against
    for i in range(window, len(eth_df)):
        decision = decide(
            series_from_frame(ETH_USD, eth_df.iloc[i - window:i]),
            series_from_frame(BTC_USD, btc_df.iloc[i - window:i]),
            series_from_frame(SOL_USD, sol_df.iloc[i - window:i]),
        )
        expected = labels[i - 1]
        report.total += 1
        if decision.action == expected:
            report.correct += 1
        else:
            report.failures.append(BacktestMiss(
                index=i,
                timestamp=eth_df.index[i - 1].isoformat(),
                predicted=decision.action,
                expected=expected,
                rationale=decision.rationale,
            ))

    report.accuracy = report.correct / report.total if report.total else 0.0
    report.finished_at = datetime.datetime.now().isoformat()
    logger.info("Backtesting complete. Accuracy: %.2f%% (%d/%d)",
                report.accuracy * 100, report.correct, report.total)
    return report


def save_report(report: BacktestReport, path: str) -> str:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w") as f:
        f.write(report.model_dump_json(indent=2))
    logger.info("Backtest report saved to %s", path)
    return path


def load_report(path: str) -> BacktestReport:
    with open(path, "r") as f:
        return BacktestReport.model_validate_json(f.read())
