"""
Tests for trend_signal/market_data.py. The exchange is a stub exposing
fetch_ohlcv, so nothing touches the network.
"""

import datetime
import os
import time

import pandas as pd
import pytest

from trend_signal.market_data import MarketDataProvider, series_from_frame, symbol_filename
from trend_signal.models import BTC_USD, ETH_USD, SOL_USD, SYMBOLS, InvalidInputError

HOUR_MS = 3600 * 1000


class FakeExchange:
    """In-memory stand-in for a ccxt exchange."""

    def __init__(self, rows):
        self.rows = rows
        self.calls = []

    def fetch_ohlcv(self, symbol, timeframe='1h', since=None, limit=None):
        self.calls.append((symbol, timeframe, since, limit))
        rows = self.rows.get(symbol, []) if isinstance(self.rows, dict) else self.rows
        if since is not None:
            rows = [r for r in rows if r[0] >= since]
        return rows[-limit:] if limit and since is None else rows[:limit]


class BrokenExchange:
    def fetch_ohlcv(self, *args, **kwargs):
        raise AssertionError("exchange should not be called")


def candle(ts, close):
    return [ts, close, close * 1.01, close * 0.99, close, 10.0]


def current_hour_ms():
    now_ms = int(time.time() * 1000)
    return now_ms - now_ms % HOUR_MS


# ── live (stubbed) fetching ──────────────────────────────────────────────────

class TestFetch:
    def test_fetch_ohlcv_frames_oldest_first(self):
        rows = [candle(3 * HOUR_MS, 3.0), candle(HOUR_MS, 1.0), candle(2 * HOUR_MS, 2.0)]
        provider = MarketDataProvider(exchange=FakeExchange(rows))
        df = provider.fetch_ohlcv(ETH_USD, limit=10)
        assert list(df.columns) == ['open', 'high', 'low', 'close', 'volume']
        assert df['close'].tolist() == [1.0, 2.0, 3.0]
        assert df.index[0] == pd.Timestamp(HOUR_MS, unit='ms')

    def test_default_limit_covers_open_candle(self):
        exchange = FakeExchange([])
        MarketDataProvider(exchange=exchange).fetch_ohlcv(ETH_USD)
        assert exchange.calls == [(ETH_USD, '1h', None, 4)]

    def test_get_series_skips_open_candle(self):
        open_ts = current_hour_ms()
        rows = [candle(open_ts - 3 * HOUR_MS, 100.0),
                candle(open_ts - 2 * HOUR_MS, 101.0),
                candle(open_ts - HOUR_MS, 102.0),
                candle(open_ts, 999.0)]
        provider = MarketDataProvider(exchange=FakeExchange(rows))
        series = provider.get_series(ETH_USD)
        assert series.symbol == ETH_USD
        assert series.closes == [100.0, 101.0, 102.0]
        assert series.highs == pytest.approx([101.0, 102.01, 103.02])

    def test_closed_only_cutoff(self):
        provider = MarketDataProvider(exchange=FakeExchange([]))
        df = provider._frame([candle(0, 1.0), candle(HOUR_MS, 2.0)])
        assert provider._closed_only(df, now_ms=2 * HOUR_MS - 1)['close'].tolist() == [1.0]
        assert provider._closed_only(df, now_ms=2 * HOUR_MS)['close'].tolist() == [1.0, 2.0]

    def test_too_few_candles(self):
        open_ts = current_hour_ms()
        rows = [candle(open_ts - HOUR_MS, 100.0), candle(open_ts, 101.0)]
        provider = MarketDataProvider(exchange=FakeExchange(rows))
        with pytest.raises(InvalidInputError):
            provider.get_series(ETH_USD)

    def test_snapshot_has_every_symbol(self):
        open_ts = current_hour_ms()
        rows = {
            symbol: [candle(open_ts - k * HOUR_MS, 10.0 * (i + 1)) for k in (3, 2, 1, 0)]
            for i, symbol in enumerate(SYMBOLS)
        }
        snapshot = MarketDataProvider(exchange=FakeExchange(rows)).get_snapshot()
        assert set(snapshot) == {ETH_USD, BTC_USD, SOL_USD}
        assert snapshot[SOL_USD].closes == [30.0, 30.0, 30.0]


# ── mock files ───────────────────────────────────────────────────────────────

def write_mock(directory, symbol, closes, start_ms=1732838400000):
    rows = [candle(start_ms + k * HOUR_MS, c) for k, c in enumerate(closes)]
    df = pd.DataFrame(rows, columns=['timestamp', 'open', 'high', 'low', 'close', 'volume'])
    df.to_csv(directory / symbol_filename(symbol), index=False)


class TestMock:
    def test_symbol_filename(self):
        assert symbol_filename(ETH_USD) == "ETH_USD.csv"

    def test_snapshot_from_csv(self, tmp_path):
        for symbol in SYMBOLS:
            write_mock(tmp_path, symbol, [1.0, 2.0, 3.0, 4.0])
        provider = MarketDataProvider(use_mock=True, mock_data_dir=str(tmp_path))
        assert provider.exchange is None
        snapshot = provider.get_snapshot()
        assert snapshot[ETH_USD].closes == [2.0, 3.0, 4.0]

    def test_missing_mock_file(self, tmp_path):
        provider = MarketDataProvider(use_mock=True, mock_data_dir=str(tmp_path))
        with pytest.raises(FileNotFoundError):
            provider.get_series(ETH_USD)


# ── history + cache ──────────────────────────────────────────────────────────

class TestHistory:
    start = datetime.datetime(2024, 11, 29, tzinfo=datetime.timezone.utc)

    def rows(self, n):
        start_ms = int(self.start.timestamp() * 1000)
        return [candle(start_ms + k * HOUR_MS, 100.0 + k) for k in range(n)]

    def test_history_window(self):
        end = self.start + datetime.timedelta(hours=5)
        provider = MarketDataProvider(exchange=FakeExchange(self.rows(8)))
        df = provider.fetch_history(ETH_USD, self.start, end)
        assert df['close'].tolist() == [100.0, 101.0, 102.0, 103.0, 104.0]

    def test_history_is_cached(self, tmp_path):
        end = self.start + datetime.timedelta(hours=6)
        provider = MarketDataProvider(exchange=FakeExchange(self.rows(6)), cache_dir=str(tmp_path))
        first = provider.fetch_history(ETH_USD, self.start, end)
        path = provider.cache_path(ETH_USD, self.start, end)
        assert path == str(tmp_path / "coinbaseexchange_ETH_USD_2024112900-2024112906.csv")
        assert os.path.exists(path)

        cached = MarketDataProvider(exchange=BrokenExchange(), cache_dir=str(tmp_path))
        second = cached.fetch_history(ETH_USD, self.start, end)
        assert second['close'].tolist() == first['close'].tolist()
        assert list(second.index) == list(first.index)

    def test_cache_is_keyed_by_window_and_exchange(self, tmp_path):
        end = self.start + datetime.timedelta(hours=6)
        provider = MarketDataProvider(exchange=FakeExchange(self.rows(6)), cache_dir=str(tmp_path))
        provider.fetch_history(ETH_USD, self.start, end)

        other = MarketDataProvider(exchange_id="kraken", exchange=FakeExchange(self.rows(3)), cache_dir=str(tmp_path))
        assert len(other.fetch_history(ETH_USD, self.start, end)) == 3

        shorter = self.start + datetime.timedelta(hours=2)
        assert len(provider.fetch_history(ETH_USD, self.start, shorter)) == 2

    def test_cached_rows_outside_window_dropped(self, tmp_path):
        end = self.start + datetime.timedelta(hours=3)
        provider = MarketDataProvider(exchange=BrokenExchange(), cache_dir=str(tmp_path))
        df = pd.DataFrame(self.rows(8), columns=['timestamp', 'open', 'high', 'low', 'close', 'volume'])
        df.to_csv(provider.cache_path(ETH_USD, self.start, end), index=False)
        cached = provider.fetch_history(ETH_USD, self.start, end)
        assert cached['close'].tolist() == [100.0, 101.0, 102.0]

    def test_mock_history_is_never_cached(self, tmp_path):
        mock_dir = tmp_path / "mock"
        cache_dir = tmp_path / "cache"
        mock_dir.mkdir()
        write_mock(mock_dir, ETH_USD, [1.0, 2.0, 3.0, 4.0])
        provider = MarketDataProvider(use_mock=True, mock_data_dir=str(mock_dir), cache_dir=str(cache_dir))
        end = self.start + datetime.timedelta(hours=6)
        assert provider.cache_path(ETH_USD, self.start, end) is None
        df = provider.fetch_history(ETH_USD, self.start, end)
        assert df['close'].tolist() == [1.0, 2.0, 3.0, 4.0]
        assert not cache_dir.exists()

    def test_empty_history(self):
        end = self.start + datetime.timedelta(hours=5)
        provider = MarketDataProvider(exchange=FakeExchange([]))
        df = provider.fetch_history(ETH_USD, self.start, end)
        assert df.empty


def test_series_from_frame_uses_last_three_rows():
    provider = MarketDataProvider(exchange=FakeExchange([]))
    df = provider._frame([candle(k * HOUR_MS, float(k + 1)) for k in range(5)])
    assert series_from_frame(BTC_USD, df).closes == [3.0, 4.0, 5.0]
