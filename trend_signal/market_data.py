import logging
import os
import time
from datetime import datetime
from typing import Dict, Optional, Sequence

import ccxt
import pandas as pd

from trend_signal.models import PERIODS_PER_SERIES, SYMBOLS, AssetSeries, InvalidInputError

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ['timestamp', 'open', 'high', 'low', 'close', 'volume']


def symbol_filename(symbol: str) -> str:
    """ETH/USD -> ETH_USD.csv"""
    return f"{symbol.replace('/', '_')}.csv"


def series_from_frame(symbol: str, df: pd.DataFrame) -> AssetSeries:
    """Build an AssetSeries from the last three rows of an OHLCV frame."""
    if len(df) < PERIODS_PER_SERIES:
        raise InvalidInputError(f"{symbol}: need {PERIODS_PER_SERIES} closed candles, got {len(df)}")
    tail = df.iloc[-PERIODS_PER_SERIES:]
    rows = [
        {'close': row.close, 'high': row.high, 'low': row.low}
        for row in tail.itertuples(index=False)
    ]
    return AssetSeries.from_candles(symbol, rows)


class MarketDataProvider:
    def __init__(
        self,
        exchange_id: str = 'coinbaseexchange',
        symbols: Sequence[str] = SYMBOLS,
        timeframe: str = '1h',
        limit: int = PERIODS_PER_SERIES,
        use_mock: bool = False,
        mock_data_dir: str = "data",
        cache_dir: Optional[str] = None,
        testnet: Optional[bool] = None,
        exchange=None,
    ):
        self.exchange_id = exchange_id
        self.symbols = tuple(symbols)
        self.timeframe = timeframe
        self.limit = limit
        self.use_mock = use_mock
        self.mock_data_dir = mock_data_dir
        self.cache_dir = cache_dir
        self.timeframe_ms = ccxt.Exchange.parse_timeframe(timeframe) * 1000

        if exchange is not None:
            self.exchange = exchange
        elif use_mock:
            self.exchange = None
        else:
            exchange_class = getattr(ccxt, exchange_id)
            self.exchange = exchange_class({
                'enableRateLimit': True,
            })

            # Check for testnet
            if testnet is None:
                testnet = os.getenv('EXCHANGE_TESTNET', 'false').lower() == 'true'
            if testnet:
                self.exchange.set_sandbox_mode(True)

    def _frame(self, ohlcv) -> pd.DataFrame:
        df = pd.DataFrame(ohlcv, columns=OHLCV_COLUMNS)
        df = df.sort_values('timestamp').drop_duplicates('timestamp', keep='last')
        df = df.assign(timestamp=pd.to_datetime(df['timestamp'], unit='ms'))
        df.set_index('timestamp', inplace=True)
        return df

    def _closed_only(self, df: pd.DataFrame, now_ms: Optional[int] = None) -> pd.DataFrame:
        """Drop the candle that is still forming."""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        cutoff = pd.to_datetime(now_ms - self.timeframe_ms, unit='ms')
        return df[df.index <= cutoff]

    def _read_mock(self, symbol: str) -> pd.DataFrame:
        path = os.path.join(self.mock_data_dir, symbol_filename(symbol))
        logger.info("Using mock data from %s", path)
        if not os.path.exists(path):
            raise FileNotFoundError(f"Mock data file not found: {path}")
        raw = pd.read_csv(path)
        return self._frame(raw[OHLCV_COLUMNS].values.tolist())

    def fetch_ohlcv(self, symbol: str, since: Optional[int] = None, limit: Optional[int] = None) -> pd.DataFrame:
        """Fetch OHLCV data (oldest first) from the exchange or mock file."""
        if self.use_mock:
            return self._read_mock(symbol)
        # one extra row covers the candle that is still open
        limit = limit if limit is not None else self.limit + 1
        ohlcv = self.exchange.fetch_ohlcv(symbol, self.timeframe, since=since, limit=limit)
        logger.debug("Fetched %d candles for %s", len(ohlcv), symbol)
        return self._frame(ohlcv)

    def get_series(self, symbol: str) -> AssetSeries:
        df = self._closed_only(self.fetch_ohlcv(symbol))
        return series_from_frame(symbol, df)

    def get_snapshot(self) -> Dict[str, AssetSeries]:
        """Last three closed candles for every tracked symbol."""
        return {symbol: self.get_series(symbol) for symbol in self.symbols}

    def cache_path(self, symbol: str, start: datetime, end: datetime) -> Optional[str]:
        """Per exchange, symbol and window; None in mock mode or without cache_dir."""
        if not self.cache_dir or self.use_mock:
            return None
        name = f"{self.exchange_id}_{symbol.replace('/', '_')}_{start:%Y%m%d%H}-{end:%Y%m%d%H}.csv"
        return os.path.join(self.cache_dir, name)

    def fetch_history(self, symbol: str, start: datetime, end: datetime) -> pd.DataFrame:
        """
        Closed candles in [start, end), paged through the exchange.
        Cached as CSV when cache_dir is set. Mock mode returns the whole mock file.
        """
        if self.use_mock:
            return self._read_mock(symbol)

        start_ms = int(start.timestamp() * 1000)
        end_ms = int(end.timestamp() * 1000)
        cache_path = self.cache_path(symbol, start, end)

        if cache_path and os.path.exists(cache_path):
            logger.info("Loading cached candles for %s from %s", symbol, cache_path)
            cached = pd.read_csv(cache_path)
            return self._window(self._frame(cached[OHLCV_COLUMNS].values.tolist()), start_ms, end_ms)

        rows = []
        since = start_ms
        while since < end_ms:
            batch = self.exchange.fetch_ohlcv(symbol, self.timeframe, since=since, limit=300)
            if not batch:
                break
            rows.extend(batch)
            last = batch[-1][0]
            if last < since:
                break
            since = last + self.timeframe_ms
        df = self._window(self._frame(rows), start_ms, end_ms)

        if cache_path:
            os.makedirs(self.cache_dir, exist_ok=True)
            out = df.reset_index()
            out = out.assign(timestamp=(out['timestamp'] - pd.Timestamp(0)) // pd.Timedelta(milliseconds=1))
            out.to_csv(cache_path, index=False)
            logger.info("Cached %d candles for %s at %s", len(df), symbol, cache_path)
        return df

    def _window(self, df: pd.DataFrame, start_ms: int, end_ms: int) -> pd.DataFrame:
        """Candles that open at or after start and close by end."""
        lower = pd.to_datetime(start_ms, unit='ms')
        upper = pd.to_datetime(end_ms - self.timeframe_ms, unit='ms')
        return df[(df.index >= lower) & (df.index <= upper)]
