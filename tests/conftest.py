import pytest

from trend_signal.models import BTC_USD, ETH_USD, SOL_USD, AssetSeries


def build_series(symbol, closes, highs, lows):
    rows = [{"close": c, "high": h, "low": l} for c, h, l in zip(closes, highs, lows)]
    return AssetSeries.from_candles(symbol, rows)


@pytest.fixture
def make_series():
    return build_series


# ETH closes and highs both step up by >= 0.3% (the worked example)
@pytest.fixture
def eth_up():
    return build_series(ETH_USD, [100, 100.4, 100.9], [105, 105.4, 105.9], [99, 99, 99])


@pytest.fixture
def eth_down():
    return build_series(ETH_USD, [100, 99.6, 99.1], [105, 104.6, 104.1], [99, 99, 99])


@pytest.fixture
def eth_flat():
    return build_series(ETH_USD, [100, 100.1, 100.2], [101, 101.1, 101.2], [99, 99.1, 99.2])


@pytest.fixture
def btc_up():
    return build_series(BTC_USD, [50000, 50200, 50400], [50100, 50300, 50500], [49900, 49950, 50000])


@pytest.fixture
def btc_down():
    return build_series(BTC_USD, [50000, 49800, 49600], [50100, 50000, 49900], [49900, 49700, 49500])


@pytest.fixture
def sol_up():
    return build_series(SOL_USD, [150, 150.5, 151], [151, 151.5, 152], [149, 149, 149])


@pytest.fixture
def sol_down():
    return build_series(SOL_USD, [150, 149.5, 149], [151, 151, 151], [149, 148.5, 148])
