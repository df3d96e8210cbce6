"""Pytest configuration and shared fixtures."""

import os
from collections.abc import Callable, Generator
from unittest.mock import patch

import pandas as pd
import pytest

from quantsim.backtest.types import BacktestConfig, BacktestData, PriceBar


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> Generator[None, None, None]:
    """Set up test environment variables."""
    env_vars = {
        "BACKTEST_INITIAL_CAPITAL": "100000",
        "BACKTEST_COMMISSION_PERCENT_FEE": "0.001",
        "BACKTEST_SLIPPAGE_PERCENT": "0.0005",
        "BACKTEST_MAX_POSITIONS": "20",
        "BACKTEST_REBALANCE_FREQUENCY": "daily",
        "BACKTEST_LOG_LEVEL": "INFO",
    }
    with patch.dict(os.environ, env_vars):
        yield


@pytest.fixture
def sample_ohlcv_data() -> dict[str, list]:
    """Sample OHLCV data for testing."""
    return {
        "open": [100.0, 101.0, 102.0, 101.5, 103.0],
        "high": [102.0, 103.0, 104.0, 103.5, 105.0],
        "low": [99.0, 100.0, 101.0, 100.5, 102.0],
        "close": [101.0, 102.0, 103.0, 102.5, 104.0],
        "volume": [1000000, 1100000, 1050000, 950000, 1200000],
    }


@pytest.fixture
def make_backtest_data() -> Callable[..., BacktestData]:
    """Factory building BacktestData from close-price lists on business days."""

    def _make(
        closes: dict[str, list[float]],
        start: str = "2024-01-01",
        freq: str = "B",
    ) -> BacktestData:
        prices: dict[str, list[PriceBar]] = {}
        for symbol, values in closes.items():
            dates = pd.date_range(start, periods=len(values), freq=freq)
            prices[symbol] = [
                PriceBar(
                    timestamp=ts,
                    open=close,
                    high=close * 1.01,
                    low=close * 0.99,
                    close=close,
                    volume=1000000,
                )
                for ts, close in zip(dates, values)
            ]

        timestamps = [bar.timestamp for bars in prices.values() for bar in bars]
        return BacktestData(
            symbols=list(closes),
            prices=prices,
            start_date=min(timestamps),
            end_date=max(timestamps),
        )

    return _make


@pytest.fixture
def frictionless_config() -> BacktestConfig:
    """Config with no commission, no slippage, and no position cap."""
    return BacktestConfig(commission=0.0, slippage=0.0, max_position_percent=100.0)
