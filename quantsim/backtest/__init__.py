"""Backtesting engine module."""

from quantsim.backtest.engine import (
    DEFAULT_CONFIG,
    BacktestEngine,
    create_backtest_engine,
)
from quantsim.backtest.exceptions import BacktestError, InvalidConfigError
from quantsim.backtest.metrics import (
    calculate_benchmark_comparison,
    calculate_metrics,
    calculate_monthly_returns,
)
from quantsim.backtest.portfolio import Portfolio
from quantsim.backtest.types import (
    BacktestConfig,
    BacktestData,
    BacktestResult,
    BenchmarkComparison,
    CommissionConfig,
    EquityPoint,
    MonthlyReturn,
    PerformanceMetrics,
    PortfolioSnapshot,
    Position,
    PriceBar,
    SlippageConfig,
    Trade,
)

__all__ = [
    "DEFAULT_CONFIG",
    "BacktestConfig",
    "BacktestData",
    "BacktestEngine",
    "BacktestError",
    "BacktestResult",
    "BenchmarkComparison",
    "CommissionConfig",
    "EquityPoint",
    "InvalidConfigError",
    "MonthlyReturn",
    "PerformanceMetrics",
    "Portfolio",
    "PortfolioSnapshot",
    "Position",
    "PriceBar",
    "SlippageConfig",
    "Trade",
    "calculate_benchmark_comparison",
    "calculate_metrics",
    "calculate_monthly_returns",
    "create_backtest_engine",
]
