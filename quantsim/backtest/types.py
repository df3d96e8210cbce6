"""Backtest data types - configuration, ledger records, and results."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime, time, timezone
from typing import Any, Literal, get_args

import pandas as pd

from quantsim.backtest.exceptions import InvalidConfigError

TradeSide = Literal["buy", "sell"]
TradeStatus = Literal["pending", "filled", "cancelled", "rejected"]
PositionSizing = Literal["fixed", "percent", "equal_weight", "kelly"]
RebalanceFrequency = Literal["daily", "weekly", "monthly", "quarterly", "never"]

# Positions at or below this quantity are treated as closed
POSITION_EPSILON = 1e-4


def to_datetime(value: Any) -> datetime:
    """Coerce a date-like value to a naive ``datetime``.

    Timezone-aware values are converted to UTC and the zone is dropped, so
    every timestamp in a backtest compares against every other.

    Args:
        value: ``datetime``, ``date``, ``pd.Timestamp``, ISO string, or epoch-ms number.

    Returns:
        Equivalent naive ``datetime``.
    """
    if isinstance(value, pd.Timestamp):
        if value.tzinfo is not None:
            value = value.tz_convert("UTC").tz_localize(None)
        return value.to_pydatetime()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, (int, float)):
        return pd.Timestamp(value, unit="ms").to_pydatetime()
    timestamp = pd.Timestamp(value)
    if timestamp is pd.NaT:
        raise ValueError(f"Not a date: {value!r}")
    return to_datetime(timestamp)


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class CommissionConfig:
    """Commission schedule applied to every fill.

    Attributes:
        fixed_fee: Flat fee per trade.
        percent_fee: Fee as a fraction of trade value (0.001 = 0.1%).
        min_commission: Floor applied after the fee is computed.
        max_commission: Cap applied after the fee is computed.
    """

    fixed_fee: float = 0.0
    percent_fee: float = 0.001
    min_commission: float = 0.0
    max_commission: float = math.inf

    def __post_init__(self) -> None:
        for name in ("fixed_fee", "percent_fee", "min_commission", "max_commission"):
            if getattr(self, name) < 0:
                raise InvalidConfigError("must be >= 0", field=f"commission.{name}")
        if self.min_commission > self.max_commission:
            raise InvalidConfigError(
                f"min_commission ({self.min_commission}) exceeds "
                f"max_commission ({self.max_commission})",
                field="commission",
            )

    @classmethod
    def from_value(cls, value: CommissionConfig | float | None) -> CommissionConfig:
        """Build a commission schedule from the structured or shorthand form.

        A bare number is read as ``percent_fee`` with every other field zeroed.
        """
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls(**value)
        return cls(fixed_fee=0.0, percent_fee=float(value), min_commission=0.0)


@dataclass(frozen=True)
class SlippageConfig:
    """Slippage model applied against the trader on every fill.

    Attributes:
        fixed: Slippage in price units.
        percent: Slippage as a fraction of price (0.0005 = 0.05%).
        randomize: Scale slippage by a uniform factor in [0.5, 1.5).
        seed: Seed for the randomizer; None draws fresh entropy.
    """

    fixed: float = 0.0
    percent: float = 0.0005
    randomize: bool = False
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.fixed < 0:
            raise InvalidConfigError("must be >= 0", field="slippage.fixed")
        if self.percent < 0:
            raise InvalidConfigError("must be >= 0", field="slippage.percent")

    @classmethod
    def from_value(cls, value: SlippageConfig | float | None) -> SlippageConfig:
        """Build a slippage model from the structured or shorthand form.

        A bare number is read as ``percent`` with no fixed component.
        """
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls(**value)
        return cls(fixed=0.0, percent=float(value), randomize=False)


@dataclass(frozen=True)
class BacktestConfig:
    """Configuration for a backtest run.

    ``commission`` and ``slippage`` accept either their structured config or a
    single number; both are normalized to the structured form on construction.

    Attributes:
        initial_capital: Starting cash.
        commission: Commission schedule.
        slippage: Slippage model.
        position_sizing: Sizing method for new positions.
        fixed_position_size: Dollar size for 'fixed' sizing (10,000 when unset).
        position_size_percent: Percent of portfolio for 'percent' sizing (5 when unset).
        max_positions: Maximum concurrent positions.
        max_position_percent: Cap on a single position as percent of portfolio.
        rebalance_frequency: How often the signal generator is consulted.
        allow_fractional: Whether fractional quantities can be traded.
        risk_free_rate: Annualized risk-free rate for Sharpe/Sortino/alpha.
        benchmark_symbols: Symbols tracked as the benchmark, first match wins.
    """

    initial_capital: float = 100000.0
    commission: CommissionConfig = field(default_factory=CommissionConfig)
    slippage: SlippageConfig = field(default_factory=SlippageConfig)
    position_sizing: PositionSizing = "equal_weight"
    fixed_position_size: float | None = None
    position_size_percent: float | None = None
    max_positions: int = 20
    max_position_percent: float = 10.0
    rebalance_frequency: RebalanceFrequency = "daily"
    allow_fractional: bool = True
    risk_free_rate: float = 0.02
    benchmark_symbols: tuple[str, ...] = ("SPY", "benchmark")

    def __post_init__(self) -> None:
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "commission", CommissionConfig.from_value(self.commission))
        object.__setattr__(self, "slippage", SlippageConfig.from_value(self.slippage))
        object.__setattr__(self, "benchmark_symbols", tuple(self.benchmark_symbols))

        if not self.initial_capital > 0:
            raise InvalidConfigError("must be positive", field="initial_capital")
        if self.max_positions < 1:
            raise InvalidConfigError("must be at least 1", field="max_positions")
        if not 0 < self.max_position_percent <= 100:
            raise InvalidConfigError("must be in (0, 100]", field="max_position_percent")
        if self.position_sizing not in get_args(PositionSizing):
            raise InvalidConfigError(
                f"unknown method {self.position_sizing!r}", field="position_sizing"
            )
        if self.rebalance_frequency not in get_args(RebalanceFrequency):
            raise InvalidConfigError(
                f"unknown frequency {self.rebalance_frequency!r}",
                field="rebalance_frequency",
            )
        if self.fixed_position_size is not None and self.fixed_position_size < 0:
            raise InvalidConfigError("must be >= 0", field="fixed_position_size")
        if self.position_size_percent is not None and self.position_size_percent < 0:
            raise InvalidConfigError("must be >= 0", field="position_size_percent")


# -----------------------------------------------------------------------------
# Ledger records
# -----------------------------------------------------------------------------


@dataclass
class Position:
    """An open long position held by the portfolio.

    Attributes:
        symbol: Ticker symbol.
        quantity: Units held (always > 0 while the position exists).
        avg_cost: Volume-weighted average execution price.
        current_price: Last mark price.
        market_value: quantity × current_price.
        unrealized_pnl: quantity × (current_price − avg_cost).
        unrealized_pnl_percent: Mark vs. average cost, in percent.
        open_date: When the position was first opened.
        last_update: When the position was last filled or marked.
    """

    symbol: str
    quantity: float
    avg_cost: float
    current_price: float
    market_value: float
    unrealized_pnl: float
    unrealized_pnl_percent: float
    open_date: datetime
    last_update: datetime

    def mark(self, price: float, timestamp: datetime) -> None:
        """Revalue the position at ``price``."""
        self.current_price = price
        self.market_value = self.quantity * price
        self.unrealized_pnl = self.quantity * (price - self.avg_cost)
        self.unrealized_pnl_percent = (price / self.avg_cost - 1) * 100
        self.last_update = timestamp


@dataclass(frozen=True)
class Trade:
    """A single fill recorded by the portfolio.

    Attributes:
        id: Trade identifier, unique within one portfolio run.
        timestamp: Fill time.
        symbol: Ticker symbol.
        side: 'buy' or 'sell'.
        quantity: Filled quantity.
        price: Execution price after slippage.
        commission: Commission charged.
        slippage: Signed slippage cost (per-unit slippage × quantity).
        status: Fill status.
        pnl: Realized P&L (sells only).
        pnl_percent: Execution price vs. average cost in percent (sells only).
        holding_period_days: Days since the position was opened (sells only).
    """

    id: str
    timestamp: datetime
    symbol: str
    side: TradeSide
    quantity: float
    price: float
    commission: float
    slippage: float
    status: TradeStatus = "filled"
    pnl: float | None = None
    pnl_percent: float | None = None
    holding_period_days: int | None = None

    @property
    def is_closing(self) -> bool:
        """Check if the trade realized P&L."""
        return self.side == "sell" and self.pnl is not None

    @property
    def is_winner(self) -> bool:
        """Check if the trade realized a profit."""
        return self.pnl is not None and self.pnl > 0


@dataclass
class PortfolioSnapshot:
    """Portfolio state at a point in time."""

    timestamp: datetime
    cash: float
    positions: list[Position]
    total_value: float
    daily_return: float
    cumulative_return: float


# -----------------------------------------------------------------------------
# Metrics and results
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class EquityPoint:
    """One point on the equity curve, recorded per trading date.

    Attributes:
        date: Trading date.
        equity: Total portfolio value.
        cash: Cash balance.
        invested: equity − cash.
        daily_return: Change vs. previous point, in percent.
        cumulative_return: Change vs. initial capital, in percent.
        drawdown: Decline from running peak (seeded by initial capital), in percent.
        benchmark: Benchmark close on this date, if tracked.
    """

    date: datetime
    equity: float
    cash: float
    invested: float
    daily_return: float
    cumulative_return: float
    drawdown: float
    benchmark: float | None = None


@dataclass(frozen=True)
class PerformanceMetrics:
    """Performance metrics for a backtest.

    Percent-valued fields are expressed in percent (10.0 = 10%).
    """

    # Returns
    total_return: float = 0.0
    total_return_percent: float = 0.0
    annualized_return: float = 0.0
    cagr: float = 0.0

    # Risk
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0

    # Drawdown
    max_drawdown: float = 0.0
    max_drawdown_duration: int = 0
    avg_drawdown: float = 0.0

    # Trade statistics
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    avg_win_loss_ratio: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    avg_holding_period: float = 0.0

    # Other
    trading_days: int = 0
    start_date: datetime | None = None
    end_date: datetime | None = None
    final_value: float = 0.0


@dataclass(frozen=True)
class BenchmarkComparison:
    """Strategy performance relative to a benchmark price series."""

    benchmark_return: float = 0.0
    benchmark_volatility: float = 0.0
    benchmark_sharpe: float = 0.0
    benchmark_max_drawdown: float = 0.0
    alpha: float = 0.0
    beta: float = 1.0
    correlation: float = 0.0
    information_ratio: float = 0.0
    tracking_error: float = 0.0
    excess_return: float = 0.0


@dataclass(frozen=True)
class MonthlyReturn:
    """Return for one calendar month (month is 1-12)."""

    year: int
    month: int
    return_percent: float
    benchmark: float | None = None


@dataclass(frozen=True)
class BacktestResult:
    """Results from running a backtest.

    Attributes:
        config: Resolved configuration the run used.
        metrics: Performance metrics.
        equity_curve: One point per trading date.
        monthly_returns: Calendar-month returns.
        trades: Every fill, in execution order.
        final_positions: Positions left open (always empty after close-out).
        benchmark: Benchmark comparison, when a benchmark series was tracked.
    """

    config: BacktestConfig
    metrics: PerformanceMetrics
    equity_curve: list[EquityPoint]
    monthly_returns: list[MonthlyReturn]
    trades: list[Trade]
    final_positions: list[Position]
    benchmark: BenchmarkComparison | None = None

    def to_frame(self) -> pd.DataFrame:
        """Return the equity curve as a DataFrame indexed by date."""
        columns = [
            "date",
            "equity",
            "cash",
            "invested",
            "daily_return",
            "cumulative_return",
            "drawdown",
            "benchmark",
        ]
        df = pd.DataFrame([asdict(p) for p in self.equity_curve], columns=columns)
        return df.set_index("date")

    def trades_frame(self) -> pd.DataFrame:
        """Return all trades as a DataFrame."""
        columns = [f.name for f in fields(Trade)]
        return pd.DataFrame([asdict(t) for t in self.trades], columns=columns)


# -----------------------------------------------------------------------------
# Input data
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceBar:
    """OHLCV bar for one symbol and timestamp."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", to_datetime(self.timestamp))


@dataclass
class BacktestData:
    """Historical price data for a backtest.

    Attributes:
        symbols: Symbols in the universe.
        prices: Symbol -> bars in ascending timestamp order.
        start_date: First date to simulate (inclusive).
        end_date: Last date to simulate (inclusive).
    """

    symbols: list[str]
    prices: dict[str, list[PriceBar]]
    start_date: datetime
    end_date: datetime

    def __post_init__(self) -> None:
        self.start_date = to_datetime(self.start_date)
        self.end_date = to_datetime(self.end_date)

    @classmethod
    def from_frames(
        cls,
        frames: dict[str, pd.DataFrame],
        start_date: Any | None = None,
        end_date: Any | None = None,
    ) -> BacktestData:
        """Build backtest data from OHLCV DataFrames.

        Each frame either carries a ``date`` column or a DatetimeIndex. Column
        names may be lower-case or capitalised (``close`` or ``Close``).

        Args:
            frames: Symbol -> OHLCV DataFrame.
            start_date: First date to simulate (defaults to earliest bar).
            end_date: Last date to simulate (defaults to latest bar).

        Returns:
            BacktestData with bars sorted ascending per symbol.
        """
        prices: dict[str, list[PriceBar]] = {}

        for symbol, df in frames.items():
            if df is None or df.empty:
                continue
            if "date" in df.columns:
                timestamps = pd.to_datetime(df["date"])
            elif "Date" in df.columns:
                timestamps = pd.to_datetime(df["Date"])
            else:
                timestamps = pd.to_datetime(df.index.to_series())

            bars = []
            for ts, (_, row) in zip(timestamps, df.iterrows()):
                bars.append(
                    PriceBar(
                        timestamp=ts,
                        open=float(row.get("open", row.get("Open", 0))),
                        high=float(row.get("high", row.get("High", 0))),
                        low=float(row.get("low", row.get("Low", 0))),
                        close=float(row.get("close", row.get("Close", 0))),
                        volume=float(row.get("volume", row.get("Volume", 0))),
                    )
                )
            bars.sort(key=lambda b: b.timestamp)
            prices[symbol] = bars

        all_timestamps = [bar.timestamp for bars in prices.values() for bar in bars]
        if start_date is None:
            start_date = min(all_timestamps) if all_timestamps else datetime.min
        if end_date is None:
            end_date = max(all_timestamps) if all_timestamps else datetime.min

        return cls(
            symbols=list(frames.keys()),
            prices=prices,
            start_date=start_date,
            end_date=end_date,
        )
