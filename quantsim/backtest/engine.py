"""Backtesting Engine - simulates strategy performance on historical data."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

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
    EquityPoint,
    PriceBar,
    to_datetime,
)
from quantsim.strategies.signals import (
    Signal,
    SignalGenerator,
    SignalLike,
    StrategyResult,
    normalize_signal,
)

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = BacktestConfig()

# Sizing defaults applied when the config leaves them unset
DEFAULT_FIXED_POSITION_SIZE = 10000.0
DEFAULT_POSITION_SIZE_PERCENT = 5.0

KELLY_FRACTION = 0.25  # quarter Kelly


class BacktestEngine:
    """Engine for backtesting trading strategies.

    Simulates a signal generator day by day against historical prices with
    commission, slippage, position limits, and a rebalance cadence. All
    positions are closed on the final date so metrics reflect realized P&L.

    Example:
        >>> engine = BacktestEngine(initial_capital=50000.0, commission=0.001)
        >>> result = engine.run(data, my_signal_generator)
        >>> print(f"Total return: {result.metrics.total_return_percent:.2f}%")
    """

    def __init__(self, config: BacktestConfig | None = None, **overrides: Any) -> None:
        """Initialize the backtest engine.

        Args:
            config: Base configuration (defaults to DEFAULT_CONFIG).
            **overrides: Individual BacktestConfig fields to override.
                ``commission`` and ``slippage`` accept a bare number.
        """
        base = config or DEFAULT_CONFIG
        self.config = dataclasses.replace(base, **overrides) if overrides else base

        # Internal state
        self.portfolio = self._new_portfolio()
        self._equity_curve: list[EquityPoint] = []
        self._benchmark_prices: list[float] = []
        self._kelly_warned = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> BacktestEngine:
        """Create an engine configured from ``BACKTEST_*`` environment settings.

        Args:
            settings: Settings to use; loads the cached settings when omitted.

        Returns:
            Configured BacktestEngine.
        """
        if settings is None:
            from config.settings import get_settings

            settings = get_settings()

        return cls(settings.to_backtest_config())

    def _new_portfolio(self) -> Portfolio:
        return Portfolio(
            self.config.initial_capital,
            self.config.commission,
            self.config.slippage,
            self.config.allow_fractional,
        )

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def get_config(self) -> BacktestConfig:
        """Get the current configuration."""
        return self.config

    def set_config(self, **changes: Any) -> None:
        """Update configuration fields and rebuild the portfolio.

        Args:
            **changes: BacktestConfig fields to replace.

        Raises:
            InvalidConfigError: If the resulting configuration is invalid.
        """
        self.config = dataclasses.replace(self.config, **changes)
        self.portfolio = self._new_portfolio()

    # -------------------------------------------------------------------------
    # Simulation
    # -------------------------------------------------------------------------

    def run(self, data: BacktestData, signal_generator: SignalGenerator) -> BacktestResult:
        """Run a backtest on historical data.

        Args:
            data: Price data and the date range to simulate.
            signal_generator: Called once per rebalance date with the date and
                that date's price bars; returns signals.

        Returns:
            BacktestResult with equity curve, trades, and metrics.
        """
        # Initialize state
        self.portfolio.reset(self.config.initial_capital)
        self._equity_curve = []
        self._benchmark_prices = []

        bars_by_date = self._index_bars(data.prices)

        trading_dates = self._get_trading_dates(
            bars_by_date, to_datetime(data.start_date), to_datetime(data.end_date)
        )
        if not trading_dates:
            logger.warning(
                f"No trading dates between {data.start_date.date()} and {data.end_date.date()}"
            )
            return self._empty_result()

        benchmark_symbol = self._benchmark_symbol(data.prices)

        logger.info(
            f"Starting backtest: {len(data.symbols)} symbols, "
            f"{trading_dates[0].date()} to {trading_dates[-1].date()} "
            f"({len(trading_dates)} days), capital={self.config.initial_capital:,.2f}"
        )

        initial_capital = self.config.initial_capital
        prev_equity = initial_capital
        peak = initial_capital

        for i, current_date in enumerate(trading_dates):
            bars = self._get_price_bars_for_date(bars_by_date, current_date)
            prices = {symbol: bar.close for symbol, bar in bars.items()}

            self.portfolio.mark_to_market(prices, current_date)

            if self._should_rebalance(i, trading_dates):
                # Fresh snapshot per call; the generator may not retain it
                signals = signal_generator(current_date, dict(bars))
                self._execute_signals(signals, prices, current_date)

            # Record equity point
            equity = self.portfolio.get_total_value()
            cash = self.portfolio.get_cash()
            daily_return = (equity - prev_equity) / prev_equity * 100 if prev_equity > 0 else 0.0
            cumulative_return = (equity - initial_capital) / initial_capital * 100
            drawdown = (peak - equity) / peak * 100 if peak > 0 else 0.0

            benchmark_price = prices.get(benchmark_symbol) if benchmark_symbol else None
            if benchmark_price:
                self._benchmark_prices.append(benchmark_price)

            self._equity_curve.append(
                EquityPoint(
                    date=current_date,
                    equity=equity,
                    cash=cash,
                    invested=equity - cash,
                    daily_return=daily_return,
                    cumulative_return=cumulative_return,
                    drawdown=drawdown,
                    benchmark=benchmark_price or None,
                )
            )

            peak = max(peak, equity)
            prev_equity = equity

        # Close all positions at end
        final_date = trading_dates[-1]
        final_prices = {
            symbol: bar.close
            for symbol, bar in self._get_price_bars_for_date(bars_by_date, final_date).items()
        }
        self.portfolio.close_all(final_prices, final_date)

        result = self._create_result()

        logger.info(
            f"Backtest complete: {len(result.trades)} trades, "
            f"final value={result.metrics.final_value:,.2f} "
            f"({result.metrics.total_return_percent:+.2f}%)"
        )

        return result

    def run_with_strategy(
        self,
        data: BacktestData,
        strategy_results: Mapping[datetime, StrategyResult | Sequence[SignalLike]],
    ) -> BacktestResult:
        """Run a backtest with pre-generated strategy output.

        Args:
            data: Price data and the date range to simulate.
            strategy_results: Date -> StrategyResult (or a plain list of
                signals). Dates without an entry produce no signals.

        Returns:
            BacktestResult with equity curve, trades, and metrics.
        """

        def replay(current_date: datetime, _bars: dict[str, PriceBar]) -> Sequence[SignalLike]:
            result = strategy_results.get(current_date)
            if result is None:
                return []
            if isinstance(result, StrategyResult):
                return result.signals
            return result

        return self.run(data, replay)

    # -------------------------------------------------------------------------
    # Signal execution
    # -------------------------------------------------------------------------

    def _execute_signals(
        self, signals: Sequence[SignalLike], prices: dict[str, float], timestamp: datetime
    ) -> None:
        """Execute one batch of signals: sells first, then sized buys.

        Args:
            signals: Raw signals from the generator.
            prices: Symbol -> close price for the date.
            timestamp: Execution time.
        """
        normalized = [normalize_signal(s) for s in signals]

        # Highest confidence first; sorted() is stable for ties
        ordered = sorted(normalized, key=lambda s: s.confidence, reverse=True)

        for signal in (s for s in ordered if s.action == "sell"):
            price = prices.get(signal.symbol)
            position = self.portfolio.get_position(signal.symbol)
            if not price or position is None or position.quantity <= 0:
                logger.debug(f"Skipping sell {signal.symbol}: no price or no open position")
                continue
            self.portfolio.sell(signal.symbol, position.quantity, price, timestamp)

        buy_signals = [s for s in ordered if s.action == "buy"]
        available_slots = max(0, self.config.max_positions - len(self.portfolio.get_positions()))
        signals_to_execute = buy_signals[:available_slots]

        if len(buy_signals) > available_slots:
            logger.debug(
                f"Max positions reached: dropping {len(buy_signals) - available_slots} buy signals"
            )

        # Equal-weight targets split the cash available before any buy fills
        batch_cash = self.portfolio.get_cash()

        for signal in signals_to_execute:
            price = prices.get(signal.symbol)
            if not price:
                logger.debug(f"Skipping buy {signal.symbol}: no price on {timestamp.date()}")
                continue

            if self.portfolio.get_position(signal.symbol) is not None:
                logger.debug(f"Skipping buy {signal.symbol}: position already open")
                continue

            quantity = self._calculate_position_size(
                signal, price, len(signals_to_execute), batch_cash
            )
            if quantity > 0:
                self.portfolio.buy(signal.symbol, quantity, price, timestamp)

    def _calculate_position_size(
        self,
        signal: Signal,
        price: float,
        total_signals: int,
        batch_cash: float | None = None,
    ) -> float:
        """Calculate the quantity to buy for a signal.

        Args:
            signal: Normalized buy signal.
            price: Reference price.
            total_signals: Number of buy signals in this batch.
            batch_cash: Cash at the start of the buy batch, for equal weighting.
                Defaults to current cash.

        Returns:
            Quantity to buy (0 means no trade).
        """
        portfolio_value = self.portfolio.get_total_value()
        cash = self.portfolio.get_cash()
        if batch_cash is None:
            batch_cash = cash
        sizing = self.config.position_sizing

        if sizing == "fixed":
            target_value = (
                self.config.fixed_position_size
                if self.config.fixed_position_size is not None
                else DEFAULT_FIXED_POSITION_SIZE
            )
        elif sizing == "percent":
            percent = (
                self.config.position_size_percent
                if self.config.position_size_percent is not None
                else DEFAULT_POSITION_SIZE_PERCENT
            )
            target_value = portfolio_value * percent / 100
        elif sizing == "equal_weight":
            target_value = batch_cash / max(1, total_signals)
        else:  # kelly
            if not self._kelly_warned:
                logger.warning(
                    "Kelly sizing uses signal confidence as an uncalibrated win probability"
                )
                self._kelly_warned = True
            kelly_fraction = signal.confidence - (1 - signal.confidence)
            target_value = portfolio_value * max(0.0, kelly_fraction * KELLY_FRACTION)

        # Apply max position constraint
        max_value = portfolio_value * self.config.max_position_percent / 100
        target_value = min(target_value, max_value, cash)

        if target_value <= 0 or price <= 0:
            return 0.0

        quantity = target_value / price

        # Whole units only: buy a single unit of an expensive asset if affordable
        if not self.config.allow_fractional and 0 < quantity < 1 and price <= cash:
            quantity = 1.0

        return quantity

    def _should_rebalance(self, day_index: int, dates: Sequence[datetime]) -> bool:
        """Check whether signals are generated on this date."""
        if day_index == 0:
            return True

        frequency = self.config.rebalance_frequency
        if frequency == "daily":
            return True
        if frequency == "never":
            return False

        prev, curr = dates[day_index - 1], dates[day_index]
        if frequency == "weekly":
            return prev.isocalendar()[:2] != curr.isocalendar()[:2]
        if frequency == "monthly":
            return (prev.year, prev.month) != (curr.year, curr.month)
        # quarterly
        return (prev.year, (prev.month - 1) // 3) != (curr.year, (curr.month - 1) // 3)

    # -------------------------------------------------------------------------
    # Price data helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _index_bars(prices: Mapping[str, Sequence[PriceBar]]) -> dict[str, dict[datetime, PriceBar]]:
        """Index each symbol's bars by timestamp."""
        return {symbol: {bar.timestamp: bar for bar in bars} for symbol, bars in prices.items()}

    @staticmethod
    def _get_trading_dates(
        bars_by_date: Mapping[str, Mapping[datetime, PriceBar]],
        start_date: datetime,
        end_date: datetime,
    ) -> list[datetime]:
        """Get the sorted union of bar timestamps within [start_date, end_date]."""
        dates: set[datetime] = set()
        for bars in bars_by_date.values():
            dates.update(bars.keys())

        return sorted(d for d in dates if start_date <= d <= end_date)

    @staticmethod
    def _get_price_bars_for_date(
        bars_by_date: Mapping[str, Mapping[datetime, PriceBar]], current_date: datetime
    ) -> dict[str, PriceBar]:
        """Get each symbol's bar on a date; symbols without one are omitted."""
        result: dict[str, PriceBar] = {}
        for symbol, bars in bars_by_date.items():
            bar = bars.get(current_date)
            if bar is not None:
                result[symbol] = bar
        return result

    def _benchmark_symbol(self, prices: Mapping[str, Sequence[PriceBar]]) -> str | None:
        """First configured benchmark symbol present in the price data."""
        for symbol in self.config.benchmark_symbols:
            if symbol in prices:
                return symbol
        return None

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def _create_result(self) -> BacktestResult:
        trades = self.portfolio.get_trades()
        metrics = calculate_metrics(
            self._equity_curve,
            trades,
            self.config.initial_capital,
            self.config.risk_free_rate,
        )

        benchmark = None
        if self._benchmark_prices:
            benchmark = calculate_benchmark_comparison(
                self._equity_curve, self._benchmark_prices, self.config.risk_free_rate
            )

        return BacktestResult(
            config=self.config,
            metrics=metrics,
            equity_curve=list(self._equity_curve),
            monthly_returns=calculate_monthly_returns(self._equity_curve),
            trades=trades,
            final_positions=self.portfolio.get_positions(),
            benchmark=benchmark,
        )

    def _empty_result(self) -> BacktestResult:
        return BacktestResult(
            config=self.config,
            metrics=calculate_metrics([], [], self.config.initial_capital),
            equity_curve=[],
            monthly_returns=[],
            trades=[],
            final_positions=[],
        )


def create_backtest_engine(config: BacktestConfig | None = None, **overrides: Any) -> BacktestEngine:
    """Create a new backtest engine.

    Args:
        config: Base configuration (defaults to DEFAULT_CONFIG).
        **overrides: Individual BacktestConfig fields to override.

    Returns:
        Configured BacktestEngine.
    """
    return BacktestEngine(config, **overrides)
