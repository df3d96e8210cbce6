"""Portfolio Ledger - cash, positions, fills, and P&L tracking for a backtest."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import datetime

import numpy as np

from quantsim.backtest.types import (
    POSITION_EPSILON,
    CommissionConfig,
    PortfolioSnapshot,
    Position,
    SlippageConfig,
    Trade,
    TradeSide,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

DEFAULT_COMMISSION = CommissionConfig()
DEFAULT_SLIPPAGE = SlippageConfig()


class Portfolio:
    """Tracks cash, open positions, and the trade history for one backtest.

    Every fill pays commission and slippage. Slippage always moves the
    execution price against the trader. Rejected orders (bad quantity,
    insufficient cash, nothing to sell) return None and leave state untouched.

    Example:
        >>> portfolio = Portfolio(initial_capital=100000.0)
        >>> trade = portfolio.buy("AAPL", 100, 150.0, datetime(2024, 1, 2))
        >>> portfolio.get_position("AAPL").quantity
        100
    """

    def __init__(
        self,
        initial_capital: float,
        commission: CommissionConfig = DEFAULT_COMMISSION,
        slippage: SlippageConfig = DEFAULT_SLIPPAGE,
        allow_fractional: bool = False,
    ) -> None:
        """Initialize the portfolio.

        Args:
            initial_capital: Starting cash.
            commission: Commission schedule.
            slippage: Slippage model.
            allow_fractional: Whether fractional quantities can be traded.
        """
        self.commission_config = commission
        self.slippage_config = slippage
        self.allow_fractional = allow_fractional

        # Internal state
        self._cash: float = initial_capital
        self._positions: dict[str, Position] = {}
        self._trades: list[Trade] = []
        self._trade_counter: int = 0
        self._rng = np.random.default_rng(slippage.seed)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    def get_cash(self) -> float:
        """Get current cash balance."""
        return self._cash

    def get_positions(self) -> list[Position]:
        """Get all open positions."""
        return list(self._positions.values())

    def get_position(self, symbol: str) -> Position | None:
        """Get the open position for a symbol, if any."""
        return self._positions.get(symbol)

    def get_trades(self) -> list[Trade]:
        """Get a copy of all executed trades."""
        return list(self._trades)

    def get_total_value(self) -> float:
        """Get cash plus the market value of all open positions."""
        return self._cash + sum(p.market_value for p in self._positions.values())

    def get_snapshot(
        self, timestamp: datetime, prev_value: float | None = None
    ) -> PortfolioSnapshot:
        """Capture the portfolio state.

        Args:
            timestamp: Snapshot time.
            prev_value: Previous total value, for the daily return.

        Returns:
            PortfolioSnapshot. ``cumulative_return`` is left at 0 for the caller.
        """
        total_value = self.get_total_value()
        daily_return = (total_value / prev_value - 1) * 100 if prev_value else 0.0

        return PortfolioSnapshot(
            timestamp=timestamp,
            cash=self._cash,
            positions=self.get_positions(),
            total_value=total_value,
            daily_return=daily_return,
            cumulative_return=0.0,
        )

    # -------------------------------------------------------------------------
    # Frictions
    # -------------------------------------------------------------------------

    def calculate_commission(self, quantity: float, price: float) -> float:
        """Calculate commission for a fill.

        Args:
            quantity: Filled quantity.
            price: Execution price.

        Returns:
            fixed_fee + |quantity × price| × percent_fee, clamped to
            [min_commission, max_commission].
        """
        cfg = self.commission_config
        commission = cfg.fixed_fee + abs(quantity * price) * cfg.percent_fee
        commission = max(commission, cfg.min_commission)
        return min(commission, cfg.max_commission)

    def calculate_slippage(self, price: float, side: TradeSide) -> float:
        """Calculate per-unit slippage for a fill.

        Args:
            price: Reference price.
            side: Trade side.

        Returns:
            Signed slippage: positive for buys, negative for sells.
        """
        cfg = self.slippage_config
        slippage = cfg.fixed + price * cfg.percent

        if cfg.randomize:
            slippage *= 0.5 + float(self._rng.random())  # 50% - 150%

        return slippage if side == "buy" else -slippage

    # -------------------------------------------------------------------------
    # Order execution
    # -------------------------------------------------------------------------

    def buy(
        self, symbol: str, quantity: float, price: float, timestamp: datetime
    ) -> Trade | None:
        """Execute a buy.

        Args:
            symbol: Ticker symbol.
            quantity: Requested quantity.
            price: Reference price before slippage.
            timestamp: Fill time.

        Returns:
            The filled Trade, or None if the order was rejected.
        """
        if quantity <= 0:
            logger.debug(f"Rejected buy {symbol}: non-positive quantity {quantity}")
            return None

        slippage = self.calculate_slippage(price, "buy")
        execution_price = price + slippage

        final_quantity = quantity if self.allow_fractional else math.floor(quantity)
        if final_quantity <= 0:
            logger.debug(f"Rejected buy {symbol}: quantity {quantity} rounds to zero")
            return None

        commission = self.calculate_commission(final_quantity, execution_price)
        total_cost = final_quantity * execution_price + commission

        if total_cost > self._cash:
            logger.debug(
                f"Rejected buy {symbol}: cost {total_cost:.2f} exceeds cash {self._cash:.2f}"
            )
            return None

        self._cash -= total_cost

        position = self._positions.get(symbol)
        if position is not None:
            total_quantity = position.quantity + final_quantity
            cost_basis = position.quantity * position.avg_cost + final_quantity * execution_price
            position.avg_cost = cost_basis / total_quantity
            position.quantity = total_quantity
            position.mark(execution_price, timestamp)
        else:
            self._positions[symbol] = Position(
                symbol=symbol,
                quantity=final_quantity,
                avg_cost=execution_price,
                current_price=execution_price,
                market_value=final_quantity * execution_price,
                unrealized_pnl=0.0,
                unrealized_pnl_percent=0.0,
                open_date=timestamp,
                last_update=timestamp,
            )

        return self._record_trade(
            timestamp=timestamp,
            symbol=symbol,
            side="buy",
            quantity=final_quantity,
            price=execution_price,
            commission=commission,
            slippage=slippage * final_quantity,
        )

    def sell(
        self, symbol: str, quantity: float, price: float, timestamp: datetime
    ) -> Trade | None:
        """Execute a sell against an open position.

        Never sells more than is held. Realized P&L adds the sell commission
        back, so ``pnl`` reflects the price move after slippage while cash
        reflects the commission.

        Args:
            symbol: Ticker symbol.
            quantity: Requested quantity.
            price: Reference price before slippage.
            timestamp: Fill time.

        Returns:
            The filled Trade with pnl fields, or None if the order was rejected.
        """
        if quantity <= 0:
            logger.debug(f"Rejected sell {symbol}: non-positive quantity {quantity}")
            return None

        position = self._positions.get(symbol)
        if position is None or position.quantity <= 0:
            logger.debug(f"Rejected sell {symbol}: no open position")
            return None

        slippage = self.calculate_slippage(price, "sell")
        execution_price = price + slippage

        requested = quantity if self.allow_fractional else math.floor(quantity)
        final_quantity = min(requested, position.quantity)
        if final_quantity <= 0:
            logger.debug(f"Rejected sell {symbol}: quantity {quantity} rounds to zero")
            return None

        commission = self.calculate_commission(final_quantity, execution_price)
        proceeds = final_quantity * execution_price - commission

        cost_basis = final_quantity * position.avg_cost
        pnl = proceeds - cost_basis + commission
        pnl_percent = (execution_price / position.avg_cost - 1) * 100

        elapsed = (timestamp - position.open_date).total_seconds()
        holding_period_days = math.ceil(elapsed / SECONDS_PER_DAY)

        self._cash += proceeds

        position.quantity -= final_quantity
        position.last_update = timestamp

        if position.quantity <= POSITION_EPSILON:
            del self._positions[symbol]
        else:
            position.mark(execution_price, timestamp)

        return self._record_trade(
            timestamp=timestamp,
            symbol=symbol,
            side="sell",
            quantity=final_quantity,
            price=execution_price,
            commission=commission,
            slippage=slippage * final_quantity,
            pnl=pnl,
            pnl_percent=pnl_percent,
            holding_period_days=holding_period_days,
        )

    def close_all(self, prices: Mapping[str, float], timestamp: datetime) -> list[Trade]:
        """Sell every open position that has a price.

        Args:
            prices: Symbol -> close price.
            timestamp: Fill time.

        Returns:
            Trades executed. Symbols without a price are skipped.
        """
        trades: list[Trade] = []

        for symbol, position in list(self._positions.items()):
            price = prices.get(symbol)
            if not price or position.quantity <= 0:
                logger.debug(f"No closing price for {symbol}, position left open")
                continue
            trade = self.sell(symbol, position.quantity, price, timestamp)
            if trade is not None:
                trades.append(trade)

        return trades

    def mark_to_market(self, prices: Mapping[str, float], timestamp: datetime) -> None:
        """Revalue open positions; positions without a price keep their last mark.

        Args:
            prices: Symbol -> close price.
            timestamp: Mark time.
        """
        for symbol, position in self._positions.items():
            price = prices.get(symbol)
            if price:
                position.mark(price, timestamp)

    def reset(self, initial_capital: float) -> None:
        """Reset to an empty portfolio holding only cash.

        Args:
            initial_capital: Starting cash.
        """
        self._cash = initial_capital
        self._positions = {}
        self._trades = []
        self._trade_counter = 0
        self._rng = np.random.default_rng(self.slippage_config.seed)

    def _record_trade(self, **fields: object) -> Trade:
        self._trade_counter += 1
        trade = Trade(id=f"T{self._trade_counter}", status="filled", **fields)  # type: ignore[arg-type]
        self._trades.append(trade)
        return trade
