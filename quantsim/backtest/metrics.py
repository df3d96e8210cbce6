"""Performance Metrics Calculator - returns, risk, drawdown, and trade statistics."""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

from quantsim.backtest.types import (
    BenchmarkComparison,
    EquityPoint,
    MonthlyReturn,
    PerformanceMetrics,
    Trade,
)

TRADING_DAYS_PER_YEAR = 252

# Risk-adjusted ratios are clamped to this magnitude
RATIO_LIMIT = 100.0

# Deviations below this are treated as zero volatility
_ZERO_TOLERANCE = 1e-12

# Largest exponent handed to math.expm1 before it would overflow
_MAX_EXPONENT = 700.0


def calculate_metrics(
    equity_curve: Sequence[EquityPoint],
    trades: Sequence[Trade],
    initial_capital: float,
    risk_free_rate: float = 0.02,
) -> PerformanceMetrics:
    """Calculate all performance metrics for a completed backtest.

    Args:
        equity_curve: One point per trading date.
        trades: All fills from the run.
        initial_capital: Starting capital.
        risk_free_rate: Annualized risk-free rate.

    Returns:
        PerformanceMetrics. An empty curve yields all-zero metrics.
    """
    if not equity_curve:
        return PerformanceMetrics()

    equity = _equity_values(equity_curve)
    final_value = float(equity[-1])
    trading_days = len(equity_curve)

    # Returns
    total_return = final_value - initial_capital
    total_return_percent = total_return / initial_capital * 100

    years = trading_days / TRADING_DAYS_PER_YEAR
    cagr = _cagr(initial_capital, final_value, years)

    daily_returns = _daily_returns(equity)
    volatility = _volatility(daily_returns) * 100

    # Risk-adjusted returns
    sharpe_ratio = calculate_sharpe_ratio(daily_returns, risk_free_rate)
    sortino_ratio = calculate_sortino_ratio(daily_returns, risk_free_rate)

    max_drawdown, max_drawdown_duration, avg_drawdown = calculate_drawdown_stats(equity)
    calmar_ratio = cagr / max_drawdown if max_drawdown != 0 else 0.0

    trade_stats = _trade_stats(trades)

    return PerformanceMetrics(
        total_return=total_return,
        total_return_percent=total_return_percent,
        annualized_return=cagr,
        cagr=cagr,
        volatility=volatility,
        sharpe_ratio=sharpe_ratio,
        sortino_ratio=sortino_ratio,
        calmar_ratio=calmar_ratio,
        max_drawdown=max_drawdown,
        max_drawdown_duration=max_drawdown_duration,
        avg_drawdown=avg_drawdown,
        trading_days=trading_days,
        start_date=equity_curve[0].date,
        end_date=equity_curve[-1].date,
        final_value=final_value,
        **trade_stats,
    )


def calculate_sharpe_ratio(daily_returns: np.ndarray, risk_free_rate: float) -> float:
    """Annualized Sharpe ratio of daily returns, clamped to ±100.

    Returns exactly 0 with fewer than two returns or zero deviation.
    """
    if len(daily_returns) < 2:
        return 0.0

    excess = daily_returns - risk_free_rate / TRADING_DAYS_PER_YEAR
    std = float(np.std(excess, ddof=1))
    if not math.isfinite(std) or std < _ZERO_TOLERANCE:
        return 0.0

    sharpe = float(np.mean(excess)) / std * math.sqrt(TRADING_DAYS_PER_YEAR)
    return _clamp_ratio(sharpe)


def calculate_sortino_ratio(daily_returns: np.ndarray, risk_free_rate: float) -> float:
    """Annualized Sortino ratio of daily returns, clamped to ±100.

    Downside deviation is the root mean square of the negative excess
    returns. With no negative excess returns the ratio saturates at +100
    for a positive mean, else 0.
    """
    if len(daily_returns) < 2:
        return 0.0

    excess = daily_returns - risk_free_rate / TRADING_DAYS_PER_YEAR
    mean_excess = float(np.mean(excess))

    negative = excess[excess < 0]
    if len(negative) == 0:
        return RATIO_LIMIT if mean_excess > 0 else 0.0

    downside = math.sqrt(float(np.mean(negative**2)))
    if downside < _ZERO_TOLERANCE:
        return 0.0

    sortino = mean_excess / downside * math.sqrt(TRADING_DAYS_PER_YEAR)
    return _clamp_ratio(sortino)


def calculate_drawdown_stats(equity: Sequence[float] | np.ndarray) -> tuple[float, int, float]:
    """Drawdown statistics for an equity series.

    The running peak starts at the first value.

    Args:
        equity: Equity values in chronological order.

    Returns:
        Tuple of (max drawdown %, longest run of points below peak,
        average drawdown % over below-peak points).
    """
    if len(equity) == 0:
        return 0.0, 0, 0.0

    peak = float(equity[0])
    max_drawdown = 0.0
    drawdowns: list[float] = []
    run_length = 0
    max_duration = 0

    for value in equity:
        value = float(value)
        if value < peak:
            drawdown = (peak - value) / peak * 100 if peak > 0 else 0.0
            drawdowns.append(drawdown)
            max_drawdown = max(max_drawdown, drawdown)
            run_length += 1
            max_duration = max(max_duration, run_length)
        else:
            peak = value
            run_length = 0

    avg_drawdown = sum(drawdowns) / len(drawdowns) if drawdowns else 0.0
    return max_drawdown, max_duration, avg_drawdown


def calculate_benchmark_comparison(
    equity_curve: Sequence[EquityPoint],
    benchmark_prices: Sequence[float],
    risk_free_rate: float = 0.02,
) -> BenchmarkComparison:
    """Compare the equity curve against a benchmark price series.

    Both series are truncated to the shorter length.

    Args:
        equity_curve: Strategy equity curve.
        benchmark_prices: Benchmark closes aligned to the curve's dates.
        risk_free_rate: Annualized risk-free rate.

    Returns:
        BenchmarkComparison. Fewer than two aligned points yields the neutral
        comparison (beta 1, everything else 0).
    """
    if len(equity_curve) < 2 or len(benchmark_prices) < 2:
        return BenchmarkComparison()

    n = min(len(equity_curve), len(benchmark_prices))
    equity = _equity_values(equity_curve[:n])
    benchmark = np.asarray(benchmark_prices[:n], dtype=float)

    strategy_returns = _daily_returns(equity)
    benchmark_returns = _daily_returns(benchmark)

    # Benchmark standalone metrics
    benchmark_return = _ratio_change(benchmark[-1], benchmark[0])
    benchmark_volatility = _volatility(benchmark_returns) * 100
    benchmark_sharpe = calculate_sharpe_ratio(benchmark_returns, risk_free_rate)
    benchmark_max_drawdown, _, _ = calculate_drawdown_stats(benchmark)

    correlation = _correlation(strategy_returns, benchmark_returns)
    beta = _beta(strategy_returns, benchmark_returns)

    # Jensen's alpha on annualized mean returns
    annual_strategy = float(np.mean(strategy_returns)) * TRADING_DAYS_PER_YEAR
    annual_benchmark = float(np.mean(benchmark_returns)) * TRADING_DAYS_PER_YEAR
    alpha = annual_strategy - (risk_free_rate + beta * (annual_benchmark - risk_free_rate))

    active_returns = strategy_returns - benchmark_returns
    tracking_error = _volatility(active_returns) * 100

    annual_excess = float(np.mean(active_returns)) * TRADING_DAYS_PER_YEAR * 100
    information_ratio = (
        annual_excess / tracking_error if tracking_error > _ZERO_TOLERANCE else 0.0
    )

    strategy_return = _ratio_change(equity[-1], equity[0])

    return BenchmarkComparison(
        benchmark_return=benchmark_return,
        benchmark_volatility=benchmark_volatility,
        benchmark_sharpe=benchmark_sharpe,
        benchmark_max_drawdown=benchmark_max_drawdown,
        alpha=_finite(alpha * 100),
        beta=beta,
        correlation=correlation,
        information_ratio=_finite(information_ratio),
        tracking_error=tracking_error,
        excess_return=strategy_return - benchmark_return,
    )


def calculate_monthly_returns(equity_curve: Sequence[EquityPoint]) -> list[MonthlyReturn]:
    """Bucket the equity curve into calendar-month returns.

    Args:
        equity_curve: Strategy equity curve.

    Returns:
        One MonthlyReturn per (year, month) in chronological order, computed
        as last/first equity in the month. Months are 1-12.
    """
    buckets: dict[tuple[int, int], list[EquityPoint]] = {}
    for point in equity_curve:
        buckets.setdefault((point.date.year, point.date.month), []).append(point)

    monthly: list[MonthlyReturn] = []
    for (year, month), points in sorted(buckets.items()):
        benchmark = None
        if points[0].benchmark and points[-1].benchmark is not None:
            benchmark = _ratio_change(points[-1].benchmark, points[0].benchmark)
        monthly.append(
            MonthlyReturn(
                year=year,
                month=month,
                return_percent=_ratio_change(points[-1].equity, points[0].equity),
                benchmark=benchmark,
            )
        )

    return monthly


# -----------------------------------------------------------------------------
# Private helpers
# -----------------------------------------------------------------------------


def _equity_values(equity_curve: Sequence[EquityPoint]) -> np.ndarray:
    return np.array([p.equity for p in equity_curve], dtype=float)


def _daily_returns(values: np.ndarray) -> np.ndarray:
    """Simple returns between consecutive values; zero where the base is zero."""
    if len(values) < 2:
        return np.array([], dtype=float)
    prev = values[:-1]
    diff = np.diff(values)
    with np.errstate(divide="ignore", invalid="ignore"):
        returns = np.where(prev != 0, diff / np.where(prev != 0, prev, 1.0), 0.0)
    return returns


def _volatility(returns: np.ndarray) -> float:
    """Annualized sample standard deviation (as a fraction)."""
    if len(returns) < 2:
        return 0.0
    std = float(np.std(returns, ddof=1))
    return _finite(std * math.sqrt(TRADING_DAYS_PER_YEAR))


def _cagr(initial: float, final: float, years: float) -> float:
    """Compound annual growth rate in percent, computed in log space."""
    if years <= 0 or initial <= 0:
        return 0.0
    if final <= 0:
        return -100.0
    exponent = math.log(final / initial) / years
    return math.expm1(min(exponent, _MAX_EXPONENT)) * 100


def _correlation(x: np.ndarray, y: np.ndarray) -> float:
    """Pearson correlation, 0 when undefined."""
    if len(x) != len(y) or len(x) < 2:
        return 0.0
    dx = x - x.mean()
    dy = y - y.mean()
    denom = math.sqrt(float(np.sum(dx * dx)) * float(np.sum(dy * dy)))
    return float(np.sum(dx * dy)) / denom if denom > 0 else 0.0


def _beta(strategy: np.ndarray, benchmark: np.ndarray) -> float:
    """Covariance over benchmark variance, 1 when the benchmark is flat."""
    if len(strategy) != len(benchmark) or len(strategy) < 2:
        return 1.0
    ds = strategy - strategy.mean()
    db = benchmark - benchmark.mean()
    var_benchmark = float(np.sum(db * db))
    return float(np.sum(ds * db)) / var_benchmark if var_benchmark > 0 else 1.0


def _ratio_change(end: float, start: float) -> float:
    """Percent change from start to end, 0 for a zero start."""
    if start == 0:
        return 0.0
    return (float(end) / float(start) - 1) * 100


def _clamp_ratio(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(-RATIO_LIMIT, min(RATIO_LIMIT, value))


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def _trade_stats(trades: Sequence[Trade]) -> dict[str, float | int]:
    """Trade statistics over closing (sell) trades that carry realized P&L."""
    closed = [t for t in trades if t.is_closing]

    if not closed:
        return {"total_trades": len(trades)}

    wins = [t.pnl for t in closed if t.pnl is not None and t.pnl > 0]
    losses = [t.pnl for t in closed if t.pnl is not None and t.pnl <= 0]

    total_win = sum(wins)
    total_loss = abs(sum(losses))

    avg_win = total_win / len(wins) if wins else 0.0
    avg_loss = total_loss / len(losses) if losses else 0.0

    holding_periods = [t.holding_period_days for t in closed if t.holding_period_days is not None]

    return {
        "total_trades": len(trades),
        "winning_trades": len(wins),
        "losing_trades": len(losses),
        "win_rate": len(wins) / len(closed) * 100,
        "profit_factor": _win_loss_ratio(total_win, total_loss),
        "avg_win": avg_win,
        "avg_loss": avg_loss,
        "avg_win_loss_ratio": _win_loss_ratio(avg_win, avg_loss),
        "largest_win": max(wins) if wins else 0.0,
        "largest_loss": abs(min(losses)) if losses else 0.0,
        "avg_holding_period": sum(holding_periods) / len(closed),
    }


def _win_loss_ratio(win: float, loss: float) -> float:
    """win / loss; inf when there are wins but no losses, 0 when neither."""
    if loss > 0:
        return win / loss
    return math.inf if win > 0 else 0.0
