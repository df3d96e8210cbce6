"""Trading signals consumed by the backtest engine."""

from quantsim.strategies.signals import (
    ActionSignal,
    DirectionSignal,
    FactorContribution,
    Signal,
    SignalGenerator,
    SignalLike,
    StrategyResult,
    TradeAction,
    normalize_signal,
)

__all__ = [
    "ActionSignal",
    "DirectionSignal",
    "FactorContribution",
    "Signal",
    "SignalGenerator",
    "SignalLike",
    "StrategyResult",
    "TradeAction",
    "normalize_signal",
]
