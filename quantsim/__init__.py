"""quantsim - strategy backtesting simulation engine."""

__version__ = "0.1.0"
