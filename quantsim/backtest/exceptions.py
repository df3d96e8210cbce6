"""Custom exceptions for backtest module."""


class BacktestError(Exception):
    """Base exception for backtest errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class InvalidConfigError(BacktestError, ValueError):
    """Raised when a backtest configuration value is out of range."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        if field:
            message = f"Invalid value for '{field}': {message}"
        super().__init__(message)
