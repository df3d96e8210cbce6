"""Backtest settings using Pydantic BaseSettings."""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import TYPE_CHECKING, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from quantsim.backtest.types import BacktestConfig


class Settings(BaseSettings):
    """Backtest settings loaded from ``BACKTEST_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BACKTEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Capital
    initial_capital: float = Field(
        default=100000.0,
        gt=0,
        description="Starting cash for each run",
    )

    # Commission
    commission_fixed_fee: float = Field(
        default=0.0,
        ge=0,
        description="Flat fee per trade",
    )
    commission_percent_fee: float = Field(
        default=0.001,
        ge=0,
        le=0.10,
        description="Fee as decimal of trade value (0.001 = 0.1%)",
    )
    commission_min: float = Field(
        default=0.0,
        ge=0,
        description="Minimum commission per trade",
    )
    commission_max: float = Field(
        default=math.inf,
        ge=0,
        description="Maximum commission per trade",
    )

    # Slippage
    slippage_fixed: float = Field(
        default=0.0,
        ge=0,
        description="Slippage in price units",
    )
    slippage_percent: float = Field(
        default=0.0005,
        ge=0,
        le=0.10,
        description="Slippage as decimal of price (0.0005 = 0.05%)",
    )
    slippage_randomize: bool = Field(
        default=False,
        description="Scale slippage by a random factor in [0.5, 1.5)",
    )
    slippage_seed: int | None = Field(
        default=None,
        description="Seed for randomized slippage",
    )

    # Position sizing
    position_sizing: Literal["fixed", "percent", "equal_weight", "kelly"] = Field(
        default="equal_weight",
        description="Sizing method for new positions",
    )
    fixed_position_size: float | None = Field(
        default=None,
        ge=0,
        description="Dollar size per position for 'fixed' sizing",
    )
    position_size_percent: float | None = Field(
        default=None,
        ge=0,
        le=100,
        description="Percent of portfolio per position for 'percent' sizing",
    )
    max_positions: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Maximum number of concurrent positions",
    )
    max_position_percent: float = Field(
        default=10.0,
        gt=0,
        le=100,
        description="Maximum single position as percent of portfolio",
    )

    # Simulation
    rebalance_frequency: Literal["daily", "weekly", "monthly", "quarterly", "never"] = Field(
        default="daily",
        description="How often the signal generator is consulted",
    )
    allow_fractional: bool = Field(
        default=True,
        description="Allow fractional share quantities",
    )
    risk_free_rate: float = Field(
        default=0.02,
        description="Annualized risk-free rate as decimal",
    )

    # Application Settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @model_validator(mode="after")
    def check_commission_bounds(self) -> Settings:
        """Ensure the commission floor does not exceed the cap."""
        if self.commission_min > self.commission_max:
            raise ValueError("commission_min must not exceed commission_max")
        return self

    def to_backtest_config(self) -> BacktestConfig:
        """Build the engine configuration from these settings.

        Returns:
            BacktestConfig: Frozen configuration for BacktestEngine.
        """
        from quantsim.backtest.types import BacktestConfig, CommissionConfig, SlippageConfig

        return BacktestConfig(
            initial_capital=self.initial_capital,
            commission=CommissionConfig(
                fixed_fee=self.commission_fixed_fee,
                percent_fee=self.commission_percent_fee,
                min_commission=self.commission_min,
                max_commission=self.commission_max,
            ),
            slippage=SlippageConfig(
                fixed=self.slippage_fixed,
                percent=self.slippage_percent,
                randomize=self.slippage_randomize,
                seed=self.slippage_seed,
            ),
            position_sizing=self.position_sizing,
            fixed_position_size=self.fixed_position_size,
            position_size_percent=self.position_size_percent,
            max_positions=self.max_positions,
            max_position_percent=self.max_position_percent,
            rebalance_frequency=self.rebalance_frequency,
            allow_fractional=self.allow_fractional,
            risk_free_rate=self.risk_free_rate,
        )

    def configure_logging(self) -> None:
        """Apply ``log_level`` to the root logger."""
        logging.basicConfig(
            level=self.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        logging.getLogger().setLevel(self.log_level)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Backtest settings loaded from environment variables.
    """
    return Settings()
