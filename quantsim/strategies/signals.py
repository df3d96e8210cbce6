"""Trading signals - the canonical signal record and decoding of external signal shapes.

Signal generators are plain callables. Two historical payload shapes are
accepted and decoded once, at the engine boundary:

- ``ActionSignal``: ``{"action": "buy" | "sell" | "hold", "confidence": 0.8}``
- ``DirectionSignal``: ``{"direction": "long" | "short", "strength": 0.8}``

Anything else decodes to a ``hold`` signal with confidence 0.5.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from quantsim.backtest.types import PriceBar, to_datetime

logger = logging.getLogger(__name__)

TradeAction = Literal["buy", "sell", "hold"]

DEFAULT_CONFIDENCE = 0.5

_SIGNAL_KEYS = (
    "symbol",
    "action",
    "direction",
    "confidence",
    "strength",
    "factors",
    "timestamp",
    "metadata",
)


@dataclass(frozen=True)
class FactorContribution:
    """Contribution of one factor to a signal.

    Attributes:
        name: Factor name.
        value: Raw factor value.
        weight: Weight applied to the factor.
        contribution: value × weight.
    """

    name: str
    value: float
    weight: float
    contribution: float


@dataclass(frozen=True)
class Signal:
    """Canonical trading signal consumed by the backtest engine.

    Attributes:
        symbol: Ticker symbol.
        action: 'buy', 'sell', or 'hold'.
        confidence: Conviction in [0, 1]; used for ordering and Kelly sizing.
        strength: Raw signal score as reported by the strategy.
        factors: Factor attributions.
        timestamp: When the signal was generated.
        metadata: Free-form strategy metadata.
    """

    symbol: str
    action: TradeAction
    confidence: float
    strength: float
    factors: list[FactorContribution] = field(default_factory=list)
    timestamp: datetime | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class StrategyResult:
    """Output of one strategy evaluation, keyed by date in ``run_with_strategy``."""

    strategy_name: str
    signals: list[Any]
    timestamp: datetime | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    execution_time_ms: float = 0.0
    metadata: dict[str, Any] | None = None


# -----------------------------------------------------------------------------
# External payload shapes
# -----------------------------------------------------------------------------

_FACTOR_ADAPTER = TypeAdapter(FactorContribution)


class _SignalPayload(BaseModel):
    """Fields shared by both external signal shapes."""

    model_config = ConfigDict(extra="ignore")

    symbol: str = ""
    confidence: float | None = None
    strength: float | None = None
    factors: list[FactorContribution] = Field(default_factory=list)
    timestamp: datetime | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("symbol", mode="before")
    @classmethod
    def parse_symbol(cls, v: Any) -> str:
        """Coerce symbol to string."""
        return "" if v is None else str(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> datetime | None:
        """Parse timestamps; bare numbers are epoch milliseconds, junk becomes None."""
        if v is None:
            return None
        try:
            return to_datetime(v)
        except (ValueError, TypeError, OverflowError):
            logger.debug(f"Dropping unparseable signal timestamp: {v!r}")
            return None

    @field_validator("confidence", "strength", mode="before")
    @classmethod
    def parse_score(cls, v: Any) -> float | None:
        """Keep numeric scores only."""
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return float(v)

    @field_validator("factors", mode="before")
    @classmethod
    def parse_factors(cls, v: Any) -> list[FactorContribution]:
        """Keep the factor entries that decode; a non-list means no factors."""
        if not isinstance(v, list):
            return []

        factors: list[FactorContribution] = []
        for item in v:
            try:
                factors.append(_FACTOR_ADAPTER.validate_python(item))
            except ValidationError:
                logger.debug(f"Dropping malformed signal factor: {item!r}")
        return factors

    @field_validator("metadata", mode="before")
    @classmethod
    def parse_metadata(cls, v: Any) -> dict[str, Any] | None:
        """Keep mapping metadata only."""
        return dict(v) if isinstance(v, Mapping) else None

    @property
    def resolved_action(self) -> TradeAction:
        """Action carried by this shape; the shared base carries none."""
        return "hold"

    def to_signal(self) -> Signal:
        """Convert to the canonical signal."""
        if self.confidence is not None:
            confidence = self.confidence
        elif self.strength is not None:
            confidence = self.strength
        else:
            confidence = DEFAULT_CONFIDENCE

        return Signal(
            symbol=self.symbol,
            action=self.resolved_action,
            confidence=min(1.0, max(0.0, confidence)),
            strength=self.strength if self.strength is not None else confidence,
            factors=list(self.factors),
            timestamp=self.timestamp,
            metadata=self.metadata,
        )


class ActionSignal(_SignalPayload):
    """Signal expressed as ``action`` + ``confidence``."""

    kind: Literal["action"] = "action"
    action: TradeAction

    @property
    def resolved_action(self) -> TradeAction:
        return self.action


class DirectionSignal(_SignalPayload):
    """Signal expressed as ``direction`` + ``strength``."""

    kind: Literal["direction"] = "direction"
    direction: Literal["long", "short", "buy", "sell"]

    @property
    def resolved_action(self) -> TradeAction:
        return "buy" if self.direction in ("long", "buy") else "sell"


SignalLike = Union[Signal, ActionSignal, DirectionSignal, Mapping[str, Any]]
SignalGenerator = Callable[[datetime, dict[str, PriceBar]], Sequence[SignalLike]]


def _as_mapping(raw: Any) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    # Attribute-style objects: pick up only the known signal fields
    return {key: getattr(raw, key) for key in _SIGNAL_KEYS if hasattr(raw, key)}


def normalize_signal(raw: Any) -> Signal:
    """Decode any supported signal shape into the canonical ``Signal``.

    Args:
        raw: A ``Signal``, an ``ActionSignal``/``DirectionSignal``, a mapping
            in either shape, or an object exposing the same attributes.

    Returns:
        Canonical signal. Unrecognized shapes yield ``action='hold'`` with
        confidence 0.5.
    """
    if isinstance(raw, Signal):
        if 0.0 <= raw.confidence <= 1.0:
            return raw
        data: dict[str, Any] = {
            "symbol": raw.symbol,
            "action": raw.action,
            "confidence": raw.confidence,
            "strength": raw.strength,
            "factors": raw.factors,
            "timestamp": raw.timestamp,
            "metadata": raw.metadata,
        }
    elif isinstance(raw, _SignalPayload):
        return raw.to_signal()
    else:
        data = _as_mapping(raw)

    for model in (ActionSignal, DirectionSignal):
        try:
            return model.model_validate(data).to_signal()
        except ValidationError:
            continue

    logger.debug(f"Unrecognized signal shape, defaulting to hold: {data!r}")
    try:
        return _SignalPayload.model_validate(data).to_signal()
    except ValidationError:
        return Signal(
            symbol=str(data.get("symbol") or ""),
            action="hold",
            confidence=DEFAULT_CONFIDENCE,
            strength=DEFAULT_CONFIDENCE,
        )
