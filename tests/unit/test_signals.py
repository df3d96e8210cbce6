"""Unit tests for signal decoding."""

from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace

import pytest

from quantsim.strategies.signals import (
    DEFAULT_CONFIDENCE,
    ActionSignal,
    DirectionSignal,
    FactorContribution,
    Signal,
    normalize_signal,
)


class TestCanonicalSignal:
    """Tests for signals already in canonical form."""

    def test_signal_passthrough(self) -> None:
        """Test a valid Signal is returned unchanged."""
        signal = Signal(symbol="AAPL", action="buy", confidence=0.8, strength=1.2)

        assert normalize_signal(signal) is signal

    def test_signal_confidence_clamped(self) -> None:
        """Test an out-of-range confidence is clamped into [0, 1]."""
        signal = Signal(symbol="AAPL", action="sell", confidence=1.7, strength=1.7)

        result = normalize_signal(signal)

        assert result.action == "sell"
        assert result.confidence == 1.0
        assert result.strength == 1.7


class TestActionShape:
    """Tests for the action + confidence shape."""

    def test_action_mapping(self) -> None:
        """Test a mapping with action and confidence."""
        result = normalize_signal({"symbol": "AAPL", "action": "buy", "confidence": 0.8})

        assert result == Signal(symbol="AAPL", action="buy", confidence=0.8, strength=0.8)

    def test_strength_used_when_confidence_missing(self) -> None:
        """Test strength stands in for a missing confidence."""
        result = normalize_signal({"symbol": "MSFT", "action": "sell", "strength": 0.3})

        assert result.action == "sell"
        assert result.confidence == 0.3

    def test_default_confidence(self) -> None:
        """Test a signal without confidence or strength gets the default."""
        result = normalize_signal({"symbol": "MSFT", "action": "hold"})

        assert result.confidence == DEFAULT_CONFIDENCE
        assert result.strength == DEFAULT_CONFIDENCE

    def test_non_numeric_confidence_ignored(self) -> None:
        """Test a non-numeric confidence falls back to the default."""
        result = normalize_signal({"symbol": "MSFT", "action": "buy", "confidence": "high"})

        assert result.action == "buy"
        assert result.confidence == DEFAULT_CONFIDENCE

    def test_action_model(self) -> None:
        """Test an ActionSignal model instance decodes directly."""
        result = normalize_signal(ActionSignal(symbol="AAPL", action="buy", confidence=0.6))

        assert result.action == "buy"
        assert result.confidence == 0.6

    def test_attribute_object(self) -> None:
        """Test an object exposing signal attributes decodes like a mapping."""
        raw = SimpleNamespace(symbol="NVDA", action="sell", confidence=0.9, extra="ignored")

        result = normalize_signal(raw)

        assert result.symbol == "NVDA"
        assert result.action == "sell"
        assert result.confidence == 0.9


class TestDirectionShape:
    """Tests for the direction + strength shape."""

    @pytest.mark.parametrize(
        "direction,expected",
        [("long", "buy"), ("buy", "buy"), ("short", "sell"), ("sell", "sell")],
    )
    def test_direction_maps_to_action(self, direction: str, expected: str) -> None:
        """Test each direction maps to a trade action."""
        result = normalize_signal({"symbol": "AAPL", "direction": direction, "strength": 0.7})

        assert result.action == expected
        assert result.confidence == 0.7
        assert result.strength == 0.7

    def test_invalid_action_falls_back_to_direction(self) -> None:
        """Test an unknown action is ignored in favour of a valid direction."""
        result = normalize_signal(
            {"symbol": "AAPL", "action": "maybe", "direction": "long", "strength": 0.4}
        )

        assert result.action == "buy"

    def test_direction_model(self) -> None:
        """Test a DirectionSignal model instance decodes directly."""
        result = normalize_signal(DirectionSignal(symbol="AAPL", direction="short", strength=0.2))

        assert result.action == "sell"
        assert result.confidence == 0.2


class TestUnrecognizedShapes:
    """Tests for shapes that decode to hold."""

    def test_unknown_mapping_is_hold(self) -> None:
        """Test a mapping with neither action nor direction is a hold."""
        result = normalize_signal({"symbol": "AAPL", "score": 99})

        assert result.symbol == "AAPL"
        assert result.action == "hold"
        assert result.confidence == DEFAULT_CONFIDENCE

    def test_garbage_is_hold(self) -> None:
        """Test a value with no signal fields at all is a hold."""
        result = normalize_signal(42)

        assert result.action == "hold"
        assert result.symbol == ""
        assert result.confidence == DEFAULT_CONFIDENCE


class TestOptionalFields:
    """Tests for factors, timestamp, and metadata decoding."""

    def test_factors_decoded(self) -> None:
        """Test factor dictionaries are decoded into FactorContribution."""
        result = normalize_signal(
            {
                "symbol": "AAPL",
                "action": "buy",
                "confidence": 0.8,
                "factors": [
                    {"name": "momentum", "value": 1.2, "weight": 0.5, "contribution": 0.6}
                ],
            }
        )

        assert result.factors == [FactorContribution("momentum", 1.2, 0.5, 0.6)]

    def test_non_list_factors_ignored(self) -> None:
        """Test factors that are not a list decode to no factors."""
        result = normalize_signal({"symbol": "AAPL", "action": "buy", "factors": "momentum"})

        assert result.factors == []

    def test_epoch_millisecond_timestamp(self) -> None:
        """Test numeric timestamps are read as epoch milliseconds."""
        result = normalize_signal({"symbol": "AAPL", "action": "buy", "timestamp": 1704067200000})

        assert result.timestamp == datetime(2024, 1, 1)

    def test_metadata_kept_only_for_mappings(self) -> None:
        """Test metadata survives only when it is a mapping."""
        kept = normalize_signal({"action": "buy", "metadata": {"strategy": "momentum"}})
        dropped = normalize_signal({"action": "buy", "metadata": "momentum"})

        assert kept.metadata == {"strategy": "momentum"}
        assert dropped.metadata is None

    def test_malformed_factor_keeps_action(self) -> None:
        """Test a factor missing keys is dropped without losing the trade."""
        result = normalize_signal(
            {
                "symbol": "AAPL",
                "action": "buy",
                "confidence": 0.9,
                "factors": [
                    {"name": "momentum", "value": 1.2},
                    {"name": "value", "value": 0.4, "weight": 0.5, "contribution": 0.2},
                ],
            }
        )

        assert result.action == "buy"
        assert result.confidence == 0.9
        assert result.factors == [FactorContribution("value", 0.4, 0.5, 0.2)]

    def test_malformed_factor_keeps_direction(self) -> None:
        """Test direction-shaped signals survive malformed factors too."""
        result = normalize_signal(
            {"symbol": "MSFT", "direction": "short", "strength": 0.7, "factors": ["momentum"]}
        )

        assert result.action == "sell"
        assert result.confidence == 0.7
        assert result.factors == []

    @pytest.mark.parametrize("timestamp", ["n/a", "not a date", object()])
    def test_unparseable_timestamp_dropped(self, timestamp: object) -> None:
        """Test an unparseable timestamp becomes None and the action is kept."""
        result = normalize_signal(
            {"symbol": "AAPL", "action": "buy", "confidence": 0.9, "timestamp": timestamp}
        )

        assert result.action == "buy"
        assert result.confidence == 0.9
        assert result.timestamp is None

    def test_aware_timestamp_converted_to_utc(self) -> None:
        """Test timezone-aware timestamps are stored as naive UTC."""
        result = normalize_signal(
            {"symbol": "AAPL", "action": "buy", "timestamp": "2024-01-01T09:30:00-05:00"}
        )

        assert result.timestamp == datetime(2024, 1, 1, 14, 30)
