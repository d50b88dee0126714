"""
Unit tests for the signal domain models.

Covers payload parsing for samples and strategies, and how a signal
names its instrument.
"""

import math

import pytest

from src.domain.signals.models import AssetClass, Instrument, Sample, Signal, Strategy

CANDLE = {
    "open": 10,
    "high": 11,
    "low": 9,
    "close": 10.5,
    "volume": 100,
    "timestamp": "2024-01-15T09:15:00Z",
}


class TestSample:
    def test_from_dict(self) -> None:
        sample = Sample.from_dict(CANDLE, instrument_id="NIFTY50", timeframe="5m")
        assert sample.close == 10.5
        assert sample.instrument_id == "NIFTY50"

    @pytest.mark.parametrize("field", ["open", "high", "low", "close", "volume"])
    @pytest.mark.parametrize("bad", [math.nan, math.inf, "Infinity", "-inf", "NaN"])
    def test_non_finite_values_rejected(self, field, bad) -> None:
        with pytest.raises(ValueError, match=f"Sample {field} must be finite"):
            Sample.from_dict(dict(CANDLE, **{field: bad}), instrument_id="NIFTY50", timeframe="5m")

    def test_missing_field(self) -> None:
        with pytest.raises(ValueError, match="missing field"):
            Sample.from_dict({"close": 1}, instrument_id="NIFTY50", timeframe="5m")


class TestStrategyFromDict:
    def test_enabled_defaults_to_true(self) -> None:
        assert Strategy.from_dict({"id": "x", "formula": "price > 1"}).enabled is True
        assert Strategy.from_dict({"id": "x", "formula": "price > 1", "enabled": False}).enabled is False

    @pytest.mark.parametrize("value", ["false", "true", 0, 1, None, []])
    def test_enabled_must_be_boolean(self, value) -> None:
        with pytest.raises(ValueError, match="enabled must be true or false"):
            Strategy.from_dict({"id": "x", "formula": "price > 1", "enabled": value})


class TestSignalAsset:
    def test_name_falls_back_to_id(self, sample_signal) -> None:
        assert sample_signal.instrument_name == "RELIANCE"
        assert sample_signal.to_dict()["asset"] == {"symbol": "RELIANCE", "name": "RELIANCE"}

    def test_name_from_instrument(self, sample_signal) -> None:
        sample_signal.asset = Instrument("RELIANCE", "RELIANCE", "Reliance Industries", AssetClass.EQUITY)
        payload = sample_signal.to_dict()
        assert payload["asset"] == {"symbol": "RELIANCE", "name": "Reliance Industries"}

        rebuilt = Signal.from_dict(payload)
        assert rebuilt.instrument_name == "Reliance Industries"
