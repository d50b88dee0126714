"""Unit tests for the delivery envelope codec."""

import json

import pytest

from src.domain.signals.models import Instrument
from src.infrastructure.delivery.envelope import (
    CONNECTED_ACK,
    Envelope,
    MessageType,
    decode_message,
    encode_message,
    format_signal_notice,
)


class TestEnvelope:
    def test_encode_shape(self, sample_signal) -> None:
        payload = json.loads(encode_message(MessageType.NEW_SIGNAL, sample_signal.to_dict()))
        assert set(payload) == {"type", "data"}
        assert payload["type"] == "new_signal"
        assert payload["data"]["instrumentId"] == "RELIANCE"

    def test_connected_ack(self) -> None:
        envelope = decode_message(encode_message(MessageType.CONNECTED, CONNECTED_ACK))
        assert envelope == Envelope(type="connected", data={"message": "WebSocket connected"})

    def test_unknown_type_still_decodes(self) -> None:
        # Receivers decide what to ignore; the codec only checks the shape
        assert decode_message('{"type": "heartbeat"}') == Envelope(type="heartbeat", data=None)

    @pytest.mark.parametrize(
        "text",
        ["not json", "[1, 2]", '"new_signal"', '{"data": {}}', '{"type": 7, "data": {}}', ""],
    )
    def test_malformed_frames(self, text: str) -> None:
        assert decode_message(text) is None


class TestSignalNotice:
    def test_full_notice(self, sample_signal) -> None:
        assert format_signal_notice(sample_signal.to_dict()) == "RELIANCE: 15M ABOVE 50 BULLISH at 2451.30"

    def test_missing_instrument(self) -> None:
        notice = format_signal_notice({"signalType": "5m_below_200_bearish", "price": 10})
        assert notice == "Unknown Instrument: 5M BELOW 200 BEARISH at 10.00"

    def test_non_numeric_price(self) -> None:
        assert format_signal_notice({"instrumentId": "TCS", "signalType": "custom", "price": None}) == "TCS: CUSTOM"

    def test_notice_prefers_asset_name(self, sample_signal) -> None:
        sample_signal.asset = Instrument(id="RELIANCE", symbol="RELIANCE", name="Reliance Industries")
        payload = sample_signal.to_dict()

        assert payload["asset"] == {"symbol": "RELIANCE", "name": "Reliance Industries"}
        assert format_signal_notice(payload) == "Reliance Industries: 15M ABOVE 50 BULLISH at 2451.30"
