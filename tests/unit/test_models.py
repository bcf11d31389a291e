"""Unit tests for media stream event parsing and call session state."""
import json

import pytest

from app.services.call_session.models import (
    CallSession,
    LifecycleState,
    MediaEvent,
    StartEvent,
    StopEvent,
    parse_inbound_event,
)


class TestParseInboundEvent:
    """Test decoding of Twilio media stream messages."""

    def test_start_event(self):
        event = parse_inbound_event(json.dumps({
            "event": "start",
            "start": {"streamSid": "SX1", "callSid": "CA1", "customParameters": {"caller": "+6140"}},
        }))

        assert isinstance(event, StartEvent)
        assert event.resolved_stream_sid == "SX1"
        assert event.caller == "+6140"
        assert event.start.call_sid == "CA1"

    def test_start_falls_back_to_top_level_stream_sid(self):
        event = parse_inbound_event(json.dumps({"event": "start", "streamSid": "SX2", "start": {}}))

        assert event.resolved_stream_sid == "SX2"
        assert event.caller == ""

    def test_media_event_ignores_extra_fields(self):
        event = parse_inbound_event(json.dumps({
            "event": "media",
            "sequenceNumber": "7",
            "media": {"payload": "/w==", "track": "inbound"},
        }))

        assert isinstance(event, MediaEvent)
        assert event.media.payload == "/w=="

    def test_stop_event(self):
        assert isinstance(parse_inbound_event('{"event": "stop"}'), StopEvent)

    @pytest.mark.parametrize(
        "raw",
        ["", "[]", "null", '{"event": "dtmf"}', '{"event": 5}', '{"no_event": true}'],
    )
    def test_unrecognised_returns_none(self, raw):
        assert parse_inbound_event(raw) is None


class TestCallSession:
    """Test per-call session state."""

    def test_record_start_keeps_first_caller(self):
        session = CallSession()
        session.record_start(stream_sid="SX1", caller="+111")
        session.record_start(stream_sid="SX1", caller="+222")

        assert session.caller == "+111"
        assert session.state == LifecycleState.STARTED

    def test_transcript_joined_with_spaces(self):
        session = CallSession(session_id="abc")
        session.add_transcript("Hi there.")
        session.add_transcript("My tap leaks.")

        assert session.session_id == "abc"
        assert session.get_transcript_text() == "Hi there. My tap leaks."

    def test_empty_transcript(self):
        assert CallSession().get_transcript_text() == ""
