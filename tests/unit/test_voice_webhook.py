"""Unit tests for the Twilio voice webhook and health endpoints."""
import pytest
from twilio.request_validator import RequestValidator

from app.api.webhooks import voice
from app.api.webhooks.voice import escape_xml, generate_stream_twiml, get_stream_url

CALL_PARAMS = {"CallSid": "CA123", "From": "+61400111222", "To": "+61200000000"}


class TestTwimlHelpers:
    """Test TwiML generation helpers."""

    def test_stream_url_from_https(self):
        assert get_stream_url("https://voice.example.com") == "wss://voice.example.com/stream"

    def test_stream_url_from_http_with_trailing_slash(self):
        assert get_stream_url("http://localhost:8080/") == "ws://localhost:8080/stream"

    def test_escape_xml(self):
        assert escape_xml('a&b<c>"d\'') == "a&amp;b&lt;c&gt;&quot;d&apos;"

    def test_twiml_carries_caller_parameter(self):
        twiml = generate_stream_twiml("wss://voice.example.com/stream", "+61400111222")
        assert "<Connect>" in twiml
        assert '<Stream url="wss://voice.example.com/stream"' in twiml
        assert '<Parameter name="caller" value="+61400111222"/>' in twiml


class TestVoiceWebhook:
    """Test POST /twilio/voice."""

    def test_returns_stream_twiml(self, test_client):
        response = test_client.post("/twilio/voice", data=CALL_PARAMS)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/xml")
        assert response.headers["cache-control"] == "no-cache"
        assert '<Stream url="ws://testserver/stream"' in response.text
        assert 'value="+61400111222"' in response.text

    def test_uses_public_base_url(self, test_client, monkeypatch):
        monkeypatch.setattr(voice.settings, "public_base_url", "https://voice.example.com/")

        response = test_client.post("/twilio/voice", data=CALL_PARAMS)

        assert response.status_code == 200
        assert '<Stream url="wss://voice.example.com/stream"' in response.text

    def test_valid_signature_accepted(self, test_client, monkeypatch):
        monkeypatch.setattr(voice.settings, "twilio_auth_token", "secret-token")
        signature = RequestValidator("secret-token").compute_signature(
            "http://testserver/twilio/voice", CALL_PARAMS
        )

        response = test_client.post(
            "/twilio/voice", data=CALL_PARAMS, headers={"X-Twilio-Signature": signature}
        )

        assert response.status_code == 200
        assert "<Connect>" in response.text

    @pytest.mark.parametrize("headers", [{}, {"X-Twilio-Signature": "not-a-signature"}])
    def test_bad_signature_rejected(self, test_client, monkeypatch, headers):
        monkeypatch.setattr(voice.settings, "twilio_auth_token", "secret-token")

        response = test_client.post("/twilio/voice", data=CALL_PARAMS, headers=headers)

        assert response.status_code == 403
        assert response.text == "Bad signature"


class TestHealth:
    """Test liveness endpoints."""

    def test_health(self, test_client, clean_call_sessions):
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "active_calls": 0}

    def test_healthz(self, test_client):
        response = test_client.get("/healthz")

        assert response.status_code == 200
        assert response.text == "ok"
