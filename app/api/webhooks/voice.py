"""Twilio voice webhook endpoints."""
import logging
from typing import Dict

from fastapi import APIRouter, Request
from fastapi.responses import Response
from twilio.request_validator import RequestValidator

from app.core.config import settings

router = APIRouter()
logger = logging.getLogger(__name__)


def escape_xml(text: str) -> str:
    """Escape XML special characters for attribute values."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def get_base_url(request: Request) -> str:
    """
    Get the public base URL.

    Uses PUBLIC_BASE_URL if set (needed behind ngrok or a proxy, and for
    signature checks), otherwise the request's own base URL.
    """
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


def get_stream_url(base_url: str) -> str:
    """Turn ``http(s)://host`` into ``ws(s)://host/stream``."""
    if base_url.startswith("http"):
        base_url = "ws" + base_url[len("http"):]
    return f"{base_url.rstrip('/')}/stream"


def verify_twilio_signature(request: Request, params: Dict[str, str]) -> bool:
    """Check X-Twilio-Signature. Always passes when no auth token is configured."""
    if not settings.twilio_auth_token:
        return True
    signature = request.headers.get("X-Twilio-Signature", "")
    url = f"{get_base_url(request)}/twilio/voice"
    return RequestValidator(settings.twilio_auth_token).validate(url, params, signature)


def generate_stream_twiml(stream_url: str, caller: str) -> str:
    """TwiML that opens a bidirectional media stream carrying the caller number."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Connect>
        <Stream url="{escape_xml(stream_url)}" bidirectional="true">
            <Parameter name="caller" value="{escape_xml(caller)}"/>
        </Stream>
    </Connect>
</Response>"""


@router.post("/twilio/voice")
async def handle_incoming_call(request: Request):
    """
    Handle an incoming call from Twilio.

    Answers with ``<Connect><Stream>`` pointing at our media websocket.
    """
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}
    call_sid = params.get("CallSid", "")
    caller = params.get("From", "")

    logger.info(
        f"[VOICE WEBHOOK] Incoming call - CallSid: {call_sid}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )

    if not verify_twilio_signature(request, params):
        logger.warning(f"[VOICE WEBHOOK] Bad Twilio signature - CallSid: {call_sid}")
        return Response(content="Bad signature", status_code=403, media_type="text/plain")

    stream_url = get_stream_url(get_base_url(request))
    twiml = generate_stream_twiml(stream_url, caller)
    logger.debug(f"[VOICE WEBHOOK] Streaming to {stream_url} - CallSid: {call_sid}")

    return Response(
        content=twiml,
        media_type="text/xml",
        headers={"Cache-Control": "no-cache"},
    )
