"""Call session models."""
import uuid
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

HANGUP_FALLBACK_TEXT = "Caller hung up quickly."
SUMMARY_MAX_CHARS = 800


class LifecycleState(str, Enum):
    """Lifecycle of one media stream connection."""

    CONNECTED = "connected"  # Websocket accepted, no start event yet
    STARTED = "started"  # Start event received, streamSid known
    ACTIVE = "active"  # Inbound audio flowing
    STOPPED = "stopped"  # Stop event received, lead extracted
    CLOSED = "closed"  # Transport gone, terminal

    def __str__(self) -> str:
        return self.value


class Urgency(str, Enum):
    """How soon the caller needs the job done."""

    NOW = "now"
    TODAY = "today"
    THIS_WEEK = "this_week"
    NO_RUSH = "no_rush"

    def __str__(self) -> str:
        return self.value


# ----- Inbound Twilio media stream events -----


class _TwilioModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StartMetadata(_TwilioModel):
    stream_sid: str = Field(default="", alias="streamSid")
    call_sid: str = Field(default="", alias="callSid")
    custom_parameters: Dict[str, Any] = Field(default_factory=dict, alias="customParameters")


class MediaPayload(_TwilioModel):
    payload: str = ""
    track: Optional[str] = None
    chunk: Optional[str] = None
    timestamp: Optional[str] = None


class ConnectedEvent(_TwilioModel):
    event: Literal["connected"]


class StartEvent(_TwilioModel):
    event: Literal["start"]
    stream_sid: str = Field(default="", alias="streamSid")
    start: StartMetadata = Field(default_factory=StartMetadata)

    @property
    def resolved_stream_sid(self) -> str:
        return self.start.stream_sid or self.stream_sid

    @property
    def caller(self) -> str:
        value = self.start.custom_parameters.get("caller")
        return str(value) if value is not None else ""


class MediaEvent(_TwilioModel):
    event: Literal["media"]
    stream_sid: str = Field(default="", alias="streamSid")
    media: MediaPayload = Field(default_factory=MediaPayload)


class StopEvent(_TwilioModel):
    event: Literal["stop"]
    stream_sid: str = Field(default="", alias="streamSid")


class MarkEvent(_TwilioModel):
    event: Literal["mark"]
    stream_sid: str = Field(default="", alias="streamSid")


InboundEvent = Annotated[
    Union[ConnectedEvent, StartEvent, MediaEvent, StopEvent, MarkEvent],
    Field(discriminator="event"),
]

_inbound_adapter = TypeAdapter(InboundEvent)


def parse_inbound_event(raw: Union[str, bytes]) -> Optional[InboundEvent]:
    """Decode one websocket message. Returns None for anything unrecognised."""
    try:
        return _inbound_adapter.validate_json(raw)
    except ValidationError:
        return None


# ----- Transcription and lead records -----


class TranscriptSegment(BaseModel):
    """One streaming transcription result."""

    text: str = ""
    is_final: bool = False


class LeadFields(BaseModel):
    """Fields extracted from the call transcript."""

    caller_name: str = ""
    suburb: str = ""
    job_type: str = ""
    urgency: Urgency = Urgency.THIS_WEEK
    preferred_time: str = ""
    call_summary: str = ""

    @field_validator(
        "caller_name", "suburb", "job_type", "preferred_time", "call_summary", mode="before"
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else str(value)

    @field_validator("urgency", mode="before")
    @classmethod
    def _coerce_urgency(cls, value: Any) -> Urgency:
        if isinstance(value, Urgency):
            return value
        normalized = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
        try:
            return Urgency(normalized)
        except ValueError:
            return Urgency.THIS_WEEK

    @classmethod
    def fallback(cls, transcript: str) -> "LeadFields":
        """Default record used when extraction fails."""
        return cls(call_summary=(transcript or "")[:SUMMARY_MAX_CHARS])


class LeadRecord(LeadFields):
    """Finalized lead posted to the workflow sink."""

    caller_number: str = ""
    channel: str = "voice"
    business_id: str = ""
    business_name: str = ""
    calendar_summary_prefix: str = ""
    transcript_url: str = ""
    booking_link: str = ""
    agent_session_id: str = ""


# ----- Session -----


class CallSession:
    """State for one active media stream."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or str(uuid.uuid4())
        self.stream_sid: str = ""
        self.call_sid: str = ""
        self.caller: str = ""
        self.transcript_log: List[str] = []
        self.state = LifecycleState.CONNECTED
        self.media_count = 0

    def record_start(self, stream_sid: str, caller: str, call_sid: str = "") -> None:
        """Capture stream identifiers on the start event. Caller is set once."""
        self.stream_sid = stream_sid
        self.call_sid = call_sid
        if not self.caller:
            self.caller = caller
        self.state = LifecycleState.STARTED

    def add_transcript(self, text: str) -> None:
        self.transcript_log.append(text)

    def get_transcript_text(self) -> str:
        """Join finalized transcript segments."""
        return " ".join(self.transcript_log)

    @property
    def is_closed(self) -> bool:
        return self.state == LifecycleState.CLOSED
