"""Call session coordinator."""
import asyncio
import base64
import binascii
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from app.core.config import Settings, settings as default_settings
from app.services.agent.agent import AgentService
from app.services.agent.prompt import get_greeting
from app.services.audio.frames import FrameScheduler
from app.services.call_session.models import (
    CallSession,
    LeadRecord,
    LifecycleState,
    MediaEvent,
    StartEvent,
    StopEvent,
    parse_inbound_event,
)
from app.services.leads.dispatcher import LeadDispatcher
from app.services.speech.stt import SpeechToTextService
from app.services.speech.tts import TextToSpeechService

logger = logging.getLogger(__name__)

MEDIA_LOG_INTERVAL = 50

# Active sessions keyed by session id (process memory only)
_sessions: Dict[str, "CallSessionCoordinator"] = {}

# Fire-and-forget lead posts outlive their session
_background_tasks: Set[asyncio.Task] = set()


def active_session_count() -> int:
    return len(_sessions)


class CallSessionCoordinator:
    """
    Drives one Twilio media stream from ``start`` to ``stop``.

    Inbound messages are handled strictly in arrival order. Replies go
    through a single pipeline task (reply, synthesize, enqueue) so one
    caller utterance is fully answered before the next is processed.
    """

    def __init__(
        self,
        send: Callable[[str], Awaitable[None]],
        is_open: Callable[[], bool],
        agent_service: Optional[AgentService] = None,
        tts_service: Optional[TextToSpeechService] = None,
        lead_dispatcher: Optional[LeadDispatcher] = None,
        stt_factory: Optional[Callable[[Callable[[str], Awaitable[None]]], Any]] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or default_settings
        self._send = send
        self._is_open = is_open
        self.session = CallSession()

        self.agent_service = agent_service or AgentService(config=self.settings)
        self.tts_service = tts_service or TextToSpeechService(config=self.settings)
        self.lead_dispatcher = lead_dispatcher or LeadDispatcher(config=self.settings)
        if stt_factory is None:
            stt_factory = functools.partial(SpeechToTextService, config=self.settings)
        self.stt = stt_factory(self._on_final_transcript)

        self.scheduler: Optional[FrameScheduler] = None
        self._jobs: "asyncio.Queue[Callable[[], Awaitable[None]]]" = asyncio.Queue()
        self._pipeline: Optional[asyncio.Task] = None
        self.dispatch_task: Optional[asyncio.Task] = None
        self.lead: Optional[LeadRecord] = None

        _sessions[self.session.session_id] = self
        logger.info(f"[STREAM] Session created - Session: {self.session.session_id}")

    @property
    def state(self) -> LifecycleState:
        return self.session.state

    async def handle_message(self, raw: Union[str, bytes]) -> None:
        """Process one inbound websocket message."""
        if self.session.is_closed:
            return

        event = parse_inbound_event(raw)
        if event is None:
            logger.debug(f"[STREAM] Dropping unparseable message - Session: {self.session.session_id}")
            return

        if isinstance(event, StartEvent):
            await self._handle_start(event)
        elif isinstance(event, MediaEvent):
            await self._handle_media(event)
        elif isinstance(event, StopEvent):
            await self._handle_stop()
        else:
            logger.debug(f"[STREAM] Ignoring '{event.event}' event - Session: {self.session.session_id}")

    async def _handle_start(self, event: StartEvent) -> None:
        if self.state != LifecycleState.CONNECTED:
            logger.warning(f"[STREAM] Duplicate start event ignored - Session: {self.session.session_id}")
            return

        self.session.record_start(
            stream_sid=event.resolved_stream_sid,
            caller=event.caller,
            call_sid=event.start.call_sid,
        )
        logger.info(
            f"[STREAM] Twilio start - Session: {self.session.session_id}, "
            f"StreamSid: {self.session.stream_sid}, Caller: {self.session.caller or 'unknown'}"
        )

        self.scheduler = FrameScheduler(
            send=self._send,
            is_open=self._is_open,
            stream_sid=self.session.stream_sid,
            prime_frames=self.settings.prime_silence_frames,
            track="outbound" if self.settings.send_outbound_track else None,
            content_type=self.settings.frame_content_type,
        )
        self._pipeline = asyncio.create_task(self._run_pipeline())

        if self.settings.greeting_enabled:
            self._jobs.put_nowait(functools.partial(self._speak, get_greeting(self.settings.business_name)))

    async def _handle_media(self, event: MediaEvent) -> None:
        if self.state == LifecycleState.STARTED:
            self.session.state = LifecycleState.ACTIVE
        elif self.state != LifecycleState.ACTIVE:
            return

        self.session.media_count += 1
        if self.session.media_count % MEDIA_LOG_INTERVAL == 0:
            logger.debug(
                f"[STREAM] Media frames in: {self.session.media_count} - Session: {self.session.session_id}"
            )

        try:
            audio = base64.b64decode(event.media.payload, validate=True)
        except (binascii.Error, ValueError):
            logger.debug(f"[STREAM] Dropping media with bad payload - Session: {self.session.session_id}")
            return
        if not audio:
            return

        if not self.stt.is_open:
            if self.stt.attempted or not self.stt.available:
                return
            if not await self.stt.open():
                return
        await self.stt.send_audio(audio)

    async def _handle_stop(self) -> None:
        if self.state not in (LifecycleState.STARTED, LifecycleState.ACTIVE):
            return
        self.session.state = LifecycleState.STOPPED
        logger.info(f"[STREAM] Twilio stop - Session: {self.session.session_id}")

        try:
            await self.stt.close()
            await self._stop_pipeline()
            if self.scheduler is not None:
                await self.scheduler.clear()
        finally:
            await self._finalize_lead()

    async def _finalize_lead(self) -> None:
        """Extract the lead from the transcript and hand it to the dispatcher."""
        transcript = self.session.get_transcript_text()
        fields = await self.agent_service.extract_lead(transcript)
        self.lead = LeadRecord(
            **fields.model_dump(),
            caller_number=self.session.caller,
            channel="voice",
            business_id=self.settings.business_id,
            business_name=self.settings.business_name,
            calendar_summary_prefix=self.settings.cal_summary_prefix,
            transcript_url="",
            booking_link="",
            agent_session_id=self.session.session_id,
        )

        self.dispatch_task = asyncio.create_task(self.lead_dispatcher.dispatch(self.lead))
        _background_tasks.add(self.dispatch_task)
        self.dispatch_task.add_done_callback(_background_tasks.discard)

    async def close(self) -> None:
        """Tear down on transport disconnect or error. Safe to call twice."""
        if self.session.is_closed:
            return
        previous = self.state
        self.session.state = LifecycleState.CLOSED

        await self.stt.close()
        await self._stop_pipeline()
        if self.scheduler is not None:
            await self.scheduler.close()

        _sessions.pop(self.session.session_id, None)
        logger.info(
            f"[STREAM] Session closed - Session: {self.session.session_id}, "
            f"Previous state: {previous}, Media frames in: {self.session.media_count}"
        )

    async def _on_final_transcript(self, text: str) -> None:
        if self.state not in (LifecycleState.STARTED, LifecycleState.ACTIVE):
            return
        self.session.add_transcript(text)
        self._jobs.put_nowait(functools.partial(self._reply, text))

    async def _reply(self, utterance: str) -> None:
        reply = await self.agent_service.generate_reply(utterance)
        await self._speak(reply)

    async def _speak(self, text: str) -> None:
        audio = await self.tts_service.synthesize(text)
        logger.info(f"[STREAM] TTS audio length: {len(audio)} - Session: {self.session.session_id}")
        if not audio:
            return
        if self.scheduler is None or self.state not in (LifecycleState.STARTED, LifecycleState.ACTIVE):
            return
        self.scheduler.enqueue(audio)

    async def wait_pipeline_idle(self) -> None:
        """Wait until every queued reply has been synthesized and enqueued."""
        await self._jobs.join()

    async def _run_pipeline(self) -> None:
        while True:
            job = await self._jobs.get()
            try:
                await job()
            except Exception as e:
                logger.error(
                    f"[STREAM] Reply pipeline error - Session: {self.session.session_id}, "
                    f"Error: {type(e).__name__}: {e}",
                    exc_info=True,
                )
            finally:
                self._jobs.task_done()

    async def _stop_pipeline(self) -> None:
        while True:
            try:
                self._jobs.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._jobs.task_done()

        if self._pipeline is not None and not self._pipeline.done():
            self._pipeline.cancel()
            try:
                await self._pipeline
            except asyncio.CancelledError:
                pass
        self._pipeline = None
