"""Speech-to-text service."""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from app.core.config import Settings, settings as default_settings
from app.services.call_session.models import TranscriptSegment

logger = logging.getLogger(__name__)


def parse_transcript_message(raw: Any) -> Optional[TranscriptSegment]:
    """
    Parse one Deepgram streaming result.

    Deepgram flags finality with either ``is_final`` or ``speech_final``;
    either one marks the segment final. Non-result messages (metadata,
    utterance end) and unparseable payloads return None.
    """
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(msg, dict):
        return None

    channel = msg.get("channel")
    if not isinstance(channel, dict):
        return None
    alternatives = channel.get("alternatives") or []
    if not alternatives or not isinstance(alternatives[0], dict):
        return None

    text = (alternatives[0].get("transcript") or "").strip()
    is_final = bool(msg.get("is_final")) or bool(msg.get("speech_final"))
    return TranscriptSegment(text=text, is_final=is_final)


class SpeechToTextService:
    """
    Streaming transcription bridge for one call.

    Holds a Deepgram websocket configured for 8 kHz mono mu-law, forwards
    raw audio as it arrives and hands finalized, non-empty transcripts to
    ``on_final``. Connection problems are logged and leave the call running
    without transcription.
    """

    def __init__(
        self,
        on_final: Callable[[str], Awaitable[None]],
        config: Optional[Settings] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.settings = config or default_settings
        self.on_final = on_final
        self._connect = connect
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._open = False
        self.attempted = False

    @property
    def available(self) -> bool:
        """True when Deepgram credentials are configured."""
        return bool(self.settings.deepgram_api_key)

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> bool:
        """Connect to Deepgram. Only the first call attempts a connection."""
        if self._open:
            return True
        if self.attempted or not self.available:
            return False
        self.attempted = True

        try:
            self._ws = await self._connect(
                self.settings.deepgram_url,
                additional_headers={"Authorization": f"Token {self.settings.deepgram_api_key}"},
            )
        except Exception as e:
            logger.error(f"[STT] Deepgram connect failed - Error: {type(e).__name__}: {e}")
            return False

        self._open = True
        self._reader = asyncio.create_task(self._receive_loop())
        logger.info("[STT] Deepgram stream open")
        return True

    async def send_audio(self, audio: bytes) -> None:
        """Forward raw mu-law audio. Dropped silently when not connected."""
        if not self._open or not audio:
            return
        try:
            await self._ws.send(audio)
        except ConnectionClosed as e:
            logger.warning(f"[STT] Deepgram closed while sending audio - Code: {e.rcvd.code if e.rcvd else None}")
            self._open = False
        except Exception as e:
            logger.error(f"[STT] Deepgram send failed - Error: {type(e).__name__}: {e}")
            self._open = False

    async def close(self) -> None:
        """Close the Deepgram stream and stop the reader task."""
        ws, self._ws = self._ws, None
        was_open, self._open = self._open, False
        if ws is not None:
            if was_open:
                try:
                    await ws.send(json.dumps({"type": "CloseStream"}))
                except Exception:
                    logger.debug("[STT] CloseStream not delivered")
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"[STT] Error closing Deepgram socket: {e}")
            logger.info("[STT] Deepgram stream closed")

        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._reader = None

    async def _receive_loop(self) -> None:
        ws = self._ws
        try:
            async for raw in ws:
                segment = parse_transcript_message(raw)
                if segment is None or not segment.is_final or not segment.text:
                    continue
                logger.info(f"[STT] Final transcript: '{segment.text[:200]}'")
                await self.on_final(segment.text)
        except ConnectionClosed as e:
            logger.warning(f"[STT] Deepgram connection closed - Code: {e.rcvd.code if e.rcvd else None}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[STT] Deepgram receive error - Error: {type(e).__name__}: {e}", exc_info=True)
        finally:
            if self._ws is ws:
                self._open = False
