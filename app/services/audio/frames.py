"""Outbound audio framing and real-time pacing for Twilio media streams."""
import asyncio
import base64
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.services.audio.codec import SILENCE_BYTE

logger = logging.getLogger(__name__)

FRAME_SIZE = 160  # 20 ms @ 8 kHz mu-law
FRAME_INTERVAL = 0.02

SILENCE_FRAME = bytes([SILENCE_BYTE]) * FRAME_SIZE


def pad_to_frame(buffer: bytes) -> bytes:
    """Pad ``buffer`` with silence up to a whole number of frames."""
    remainder = len(buffer) % FRAME_SIZE
    if remainder == 0:
        return bytes(buffer)
    return bytes(buffer) + bytes([SILENCE_BYTE]) * (FRAME_SIZE - remainder)


def split_frames(buffer: bytes) -> List[bytes]:
    """Split ``buffer`` into 160-byte frames, silence-padding the last one."""
    padded = pad_to_frame(buffer)
    return [padded[i:i + FRAME_SIZE] for i in range(0, len(padded), FRAME_SIZE)]


def build_media_message(
    stream_sid: str,
    frame: bytes,
    track: Optional[str] = None,
    content_type: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the outbound ``media`` envelope for one frame."""
    media: Dict[str, Any] = {"payload": base64.b64encode(frame).decode("ascii")}
    if track:
        media["track"] = track
    if content_type:
        media["contentType"] = content_type
    return {"event": "media", "streamSid": stream_sid, "media": media}


class FrameScheduler:
    """
    Paces mu-law audio to the telephony peer one frame every 20 ms.

    One scheduler per call. A single sender task owns the frame queue; it
    exits on its own once the transport stops being open.
    """

    def __init__(
        self,
        send: Callable[[str], Awaitable[None]],
        is_open: Callable[[], bool],
        stream_sid: str,
        prime_frames: int = 2,
        track: Optional[str] = None,
        content_type: Optional[str] = None,
        interval: float = FRAME_INTERVAL,
    ):
        self._send = send
        self._is_open = is_open
        self.stream_sid = stream_sid
        self.prime_frames = prime_frames
        self.track = track
        self.content_type = content_type
        self.interval = interval

        self._queue: "asyncio.Queue[bytes]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._primed = False
        self.frames_sent = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, buffer: bytes) -> int:
        """
        Queue ``buffer`` for paced delivery.

        The first call per call leg is preceded by a short burst of silence
        frames to prime the peer's jitter buffer.

        Returns:
            Number of frames queued
        """
        if not buffer:
            return 0
        if not self.stream_sid:
            logger.error(f"[FRAMES] No streamSid yet, dropping {len(buffer)} bytes of audio")
            return 0

        frames: List[bytes] = []
        if not self._primed:
            frames.extend([SILENCE_FRAME] * self.prime_frames)
            self._primed = True
        frames.extend(split_frames(buffer))

        for frame in frames:
            self._queue.put_nowait(frame)

        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
        return len(frames)

    async def clear(self) -> None:
        """Drop queued frames and tell Twilio to flush what it has buffered."""
        dropped = self._discard_pending()
        self._primed = False
        if dropped:
            logger.info(f"[FRAMES] Cleared {dropped} queued frames - streamSid: {self.stream_sid}")
        if not self.stream_sid or not self._is_open():
            return
        try:
            await self._send(json.dumps({"event": "clear", "streamSid": self.stream_sid}))
        except Exception as e:
            logger.warning(
                f"[FRAMES] Clear not delivered - streamSid: {self.stream_sid}, "
                f"Error: {type(e).__name__}: {e}"
            )

    async def wait_idle(self) -> None:
        """Wait until every queued frame has been sent or discarded."""
        await self._queue.join()

    async def close(self) -> None:
        """Stop the sender task and discard anything still queued."""
        self._discard_pending()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    def _discard_pending(self) -> int:
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            self._queue.task_done()
            dropped += 1

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_due = 0.0
        while True:
            frame = await self._queue.get()
            try:
                # never faster than real time; a late frame is sent immediately
                while loop.time() < next_due:
                    await asyncio.sleep(next_due - loop.time())

                if not self._is_open():
                    self._discard_pending()
                    logger.debug(f"[FRAMES] Transport closed, sender stopping - streamSid: {self.stream_sid}")
                    return

                message = build_media_message(
                    self.stream_sid, frame, track=self.track, content_type=self.content_type
                )
                try:
                    await self._send(json.dumps(message))
                except Exception as e:
                    logger.warning(
                        f"[FRAMES] Send failed, sender stopping - streamSid: {self.stream_sid}, "
                        f"Error: {type(e).__name__}: {e}"
                    )
                    self._discard_pending()
                    return
                self.frames_sent += 1
                next_due = loop.time() + self.interval
            finally:
                self._queue.task_done()
