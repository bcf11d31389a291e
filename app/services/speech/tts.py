"""Text-to-speech service."""
import logging
from typing import Optional

import httpx
from openai import AsyncOpenAI

from app.core.config import Settings, settings as default_settings
from app.core.dependencies import get_http_client, get_openai_client
from app.services.audio.codec import SAMPLE_RATE, pcm16_to_mulaw, strip_wav_container

logger = logging.getLogger(__name__)

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}/stream"


class TextToSpeechService:
    """
    Service for converting text to 8 kHz mu-law speech.

    ElevenLabs is asked for ``ulaw_8000`` directly. On any failure the text
    is re-synthesized once with OpenAI TTS (24 kHz PCM), which is decimated
    and companded locally. Returns empty bytes when both providers fail.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        openai_client: Optional[AsyncOpenAI] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or default_settings
        self.http_client = http_client or get_http_client()
        if openai_client is None:
            openai_client = get_openai_client(self.settings.openai_api_key)
        self.openai_client = openai_client

    async def synthesize(self, text: str) -> bytes:
        """
        Synthesize speech for ``text``.

        Args:
            text: Text to speak

        Returns:
            mu-law 8 kHz audio bytes (possibly empty)
        """
        text = (text or "").strip()
        if not text:
            return b""

        if not self.settings.elevenlabs_api_key or not self.settings.elevenlabs_voice_id:
            return await self.synthesize_fallback(text)

        audio = await self._synthesize_elevenlabs(text)
        if audio is None:
            return await self.synthesize_fallback(text)
        return audio

    async def _synthesize_elevenlabs(self, text: str) -> Optional[bytes]:
        """Primary provider. Returns None when the fallback should be used."""
        url = ELEVENLABS_TTS_URL.format(voice_id=self.settings.elevenlabs_voice_id)
        try:
            response = await self.http_client.post(
                url,
                params={"optimize_streaming_latency": 4, "output_format": "ulaw_8000"},
                json={
                    "text": text,
                    "model_id": self.settings.elevenlabs_model_id,
                    "voice_settings": {
                        "stability": 0.65,
                        "similarity_boost": 0.78,
                        "style": 0.28,
                        "use_speaker_boost": True,
                    },
                },
                headers={
                    "xi-api-key": self.settings.elevenlabs_api_key,
                    "content-type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"[TTS] ElevenLabs request failed - Error: {type(e).__name__}: {e}")
            return None

        if response.status_code >= 300:
            logger.error(
                f"[TTS] ElevenLabs error - Status: {response.status_code}, "
                f"Body: {response.text[:500]}"
            )
            return None

        content_type = response.headers.get("content-type", "").lower()
        if "application/json" in content_type:
            # errors sometimes arrive as JSON with a 200
            logger.error(f"[TTS] ElevenLabs returned JSON instead of audio: {response.text[:500]}")
            return None

        audio = strip_wav_container(response.content)
        if not audio:
            logger.error("[TTS] ElevenLabs returned no audio")
            return None
        return audio

    async def synthesize_fallback(self, text: str) -> bytes:
        """Secondary provider: OpenAI TTS as raw PCM, converted to mu-law."""
        if self.openai_client is None:
            logger.warning("[TTS] No OpenAI key configured, cannot synthesize fallback audio")
            return b""

        try:
            response = await self.openai_client.audio.speech.create(
                model=self.settings.openai_tts_model,
                voice=self.settings.openai_tts_voice,
                input=text,
                response_format="pcm",
            )
            pcm = strip_wav_container(response.content)
            return pcm16_to_mulaw(pcm, self.settings.openai_tts_sample_rate, SAMPLE_RATE)
        except Exception as e:
            logger.error(f"[TTS] OpenAI fallback failed - Error: {type(e).__name__}: {e}")
            return b""
