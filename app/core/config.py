"""Application configuration."""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Public URL Twilio reaches us on (signature check + stream URL)
    public_base_url: Optional[str] = None

    # OpenAI (reasoning + fallback TTS)
    openai_api_key: Optional[str] = None
    openai_chat_model: str = "gpt-4o-mini"
    openai_tts_model: str = "gpt-4o-mini-tts"
    openai_tts_voice: str = "alloy"
    openai_tts_sample_rate: int = 24000

    # Deepgram (streaming STT)
    deepgram_api_key: Optional[str] = None
    deepgram_url: str = (
        "wss://api.deepgram.com/v1/listen"
        "?encoding=mulaw&sample_rate=8000&channels=1&punctuate=true&model=enhanced"
    )

    # ElevenLabs (primary TTS)
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_voice_id: Optional[str] = None
    elevenlabs_model_id: str = "eleven_multilingual_v2"

    # Twilio
    twilio_auth_token: Optional[str] = None

    # Lead sink (n8n)
    n8n_base: Optional[str] = None
    lead_dispatch_timeout: float = 8.0

    # Business
    business_id: str = "plumber_joes"
    business_name: str = "Plumber Joe's"
    cal_summary_prefix: str = "Job"

    # Media stream tuning
    prime_silence_frames: int = Field(default=2, ge=0, le=3)
    send_outbound_track: bool = False
    frame_content_type: Optional[str] = None
    greeting_enabled: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def lead_sink_enabled(self) -> bool:
        """True when a real n8n base URL is configured."""
        return bool(self.n8n_base) and not self.n8n_base.startswith("https://<")


settings = Settings()
