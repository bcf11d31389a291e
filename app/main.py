"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from app.api import health, stream
from app.api.webhooks import voice
from app.core.config import settings
from app.core.dependencies import close_clients
from app.core.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    logger.info(
        f"FirstRing receptionist for {settings.business_name} - "
        f"Deepgram: {'on' if settings.deepgram_api_key else 'off'}, "
        f"ElevenLabs: {'on' if settings.elevenlabs_api_key else 'off'}, "
        f"OpenAI: {'on' if settings.openai_api_key else 'off'}, "
        f"Lead sink: {'on' if settings.lead_sink_enabled else 'off'}"
    )
    yield
    # Shutdown
    await close_clients()


app = FastAPI(
    title="FirstRing Voice Receptionist",
    description="Twilio media stream receptionist with Deepgram, ElevenLabs and OpenAI",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(voice.router, tags=["webhooks"])
app.include_router(stream.router, tags=["stream"])


if __name__ == "__main__":
    uvicorn.run("app.main:app", host=settings.host, port=settings.port)
