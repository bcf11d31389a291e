"""LLM dialogue service."""
import json
import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from app.core.config import Settings, settings as default_settings
from app.core.dependencies import get_openai_client
from app.services.agent.prompt import (
    EXTRACTION_SYSTEM_PROMPT,
    get_extraction_prompt,
    get_reply_system_prompt,
    get_reply_user_prompt,
)
from app.services.call_session.models import HANGUP_FALLBACK_TEXT, LeadFields

logger = logging.getLogger(__name__)

REPLY_FALLBACK = "Okay."
EMPTY_REPLY_FALLBACK = "Got it."


def parse_json_loose(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Parse the JSON object embedded in free-form model output.

    Takes the span from the first ``{`` to the last ``}``, so prose or code
    fences around the object are ignored. Returns None when there is no
    such span or it is not a JSON object.
    """
    if not text:
        return None
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class AgentService:
    """Service for reply generation and end-of-call lead extraction."""

    def __init__(
        self,
        openai_client: Optional[AsyncOpenAI] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or default_settings
        if openai_client is None:
            openai_client = get_openai_client(self.settings.openai_api_key)
        self.client = openai_client

    async def generate_reply(self, utterance: str) -> str:
        """
        Generate a one-sentence spoken reply to the caller.

        Returns:
            Reply text, or a neutral fallback phrase on any failure
        """
        if self.client is None:
            logger.warning("[DIALOGUE] No OpenAI key configured, using fallback reply")
            return REPLY_FALLBACK

        try:
            response = await self.client.chat.completions.create(
                model=self.settings.openai_chat_model,
                temperature=0.3,
                messages=[
                    {"role": "system", "content": get_reply_system_prompt(self.settings.business_name)},
                    {"role": "user", "content": get_reply_user_prompt(utterance)},
                ],
            )
            content = (response.choices[0].message.content or "").strip()
        except Exception as e:
            logger.error(f"[DIALOGUE] Reply generation failed - Error: {type(e).__name__}: {e}")
            return REPLY_FALLBACK

        logger.info(f"[DIALOGUE] Reply: '{content[:200]}'")
        return content or EMPTY_REPLY_FALLBACK

    async def extract_lead(self, transcript: str) -> LeadFields:
        """
        Extract structured lead fields from the full call transcript.

        Never raises; falls back to an empty record whose summary is the
        (truncated) transcript. An empty transcript is treated as a hangup.
        """
        transcript = transcript or HANGUP_FALLBACK_TEXT
        if self.client is None:
            logger.warning("[DIALOGUE] No OpenAI key configured, using fallback lead")
            return LeadFields.fallback(transcript)

        try:
            response = await self.client.chat.completions.create(
                model=self.settings.openai_chat_model,
                temperature=0,
                messages=[
                    {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                    {"role": "user", "content": get_extraction_prompt(transcript)},
                ],
            )
            raw = (response.choices[0].message.content or "").strip() or "{}"
        except Exception as e:
            logger.error(f"[DIALOGUE] Lead extraction failed - Error: {type(e).__name__}: {e}")
            return LeadFields.fallback(transcript)

        parsed = parse_json_loose(raw)
        if parsed is None:
            logger.warning(f"[DIALOGUE] Extraction output was not JSON: '{raw[:200]}'")
            return LeadFields.fallback(transcript)

        logger.info(f"[DIALOGUE] Extracted lead fields: {json.dumps(parsed)[:500]}")
        return LeadFields.model_validate(parsed)
