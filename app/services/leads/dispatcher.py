"""Lead delivery to the n8n workflow webhook."""
import logging
from typing import Optional

import httpx

from app.core.config import Settings, settings as default_settings
from app.core.dependencies import get_http_client
from app.services.call_session.models import LeadRecord

logger = logging.getLogger(__name__)

LEAD_WEBHOOK_PATH = "/webhook/receptionist/lead_finalized"


class LeadDispatcher:
    """Posts finalized leads. Failures are logged and never retried."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or default_settings
        self.http_client = http_client or get_http_client()

    @property
    def enabled(self) -> bool:
        return self.settings.lead_sink_enabled

    @property
    def url(self) -> str:
        return f"{(self.settings.n8n_base or '').rstrip('/')}{LEAD_WEBHOOK_PATH}"

    async def dispatch(self, lead: LeadRecord) -> bool:
        """
        POST the lead to n8n.

        Returns:
            True if the sink accepted it, False if disabled or delivery failed
        """
        if not self.enabled:
            logger.info(f"[LEAD] Lead sink not configured, skipping - Session: {lead.agent_session_id}")
            return False

        try:
            response = await self.http_client.post(
                self.url,
                json=lead.model_dump(mode="json"),
                timeout=self.settings.lead_dispatch_timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.error(
                f"[LEAD] Lead post timed out after {self.settings.lead_dispatch_timeout}s - "
                f"Session: {lead.agent_session_id}"
            )
            return False
        except httpx.HTTPStatusError as e:
            logger.error(
                f"[LEAD] Lead sink rejected lead - Status: {e.response.status_code}, "
                f"Body: {e.response.text[:500]}"
            )
            return False
        except httpx.HTTPError as e:
            logger.error(f"[LEAD] Lead post failed - Error: {type(e).__name__}: {e}")
            return False

        logger.info(f"[LEAD] Lead delivered - Session: {lead.agent_session_id}, Status: {response.status_code}")
        return True
