import logging
import os
from typing import Optional

from api.metrics import WATCH_REGISTRATIONS_TOTAL
from calendar_sync.errors import ProviderAPIError, ReauthorizationRequired
from calendar_sync.models import WatchSubscription
from integration.calendar_integration import CalendarIntegration

logger = logging.getLogger(__name__)

WEBHOOK_CALLBACK_URL = os.getenv("WEBHOOK_CALLBACK_URL", "").strip()
WEBHOOK_CHANNEL_TOKEN = os.getenv("WEBHOOK_CHANNEL_TOKEN", "").strip() or None
WATCH_TTL_SECONDS = int(os.getenv("WATCH_TTL_SECONDS", "3600"))


class WatchRegistrar:
    """Opens a push channel after each successful authorization.

    Failing to register is never fatal: without a channel the service still
    works through manual syncs.
    """

    def __init__(
        self,
        callback_address: str = WEBHOOK_CALLBACK_URL,
        ttl_seconds: int = WATCH_TTL_SECONDS,
        channel_token: Optional[str] = WEBHOOK_CHANNEL_TOKEN,
    ):
        self.callback_address = callback_address
        self.ttl_seconds = ttl_seconds
        self.channel_token = channel_token

    async def register(
        self, integration: CalendarIntegration, calendar_id: str
    ) -> Optional[WatchSubscription]:
        if not self.callback_address:
            logger.warning("WEBHOOK_CALLBACK_URL not set, skipping watch registration")
            WATCH_REGISTRATIONS_TOTAL.labels(outcome="skipped").inc()
            return None

        try:
            subscription = await integration.register_watch(
                calendar_id,
                self.callback_address,
                ttl_seconds=self.ttl_seconds,
                token=self.channel_token,
            )
        except (ProviderAPIError, ReauthorizationRequired) as e:
            logger.error(f"Error setting up watch: {e}")
            WATCH_REGISTRATIONS_TOTAL.labels(outcome="failed").inc()
            return None

        WATCH_REGISTRATIONS_TOTAL.labels(outcome="registered").inc()
        return subscription
