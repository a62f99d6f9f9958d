"""Google Calendar API wrapper.

Owns every call to the Calendar v3 API: listing changes, bulk listing and
registering push channels. The client library is blocking, so each request
is executed in a worker thread.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calendar_sync.errors import ProviderAPIError, ReauthorizationRequired
from calendar_sync.models import WatchSubscription
from integration.token_refresher import is_invalid_grant

logger = logging.getLogger(__name__)


class CalendarIntegration:

    def __init__(self, credentials=None, service=None):
        self.credentials = credentials
        self._service = service

    @property
    def service(self):
        if self._service is None:
            self._service = build(
                "calendar",
                "v3",
                credentials=self.credentials,
                cache_discovery=False,
            )
        return self._service

    async def _execute(self, request) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            logger.error(f"Google Calendar API error ({status}): {e}")
            raise ProviderAPIError(str(e), status_code=status) from e
        except RefreshError as e:
            # The client library refreshed an expired token on its own
            if is_invalid_grant(e):
                logger.error(f"Refresh token rejected during API call: {e}")
                raise ReauthorizationRequired(str(e)) from e
            logger.error(f"Token refresh failed during API call: {e}")
            raise ProviderAPIError(str(e)) from e
        except (TransportError, OSError) as e:
            logger.error(f"Google Calendar API unreachable: {e}")
            raise ProviderAPIError(str(e)) from e

    async def fetch_latest_change(self, calendar_id: str = "primary") -> Optional[Dict[str, Any]]:
        """
        Return the most recently updated event, or None for an empty calendar.

        Only ONE event comes back: when several events changed between two
        notifications, all but the newest are missed.
        """
        page_token = None
        latest = None

        # orderBy=updated is ascending, so the newest event is the last item
        # of the last page.
        while True:
            response = await self._execute(
                self.service.events().list(
                    calendarId=calendar_id,
                    singleEvents=True,
                    orderBy="updated",
                    showDeleted=True,
                    pageToken=page_token,
                )
            )
            items = response.get("items", [])
            if items:
                latest = items[-1]
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        if latest is None:
            logger.info(f"No events in calendar '{calendar_id}'")
        else:
            logger.info(f"Latest change in '{calendar_id}': {latest.get('id')} ({latest.get('status')})")
        return latest

    async def fetch_all(self, calendar_id: str = "primary") -> AsyncIterator[Dict[str, Any]]:
        """Yield every event ordered by start time, one page at a time."""
        page_token = None
        total = 0

        while True:
            response = await self._execute(
                self.service.events().list(
                    calendarId=calendar_id,
                    singleEvents=True,
                    orderBy="startTime",
                    pageToken=page_token,
                )
            )
            items = response.get("items", [])
            total += len(items)
            for item in items:
                yield item

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.info(f"Retrieved {total} events from calendar '{calendar_id}'")

    async def register_watch(
        self,
        calendar_id: str,
        address: str,
        ttl_seconds: int = 3600,
        token: Optional[str] = None,
    ) -> WatchSubscription:
        """
        Open a push channel so Google POSTs to `address` when events change.

        A new channel id is generated on every call; previous channels are
        left to expire on their own.
        """
        channel_id = str(uuid.uuid4())
        body: Dict[str, Any] = {
            "id": channel_id,
            "type": "web_hook",
            "address": address,
            "params": {"ttl": str(ttl_seconds)},
        }
        if token:
            body["token"] = token

        response = await self._execute(
            self.service.events().watch(calendarId=calendar_id, body=body)
        )

        expiration = None
        if response.get("expiration"):
            expiration = datetime.fromtimestamp(
                int(response["expiration"]) / 1000, tz=timezone.utc
            )

        subscription = WatchSubscription(
            channel_id=response.get("id", channel_id),
            address=address,
            ttl_seconds=ttl_seconds,
            resource_id=response.get("resourceId"),
            expiration=expiration,
        )
        logger.info(
            f"Watching calendar '{calendar_id}' on channel {subscription.channel_id} "
            f"(expires {subscription.expiration})"
        )
        return subscription
