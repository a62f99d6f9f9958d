import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import PlainTextResponse
from google.oauth2.credentials import Credentials

from api.dependencies import (
    get_calendar_id,
    get_event_store,
    get_reconciler,
    require_credentials,
)
from api.metrics import REQUESTS_TOTAL, WEBHOOK_NOTIFICATIONS_TOTAL
from integration.calendar_integration import CalendarIntegration
from integration.reconciler import Reconciler
from integration.watch_registrar import WEBHOOK_CHANNEL_TOKEN
from storage.event_store import EventStore

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/test", dependencies=[Depends(require_credentials)])
async def test_route():
    """Liveness probe that also exercises the credential check."""
    return PlainTextResponse("Hello, World!")


@router.post("/google/all/events")
async def sync_all_events(
    credentials: Credentials = Depends(require_credentials),
    reconciler: Reconciler = Depends(get_reconciler),
    calendar_id: str = Depends(get_calendar_id),
) -> dict:
    """Import every event from the calendar; known events are left untouched."""
    integration = CalendarIntegration(credentials)
    summary = await reconciler.reconcile_all(integration.fetch_all(calendar_id))

    REQUESTS_TOTAL.labels(endpoint="/google/all/events", status="ok").inc()
    return {
        "status": "ok",
        "message": "Events fetched and saved successfully.",
        **summary.model_dump(),
    }


@router.post("/notifications")
async def receive_notification(
    credentials: Credentials = Depends(require_credentials),
    reconciler: Reconciler = Depends(get_reconciler),
    calendar_id: str = Depends(get_calendar_id),
    resource_state: Optional[str] = Header(None, alias="X-Goog-Resource-State"),
    channel_id: Optional[str] = Header(None, alias="X-Goog-Channel-ID"),
    channel_token: Optional[str] = Header(None, alias="X-Goog-Channel-Token"),
) -> dict:
    """Webhook receiver for Google push notifications."""
    if WEBHOOK_CHANNEL_TOKEN and not secrets.compare_digest(
        channel_token or "", WEBHOOK_CHANNEL_TOKEN
    ):
        logger.warning(f"Rejected notification with bad channel token (channel {channel_id})")
        raise HTTPException(status_code=403, detail="Invalid channel token")

    WEBHOOK_NOTIFICATIONS_TOTAL.labels(resource_state=resource_state or "unknown").inc()

    # Google sends "sync" once when a channel opens; nothing changed yet.
    if resource_state == "sync":
        REQUESTS_TOTAL.labels(endpoint="/notifications", status="sync").inc()
        return {"status": "sync"}

    integration = CalendarIntegration(credentials)
    changed_event = await integration.fetch_latest_change(calendar_id)
    if changed_event is None:
        REQUESTS_TOTAL.labels(endpoint="/notifications", status="empty").inc()
        return {"status": "no_change"}

    action = await reconciler.reconcile(changed_event)
    logger.info(f"Webhook on channel {channel_id}: {action} event {changed_event.get('id')}")

    REQUESTS_TOTAL.labels(endpoint="/notifications", status=action).inc()
    return {
        "status": "received",
        "action": action,
        "external_id": changed_event.get("id"),
    }


@router.get("/events")
async def list_events(
    limit: int = 100,
    event_store: EventStore = Depends(get_event_store),
) -> dict:
    events = await event_store.list_events(limit=limit)
    return {"events": [e.model_dump() for e in events], "total": len(events)}


@router.get("/events/{external_id}")
async def get_event(
    external_id: str,
    event_store: EventStore = Depends(get_event_store),
) -> dict:
    event = await event_store.get(external_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"Event {external_id} not found")
    return event.model_dump()
