import logging

from fastapi import APIRouter, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from api import state
from storage import db

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint for container orchestration."""
    manager = state.credential_manager
    health = {
        "status": "healthy",
        "authorized": manager.is_valid() if manager else False,
        "reauthorization_required": manager.reauthorization_required if manager else False,
    }

    if state.event_store is None:
        health["status"] = "degraded"
        health["database"] = {"status": "not_initialized"}
        return health

    db_health = await db.health_check()
    health["database"] = db_health
    if db_health["status"] != "healthy":
        health["status"] = "degraded"
    else:
        health["events_stored"] = await state.event_store.count()

    return health


@router.get("/metrics")
async def metrics() -> Response:
    """
    Prometheus scrape endpoint.
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
