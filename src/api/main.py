import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api import state
from api.routers import auth, events, ops
from calendar_sync.errors import (
    AuthenticationMissing,
    ProviderAPIError,
    ReauthorizationRequired,
)
from integration.credentials import CredentialManager
from integration.token_refresher import TokenRefresher
from storage import db
from storage.event_store import EventStore
from storage.google_auth import GoogleAuthStore

# Logging configuration
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="calendar-sync")

app.include_router(auth.router)
app.include_router(events.router)
app.include_router(ops.router)


@app.exception_handler(AuthenticationMissing)
async def _authentication_missing(request: Request, exc: AuthenticationMissing):
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(ReauthorizationRequired)
async def _reauthorization_required(request: Request, exc: ReauthorizationRequired):
    logger.error(f"Rejected {request.url.path}: reauthorization required")
    return JSONResponse(
        status_code=401,
        content={"detail": "Reauthorization required", "reauthorize_url": "/auth"},
    )


@app.exception_handler(ProviderAPIError)
async def _provider_api_error(request: Request, exc: ProviderAPIError):
    return JSONResponse(
        status_code=502,
        content={"detail": "The API returned an error", "error": exc.message},
    )


@app.on_event("startup")
async def startup() -> None:
    await db.init_db_pool()
    await db.init_schema()

    state.event_store = EventStore()
    state.google_auth_store = GoogleAuthStore()
    state.credential_manager = CredentialManager(
        TokenRefresher(),
        store=state.google_auth_store,
        client_id=auth.GOOGLE_CLIENT_ID,
        client_secret=auth.GOOGLE_CLIENT_SECRET,
    )
    await state.credential_manager.load()
    logger.info("Calendar sync service started")


@app.on_event("shutdown")
async def shutdown() -> None:
    await db.close_db_pool()
