import asyncio
import os
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import PlainTextResponse
from google_auth_oauthlib.flow import Flow

from api.dependencies import get_calendar_id, get_credential_manager, get_watch_registrar
from integration.calendar_integration import CalendarIntegration
from integration.credentials import CredentialManager
from integration.watch_registrar import WatchRegistrar
from storage.google_auth import SCOPES, TOKEN_URI

router = APIRouter()
logger = logging.getLogger(__name__)

# Google Auth Configuration
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv(
    "GOOGLE_REDIRECT_URI", "http://localhost:3000/auth/callback"
)


def _build_flow() -> Flow:
    return Flow.from_client_config(
        {
            "web": {
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": TOKEN_URI,
            }
        },
        scopes=SCOPES,
        redirect_uri=GOOGLE_REDIRECT_URI,
        # /auth and /auth/callback build separate flows, so no PKCE verifier
        # can be carried between them.
        autogenerate_code_verifier=False,
    )


@router.get("/auth")
async def google_login():
    """Redirects to Google's consent screen asking for offline calendar access."""
    if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
        raise HTTPException(status_code=500, detail="Google credentials not configured")

    authorization_url, _state = _build_flow().authorization_url(
        access_type="offline", prompt="consent"
    )
    return Response(status_code=307, headers={"Location": authorization_url})


@router.get("/auth/callback")
async def google_callback(
    code: Optional[str] = None,
    error: Optional[str] = None,
    manager: CredentialManager = Depends(get_credential_manager),
    registrar: WatchRegistrar = Depends(get_watch_registrar),
    calendar_id: str = Depends(get_calendar_id),
):
    """Exchanges the authorization code for tokens, stores them and starts watching."""
    if error or not code:
        logger.error(f"OAuth error: {error or 'missing code'}")
        raise HTTPException(status_code=400, detail=f"Authorization failed: {error or 'missing code'}")

    flow = _build_flow()
    try:
        await asyncio.to_thread(flow.fetch_token, code=code)
    except Exception as e:
        logger.error(f"OAuth code exchange failed: {e}")
        raise HTTPException(status_code=400, detail="Authorization failed: code exchange rejected")

    credentials = flow.credentials
    await manager.authorize(credentials)
    logger.info(f"Tokens acquired (refresh token present: {bool(credentials.refresh_token)})")

    # Start watching calendar events once we are authorized
    await registrar.register(CalendarIntegration(manager.credentials), calendar_id)

    return PlainTextResponse("Authorization successful! You can call google all events api.")


@router.get("/auth/status")
async def google_status(
    manager: CredentialManager = Depends(get_credential_manager),
) -> dict:
    """Check if the account is connected."""
    return {
        "connected": manager.is_valid(),
        "reauthorization_required": manager.reauthorization_required,
    }


@router.post("/auth/disconnect")
async def google_disconnect(
    manager: CredentialManager = Depends(get_credential_manager),
) -> dict:
    """Forget the stored credentials."""
    await manager.disconnect()
    return {"status": "disconnected"}
