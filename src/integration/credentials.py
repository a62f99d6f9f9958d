"""
Credential lifecycle for the single authorized Google account.

All reads and writes of the in-memory credentials go through one
CredentialManager, and every mutation happens while holding its lock, so
two requests that both see an expired access token trigger one refresh.
"""

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import requests
from google.oauth2.credentials import Credentials

from calendar_sync.errors import AuthenticationMissing, ReauthorizationRequired
from integration.token_refresher import TokenRefresher
from storage.google_auth import GoogleAuthStore

logger = logging.getLogger(__name__)

TOKENINFO_URL = os.getenv("GOOGLE_TOKENINFO_URL", "https://oauth2.googleapis.com/tokeninfo")

# At least google-auth's refresh threshold (3m45s)
EXPIRY_SKEW = timedelta(minutes=4)


def _utcnow() -> datetime:
    # google-auth compares naive UTC datetimes
    return datetime.now(timezone.utc).replace(tzinfo=None)


def fetch_token_expiry(access_token: str, timeout_s: float = 5.0) -> Optional[datetime]:
    """Ask Google's tokeninfo endpoint when an access token expires.

    Returns None when the token is unknown or already expired (Google answers
    400 for those) or when the endpoint is unreachable.
    """
    try:
        resp = requests.get(
            TOKENINFO_URL, params={"access_token": access_token}, timeout=timeout_s
        )
        if resp.status_code != 200:
            return None
        exp = resp.json().get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(int(exp), tz=timezone.utc).replace(tzinfo=None)
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Token info unavailable: {e}")
        return None


class CredentialManager:
    def __init__(
        self,
        refresher: TokenRefresher,
        store: Optional[GoogleAuthStore] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ):
        self._refresher = refresher
        self._store = store
        self._client_id = client_id
        self._client_secret = client_secret
        self._credentials: Optional[Credentials] = None
        self._lock = asyncio.Lock()
        self.reauthorization_required = False

    @property
    def credentials(self) -> Optional[Credentials]:
        return self._credentials

    def is_valid(self) -> bool:
        """False when there is no refresh token to work with."""
        return self._credentials is not None and bool(self._credentials.refresh_token)

    async def load(self) -> None:
        """Restore the persisted credentials (called at startup)."""
        if self._store is None:
            return
        creds = await self._store.get_credentials(self._client_id, self._client_secret)
        async with self._lock:
            self._credentials = creds
        logger.info(f"Loaded stored credentials: {'yes' if creds else 'none'}")

    async def authorize(self, credentials: Credentials) -> None:
        """Install credentials obtained from the consent flow."""
        async with self._lock:
            if not credentials.refresh_token and self._credentials is not None:
                # Google only returns a refresh token on first consent
                credentials = Credentials(
                    token=credentials.token,
                    refresh_token=self._credentials.refresh_token,
                    token_uri=credentials.token_uri,
                    client_id=credentials.client_id,
                    client_secret=credentials.client_secret,
                    scopes=credentials.scopes,
                    expiry=credentials.expiry,
                )
            self._credentials = credentials
            self.reauthorization_required = False
            await self._persist(credentials)
        logger.info("Authorization stored")

    async def disconnect(self) -> None:
        async with self._lock:
            self._credentials = None
            self.reauthorization_required = False
            if self._store is not None:
                await self._store.delete_credentials()

    async def check_and_refresh(self) -> Credentials:
        """
        Return credentials whose access token is usable, refreshing first when
        the token has expired or is within google-auth's refresh window.

        Raises:
            AuthenticationMissing: no refresh token is available.
            ReauthorizationRequired: the refresh token was rejected earlier or
                is rejected now. No refresh is attempted once latched.
        """
        async with self._lock:
            if not self.is_valid():
                raise AuthenticationMissing("No refresh token available.")
            if self.reauthorization_required:
                raise ReauthorizationRequired(
                    "Refresh token was revoked; visit /auth to reauthorize."
                )

            creds = self._credentials

            if await self._needs_refresh(creds):
                try:
                    refreshed = await self._refresher.refresh(creds)
                except ReauthorizationRequired:
                    self.reauthorization_required = True
                    raise

                if refreshed is not None:
                    self._credentials = refreshed
                    await self._persist(refreshed)
                else:
                    logger.warning("Access token refresh failed; keeping current credentials")

            return self._credentials

    async def _needs_refresh(self, creds: Credentials) -> bool:
        if creds.expiry is not None:
            # Same rule the API client applies before each request
            return creds.expired
        if not creds.token:
            return True
        expiry = await asyncio.to_thread(fetch_token_expiry, creds.token)
        return expiry is None or expiry - EXPIRY_SKEW <= _utcnow()

    async def _persist(self, creds: Credentials) -> None:
        if self._store is None:
            return
        try:
            await self._store.save_credentials(creds)
        except Exception as e:
            # The in-memory credentials stay authoritative for this process
            logger.error(f"Failed to persist credentials: {e}")
