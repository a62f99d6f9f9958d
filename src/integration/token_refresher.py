import asyncio
import logging
from typing import Callable, Optional

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from api.metrics import TOKEN_REFRESH_TOTAL
from calendar_sync.errors import ReauthorizationRequired

logger = logging.getLogger(__name__)


def is_invalid_grant(error: RefreshError) -> bool:
    """Whether Google rejected the refresh token itself (revoked or expired).

    google-auth raises RefreshError(message, response_data); the message
    starts with the OAuth error code.
    """
    if len(error.args) > 1 and isinstance(error.args[1], dict):
        if error.args[1].get("error") == "invalid_grant":
            return True
    return bool(error.args) and "invalid_grant" in str(error.args[0])


class TokenRefresher:
    """Exchanges the stored refresh token for a new access token."""

    def __init__(self, request_factory: Callable[[], Request] = Request):
        self._request_factory = request_factory

    async def refresh(self, credentials: Credentials) -> Optional[Credentials]:
        """
        Run the refresh-token grant against Google's token endpoint.

        Returns:
            New credentials with a fresh access token and the ORIGINAL refresh
            token, or None when the refresh failed for a transient reason
            (the caller keeps its current credentials and retries next time).

        Raises:
            ReauthorizationRequired: Google answered invalid_grant.
        """
        working = Credentials(
            token=credentials.token,
            refresh_token=credentials.refresh_token,
            token_uri=credentials.token_uri,
            client_id=credentials.client_id,
            client_secret=credentials.client_secret,
            scopes=credentials.scopes,
        )

        try:
            await asyncio.to_thread(working.refresh, self._request_factory())
        except RefreshError as e:
            if is_invalid_grant(e):
                TOKEN_REFRESH_TOTAL.labels(outcome="revoked").inc()
                logger.error("Refresh token may be invalid or revoked. Reauthorization required.")
                raise ReauthorizationRequired(str(e)) from e
            TOKEN_REFRESH_TOTAL.labels(outcome="failed").inc()
            logger.error(f"Error refreshing access token: {e}")
            return None
        except TransportError as e:
            TOKEN_REFRESH_TOTAL.labels(outcome="failed").inc()
            logger.error(f"Error refreshing access token (transport): {e}")
            return None

        TOKEN_REFRESH_TOTAL.labels(outcome="refreshed").inc()
        logger.info(f"Access token refreshed, new expiry {working.expiry}")

        return Credentials(
            token=working.token,
            refresh_token=credentials.refresh_token,
            token_uri=credentials.token_uri,
            client_id=credentials.client_id,
            client_secret=credentials.client_secret,
            scopes=credentials.scopes,
            expiry=working.expiry,
        )
