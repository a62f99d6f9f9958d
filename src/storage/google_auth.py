import logging
import os
from typing import Optional
from datetime import timezone

from cryptography.fernet import Fernet, InvalidToken
from google.oauth2.credentials import Credentials

from storage.db import get_pool

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/calendar"]
DEFAULT_ACCOUNT_ID = "default"


class GoogleAuthStore:
    """Encrypted persistence for the single account's OAuth token pair."""

    def __init__(self, key: Optional[str] = None):
        # In production the key MUST come from the environment, otherwise
        # tokens stored by a previous process cannot be decrypted.
        key = key or os.getenv("GOOGLE_TOKEN_ENCRYPTION_KEY")
        if not key:
            logger.warning(
                "GOOGLE_TOKEN_ENCRYPTION_KEY not set. Generating a temporary key."
            )
            key = Fernet.generate_key().decode()

        self.fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def _encrypt(self, data: Optional[str]) -> Optional[str]:
        if not data:
            return None
        return self.fernet.encrypt(data.encode()).decode()

    def _decrypt(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        try:
            return self.fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.error("Failed to decrypt stored token (encryption key changed?)")
            return None

    async def save_credentials(
        self, credentials: Credentials, account_id: str = DEFAULT_ACCOUNT_ID
    ) -> None:
        """Store the token pair, replacing whatever was stored before."""
        pool = get_pool()

        # The refresh token column is only overwritten when we have a new one;
        # Google omits it on refresh responses.
        query = """
            INSERT INTO google_credentials (account_id, access_token, refresh_token, token_expiry)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (account_id) DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = COALESCE(EXCLUDED.refresh_token, google_credentials.refresh_token),
                token_expiry = EXCLUDED.token_expiry,
                updated_at = NOW()
        """
        expiry = credentials.expiry
        if expiry is not None and expiry.tzinfo is None:
            # google-auth keeps naive UTC datetimes
            expiry = expiry.replace(tzinfo=timezone.utc)

        await pool.execute(
            query,
            account_id,
            self._encrypt(credentials.token),
            self._encrypt(credentials.refresh_token),
            expiry,
        )
        logger.info(f"Saved Google credentials for account {account_id}")

    async def get_credentials(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        account_id: str = DEFAULT_ACCOUNT_ID,
    ) -> Optional[Credentials]:
        """Rebuild the stored credentials, or None if nothing usable is stored."""
        pool = get_pool()

        row = await pool.fetchrow(
            "SELECT access_token, refresh_token, token_expiry FROM google_credentials WHERE account_id = $1",
            account_id,
        )

        if not row:
            return None

        access_token = self._decrypt(row["access_token"])
        refresh_token = self._decrypt(row["refresh_token"])

        if not access_token and not refresh_token:
            return None

        expiry = row["token_expiry"]
        # Ensure expiry is naive UTC for compatibility with google-auth
        if expiry and expiry.tzinfo:
            expiry = expiry.astimezone(timezone.utc).replace(tzinfo=None)

        return Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=client_id,
            client_secret=client_secret,
            scopes=SCOPES,
            expiry=expiry,
        )

    async def delete_credentials(self, account_id: str = DEFAULT_ACCOUNT_ID) -> None:
        """Remove stored credentials."""
        pool = get_pool()
        await pool.execute(
            "DELETE FROM google_credentials WHERE account_id = $1", account_id
        )
        logger.info(f"Deleted Google credentials for account {account_id}")
