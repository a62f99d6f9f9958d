from typing import Optional

from integration.credentials import CredentialManager
from storage.event_store import EventStore
from storage.google_auth import GoogleAuthStore

# Global instances initialized at startup
event_store: Optional[EventStore] = None
google_auth_store: Optional[GoogleAuthStore] = None
credential_manager: Optional[CredentialManager] = None
