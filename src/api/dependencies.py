import os

from fastapi import Depends, HTTPException
from google.oauth2.credentials import Credentials

from api import state
from integration.credentials import CredentialManager
from integration.reconciler import Reconciler
from integration.watch_registrar import WatchRegistrar
from storage.event_store import EventStore

CALENDAR_ID = os.getenv("CALENDAR_ID", "primary")


def get_event_store() -> EventStore:
    if state.event_store is None:
        raise HTTPException(status_code=503, detail="Event store not initialized")
    return state.event_store


def get_credential_manager() -> CredentialManager:
    if state.credential_manager is None:
        raise HTTPException(status_code=503, detail="Credential manager not initialized")
    return state.credential_manager


def get_reconciler(event_store: EventStore = Depends(get_event_store)) -> Reconciler:
    return Reconciler(event_store)


def get_watch_registrar() -> WatchRegistrar:
    return WatchRegistrar()


def get_calendar_id() -> str:
    return CALENDAR_ID


async def require_credentials(
    manager: CredentialManager = Depends(get_credential_manager),
) -> Credentials:
    """Guard for provider-facing routes: refreshes an expired token first."""
    return await manager.check_and_refresh()
