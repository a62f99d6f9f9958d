from typing import Optional


class CalendarSyncError(RuntimeError):
    """Base error for the calendar sync service."""


class AuthenticationMissing(CalendarSyncError):
    """No refresh token is available; the caller has never authorized."""


class ReauthorizationRequired(CalendarSyncError):
    """The provider rejected the refresh token (revoked or expired).

    Only a human-driven pass through the consent screen clears this.
    """


class ProviderAPIError(CalendarSyncError):
    """A call to the calendar provider failed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        self.message = message
        if status_code is not None:
            message = f"Google Calendar API request failed ({status_code}): {message}"
        super().__init__(message)


class StorageConflict(CalendarSyncError):
    """A create collided with an existing record for the same external id."""

    def __init__(self, external_id: str) -> None:
        self.external_id = external_id
        super().__init__(f"Event {external_id} already exists")
