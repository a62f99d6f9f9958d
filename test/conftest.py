from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from google.oauth2.credentials import Credentials

from calendar_sync.errors import StorageConflict


class FakeEventStore:
    """In-memory stand-in for storage.event_store.EventStore."""

    def __init__(self):
        self.records = {}
        self.conflict_on_create = False

    async def get(self, external_id):
        return self.records.get(external_id)

    async def exists(self, external_id):
        return external_id in self.records

    async def create(self, event):
        if self.conflict_on_create or event.external_id in self.records:
            raise StorageConflict(event.external_id)
        self.records[event.external_id] = event

    async def update(self, event):
        if event.external_id not in self.records:
            return False
        self.records[event.external_id] = event
        return True

    async def delete(self, external_id):
        return self.records.pop(external_id, None) is not None

    async def list_events(self, limit=100):
        return list(self.records.values())[:limit]

    async def count(self):
        return len(self.records)


class FakeRequest:
    def __init__(self, result=None, error=None):
        self._result = result
        self._error = error

    def execute(self):
        if self._error is not None:
            raise self._error
        return self._result


class FakeEventsResource:
    """Mimics service.events() with paged list results."""

    def __init__(self, pages, error=None):
        self.pages = pages
        self.error = error
        self.list_calls = []
        self.watch_calls = []

    def list(self, **kwargs):
        self.list_calls.append(kwargs)
        if self.error is not None:
            return FakeRequest(error=self.error)
        token = kwargs.get("pageToken")
        idx = int(token) if token else 0
        response = {"items": self.pages[idx] if self.pages else []}
        if idx + 1 < len(self.pages):
            response["nextPageToken"] = str(idx + 1)
        return FakeRequest(response)

    def watch(self, calendarId, body):
        self.watch_calls.append({"calendarId": calendarId, "body": body})
        if self.error is not None:
            return FakeRequest(error=self.error)
        return FakeRequest(
            {"id": body["id"], "resourceId": "res-1", "expiration": "1767225600000"}
        )


class FakeService:
    def __init__(self, events_resource):
        self._events = events_resource

    def events(self):
        return self._events


class FakeRefresher:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    async def refresh(self, credentials):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def google_event(event_id, status="confirmed", summary="Standup", **extra):
    event = {
        "id": event_id,
        "status": status,
        "summary": summary,
        "start": {"dateTime": "2024-01-01T10:00:00Z"},
        "end": {"dateTime": "2024-01-01T11:00:00Z"},
        "creator": {"email": "owner@example.com"},
    }
    event.update(extra)
    return event


def make_credentials(expiry=None, refresh_token="refresh-1", token="access-1"):
    return Credentials(
        token=token,
        refresh_token=refresh_token,
        token_uri="https://oauth2.googleapis.com/token",
        client_id="client",
        client_secret="secret",
        expiry=expiry,
    )


@pytest.fixture
def event_store():
    return FakeEventStore()


@pytest.fixture
def fake_service_factory():
    def _make(pages=None, error=None):
        return FakeService(FakeEventsResource(pages or [], error=error))
    return _make


@pytest.fixture
def fresh_credentials():
    return make_credentials(expiry=_utcnow() + timedelta(hours=1))


@pytest.fixture
def expired_credentials():
    return make_credentials(expiry=_utcnow() - timedelta(minutes=5))


@pytest.fixture
def http_error_factory():
    from googleapiclient.errors import HttpError

    def _make(status=500, message="Backend Error"):
        resp = SimpleNamespace(status=status, reason=message)
        return HttpError(resp, b'{"error": {"message": "%s"}}' % message.encode())
    return _make
