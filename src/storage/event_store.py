"""
Event store for the calendar sync service.

PostgreSQL-backed CRUD over event records keyed by the provider's event id.
"""

import json
import logging
from typing import List, Optional

import asyncpg

from calendar_sync.errors import StorageConflict
from calendar_sync.models import EventRecord
from storage import db

logger = logging.getLogger(__name__)

# EventRecord field -> events column
_COLUMNS = {
    "start": "start_at",
    "end": "end_at",
    "status": "status",
    "creator": "creator",
    "description": "description",
}


def _record_to_event(record) -> EventRecord:
    return EventRecord(
        external_id=record["external_id"],
        start=record["start_at"],
        end=record["end_at"],
        status=record["status"],
        creator=json.loads(record["creator"]) if record["creator"] else [],
        description=record["description"] or "",
    )


def _affected_rows(status: str) -> int:
    # asyncpg returns e.g. "DELETE 1" / "UPDATE 0"
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError, AttributeError):
        return 0


class EventStore:
    """
    Event records, one row per external id.

    The primary key on external_id is the only guard against two
    concurrent creates; the loser gets StorageConflict.
    """

    async def get(self, external_id: str) -> Optional[EventRecord]:
        record = await db.fetchrow(
            "SELECT * FROM events WHERE external_id = $1", external_id
        )
        if record is None:
            return None
        return _record_to_event(record)

    async def exists(self, external_id: str) -> bool:
        return bool(
            await db.fetchval(
                "SELECT EXISTS(SELECT 1 FROM events WHERE external_id = $1)",
                external_id,
            )
        )

    async def create(self, event: EventRecord) -> None:
        """
        Insert a new record.

        Raises:
            StorageConflict: a record with the same external id already exists.
        """
        query = """
            INSERT INTO events (external_id, start_at, end_at, status, creator, description)
            VALUES ($1, $2, $3, $4, $5, $6)
        """
        try:
            await db.execute(
                query,
                event.external_id,
                event.start,
                event.end,
                event.status,
                json.dumps(event.creator),
                event.description,
            )
        except asyncpg.UniqueViolationError as e:
            raise StorageConflict(event.external_id) from e

        logger.info(f"Created event {event.external_id} ({event.description!r})")

    async def update(self, event: EventRecord) -> bool:
        """Overwrite the mutable fields of an existing record. The id never changes."""
        fields = event.mutable_fields()
        fields["creator"] = json.dumps(fields["creator"])
        assignments = ", ".join(
            f"{_COLUMNS[name]} = ${i}" for i, name in enumerate(fields, start=2)
        )
        result = await db.execute(
            f"UPDATE events SET {assignments}, updated_at = NOW() WHERE external_id = $1",
            event.external_id,
            *fields.values(),
        )
        updated = _affected_rows(result) > 0
        if updated:
            logger.info(f"Updated event {event.external_id} ({event.description!r})")
        else:
            logger.warning(f"Update matched no record for event {event.external_id}")
        return updated

    async def delete(self, external_id: str) -> bool:
        """Remove a record. Deleting an unknown id is not an error."""
        result = await db.execute(
            "DELETE FROM events WHERE external_id = $1", external_id
        )
        deleted = _affected_rows(result) > 0
        logger.info(f"Deleted event {external_id} (found={deleted})")
        return deleted

    async def list_events(self, limit: int = 100) -> List[EventRecord]:
        records = await db.fetch(
            "SELECT * FROM events ORDER BY start_at NULLS LAST LIMIT $1", limit
        )
        return [_record_to_event(r) for r in records]

    async def count(self) -> int:
        return await db.fetchval("SELECT COUNT(*) FROM events")
