import logging
from typing import Any, AsyncIterable, Dict

from api.metrics import EVENTS_RECONCILED_TOTAL
from calendar_sync.errors import StorageConflict
from calendar_sync.models import BulkSyncSummary, EventRecord
from storage.event_store import EventStore

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"
SKIPPED = "skipped"


class Reconciler:
    """Applies remote event state to the local event store."""

    def __init__(self, event_store: EventStore):
        self.event_store = event_store

    async def reconcile(self, event: Dict[str, Any]) -> str:
        """
        Apply one remote event.

        cancelled -> delete (no-op when unknown); unknown -> create;
        known -> overwrite every mutable field. Applying the same event twice
        leaves the same state.
        """
        if event.get("status") == "cancelled":
            await self.event_store.delete(event["id"])
            return self._count(DELETED)

        record = EventRecord.from_google(event)

        if not await self.event_store.exists(record.external_id):
            try:
                await self.event_store.create(record)
            except StorageConflict:
                # Another delivery created it between our check and insert
                logger.warning(f"Event {record.external_id} created concurrently, ignoring")
                return self._count(SKIPPED)
            return self._count(CREATED)

        if not await self.event_store.update(record):
            # Deleted between the existence check and the update
            return self._count(SKIPPED)
        return self._count(UPDATED)

    async def reconcile_all(self, events: AsyncIterable[Dict[str, Any]]) -> BulkSyncSummary:
        """
        Bulk import: insert events we have never seen, leave known ones alone.

        Unlike reconcile() this never overwrites an existing record.
        """
        summary = BulkSyncSummary()

        async for event in events:
            summary.fetched += 1
            record = EventRecord.from_google(event)

            if await self.event_store.exists(record.external_id):
                summary.skipped += 1
                continue

            try:
                await self.event_store.create(record)
            except StorageConflict:
                logger.warning(f"Event {record.external_id} created concurrently, ignoring")
                summary.skipped += 1
                continue
            summary.created += 1

        EVENTS_RECONCILED_TOTAL.labels(action=CREATED).inc(summary.created)
        EVENTS_RECONCILED_TOTAL.labels(action=SKIPPED).inc(summary.skipped)
        logger.info(
            f"Bulk sync: fetched={summary.fetched} created={summary.created} skipped={summary.skipped}"
        )
        return summary

    @staticmethod
    def _count(action: str) -> str:
        EVENTS_RECONCILED_TOTAL.labels(action=action).inc()
        return action
