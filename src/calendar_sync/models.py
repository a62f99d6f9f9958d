from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


EventStatus = Literal["confirmed", "tentative", "cancelled"]


class EventRecord(BaseModel):
    external_id: str = Field(..., min_length=1)
    start: Optional[str] = None
    end: Optional[str] = None
    status: Optional[EventStatus] = None

    # Google returns a single creator object; we keep a list so several
    # participant descriptors fit the same column.
    creator: List[Dict[str, Any]] = Field(default_factory=list)

    description: str = ""

    @field_validator("external_id")
    @classmethod
    def external_id_not_blank(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("external_id must not be blank")
        return v2

    @classmethod
    def from_google(cls, event: Dict[str, Any]) -> "EventRecord":
        """Map a raw Google Calendar event onto a local record.

        Timed events carry ``dateTime``; all-day events only carry ``date``.
        """
        start = event.get("start") or {}
        end = event.get("end") or {}

        creator = event.get("creator")
        if creator is None:
            creators = []
        elif isinstance(creator, list):
            creators = list(creator)
        else:
            creators = [creator]

        return cls(
            external_id=event["id"],
            start=start.get("dateTime") or start.get("date"),
            end=end.get("dateTime") or end.get("date"),
            status=event.get("status"),
            creator=creators,
            description=event.get("summary") or "",
        )

    def mutable_fields(self) -> Dict[str, Any]:
        """Everything that may be overwritten on a later sighting of the event."""
        return self.model_dump(exclude={"external_id"})


class WatchSubscription(BaseModel):
    channel_id: str
    address: str
    ttl_seconds: int = Field(3600, gt=0)

    # Filled from the provider response
    resource_id: Optional[str] = None
    expiration: Optional[datetime] = None


class BulkSyncSummary(BaseModel):
    fetched: int = 0
    created: int = 0
    skipped: int = 0
