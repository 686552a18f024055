"""
Engagement event ledger.

Every ingested event is persisted here with its processing status. The
same ledger answers the count queries behind rate limits, cooldowns,
business caps and plan quotas:

    count(account_id, since=..., video_id=..., target_id=..., statuses=...)
    latest_at(account_id, target_id, statuses)

Store methods are async; the Supabase implementation runs the sync client
in a worker thread.
"""

import asyncio
import logging
import threading
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field
from supabase import Client

from ..core.database import Tables
from .models import utc_now

logger = logging.getLogger(__name__)


class EventStatus(str, Enum):
    RECEIVED = "RECEIVED"
    DUPLICATE = "DUPLICATE"
    BLOCKED_POLICY = "BLOCKED_POLICY"
    BLOCKED_PLAN = "BLOCKED_PLAN"
    OBSERVED = "OBSERVED"
    SUGGESTED = "SUGGESTED"
    IGNORED = "IGNORED"
    DONE = "DONE"
    ERROR = "ERROR"


# Statuses that count as "we engaged" for limits and cooldowns
ENGAGED_STATUSES = (EventStatus.SUGGESTED, EventStatus.DONE)


class EngagementEvent(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    account_id: str
    platform: str
    video_id: str
    event_type: str = "COMMENT_TEXT"
    comment_id: Optional[str] = None
    target_id: Optional[str] = Field(None, description="Commenting actor, when known")
    external_id: Optional[str] = Field(None, description="Client-supplied event id (primary dedup key)")
    dedup_key: Optional[str] = Field(None, description="Content hash (secondary dedup key)")
    raw_text: Optional[str] = None
    status: EventStatus = EventStatus.RECEIVED
    created_at: datetime = Field(default_factory=utc_now)


class EventStore:
    """Interface for the engagement event ledger."""

    async def insert(self, event: EngagementEvent) -> EngagementEvent:
        raise NotImplementedError

    async def update_status(self, event_id: str, status: EventStatus):
        raise NotImplementedError

    async def find_by_external_id(self, account_id: str, external_id: str) -> Optional[EngagementEvent]:
        raise NotImplementedError

    async def find_by_dedup_key(self, account_id: str, dedup_key: str) -> Optional[EngagementEvent]:
        raise NotImplementedError

    async def count(
        self,
        account_id: str,
        since: Optional[datetime] = None,
        video_id: Optional[str] = None,
        target_id: Optional[str] = None,
        statuses: Optional[Iterable[EventStatus]] = None
    ) -> int:
        raise NotImplementedError

    async def latest_at(
        self,
        account_id: str,
        target_id: str,
        statuses: Optional[Iterable[EventStatus]] = None
    ) -> Optional[datetime]:
        raise NotImplementedError


class InMemoryEventStore(EventStore):

    def __init__(self):
        self._events: Dict[str, EngagementEvent] = {}
        self._lock = threading.Lock()

    async def insert(self, event: EngagementEvent) -> EngagementEvent:
        with self._lock:
            self._events[event.id] = event.model_copy()
        return event

    async def update_status(self, event_id: str, status: EventStatus):
        with self._lock:
            if event_id in self._events:
                self._events[event_id].status = status

    async def find_by_external_id(self, account_id: str, external_id: str) -> Optional[EngagementEvent]:
        return self._find(lambda e: e.account_id == account_id and e.external_id == external_id)

    async def find_by_dedup_key(self, account_id: str, dedup_key: str) -> Optional[EngagementEvent]:
        return self._find(lambda e: e.account_id == account_id and e.dedup_key == dedup_key)

    async def count(self, account_id, since=None, video_id=None, target_id=None, statuses=None) -> int:
        return len(self._matching(account_id, since, video_id, target_id, statuses))

    async def latest_at(self, account_id, target_id, statuses=None) -> Optional[datetime]:
        matches = self._matching(account_id, None, None, target_id, statuses)
        return max((e.created_at for e in matches), default=None)

    def all(self) -> List[EngagementEvent]:
        with self._lock:
            return [e.model_copy() for e in self._events.values()]

    def _find(self, predicate) -> Optional[EngagementEvent]:
        with self._lock:
            for event in self._events.values():
                if predicate(event):
                    return event.model_copy()
        return None

    def _matching(self, account_id, since, video_id, target_id, statuses) -> List[EngagementEvent]:
        wanted = set(statuses) if statuses else None
        with self._lock:
            return [
                e for e in self._events.values()
                if e.account_id == account_id
                and (since is None or e.created_at >= since)
                and (video_id is None or e.video_id == video_id)
                and (target_id is None or e.target_id == target_id)
                and (wanted is None or e.status in wanted)
            ]


class SupabaseEventStore(EventStore):
    """engagement_events table, one row per EngagementEvent field."""

    def __init__(self, supabase_client: Client):
        self.supabase = supabase_client

    def _table(self):
        return self.supabase.table(Tables.ENGAGEMENT_EVENTS)

    async def insert(self, event: EngagementEvent) -> EngagementEvent:
        row = event.model_dump(mode="json")
        await asyncio.to_thread(lambda: self._table().insert(row).execute())
        return event

    async def update_status(self, event_id: str, status: EventStatus):
        await asyncio.to_thread(
            lambda: self._table().update({"status": status.value}).eq("id", event_id).execute()
        )

    async def find_by_external_id(self, account_id: str, external_id: str) -> Optional[EngagementEvent]:
        return await self._find_one(account_id, "external_id", external_id)

    async def find_by_dedup_key(self, account_id: str, dedup_key: str) -> Optional[EngagementEvent]:
        return await self._find_one(account_id, "dedup_key", dedup_key)

    async def count(self, account_id, since=None, video_id=None, target_id=None, statuses=None) -> int:
        def run():
            query = self._table().select("id", count="exact").eq("account_id", account_id)
            query = self._apply_filters(query, since, video_id, target_id, statuses)
            return query.execute()

        result = await asyncio.to_thread(run)
        return result.count or 0

    async def latest_at(self, account_id, target_id, statuses=None) -> Optional[datetime]:
        def run():
            query = self._table().select("created_at").eq("account_id", account_id)
            query = self._apply_filters(query, None, None, target_id, statuses)
            return query.order("created_at", desc=True).limit(1).execute()

        result = await asyncio.to_thread(run)
        if not result.data:
            return None
        return datetime.fromisoformat(result.data[0]["created_at"])

    async def _find_one(self, account_id: str, column: str, value: str) -> Optional[EngagementEvent]:
        result = await asyncio.to_thread(
            lambda: self._table().select("*").eq("account_id", account_id).eq(column, value).limit(1).execute()
        )
        if not result.data:
            return None
        return EngagementEvent.model_validate(result.data[0])

    @staticmethod
    def _apply_filters(query, since, video_id, target_id, statuses):
        if since is not None:
            query = query.gte("created_at", since.isoformat())
        if video_id is not None:
            query = query.eq("video_id", video_id)
        if target_id is not None:
            query = query.eq("target_id", target_id)
        if statuses:
            query = query.in_("status", [s.value for s in statuses])
        return query
