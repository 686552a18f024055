"""
Ingestion Service - strict event intake in front of the pipeline.

    validate -> dedup (external id, then content hash) -> plan quota
    -> persist -> tenant mode -> suggestion quota -> pipeline

Every accepted event is persisted exactly once, including those blocked
by the plan (status BLOCKED_PLAN). Duplicates are acknowledged with the
id of the first copy and never stored again.

Usage:
    service = IngestionService(pipeline)
    result = await service.process_event(raw_json, account_id="acct_1", install_id="inst_1")
    print(result.status, result.event_id)
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .engagement_pipeline import EngagementPipeline
from .event_adapters import VideoEvent, VideoEventAdapter
from .event_store import EngagementEvent, EventStatus, EventStore
from .models import EngagementMode, utc_now
from .plan_enforcer import LimitMetric, PlanEnforcer, PlanLimitExceeded
from .safety.safety_service import start_of_day
from .settings_service import SettingsRepository

logger = logging.getLogger(__name__)

PLATFORM_NAMES = {
    "TIKTOK": "tiktok",
    "YOUTUBE": "youtube",
    "IG": "instagram",
    "OTHER": "other",
}


class InvalidEventError(ValueError):
    """Ingestion payload failed schema validation"""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid ingestion event: {detail}")


class IngestionEvent(BaseModel):
    """Transport contract for observed events. No enrichment."""
    event_id: str = Field(..., description="Client-generated UUID")
    event_type: Literal["VIDEO_VIEW", "COMMENT_VIEW", "COMMENT_TEXT"]
    platform: Literal["TIKTOK", "YOUTUBE", "IG", "OTHER"]
    platform_video_id: str = Field(..., min_length=1)
    platform_comment_id: Optional[str] = None
    platform_author_id: Optional[str] = None
    raw_text: Optional[str] = None
    observed_at: datetime

    @field_validator('event_id')
    @classmethod
    def check_uuid(cls, v: str) -> str:
        uuid.UUID(v)
        return v

    @field_validator('observed_at')
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("observed_at must carry a timezone")
        return v


@dataclass
class IngestResult:
    status: EventStatus
    event_id: str


def dedup_key(install_id: str, event: IngestionEvent) -> str:
    text_hash = hashlib.sha256((event.raw_text or "").encode()).hexdigest()
    material = (
        f"{install_id}:{event.platform}:{event.platform_video_id}:"
        f"{event.platform_comment_id or 'null'}:{text_hash}"
    )
    return hashlib.sha256(material.encode()).hexdigest()


class IngestionService:

    def __init__(
        self,
        pipeline: EngagementPipeline,
        events: Optional[EventStore] = None,
        settings_repo: Optional[SettingsRepository] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.pipeline = pipeline
        self.events = events or pipeline.events
        self.settings_repo = settings_repo or pipeline.settings_repo
        self.clock = clock

    async def process_event(self, raw: Dict[str, Any], account_id: str, install_id: str = "default") -> IngestResult:
        """
        Ingest one raw event.

        Raises:
            InvalidEventError: Payload does not match the ingestion contract
        """
        try:
            event = IngestionEvent.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Ingestion schema invalid: {e.error_count()} errors")
            raise InvalidEventError(str(e)) from e

        existing = await self.events.find_by_external_id(account_id, event.event_id)
        if existing:
            logger.info(f"Dedup hit (external id) {event.event_id}")
            return IngestResult(EventStatus.DUPLICATE, existing.id)

        key = dedup_key(install_id, event)
        existing = await self.events.find_by_dedup_key(account_id, key)
        if existing:
            logger.info(f"Dedup hit (content hash) {key[:12]}")
            return IngestResult(EventStatus.DUPLICATE, existing.id)

        settings = await self.settings_repo.get(account_id)
        today = start_of_day(self.clock())

        status = EventStatus.RECEIVED
        try:
            events_today = await self.events.count(account_id, since=today)
            PlanEnforcer.check_limit(settings.plan_id, LimitMetric.EVENTS_PER_DAY, events_today)
        except PlanLimitExceeded as e:
            logger.warning(f"{account_id}: {e}")
            status = EventStatus.BLOCKED_PLAN

        stored = await self.events.insert(EngagementEvent(
            account_id=account_id,
            platform=PLATFORM_NAMES[event.platform],
            video_id=event.platform_video_id,
            event_type=event.event_type,
            comment_id=event.platform_comment_id,
            target_id=event.platform_author_id,
            external_id=event.event_id,
            dedup_key=key,
            raw_text=event.raw_text,
            status=status,
        ))
        if status == EventStatus.BLOCKED_PLAN:
            return IngestResult(status, stored.id)

        if settings.mode == EngagementMode.OBSERVE_ONLY:
            await self.events.update_status(stored.id, EventStatus.OBSERVED)
            return IngestResult(EventStatus.OBSERVED, stored.id)

        try:
            suggested_today = await self.events.count(account_id, since=today, statuses=[EventStatus.SUGGESTED])
            PlanEnforcer.check_limit(settings.plan_id, LimitMetric.SUGGESTIONS_PER_DAY, suggested_today)
        except PlanLimitExceeded as e:
            logger.warning(f"{account_id}: {e}")
            await self.events.update_status(stored.id, EventStatus.BLOCKED_PLAN)
            return IngestResult(EventStatus.BLOCKED_PLAN, stored.id)

        request = VideoEventAdapter.to_capability_request(VideoEvent(
            platform=PLATFORM_NAMES[event.platform],
            video_id=event.platform_video_id,
            creator_id="unknown",
            timestamp=event.observed_at,
            session_id="ingest_session",
            install_id=install_id,
            text=event.raw_text or "",
        ))
        request.tenant_id = account_id
        request.context["raw_event"].update({
            "account_id": account_id,
            "event_id": stored.id,
            "comment_id": event.platform_comment_id,
            "commenter_id": event.platform_author_id,
        })

        try:
            response = await self.pipeline.process(request)
        except Exception as e:
            # The event stays RECEIVED; ingestion itself succeeded
            logger.error(f"Pipeline failed for event {stored.id}: {e}", exc_info=True)
            return IngestResult(EventStatus.RECEIVED, stored.id)

        if response.kind == "error":
            final = EventStatus.ERROR
        elif response.kind == "ignore":
            final = EventStatus.IGNORED
        elif response.payload.get("queued"):
            final = EventStatus.SUGGESTED
        else:
            final = EventStatus.OBSERVED

        if final != EventStatus.SUGGESTED:
            await self.events.update_status(stored.id, final)
        return IngestResult(final, stored.id)
