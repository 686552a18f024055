"""
Tests for IngestionService - validation, dedup, plan quotas and handoff
to the pipeline.
"""

import uuid
from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock

from engagebrain.services.event_store import EngagementEvent, EventStatus
from engagebrain.services.ingestion_service import (
    IngestionEvent,
    IngestionService,
    InvalidEventError,
    dedup_key,
)

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def _raw(**overrides):
    raw = {
        "event_id": str(uuid.uuid4()),
        "event_type": "COMMENT_TEXT",
        "platform": "TIKTOK",
        "platform_video_id": "v1",
        "platform_comment_id": "c1",
        "platform_author_id": "u1",
        "raw_text": "Foundation & concealer from???",
        "observed_at": "2026-03-10T12:00:00+00:00",
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def service(pipeline):
    return IngestionService(pipeline, clock=lambda: NOW)


async def _suggest_mode(pipeline, account_id="acct_1"):
    await pipeline.settings_repo.update(account_id, {"mode": "SUGGEST"})


async def _seed(pipeline, count, status=EventStatus.RECEIVED):
    for i in range(count):
        await pipeline.events.insert(EngagementEvent(
            account_id="acct_1",
            platform="tiktok",
            video_id=f"seed-{i}",
            status=status,
            created_at=NOW,
        ))


class TestValidation:

    @pytest.mark.asyncio
    async def test_missing_fields(self, service):
        with pytest.raises(InvalidEventError):
            await service.process_event({"event_id": str(uuid.uuid4())}, account_id="acct_1")

    @pytest.mark.asyncio
    async def test_event_id_must_be_uuid(self, service):
        with pytest.raises(InvalidEventError):
            await service.process_event(_raw(event_id="not-a-uuid"), account_id="acct_1")

    @pytest.mark.asyncio
    async def test_observed_at_needs_timezone(self, service):
        with pytest.raises(InvalidEventError, match="timezone"):
            await service.process_event(_raw(observed_at="2026-03-10T12:00:00"), account_id="acct_1")

    @pytest.mark.asyncio
    async def test_unknown_platform(self, service):
        with pytest.raises(InvalidEventError):
            await service.process_event(_raw(platform="MYSPACE"), account_id="acct_1")

    @pytest.mark.asyncio
    async def test_invalid_events_are_not_stored(self, service, pipeline):
        with pytest.raises(InvalidEventError):
            await service.process_event(_raw(event_type="LIKE"), account_id="acct_1")
        assert pipeline.events.all() == []


class TestDedup:

    @pytest.mark.asyncio
    async def test_same_event_id(self, service, pipeline):
        raw = _raw()
        first = await service.process_event(raw, account_id="acct_1")
        second = await service.process_event(raw, account_id="acct_1")

        assert second.status == EventStatus.DUPLICATE
        assert second.event_id == first.event_id
        assert len(pipeline.events.all()) == 1

    @pytest.mark.asyncio
    async def test_same_content_new_event_id(self, service):
        first = await service.process_event(_raw(), account_id="acct_1")
        second = await service.process_event(_raw(), account_id="acct_1")

        assert second.status == EventStatus.DUPLICATE
        assert second.event_id == first.event_id

    @pytest.mark.asyncio
    async def test_other_install_is_not_duplicate(self, service, pipeline):
        await service.process_event(_raw(), account_id="acct_1", install_id="inst_a")
        result = await service.process_event(_raw(), account_id="acct_1", install_id="inst_b")

        assert result.status != EventStatus.DUPLICATE
        assert len(pipeline.events.all()) == 2

    @pytest.mark.asyncio
    async def test_other_account_is_not_duplicate(self, service):
        raw = _raw()
        await service.process_event(raw, account_id="acct_1")
        result = await service.process_event(raw, account_id="acct_2")

        assert result.status == EventStatus.OBSERVED

    def test_dedup_key_is_deterministic(self):
        event = IngestionEvent.model_validate(_raw())

        assert dedup_key("inst", event) == dedup_key("inst", event)
        assert dedup_key("inst", event) != dedup_key("other", event)
        changed = event.model_copy(update={"raw_text": "something else"})
        assert dedup_key("inst", event) != dedup_key("inst", changed)


class TestModes:

    @pytest.mark.asyncio
    async def test_observe_only_skips_pipeline(self, service, pipeline):
        pipeline.process = AsyncMock()

        result = await service.process_event(_raw(), account_id="acct_1")

        assert result.status == EventStatus.OBSERVED
        pipeline.process.assert_not_awaited()
        stored = pipeline.events.all()[0]
        assert stored.status == EventStatus.OBSERVED
        assert stored.platform == "tiktok"
        assert stored.target_id == "u1"

    @pytest.mark.asyncio
    async def test_suggest_mode_queues_inquiry(self, service, pipeline):
        await _suggest_mode(pipeline)

        result = await service.process_event(_raw(), account_id="acct_1")

        assert result.status == EventStatus.SUGGESTED
        stored = pipeline.events.all()
        assert len(stored) == 1
        assert stored[0].status == EventStatus.SUGGESTED
        pending = pipeline.control.list_pending("acct_1")
        assert len(pending) == 1
        assert pending[0].original_plan.draft_message == "Thanks for reaching out! (answer draft)"

    @pytest.mark.asyncio
    async def test_noise_is_ignored(self, service, pipeline):
        await _suggest_mode(pipeline)

        result = await service.process_event(_raw(raw_text="lol"), account_id="acct_1")

        assert result.status == EventStatus.IGNORED
        assert pipeline.events.all()[0].status == EventStatus.IGNORED

    @pytest.mark.asyncio
    async def test_unpromoted_signal_is_observed(self, service, pipeline):
        await _suggest_mode(pipeline)

        result = await service.process_event(_raw(raw_text="This color fits my anniversary"), account_id="acct_1")

        assert result.status == EventStatus.OBSERVED
        assert pipeline.control.list_pending("acct_1") == []

    @pytest.mark.asyncio
    async def test_pipeline_failure_leaves_event_received(self, service, pipeline):
        await _suggest_mode(pipeline)
        pipeline.process = AsyncMock(side_effect=RuntimeError("boom"))

        result = await service.process_event(_raw(), account_id="acct_1")

        assert result.status == EventStatus.RECEIVED
        assert pipeline.events.all()[0].status == EventStatus.RECEIVED


class TestPlanQuotas:

    @pytest.mark.asyncio
    async def test_events_per_day(self, service, pipeline):
        await _seed(pipeline, 50)

        result = await service.process_event(_raw(), account_id="acct_1")

        assert result.status == EventStatus.BLOCKED_PLAN
        blocked = [e for e in pipeline.events.all() if e.status == EventStatus.BLOCKED_PLAN]
        assert len(blocked) == 1
        assert blocked[0].id == result.event_id

    @pytest.mark.asyncio
    async def test_under_quota_passes(self, service, pipeline):
        await _seed(pipeline, 49)

        result = await service.process_event(_raw(), account_id="acct_1")

        assert result.status == EventStatus.OBSERVED

    @pytest.mark.asyncio
    async def test_suggestions_per_day(self, service, pipeline):
        await _suggest_mode(pipeline)
        await _seed(pipeline, 5, status=EventStatus.SUGGESTED)
        pipeline.process = AsyncMock()

        result = await service.process_event(_raw(), account_id="acct_1")

        assert result.status == EventStatus.BLOCKED_PLAN
        pipeline.process.assert_not_awaited()
        stored = next(e for e in pipeline.events.all() if e.id == result.event_id)
        assert stored.status == EventStatus.BLOCKED_PLAN

    @pytest.mark.asyncio
    async def test_pro_plan_has_higher_quota(self, service, pipeline):
        await pipeline.settings_repo.update("acct_1", {"plan_id": "PRO"})
        await _seed(pipeline, 50)

        result = await service.process_event(_raw(), account_id="acct_1")

        assert result.status == EventStatus.OBSERVED
