"""
End-to-end tests for EngagementPipeline against in-memory stores and the
mock collaborators.
"""

import threading
import time
from datetime import timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock

from engagebrain.core.contracts import CapabilityInput, CapabilityRequest
from engagebrain.services.brain.llm_provider import MockProvider
from engagebrain.services.brain.rag_client import MockRagClient
from engagebrain.services.brain.runtime import BrainRuntime
from engagebrain.services.engagement_pipeline import InvalidCapabilityRequest, build
from engagebrain.services.event_store import EngagementEvent, EventStatus
from engagebrain.services.models import SafetyMode, utc_now
from engagebrain.services.safety import SafetyConfig, SafetyLimits

INQUIRY = "Foundation & concealer from???"


def _request(text, commenter="u1", account_id="acct_1", **raw_extra):
    raw = {"platform": "tiktok", "video_id": "v1", "account_id": account_id}
    if commenter:
        raw["commenter_id"] = commenter
        raw["commenter_name"] = commenter
    raw.update(raw_extra)
    return CapabilityRequest(input=CapabilityInput(query=text), context={"raw_event": raw})


def _pipeline(tables, **safety):
    runtime = BrainRuntime(provider=MockProvider(), rag_client=MockRagClient())
    return build(tables, runtime=runtime, safety_config=SafetyConfig(**safety))


async def _suggest_mode(pipeline, account_id="acct_1", **extra):
    await pipeline.settings_repo.update(account_id, {"mode": "SUGGEST", **extra})


# ============================================================================
# Routing and queueing
# ============================================================================

class TestRouting:

    @pytest.mark.asyncio
    async def test_observe_only_decides_but_never_queues(self, pipeline):
        response = await pipeline.process(_request(INQUIRY))

        assert response.kind == "answer"
        assert response.payload["strategy"] == "ANSWER"
        assert response.payload["text"] == "Thanks for reaching out! (answer draft)"
        assert response.payload["promotion"]["status"] == "PROMOTED"
        assert response.payload["promotion"]["priority_score"] == 80.0
        assert response.payload["queued"] is False
        assert response.payload["action_plan"] is None
        assert pipeline.control.list_pending() == []
        assert pipeline.events.all() == []

    @pytest.mark.asyncio
    async def test_suggest_mode_queues_reply(self, pipeline):
        await _suggest_mode(pipeline)

        response = await pipeline.process(_request(INQUIRY))

        assert response.payload["queued"] is True
        plan = response.payload["action_plan"]
        assert plan["action_type"] == "PUBLIC_REPLY"
        assert plan["draft_message"] == response.payload["text"]
        assert plan["requires_human_approval"] is True

        pending = pipeline.control.list_pending("acct_1")
        assert [a.action_plan_id for a in pending] == [response.payload["action_id"]]

        engaged = pipeline.events.all()
        assert len(engaged) == 1
        assert engaged[0].status == EventStatus.SUGGESTED
        assert engaged[0].target_id == "u1"

    @pytest.mark.asyncio
    async def test_same_commenter_is_then_in_cooldown(self, pipeline):
        await _suggest_mode(pipeline)
        await pipeline.process(_request(INQUIRY))

        response = await pipeline.process(_request("And the lipstick, where from?"))

        assert response.kind == "ignore"
        assert response.payload["blocked_by"] == "cooldown_violation"
        assert response.payload["queued"] is False
        assert len(pipeline.control.list_pending("acct_1")) == 1

    @pytest.mark.asyncio
    async def test_fit_signal_is_captured_silently(self, pipeline):
        await _suggest_mode(pipeline)

        response = await pipeline.process(_request("This color fits my anniversary"))

        assert response.kind == "recommend"
        assert response.payload["strategy"] == "SILENT_CAPTURE"
        assert response.payload["text"] == ""
        assert response.payload["promotion"]["status"] == "DEFERRED"
        assert response.payload["queued"] is False

    @pytest.mark.asyncio
    async def test_regret_is_escalated(self, pipeline):
        await _suggest_mode(pipeline)

        response = await pipeline.process(_request("I bought this and it broke"))

        assert response.payload["strategy"] == "SILENT_CAPTURE"
        assert response.payload["opportunity"]["buying_stage"] == "REGRET"
        assert response.payload["promotion"]["status"] == "PROMOTED"
        plan = response.payload["action_plan"]
        assert plan["action_type"] == "ESCALATE"
        assert plan["channel"] == "INTERNAL"
        assert response.payload["queued"] is True

    @pytest.mark.asyncio
    async def test_noise_is_ignored(self, pipeline):
        await _suggest_mode(pipeline)

        response = await pipeline.process(_request("lol"))

        assert response.kind == "ignore"
        assert response.payload["strategy"] == "IGNORE"
        assert response.payload["promotion"]["status"] == "SUPPRESSED"
        assert response.payload["queued"] is False

    @pytest.mark.asyncio
    async def test_response_carries_decision_trace(self, pipeline):
        response = await pipeline.process(_request(INQUIRY))

        trace = response.policy_decisions["decision_trace"]
        assert trace["intent"] == "PRODUCT_INQUIRY"
        assert response.policy_decisions["intent_decision"]["allowed"] is True
        assert response.policy_decisions["safety"]["pre_check"]["allowed"] is True
        assert response.telemetry["model"] == "mock-provider-hybrid"
        assert response.telemetry["latency_ms"] >= 0


# ============================================================================
# Safety gates
# ============================================================================

class TestSafetyGates:

    @pytest.mark.asyncio
    async def test_global_kill_switch(self, pipeline):
        pipeline.safety.config.set_kill_switch(True)

        response = await pipeline.process(_request(INQUIRY))

        assert response.kind == "ignore"
        assert response.payload["strategy"] == "IGNORE"
        assert response.payload["blocked_by"] == "kill_switch"
        assert "Blocked before analysis" in response.policy_decisions["explanation"]

    @pytest.mark.asyncio
    async def test_tenant_platform_kill_switch(self, pipeline):
        await pipeline.settings_repo.update("acct_1", {"kill_switch_platforms": ["TikTok"]})

        response = await pipeline.process(_request(INQUIRY))

        assert response.payload["blocked_by"] == "kill_switch"

    @pytest.mark.asyncio
    async def test_low_confidence_reply_is_downgraded(self, pipeline):
        await _suggest_mode(pipeline)
        classifier = pipeline.brain.classifier
        low = classifier.classify_sync(INQUIRY).model_copy(update={"confidence": 0.6})
        classifier.classify = AsyncMock(return_value=low)

        response = await pipeline.process(_request(INQUIRY))

        assert response.payload["brain_strategy"] == "ANSWER"
        assert response.payload["strategy"] == "SILENT_CAPTURE"
        assert response.payload["text"] == ""
        floor = response.policy_decisions["safety"]["confidence_floor"]
        assert floor["rule_id"] == "min_intent_confidence"
        assert floor["reason"] == "intent_confidence_below_minimum (0.60/0.70)"

    @pytest.mark.asyncio
    async def test_video_limit_downgrades(self, tables):
        pipeline = _pipeline(tables, limits=SafetyLimits(max_replies_per_video=1))
        await pipeline.events.insert(EngagementEvent(
            account_id="acct_1", platform="tiktok", video_id="v1", target_id="someone",
            status=EventStatus.SUGGESTED, created_at=utc_now() - timedelta(minutes=5),
        ))

        response = await pipeline.process(_request(INQUIRY))

        assert response.payload["strategy"] == "SILENT_CAPTURE"
        assert response.policy_decisions["safety"]["post_check"]["rule_id"] == "video_rate_limit"

    @pytest.mark.asyncio
    async def test_business_cap(self, pipeline):
        await _suggest_mode(pipeline, max_suggestions_per_day=0)

        response = await pipeline.process(_request(INQUIRY))

        assert response.payload["strategy"] == "SILENT_CAPTURE"
        business = response.policy_decisions["safety"]["business_cap"]
        assert business["reason"] == "DAILY_CAP_EXCEEDED"

    @pytest.mark.asyncio
    async def test_shadow_mode_lets_violations_through(self, tables):
        pipeline = _pipeline(tables, mode=SafetyMode.SHADOW, kill_switch_global=True)

        response = await pipeline.process(_request(INQUIRY))

        assert response.kind == "answer"
        pre = response.policy_decisions["safety"]["pre_check"]
        assert pre["is_shadow_violation"] is True
        assert pre["rule_id"] == "shadow_override"

    @pytest.mark.asyncio
    async def test_store_unavailable_blocks(self, pipeline):
        pipeline.events.latest_at = AsyncMock(side_effect=RuntimeError("db down"))

        response = await pipeline.process(_request(INQUIRY))

        assert response.kind == "ignore"
        assert response.payload["blocked_by"] == "safety_store_unavailable"
        assert response.payload["reason"] == "store_lookup_failed (cooldown: error:db down)"

    @pytest.mark.asyncio
    async def test_settings_unavailable_blocks(self, pipeline):
        pipeline.settings_repo.get = AsyncMock(side_effect=ConnectionError("settings db down"))

        response = await pipeline.process(_request(INQUIRY))

        assert response.kind == "ignore"
        assert response.payload["blocked_by"] == "settings_unavailable"
        assert response.payload["reason"] == "settings_lookup_failed (error:settings db down)"
        assert response.payload["queued"] is False
        assert "pre_check" not in response.policy_decisions["safety"]


# ============================================================================
# Ledger and approval queue
# ============================================================================

class TestQueueing:

    @pytest.mark.asyncio
    async def test_ledger_failure_does_not_queue(self, pipeline):
        await _suggest_mode(pipeline)
        pipeline.events.insert = AsyncMock(side_effect=ConnectionError("ledger down"))

        response = await pipeline.process(_request(INQUIRY))

        assert response.payload["queued"] is False
        assert response.payload["action_id"] is None
        assert pipeline.control.list_pending("acct_1") == []
        queue = response.policy_decisions["safety"]["queue"]
        assert queue["rule_id"] == "ledger_unavailable"
        assert queue["reason"] == "engagement_record_failed (error:ledger down)"

    @pytest.mark.asyncio
    async def test_queue_failure_keeps_engagement_counted(self, pipeline):
        await _suggest_mode(pipeline)
        pipeline.control.submit_plan = MagicMock(side_effect=RuntimeError("queue down"))

        response = await pipeline.process(_request(INQUIRY))

        assert response.payload["queued"] is False
        queue = response.policy_decisions["safety"]["queue"]
        assert queue["rule_id"] == "queue_unavailable"
        assert queue["reason"] == "queue_submit_failed (error:queue down)"
        engaged = pipeline.events.all()
        assert len(engaged) == 1
        assert engaged[0].status == EventStatus.SUGGESTED

        again = await pipeline.process(_request("And the lipstick, where from?"))

        assert again.payload["blocked_by"] == "cooldown_violation"

    @pytest.mark.asyncio
    async def test_submit_runs_off_the_event_loop(self, pipeline):
        await _suggest_mode(pipeline)
        submit = pipeline.control.submit_plan
        threads = []

        def recording_submit(plan, account_id):
            threads.append(threading.get_ident())
            return submit(plan, account_id)

        pipeline.control.submit_plan = recording_submit

        response = await pipeline.process(_request(INQUIRY))

        assert response.payload["queued"] is True
        assert len(threads) == 1
        assert threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_slow_queue_times_out(self, tables):
        pipeline = _pipeline(tables, store_timeout_seconds=0.05)
        await _suggest_mode(pipeline)
        submit = pipeline.control.submit_plan

        def slow_submit(plan, account_id):
            time.sleep(0.3)
            return submit(plan, account_id)

        pipeline.control.submit_plan = slow_submit

        response = await pipeline.process(_request(INQUIRY))

        assert response.payload["queued"] is False
        assert response.policy_decisions["safety"]["queue"]["reason"] == "queue_submit_failed (timeout)"
        assert len(pipeline.events.all()) == 1



# ============================================================================
# Invalid requests
# ============================================================================

class TestInvalidRequests:

    @pytest.mark.asyncio
    async def test_missing_video_id(self, pipeline):
        response = await pipeline.handle({
            "input": {"query": INQUIRY},
            "context": {"raw_event": {"platform": "tiktok"}},
        })

        assert response.kind == "error"
        assert response.payload["error"].startswith("invalid_request")

    @pytest.mark.asyncio
    async def test_unsupported_version(self, pipeline):
        response = await pipeline.handle({
            "version": "v2",
            "input": {"query": INQUIRY},
            "context": {"raw_event": {"platform": "tiktok", "video_id": "v1"}},
        })

        assert response.kind == "error"
        assert "Unsupported contract version" in response.payload["error"]

    @pytest.mark.asyncio
    async def test_naive_timestamp(self, pipeline):
        with pytest.raises(InvalidCapabilityRequest, match="timezone"):
            await pipeline.process(_request(INQUIRY, timestamp="2026-03-10T12:00:00"))

    @pytest.mark.asyncio
    async def test_unknown_template_category(self, pipeline):
        request = _request(INQUIRY).model_dump()
        request["context"]["template_category"] = "NOT_A_TEMPLATE"

        response = await pipeline.handle(request)

        assert response.kind == "error"


# ============================================================================
# Aggregation and output details
# ============================================================================

class TestAggregationAndOutput:

    @pytest.mark.asyncio
    async def test_anonymous_commenters_are_not_in_cooldown(self, pipeline):
        await _suggest_mode(pipeline)

        first = await pipeline.process(_request(INQUIRY, commenter=None))
        second = await pipeline.process(_request(INQUIRY, commenter=None))

        assert first.payload["queued"] is True
        assert second.payload["queued"] is True
        assert len(pipeline.control.list_pending("acct_1")) == 2

    @pytest.mark.asyncio
    async def test_intent_escalation_raises_priority(self, pipeline):
        await pipeline.process(_request("I struggle to find a foundation for dry skin"))

        response = await pipeline.process(_request(INQUIRY))

        promotion = response.payload["promotion"]
        assert promotion["aggregation"]["repeated_user"] is True
        assert promotion["aggregation"]["intent_escalation"] is True
        assert promotion["priority_score"] == 100.0

    @pytest.mark.asyncio
    async def test_repeat_request_hits_cache(self, pipeline, provider):
        first = await pipeline.process(_request(INQUIRY, commenter=None))
        second = await pipeline.process(_request(INQUIRY, commenter=None))

        assert first.telemetry["cache_hit"] is False
        assert second.telemetry["cache_hit"] is True
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_retrieval_citations(self, pipeline):
        response = await pipeline.process(_request("What's the price on this foundation and where from?"))

        assert response.citations == ["doc:pricing", "faq:refunds"]
        assert response.policy_decisions["decision_trace"]["prompt_version"] == "v3.0"
