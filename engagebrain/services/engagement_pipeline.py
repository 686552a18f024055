"""
Engagement Pipeline - the single entry point behind the capability contract.

One CapabilityRequest flows through:

    1. Safety pre-check (kill switch, cooldown, daily limits)
    2. Brain engine (intent, domain policy, context gate, strategy, draft)
    3. Tenant confidence floor, safety post-check, business caps
    4. Opportunity scoring and promotion against the actor's recent signals
    5. Action plan, queued for human approval when the tenant mode allows it

and comes back as one CapabilityResponse. Blocks and downgrades are
decisions, not errors: each one is listed in `policy_decisions` with its
rule id and reason.

Usage:
    pipeline = build()
    response = await pipeline.process(CapabilityRequest(
        input=CapabilityInput(query="Foundation & concealer from???"),
        context={"raw_event": {"platform": "tiktok", "video_id": "v1", "account_id": "acct_1"}},
    ))
    print(response.kind, response.payload["strategy"])
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError
from supabase import Client

from ..core.config import Config
from ..core.contracts import CapabilityRequest, CapabilityResponse
from ..core.observability import get_logfire
from ..core.resilience import bounded_call
from ..core.rules import RuleTables, load_rule_tables
from .action_service import ActionOrchestrator
from .brain.brain_engine import BrainDecision, BrainEngine
from .brain.runtime import BrainRuntime
from .control.control_service import ControlOrchestrator
from .control.store import SupabaseActionStore, SupabaseAuditStore
from .domain_filter import DomainPolicyFilter
from .event_store import EngagementEvent, EventStatus, EventStore, InMemoryEventStore, SupabaseEventStore
from .intent_classifier import IntentClassifier, SignalLexicon
from .models import (
    REPLY_STRATEGIES,
    ActionType,
    BrainInput,
    EngagementActionPlan,
    EngagementMode,
    EngagementSignal,
    EngagementTarget,
    EventPayload,
    OwnershipProof,
    PromotionStatus,
    SafetyCheckResult,
    SignalMetadata,
    StrategyType,
    TemplateCategory,
    TenantContext,
    TenantSettings,
    utc_now,
)
from .opportunity_service import OpportunityEngine, UnknownIntentLogger
from .promotion_service import PromotionEngine, SignalHistory
from .safety import UNKNOWN_TARGET, SafetyConfig, SafetyService
from .settings_service import InMemorySettingsRepository, SettingsRepository, SupabaseSettingsRepository
from .signal_inference_client import SignalInferenceClient

logger = logging.getLogger(__name__)

SETTINGS_UNAVAILABLE_RULE = "settings_unavailable"
LEDGER_UNAVAILABLE_RULE = "ledger_unavailable"
QUEUE_UNAVAILABLE_RULE = "queue_unavailable"


class InvalidCapabilityRequest(ValueError):
    """Request is missing what the pipeline needs to decide"""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid capability request: {detail}")


def response_kind(strategy: StrategyType) -> str:
    if strategy == StrategyType.IGNORE:
        return "ignore"
    if strategy in REPLY_STRATEGIES:
        return "answer"
    return "recommend"


def error_response(reason: str) -> CapabilityResponse:
    return CapabilityResponse(kind="error", payload={"error": reason})


class EngagementPipeline:

    def __init__(
        self,
        tables: RuleTables,
        brain: BrainEngine,
        safety: SafetyService,
        control: ControlOrchestrator,
        settings_repo: Optional[SettingsRepository] = None,
        events: Optional[EventStore] = None,
        unknown_logger: Optional[UnknownIntentLogger] = None
    ):
        self.brain = brain
        self.safety = safety
        self.control = control
        self.settings_repo = settings_repo or InMemorySettingsRepository()
        self.events = events or safety.store
        self.opportunities = OpportunityEngine(tables.opportunity, unknown_logger)
        self.promotion = PromotionEngine(tables.promotion)
        self.history = SignalHistory(tables.promotion.window_minutes)
        self.actions = ActionOrchestrator(tables.action)

    async def handle(self, raw: Dict[str, Any]) -> CapabilityResponse:
        """Validate a raw payload and process it; validation failures come back as kind="error"."""
        try:
            request = CapabilityRequest.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Rejected capability request: {e.error_count()} validation errors")
            return error_response(f"invalid_request: {e.errors()[0]['msg']}")

        try:
            return await self.process(request)
        except InvalidCapabilityRequest as e:
            logger.warning(str(e))
            return error_response(f"invalid_request: {e.detail}")

    async def process(self, request: CapabilityRequest) -> CapabilityResponse:
        """
        Decide on one event.

        Raises:
            InvalidCapabilityRequest: raw_event lacks platform/video_id, or a
                context field does not validate
        """
        start = time.monotonic()
        raw = request.raw_event
        platform = raw.get("platform")
        video_id = raw.get("video_id")
        if not platform or not video_id:
            raise InvalidCapabilityRequest("context.raw_event.platform and context.raw_event.video_id are required")

        account_id = raw.get("account_id") or request.tenant_id or "default"
        target = EngagementTarget(
            platform=platform,
            target_id=raw.get("commenter_id") or raw.get("commenter_name") or UNKNOWN_TARGET,
            account_id=account_id,
        )
        comment_id = raw.get("comment_id") or str(uuid.uuid4())
        event_time = self._event_time(raw)

        lf = get_logfire()
        with lf.span("engagement_pipeline.process", platform=platform, account_id=account_id):
            safety_results: Dict[str, Any] = {}
            loaded = await bounded_call(
                "settings", lambda: self.settings_repo.get(account_id), self.safety.config.store_timeout_seconds
            )
            if not loaded.ok:
                blocked = SafetyCheckResult(
                    allowed=False,
                    reason=f"settings_lookup_failed ({loaded.reason})",
                    rule_id=SETTINGS_UNAVAILABLE_RULE,
                    override_strategy=StrategyType.IGNORE,
                )
                safety_results["settings"] = blocked.model_dump(mode="json")
                return self._blocked_response(blocked, safety_results, start)
            settings: TenantSettings = loaded.value

            pre = await self.safety.pre_check(target, settings)
            safety_results["pre_check"] = pre.model_dump(mode="json")
            if not pre.allowed:
                return self._blocked_response(pre, safety_results, start)

            brain_input = self._brain_input(request, settings, account_id, comment_id)
            decision = await self.brain.decide(brain_input)
            response = decision.response
            strategy = response.strategy

            strategy = self._apply_confidence_floor(decision, settings, strategy, safety_results)

            post = await self.safety.post_check(target, video_id, strategy)
            safety_results["post_check"] = post.model_dump(mode="json")
            strategy = self._apply_override(post, strategy)

            business = await self.safety.business_check(settings, video_id, strategy)
            safety_results["business_cap"] = business.model_dump(mode="json")
            strategy = self._apply_override(business, strategy)

            text = response.text if strategy in REPLY_STRATEGIES else ""

            opportunity = self.opportunities.evaluate(decision.classification, request.input.query, comment_id)
            signal = EngagementSignal(
                opportunity=opportunity,
                metadata=SignalMetadata(
                    comment_id=comment_id,
                    video_id=video_id,
                    platform=platform,
                    user_id=None if target.target_id == UNKNOWN_TARGET else target.target_id,
                    timestamp=event_time,
                ),
            )
            promoted = self.promotion.promote(signal, self.history.recent(account_id, signal))
            self.history.add(account_id, signal)

            plan = None
            action_id = None
            if (
                strategy != StrategyType.IGNORE
                and settings.mode != EngagementMode.OBSERVE_ONLY
                and promoted.status == PromotionStatus.PROMOTED
            ):
                plan = self.actions.create_plan(promoted, draft_override=text or None)
                if plan.action_type != ActionType.NO_ACTION:
                    action_id = await self._queue_plan(
                        plan, raw, target, video_id, comment_id, request.input.query, safety_results
                    )

            latency_ms = int((time.monotonic() - start) * 1000)
            logger.info(
                f"Pipeline {comment_id}: strategy={strategy.value} promotion={promoted.status.value} "
                f"queued={action_id is not None} ({latency_ms}ms)"
            )

            return CapabilityResponse(
                kind=response_kind(strategy),
                payload={
                    "text": text,
                    "strategy": strategy.value,
                    "brain_strategy": response.strategy.value,
                    "opportunity": opportunity.model_dump(mode="json"),
                    "promotion": {
                        "status": promoted.status.value,
                        "priority_score": promoted.priority_score,
                        "reason": promoted.promotion_reason,
                        "aggregation": promoted.aggregation_context.model_dump(mode="json"),
                    },
                    "action_plan": plan.model_dump(mode="json") if plan else None,
                    "action_id": action_id,
                    "queued": action_id is not None,
                },
                citations=response.citations,
                confidence=response.confidence,
                telemetry={
                    "model": response.model,
                    "version": response.version,
                    "cache_hit": response.cache_hit,
                    "latency_ms": latency_ms,
                },
                policy_decisions={
                    "explanation": response.explanation,
                    "decision_trace": response.decision_trace,
                    "intent_decision": decision.intent_decision.model_dump(mode="json"),
                    "safety": safety_results,
                },
            )

    def _brain_input(
        self,
        request: CapabilityRequest,
        settings: TenantSettings,
        account_id: str,
        comment_id: str
    ) -> BrainInput:
        raw = request.raw_event
        context = request.context
        try:
            proof = context.get("ownership_proof")
            template = context.get("template_category")
            return BrainInput(
                event=EventPayload(
                    platform=raw["platform"],
                    video_id=raw["video_id"],
                    author_name=raw.get("commenter_name") or "unknown",
                    content_text=request.input.query,
                    comment_id=comment_id,
                    account_id=account_id,
                ),
                tenant=TenantContext(
                    tenant_id=account_id,
                    tone=settings.tone,
                    prohibited_keywords=request.constraints.get("prohibited_keywords", []),
                ),
                history=self.control.feedback.history_for(account_id),
                aggressiveness=settings.aggressiveness,
                ownership_proof=OwnershipProof.model_validate(proof) if proof else None,
                requested_template=TemplateCategory(template) if template else None,
                regeneration_count=int(context.get("regeneration_count", 0)),
            )
        except (ValidationError, ValueError, TypeError) as e:
            raise InvalidCapabilityRequest(str(e)) from e

    @staticmethod
    def _apply_confidence_floor(
        decision: BrainDecision,
        settings: TenantSettings,
        strategy: StrategyType,
        safety_results: Dict[str, Any]
    ) -> StrategyType:
        confidence = decision.classification.confidence
        if strategy in REPLY_STRATEGIES and confidence < settings.min_intent_confidence:
            safety_results["confidence_floor"] = SafetyCheckResult(
                allowed=False,
                reason=f"intent_confidence_below_minimum ({confidence:.2f}/{settings.min_intent_confidence:.2f})",
                rule_id="min_intent_confidence",
                override_strategy=StrategyType.SILENT_CAPTURE,
            ).model_dump(mode="json")
            return StrategyType.SILENT_CAPTURE
        return strategy

    @staticmethod
    def _apply_override(result: SafetyCheckResult, strategy: StrategyType) -> StrategyType:
        if not result.allowed and result.override_strategy is not None:
            return result.override_strategy
        return strategy

    @staticmethod
    def _event_time(raw: Dict[str, Any]) -> datetime:
        value = raw.get("timestamp")
        if not value:
            return utc_now()
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidCapabilityRequest(f"raw_event.timestamp is not ISO-8601: {value}") from e
        if parsed.tzinfo is None:
            raise InvalidCapabilityRequest(f"raw_event.timestamp needs a timezone: {value}")
        return parsed

    async def _queue_plan(
        self,
        plan: EngagementActionPlan,
        raw: Dict[str, Any],
        target: EngagementTarget,
        video_id: str,
        comment_id: str,
        text: str,
        safety_results: Dict[str, Any]
    ) -> Optional[str]:
        """
        Count the engagement, then queue the plan. Returns the action id, or
        None when either store call failed.

        The ledger write comes first so a queued action is always counted by
        the cooldown and rate limits. The control stores are synchronous and
        run in a worker thread.
        """
        timeout = self.safety.config.store_timeout_seconds
        recorded = await bounded_call(
            "engagement_ledger",
            lambda: self._record_engagement(raw, target, video_id, comment_id, text),
            timeout,
        )
        if not recorded.ok:
            safety_results["queue"] = SafetyCheckResult(
                allowed=False,
                reason=f"engagement_record_failed ({recorded.reason})",
                rule_id=LEDGER_UNAVAILABLE_RULE,
            ).model_dump(mode="json")
            return None

        queued = await bounded_call(
            "approval_queue",
            lambda: asyncio.to_thread(self.control.submit_plan, plan, target.account_id),
            timeout,
        )
        if not queued.ok:
            # The engagement stays counted; limits stay on the blocking side
            logger.error(f"Plan {plan.plan_id} counted but not queued: {queued.reason}")
            safety_results["queue"] = SafetyCheckResult(
                allowed=False,
                reason=f"queue_submit_failed ({queued.reason})",
                rule_id=QUEUE_UNAVAILABLE_RULE,
            ).model_dump(mode="json")
            return None

        return queued.value.action_plan_id

    async def _record_engagement(
        self,
        raw: Dict[str, Any],
        target: EngagementTarget,
        video_id: str,
        comment_id: str,
        text: str
    ):
        """Count the queued suggestion against the account's limits."""
        event_id = raw.get("event_id")
        if event_id:
            await self.events.update_status(event_id, EventStatus.SUGGESTED)
            return
        await self.events.insert(EngagementEvent(
            account_id=target.account_id,
            platform=target.platform,
            video_id=video_id,
            comment_id=comment_id,
            target_id=None if target.target_id == UNKNOWN_TARGET else target.target_id,
            raw_text=text,
            status=EventStatus.SUGGESTED,
        ))

    @staticmethod
    def _blocked_response(pre: SafetyCheckResult, safety_results: Dict[str, Any], start: float) -> CapabilityResponse:
        return CapabilityResponse(
            kind="ignore",
            payload={
                "text": "",
                "strategy": (pre.override_strategy or StrategyType.IGNORE).value,
                "blocked_by": pre.rule_id,
                "reason": pre.reason,
                "queued": False,
            },
            telemetry={"latency_ms": int((time.monotonic() - start) * 1000)},
            policy_decisions={
                "explanation": f"Blocked before analysis: {pre.reason} ({pre.rule_id})",
                "safety": safety_results,
            },
        )


def build(
    tables: Optional[RuleTables] = None,
    runtime: Optional[BrainRuntime] = None,
    safety_config: Optional[SafetyConfig] = None,
    supabase_client: Optional[Client] = None
) -> EngagementPipeline:
    """
    Assemble a pipeline from configuration.

    With a Supabase client every store is durable; without one everything
    is in memory.
    """
    tables = tables or load_rule_tables()
    runtime = runtime or BrainRuntime.from_config()

    inference_client = SignalInferenceClient() if Config.AI_CORE_BASE_URL else None
    classifier = IntentClassifier(
        SignalLexicon(tables.lexicon),
        inference_client=inference_client,
        inference_timeout_seconds=Config.SIGNAL_INFERENCE_TIMEOUT_SECONDS,
        language=tables.language,
    )
    brain = BrainEngine(classifier, DomainPolicyFilter(tables.intent_policy), runtime)

    if supabase_client is not None:
        events: EventStore = SupabaseEventStore(supabase_client)
        control = ControlOrchestrator(SupabaseActionStore(supabase_client), SupabaseAuditStore(supabase_client))
        settings_repo: SettingsRepository = SupabaseSettingsRepository(supabase_client)
    else:
        events = InMemoryEventStore()
        control = ControlOrchestrator()
        settings_repo = InMemorySettingsRepository()

    safety = SafetyService(safety_config or SafetyConfig.from_config(), events)
    return EngagementPipeline(
        tables,
        brain,
        safety,
        control,
        settings_repo=settings_repo,
        events=events,
        unknown_logger=UnknownIntentLogger(supabase_client),
    )
