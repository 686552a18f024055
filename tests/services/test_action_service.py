"""
Tests for the action orchestrator: routing, channel rules, templates and
plan building.
"""

import pytest
from pydantic import ValidationError

from engagebrain.services.action_service import ActionOrchestrator, ChannelConstraints
from engagebrain.services.models import (
    ActionReasoning,
    ActionType,
    AggregationContext,
    BuyingStage,
    EngagementActionPlan,
    EngagementChannel,
    EngagementIntent,
    EngagementOpportunity,
    EngagementSignal,
    OpportunityExplanation,
    OpportunityLevel,
    PromotedEngagement,
    PromotionStatus,
    RecommendedAction,
    SignalMetadata,
)


def _promoted(
    level=OpportunityLevel.HIGH,
    stage=BuyingStage.DECISION,
    recommended=RecommendedAction.PUBLIC_REPLY,
    intent=EngagementIntent.PRODUCT_INQUIRY,
    platform="tiktok",
    status=PromotionStatus.PROMOTED,
    priority=80.0
):
    signal = EngagementSignal(
        opportunity=EngagementOpportunity(
            opportunity_level=level,
            buying_stage=stage,
            urgency_score=75,
            primary_intent=intent,
            recommended_action=recommended,
            explanation=OpportunityExplanation(summary="Rated HIGH (75) at DECISION stage"),
        ),
        metadata=SignalMetadata(comment_id="c1", video_id="v1", platform=platform, user_id="u1"),
    )
    return PromotedEngagement(
        opportunity_id="c1",
        priority_score=priority,
        status=status,
        promotion_reason="Score 80 >= 80",
        recommended_action=recommended,
        aggregation_context=AggregationContext(),
        signal=signal,
    )


@pytest.fixture
def orchestrator(tables):
    return ActionOrchestrator(tables.action)


class TestRouting:

    @pytest.mark.parametrize("status", [PromotionStatus.DEFERRED, PromotionStatus.SUPPRESSED])
    def test_not_promoted_means_no_action(self, orchestrator, status):
        plan = orchestrator.create_plan(_promoted(status=status))

        assert plan.action_type == ActionType.NO_ACTION
        assert plan.channel == EngagementChannel.INTERNAL
        assert plan.draft_message is None
        assert plan.template_id is None

    def test_high_decision_is_public_reply(self, orchestrator):
        plan = orchestrator.create_plan(_promoted())

        assert plan.action_type == ActionType.PUBLIC_REPLY
        assert plan.channel == EngagementChannel.COMMENT
        assert plan.template_id == "product_inquiry_decision"
        assert plan.draft_message == "Great question! Here's where you can find it."
        assert plan.priority == 80.0

    def test_regret_always_escalates(self, orchestrator):
        plan = orchestrator.create_plan(_promoted(
            level=OpportunityLevel.LOW,
            stage=BuyingStage.REGRET,
            intent=EngagementIntent.POST_PURCHASE_REGRET,
        ))

        assert plan.action_type == ActionType.ESCALATE
        assert plan.channel == EngagementChannel.INTERNAL
        assert plan.template_id == "escalation_regret"

    def test_critical_dm(self, orchestrator):
        plan = orchestrator.create_plan(_promoted(
            level=OpportunityLevel.CRITICAL, recommended=RecommendedAction.DM
        ))

        assert plan.action_type == ActionType.DM
        assert plan.channel == EngagementChannel.DM

    def test_low_level_replies_publicly(self, orchestrator):
        plan = orchestrator.create_plan(_promoted(
            level=OpportunityLevel.LOW,
            stage=BuyingStage.AWARENESS,
            intent=EngagementIntent.UNKNOWN,
        ))

        assert plan.action_type == ActionType.PUBLIC_REPLY
        assert plan.template_id == "default_awareness"


class TestChannelConstraints:

    def test_youtube_blocks_dm(self, orchestrator):
        plan = orchestrator.create_plan(_promoted(
            level=OpportunityLevel.CRITICAL, recommended=RecommendedAction.DM, platform="youtube"
        ))

        assert plan.action_type == ActionType.PUBLIC_REPLY
        assert plan.channel == EngagementChannel.COMMENT

    def test_unknown_platform_never_dms(self, orchestrator):
        plan = orchestrator.create_plan(_promoted(
            level=OpportunityLevel.CRITICAL, recommended=RecommendedAction.DM, platform="myspace"
        ))

        assert plan.action_type == ActionType.PUBLIC_REPLY

    def test_platform_alias(self, tables):
        constraints = ChannelConstraints(tables.action)

        assert constraints.normalize_platform(" IG ") == "instagram"
        decision = constraints.apply(ActionType.DM, "IG")
        assert decision.action == ActionType.DM
        assert decision.modified is False

    def test_escalation_is_untouched_on_unknown_platform(self, tables):
        decision = ChannelConstraints(tables.action).apply(ActionType.ESCALATE, "myspace")
        assert decision.action == ActionType.ESCALATE
        assert decision.channel == EngagementChannel.INTERNAL


class TestPlanBuilding:

    def test_draft_override_for_replies(self, orchestrator):
        plan = orchestrator.create_plan(_promoted(), draft_override="Link in bio!")
        assert plan.draft_message == "Link in bio!"
        assert plan.template_id == "product_inquiry_decision"

    def test_draft_override_ignored_for_escalations(self, orchestrator):
        plan = orchestrator.create_plan(
            _promoted(stage=BuyingStage.REGRET, intent=EngagementIntent.POST_PURCHASE_REGRET),
            draft_override="Link in bio!",
        )
        assert plan.draft_message == "Customer reported a post-purchase problem. Review and follow up."

    def test_reasoning_is_carried(self, orchestrator):
        plan = orchestrator.create_plan(_promoted())

        assert plan.opportunity_id == "c1"
        assert plan.reasoning.buying_stage == BuyingStage.DECISION
        assert plan.reasoning.urgency_score == 75
        assert plan.reasoning.promotion_reason == "Score 80 >= 80"

    def test_every_plan_requires_approval(self, orchestrator):
        plan = orchestrator.create_plan(_promoted())
        assert plan.requires_human_approval is True

    def test_approval_cannot_be_disabled(self):
        with pytest.raises(ValidationError):
            EngagementActionPlan(
                plan_id="p1",
                opportunity_id="c1",
                action_type=ActionType.PUBLIC_REPLY,
                channel=EngagementChannel.COMMENT,
                priority=80.0,
                requires_human_approval=False,
                reasoning=ActionReasoning(
                    opportunity_summary="s",
                    buying_stage=BuyingStage.DECISION,
                    urgency_score=75,
                    promotion_reason="r",
                ),
            )
