"""
Action Orchestrator - turns a promoted engagement into an action plan.

Router -> channel constraints -> template selection -> plan builder.
Every plan requires human approval; nothing here can turn that off.

Usage:
    orchestrator = ActionOrchestrator(tables.action)
    plan = orchestrator.create_plan(promoted)
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from ..core.rules import ActionTable, TemplateEntry
from .models import (
    ActionReasoning,
    ActionType,
    EngagementActionPlan,
    EngagementChannel,
    OpportunityLevel,
    PromotedEngagement,
    PromotionStatus,
    RecommendedAction,
)

logger = logging.getLogger(__name__)

MESSAGE_ACTIONS = frozenset({ActionType.PUBLIC_REPLY, ActionType.DM, ActionType.ESCALATE})

NO_TEMPLATE = TemplateEntry(id="none", text="")

_DEFAULT_CHANNELS = {
    ActionType.PUBLIC_REPLY: EngagementChannel.COMMENT,
    ActionType.DM: EngagementChannel.DM,
    ActionType.ESCALATE: EngagementChannel.INTERNAL,
    ActionType.NO_ACTION: EngagementChannel.INTERNAL,
}


@dataclass
class ChannelDecision:
    action: ActionType
    channel: EngagementChannel
    modified: bool = False


class ActionRouter:

    def __init__(self, table: ActionTable):
        self.always_escalate_stages = set(table.always_escalate_stages)

    def route(self, engagement: PromotedEngagement) -> ActionType:
        if engagement.status in (PromotionStatus.SUPPRESSED, PromotionStatus.DEFERRED):
            return ActionType.NO_ACTION

        opportunity = engagement.signal.opportunity
        recommended = opportunity.recommended_action
        level = opportunity.opportunity_level

        if opportunity.buying_stage in self.always_escalate_stages:
            return ActionType.ESCALATE

        if level == OpportunityLevel.CRITICAL:
            if recommended == RecommendedAction.ESCALATE:
                return ActionType.ESCALATE
            if recommended == RecommendedAction.PUBLIC_REPLY:
                return ActionType.PUBLIC_REPLY
            return ActionType.DM

        if level in (OpportunityLevel.HIGH, OpportunityLevel.MEDIUM):
            return ActionType.DM if recommended == RecommendedAction.DM else ActionType.PUBLIC_REPLY

        if level == OpportunityLevel.LOW:
            return ActionType.PUBLIC_REPLY

        return ActionType.NO_ACTION


class ChannelConstraints:

    def __init__(self, table: ActionTable):
        self.rules = table.channels
        self.aliases = table.platform_aliases

    def normalize_platform(self, platform: str) -> str:
        key = (platform or "").strip().lower()
        return self.aliases.get(key, key)

    def apply(self, action: ActionType, platform: str) -> ChannelDecision:
        rule = self.rules.get(self.normalize_platform(platform))

        if rule is None:
            # Unknown platform: safest reply channel, never a DM
            if action == ActionType.DM:
                return ChannelDecision(ActionType.PUBLIC_REPLY, EngagementChannel.COMMENT, modified=True)
            return ChannelDecision(action, _DEFAULT_CHANNELS[action])

        if action == ActionType.DM and rule.block_dm:
            return ChannelDecision(ActionType.PUBLIC_REPLY, EngagementChannel.COMMENT, modified=True)

        return ChannelDecision(action, _DEFAULT_CHANNELS[action])


class TemplateSelector:

    def __init__(self, table: ActionTable):
        self.templates = table.templates
        self.escalation_templates = table.escalation_templates

    def select(self, engagement: PromotedEngagement, action: ActionType) -> TemplateEntry:
        if action not in MESSAGE_ACTIONS:
            return NO_TEMPLATE

        opportunity = engagement.signal.opportunity
        stage = opportunity.buying_stage.value

        if action == ActionType.ESCALATE:
            return self.escalation_templates.get(stage) or self.escalation_templates["DEFAULT"]

        by_stage = self.templates.get(opportunity.primary_intent.value, {})
        if stage in by_stage:
            return by_stage[stage]
        return self.templates["DEFAULT"].get(stage) or NO_TEMPLATE


class ActionPlanBuilder:

    @staticmethod
    def build(
        engagement: PromotedEngagement,
        decision: ChannelDecision,
        template: TemplateEntry,
        draft_override: Optional[str] = None
    ) -> EngagementActionPlan:
        opportunity = engagement.signal.opportunity
        draft = template.text or None
        if draft_override and decision.action in (ActionType.PUBLIC_REPLY, ActionType.DM):
            draft = draft_override

        return EngagementActionPlan(
            plan_id=str(uuid.uuid4()),
            opportunity_id=engagement.opportunity_id,
            action_type=decision.action,
            channel=decision.channel,
            priority=engagement.priority_score,
            template_id=template.id if template.id != NO_TEMPLATE.id else None,
            draft_message=draft,
            reasoning=ActionReasoning(
                opportunity_summary=opportunity.explanation.summary,
                buying_stage=opportunity.buying_stage,
                urgency_score=opportunity.urgency_score,
                promotion_reason=engagement.promotion_reason,
            ),
        )


class ActionOrchestrator:

    def __init__(self, table: ActionTable):
        self.router = ActionRouter(table)
        self.constraints = ChannelConstraints(table)
        self.templates = TemplateSelector(table)

    def create_plan(
        self,
        engagement: PromotedEngagement,
        draft_override: Optional[str] = None
    ) -> EngagementActionPlan:
        """
        Args:
            engagement: Promotion result to act on
            draft_override: Drafted reply to use instead of the template text
                for PUBLIC_REPLY / DM plans
        """
        base_action = self.router.route(engagement)
        decision = self.constraints.apply(base_action, engagement.signal.metadata.platform)
        if decision.modified:
            logger.info(
                f"Channel rules changed {base_action.value} -> {decision.action.value} "
                f"on {engagement.signal.metadata.platform}"
            )

        template = self.templates.select(engagement, decision.action)
        return ActionPlanBuilder.build(engagement, decision, template, draft_override=draft_override)
