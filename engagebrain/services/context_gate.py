"""
Context classification, speaker role resolution and the safety gate.

- ContextClassifier: OWNED_CONTENT only with a verified ownership proof
  supplied by the caller; everything else stays UNKNOWN_CONTEXT.
- RoleResolver: which voice the reply may speak in.
- SafetyGate: hard veto on inconsistent context/role/template combinations.
  A veto is reported as a named violation and is never corrected here.
"""

import logging
from typing import Optional

from .models import (
    Aggressiveness,
    BuyerIntentStrength,
    ContextDecision,
    ContextType,
    EngagementIntent,
    EventPayload,
    IntentDecision,
    OwnershipProof,
    SpeakerRole,
    TemplateCategory,
)

logger = logging.getLogger(__name__)

SALES_INTENTS = frozenset({
    EngagementIntent.PRODUCT_INQUIRY,
    EngagementIntent.LATENT_PURCHASE,
    EngagementIntent.PROBLEM_SOLUTION,
    EngagementIntent.FIT_SUITABILITY,
})

HIGH_INTENT_STRENGTHS = frozenset({
    BuyerIntentStrength.HIGH,
    BuyerIntentStrength.VERY_HIGH,
    BuyerIntentStrength.IMMEDIATE,
})

ALTERNATIVE_PROVIDER_MIN_CONFIDENCE = 0.85

_EXPERIENCE_INTENTS = frozenset({EngagementIntent.FIT_SUITABILITY, EngagementIntent.PROBLEM_SOLUTION})


class ContextClassifier:
    """Where is this interaction happening, relative to the tenant?"""

    @staticmethod
    def classify(event: EventPayload, proof: Optional[OwnershipProof] = None) -> ContextType:
        if proof is None or not proof.verified or not proof.owner_account_id:
            return ContextType.UNKNOWN_CONTEXT

        if event.account_id and proof.owner_account_id == event.account_id:
            return ContextType.OWNED_CONTENT

        # Verified owner is someone else
        return ContextType.COMPETITOR_CONTENT


class RoleResolver:

    @staticmethod
    def resolve(
        context: ContextType,
        decision: IntentDecision,
        aggressiveness: Aggressiveness,
        confidence: float
    ) -> SpeakerRole:
        if context == ContextType.OWNED_CONTENT:
            return SpeakerRole.OWNER

        if (
            aggressiveness != Aggressiveness.CONSERVATIVE
            and decision.strength in HIGH_INTENT_STRENGTHS
            and decision.intent in SALES_INTENTS
            and confidence >= ALTERNATIVE_PROVIDER_MIN_CONFIDENCE
        ):
            return SpeakerRole.ALTERNATIVE_PROVIDER

        return SpeakerRole.NEUTRAL_HELPER


def default_template_category(role: SpeakerRole, intent: EngagementIntent) -> TemplateCategory:
    """Template category a role speaks in unless the caller asks for one."""
    if role == SpeakerRole.OWNER:
        return TemplateCategory.OWNER_PROMOTIONAL if intent in SALES_INTENTS else TemplateCategory.NEUTRAL_ADVICE
    if role == SpeakerRole.ALTERNATIVE_PROVIDER:
        return TemplateCategory.ALTERNATIVE_MENTION
    if intent in _EXPERIENCE_INTENTS:
        return TemplateCategory.EXPERIENCE_BASED
    return TemplateCategory.NEUTRAL_ADVICE


class SafetyGate:

    @staticmethod
    def evaluate(context: ContextType, role: SpeakerRole, template: TemplateCategory) -> Optional[str]:
        """
        Returns:
            The violation message, or None when the combination is allowed
        """
        if template == TemplateCategory.OWNER_PROMOTIONAL and context != ContextType.OWNED_CONTENT:
            return f"OWNER_PROMOTIONAL forbidden on {context.value}"

        if template == TemplateCategory.ALTERNATIVE_MENTION and role != SpeakerRole.ALTERNATIVE_PROVIDER:
            return f"ALTERNATIVE_MENTION forbidden for role {role.value}"

        if role == SpeakerRole.OWNER and context != ContextType.OWNED_CONTENT:
            return f"Role OWNER forbidden on {context.value}"

        return None


def decide_context(
    event: EventPayload,
    decision: IntentDecision,
    aggressiveness: Aggressiveness,
    confidence: float,
    proof: Optional[OwnershipProof] = None,
    requested_template: Optional[TemplateCategory] = None
) -> ContextDecision:
    """Run classifier, resolver and gate for one event."""
    context = ContextClassifier.classify(event, proof)
    role = RoleResolver.resolve(context, decision, aggressiveness, confidence)
    template = requested_template or default_template_category(role, decision.intent)
    violation = SafetyGate.evaluate(context, role, template)

    if violation:
        logger.warning(f"Safety gate veto: {violation}")

    return ContextDecision(
        context_type=context,
        speaker_role=role,
        template_category=template,
        allowed=violation is None,
        violation=violation,
        rationale=f"context={context.value} role={role.value} template={template.value}",
    )
