"""
Domain Policy Filter - decides whether a classified intent may be engaged.

Pure lookup against the intent policy table, plus the safety net: a
blocked intent carrying strong buyer intent is rescued to a silent capture
so high-value signals are never dropped.
"""

import logging

from ..core.rules import IntentPolicyTable
from .models import IntentClassificationResult, IntentDecision

logger = logging.getLogger(__name__)


class DomainPolicyFilter:
    """Maps an intent classification to an allow/block decision."""

    def __init__(self, policy: IntentPolicyTable):
        self.policy = policy
        self._rescue_strengths = set(policy.safety_net.rescue_strengths)

    def evaluate(self, classification: IntentClassificationResult) -> IntentDecision:
        intent = classification.intent
        strength = classification.strength
        rule = self.policy.intents.get(intent)

        if rule is not None and rule.allowed:
            reason = f"Allowed: {intent.value}"
            if rule.forced_strategy:
                reason += f" (forced {rule.forced_strategy.value})"
            return IntentDecision(
                allowed=True,
                intent=intent,
                strength=strength,
                forced_strategy=rule.forced_strategy,
                reason=reason,
            )

        if strength in self._rescue_strengths:
            logger.warning(
                f"Safety net rescued blocked intent {intent.value} at strength {strength.value}"
            )
            return IntentDecision(
                allowed=True,
                intent=intent,
                strength=strength,
                forced_strategy=self.policy.safety_net.strategy,
                reason=self.policy.safety_net.reason,
                safety_override=True,
            )

        return IntentDecision(
            allowed=False,
            intent=intent,
            strength=strength,
            reason=f"Blocked: {intent.value}",
        )
