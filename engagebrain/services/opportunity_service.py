"""
Opportunity Engine - rates the business value of a classified comment.

- BuyingStageMapper: primary intent -> buying stage, with the regret override
- OpportunityScorer: per-intent base weight + text modifiers -> urgency score and level
- ActionPolicy: level x stage -> recommended action
- UnknownIntentLogger: sink for unclassified comments (lexicon tuning)
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Tuple

from supabase import Client

from ..core.database import Tables
from ..core.rules import OpportunityTable
from .intent_classifier import compile_phrase, normalize_text
from .models import (
    BuyingStage,
    EngagementIntent,
    EngagementOpportunity,
    IntentClassificationResult,
    OpportunityExplanation,
    OpportunityLevel,
    RecommendedAction,
    SignalCategory,
)

logger = logging.getLogger(__name__)

# Signal category -> intent it supports when not already primary
SUPPORTING_INTENTS_BY_CATEGORY = {
    SignalCategory.REGRET: EngagementIntent.POST_PURCHASE_REGRET,
    SignalCategory.HOSTILE: EngagementIntent.HOSTILE,
    SignalCategory.PROBLEM: EngagementIntent.PROBLEM_SOLUTION,
    SignalCategory.CONDITIONAL: EngagementIntent.LATENT_PURCHASE,
    SignalCategory.PREFERENCE: EngagementIntent.LATENT_PURCHASE,
    SignalCategory.SOURCE: EngagementIntent.PRODUCT_INQUIRY,
    SignalCategory.SOCIAL: EngagementIntent.SOCIAL,
}

LOW_CONFIDENCE_THRESHOLD = 0.5

_LEVEL_ORDER = [OpportunityLevel.CRITICAL, OpportunityLevel.HIGH, OpportunityLevel.MEDIUM, OpportunityLevel.LOW]


def supporting_intents(classification: IntentClassificationResult) -> List[EngagementIntent]:
    """Intents implied by the detected signals, excluding the primary one."""
    found: List[EngagementIntent] = []
    for signal in classification.signals:
        intent = SUPPORTING_INTENTS_BY_CATEGORY.get(signal.category)
        if intent and intent != classification.intent and intent not in found:
            found.append(intent)
    return found


class BuyingStageMapper:

    def __init__(self, table: OpportunityTable):
        self.mapping = table.buying_stage_map
        self.default_stage = table.default_stage
        self.override_intents = set(table.regret_override_intents)

    def map(self, primary: EngagementIntent, supporting: Optional[List[EngagementIntent]] = None) -> BuyingStage:
        involved = {primary, *(supporting or [])}
        if involved & self.override_intents:
            return BuyingStage.REGRET
        return self.mapping.get(primary, self.default_stage)


class OpportunityScorer:

    def __init__(self, table: OpportunityTable):
        self.weights = table.intent_weights
        self.thresholds = table.level_thresholds
        self.modifiers = [
            (name, modifier.delta, [compile_phrase(p) for p in modifier.phrases])
            for name, modifier in table.modifiers.items()
        ]

    def level_for(self, score: int) -> OpportunityLevel:
        for level in _LEVEL_ORDER:
            threshold = self.thresholds.get(level)
            if threshold is not None and score > threshold:
                return level
        return OpportunityLevel.IGNORE

    def score(self, intent: EngagementIntent, normalized_text: str) -> Tuple[int, OpportunityLevel, List[str]]:
        """
        Returns:
            (urgency score clamped to [0, 100], level, human-readable scoring signals)
        """
        score = self.weights.get(intent, 0)
        signals = [f"Base({intent.value}): {score}"]

        for name, delta, patterns in self.modifiers:
            if any(p.search(normalized_text) for p in patterns):
                score += delta
                signals.append(f"Modifier: {name.title()} ({delta:+d})")

        score = max(0, min(100, score))
        return score, self.level_for(score), signals


class ActionPolicy:

    def __init__(self, table: OpportunityTable):
        self.policy = table.action_policy

    def determine_action(self, level: OpportunityLevel, stage: BuyingStage) -> RecommendedAction:
        return self.policy.get(level, {}).get(stage, RecommendedAction.IGNORE)


class UnknownIntentLogger:
    """
    Fire-and-forget sink for comments the lexicon could not place.

    Entries are kept in a bounded in-memory buffer and, when a Supabase
    client is given, inserted into the unknown-intent table off the
    request path. Sink failures are logged and never raised.
    """

    def __init__(self, supabase_client: Optional[Client] = None, max_entries: int = 500):
        self.supabase = supabase_client
        self.entries: Deque[Dict] = deque(maxlen=max_entries)

    def log(
        self,
        classification: IntentClassificationResult,
        raw_text: str,
        reason: str,
        comment_id: Optional[str] = None
    ):
        entry = {
            "comment_id": comment_id,
            "raw_text": raw_text,
            "normalized_text": normalize_text(raw_text),
            "intent": classification.intent.value,
            "signals": [s.signal for s in classification.signals],
            "reason": reason,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.entries.append(entry)
        logger.debug(f"Unknown intent logged ({reason}): {raw_text[:60]}")

        if self.supabase is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            self._persist(entry)
        else:
            loop.run_in_executor(None, self._persist, entry)

    def _persist(self, entry: Dict):
        try:
            self.supabase.table(Tables.UNKNOWN_INTENTS).insert(entry).execute()
        except Exception as e:
            logger.warning(f"Failed to persist unknown intent entry: {e}")


class OpportunityEngine:
    """Converts an intent classification into an EngagementOpportunity."""

    def __init__(self, table: OpportunityTable, unknown_logger: Optional[UnknownIntentLogger] = None):
        self.stage_mapper = BuyingStageMapper(table)
        self.scorer = OpportunityScorer(table)
        self.action_policy = ActionPolicy(table)
        self.unknown_logger = unknown_logger or UnknownIntentLogger()

    def evaluate(
        self,
        classification: IntentClassificationResult,
        raw_text: str,
        comment_id: Optional[str] = None
    ) -> EngagementOpportunity:
        reason = self._unknown_reason(classification)
        if reason:
            self.unknown_logger.log(classification, raw_text, reason, comment_id=comment_id)

        primary = classification.intent
        supporting = supporting_intents(classification)
        stage = self.stage_mapper.map(primary, supporting)
        score, level, signals = self.scorer.score(primary, normalize_text(raw_text))
        action = self.action_policy.determine_action(level, stage)

        return EngagementOpportunity(
            opportunity_level=level,
            buying_stage=stage,
            urgency_score=score,
            primary_intent=primary,
            supporting_intents=supporting,
            recommended_action=action,
            explanation=OpportunityExplanation(
                summary=f"Rated {level.value} ({score}) at {stage.value} stage. Action: {action.value}",
                signals=signals,
                matched_phrases=list(classification.evidence.matched_signals),
            ),
        )

    @staticmethod
    def _unknown_reason(classification: IntentClassificationResult) -> Optional[str]:
        if not classification.signals:
            return "NO_MATCH"
        if classification.confidence < LOW_CONFIDENCE_THRESHOLD:
            return "LOW_CONFIDENCE"
        if classification.intent == EngagementIntent.UNKNOWN:
            return "AMBIGUOUS"
        return None
