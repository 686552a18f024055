"""
Promotion Engine - aggregates opportunities per actor and decides what surfaces.

For each signal (oldest first) the engine looks at the same actor's
signals inside the trailing window, scores priority, and applies the
promotion rules:

    1. levels in always_suppress_levels -> SUPPRESSED
    2. stages in always_promote_stages  -> PROMOTED (bypass)
    3. score >= promote_above           -> PROMOTED
    4. score <= suppress_below          -> SUPPRESSED
    5. otherwise                        -> DEFERRED

Signals processed earlier in a batch become history for later ones, which
is what makes escalation visible within one pass.

Usage:
    engine = PromotionEngine(tables.promotion)
    ranked = engine.process(signals)          # batch, sorted by priority desc
    promoted = engine.promote(signal, history)  # one signal against stored history
"""

import logging
import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from ..core.rules import PromotionTable
from .models import (
    AggregationContext,
    BuyingStage,
    EngagementSignal,
    PromotedEngagement,
    PromotionStatus,
)

logger = logging.getLogger(__name__)

_ESCALATION_TARGET_STAGES = {BuyingStage.DECISION, BuyingStage.REGRET}
_ESCALATION_SOURCE_STAGES = {BuyingStage.CONSIDERATION, BuyingStage.AWARENESS}


class AggregationWindow:

    def __init__(self, window_minutes: int = 15):
        self.window = timedelta(minutes=window_minutes)

    def relevant_history(self, current: EngagementSignal, history: List[EngagementSignal]) -> List[EngagementSignal]:
        """Same-actor signals within the window (either side of the current timestamp)."""
        user_id = current.metadata.user_id
        if not user_id:
            return []
        ts = current.metadata.timestamp
        return [
            h for h in history
            if h.metadata.user_id == user_id and abs(ts - h.metadata.timestamp) <= self.window
        ]

    def analyze(self, current: EngagementSignal, history: List[EngagementSignal]) -> AggregationContext:
        relevant = self.relevant_history(current, history)
        if not relevant:
            return AggregationContext()

        escalated = current.opportunity.buying_stage in _ESCALATION_TARGET_STAGES and any(
            h.opportunity.buying_stage in _ESCALATION_SOURCE_STAGES for h in relevant
        )
        return AggregationContext(
            repeated_user=True,
            repeated_video=any(h.metadata.video_id == current.metadata.video_id for h in relevant),
            intent_escalation=escalated,
            frequency_score=len(relevant) + 1,
            related_signals_count=len(relevant),
        )


class PriorityScorer:

    def __init__(self, table: PromotionTable):
        self.weights = table.weights

    def calculate(self, signal: EngagementSignal, context: AggregationContext) -> float:
        w = self.weights
        score = signal.opportunity.urgency_score * w.base_weight_urgency

        if context.repeated_user:
            score += w.weight_repetition
        if context.intent_escalation:
            score += w.weight_escalation

        score += context.frequency_score * w.weight_frequency

        if context.frequency_score > w.spam_frequency_threshold:
            score += w.penalty_spam

        return max(0.0, min(100.0, float(score)))


class PromotionRules:

    def __init__(self, table: PromotionTable):
        self.thresholds = table.thresholds

    def evaluate(self, score: float, signal: EngagementSignal) -> Tuple[PromotionStatus, str]:
        t = self.thresholds
        stage = signal.opportunity.buying_stage
        level = signal.opportunity.opportunity_level

        if level in t.always_suppress_levels:
            return PromotionStatus.SUPPRESSED, "Level included in suppression list"

        if stage in t.always_promote_stages:
            return PromotionStatus.PROMOTED, f"Critical Stage ({stage.value.title()}) Bypass"

        if score >= t.promote_above:
            return PromotionStatus.PROMOTED, f"Score {score:.0f} >= {t.promote_above:.0f}"

        if score <= t.suppress_below:
            return PromotionStatus.SUPPRESSED, f"Score {score:.0f} <= {t.suppress_below:.0f}"

        return PromotionStatus.DEFERRED, f"Score {score:.0f} in queue range"


class PromotionEngine:

    def __init__(self, table: PromotionTable):
        self.window = AggregationWindow(table.window_minutes)
        self.scorer = PriorityScorer(table)
        self.rules = PromotionRules(table)

    def promote(self, signal: EngagementSignal, history: Optional[List[EngagementSignal]] = None) -> PromotedEngagement:
        context = self.window.analyze(signal, history or [])
        score = self.scorer.calculate(signal, context)
        status, reason = self.rules.evaluate(score, signal)

        logger.debug(
            f"Promotion {signal.metadata.comment_id}: score={score:.1f} status={status.value} ({reason})"
        )
        return PromotedEngagement(
            opportunity_id=signal.metadata.comment_id,
            priority_score=score,
            status=status,
            promotion_reason=reason,
            recommended_action=signal.opportunity.recommended_action,
            aggregation_context=context,
            signal=signal,
        )

    def process(self, signals: List[EngagementSignal]) -> List[PromotedEngagement]:
        results = []
        processed: List[EngagementSignal] = []

        for signal in sorted(signals, key=lambda s: s.metadata.timestamp):
            results.append(self.promote(signal, processed))
            processed.append(signal)

        return sorted(results, key=lambda r: r.priority_score, reverse=True)


class SignalHistory:
    """
    Recent signals per (account, actor), pruned to the aggregation window.

    Lets the pipeline promote one signal at a time while still seeing the
    actor's earlier comments. Actors are kept in order of last activity, so
    every call drops the actors whose newest signal fell out of the window,
    and the map never grows past `max_actors`.
    """

    def __init__(self, window_minutes: int = 15, max_actors: int = 10000):
        self.window = timedelta(minutes=window_minutes)
        self.max_actors = max_actors
        self._signals: "OrderedDict[Tuple[str, str], List[EngagementSignal]]" = OrderedDict()
        self._latest: Optional[datetime] = None
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._signals)

    def recent(self, account_id: str, signal: EngagementSignal) -> List[EngagementSignal]:
        user_id = signal.metadata.user_id
        if not user_id:
            return []
        key = (account_id, user_id)
        cutoff = signal.metadata.timestamp - self.window
        with self._lock:
            self._sweep(signal.metadata.timestamp)
            kept = [s for s in self._signals.get(key, []) if s.metadata.timestamp >= cutoff]
            if kept:
                self._signals[key] = kept
            else:
                self._signals.pop(key, None)
            return list(kept)

    def add(self, account_id: str, signal: EngagementSignal):
        if not signal.metadata.user_id:
            return
        key = (account_id, signal.metadata.user_id)
        with self._lock:
            self._signals.setdefault(key, []).append(signal)
            self._signals.move_to_end(key)
            self._sweep(signal.metadata.timestamp)
            while len(self._signals) > self.max_actors:
                self._signals.popitem(last=False)

    def _sweep(self, now: datetime):
        """Drop least-recently-active actors with nothing inside the window."""
        if self._latest is None or now > self._latest:
            self._latest = now
        cutoff = self._latest - self.window
        while self._signals:
            key, signals = next(iter(self._signals.items()))
            if max(s.metadata.timestamp for s in signals) >= cutoff:
                break
            del self._signals[key]
