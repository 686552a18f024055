"""
Brain Engine - chooses an engagement strategy and drafts the reply.

Flow for one event:
    1. Intent classification (+ optional signal inference)
    2. Domain policy filter (may block or force a strategy)
    3. Context / role / safety gate
    4. Strategy selection (forced strategy, else heuristic ranking)
    5. Reply strategies only: retrieval for answer-style strategies,
       versioned prompt, generation through the circuit breaker,
       cached by event identity + strategy + regeneration count.
       Provider failure or an open circuit falls back to a heuristic
       template, tagged in explanation/model so it stays visible.

Usage:
    engine = BrainEngine(classifier, DomainPolicyFilter(tables.intent_policy), BrainRuntime.from_config())
    decision = await engine.decide(BrainInput(event=EventPayload(...)))
    print(decision.response.strategy, decision.response.text)
"""

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from ...core.observability import get_logfire
from ...core.resilience import bounded_call
from ..context_gate import decide_context
from ..domain_filter import DomainPolicyFilter
from ..intent_classifier import IntentClassifier
from ..models import (
    REPLY_STRATEGIES,
    RETRIEVAL_STRATEGIES,
    BrainInput,
    BrainResponse,
    ContextDecision,
    HistoricalSignals,
    IntentClassificationResult,
    IntentDecision,
    Strategy,
    StrategyType,
    Tone,
)
from .llm_provider import CompletionRequest
from .prompts import PromptVersion, render_prompt
from .rag_client import RagQuery, RagResult
from .runtime import CIRCUIT_OPEN_REASON, BrainRuntime

logger = logging.getLogger(__name__)

ENGINE_VERSION = "3.1-rag"
POLICY_MODEL = "deterministic-policy"
POLICY_VERSION = "1.0-policy"
FALLBACK_MODEL = "heuristic-only-fallback"
FALLBACK_VERSION = "2.0-fallback"

HOSTILE_WORDS = ("hate", "stupid", "bad", "worst")
QUESTION_MARKERS = ("?", "how", "what")


# ============================================================================
# Heuristics
# ============================================================================

class StrategyRanker:
    """Keyword heuristics producing candidate strategies, best first."""

    @staticmethod
    def rank(text: str) -> List[Strategy]:
        text = text.lower()
        strategies = []

        if any(marker in text for marker in QUESTION_MARKERS):
            strategies.append(Strategy(type=StrategyType.ANSWER, confidence=0.85,
                                       rationale="Detected question indicators"))

        if any(word in text for word in HOSTILE_WORDS):
            strategies.append(Strategy(type=StrategyType.DE_ESCALATE, confidence=0.9,
                                       rationale="Detected hostile keywords"))
            strategies.append(Strategy(type=StrategyType.IGNORE, confidence=0.7,
                                       rationale="Hostility threshold met"))

        strategies.append(Strategy(type=StrategyType.ACKNOWLEDGE, confidence=0.6,
                                   rationale="Default engagement strategy"))

        return sorted(strategies, key=lambda s: s.confidence, reverse=True)


class HeuristicScorer:
    """Adjusts ranked strategies using the tenant's decision history."""

    HIGH_IGNORE_RATE = 0.5
    REPLY_PENALTY = 0.8
    IGNORE_BOOST = 1.2
    MAX_CONFIDENCE = 0.99

    @classmethod
    def adjust(cls, strategies: List[Strategy], history: HistoricalSignals) -> List[Strategy]:
        if history.ignore_rate <= cls.HIGH_IGNORE_RATE:
            return strategies

        adjusted = []
        for s in strategies:
            factor = cls.IGNORE_BOOST if s.type == StrategyType.IGNORE else cls.REPLY_PENALTY
            adjusted.append(s.model_copy(update={"confidence": min(cls.MAX_CONFIDENCE, s.confidence * factor)}))
        return sorted(adjusted, key=lambda s: s.confidence, reverse=True)


class PromptComposer:
    """Deterministic reply templates used when generation is unavailable."""

    @staticmethod
    def compose(strategy: StrategyType, tone: Tone, regeneration_count: int = 0) -> str:
        professional = tone == Tone.PROFESSIONAL

        if strategy == StrategyType.ANSWER:
            text = ("Thank you for the question. [Answer details]." if professional
                    else "Hey! Great question. [Answer details].")
        elif strategy == StrategyType.ACKNOWLEDGE:
            text = ("We appreciate your feedback." if professional
                    else "Thanks for watching! Glad you liked it.")
        elif strategy == StrategyType.DE_ESCALATE:
            text = "We hear your concerns. Let's discuss this constructively."
        elif strategy == StrategyType.IGNORE:
            text = "[NO_REPLY]"
        else:
            text = "Thanks!"

        if regeneration_count > 0:
            text += f" (Option {regeneration_count + 1})"
        return text


class LLMDraft(BaseModel):
    """Shape the generation provider must return."""
    suggested_text: str = Field(..., min_length=1)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    explanation: str = "LLM generated"
    strategy: Optional[str] = None


# ============================================================================
# Engine
# ============================================================================

@dataclass
class BrainDecision:
    """Full engine output: the response plus the decisions behind it."""
    response: BrainResponse
    classification: IntentClassificationResult
    intent_decision: IntentDecision
    context: ContextDecision


class BrainEngine:

    def __init__(
        self,
        classifier: IntentClassifier,
        domain_filter: DomainPolicyFilter,
        runtime: BrainRuntime
    ):
        self.classifier = classifier
        self.domain_filter = domain_filter
        self.runtime = runtime

    async def generate_suggestion(self, brain_input: BrainInput) -> BrainResponse:
        decision = await self.decide(brain_input)
        return decision.response

    async def decide(self, brain_input: BrainInput) -> BrainDecision:
        lf = get_logfire()
        event = brain_input.event

        with lf.span("brain_engine.decide", platform=event.platform, video_id=event.video_id):
            classification = await self.classifier.classify(event.content_text)
            intent_decision = self.domain_filter.evaluate(classification)
            context = decide_context(
                event,
                intent_decision,
                brain_input.aggressiveness,
                classification.confidence,
                proof=brain_input.ownership_proof,
                requested_template=brain_input.requested_template,
            )

            ranking = HeuristicScorer.adjust(StrategyRanker.rank(event.content_text), brain_input.history)
            strategy = self._select_strategy(classification, intent_decision, context, ranking)

            trace = {
                "intent": classification.intent.value,
                "strength": classification.strength.value,
                "signals": [f"{s.category.value}:{s.signal}" for s in classification.signals],
                "augmentation": classification.augmentation,
                "domain_policy": intent_decision.reason,
                "safety_override": intent_decision.safety_override,
                "context": context.model_dump(mode="json"),
                "ranking_snapshot": [s.type.value for s in ranking],
            }

            if strategy.type in REPLY_STRATEGIES:
                response = await self._generate(brain_input, strategy, classification, context, trace)
            else:
                response = BrainResponse(
                    text="",
                    strategy=strategy.type,
                    confidence=strategy.confidence,
                    explanation=strategy.rationale,
                    decision_trace=trace,
                    model=POLICY_MODEL,
                    version=POLICY_VERSION,
                )

            logger.info(
                f"Brain decision: intent={classification.intent.value} strategy={response.strategy.value} "
                f"model={response.model} cache_hit={response.cache_hit}"
            )
            return BrainDecision(
                response=response,
                classification=classification,
                intent_decision=intent_decision,
                context=context,
            )

    def _select_strategy(
        self,
        classification: IntentClassificationResult,
        intent_decision: IntentDecision,
        context: ContextDecision,
        ranking: List[Strategy]
    ) -> Strategy:
        if not intent_decision.allowed:
            return Strategy(type=StrategyType.IGNORE, confidence=classification.confidence,
                            rationale=intent_decision.reason)

        if intent_decision.forced_strategy is not None:
            strategy = Strategy(type=intent_decision.forced_strategy, confidence=classification.confidence,
                                rationale=intent_decision.reason)
        else:
            strategy = ranking[0]

        if strategy.type in REPLY_STRATEGIES and not context.allowed:
            return Strategy(type=StrategyType.SILENT_CAPTURE, confidence=strategy.confidence,
                            rationale=f"Safety gate veto: {context.violation}")
        return strategy

    async def _generate(
        self,
        brain_input: BrainInput,
        strategy: Strategy,
        classification: IntentClassificationResult,
        context: ContextDecision,
        trace: Dict[str, Any]
    ) -> BrainResponse:
        runtime = self.runtime
        settings = runtime.settings
        start = time.monotonic()

        rag_result, rag_meta = await self._retrieve(brain_input, strategy.type)
        trace["rag_meta"] = rag_meta
        prompt_version = PromptVersion.V3_RAG_AUGMENTED if rag_result else PromptVersion.V2_HYBRID
        rag_signature = (
            hashlib.sha256("|".join(rag_result.snippets).encode()).hexdigest() if rag_result else "no_rag"
        )

        cache_key = self.cache_key(brain_input, strategy.type, prompt_version, rag_signature)
        cached = runtime.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Brain cache hit {cache_key[:12]}")
            cached.cache_hit = True
            return cached

        if not runtime.breaker.allow_request():
            logger.warning("Circuit open; using heuristic fallback")
            return self._fallback(brain_input, strategy, CIRCUIT_OPEN_REASON, trace)

        prompt = render_prompt(prompt_version, {
            "tone": brain_input.tenant.tone.value.lower(),
            "platform": brain_input.event.platform,
            "strategy": strategy.type.value,
            "rationale": strategy.rationale,
            "speaker_role": context.speaker_role.value,
            "template_category": context.template_category.value,
            "ignored_count": brain_input.history.ignored_count,
            "user_intent": classification.intent.value,
            "video_id": brain_input.event.video_id,
            "author_name": brain_input.event.author_name,
            "content_text": brain_input.event.content_text,
            "length_limit": settings.length_limit,
            "context_snippets": "\n- ".join(rag_result.snippets) if rag_result else "",
        })
        request = CompletionRequest(prompt=prompt, temperature=settings.temperature, max_tokens=settings.max_tokens)

        outcome = await bounded_call(
            "generation_provider",
            lambda: runtime.provider.generate_completion(request),
            settings.llm_timeout_seconds,
        )
        if not outcome.ok:
            runtime.breaker.record_failure()
            reason = "timeout" if outcome.reason == "timeout" else f"provider_{outcome.reason}"
            return self._fallback(brain_input, strategy, reason, trace)

        try:
            draft = LLMDraft.model_validate_json(outcome.value.text)
        except ValidationError as e:
            logger.error(f"Invalid JSON from generation provider: {e}")
            runtime.breaker.record_failure()
            return self._fallback(brain_input, strategy, "invalid_output", trace)

        runtime.breaker.record_success()

        lowered = draft.suggested_text.lower()
        blocked = [k for k in brain_input.tenant.prohibited_keywords if k.lower() in lowered]
        if blocked:
            logger.warning(f"Generated draft contained prohibited keywords {blocked}; discarding")
            return self._fallback(brain_input, strategy, "prohibited_keyword", trace)

        latency_ms = int((time.monotonic() - start) * 1000)
        trace.update({
            "provider": runtime.provider.id,
            "prompt_version": prompt_version.value,
            "latency_ms": latency_ms,
            "tokens": outcome.value.usage,
        })

        response = BrainResponse(
            text=draft.suggested_text,
            strategy=strategy.type,
            confidence=draft.confidence,
            explanation=draft.explanation,
            decision_trace=trace,
            model=f"{runtime.provider.id}-hybrid",
            version=ENGINE_VERSION,
            citations=rag_meta.get("sources", []) if rag_result else [],
        )
        runtime.cache.set(cache_key, response)
        return response

    async def _retrieve(
        self,
        brain_input: BrainInput,
        strategy: StrategyType
    ) -> Tuple[Optional[RagResult], Dict[str, Any]]:
        if strategy not in RETRIEVAL_STRATEGIES or self.runtime.rag_client is None:
            return None, {"used": False, "reason": "skipped_strategy"}

        settings = self.runtime.settings
        query = RagQuery(
            query=brain_input.event.content_text,
            tenant_id=brain_input.tenant.tenant_id,
            max_snippets=settings.rag_max_snippets,
        )
        outcome = await bounded_call(
            "retrieval",
            lambda: self.runtime.rag_client.query(query),
            settings.rag_timeout_seconds,
        )
        if not outcome.ok:
            reason = "timeout" if outcome.reason == "timeout" else "lookup_failed"
            return None, {"used": False, "reason": reason}

        result: RagResult = outcome.value
        if not result.snippets or result.confidence <= settings.rag_confidence_threshold:
            return None, {"used": False, "reason": "low_confidence_or_empty", "confidence": result.confidence}

        return result, {
            "used": True,
            "confidence": result.confidence,
            "source_count": len(result.sources),
            "sources": result.sources,
        }

    def _fallback(
        self,
        brain_input: BrainInput,
        strategy: Strategy,
        reason: str,
        trace: Dict[str, Any]
    ) -> BrainResponse:
        trace = dict(trace, fallback_reason=reason)
        return BrainResponse(
            text=PromptComposer.compose(strategy.type, brain_input.tenant.tone, brain_input.regeneration_count),
            strategy=strategy.type,
            confidence=strategy.confidence,
            explanation=f"Fallback ({reason}): {strategy.rationale}",
            decision_trace=trace,
            model=FALLBACK_MODEL,
            version=FALLBACK_VERSION,
        )

    def cache_key(
        self,
        brain_input: BrainInput,
        strategy: StrategyType,
        prompt_version: PromptVersion,
        rag_signature: str
    ) -> str:
        event = brain_input.event
        payload = json.dumps({
            "tenant": brain_input.tenant.tenant_id,
            "platform": event.platform,
            "video": event.video_id,
            "author": event.author_name,
            "content": event.content_text,
            "strategy": strategy.value,
            "regen": brain_input.regeneration_count,
            "tone": brain_input.tenant.tone.value,
            "ignored": brain_input.history.ignored_count,
            "prompt_version": prompt_version.value,
            "model": self.runtime.provider.id,
            "rag_sig": rag_signature,
        }, sort_keys=True)
        return hashlib.sha256(payload.encode()).hexdigest()
