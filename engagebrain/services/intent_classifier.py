"""
Intent Classifier - deterministic signal-based comment intent detection.

Normalizes comment text, scans it against the category-tagged signal
lexicon and composes a primary intent and buyer-intent strength with a
fixed priority ladder (first match wins):

1. REGRET                                         -> POST_PURCHASE_REGRET / IMMEDIATE
2. CONDITIONAL|PREFERENCE + target reference      -> LATENT_PURCHASE / VERY_HIGH
3. EVALUATIVE + CONTEXT|USAGE_CONTEXT             -> FIT_SUITABILITY / HIGH
   (strong evaluative qualifies alone, weak ones need a target reference)
4. PROBLEM + PRODUCT_REF                          -> PROBLEM_SOLUTION / HIGH
5. INTERROGATIVE_WORD + SOURCE + PRODUCT_REF|PRONOUN -> PRODUCT_INQUIRY / HIGH
6. Other signals without HOSTILE/SOCIAL           -> UNKNOWN / LOW (pure praise -> NOISE)
7. Nothing, or HOSTILE/SOCIAL                     -> NOISE / NONE

An UNKNOWN result with 1-3 signals and no PREFERENCE may be augmented by
the signal-inference service; inferred signals are merged by id and the
ladder is re-run once.

Usage:
    tables = load_rule_tables()
    classifier = IntentClassifier(SignalLexicon(tables.lexicon))
    result = await classifier.classify("Foundation & concealer from???")
    print(result.intent, result.strength)
"""

import logging
import re
from typing import Dict, List, Optional, Pattern, Tuple

from ..core.resilience import bounded_call
from ..core.rules import LexiconEntry
from .models import (
    BuyerIntentStrength,
    ClassificationEvidence,
    DetectedSignal,
    EngagementIntent,
    IntentClassificationResult,
    SignalCategory,
)
from .signal_inference_client import SignalInferenceClient

logger = logging.getLogger(__name__)

# Evaluative terms that qualify a fit judgement without a target reference
STRONG_EVALUATIVES = ("suitable", "fit", "appropriate")

DETERMINISTIC_CONFIDENCE = 1.0
INFERRED_CONFIDENCE = 0.75

INFERENCE_MIN_SIGNALS = 1
INFERENCE_MAX_SIGNALS = 3

_TARGET_CATEGORIES = {SignalCategory.PRODUCT_REF, SignalCategory.ATTRIBUTE, SignalCategory.PRONOUN}
_IGNORABLE_CATEGORIES = {SignalCategory.HOSTILE, SignalCategory.SOCIAL}
_PRAISE_CONTEXT_CATEGORIES = {
    SignalCategory.CONTEXT,
    SignalCategory.USAGE_CONTEXT,
    SignalCategory.CONDITIONAL,
    SignalCategory.PREFERENCE,
}


def normalize_text(text: str) -> str:
    return (text or "").strip().lower()


def compile_phrase(phrase: str) -> Pattern:
    """
    Compile a lexicon phrase into a matcher.

    Alphanumeric edges get word boundaries ("fit" does not match "outfit");
    punctuation edges match as-is ("from?" matches "from???").
    """
    phrase = phrase.lower()
    prefix = r"\b" if phrase[0].isalnum() else ""
    suffix = r"\b" if phrase[-1].isalnum() else ""
    return re.compile(prefix + re.escape(phrase) + suffix)


class SignalLexicon:
    """Compiled, read-only view of the signal lexicon."""

    def __init__(self, entries: Dict[SignalCategory, List[LexiconEntry]]):
        self._patterns: List[Tuple[SignalCategory, LexiconEntry, Pattern]] = []
        for category in SignalCategory:
            for entry in entries.get(category, []):
                self._patterns.append((category, entry, compile_phrase(entry.signal)))

    @property
    def is_ready(self) -> bool:
        return bool(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def scan(self, normalized_text: str) -> List[DetectedSignal]:
        """Return every lexicon phrase present in the text, in lexicon order."""
        found = []
        for category, entry, pattern in self._patterns:
            if pattern.search(normalized_text):
                found.append(DetectedSignal(id=entry.id, category=category, signal=entry.signal.lower()))
        return found


def compose_intent(signals: List[DetectedSignal]) -> Tuple[EngagementIntent, BuyerIntentStrength]:
    """Apply the priority ladder to a set of detected signals."""
    if not signals:
        return EngagementIntent.NOISE, BuyerIntentStrength.NONE

    categories = {s.category for s in signals}

    def has(*wanted: SignalCategory) -> bool:
        return any(c in categories for c in wanted)

    has_target = bool(categories & _TARGET_CATEGORIES)

    if has(SignalCategory.REGRET):
        return EngagementIntent.POST_PURCHASE_REGRET, BuyerIntentStrength.IMMEDIATE

    if has(SignalCategory.CONDITIONAL, SignalCategory.PREFERENCE) and has_target:
        return EngagementIntent.LATENT_PURCHASE, BuyerIntentStrength.VERY_HIGH

    if has(SignalCategory.EVALUATIVE) and has(SignalCategory.CONTEXT, SignalCategory.USAGE_CONTEXT):
        strong = any(
            s.category == SignalCategory.EVALUATIVE and any(term in s.signal for term in STRONG_EVALUATIVES)
            for s in signals
        )
        if strong or has_target:
            return EngagementIntent.FIT_SUITABILITY, BuyerIntentStrength.HIGH

    if has(SignalCategory.PROBLEM) and has(SignalCategory.PRODUCT_REF):
        return EngagementIntent.PROBLEM_SOLUTION, BuyerIntentStrength.HIGH

    if (
        has(SignalCategory.INTERROGATIVE_WORD)
        and has(SignalCategory.SOURCE)
        and has(SignalCategory.PRODUCT_REF, SignalCategory.PRONOUN)
    ):
        return EngagementIntent.PRODUCT_INQUIRY, BuyerIntentStrength.HIGH

    if categories & _IGNORABLE_CATEGORIES:
        return EngagementIntent.NOISE, BuyerIntentStrength.NONE

    if has(SignalCategory.PRAISE) and not (categories & _PRAISE_CONTEXT_CATEGORIES):
        return EngagementIntent.NOISE, BuyerIntentStrength.NONE

    return EngagementIntent.UNKNOWN, BuyerIntentStrength.LOW


class IntentClassifier:
    """
    Classifies comment text into an engagement intent.

    The inference client is optional; without it the classifier is purely
    deterministic.
    """

    def __init__(
        self,
        lexicon: SignalLexicon,
        inference_client: Optional[SignalInferenceClient] = None,
        inference_timeout_seconds: float = 5.0,
        language: str = "en"
    ):
        self.lexicon = lexicon
        self.inference_client = inference_client
        self.inference_timeout_seconds = inference_timeout_seconds
        self.language = language

        if not lexicon.is_ready:
            logger.warning("IntentClassifier created with an empty lexicon; every comment will be NOISE")

    def classify_sync(self, text: str) -> IntentClassificationResult:
        """Deterministic classification without augmentation."""
        if not self.lexicon.is_ready:
            return self._not_ready_result()

        signals = self.lexicon.scan(normalize_text(text))
        intent, strength = compose_intent(signals)
        return self._build_result(intent, strength, signals)

    async def classify(self, text: str) -> IntentClassificationResult:
        """
        Classify text, augmenting ambiguous results with inferred signals.

        Never raises for inference problems: the outcome is recorded in
        `result.augmentation` and the deterministic result is returned.
        """
        result = self.classify_sync(text)

        if not self._should_augment(result):
            return result

        outcome = await bounded_call(
            "signal_inference",
            lambda: self.inference_client.infer_signals(text),
            self.inference_timeout_seconds,
        )
        if not outcome.ok:
            result.augmentation = f"failed:{outcome.reason}"
            return result

        if not outcome.value:
            result.augmentation = "no_signals_inferred"
            return result

        merged = list(result.signals)
        known_ids = {s.id for s in merged}
        added = []
        for signal in outcome.value:
            if signal.id not in known_ids:
                merged.append(signal)
                known_ids.add(signal.id)
                added.append(signal)

        if not added:
            result.augmentation = "no_new_signals"
            return result

        intent, strength = compose_intent(merged)
        logger.info(
            f"Inference added {len(added)} signals: {result.intent.value} -> {intent.value}"
        )
        augmented = self._build_result(intent, strength, merged, inferred=added)
        augmented.augmentation = "merged"
        return augmented

    def _should_augment(self, result: IntentClassificationResult) -> bool:
        if self.inference_client is None or not self.inference_client.enabled:
            return False
        if result.intent != EngagementIntent.UNKNOWN:
            return False
        if not INFERENCE_MIN_SIGNALS <= len(result.signals) <= INFERENCE_MAX_SIGNALS:
            return False
        return SignalCategory.PREFERENCE not in result.categories()

    def _build_result(
        self,
        intent: EngagementIntent,
        strength: BuyerIntentStrength,
        signals: List[DetectedSignal],
        inferred: Optional[List[DetectedSignal]] = None
    ) -> IntentClassificationResult:
        inferred = inferred or []
        return IntentClassificationResult(
            intent=intent,
            strength=strength,
            confidence=INFERRED_CONFIDENCE if inferred else DETERMINISTIC_CONFIDENCE,
            signals=signals,
            evidence=ClassificationEvidence(
                matched_signals=[s.signal for s in signals],
                inferred_signal_ids=[s.id for s in inferred],
                language=self.language,
            ),
        )

    def _not_ready_result(self) -> IntentClassificationResult:
        return IntentClassificationResult(
            intent=EngagementIntent.NOISE,
            strength=BuyerIntentStrength.NONE,
            confidence=0.0,
            evidence=ClassificationEvidence(language=self.language),
            augmentation="lexicon_not_ready",
        )
