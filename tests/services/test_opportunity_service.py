"""
Tests for the opportunity engine: buying stage, urgency score, level,
recommended action and the unknown-intent sink.
"""

import pytest
from unittest.mock import MagicMock

from engagebrain.services.models import (
    BuyingStage,
    EngagementIntent,
    OpportunityLevel,
    RecommendedAction,
)
from engagebrain.services.opportunity_service import (
    BuyingStageMapper,
    OpportunityEngine,
    OpportunityScorer,
    UnknownIntentLogger,
)


@pytest.fixture
def scorer(tables):
    return OpportunityScorer(tables.opportunity)


@pytest.fixture
def engine(tables):
    return OpportunityEngine(tables.opportunity)


class TestOpportunityScorer:

    @pytest.mark.parametrize("score,level", [
        (81, OpportunityLevel.CRITICAL),
        (80, OpportunityLevel.HIGH),
        (61, OpportunityLevel.HIGH),
        (60, OpportunityLevel.MEDIUM),
        (41, OpportunityLevel.MEDIUM),
        (40, OpportunityLevel.LOW),
        (21, OpportunityLevel.LOW),
        (20, OpportunityLevel.IGNORE),
        (0, OpportunityLevel.IGNORE),
    ])
    def test_thresholds_are_strict(self, scorer, score, level):
        assert scorer.level_for(score) == level

    def test_base_weight(self, scorer):
        score, level, signals = scorer.score(EngagementIntent.PRODUCT_INQUIRY, "where from?")
        assert score == 75
        assert level == OpportunityLevel.HIGH
        assert signals == ["Base(PRODUCT_INQUIRY): 75"]

    def test_modifier_applies_once_per_group(self, scorer):
        score, _, signals = scorer.score(EngagementIntent.PRODUCT_INQUIRY, "need it asap, now")
        assert score == 90
        assert "Modifier: Urgency (+15)" in signals

    def test_clamped_to_100(self, scorer):
        score, level, _ = scorer.score(
            EngagementIntent.POST_PURCHASE_REGRET, "need a fix asap, this is worse compared to the old one"
        )
        assert score == 100
        assert level == OpportunityLevel.CRITICAL

    def test_clamped_to_0(self, scorer):
        score, level, signals = scorer.score(EngagementIntent.NOISE, "maybe")
        assert score == 0
        assert level == OpportunityLevel.IGNORE
        assert "Modifier: Hesitation (-10)" in signals

    def test_modifier_phrases_respect_word_boundaries(self, scorer):
        # "now" inside "known" is not urgency
        score, _, _ = scorer.score(EngagementIntent.PRODUCT_INQUIRY, "well known brand")
        assert score == 75


class TestBuyingStageMapper:

    def test_primary_mapping(self, tables):
        mapper = BuyingStageMapper(tables.opportunity)
        assert mapper.map(EngagementIntent.PRODUCT_INQUIRY) == BuyingStage.DECISION
        assert mapper.map(EngagementIntent.FIT_SUITABILITY) == BuyingStage.VALIDATION
        assert mapper.map(EngagementIntent.UNKNOWN) == BuyingStage.AWARENESS

    def test_supporting_regret_overrides(self, tables):
        mapper = BuyingStageMapper(tables.opportunity)
        stage = mapper.map(EngagementIntent.PRODUCT_INQUIRY, [EngagementIntent.HOSTILE])
        assert stage == BuyingStage.REGRET


class TestOpportunityEngine:

    def test_product_inquiry(self, engine, classifier):
        text = "Foundation & concealer from???"
        opportunity = engine.evaluate(classifier.classify_sync(text), text)

        assert opportunity.urgency_score == 75
        assert opportunity.opportunity_level == OpportunityLevel.HIGH
        assert opportunity.buying_stage == BuyingStage.DECISION
        assert opportunity.recommended_action == RecommendedAction.PUBLIC_REPLY
        assert opportunity.supporting_intents == []
        assert "foundation" in opportunity.explanation.matched_phrases

    def test_fit_suitability_is_medium(self, engine, classifier):
        text = "This color fits my anniversary"
        opportunity = engine.evaluate(classifier.classify_sync(text), text)

        assert opportunity.urgency_score == 60
        assert opportunity.opportunity_level == OpportunityLevel.MEDIUM
        assert opportunity.buying_stage == BuyingStage.VALIDATION
        assert opportunity.recommended_action == RecommendedAction.PUBLIC_REPLY

    def test_regret_escalates(self, engine, classifier):
        text = "I bought this and it broke"
        opportunity = engine.evaluate(classifier.classify_sync(text), text)

        assert opportunity.urgency_score == 85
        assert opportunity.opportunity_level == OpportunityLevel.CRITICAL
        assert opportunity.buying_stage == BuyingStage.REGRET
        assert opportunity.recommended_action == RecommendedAction.ESCALATE
        assert opportunity.explanation.summary == "Rated CRITICAL (85) at REGRET stage. Action: ESCALATE"

    def test_hostile_supporting_intent_forces_regret_stage(self, engine, classifier):
        text = "where is this foundation from? worst scam"
        classification = classifier.classify_sync(text)
        opportunity = engine.evaluate(classification, text)

        assert classification.intent == EngagementIntent.PRODUCT_INQUIRY
        assert EngagementIntent.HOSTILE in opportunity.supporting_intents
        assert opportunity.buying_stage == BuyingStage.REGRET
        assert opportunity.recommended_action == RecommendedAction.ESCALATE


class TestUnknownIntentLogger:

    def test_no_match_is_logged(self, tables, classifier):
        sink = UnknownIntentLogger()
        engine = OpportunityEngine(tables.opportunity, sink)

        engine.evaluate(classifier.classify_sync("xyzzy"), "xyzzy", comment_id="c9")

        assert len(sink.entries) == 1
        entry = sink.entries[0]
        assert entry["reason"] == "NO_MATCH"
        assert entry["comment_id"] == "c9"

    def test_ambiguous_is_logged(self, tables, classifier):
        sink = UnknownIntentLogger()
        engine = OpportunityEngine(tables.opportunity, sink)
        text = "love this for summer"

        engine.evaluate(classifier.classify_sync(text), text)

        assert sink.entries[0]["reason"] == "AMBIGUOUS"

    def test_classified_comment_is_not_logged(self, tables, classifier):
        sink = UnknownIntentLogger()
        engine = OpportunityEngine(tables.opportunity, sink)
        text = "Foundation & concealer from???"

        engine.evaluate(classifier.classify_sync(text), text)

        assert len(sink.entries) == 0

    def test_buffer_is_bounded(self, classifier):
        sink = UnknownIntentLogger(max_entries=2)
        classification = classifier.classify_sync("xyzzy")
        for _ in range(5):
            sink.log(classification, "xyzzy", "NO_MATCH")
        assert len(sink.entries) == 2

    def test_persists_to_supabase(self, classifier):
        supabase = MagicMock()
        sink = UnknownIntentLogger(supabase_client=supabase)

        sink.log(classifier.classify_sync("xyzzy"), "xyzzy", "NO_MATCH")

        supabase.table.assert_called_once_with("unknown_intent_logs")
        row = supabase.table.return_value.insert.call_args[0][0]
        assert row["reason"] == "NO_MATCH"
        assert row["normalized_text"] == "xyzzy"

    def test_persist_failure_is_swallowed(self, classifier):
        supabase = MagicMock()
        supabase.table.side_effect = Exception("connection refused")
        sink = UnknownIntentLogger(supabase_client=supabase)

        sink.log(classifier.classify_sync("xyzzy"), "xyzzy", "NO_MATCH")

        assert len(sink.entries) == 1
