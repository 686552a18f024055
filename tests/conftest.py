"""
Shared fixtures: rule tables loaded from the packaged rules directory and
a fully in-memory pipeline running against the mock collaborators.
"""

import pytest

from engagebrain.core.rules import load_rule_tables
from engagebrain.services.brain.llm_provider import MockProvider
from engagebrain.services.brain.rag_client import MockRagClient
from engagebrain.services.brain.runtime import BrainRuntime
from engagebrain.services.engagement_pipeline import build
from engagebrain.services.intent_classifier import IntentClassifier, SignalLexicon
from engagebrain.services.safety import SafetyConfig


@pytest.fixture(scope="session")
def tables():
    """Rule tables shipped with the package."""
    return load_rule_tables()


@pytest.fixture
def classifier(tables):
    """Deterministic classifier (no inference client)."""
    return IntentClassifier(SignalLexicon(tables.lexicon))


@pytest.fixture
def provider():
    return MockProvider()


@pytest.fixture
def pipeline(tables, provider):
    """In-memory pipeline with the mock provider and mock retrieval."""
    runtime = BrainRuntime(provider=provider, rag_client=MockRagClient())
    return build(tables, runtime=runtime, safety_config=SafetyConfig())
