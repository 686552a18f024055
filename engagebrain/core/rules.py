"""
Versioned rule tables.

All policy lookups (intent policy, opportunity weights, action policy,
promotion weights, channel rules, templates) and the signal lexicon are
data files shipped in `engagebrain/rules/`. They are parsed once at startup
into typed, validated structures and handed to the services that use them.

Usage:
    from engagebrain.core.rules import load_rule_tables
    tables = load_rule_tables()            # package defaults
    tables = load_rule_tables("/etc/eb")   # deployment override
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from .config import Config
from ..services.models import (
    BuyingStage,
    BuyerIntentStrength,
    EngagementIntent,
    OpportunityLevel,
    RecommendedAction,
    SignalCategory,
    StrategyType,
)

logger = logging.getLogger(__name__)


class RuleTableError(Exception):
    """Raised when a rule table is missing or malformed"""

    def __init__(self, table: str, detail: str):
        self.table = table
        self.detail = detail
        super().__init__(f"Invalid rule table '{table}': {detail}")


# ============================================================================
# Table Models
# ============================================================================

class LexiconEntry(BaseModel):
    id: str
    signal: str = Field(..., min_length=1)


class IntentPolicyRule(BaseModel):
    allowed: bool
    forced_strategy: Optional[StrategyType] = None


class SafetyNetRule(BaseModel):
    rescue_strengths: List[BuyerIntentStrength]
    strategy: StrategyType = StrategyType.SILENT_CAPTURE
    reason: str = "Safety Override: High Intent Rescue"


class IntentPolicyTable(BaseModel):
    version: str
    intents: Dict[EngagementIntent, IntentPolicyRule]
    safety_net: SafetyNetRule


class ScoreModifier(BaseModel):
    delta: int
    phrases: List[str]


class OpportunityTable(BaseModel):
    version: str
    intent_weights: Dict[EngagementIntent, int]
    buying_stage_map: Dict[EngagementIntent, BuyingStage]
    default_stage: BuyingStage = BuyingStage.AWARENESS
    regret_override_intents: List[EngagementIntent]
    modifiers: Dict[str, ScoreModifier]
    level_thresholds: Dict[OpportunityLevel, int] = Field(
        ..., description="Score must be strictly above the threshold to reach the level"
    )
    action_policy: Dict[OpportunityLevel, Dict[BuyingStage, RecommendedAction]]


class PriorityWeights(BaseModel):
    base_weight_urgency: float = 1.0
    weight_repetition: float = 10.0
    weight_escalation: float = 20.0
    weight_frequency: float = 5.0
    penalty_spam: float = -50.0
    spam_frequency_threshold: int = 5


class PromotionThresholds(BaseModel):
    always_suppress_levels: List[OpportunityLevel]
    always_promote_stages: List[BuyingStage]
    promote_above: float = 80.0
    suppress_below: float = 50.0


class PromotionTable(BaseModel):
    version: str
    window_minutes: int = Field(15, gt=0)
    group_by: str = "user_id"
    weights: PriorityWeights
    thresholds: PromotionThresholds


class ChannelRule(BaseModel):
    block_dm: bool = False


class TemplateEntry(BaseModel):
    id: str
    text: str


class ActionTable(BaseModel):
    version: str
    always_escalate_stages: List[BuyingStage]
    channels: Dict[str, ChannelRule]
    platform_aliases: Dict[str, str] = Field(default_factory=dict)
    templates: Dict[str, Dict[str, TemplateEntry]]
    escalation_templates: Dict[str, TemplateEntry]


@dataclass
class RuleTables:
    """All tables a pipeline instance runs against"""
    lexicon: Dict[SignalCategory, List[LexiconEntry]]
    intent_policy: IntentPolicyTable
    opportunity: OpportunityTable
    promotion: PromotionTable
    action: ActionTable
    language: str = "en"


# ============================================================================
# Loaders
# ============================================================================

def _read_yaml(path: Path) -> dict:
    if not path.exists():
        raise RuleTableError(path.name, f"file not found at {path}")
    with open(path, 'r') as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise RuleTableError(path.name, "expected a mapping at the top level")
    return data


def _parse(model, path: Path):
    try:
        return model.model_validate(_read_yaml(path))
    except ValidationError as e:
        raise RuleTableError(path.name, str(e)) from e


def load_signal_lexicon(rules_dir: Path, language: str = "en") -> Dict[SignalCategory, List[LexiconEntry]]:
    """
    Load `signals/<language>/<category>.json` for every signal category.

    A missing category file leaves that category empty (logged).
    """
    lexicon_dir = rules_dir / "signals" / language
    lexicon: Dict[SignalCategory, List[LexiconEntry]] = {}

    for category in SignalCategory:
        path = lexicon_dir / f"{category.value.lower()}.json"
        if not path.exists():
            logger.warning(f"Signal lexicon file missing for {category.value}: {path}")
            lexicon[category] = []
            continue
        with open(path, 'r') as f:
            try:
                raw = json.load(f)
            except json.JSONDecodeError as e:
                raise RuleTableError(path.name, f"invalid JSON: {e}") from e
        try:
            lexicon[category] = [LexiconEntry.model_validate(item) for item in raw]
        except ValidationError as e:
            raise RuleTableError(path.name, str(e)) from e

    total = sum(len(v) for v in lexicon.values())
    logger.info(f"Loaded signal lexicon ({language}): {total} phrases")
    return lexicon


def load_rule_tables(
    rules_dir: Optional[Union[str, Path]] = None,
    language: Optional[str] = None
) -> RuleTables:
    """
    Load and validate every rule table.

    Args:
        rules_dir: Directory holding the tables (default: Config.RULES_DIR)
        language: Lexicon language (default: Config.SIGNAL_LANGUAGE)

    Returns:
        RuleTables instance

    Raises:
        RuleTableError: If a table is missing or malformed
    """
    base = Path(rules_dir) if rules_dir else Config.RULES_DIR
    lang = language or Config.SIGNAL_LANGUAGE

    tables = RuleTables(
        lexicon=load_signal_lexicon(base, lang),
        intent_policy=_parse(IntentPolicyTable, base / "intent_policy.yml"),
        opportunity=_parse(OpportunityTable, base / "opportunity.yml"),
        promotion=_parse(PromotionTable, base / "promotion.yml"),
        action=_parse(ActionTable, base / "action.yml"),
        language=lang,
    )
    logger.debug(
        f"Rule tables loaded from {base}: intent_policy={tables.intent_policy.version}, "
        f"opportunity={tables.opportunity.version}, promotion={tables.promotion.version}, "
        f"action={tables.action.version}"
    )
    return tables
