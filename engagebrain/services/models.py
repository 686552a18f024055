"""
Pydantic models for EngageBrain services.

These models provide type-safe, validated data structures for:
- Intent classification (DetectedSignal, IntentClassificationResult, IntentDecision)
- Context and speaker role decisions (OwnershipProof, ContextDecision)
- Brain engine input/output (BrainInput, BrainResponse)
- Opportunity scoring and promotion (EngagementOpportunity, EngagementSignal, PromotedEngagement)
- Action planning and human control (EngagementActionPlan, ControlledAction, AuditEntry)
- Safety and tenant settings (SafetyCheckResult, EngagementTarget, TenantSettings)

All models use Pydantic v2 for validation and serialization.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Intent Enums
# ============================================================================

class EngagementIntent(str, Enum):
    """Closed set of comment intents"""
    NOISE = "NOISE"
    SOCIAL = "SOCIAL"
    INFO_SEEKING = "INFO_SEEKING"
    PROBLEM_SOLUTION = "PROBLEM_SOLUTION"
    LATENT_PURCHASE = "LATENT_PURCHASE"
    PRODUCT_INQUIRY = "PRODUCT_INQUIRY"
    POST_PURCHASE_REGRET = "POST_PURCHASE_REGRET"
    HOSTILE = "HOSTILE"
    FIT_SUITABILITY = "FIT_SUITABILITY"
    UNKNOWN = "UNKNOWN"


class BuyerIntentStrength(str, Enum):
    """Ordered buyer intent strength"""
    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"
    IMMEDIATE = "IMMEDIATE"

    @property
    def rank(self) -> int:
        return list(BuyerIntentStrength).index(self)


class SignalCategory(str, Enum):
    """Lexicon categories a phrase can belong to"""
    INTERROGATIVE_WORD = "INTERROGATIVE_WORD"
    INTERROGATIVE_PUNCT = "INTERROGATIVE_PUNCT"
    SOURCE = "SOURCE"
    PRODUCT_REF = "PRODUCT_REF"
    PRONOUN = "PRONOUN"
    ATTRIBUTE = "ATTRIBUTE"
    CONDITIONAL = "CONDITIONAL"
    PREFERENCE = "PREFERENCE"
    PROBLEM = "PROBLEM"
    REGRET = "REGRET"
    EVALUATIVE = "EVALUATIVE"
    USAGE_CONTEXT = "USAGE_CONTEXT"
    CONTEXT = "CONTEXT"
    PRAISE = "PRAISE"
    HOSTILE = "HOSTILE"
    SOCIAL = "SOCIAL"


class StrategyType(str, Enum):
    """Engagement strategies the brain can choose"""
    ANSWER = "ANSWER"
    ACKNOWLEDGE = "ACKNOWLEDGE"
    DEFLECT = "DEFLECT"
    IGNORE = "IGNORE"
    DE_ESCALATE = "DE_ESCALATE"
    ASK_FOLLOWUP = "ASK_FOLLOWUP"
    SILENT_CAPTURE = "SILENT_CAPTURE"
    OBSERVE_ONLY = "OBSERVE_ONLY"


# Strategies that produce a drafted public/private reply
REPLY_STRATEGIES = frozenset({
    StrategyType.ANSWER,
    StrategyType.ACKNOWLEDGE,
    StrategyType.DEFLECT,
    StrategyType.DE_ESCALATE,
    StrategyType.ASK_FOLLOWUP,
})

# Strategies eligible for retrieval augmentation
RETRIEVAL_STRATEGIES = frozenset({StrategyType.ANSWER, StrategyType.ASK_FOLLOWUP})


# ============================================================================
# Context / Role Enums
# ============================================================================

class ContextType(str, Enum):
    OWNED_CONTENT = "OWNED_CONTENT"
    COMPETITOR_CONTENT = "COMPETITOR_CONTENT"
    THIRD_PARTY_NEUTRAL = "THIRD_PARTY_NEUTRAL"
    UNKNOWN_CONTEXT = "UNKNOWN_CONTEXT"


class SpeakerRole(str, Enum):
    OWNER = "OWNER"
    NEUTRAL_HELPER = "NEUTRAL_HELPER"
    ALTERNATIVE_PROVIDER = "ALTERNATIVE_PROVIDER"


class TemplateCategory(str, Enum):
    NEUTRAL_ADVICE = "NEUTRAL_ADVICE"
    EXPERIENCE_BASED = "EXPERIENCE_BASED"
    ALTERNATIVE_MENTION = "ALTERNATIVE_MENTION"
    OWNER_PROMOTIONAL = "OWNER_PROMOTIONAL"


class Aggressiveness(str, Enum):
    CONSERVATIVE = "CONSERVATIVE"
    BALANCED = "BALANCED"
    ASSERTIVE = "ASSERTIVE"


class EngagementMode(str, Enum):
    OBSERVE_ONLY = "OBSERVE_ONLY"
    SUGGEST = "SUGGEST"
    ASSIST = "ASSIST"


class Tone(str, Enum):
    PROFESSIONAL = "PROFESSIONAL"
    FRIENDLY = "FRIENDLY"
    CASUAL = "CASUAL"


# ============================================================================
# Opportunity / Promotion / Action Enums
# ============================================================================

class OpportunityLevel(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    IGNORE = "IGNORE"


class BuyingStage(str, Enum):
    AWARENESS = "AWARENESS"
    CONSIDERATION = "CONSIDERATION"
    VALIDATION = "VALIDATION"
    DECISION = "DECISION"
    REGRET = "REGRET"


class RecommendedAction(str, Enum):
    PUBLIC_REPLY = "PUBLIC_REPLY"
    DM = "DM"
    ESCALATE = "ESCALATE"
    IGNORE = "IGNORE"


class PromotionStatus(str, Enum):
    PROMOTED = "PROMOTED"
    DEFERRED = "DEFERRED"
    SUPPRESSED = "SUPPRESSED"


class ActionType(str, Enum):
    PUBLIC_REPLY = "PUBLIC_REPLY"
    DM = "DM"
    ESCALATE = "ESCALATE"
    NO_ACTION = "NO_ACTION"


class EngagementChannel(str, Enum):
    COMMENT = "COMMENT"
    DM = "DM"
    INTERNAL = "INTERNAL"


class ExecutionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXECUTED = "EXECUTED"


class DecisionType(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    EDIT = "EDIT"


class AuditEventType(str, Enum):
    QUEUED = "QUEUED"
    DECISION = "DECISION"


class SafetyMode(str, Enum):
    ENFORCE = "ENFORCE"
    SHADOW = "SHADOW"


# ============================================================================
# Intent Classification Models
# ============================================================================

class DetectedSignal(BaseModel):
    """A lexicon phrase (or inferred signal) found in a comment"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable signal id (lexicon id or ai_* for inferred)")
    category: SignalCategory = Field(..., description="Lexicon category")
    signal: str = Field(..., description="Matched phrase")


class ClassificationEvidence(BaseModel):
    matched_signals: List[str] = Field(default_factory=list, description="Matched phrases in scan order")
    inferred_signal_ids: List[str] = Field(default_factory=list, description="Ids contributed by inference")
    language: str = Field(default="en")


class IntentClassificationResult(BaseModel):
    """Outcome of the deterministic classifier"""
    intent: EngagementIntent
    strength: BuyerIntentStrength
    confidence: float = Field(..., ge=0.0, le=1.0)
    signals: List[DetectedSignal] = Field(default_factory=list)
    evidence: ClassificationEvidence = Field(default_factory=ClassificationEvidence)
    augmentation: str = Field(default="not_attempted", description="What the inference augmentation did")

    def categories(self) -> set:
        return {s.category for s in self.signals}


class IntentDecision(BaseModel):
    """Result of the domain policy filter"""
    allowed: bool
    intent: EngagementIntent
    strength: BuyerIntentStrength
    forced_strategy: Optional[StrategyType] = None
    reason: str
    safety_override: bool = False


# ============================================================================
# Context / Role Models
# ============================================================================

class OwnershipProof(BaseModel):
    """Caller-supplied proof that the commenting account owns the content"""
    verified: bool = False
    owner_account_id: Optional[str] = None
    source: Optional[str] = Field(None, description="Where the proof came from, e.g. 'oauth_channel_match'")


class ContextDecision(BaseModel):
    context_type: ContextType
    speaker_role: SpeakerRole
    template_category: TemplateCategory
    allowed: bool
    violation: Optional[str] = None
    rationale: str = ""


# ============================================================================
# Brain Engine Models
# ============================================================================

class Strategy(BaseModel):
    type: StrategyType
    confidence: float = Field(..., ge=0.0, le=1.0)
    rationale: str = ""


class EventPayload(BaseModel):
    """The comment being decided on"""
    platform: str
    video_id: str
    author_name: str = "unknown"
    content_text: str
    comment_id: Optional[str] = None
    account_id: Optional[str] = Field(None, description="Engaging (tenant) account on the platform")


class TenantContext(BaseModel):
    tenant_id: str = "default"
    tone: Tone = Tone.FRIENDLY
    avg_reply_length: int = Field(default=120, ge=0)
    prohibited_keywords: List[str] = Field(default_factory=list)


class HistoricalSignals(BaseModel):
    """Per-tenant decision feedback used to adjust heuristic strategy ranking"""
    total_decisions: int = Field(default=0, ge=0)
    ignored_count: int = Field(default=0, ge=0)
    approved_count: int = Field(default=0, ge=0)
    edited_count: int = Field(default=0, ge=0)

    @property
    def ignore_rate(self) -> float:
        if self.total_decisions == 0:
            return 0.0
        return self.ignored_count / self.total_decisions


class TenantSettings(BaseModel):
    """Per-account engagement settings"""
    account_id: str
    mode: EngagementMode = EngagementMode.OBSERVE_ONLY
    aggressiveness: Aggressiveness = Aggressiveness.CONSERVATIVE
    min_intent_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    max_suggestions_per_day: int = Field(default=20, ge=0)
    max_suggestions_per_video: int = Field(default=2, ge=0)
    cooldown_hours: int = Field(default=24, ge=0)
    kill_switch_global: bool = False
    kill_switch_platforms: List[str] = Field(default_factory=list)
    plan_id: str = "FREE"
    tone: Tone = Tone.FRIENDLY

    @field_validator('kill_switch_platforms', mode='before')
    @classmethod
    def lowercase_platforms(cls, v):
        if v is None:
            return []
        return [str(p).lower() for p in v]


class BrainInput(BaseModel):
    """Everything the brain engine needs for one decision"""
    event: EventPayload
    tenant: TenantContext = Field(default_factory=TenantContext)
    history: HistoricalSignals = Field(default_factory=HistoricalSignals)
    aggressiveness: Aggressiveness = Aggressiveness.CONSERVATIVE
    ownership_proof: Optional[OwnershipProof] = None
    requested_template: Optional[TemplateCategory] = None
    regeneration_count: int = Field(default=0, ge=0)


class BrainResponse(BaseModel):
    text: str
    strategy: StrategyType
    confidence: float = Field(..., ge=0.0, le=1.0)
    explanation: str
    decision_trace: Dict[str, Any] = Field(default_factory=dict)
    model: str
    version: str
    cache_hit: bool = False
    citations: List[str] = Field(default_factory=list)


# ============================================================================
# Opportunity / Promotion Models
# ============================================================================

class OpportunityExplanation(BaseModel):
    summary: str
    signals: List[str] = Field(default_factory=list)
    matched_phrases: List[str] = Field(default_factory=list)


class EngagementOpportunity(BaseModel):
    opportunity_level: OpportunityLevel
    buying_stage: BuyingStage
    urgency_score: int = Field(..., ge=0, le=100)
    primary_intent: EngagementIntent
    supporting_intents: List[EngagementIntent] = Field(default_factory=list)
    recommended_action: RecommendedAction
    explanation: OpportunityExplanation


class SignalMetadata(BaseModel):
    comment_id: str
    video_id: str
    platform: str
    user_id: Optional[str] = Field(None, description="Commenting actor; signals without one never aggregate")
    timestamp: datetime = Field(default_factory=utc_now)


class EngagementSignal(BaseModel):
    opportunity: EngagementOpportunity
    metadata: SignalMetadata


class AggregationContext(BaseModel):
    """Derived per-signal view of the actor's recent activity"""
    repeated_user: bool = False
    repeated_video: bool = False
    intent_escalation: bool = False
    frequency_score: int = Field(default=1, ge=1, description="Relevant history in the window plus this signal")
    related_signals_count: int = Field(default=0, ge=0)


class PromotedEngagement(BaseModel):
    opportunity_id: str
    priority_score: float
    status: PromotionStatus
    promotion_reason: str
    recommended_action: RecommendedAction
    aggregation_context: AggregationContext
    signal: EngagementSignal


# ============================================================================
# Action / Control Models
# ============================================================================

class ActionReasoning(BaseModel):
    opportunity_summary: str
    buying_stage: BuyingStage
    urgency_score: int
    promotion_reason: str


class EngagementActionPlan(BaseModel):
    """A proposed action; always requires a human decision before execution"""
    plan_id: str
    opportunity_id: str
    action_type: ActionType
    channel: EngagementChannel
    priority: float
    template_id: Optional[str] = None
    draft_message: Optional[str] = None
    requires_human_approval: Literal[True] = True
    reasoning: ActionReasoning
    created_at: datetime = Field(default_factory=utc_now)


class ControlDecision(BaseModel):
    decision: DecisionType
    edited_message: Optional[str] = None
    decided_by: str
    decided_at: datetime = Field(default_factory=utc_now)


class ControlledAction(BaseModel):
    action_plan_id: str
    tenant_id: Optional[str] = None
    original_plan: EngagementActionPlan
    control_decision: Optional[ControlDecision] = None
    execution_status: ExecutionStatus = ExecutionStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    action_plan_id: str
    event: AuditEventType
    details: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Safety Models
# ============================================================================

class EngagementTarget(BaseModel):
    """Who we would engage with, from which account"""
    platform: str
    target_id: str = Field(..., description="Commenting actor on the platform")
    account_id: str = Field(..., description="Engaging (tenant) account")


class SafetyCheckResult(BaseModel):
    allowed: bool
    reason: str
    rule_id: str
    override_strategy: Optional[StrategyType] = None
    is_shadow_violation: bool = False
