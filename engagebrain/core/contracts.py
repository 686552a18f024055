"""
Canonical capability contract.

The pipeline boundary is frozen at version "v1": a CapabilityRequest goes in,
a CapabilityResponse comes out. Transport layers (HTTP, queues, CLI) build
these models and never reach into pipeline internals.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CONTRACT_VERSION = "v1"

ResponseKind = Literal["answer", "recommend", "error", "ignore"]


class CapabilityInput(BaseModel):
    model_config = ConfigDict(extra="allow")

    query: str = Field(..., description="Comment text to decide on")


class CapabilityRequest(BaseModel):
    """
    Inbound request.

    The `context` bag carries `raw_event` (platform, video_id, commenter_name,
    comment_id, account_id) and optional `ownership_proof`,
    `template_category` and `regeneration_count`.
    """
    version: str = CONTRACT_VERSION
    channel: str = "api"
    input: CapabilityInput
    context: Dict[str, Any] = Field(default_factory=dict)
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    plan: Optional[str] = None
    constraints: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('version')
    @classmethod
    def check_version(cls, v: str) -> str:
        if v != CONTRACT_VERSION:
            raise ValueError(f"Unsupported contract version: {v} (expected {CONTRACT_VERSION})")
        return v

    @property
    def raw_event(self) -> Dict[str, Any]:
        return self.context.get("raw_event") or {}


class CapabilityResponse(BaseModel):
    kind: ResponseKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    citations: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    telemetry: Dict[str, Any] = Field(default_factory=dict)
    policy_decisions: Dict[str, Any] = Field(default_factory=dict)
