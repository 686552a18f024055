"""
Event adapters: platform records -> canonical CapabilityRequest.

Adapters only translate. No scoring, ranking or sentiment happens here.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..core.contracts import CapabilityInput, CapabilityRequest

Platform = Literal["youtube", "tiktok", "instagram", "other"]


class VideoEvent(BaseModel):
    platform: Platform
    video_id: str
    creator_id: str
    creator_name: Optional[str] = None
    video_title: Optional[str] = None
    video_description: Optional[str] = None
    video_tags: List[str] = Field(default_factory=list)
    timestamp: datetime
    session_id: str
    install_id: str
    text: Optional[str] = Field(None, description="Comment or caption text, when present")


class CommentEvent(BaseModel):
    platform: Platform
    video_id: str
    comment_id: str
    comment_text: str
    commenter_id: Optional[str] = None
    commenter_name: Optional[str] = None
    timestamp: datetime
    session_id: str


class VideoEventAdapter:

    @staticmethod
    def to_capability_request(event: VideoEvent) -> CapabilityRequest:
        # Text > title > description > empty
        query = event.text or event.video_title or event.video_description or ""

        return CapabilityRequest(
            channel="desktop",
            input=CapabilityInput(query=query),
            context={
                "flow": "answer_then_recommend",
                "domain": "video",
                "session_id": event.session_id,
                "video_context": {
                    "title": event.video_title,
                    "description": event.video_description,
                    "tags": list(event.video_tags),
                },
                "raw_event": {
                    "video_id": event.video_id,
                    "creator_name": event.creator_name,
                    "platform": event.platform,
                    "timestamp": event.timestamp.isoformat(),
                },
            },
        )


class CommentEventAdapter:

    @staticmethod
    def to_capability_request(
        event: CommentEvent,
        visible_comments: Optional[List[Dict[str, Any]]] = None
    ) -> CapabilityRequest:
        """
        Args:
            event: The comment being engaged with
            visible_comments: Other visible comments, passed through as candidates
        """
        return CapabilityRequest(
            channel="desktop",
            input=CapabilityInput(query=event.comment_text),
            context={
                "flow": "recommend_only",
                "domain": "comment",
                "session_id": event.session_id,
                "candidates": list(visible_comments or []),
                "comment_context": {
                    "author": event.commenter_name,
                    "timestamp": event.timestamp.isoformat(),
                },
                "raw_event": {
                    "comment_id": event.comment_id,
                    "commenter_id": event.commenter_id,
                    "commenter_name": event.commenter_name,
                    "platform": event.platform,
                    "video_id": event.video_id,
                    "timestamp": event.timestamp.isoformat(),
                },
            },
        )
