"""
Retrieval clients for answer-style replies.

The brain engine bounds every query and discards results whose confidence
is at or below the threshold, so clients simply return what they find.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from ...core.config import Config

logger = logging.getLogger(__name__)


@dataclass
class RagQuery:
    query: str
    tenant_id: str
    max_snippets: int = 3


@dataclass
class RagResult:
    snippets: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    confidence: float = 0.0


class RagClient:
    """Interface for retrieval collaborators."""

    async def query(self, request: RagQuery) -> RagResult:
        raise NotImplementedError


class HttpRagClient(RagClient):
    """Retrieval over HTTP: POST {base_url}/v1/retrieve."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or Config.RAG_BASE_URL).rstrip("/")
        if not self.base_url:
            raise ValueError("RAG_BASE_URL not configured")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def query(self, request: RagQuery) -> RagResult:
        payload = {
            "query": request.query,
            "tenant_id": request.tenant_id,
            "max_snippets": request.max_snippets,
        }
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await client.post(f"{self.base_url}/v1/retrieve", json=payload)
            response.raise_for_status()
            data = response.json()

        return RagResult(
            snippets=[str(s) for s in data.get("snippets", [])][:request.max_snippets],
            sources=[str(s) for s in data.get("sources", [])],
            confidence=float(data.get("confidence", 0.0)),
        )


class MockRagClient(RagClient):
    """
    Canned retrieval for development and tests.

    - "timeout_test" in the query sleeps past the retrieval bound
    - "low_conf_test" returns snippets at confidence 0.5
    - "price" / "policy" return pricing and refund snippets at 0.95
    """

    def __init__(self, slow_seconds: float = 1.5):
        self.slow_seconds = slow_seconds

    async def query(self, request: RagQuery) -> RagResult:
        q = request.query.lower()

        if "timeout_test" in q:
            await asyncio.sleep(self.slow_seconds)
        else:
            await asyncio.sleep(0.01)

        if "low_conf_test" in q:
            return RagResult(
                snippets=["Irrelevant snippet 1", "Irrelevant snippet 2"],
                sources=["doc:irrelevant"],
                confidence=0.5,
            )

        if "price" in q or "policy" in q:
            return RagResult(
                snippets=[
                    "Standard pricing is $10/month for basic and $20/month for pro.",
                    "The refund policy allows a full refund within 30 days.",
                ],
                sources=["doc:pricing", "faq:refunds"],
                confidence=0.95,
            )

        return RagResult()
