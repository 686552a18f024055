"""
Signal Inference Client - asks the AI core for signals the lexicon missed.

The AI core answers with signals in its own taxonomy; they are adapted to
lexicon categories here before the classifier merges them.

Usage:
    client = SignalInferenceClient()
    signals = await client.infer_signals("meh, depends on the price")
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

import httpx

from ..core.config import Config
from .models import DetectedSignal, SignalCategory

logger = logging.getLogger(__name__)

INFERENCE_PATH = "/v1/internal/signal-inference"

# AI-core signal type -> (lexicon category, canonical signal)
TYPE_MAPPING = {
    "VALUE_EVALUATION": (SignalCategory.ATTRIBUTE, "value"),
    "COST_BENEFIT_HESITATION": (SignalCategory.CONDITIONAL, "hesitation"),
    "SIZE_FIT_ISSUE": (SignalCategory.ATTRIBUTE, "size"),
    "AESTHETIC_PREFERENCE": (SignalCategory.PREFERENCE, "aesthetic"),
}


def adapt_inferred_signal(raw: Dict[str, Any]) -> DetectedSignal:
    """Map one AI-core signal into a DetectedSignal."""
    signal_type = str(raw.get("type") or "unknown")
    category, signal = TYPE_MAPPING.get(signal_type, (SignalCategory.CONTEXT, signal_type.lower()))
    return DetectedSignal(
        id=f"ai_{signal}_{uuid.uuid4().hex[:8]}",
        category=category,
        signal=signal,
    )


class SignalInferenceClient:
    """HTTP client for the AI core signal-inference endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        internal_secret: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            base_url: AI core base URL (defaults to Config.AI_CORE_BASE_URL)
            internal_secret: Shared secret sent as X-Internal-Secret
            timeout_seconds: Request timeout (defaults to Config.SIGNAL_INFERENCE_TIMEOUT_SECONDS)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = (base_url or Config.AI_CORE_BASE_URL).rstrip("/")
        self.internal_secret = internal_secret if internal_secret is not None else Config.AI_CORE_INTERNAL_SECRET
        self.timeout_seconds = timeout_seconds or Config.SIGNAL_INFERENCE_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def infer_signals(self, text: str) -> List[DetectedSignal]:
        """
        Request inferred signals for a comment.

        Raises:
            httpx.HTTPError: On transport or status errors
            ValueError: On a malformed response body
        """
        url = f"{self.base_url}{INFERENCE_PATH}"
        headers = {
            "Content-Type": "application/json",
            "X-Internal-Secret": self.internal_secret,
        }

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await client.post(url, json={"text": text}, headers=headers)
            response.raise_for_status()
            data = response.json()

        raw_signals = data.get("inferred_signals") if isinstance(data, dict) else None
        if not isinstance(raw_signals, list):
            raise ValueError("inference response missing 'inferred_signals' list")

        signals = [adapt_inferred_signal(s) for s in raw_signals if isinstance(s, dict)]
        logger.debug(f"Signal inference returned {len(signals)} signals")
        return signals
