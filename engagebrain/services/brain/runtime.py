"""
Brain runtime: the shared, process-wide resilience state.

- CircuitBreaker: CLOSED -> OPEN after N consecutive failures, OPEN ->
  HALF_OPEN after the cool-down, exactly one trial call while HALF_OPEN.
- ResultCache: bounded LRU map of cache key -> BrainResponse.

Both are safe to share across concurrent requests; state changes happen
under a lock and never across an await.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ...core.config import Config
from ..models import BrainResponse
from .llm_provider import LLMProvider, create_provider
from .rag_client import HttpRagClient, MockRagClient, RagClient

logger = logging.getLogger(__name__)

CIRCUIT_OPEN_REASON = "circuit_open"


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Consecutive-failure circuit breaker with an injectable clock."""

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def allow_request(self) -> bool:
        """True if a call may go to the provider now."""
        with self._lock:
            self._refresh()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            return False

    def record_success(self):
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info("Circuit closed after successful call")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self):
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._open()
                return
            self._failure_count += 1
            if self._failure_count >= self.failure_threshold:
                self._open()

    def reset(self):
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._trial_in_flight = False

    def _open(self):
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False
        logger.warning(
            f"Circuit opened after {self._failure_count} failures; "
            f"cooling down {self.reset_timeout_seconds}s"
        )

    def _refresh(self):
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.reset_timeout_seconds
        ):
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False


class ResultCache:
    """Thread-safe LRU cache of generated responses."""

    def __init__(self, max_entries: int = 1024):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, BrainResponse]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[BrainResponse]:
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                return None
            self._entries.move_to_end(key)
            return value.model_copy(deep=True)

    def set(self, key: str, value: BrainResponse):
        with self._lock:
            self._entries[key] = value.model_copy(deep=True)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class BrainSettings:
    """Tunables for generation and retrieval."""
    llm_timeout_seconds: float = 10.0
    temperature: float = 0.7
    max_tokens: int = 150
    length_limit: int = 200
    rag_timeout_seconds: float = 0.8
    rag_confidence_threshold: float = 0.7
    rag_max_snippets: int = 3
    cache_size: int = 1024

    @classmethod
    def from_config(cls) -> "BrainSettings":
        return cls(
            llm_timeout_seconds=Config.LLM_TIMEOUT_SECONDS,
            rag_timeout_seconds=Config.RAG_TIMEOUT_MS / 1000.0,
            rag_confidence_threshold=Config.RAG_CONFIDENCE_THRESHOLD,
        )


@dataclass
class BrainRuntime:
    """Everything the brain engine calls out to, bundled for injection."""
    provider: LLMProvider
    rag_client: Optional[RagClient] = None
    breaker: CircuitBreaker = field(default_factory=CircuitBreaker)
    cache: ResultCache = field(default_factory=ResultCache)
    settings: BrainSettings = field(default_factory=BrainSettings)

    @classmethod
    def from_config(cls) -> "BrainRuntime":
        settings = BrainSettings.from_config()
        rag_client: RagClient = HttpRagClient() if Config.RAG_BASE_URL else MockRagClient()
        return cls(
            provider=create_provider(),
            rag_client=rag_client,
            breaker=CircuitBreaker(
                failure_threshold=Config.CIRCUIT_FAILURE_THRESHOLD,
                reset_timeout_seconds=Config.CIRCUIT_RESET_TIMEOUT_SECONDS,
            ),
            cache=ResultCache(max_entries=settings.cache_size),
            settings=settings,
        )
