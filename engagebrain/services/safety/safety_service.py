"""
Safety Service - kill switch, cooldown and rate limits around the brain.

Two checkpoints:

    pre_check(target, settings)              before any intelligence runs
        kill switch -> cooldown -> account daily limit -> per-target daily limit
    post_check(target, video_id, strategy)   after a strategy was chosen
        per-account per-video limit, downgrading the strategy on a hit

All counts come from the engagement event ledger and are scoped to the
engaging account. Every lookup is time-bounded; a lookup that errors or
times out blocks with rule_id "safety_store_unavailable".

In SHADOW mode violations are logged and let through (is_shadow_violation).

Usage:
    safety = SafetyService(SafetyConfig.from_config(), SupabaseEventStore(client))
    result = await safety.pre_check(EngagementTarget(platform="tiktok", target_id="u1", account_id="acct_1"))
    if not result.allowed:
        strategy = result.override_strategy
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Tuple

from ...core.observability import get_logfire
from ...core.resilience import bounded_call
from ..event_store import ENGAGED_STATUSES, EventStatus, EventStore, InMemoryEventStore
from ..models import (
    EngagementTarget,
    REPLY_STRATEGIES,
    SafetyCheckResult,
    SafetyMode,
    StrategyType,
    TenantSettings,
    utc_now,
)
from .config import SafetyConfig, downgrade

logger = logging.getLogger(__name__)

# Target id used when the commenting actor is not known
UNKNOWN_TARGET = "unknown"

STORE_UNAVAILABLE_RULE = "safety_store_unavailable"

PASS = SafetyCheckResult(allowed=True, reason="pass", rule_id="pass")


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class CooldownEnforcer:
    """Minimum elapsed time between engagements with the same actor."""

    def __init__(self, store: EventStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    async def check(self, target: EngagementTarget, cooldown_hours: float) -> Optional[str]:
        """Returns a violation reason, or None when the actor is out of cooldown."""
        if target.target_id == UNKNOWN_TARGET:
            return None

        last = await self.store.latest_at(target.account_id, target.target_id, ENGAGED_STATUSES)
        if last is None:
            return None

        elapsed_hours = (self.clock() - last).total_seconds() / 3600
        if elapsed_hours < cooldown_hours:
            return f"cooldown_active (wait {cooldown_hours - elapsed_hours:.1f}h)"
        return None


class RateLimiter:

    def __init__(self, store: EventStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    async def check_pre(self, target: EngagementTarget, max_per_day: int, max_per_target: int) -> Optional[str]:
        today = start_of_day(self.clock())

        account_count = await self.store.count(target.account_id, since=today, statuses=ENGAGED_STATUSES)
        if account_count >= max_per_day:
            return f"account_daily_limit_hit ({account_count}/{max_per_day})"

        if target.target_id != UNKNOWN_TARGET:
            target_count = await self.store.count(
                target.account_id, since=today, target_id=target.target_id, statuses=ENGAGED_STATUSES
            )
            if target_count >= max_per_target:
                return f"target_daily_limit_hit ({target_count}/{max_per_target})"

        return None

    async def check_post(self, account_id: str, video_id: str, max_per_video: int) -> Optional[str]:
        video_count = await self.store.count(account_id, video_id=video_id, statuses=ENGAGED_STATUSES)
        if video_count >= max_per_video:
            return f"video_limit_hit ({video_count}/{max_per_video})"
        return None


class SafetyService:

    def __init__(
        self,
        config: Optional[SafetyConfig] = None,
        store: Optional[EventStore] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        store = store or InMemoryEventStore()
        self.config = config or SafetyConfig()
        self.store = store
        self.cooldown = CooldownEnforcer(store, clock)
        self.rate_limiter = RateLimiter(store, clock)
        self.business_limits = BusinessLimitsService(store, clock)

    async def pre_check(self, target: EngagementTarget, settings: Optional[TenantSettings] = None) -> SafetyCheckResult:
        """Gate run before the brain. A block always overrides to IGNORE."""
        logfire = get_logfire()
        with logfire.span("safety.pre_check", platform=target.platform, account_id=target.account_id):
            if self.config.is_kill_switch_active(target.platform, settings):
                return self._enforce_or_shadow(SafetyCheckResult(
                    allowed=False,
                    reason="kill_switch_active",
                    rule_id="kill_switch",
                    override_strategy=StrategyType.IGNORE,
                ))

            hours = self.config.effective_cooldown_hours(settings)
            ok, reason = await self._lookup("cooldown", lambda: self.cooldown.check(target, hours))
            if not ok:
                return self._store_unavailable(reason, StrategyType.IGNORE)
            if reason:
                return self._enforce_or_shadow(SafetyCheckResult(
                    allowed=False,
                    reason=reason,
                    rule_id="cooldown_violation",
                    override_strategy=StrategyType.IGNORE,
                ))

            limits = self.config.limits
            ok, reason = await self._lookup(
                "rate_limit",
                lambda: self.rate_limiter.check_pre(
                    target, limits.max_replies_per_day, limits.max_replies_per_target_daily
                ),
            )
            if not ok:
                return self._store_unavailable(reason, StrategyType.IGNORE)
            if reason:
                return self._enforce_or_shadow(SafetyCheckResult(
                    allowed=False,
                    reason=reason,
                    rule_id="pre_rate_limit",
                    override_strategy=StrategyType.IGNORE,
                ))

            return PASS.model_copy()

    async def post_check(self, target: EngagementTarget, video_id: str, strategy: StrategyType) -> SafetyCheckResult:
        """Gate run after the strategy is chosen. A block downgrades the strategy one step."""
        if strategy == StrategyType.IGNORE:
            return SafetyCheckResult(allowed=True, reason="ignore_strategy", rule_id="pass")

        ok, reason = await self._lookup(
            "video_limit",
            lambda: self.rate_limiter.check_post(target.account_id, video_id, self.config.limits.max_replies_per_video),
        )
        if not ok:
            return self._store_unavailable(reason, downgrade(strategy))
        if reason:
            return self._enforce_or_shadow(SafetyCheckResult(
                allowed=False,
                reason=reason,
                rule_id="video_rate_limit",
                override_strategy=downgrade(strategy),
            ))

        return PASS.model_copy()

    async def business_check(self, settings: TenantSettings, video_id: str, strategy: StrategyType) -> SafetyCheckResult:
        """Tenant suggestion caps. Only reply strategies are capped, down to SILENT_CAPTURE."""
        if strategy not in REPLY_STRATEGIES:
            return SafetyCheckResult(allowed=True, reason="non_reply_strategy", rule_id="pass")

        ok, reason = await self._lookup("business_caps", lambda: self.business_limits.check_caps(settings, video_id))
        if not ok:
            return self._store_unavailable(reason, StrategyType.SILENT_CAPTURE)
        if reason:
            logger.info(f"Business cap hit for {settings.account_id}: {reason}")
            return SafetyCheckResult(
                allowed=False,
                reason=reason,
                rule_id="business_cap",
                override_strategy=StrategyType.SILENT_CAPTURE,
            )

        return PASS.model_copy()

    async def _lookup(self, name: str, call) -> Tuple[bool, Optional[str]]:
        """(lookup succeeded, violation reason or failure reason)"""
        result = await bounded_call(f"safety.{name}", call, self.config.store_timeout_seconds)
        if not result.ok:
            return False, f"{name}: {result.reason}"
        return True, result.value

    def _store_unavailable(self, reason: str, override: StrategyType) -> SafetyCheckResult:
        # Unknown counts block even in SHADOW mode
        logger.warning(f"Safety store unavailable ({reason}), blocking")
        return SafetyCheckResult(
            allowed=False,
            reason=f"store_lookup_failed ({reason})",
            rule_id=STORE_UNAVAILABLE_RULE,
            override_strategy=override,
        )

    def _enforce_or_shadow(self, violation: SafetyCheckResult) -> SafetyCheckResult:
        if self.config.mode == SafetyMode.SHADOW:
            logger.warning(f"[SHADOW] Would have blocked: {violation.reason} ({violation.rule_id})")
            return SafetyCheckResult(
                allowed=True,
                reason=f"shadow_mode_pass ({violation.reason})",
                rule_id="shadow_override",
                is_shadow_violation=True,
            )
        logger.info(f"Safety block: {violation.reason} ({violation.rule_id})")
        return violation


class BusinessLimitsService:
    """
    Tenant-configured suggestion caps.

    Unlike the hard safety limits these only withhold replies: a capped
    reply strategy becomes SILENT_CAPTURE so the opportunity is still
    recorded for the operator.
    """

    def __init__(self, store: EventStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    async def check_caps(self, settings: TenantSettings, video_id: str) -> Optional[str]:
        """Returns DAILY_CAP_EXCEEDED / VIDEO_CAP_EXCEEDED, or None."""
        today = start_of_day(self.clock())
        daily = await self.store.count(settings.account_id, since=today, statuses=[EventStatus.SUGGESTED])
        if daily >= settings.max_suggestions_per_day:
            return "DAILY_CAP_EXCEEDED"

        per_video = await self.store.count(settings.account_id, video_id=video_id, statuses=[EventStatus.SUGGESTED])
        if per_video >= settings.max_suggestions_per_video:
            return "VIDEO_CAP_EXCEEDED"

        return None

