"""
Plan Enforcer - hard per-plan quotas.

Usage:
    from engagebrain.services.plan_enforcer import PlanEnforcer, PlanLimitExceeded, LimitMetric

    PlanEnforcer.check_limit("PRO", LimitMetric.EVENTS_PER_DAY, current=120)  # Raises PlanLimitExceeded if over
"""

import logging
from dataclasses import dataclass
from typing import Dict

logger = logging.getLogger(__name__)


class LimitMetric:
    """Plan limit metric constants."""
    EVENTS_PER_DAY = "events_per_day"
    SUGGESTIONS_PER_DAY = "suggestions_per_day"


class PlanLimitExceeded(Exception):
    """Raised when an account reaches a limit of its plan."""

    def __init__(self, metric: str, limit: int, current: int):
        self.metric = metric
        self.limit = limit
        self.current = current
        display = metric.replace("_", " ").title()
        super().__init__(f"Plan limit exceeded: {display} ({current} / {limit})")


@dataclass(frozen=True)
class PlanLimits:
    max_events_per_day: int
    max_suggestions_per_day: int


@dataclass(frozen=True)
class PlanDefinition:
    id: str
    name: str
    limits: PlanLimits


PLANS: Dict[str, PlanDefinition] = {
    "FREE": PlanDefinition("FREE", "Free Tier", PlanLimits(max_events_per_day=50, max_suggestions_per_day=5)),
    "PRO": PlanDefinition("PRO", "Pro Tier", PlanLimits(max_events_per_day=500, max_suggestions_per_day=50)),
    "BUSINESS": PlanDefinition("BUSINESS", "Business Tier", PlanLimits(max_events_per_day=2000, max_suggestions_per_day=200)),
}

DEFAULT_PLAN = "FREE"


class PlanEnforcer:

    @staticmethod
    def get_plan(plan_id: str) -> PlanDefinition:
        """Unknown plan ids resolve to FREE."""
        return PLANS.get((plan_id or "").upper(), PLANS[DEFAULT_PLAN])

    @classmethod
    def limit_for(cls, plan_id: str, metric: str) -> int:
        limits = cls.get_plan(plan_id).limits
        if metric == LimitMetric.EVENTS_PER_DAY:
            return limits.max_events_per_day
        if metric == LimitMetric.SUGGESTIONS_PER_DAY:
            return limits.max_suggestions_per_day
        raise ValueError(f"Unknown plan metric: {metric}")

    @classmethod
    def check_limit(cls, plan_id: str, metric: str, current: int):
        """
        Check usage before adding one more unit.

        Raises:
            PlanLimitExceeded: If current usage already meets the limit
        """
        limit = cls.limit_for(plan_id, metric)
        logger.debug(f"Plan check {metric}: current={current} limit={limit} plan={plan_id}")
        if current >= limit:
            raise PlanLimitExceeded(metric, limit, current)
