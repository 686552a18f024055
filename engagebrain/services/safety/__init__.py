"""
Safety layer: kill switches, cooldowns, rate limits and business caps.
"""

from .config import DOWNGRADE_MAP, SafetyConfig, SafetyLimits, downgrade
from .safety_service import (
    BusinessLimitsService,
    CooldownEnforcer,
    RateLimiter,
    SafetyService,
    STORE_UNAVAILABLE_RULE,
    UNKNOWN_TARGET,
)

__all__ = [
    'BusinessLimitsService',
    'CooldownEnforcer',
    'DOWNGRADE_MAP',
    'RateLimiter',
    'SafetyConfig',
    'SafetyLimits',
    'SafetyService',
    'STORE_UNAVAILABLE_RULE',
    'UNKNOWN_TARGET',
    'downgrade',
]
