"""
Safety configuration: limits, mode and kill switches.

Constructed explicitly and injected into SafetyService; `from_config()`
derives production values from the environment.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set

from ...core.config import Config
from ..models import SafetyMode, StrategyType, TenantSettings

# Strategy a violation downgrades to
DOWNGRADE_MAP: Dict[StrategyType, StrategyType] = {
    StrategyType.ANSWER: StrategyType.SILENT_CAPTURE,
    StrategyType.ACKNOWLEDGE: StrategyType.SILENT_CAPTURE,
    StrategyType.DEFLECT: StrategyType.SILENT_CAPTURE,
    StrategyType.DE_ESCALATE: StrategyType.SILENT_CAPTURE,
    StrategyType.ASK_FOLLOWUP: StrategyType.SILENT_CAPTURE,
    StrategyType.SILENT_CAPTURE: StrategyType.OBSERVE_ONLY,
    StrategyType.OBSERVE_ONLY: StrategyType.IGNORE,
    StrategyType.IGNORE: StrategyType.IGNORE,
}


def downgrade(strategy: StrategyType) -> StrategyType:
    return DOWNGRADE_MAP.get(strategy, StrategyType.IGNORE)


@dataclass
class SafetyLimits:
    """Hard limits, counted per engaging account."""
    max_replies_per_day: int = 50
    max_replies_per_video: int = 2
    max_replies_per_target_daily: int = 3
    cooldown_hours: float = 24.0
    min_cooldown_hours: float = 1.0


@dataclass
class SafetyConfig:
    mode: SafetyMode = SafetyMode.ENFORCE
    kill_switch_global: bool = False
    kill_switch_platforms: Set[str] = field(default_factory=set)
    limits: SafetyLimits = field(default_factory=SafetyLimits)
    store_timeout_seconds: float = 2.0

    @classmethod
    def from_config(cls) -> "SafetyConfig":
        return cls(
            mode=SafetyMode(Config.SAFETY_MODE.upper()),
            kill_switch_global=Config.KILL_SWITCH_GLOBAL,
            kill_switch_platforms=set(Config.kill_switch_platforms()),
            store_timeout_seconds=Config.SAFETY_STORE_TIMEOUT_SECONDS,
        )

    def set_kill_switch(self, active: bool, platforms: Optional[Iterable[str]] = None):
        """Flip the global switch, or the per-platform switch when platforms are given."""
        if platforms is None:
            self.kill_switch_global = active
            return
        for platform in platforms:
            if active:
                self.kill_switch_platforms.add(platform.lower())
            else:
                self.kill_switch_platforms.discard(platform.lower())

    def is_kill_switch_active(self, platform: str, settings: Optional[TenantSettings] = None) -> bool:
        platform = (platform or "").lower()
        if self.kill_switch_global or platform in self.kill_switch_platforms:
            return True
        if settings is not None:
            if settings.kill_switch_global:
                return True
            if platform in {p.lower() for p in settings.kill_switch_platforms}:
                return True
        return False

    def effective_cooldown_hours(self, settings: Optional[TenantSettings] = None) -> float:
        hours = settings.cooldown_hours if settings is not None else self.limits.cooldown_hours
        return max(float(hours), self.limits.min_cooldown_hours)
