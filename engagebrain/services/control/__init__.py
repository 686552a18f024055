"""
Human control over action plans: approval queue, decisions, audit trail.
"""

from .control_service import (
    ActionConflictError,
    ActionNotFoundError,
    ControlOrchestrator,
    InvalidDecisionError,
)

__all__ = [
    'ActionConflictError',
    'ActionNotFoundError',
    'ControlOrchestrator',
    'InvalidDecisionError',
]
