"""
Core functionality for EngageBrain
"""

from .config import Config
from .contracts import CapabilityRequest, CapabilityResponse

__all__ = ['Config', 'CapabilityRequest', 'CapabilityResponse']
