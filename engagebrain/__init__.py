"""
EngageBrain - Engagement decision pipeline for social comment streams
"""

__version__ = "1.0.0"
__author__ = "EngageBrain Team"
