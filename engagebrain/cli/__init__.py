"""
EngageBrain CLI
"""
