"""
Services layer for EngageBrain.

Pipeline components (intent classification, brain engine, opportunity
scoring, promotion, action planning, human control, safety) and the
stores they persist through.
"""
