"""
Tests for PlanEnforcer.
"""

import pytest

from engagebrain.services.plan_enforcer import LimitMetric, PlanEnforcer, PlanLimitExceeded


class TestPlanLookup:

    def test_known_plan_is_case_insensitive(self):
        assert PlanEnforcer.get_plan("pro").id == "PRO"

    @pytest.mark.parametrize("plan_id", ["ENTERPRISE", "", None])
    def test_unknown_plan_falls_back_to_free(self, plan_id):
        assert PlanEnforcer.get_plan(plan_id).id == "FREE"

    def test_limits(self):
        assert PlanEnforcer.limit_for("FREE", LimitMetric.EVENTS_PER_DAY) == 50
        assert PlanEnforcer.limit_for("FREE", LimitMetric.SUGGESTIONS_PER_DAY) == 5
        assert PlanEnforcer.limit_for("PRO", LimitMetric.EVENTS_PER_DAY) == 500
        assert PlanEnforcer.limit_for("BUSINESS", LimitMetric.SUGGESTIONS_PER_DAY) == 200

    def test_unknown_metric(self):
        with pytest.raises(ValueError, match="Unknown plan metric"):
            PlanEnforcer.limit_for("FREE", "videos_per_day")


class TestCheckLimit:

    def test_under_limit_passes(self):
        PlanEnforcer.check_limit("FREE", LimitMetric.EVENTS_PER_DAY, 49)

    def test_at_limit_raises(self):
        with pytest.raises(PlanLimitExceeded) as exc_info:
            PlanEnforcer.check_limit("FREE", LimitMetric.EVENTS_PER_DAY, 50)

        error = exc_info.value
        assert error.metric == LimitMetric.EVENTS_PER_DAY
        assert error.limit == 50
        assert error.current == 50
        assert str(error) == "Plan limit exceeded: Events Per Day (50 / 50)"

    def test_suggestions_limit(self):
        with pytest.raises(PlanLimitExceeded):
            PlanEnforcer.check_limit("PRO", LimitMetric.SUGGESTIONS_PER_DAY, 50)
