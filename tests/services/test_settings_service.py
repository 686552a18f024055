"""
Tests for tenant settings repositories.
"""

import pytest
from unittest.mock import MagicMock

from engagebrain.services.models import EngagementMode, TenantSettings
from engagebrain.services.settings_service import (
    InMemorySettingsRepository,
    InvalidSettingsError,
    SupabaseSettingsRepository,
    apply_updates,
)


class TestApplyUpdates:

    def test_merges_and_validates(self):
        updated = apply_updates(TenantSettings(account_id="acct_1"), {"mode": "SUGGEST", "cooldown_hours": 12})
        assert updated.mode == EngagementMode.SUGGEST
        assert updated.cooldown_hours == 12

    def test_unknown_field(self):
        with pytest.raises(InvalidSettingsError, match="unknown fields"):
            apply_updates(TenantSettings(account_id="acct_1"), {"colour": "blue"})

    def test_account_id_is_immutable(self):
        with pytest.raises(InvalidSettingsError, match="account_id cannot change"):
            apply_updates(TenantSettings(account_id="acct_1"), {"account_id": "acct_2"})

    def test_out_of_range_value(self):
        with pytest.raises(InvalidSettingsError):
            apply_updates(TenantSettings(account_id="acct_1"), {"min_intent_confidence": 1.5})

    def test_kill_switch_platforms_lowercased(self):
        updated = apply_updates(TenantSettings(account_id="acct_1"), {"kill_switch_platforms": ["TikTok"]})
        assert updated.kill_switch_platforms == ["tiktok"]


class TestInMemorySettingsRepository:

    @pytest.mark.asyncio
    async def test_defaults_created_lazily(self):
        settings = await InMemorySettingsRepository().get("acct_1")

        assert settings.account_id == "acct_1"
        assert settings.mode == EngagementMode.OBSERVE_ONLY
        assert settings.min_intent_confidence == 0.7
        assert settings.plan_id == "FREE"

    @pytest.mark.asyncio
    async def test_update_persists(self):
        repo = InMemorySettingsRepository()
        await repo.update("acct_1", {"mode": "ASSIST"})

        assert (await repo.get("acct_1")).mode == EngagementMode.ASSIST

    @pytest.mark.asyncio
    async def test_rejected_update_leaves_settings_unchanged(self):
        repo = InMemorySettingsRepository()
        with pytest.raises(InvalidSettingsError):
            await repo.update("acct_1", {"max_suggestions_per_day": -1})

        assert (await repo.get("acct_1")).max_suggestions_per_day == 20

    @pytest.mark.asyncio
    async def test_reset(self):
        repo = InMemorySettingsRepository()
        await repo.update("acct_1", {"mode": "SUGGEST"})

        reset = await repo.reset("acct_1")

        assert reset.mode == EngagementMode.OBSERVE_ONLY

    @pytest.mark.asyncio
    async def test_returned_settings_are_copies(self):
        repo = InMemorySettingsRepository()
        settings = await repo.get("acct_1")
        settings.mode = EngagementMode.ASSIST

        assert (await repo.get("acct_1")).mode == EngagementMode.OBSERVE_ONLY


class TestSupabaseSettingsRepository:

    @pytest.mark.asyncio
    async def test_get_existing_row(self):
        supabase = MagicMock()
        table = supabase.table.return_value
        table.select.return_value.eq.return_value.limit.return_value.execute.return_value.data = [
            {"account_id": "acct_1", "mode": "SUGGEST", "plan_id": "PRO"}
        ]

        settings = await SupabaseSettingsRepository(supabase).get("acct_1")

        supabase.table.assert_called_with("tenant_settings")
        assert settings.mode == EngagementMode.SUGGEST
        assert settings.plan_id == "PRO"
        table.upsert.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_missing_row_upserts_defaults(self):
        supabase = MagicMock()
        table = supabase.table.return_value
        table.select.return_value.eq.return_value.limit.return_value.execute.return_value.data = []

        settings = await SupabaseSettingsRepository(supabase).get("acct_1")

        assert settings.mode == EngagementMode.OBSERVE_ONLY
        row = table.upsert.call_args[0][0]
        assert row["account_id"] == "acct_1"
        assert table.upsert.call_args[1] == {"on_conflict": "account_id"}
