"""
Tenant Settings Service - per-account engagement settings.

Settings are created lazily with defaults on first read. Updates are
validated against the TenantSettings model before they are stored.

Usage:
    repo = SupabaseSettingsRepository(get_supabase_client())
    settings = await repo.get("acct_1")
    settings = await repo.update("acct_1", {"mode": "SUGGEST", "cooldown_hours": 12})
"""

import asyncio
import logging
import threading
from typing import Any, Dict, Optional

from pydantic import ValidationError
from supabase import Client

from ..core.database import Tables
from .models import TenantSettings

logger = logging.getLogger(__name__)


class InvalidSettingsError(ValueError):
    """Settings update rejected by validation"""

    def __init__(self, account_id: str, detail: str):
        self.account_id = account_id
        self.detail = detail
        super().__init__(f"Invalid settings for {account_id}: {detail}")


def apply_updates(current: TenantSettings, updates: Dict[str, Any]) -> TenantSettings:
    """Merge `updates` into `current`, re-validating the result."""
    unknown = set(updates) - set(TenantSettings.model_fields)
    if unknown:
        raise InvalidSettingsError(current.account_id, f"unknown fields {sorted(unknown)}")
    if updates.get("account_id", current.account_id) != current.account_id:
        raise InvalidSettingsError(current.account_id, "account_id cannot change")

    merged = {**current.model_dump(), **updates}
    try:
        return TenantSettings.model_validate(merged)
    except ValidationError as e:
        raise InvalidSettingsError(current.account_id, str(e)) from e


class SettingsRepository:
    """Interface for tenant settings persistence."""

    async def get(self, account_id: str) -> TenantSettings:
        raise NotImplementedError

    async def update(self, account_id: str, updates: Dict[str, Any]) -> TenantSettings:
        raise NotImplementedError

    async def reset(self, account_id: str) -> TenantSettings:
        raise NotImplementedError


class InMemorySettingsRepository(SettingsRepository):

    def __init__(self, initial: Optional[Dict[str, TenantSettings]] = None):
        self._settings: Dict[str, TenantSettings] = dict(initial or {})
        self._lock = threading.Lock()

    async def get(self, account_id: str) -> TenantSettings:
        with self._lock:
            if account_id not in self._settings:
                self._settings[account_id] = TenantSettings(account_id=account_id)
            return self._settings[account_id].model_copy()

    async def update(self, account_id: str, updates: Dict[str, Any]) -> TenantSettings:
        current = await self.get(account_id)
        updated = apply_updates(current, updates)
        with self._lock:
            self._settings[account_id] = updated
        logger.info(f"Updated settings for {account_id}: {sorted(updates)}")
        return updated.model_copy()

    async def reset(self, account_id: str) -> TenantSettings:
        defaults = TenantSettings(account_id=account_id)
        with self._lock:
            self._settings[account_id] = defaults
        return defaults.model_copy()


class SupabaseSettingsRepository(SettingsRepository):
    """tenant_settings table keyed by account_id."""

    def __init__(self, supabase_client: Client):
        self.supabase = supabase_client

    def _table(self):
        return self.supabase.table(Tables.TENANT_SETTINGS)

    async def get(self, account_id: str) -> TenantSettings:
        result = await asyncio.to_thread(
            lambda: self._table().select("*").eq("account_id", account_id).limit(1).execute()
        )
        if result.data:
            return TenantSettings.model_validate(result.data[0])

        defaults = TenantSettings(account_id=account_id)
        await self._upsert(defaults)
        logger.info(f"Created default settings for {account_id}")
        return defaults

    async def update(self, account_id: str, updates: Dict[str, Any]) -> TenantSettings:
        updated = apply_updates(await self.get(account_id), updates)
        await self._upsert(updated)
        logger.info(f"Updated settings for {account_id}: {sorted(updates)}")
        return updated

    async def reset(self, account_id: str) -> TenantSettings:
        defaults = TenantSettings(account_id=account_id)
        await self._upsert(defaults)
        return defaults

    async def _upsert(self, settings: TenantSettings):
        row = settings.model_dump(mode="json")
        await asyncio.to_thread(
            lambda: self._table().upsert(row, on_conflict="account_id").execute()
        )
