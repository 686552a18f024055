"""
Stores for controlled actions and their audit trail.

The in-memory stores are the default; the Supabase stores satisfy the
same interface for durable deployments. Exclusive-writer semantics per
action id come from `compare_and_set`, which only writes when the stored
status still matches the expected one.
"""

import logging
import threading
from typing import Dict, List, Optional

from supabase import Client

from ...core.database import Tables
from ..models import AuditEntry, ControlledAction, ExecutionStatus

logger = logging.getLogger(__name__)


class ActionStore:
    """Interface for controlled-action persistence."""

    def insert(self, action: ControlledAction):
        raise NotImplementedError

    def get(self, action_id: str) -> Optional[ControlledAction]:
        raise NotImplementedError

    def list(self, status: Optional[ExecutionStatus] = None) -> List[ControlledAction]:
        raise NotImplementedError

    def compare_and_set(self, action_id: str, expected: ExecutionStatus, updated: ControlledAction) -> bool:
        """Replace the action only if its stored status equals `expected`."""
        raise NotImplementedError


class AuditStore:
    """Interface for the append-only audit log."""

    def append(self, entry: AuditEntry):
        raise NotImplementedError

    def list(self, action_id: Optional[str] = None) -> List[AuditEntry]:
        raise NotImplementedError


class InMemoryActionStore(ActionStore):

    def __init__(self):
        self._actions: Dict[str, ControlledAction] = {}
        self._lock = threading.Lock()

    def insert(self, action: ControlledAction):
        with self._lock:
            if action.action_plan_id in self._actions:
                raise ValueError(f"Action {action.action_plan_id} already queued")
            self._actions[action.action_plan_id] = action.model_copy(deep=True)

    def get(self, action_id: str) -> Optional[ControlledAction]:
        with self._lock:
            action = self._actions.get(action_id)
            return action.model_copy(deep=True) if action else None

    def list(self, status: Optional[ExecutionStatus] = None) -> List[ControlledAction]:
        with self._lock:
            return [
                a.model_copy(deep=True) for a in self._actions.values()
                if status is None or a.execution_status == status
            ]

    def compare_and_set(self, action_id: str, expected: ExecutionStatus, updated: ControlledAction) -> bool:
        with self._lock:
            current = self._actions.get(action_id)
            if current is None or current.execution_status != expected:
                return False
            self._actions[action_id] = updated.model_copy(deep=True)
            return True


class InMemoryAuditStore(AuditStore):

    def __init__(self):
        self._entries: List[AuditEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry):
        with self._lock:
            self._entries.append(entry)

    def list(self, action_id: Optional[str] = None) -> List[AuditEntry]:
        with self._lock:
            return [e for e in self._entries if action_id is None or e.action_plan_id == action_id]


class SupabaseActionStore(ActionStore):
    """
    controlled_actions table:
        action_plan_id (pk), tenant_id, execution_status, priority, payload (jsonb)
    """

    def __init__(self, supabase_client: Client):
        self.supabase = supabase_client

    def insert(self, action: ControlledAction):
        self.supabase.table(Tables.CONTROLLED_ACTIONS).insert(self._to_row(action)).execute()

    def get(self, action_id: str) -> Optional[ControlledAction]:
        result = self.supabase.table(Tables.CONTROLLED_ACTIONS).select("*").eq(
            "action_plan_id", action_id
        ).execute()
        if not result.data:
            return None
        return ControlledAction.model_validate(result.data[0]["payload"])

    def list(self, status: Optional[ExecutionStatus] = None) -> List[ControlledAction]:
        query = self.supabase.table(Tables.CONTROLLED_ACTIONS).select("*")
        if status is not None:
            query = query.eq("execution_status", status.value)
        result = query.execute()
        return [ControlledAction.model_validate(row["payload"]) for row in result.data or []]

    def compare_and_set(self, action_id: str, expected: ExecutionStatus, updated: ControlledAction) -> bool:
        row = self._to_row(updated)
        result = self.supabase.table(Tables.CONTROLLED_ACTIONS).update({
            "execution_status": row["execution_status"],
            "payload": row["payload"],
        }).eq("action_plan_id", action_id).eq("execution_status", expected.value).execute()
        return bool(result.data)

    @staticmethod
    def _to_row(action: ControlledAction) -> dict:
        return {
            "action_plan_id": action.action_plan_id,
            "tenant_id": action.tenant_id,
            "execution_status": action.execution_status.value,
            "priority": action.original_plan.priority,
            "payload": action.model_dump(mode="json"),
        }


class SupabaseAuditStore(AuditStore):

    def __init__(self, supabase_client: Client):
        self.supabase = supabase_client

    def append(self, entry: AuditEntry):
        self.supabase.table(Tables.AUDIT_LOG).insert(entry.model_dump(mode="json")).execute()

    def list(self, action_id: Optional[str] = None) -> List[AuditEntry]:
        query = self.supabase.table(Tables.AUDIT_LOG).select("*")
        if action_id is not None:
            query = query.eq("action_plan_id", action_id)
        result = query.order("timestamp").execute()
        return [AuditEntry.model_validate(row) for row in result.data or []]
