"""
Control Orchestrator - the human approval loop for action plans.

    submit_plan()      enqueue as PENDING, audit QUEUED
    list_pending()     PENDING actions, highest priority first
    submit_decision()  APPROVE / REJECT / EDIT exactly once, audit DECISION

Usage:
    control = ControlOrchestrator()
    action = control.submit_plan(plan, tenant_id="acct_1")
    control.submit_decision(action.action_plan_id, ControlDecision(decision=DecisionType.APPROVE, decided_by="ops@brand"))
"""

import logging
import threading
from collections import defaultdict
from typing import Dict, List, Optional

from ..models import (
    AuditEntry,
    AuditEventType,
    ControlDecision,
    ControlledAction,
    DecisionType,
    EngagementActionPlan,
    ExecutionStatus,
    HistoricalSignals,
)
from .store import ActionStore, AuditStore, InMemoryActionStore, InMemoryAuditStore

logger = logging.getLogger(__name__)


class ActionNotFoundError(Exception):
    """Decision submitted for an unknown action id"""

    def __init__(self, action_id: str):
        self.action_id = action_id
        super().__init__(f"Action {action_id} not found")


class ActionConflictError(Exception):
    """Decision submitted for an action that is no longer pending"""

    def __init__(self, action_id: str, status: ExecutionStatus):
        self.action_id = action_id
        self.status = status
        super().__init__(f"Action {action_id} is already {status.value}")


class InvalidDecisionError(ValueError):
    """Decision payload is incomplete (EDIT without a message)"""


class ApprovalQueue:

    def __init__(self, store: ActionStore):
        self.store = store

    def enqueue(self, plan: EngagementActionPlan, tenant_id: Optional[str] = None) -> ControlledAction:
        action = ControlledAction(action_plan_id=plan.plan_id, tenant_id=tenant_id, original_plan=plan)
        self.store.insert(action)
        return action

    def get(self, action_id: str) -> Optional[ControlledAction]:
        return self.store.get(action_id)

    def list_pending(self, tenant_id: Optional[str] = None) -> List[ControlledAction]:
        pending = [
            a for a in self.store.list(ExecutionStatus.PENDING)
            if tenant_id is None or a.tenant_id == tenant_id
        ]
        return sorted(pending, key=lambda a: a.original_plan.priority, reverse=True)


class AuditLog:

    def __init__(self, store: AuditStore):
        self.store = store

    def record(self, action: ControlledAction, event: AuditEventType) -> AuditEntry:
        if event == AuditEventType.QUEUED:
            details = {"plan": action.original_plan.model_dump(mode="json")}
        else:
            details = {
                "decision": action.control_decision.model_dump(mode="json") if action.control_decision else None,
                "execution_status": action.execution_status.value,
            }
        entry = AuditEntry(action_plan_id=action.action_plan_id, event=event, details=details)
        self.store.append(entry)
        return entry

    def entries(self, action_id: Optional[str] = None) -> List[AuditEntry]:
        return self.store.list(action_id)


class FeedbackRecorder:
    """Tallies human decisions per tenant for the brain's history adjustment."""

    def __init__(self):
        self._history: Dict[str, HistoricalSignals] = defaultdict(HistoricalSignals)
        self._lock = threading.Lock()

    def record_decision(self, tenant_id: Optional[str], decision: DecisionType):
        key = tenant_id or "default"
        with self._lock:
            h = self._history[key]
            h.total_decisions += 1
            if decision == DecisionType.APPROVE:
                h.approved_count += 1
            elif decision == DecisionType.REJECT:
                h.ignored_count += 1
            elif decision == DecisionType.EDIT:
                h.edited_count += 1

    def history_for(self, tenant_id: Optional[str]) -> HistoricalSignals:
        with self._lock:
            return self._history[tenant_id or "default"].model_copy()


class DecisionHandler:

    def __init__(self, store: ActionStore, audit: AuditLog, feedback: Optional[FeedbackRecorder] = None):
        self.store = store
        self.audit = audit
        self.feedback = feedback

    def process(self, action_id: str, decision: ControlDecision) -> ControlledAction:
        """
        Apply a decision to a pending action.

        Raises:
            ActionNotFoundError: Unknown action id
            ActionConflictError: Action already resolved (including a lost race)
            InvalidDecisionError: EDIT without an edited message
        """
        current = self.store.get(action_id)
        if current is None:
            raise ActionNotFoundError(action_id)
        if current.execution_status != ExecutionStatus.PENDING:
            raise ActionConflictError(action_id, current.execution_status)

        updated = current.model_copy(deep=True)
        updated.control_decision = decision

        if decision.decision == DecisionType.APPROVE:
            updated.execution_status = ExecutionStatus.APPROVED
        elif decision.decision == DecisionType.REJECT:
            updated.execution_status = ExecutionStatus.REJECTED
        elif decision.decision == DecisionType.EDIT:
            if not decision.edited_message:
                raise InvalidDecisionError("EDIT decision requires edited_message")
            updated.original_plan.draft_message = decision.edited_message
            updated.execution_status = ExecutionStatus.APPROVED

        if not self.store.compare_and_set(action_id, ExecutionStatus.PENDING, updated):
            latest = self.store.get(action_id)
            raise ActionConflictError(action_id, latest.execution_status if latest else current.execution_status)

        self.audit.record(updated, AuditEventType.DECISION)
        if self.feedback is not None:
            self.feedback.record_decision(updated.tenant_id, decision.decision)

        logger.info(f"Action {action_id} {decision.decision.value} by {decision.decided_by} -> {updated.execution_status.value}")
        return updated


class ControlOrchestrator:

    def __init__(
        self,
        action_store: Optional[ActionStore] = None,
        audit_store: Optional[AuditStore] = None,
        feedback: Optional[FeedbackRecorder] = None
    ):
        self.action_store = action_store or InMemoryActionStore()
        self.queue = ApprovalQueue(self.action_store)
        self.audit = AuditLog(audit_store or InMemoryAuditStore())
        self.feedback = feedback or FeedbackRecorder()
        self.decisions = DecisionHandler(self.action_store, self.audit, self.feedback)

    def submit_plan(self, plan: EngagementActionPlan, tenant_id: Optional[str] = None) -> ControlledAction:
        action = self.queue.enqueue(plan, tenant_id=tenant_id)
        self.audit.record(action, AuditEventType.QUEUED)
        logger.info(f"Queued {plan.action_type.value} plan {plan.plan_id} (priority {plan.priority:.1f})")
        return action

    def list_pending(self, tenant_id: Optional[str] = None) -> List[ControlledAction]:
        return self.queue.list_pending(tenant_id)

    def submit_decision(self, action_id: str, decision: ControlDecision) -> ControlledAction:
        return self.decisions.process(action_id, decision)

    def get_audit(self, action_id: Optional[str] = None) -> List[AuditEntry]:
        return self.audit.entries(action_id)
