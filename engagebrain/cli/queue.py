"""
Approval Queue CLI Commands

Review pending action plans and record human decisions. The queue lives
in Supabase, so these commands always use the durable stores.
"""

import logging
from typing import Optional

import click

from ..core.database import get_supabase_client
from ..services.control import ActionConflictError, ActionNotFoundError, ControlOrchestrator, InvalidDecisionError
from ..services.control.store import SupabaseActionStore, SupabaseAuditStore
from ..services.models import ControlDecision, DecisionType

logger = logging.getLogger(__name__)


def _control() -> ControlOrchestrator:
    client = get_supabase_client()
    return ControlOrchestrator(SupabaseActionStore(client), SupabaseAuditStore(client))


@click.group(name="queue")
def queue_group():
    """Review and decide queued action plans."""
    pass


@queue_group.command(name="list")
@click.option("--account", "account_id", help="Only show one account's actions")
def list_pending(account_id: Optional[str]):
    """List pending actions, highest priority first."""
    pending = _control().list_pending(account_id)
    if not pending:
        click.echo("No pending actions")
        return

    for action in pending:
        plan = action.original_plan
        click.echo(
            f"{action.action_plan_id}  {plan.priority:5.1f}  {plan.action_type.value:<12} "
            f"{plan.channel.value:<8} {plan.reasoning.buying_stage.value}"
        )
        if plan.draft_message:
            click.echo(f"    {plan.draft_message}")


@queue_group.command(name="decide")
@click.argument("action_id")
@click.argument("decision", type=click.Choice([d.value for d in DecisionType]))
@click.option("--by", "decided_by", required=True, help="Who is deciding")
@click.option("--message", help="Replacement draft (required for EDIT)")
def decide(action_id: str, decision: str, decided_by: str, message: Optional[str]):
    """
    Approve, reject or edit one pending action.

    Example:
        engagebrain queue decide 6f1c... EDIT --by ops@brand --message "Thanks! Link in bio."
    """
    try:
        action = _control().submit_decision(
            action_id,
            ControlDecision(decision=DecisionType(decision), edited_message=message, decided_by=decided_by),
        )
    except (ActionNotFoundError, ActionConflictError, InvalidDecisionError) as e:
        raise click.ClickException(str(e))

    click.echo(f"✅ {action.action_plan_id} -> {action.execution_status.value}")


@queue_group.command(name="audit")
@click.argument("action_id")
def audit(action_id: str):
    """Show the audit trail of one action."""
    for entry in _control().get_audit(action_id):
        click.echo(f"{entry.timestamp.isoformat()}  {entry.event.value}")
