"""
Supabase client accessor for the durable stores.

Tables used by the Supabase-backed stores:
    engagement_events     ingestion ledger and rate-limit counts
    controlled_actions    approval queue
    action_audit_log      append-only audit trail
    tenant_settings       per-account engagement settings
    unknown_intent_logs   unclassified comment sink
"""

from typing import Optional
from supabase import create_client, Client
from .config import Config


class Tables:
    """Table names shared by the Supabase-backed stores"""
    ENGAGEMENT_EVENTS = "engagement_events"
    CONTROLLED_ACTIONS = "controlled_actions"
    AUDIT_LOG = "action_audit_log"
    TENANT_SETTINGS = "tenant_settings"
    UNKNOWN_INTENTS = "unknown_intent_logs"


_supabase_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """
    Get or create the shared Supabase client.

    Raises:
        ValueError: If SUPABASE_URL / SUPABASE_SERVICE_KEY are missing
    """
    global _supabase_client

    if _supabase_client is None:
        Config.validate()
        _supabase_client = create_client(Config.SUPABASE_URL, Config.SUPABASE_SERVICE_KEY)

    return _supabase_client


def reset_supabase_client():
    """Drop the cached client (tests swap in mocks)"""
    global _supabase_client
    _supabase_client = None
