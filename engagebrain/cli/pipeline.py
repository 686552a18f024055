"""
Pipeline CLI Commands

Classify a comment, run it through the full decision pipeline, or ingest
one observed event.
"""

import asyncio
import json
import logging
from typing import Optional

import click

from ..core.contracts import CapabilityInput, CapabilityRequest
from ..core.database import get_supabase_client
from ..core.observability import setup_logfire
from ..core.rules import RuleTableError, load_rule_tables
from ..services.engagement_pipeline import InvalidCapabilityRequest, build
from ..services.ingestion_service import IngestionService, InvalidEventError
from ..services.intent_classifier import IntentClassifier, SignalLexicon

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)


@click.command(name="classify")
@click.argument("text")
@click.option("--rules-dir", type=click.Path(exists=True, file_okay=False), help="Rule table directory")
def classify_command(text: str, rules_dir: Optional[str]):
    """
    Classify one comment with the signal lexicon (no inference).

    Example:
        engagebrain classify "Foundation & concealer from???"
    """
    try:
        tables = load_rule_tables(rules_dir)
    except RuleTableError as e:
        raise click.ClickException(str(e))

    result = IntentClassifier(SignalLexicon(tables.lexicon), language=tables.language).classify_sync(text)

    click.echo(f"Intent:     {result.intent.value}")
    click.echo(f"Strength:   {result.strength.value}")
    click.echo(f"Confidence: {result.confidence:.2f}")
    for signal in result.signals:
        click.echo(f"  - {signal.category.value}: {signal.signal}")


@click.command(name="process")
@click.argument("text")
@click.option("--platform", required=True, help="Platform the comment was seen on (tiktok, youtube, instagram)")
@click.option("--video", "video_id", required=True, help="Platform video id")
@click.option("--account", "account_id", default="default", show_default=True, help="Engaging account")
@click.option("--commenter", help="Commenting actor id")
@click.option("--mode", type=click.Choice(["OBSERVE_ONLY", "SUGGEST", "ASSIST"]),
              help="Override the account's engagement mode for this run")
@click.option("--durable", is_flag=True, help="Use the Supabase stores instead of in-memory ones")
@click.option("--json", "as_json", is_flag=True, help="Print the full response as JSON")
def process_command(
    text: str,
    platform: str,
    video_id: str,
    account_id: str,
    commenter: Optional[str],
    mode: Optional[str],
    durable: bool,
    as_json: bool
):
    """
    Run one comment through the decision pipeline.

    Example:
        engagebrain process "Where can I buy this?" --platform tiktok --video v123 --mode SUGGEST
    """
    setup_logfire()
    response = asyncio.run(_process(text, platform, video_id, account_id, commenter, mode, durable))

    if as_json:
        click.echo(json.dumps(response.model_dump(mode="json"), indent=2, default=str))
        return

    payload = response.payload
    click.echo(f"Kind:      {response.kind}")
    if response.kind == "error":
        click.echo(f"Error:     {payload.get('error')}", err=True)
        return
    click.echo(f"Strategy:  {payload.get('strategy')}")
    if payload.get("text"):
        click.echo(f"Draft:     {payload['text']}")
    if "promotion" in payload:
        promotion = payload["promotion"]
        click.echo(f"Promotion: {promotion['status']} ({promotion['priority_score']:.1f}) - {promotion['reason']}")
    if payload.get("blocked_by"):
        click.echo(f"Blocked:   {payload['reason']} ({payload['blocked_by']})")
    click.echo(f"Queued:    {'yes, action ' + payload['action_id'] if payload.get('queued') else 'no'}")


async def _process(text, platform, video_id, account_id, commenter, mode, durable):
    pipeline = build(supabase_client=get_supabase_client() if durable else None)
    if mode:
        await pipeline.settings_repo.update(account_id, {"mode": mode})

    request = CapabilityRequest(
        channel="cli",
        input=CapabilityInput(query=text),
        context={"raw_event": {
            "platform": platform,
            "video_id": video_id,
            "account_id": account_id,
            "commenter_id": commenter,
        }},
        tenant_id=account_id,
    )
    try:
        return await pipeline.process(request)
    except InvalidCapabilityRequest as e:
        raise click.ClickException(str(e))


@click.command(name="ingest")
@click.argument("event_json")
@click.option("--account", "account_id", required=True, help="Account the event was observed for")
@click.option("--install", "install_id", default="default", show_default=True, help="Client install id (dedup scope)")
@click.option("--durable", is_flag=True, help="Use the Supabase stores instead of in-memory ones")
def ingest_command(event_json: str, account_id: str, install_id: str, durable: bool):
    """
    Ingest one observed event (JSON object, or @path to a JSON file).

    Example:
        engagebrain ingest @event.json --account acct_1
    """
    if event_json.startswith("@"):
        with open(event_json[1:], "r") as f:
            event_json = f.read()
    try:
        raw = json.loads(event_json)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Event is not valid JSON: {e}")

    setup_logfire()
    result = asyncio.run(_ingest(raw, account_id, install_id, durable))
    click.echo(f"Status:    {result.status.value}")
    click.echo(f"Event:     {result.event_id}")


async def _ingest(raw, account_id, install_id, durable):
    pipeline = build(supabase_client=get_supabase_client() if durable else None)
    try:
        return await IngestionService(pipeline).process_event(raw, account_id=account_id, install_id=install_id)
    except InvalidEventError as e:
        raise click.ClickException(str(e))
