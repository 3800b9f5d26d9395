"""Click CLI for operating the inbound automation service."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import BinaryIO

import click
from pydantic import ValidationError

from src.audit.logger import validate_audit_chain
from src.automation.db import AutomationDB
from src.automation.sqlite_stores import load_seed
from src.config import DEFAULT_DEDUPE_WINDOW_SECONDS
from src.models import Provider
from src.webhook.dedupe import DeliveryDedupeStore
from src.webhook.router import PROVIDER_ROUTES
from src.webhook.signatures import sign, signature_header_for

_ROUTE_NAMES = sorted(PROVIDER_ROUTES)


@click.group()
def cli() -> None:
    """Inbound webhook automation CLI."""


@cli.command("sign")
@click.argument("route", type=click.Choice(_ROUTE_NAMES))
@click.argument("body_file", type=click.File("rb"))
@click.option("--secret", required=True, envvar="WEBHOOK_SIGNING_SECRET", help="Signing secret.")
@click.option("--url", default="", help="Public webhook URL (WhatsApp signs url + body).")
def sign_command(route: str, body_file: BinaryIO, secret: str, url: str) -> None:
    """Print the signature header a platform would send for BODY_FILE."""
    provider: Provider = PROVIDER_ROUTES[route].provider
    body = body_file.read()
    if provider == Provider.WHATSAPP and not url:
        click.echo("Warning: WhatsApp signatures cover the URL; pass --url", err=True)
    click.echo(f"{signature_header_for(provider)}: {sign(provider, body, secret, url)}")


@cli.command()
@click.argument("seed_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--db", "db_path", default="data/automation.db", envvar="AUTOMATION_DB_PATH",
              help="Automation database path.")
def seed(seed_file: Path, db_path: str) -> None:
    """Load workspaces, platform accounts and rules from a JSON file."""
    try:
        data = json.loads(seed_file.read_text())
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"{seed_file} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise click.ClickException(f"{seed_file} must contain a JSON object")

    with AutomationDB(db_path) as db:
        try:
            counts = load_seed(db, data)
        except ValidationError as exc:
            raise click.ClickException(f"Invalid rule in {seed_file}: {exc}") from exc
        except KeyError as exc:
            raise click.ClickException(f"Missing field {exc} in {seed_file}") from exc
    click.echo(json.dumps(counts, indent=2))


@cli.group("dedupe")
def dedupe_group() -> None:
    """Manage the delivery dedupe store."""


@dedupe_group.command("purge")
@click.option("--db", "db_path", default="data/dedupe.db", envvar="DEDUPE_DB_PATH",
              help="Dedupe database path.")
@click.option("--window", default=DEFAULT_DEDUPE_WINDOW_SECONDS, type=click.IntRange(min=1),
              envvar="DEDUPE_WINDOW_SECONDS", help="Retention window in seconds.")
def dedupe_purge(db_path: str, window: int) -> None:
    """Delete dedupe records older than the retention window."""
    store = DeliveryDedupeStore(db_path, window_seconds=window)
    try:
        removed = store.purge_expired()
        remaining = store.count()
    finally:
        store.close()
    click.echo(f"Purged {removed} expired record(s); {remaining} remaining")


@cli.group("audit")
def audit_group() -> None:
    """Inspect the pipeline audit log."""


@audit_group.command("verify")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def audit_verify(log_path: Path) -> None:
    """Validate the hash chain of an audit log."""
    result = validate_audit_chain(log_path)
    if result.valid:
        click.echo(f"Audit chain intact ({result.entries} entries)")
        return
    click.echo(f"Audit chain broken at line {result.broken_at_line}", err=True)
    sys.exit(1)
