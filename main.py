from __future__ import annotations

import logging
import signal
from dataclasses import dataclass
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table

from models.email_message import EmailMessage
from services.auth_service import AuthError, AuthService
from services.auto_responder import AutoResponder
from services.gmail_gateway import GmailGateway
from services.mail_gateway import GatewayError
from services.statistics_service import COUNTERS, StatisticsService
from utils.config import AccountConfig, AppConfig, load_config
from utils.logger import configure_logging


LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AppContext:
    config: AppConfig
    account: AccountConfig
    auth: AuthService
    stats: StatisticsService
    console: Console


def build_context(env_file: str, account_name: str | None) -> AppContext:
    config = load_config(env_file)
    configure_logging(config.log_dir, config.log_level)
    account = config.get_account(account_name)
    console = Console()

    return AppContext(
        config=config,
        account=account,
        auth=AuthService(account, flow=config.auth_flow),
        stats=StatisticsService(config.stats_file),
        console=console,
    )


def connect_gateway(app: AppContext) -> GmailGateway:
    try:
        return GmailGateway.connect(
            app.account,
            app.auth,
            app.config.responder,
            fetch_batch_size=app.config.fetch_batch_size,
        )
    except AuthError as exc:
        LOGGER.error("Authorization failed for %s: %s", app.account.name, exc)
        raise click.ClickException(f"Authorization failed: {exc}") from exc


def build_responder(app: AppContext, dry_run: bool) -> AutoResponder:
    return AutoResponder(
        connect_gateway(app),
        app.config.responder,
        stats=app.stats,
        account_name=app.account.name,
        dry_run=dry_run,
    )


@click.group()
@click.option("--env-file", default=".env", show_default=True, help="Path to the .env file")
@click.option("--account", help="Account name defined in accounts.json")
@click.pass_context
def cli(ctx: click.Context, env_file: str, account: Optional[str]) -> None:
    """Send automatic out-of-office replies to first-contact Gmail messages."""

    try:
        ctx.obj = build_context(env_file, account)
    except KeyError as exc:  # invalid account
        raise click.BadParameter(str(exc), param_hint="--account") from exc
    except ValueError as exc:
        raise click.ClickException(f"Invalid configuration: {exc}") from exc


@cli.command("run")
@click.option("--dry-run/--apply", default=False, help="Log replies instead of sending them")
@click.pass_obj
def run_responder(app: AppContext, dry_run: bool) -> None:
    """Poll the inbox and reply until interrupted."""

    responder = build_responder(app, dry_run)
    signal.signal(signal.SIGTERM, lambda *_: responder.stop())
    app.console.print(
        f"Auto-responder running for account {app.account.name}. Press Ctrl+C to stop."
    )
    try:
        responder.run()
    except KeyboardInterrupt:
        responder.stop()
    app.console.print("Auto-responder stopped.")


@cli.command("once")
@click.option("--dry-run/--apply", default=False, help="Log replies instead of sending them")
@click.option("--delay/--no-delay", default=True, help="Wait the random delay before replying")
@click.pass_obj
def run_once(app: AppContext, dry_run: bool, delay: bool) -> None:
    """Run a single list/filter/reply cycle."""

    responder = build_responder(app, dry_run)
    next_delay = responder.run_cycle(wait=delay)
    app.console.print(f"Cycle finished. Next poll would run in {next_delay} second(s).")


@cli.command("pending")
@click.pass_obj
def pending(app: AppContext) -> None:
    """Show inbox messages that would receive a vacation reply."""

    responder = build_responder(app, dry_run=True)
    try:
        emails = responder.pending()
    except GatewayError as exc:
        raise click.ClickException(str(exc)) from exc
    if emails:
        app.console.print(_build_pending_table(app, emails))
    else:
        app.console.print("[bold green]No first-contact emails waiting.[/bold green]")


@cli.command("authorize")
@click.pass_obj
def authorize(app: AppContext) -> None:
    """Run the OAuth flow and cache the token."""

    try:
        app.auth.authenticate()
    except AuthError as exc:
        raise click.ClickException(f"Authorization failed: {exc}") from exc
    app.console.print(f"Authorization successful. Token stored at {app.account.token_file}.")


@cli.command("create-label")
@click.argument("label_name", required=False)
@click.pass_obj
def create_label(app: AppContext, label_name: str | None) -> None:
    """Create a Gmail label if it does not exist (defaults to the vacation label)."""

    name = label_name or app.config.responder.label_name
    try:
        label_id = connect_gateway(app).ensure_label(name)
    except GatewayError as exc:
        raise click.ClickException(str(exc)) from exc
    app.console.print(f"Label {name} is ready (id: {label_id}).")


@cli.command("stats")
@click.pass_obj
def stats(app: AppContext) -> None:
    """Display local activity statistics."""

    snapshot = app.stats.snapshot()
    if not snapshot:
        app.console.print("No stats recorded yet.")
        return

    table = Table(title="Global stats")
    table.add_column("Metric")
    table.add_column("Value")
    for counter in COUNTERS:
        table.add_row(counter.replace("_", " ").capitalize(), str(snapshot.get(counter, 0)))
    table.add_row("Last reply", snapshot.get("last_reply_at", "-"))
    app.console.print(table)

    accounts = snapshot.get("accounts", {})
    if accounts:
        acct_table = Table(title="Per-account stats")
        acct_table.add_column("Account")
        for counter in COUNTERS:
            acct_table.add_column(counter.replace("_", " ").capitalize())
        for name, data in accounts.items():
            acct_table.add_row(name, *(str(data.get(counter, 0)) for counter in COUNTERS))
        app.console.print(acct_table)


def main() -> None:
    cli(standalone_mode=True)


def _build_pending_table(app: AppContext, emails: List[EmailMessage]) -> Table:
    table = Table(title=f"Pending vacation replies for {app.account.name}", show_lines=False)
    table.add_column("ID", overflow="fold")
    table.add_column("Subject")
    table.add_column("Sender")
    for email in emails:
        table.add_row(email.id, email.subject, email.sender or "[red]unavailable[/red]")
    return table


if __name__ == "__main__":
    main()
