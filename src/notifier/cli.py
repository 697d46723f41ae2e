"""Command-line interface for the Gmail notifier.

Provides commands for configuration validation, polling, state inspection
and settings.

Usage:
    python -m notifier validate-config
    python -m notifier poll --once
    python -m notifier poll
    python -m notifier status
    python -m notifier settings --ai-api-key sk-... --interval 60
    python -m notifier classify message.txt --subject "Quarterly review"
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from notifier.config import validate_config_file
from notifier.core.logging import configure_logging

if TYPE_CHECKING:
    from notifier.classifier.ai_classifier import AIClassifier
    from notifier.config_schema import AppConfig
    from notifier.db.store import StateStore
    from notifier.engine.dedup import DedupTracker
    from notifier.mail.client import EnvTokenProvider, GmailClient

console = Console()


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    store: StateStore
    dedup: DedupTracker
    token_provider: EnvTokenProvider
    gmail_client: GmailClient
    ai_classifier: AIClassifier


def _load_config_or_exit() -> AppConfig:
    from notifier.config import get_config
    from notifier.core.errors import ConfigLoadError, ConfigValidationError

    try:
        return get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Copy config/config.yaml.example to config/config.yaml and adjust it."
        )
        sys.exit(1)


async def _open_store(config: AppConfig) -> StateStore:
    from notifier.db.store import StateStore

    store = StateStore(config.storage.db_path)
    await store.initialize()
    return store


async def _init_cli_deps() -> CLIDeps:
    """Initialize shared CLI dependencies.

    Loads config, opens the state store, loads the processed-id set and
    builds the Gmail and AI clients. Prints actionable error messages and
    calls sys.exit(1) on failure.
    """
    from notifier.classifier.ai_classifier import AIClassifier
    from notifier.core.errors import DatabaseError
    from notifier.engine.dedup import DedupTracker
    from notifier.mail.client import EnvTokenProvider, GmailClient

    config = _load_config_or_exit()

    try:
        store = await _open_store(config)
        dedup = DedupTracker(store)
        await dedup.load()
    except DatabaseError as e:
        console.print(f"[red]Database error:[/red] {e}")
        sys.exit(1)

    token_provider = EnvTokenProvider(config.gmail.token_env)
    gmail_client = GmailClient(
        token_provider,
        base_url=config.gmail.base_url,
        timeout=config.gmail.request_timeout_seconds,
    )
    ai_classifier = AIClassifier(config.ai, taxonomy=config.classification.taxonomy)

    return CLIDeps(
        config=config,
        store=store,
        dedup=dedup,
        token_provider=token_provider,
        gmail_client=gmail_client,
        ai_classifier=ai_classifier,
    )


def _run(coro) -> None:
    """Run an async command body with the CLI's standard error handling."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """Gmail notifier - summarized, tagged notifications for new mail."""
    log_level = "DEBUG" if debug else "INFO"
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that config.yaml exists and passes schema validation.
    Reports specific errors for invalid fields.
    """
    console.print(f"Validating config: [cyan]{config_path or 'config/config.yaml'}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("poll")
@click.option("--once", is_flag=True, help="Run a single poll cycle and exit")
def poll(once: bool) -> None:
    """Poll Gmail and show notifications for new messages.

    Without --once, polls on the configured interval until interrupted.
    """
    if once:
        _run(_run_poll_once())
    else:
        _run(_run_poll_continuous())


def _build_engine(deps: CLIDeps):
    from notifier.engine.notification import ConsoleNotifier
    from notifier.engine.poller import PollEngine

    return PollEngine(
        client=deps.gmail_client,
        token_provider=deps.token_provider,
        store=deps.store,
        dedup=deps.dedup,
        ai_classifier=deps.ai_classifier,
        notifier=ConsoleNotifier(console),
        config=deps.config,
    )


async def _run_poll_once() -> None:
    """Run a single poll cycle and print results."""
    deps = await _init_cli_deps()
    engine = _build_engine(deps)

    try:
        result = await engine.run_cycle()
    finally:
        await deps.ai_classifier.aclose()
        deps.gmail_client.close()

    console.print(f"\n[bold]Poll Cycle Summary[/bold] (cycle {result.cycle_id[:8]}...)")
    console.print(f"  Duration:         {result.duration_ms}ms")
    console.print(f"  Fetched:          {result.fetched}")
    console.print(f"  Processed:        {result.processed}")
    console.print(f"  AI classified:    {result.ai_classified}")
    console.print(f"  Rule classified:  {result.rule_classified}")
    console.print(f"  Notified:         {result.notified}")
    console.print(f"  Skipped:          {result.skipped}")
    console.print(f"  Failed:           {result.failed}")
    if result.error:
        console.print(f"  [red]Error:[/red] {result.error}")
        sys.exit(1)


async def _run_poll_continuous() -> None:
    """Poll on the configured interval with APScheduler."""
    import signal

    from apscheduler.schedulers.asyncio import AsyncIOScheduler

    from notifier.config import get_config, reload_config_if_changed

    deps = await _init_cli_deps()
    engine = _build_engine(deps)
    settings = await deps.store.get_settings()
    interval = settings.polling_interval_seconds

    scheduler = AsyncIOScheduler()

    async def run_cycle() -> None:
        nonlocal interval

        if reload_config_if_changed():
            engine.update_config(get_config())

        result = await engine.run_cycle()
        if not result.skipped_reentrant:
            console.print(
                f"[dim]Cycle {result.cycle_id[:8]}...[/dim] "
                f"fetched={result.fetched} notified={result.notified} "
                f"failed={result.failed} ({result.duration_ms}ms)"
            )

        # Pick up interval changes made with the settings command
        current = (await deps.store.get_settings()).polling_interval_seconds
        if current != interval:
            interval = current
            scheduler.reschedule_job("poll_cycle", trigger="interval", seconds=interval)
            console.print(f"Polling interval changed to {interval}s")

    scheduler.add_job(
        run_cycle,
        "interval",
        seconds=interval,
        id="poll_cycle",
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(UTC),
    )
    scheduler.start()

    console.print(f"Polling Gmail every {interval} seconds. Press Ctrl+C to stop.")

    # Wait until interrupted
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, stop_event.set)
    loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    await stop_event.wait()

    scheduler.shutdown(wait=False)
    await deps.ai_classifier.aclose()
    deps.gmail_client.close()


@cli.command("status")
def status() -> None:
    """Show processed-message count, last check and settings."""
    _run(_run_status())


async def _run_status() -> None:
    from notifier.db.store import PROCESSED_MESSAGES_KEY

    config = _load_config_or_exit()
    store = await _open_store(config)

    processed = await store.get_json_list(PROCESSED_MESSAGES_KEY)
    last_check = await store.get_last_check()
    settings = await store.get_settings()

    table = Table(title="Notifier Status", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Processed messages", str(len(processed)))
    table.add_row("Last check", last_check.isoformat() if last_check else "never")
    table.add_row("Classification", "AI + rules" if settings.ai_enabled else "rules only")
    table.add_row("AI model", config.ai.model)
    table.add_row("Taxonomy", config.classification.taxonomy)
    table.add_row("Polling interval", f"{settings.polling_interval_seconds}s")
    table.add_row("Database", config.storage.db_path)
    console.print(table)


@cli.command("clear-processed")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
def clear_processed(yes: bool) -> None:
    """Forget processed messages so unread mail notifies again."""
    if not yes and not click.confirm("Clear the processed-message list?"):
        console.print("[yellow]Cancelled.[/yellow]")
        return
    _run(_run_clear_processed())


async def _run_clear_processed() -> None:
    from notifier.engine.dedup import DedupTracker

    config = _load_config_or_exit()
    store = await _open_store(config)
    tracker = DedupTracker(store)
    await tracker.load()
    count = len(tracker)
    await tracker.clear()
    console.print(f"[green]✓[/green] Cleared {count} processed message(s)")


@cli.command("settings")
@click.option("--ai-api-key", default=None, help="Store the chat-completion API key")
@click.option("--clear-ai-api-key", is_flag=True, help="Remove the API key (rules-only mode)")
@click.option("--interval", type=int, default=None, help="Polling interval in seconds")
def settings_command(ai_api_key: str | None, clear_ai_api_key: bool, interval: int | None) -> None:
    """Show or update the persisted settings."""
    if ai_api_key and clear_ai_api_key:
        raise click.UsageError("Use either --ai-api-key or --clear-ai-api-key, not both")
    _run(_run_settings(ai_api_key, clear_ai_api_key, interval))


async def _run_settings(ai_api_key: str | None, clear_ai_api_key: bool, interval: int | None) -> None:
    from notifier.config_schema import UserSettings

    config = _load_config_or_exit()
    store = await _open_store(config)
    current = await store.get_settings()

    if ai_api_key is not None or clear_ai_api_key or interval is not None:
        updated = UserSettings(
            ai_api_key=None if clear_ai_api_key else (ai_api_key or current.ai_api_key),
            polling_interval_seconds=(
                interval if interval is not None else current.polling_interval_seconds
            ),
        )
        await store.save_settings(updated)
        if interval is not None and updated.polling_interval_seconds != interval:
            console.print(
                f"[yellow]Interval {interval}s is out of range; "
                f"using {updated.polling_interval_seconds}s[/yellow]"
            )
        console.print("[green]✓[/green] Settings saved")
        current = updated

    key_state = "configured" if current.ai_enabled else "not set (rules only)"
    console.print(f"  AI API key:        {key_state}")
    console.print(f"  Polling interval:  {current.polling_interval_seconds}s")


@cli.command("classify")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--subject", default="", help="Subject line to classify with")
@click.option(
    "--taxonomy",
    type=click.Choice(["action", "reply"]),
    default="action",
    help="Tag label vocabulary",
)
def classify(file: Path, subject: str, taxonomy: str) -> None:
    """Sanitize and rule-classify a plain-text email body (offline)."""
    from notifier.classifier.rules import RuleClassifier
    from notifier.classifier.sanitizer import Sanitizer

    body = file.read_text(encoding="utf-8", errors="replace")

    sanitized = Sanitizer().sanitize_with_details(body)
    result = RuleClassifier().classify(subject, sanitized.text)

    console.print("[bold]Sanitized text[/bold]")
    if sanitized.text:
        console.print(sanitized.text, markup=False)
    else:
        console.print("[dim](empty)[/dim]")
    console.print(f"\n  Steps:    {', '.join(sanitized.steps_applied) or 'none'}")
    console.print(f"  Truncated: {sanitized.was_truncated}")
    console.print(f"\n[bold]Summary:[/bold] {escape(result.summary)}")
    console.print(f"[bold]Tag:[/bold]     {result.tag.label(taxonomy)}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
