"""Command line for tracking events and inspecting the outbound queue."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from telemetry_emitter.config import EmitterConfig
from telemetry_emitter.delivery.context import SharedContext
from telemetry_emitter.delivery.queue import DeliveryQueue
from telemetry_emitter.delivery.storage import FileStorage
from telemetry_emitter.emitter import Emitter
from telemetry_emitter.errors import CollectorNotConfiguredError
from telemetry_emitter.events.metadata import place_in_path
from telemetry_emitter.events.payload import PayloadEncoder

console = Console()

app = typer.Typer(
    name="telemetry-emitter",
    help="Track telemetry events and manage the durable outbound queue.",
    no_args_is_help=True,
)


# ============================================================================
# Helpers
# ============================================================================


def parse_pairs(pairs: List[str]) -> dict[str, str]:
    """
    Parse key=value arguments.

    Raises:
        ValueError: If an argument has no "="
    """
    parsed = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got: {pair}")
        parsed[key] = value
    return parsed


def parse_metadata(pairs: List[str]) -> list[dict]:
    """Parse group.key=value arguments into metadata trees."""
    return [
        place_in_path(value, key.split("."))
        for key, value in parse_pairs(pairs).items()
    ]


def load_config(collector: str | None, namespace: str | None) -> EmitterConfig:
    """Environment config with command line overrides applied."""
    config = EmitterConfig.from_env()
    if collector:
        config = replace(config, collector_url=collector)
    if namespace:
        config = replace(config, namespace=namespace)
    return config


def open_queue(config: EmitterConfig) -> DeliveryQueue:
    return DeliveryQueue(
        config.instance_id,
        config.namespace,
        SharedContext(),
        config.use_durable_storage,
        config.api_version,
        config.environment,
        storage=FileStorage(config.queue_dir),
    )


def _describe(entry: object) -> tuple[str, str, str]:
    if isinstance(entry, PayloadEncoder):
        fields = entry.fields
        return (
            str(fields.get("type", "-")),
            str(fields.get("eventId", "-")),
            str(fields.get("clientTstamp", "-")),
        )
    if isinstance(entry, str):
        return ("(encoded)", "-", "-")
    return ("(invalid)", "-", "-")


# ============================================================================
# Commands
# ============================================================================


async def _track(config: EmitterConfig, event_type: str, ctx: dict, metadata: list[dict]) -> Emitter:
    emitter = Emitter(config)
    try:
        emitter.track(event_type, ctx, metadata)
        await emitter.queue.wait_idle()
    finally:
        await emitter.queue.aclose()
    return emitter


def track_command(
    event_type: str,
    ctx_pairs: List[str],
    meta_pairs: List[str],
    collector: str | None,
    namespace: str | None,
    base64_encode: bool | None,
) -> None:
    """Track one event and try to deliver everything queued."""
    try:
        ctx = parse_pairs(ctx_pairs)
        metadata = parse_metadata(meta_pairs)
    except ValueError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    config = load_config(collector, namespace)
    if base64_encode is not None:
        config = replace(config, base64_encode=base64_encode)

    try:
        emitter = asyncio.run(_track(config, event_type, ctx, metadata))
    except CollectorNotConfiguredError as e:
        console.print(f"[red]❌ {e}[/red]")
        console.print("[dim]Pass --collector or set TELEMETRY_COLLECTOR_URL. The event stays queued.[/dim]")
        raise typer.Exit(1)

    remaining = len(emitter.queue)
    if remaining:
        console.print(f"[yellow]Event queued, {remaining} event(s) awaiting delivery[/yellow]")
    else:
        console.print(f"✅ Delivered [bold]{event_type}[/bold] to {emitter.queue.collector_url}")


@app.command(name="track")
def track_cmd(
    event_type: str = typer.Argument(..., help="Event type, e.g. pageView"),
    ctx: List[str] = typer.Option([], "--ctx", help="Event context entry key=value"),
    meta: List[str] = typer.Option([], "--meta", help="Metadata entry group.key=value"),
    collector: Optional[str] = typer.Option(None, "--collector", help="Collector base URL"),
    namespace: Optional[str] = typer.Option(None, "--namespace", help="Tracker namespace"),
    base64_encode: Optional[bool] = typer.Option(None, "--base64/--no-base64", help="Base64 encode request bodies"),
) -> None:
    """Track an event."""
    track_command(event_type, ctx, meta, collector, namespace, base64_encode)


def status_command(namespace: str | None) -> None:
    """Show the durable queue."""
    config = load_config(None, namespace)
    queue = open_queue(config)

    if not len(queue):
        console.print(f"Queue [bold]{queue.queue_name}[/bold] is empty")
        return

    table = Table(title=f"{queue.queue_name} ({len(queue)} pending)")
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("Event ID")
    table.add_column("Client timestamp")

    for index, entry in enumerate(queue.entries, start=1):
        table.add_row(str(index), *_describe(entry))

    console.print(table)


@app.command(name="status")
def status_cmd(
    namespace: Optional[str] = typer.Option(None, "--namespace", help="Tracker namespace"),
) -> None:
    """Show events waiting for delivery."""
    status_command(namespace)


async def _flush(queue: DeliveryQueue, collector_url: str | None) -> None:
    try:
        if collector_url:
            queue.set_collector(collector_url)
        queue.flush()
        await queue.wait_idle()
    finally:
        await queue.aclose()


def flush_command(collector: str | None, namespace: str | None) -> None:
    """Deliver everything in the durable queue."""
    config = load_config(collector, namespace)
    queue = open_queue(config)

    try:
        asyncio.run(_flush(queue, config.collector_url))
    except CollectorNotConfiguredError as e:
        console.print(f"[red]❌ {e}[/red]")
        console.print("[dim]Pass --collector or set TELEMETRY_COLLECTOR_URL.[/dim]")
        raise typer.Exit(1)

    if len(queue):
        console.print(f"[yellow]{len(queue)} event(s) still queued, will retry on next flush[/yellow]")
    else:
        console.print("✅ Queue is empty")


@app.command(name="flush")
def flush_cmd(
    collector: Optional[str] = typer.Option(None, "--collector", help="Collector base URL"),
    namespace: Optional[str] = typer.Option(None, "--namespace", help="Tracker namespace"),
) -> None:
    """Send queued events now."""
    flush_command(collector, namespace)


def main() -> None:
    app()
