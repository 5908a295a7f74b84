"""
CLI entrypoint for the realtime sync reliability layer.
"""
import sys
import asyncio

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from realtime_sync.client.query_cache import QueryCache, http_fetcher
from realtime_sync.client.reconciliation import RecordingInvalidator, register_reconciliation
from realtime_sync.client.session import SyncSession, default_reconciliation_set, plan_subscriptions
from realtime_sync.client.visualizer import Visualizer
from realtime_sync.shared.channels import ChannelScopeError, Role, channels_for, parse_channel_name
from realtime_sync.shared.config import settings
from realtime_sync.shared.events import VisibilityMonitor, VisibilityState
from realtime_sync.shared.query_keys import query_key_hash

app = typer.Typer(help="Realtime sync reliability layer CLI")
console = Console()


@app.callback()
def main(log_level: str = typer.Option(None, help="Override LOG_LEVEL for this run")):
    logger.remove()
    logger.add(sys.stderr, level=(log_level or settings.LOG_LEVEL).upper())


@app.command()
def channels(
    role: Role = typer.Option(..., help="coach or student"),
    owner: str = typer.Option(..., help="Owner identity the channels are scoped to"),
):
    """Print every channel a role subscribes to for one owner."""
    try:
        names = channels_for(role, owner)
    except ChannelScopeError as e:
        typer.echo(f"Invalid scope: {e}", err=True)
        raise typer.Exit(1)

    table = Table(title=f"Channels for {role.value} {owner}")
    table.add_column("Resource type", style="magenta")
    table.add_column("Channel", style="cyan")
    for resource_type, name in names.items():
        table.add_row(resource_type.value, name)
    console.print(table)


@app.command()
def parse(name: str = typer.Argument(..., help="Channel name to decompose")):
    """Show which family, resource type and owner a channel name belongs to."""
    try:
        scope = parse_channel_name(name)
    except ChannelScopeError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    typer.echo(f"family={scope.family.value} resource_type={scope.resource_type.value} owner={scope.owner_identity}")


@app.command()
def simulate(
    role: Role = typer.Option(..., help="coach or student"),
    owner: str = typer.Option(..., help="Owner identity"),
    cycles: int = typer.Option(2, help="Number of hidden -> visible cycles"),
    repeat_visible: bool = typer.Option(False, help="Report 'visible' twice per cycle"),
):
    """Drive a visibility monitor offline and print every reconciliation sweep."""
    monitor = VisibilityMonitor(initial_state=VisibilityState.VISIBLE)
    recorder = RecordingInvalidator()
    cancel = register_reconciliation(default_reconciliation_set(role, owner), recorder, monitor, label="simulate")

    try:
        for cycle in range(1, cycles + 1):
            monitor.report(VisibilityState.HIDDEN)
            reports = 2 if repeat_visible else 1
            for _ in range(reports):
                before = len(recorder.records)
                monitor.report(VisibilityState.VISIBLE)
                swept = recorder.keys[before:]
                typer.echo(f"cycle {cycle}: visible -> {len(swept)} invalidations")
                for key in swept:
                    typer.echo(f"  {query_key_hash(key)}")
    finally:
        cancel()

    typer.echo(f"total invalidations: {len(recorder.records)}")


def _api_path(key) -> str:
    # ("assignments", "list", {...}) -> /assignments/list
    return "/" + "/".join(str(token) for token in key if not isinstance(token, dict))


@app.command()
def watch(
    role: Role = typer.Option(..., help="coach or student"),
    owner: str = typer.Option(..., help="Owner identity"),
    duration: float = typer.Option(60.0, help="Duration to run the session in seconds"),
    toggle_every: float = typer.Option(0.0, help="Flip visibility every N seconds (0 disables)"),
):
    """Run a live session against PUSH_URL with the rich dashboard."""
    cache = QueryCache()
    keys = list(default_reconciliation_set(role, owner))
    keys += [key for spec in plan_subscriptions(role, owner) for key in spec.query_keys_to_invalidate]
    for key in keys:
        if cache.get(key) is None:
            cache.register(key, http_fetcher(_api_path(key)))

    recorder = RecordingInvalidator(inner=cache, max_records=200)
    monitor = VisibilityMonitor()
    session = SyncSession(role, owner, recorder, monitor)
    visualizer = Visualizer(session, recorder)

    async def _run():
        try:
            await visualizer.run(duration, toggle_every_s=toggle_every or None)
        finally:
            await cache.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    app()
