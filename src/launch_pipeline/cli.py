"""Command-line interface using Typer."""

import asyncio
import json
import signal
from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from launch_pipeline import __version__
from launch_pipeline.adapters.ads import AdsPlatformClient, GraphAdsClient, StubAdsClient
from launch_pipeline.config import GRAPH_REQUIRED_SETTINGS, ConfigurationError, settings
from launch_pipeline.domain.enums import LaunchPhase, MediaStage, MediaType
from launch_pipeline.domain.models import LaunchInput, PipelineSnapshot
from launch_pipeline.logging import setup_logging
from launch_pipeline.services.alerting import alert_launch_failure, alert_launch_incomplete
from launch_pipeline.services.controller import LaunchController
from launch_pipeline.services.progress import SnapshotChannel
from launch_pipeline.services.stages import CampaignSetupError

app = typer.Typer(
    name="launch-pipeline",
    help="Launch Pipeline - upload media and create ads on the Meta platform",
    add_completion=False,
)

console = Console()

# Manifest keys that fall back to settings when omitted
MANIFEST_DEFAULTS = {
    "account_id": "meta_ad_account_id",
    "page_id": "meta_page_id",
    "pixel_id": "meta_pixel_id",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Launch Pipeline v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL."),
) -> None:
    """Launch Pipeline - drive media batches from upload to live ads."""
    setup_logging(level=log_level)


def load_manifest(path: Path) -> LaunchInput:
    """Read a JSON launch manifest, filling account/page/pixel from settings if absent."""
    try:
        raw: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[bold red]Cannot read manifest {path}: {e}[/bold red]")
        raise typer.Exit(code=1)

    for key, setting_name in MANIFEST_DEFAULTS.items():
        if not raw.get(key) and getattr(settings, setting_name):
            raw[key] = getattr(settings, setting_name)

    try:
        return LaunchInput.model_validate(raw)
    except ValidationError as e:
        console.print(f"[bold red]Invalid manifest {path}:[/bold red]")
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"]) or "(root)"
            console.print(f"  [red]{location}[/red]: {error['msg']}")
        raise typer.Exit(code=1)


def render_snapshot(snapshot: PipelineSnapshot) -> Table:
    """Progress table for one snapshot."""
    stats = snapshot.stats
    table = Table(
        title=(
            f"Phase: {snapshot.phase}  |  Tick {snapshot.tick}  |  "
            f"Rate {snapshot.rate:.0f}%  |  {snapshot.elapsed_seconds:.0f}s"
        )
    )
    table.add_column("Stage", style="cyan")
    table.add_column("Queued", justify="right")
    table.add_column("In progress", justify="right")
    table.add_column("Failed", justify="right", style="red")

    table.add_row(
        "Upload",
        str(stats.upload_queued),
        str(stats.upload_in_progress),
        str(stats.upload_failed),
    )
    table.add_row("Processing", str(stats.poll_waiting), "-", "-")
    table.add_row("Ads", str(stats.ad_queued), str(stats.ad_in_progress), str(stats.ad_failed))
    table.add_row(
        "[bold]Total[/bold]",
        f"[green]{stats.done} done[/green]",
        f"{stats.total} items",
        str(stats.failed),
    )
    return table


def _failed_items_table(snapshot: PipelineSnapshot) -> Table | None:
    failed = [item for item in snapshot.media if item.stage == MediaStage.FAILED]
    if not failed:
        return None

    table = Table(title="Failed Items")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Retries", justify="right")
    table.add_column("Fallback")
    table.add_column("Error", style="red")
    for item in failed:
        table.add_row(
            item.name,
            str(item.type),
            str(item.retry_count),
            "✓" if item.used_fallback else "-",
            item.error or "",
        )
    return table


def interrupt_handler(
    controller: LaunchController, loop: asyncio.AbstractEventLoop
) -> Callable[[], None]:
    """First Ctrl+C stops gracefully; the handler then unregisters so a second one aborts."""

    def _on_interrupt() -> None:
        console.print(
            "[bold yellow]Stopping after in-flight batches; "
            "press Ctrl+C again to abort[/bold yellow]"
        )
        controller.stop()
        loop.remove_signal_handler(signal.SIGINT)

    return _on_interrupt


async def run_launch(
    launch: LaunchInput,
    client: AdsPlatformClient,
    live_output: bool = True,
) -> PipelineSnapshot:
    """Run one launch, rendering progress from a snapshot channel.

    Ctrl+C requests a graceful stop: in-flight batches finish, nothing new is sent. A
    second Ctrl+C aborts.
    """
    channel = SnapshotChannel(maxsize=50)
    controller = LaunchController(launch, client, on_progress=channel)

    async def render() -> None:
        if not live_output:
            async for _ in channel:
                pass
            return
        with Live(render_snapshot(controller.get_state()), console=console) as live:
            async for snapshot in channel:
                live.update(render_snapshot(snapshot))

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, interrupt_handler(controller, loop))
    except (NotImplementedError, RuntimeError):
        # Signal handlers are unavailable on some platforms / non-main threads
        pass

    renderer = asyncio.create_task(render())
    try:
        snapshot = await controller.start()
    except CampaignSetupError as e:
        await alert_launch_failure(controller.get_state(), str(e))
        raise
    finally:
        channel.close()
        await renderer
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        await client.aclose()

    if snapshot.phase != LaunchPhase.COMPLETE or snapshot.stats.failed:
        await alert_launch_incomplete(snapshot)
    return snapshot


@app.command()
def run(
    manifest: Path = typer.Argument(..., exists=True, dir_okay=False, help="Launch manifest"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Simulate the platform in memory; nothing is sent."
    ),
    max_ticks: Optional[int] = typer.Option(None, "--max-ticks", help="Override max ticks."),
    no_check_library: bool = typer.Option(
        False, "--no-check-library", help="Skip the media library lookup."
    ),
    force_reupload: bool = typer.Option(
        False, "--force-reupload", help="Upload videos even if they exist in the library."
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the final snapshot as JSON."
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="No live progress table."),
) -> None:
    """Run a launch from a JSON manifest."""
    launch = load_manifest(manifest)

    overrides: dict[str, Any] = {}
    if max_ticks is not None:
        overrides["max_ticks"] = max_ticks
    if no_check_library:
        overrides["check_library_first"] = False
    if force_reupload:
        overrides["force_reupload"] = True
    if dry_run:
        overrides.update(upload_stagger_ms=0, tick_interval_ms=0, initial_poll_delay_ms=0)
    if overrides:
        launch = launch.model_copy(
            update={"options": launch.options.model_copy(update=overrides)}
        )

    client: AdsPlatformClient
    if dry_run:
        client = StubAdsClient()
    else:
        try:
            client = GraphAdsClient.from_settings(settings)
        except ConfigurationError as e:
            console.print(f"[bold red]{e}[/bold red]")
            raise typer.Exit(code=1)

    console.print(
        Panel.fit(
            f"[bold]{launch.campaign.name}[/bold]\n\n"
            f"[cyan]Account:[/cyan] act_{launch.account_id}\n"
            f"[cyan]Media:[/cyan] {len(launch.media)} items\n"
            f"[cyan]Client:[/cyan] {client.name}{' (dry run)' if dry_run else ''}",
            title="Launch Pipeline",
            border_style="blue",
        )
    )

    try:
        snapshot = asyncio.run(run_launch(launch, client, live_output=not quiet))
    except CampaignSetupError as e:
        console.print(f"[bold red]✗ Launch failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    if quiet:
        console.print(render_snapshot(snapshot))

    failed_table = _failed_items_table(snapshot)
    if failed_table is not None:
        console.print(failed_table)

    if output:
        output.write_text(json.dumps(snapshot.to_dict(), indent=2), encoding="utf-8")
        console.print(f"[dim]Snapshot written to {output}[/dim]")

    if snapshot.phase == LaunchPhase.COMPLETE and not snapshot.stats.failed:
        console.print(f"[bold green]✓ {snapshot.stats.done} ads live[/bold green]")
        return

    console.print(
        f"[bold yellow]Launch ended in phase '{snapshot.phase}' with "
        f"{snapshot.stats.done}/{snapshot.stats.total} done, "
        f"{snapshot.stats.failed} failed[/bold yellow]"
    )
    raise typer.Exit(code=1)


@app.command()
def validate(
    manifest: Path = typer.Argument(..., exists=True, dir_okay=False, help="Launch manifest"),
) -> None:
    """Validate a manifest without contacting the platform."""
    launch = load_manifest(manifest)

    videos = [item for item in launch.media if item.type == MediaType.VIDEO]
    images = [item for item in launch.media if item.type == MediaType.IMAGE]

    table = Table(title="Manifest")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Account", f"act_{launch.account_id}")
    table.add_row("Campaign", launch.campaign.name)
    table.add_row("Ad set", launch.adset_id or launch.ad_set.name)
    table.add_row("Videos", str(len(videos)))
    table.add_row("  already uploaded", str(sum(1 for v in videos if v.fb_video_id)))
    table.add_row("Images", str(len(images)))
    table.add_row("With fallback URL", str(sum(1 for m in launch.media if m.fallback_url)))
    table.add_row("Upload batch size", str(launch.options.upload_batch_size))
    table.add_row("Ad batch size", str(launch.options.ad_batch_size))
    table.add_row("Max ticks", str(launch.options.max_ticks))
    console.print(table)
    console.print("[bold green]✓ Manifest is valid[/bold green]")


@app.command("config-check")
def config_check(
    ping: bool = typer.Option(False, "--ping", help="Also verify the token against the API."),
) -> None:
    """Report missing Graph API settings."""
    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Status")

    optional = ("meta_app_secret", *MANIFEST_DEFAULTS.values(), "alert_discord_webhook_url")
    for name in GRAPH_REQUIRED_SETTINGS:
        table.add_row(name.upper(), "✓" if getattr(settings, name) else "[red]✗ missing[/red]")
    for name in optional:
        table.add_row(name.upper(), "✓" if getattr(settings, name) else "[dim]not set[/dim]")
    console.print(table)

    missing = settings.missing(*GRAPH_REQUIRED_SETTINGS)
    if missing:
        console.print(f"[bold red]Missing required settings: {', '.join(missing)}[/bold red]")
        raise typer.Exit(code=1)

    if ping:

        async def _ping() -> bool:
            client = GraphAdsClient.from_settings(settings)
            try:
                return await client.health_check()
            finally:
                await client.aclose()

        if not asyncio.run(_ping()):
            console.print("[bold red]✗ Graph API rejected the access token[/bold red]")
            raise typer.Exit(code=1)
        console.print("[bold green]✓ Graph API reachable[/bold green]")


if __name__ == "__main__":
    app()
