"""CLI entry point for rootfsprep.

This module provides the command-line interface for preparing Linux root
filesystems before a session starts:
- Filesystem and session bookkeeping
- Asset download, extraction and verification for a selected session

Commands:
    rootfsprep                    # Show help
    rootfsprep list               # List filesystems and sessions
    rootfsprep add-filesystem     # Register a filesystem
    rootfsprep add-session        # Register a session on a filesystem
    rootfsprep set-status ID      # Mark a session active or stopped
    rootfsprep start SESSION_ID   # Prepare a session's filesystem
"""

import logging
import queue
import sys
from dataclasses import dataclass

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from rootfsprep import __version__
from rootfsprep.click_group import RootfsprepGroup
from rootfsprep.config_manager import ConfigError, ConfigManager, ProvisionerConfig
from rootfsprep.models import SERVICE_TYPES, Session
from rootfsprep.modules.asset_preferences import AssetPreferences, AssetPreferencesError
from rootfsprep.modules.asset_repository import AssetRepository
from rootfsprep.modules.download_coordinator import DownloadCoordinator
from rootfsprep.modules.download_manager import HttpDownloadManager
from rootfsprep.modules.filesystem_operator import FilesystemOperator
from rootfsprep.provisioning_controller import (
    CanOnlyStartSingleSession,
    CheckingForAssetsUpdates,
    CopyingDownloads,
    DownloadProgress,
    FetchingAssetLists,
    FilesystemExtraction,
    IllegalState,
    LargeDownloadRequired,
    ProvisioningController,
    ProvisioningUpdate,
    SessionCanBeRestarted,
    SessionCanBeStarted,
    StartingSetup,
    VerifyingFilesystem,
)
from rootfsprep.session_store import SessionStore, SessionStoreError
from rootfsprep.startup import FilesystemNotFoundError, SessionStartupFsm

logger = logging.getLogger(__name__)

console = Console()

TERMINAL_UPDATES = (SessionCanBeStarted, SessionCanBeRestarted, CanOnlyStartSingleSession, IllegalState)

# Seconds between checks that provisioning is still making progress
UPDATE_POLL_SECONDS = 1.0
STALLED_REASON = "Provisioning stalled with no downloads in flight."


@dataclass
class Provisioner:
    """Wired provisioning components for one CLI invocation."""

    store: SessionStore
    fsm: SessionStartupFsm
    controller: ProvisioningController
    download_manager: HttpDownloadManager

    def close(self) -> None:
        self.controller.close()
        self.download_manager.shutdown(wait=False)


def build_provisioner(config: ProvisionerConfig, store: SessionStore) -> Provisioner:
    """Wire the state machine, its collaborators and the controller from config.

    The machine's caches follow the store; finished downloads are reported
    back through the controller.
    """
    preferences = AssetPreferences(config.preferences_path)
    download_manager = HttpDownloadManager(
        config.downloads_dir,
        max_workers=config.download_workers,
        timeout=config.request_timeout,
    )
    fsm = SessionStartupFsm(
        asset_repository=AssetRepository(
            config.files_dir,
            preferences,
            base_url=config.assets_base_url,
            timeout=config.request_timeout,
        ),
        filesystem_operator=FilesystemOperator(config.files_dir),
        download_coordinator=DownloadCoordinator(
            download_manager, preferences, config.files_dir, base_url=config.assets_base_url
        ),
    )
    store.subscribe_active_sessions(fsm.active_sessions.replace)
    store.subscribe_filesystems(fsm.filesystems.replace)

    controller = ProvisioningController(
        fsm, auto_approve_large_downloads=config.auto_approve_large_downloads
    )
    download_manager.set_completion_listener(controller.submit_completed_download_id)
    return Provisioner(store=store, fsm=fsm, controller=controller, download_manager=download_manager)


def describe_update(update: ProvisioningUpdate) -> str:
    """Spinner text for a progress update."""
    if isinstance(update, StartingSetup):
        return "Starting setup..."
    if isinstance(update, FetchingAssetLists):
        return "Fetching asset lists..."
    if isinstance(update, CheckingForAssetsUpdates):
        return "Checking for asset updates..."
    if isinstance(update, DownloadProgress):
        return f"Downloading assets ({update.num_completed}/{update.num_total})..."
    if isinstance(update, CopyingDownloads):
        return "Copying downloads into place..."
    if isinstance(update, FilesystemExtraction):
        return f"Extracting {update.extraction_target}"
    if isinstance(update, VerifyingFilesystem):
        return "Verifying filesystem..."
    return type(update).__name__


@click.group(
    cls=RootfsprepGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """rootfsprep - Prepare Linux root filesystems for sessions.

    Downloads distribution assets, extracts the root filesystem and verifies it
    before a session is started.

    \b
    CONFIGURATION:
        Config file: ~/.rootfsprep/config.toml (ROOTFSPREP_HOME overrides the directory)
        Keys: data_dir, assets_base_url, download_workers, request_timeout,
              log_level, auto_approve_large_downloads

    For help on any command: rootfsprep <command> --help
    """
    try:
        config = ConfigManager.load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, config.log_level.upper()),
        format="%(message)s",
    )

    ctx.obj = {"config": config, "store": SessionStore(config.store_path)}

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


@main.command(name="list")
@click.pass_context
def list_command(ctx: click.Context) -> None:
    """List filesystems and sessions."""
    store: SessionStore = ctx.obj["store"]
    try:
        filesystems = store.list_filesystems()
        sessions = store.list_sessions()
    except SessionStoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not filesystems and not sessions:
        console.print("No filesystems or sessions. Add one with 'rootfsprep add-filesystem'.")
        return

    fs_table = Table(title="Filesystems")
    fs_table.add_column("ID", justify="right", style="cyan")
    fs_table.add_column("Name", style="white")
    fs_table.add_column("Distribution", style="yellow")
    fs_table.add_column("Arch", style="magenta")
    for filesystem in filesystems:
        fs_table.add_row(
            str(filesystem.id), filesystem.name, filesystem.distribution_type, filesystem.arch_type
        )
    console.print(fs_table)

    session_table = Table(title="Sessions")
    session_table.add_column("ID", justify="right", style="cyan")
    session_table.add_column("Name", style="white")
    session_table.add_column("Filesystem", justify="right", style="yellow")
    session_table.add_column("Service", style="magenta")
    session_table.add_column("Status", style="green")
    for session in sessions:
        session_table.add_row(
            str(session.id),
            session.name,
            str(session.filesystem_id),
            session.service_type,
            "active" if session.active else "stopped",
        )
    console.print(session_table)


@main.command(name="add-filesystem")
@click.argument("name")
@click.option("--distribution", required=True, help="Distribution type (e.g. debian)")
@click.option("--arch", required=True, help="Architecture (e.g. arm64)")
@click.pass_context
def add_filesystem_command(ctx: click.Context, name: str, distribution: str, arch: str) -> None:
    """Register a filesystem."""
    store: SessionStore = ctx.obj["store"]
    try:
        filesystem = store.add_filesystem(name, distribution, arch)
    except SessionStoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    console.print(f"[green]✓[/green] Added filesystem {filesystem.id} ({filesystem.name})")


@main.command(name="add-session")
@click.argument("name")
@click.option("--filesystem-id", required=True, type=int, help="Filesystem the session runs on")
@click.option(
    "--service-type",
    type=click.Choice(SERVICE_TYPES),
    default="ssh",
    show_default=True,
    help="Service used to reach the session",
)
@click.pass_context
def add_session_command(ctx: click.Context, name: str, filesystem_id: int, service_type: str) -> None:
    """Register a session on an existing filesystem."""
    store: SessionStore = ctx.obj["store"]
    try:
        session = store.add_session(name, filesystem_id, service_type)
    except SessionStoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    console.print(f"[green]✓[/green] Added session {session.id} ({session.name})")


@main.command(name="set-status")
@click.argument("session_id", type=int)
@click.option("--active/--inactive", required=True, help="Whether the session is running")
@click.option("--pid", type=int, default=0, show_default=True, help="Process id of the running session")
@click.pass_context
def set_status_command(ctx: click.Context, session_id: int, active: bool, pid: int) -> None:
    """Record that a session started or stopped.

    Called by whatever launches sessions; start refuses to prepare a second
    session while one is marked active.
    """
    store: SessionStore = ctx.obj["store"]
    try:
        store.set_session_active(session_id, active, pid=pid)
    except SessionStoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    status = "active" if active else "stopped"
    console.print(f"[green]✓[/green] Session {session_id} marked {status}")


@main.command(name="start")
@click.argument("session_id", type=int)
@click.option("--yes", "-y", is_flag=True, help="Approve large downloads without asking")
@click.pass_context
def start_command(ctx: click.Context, session_id: int, yes: bool) -> None:
    """Prepare a session's filesystem so the session can start.

    \b
    Examples:
        rootfsprep start 1
        rootfsprep start 1 --yes
    """
    config: ProvisionerConfig = ctx.obj["config"]
    store: SessionStore = ctx.obj["store"]

    try:
        session = store.get_session(session_id)
        provisioner = build_provisioner(config, store)
    except (SessionStoreError, AssetPreferencesError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    updates: queue.Queue[ProvisioningUpdate] = queue.Queue()
    provisioner.controller.subscribe(updates.put)

    try:
        result = _run_until_settled(provisioner, session, updates, approve=yes)
    finally:
        provisioner.close()

    if isinstance(result, SessionCanBeStarted):
        console.print(f"[green]✓ Session '{result.session.name}' is ready to start[/green]")
    elif isinstance(result, SessionCanBeRestarted):
        console.print(f"[yellow]Session '{result.session.name}' is already running and can be restarted[/yellow]")
    elif isinstance(result, CanOnlyStartSingleSession):
        console.print("[red]✗ Another session is already running; only one session can run at a time[/red]")
        sys.exit(1)
    elif isinstance(result, IllegalState):
        console.print(f"[red]✗ Provisioning failed:[/red] {result.reason}")
        sys.exit(1)
    else:
        console.print("[yellow]Provisioning cancelled[/yellow]")
        sys.exit(1)


def _run_until_settled(
    provisioner: Provisioner,
    session: Session,
    updates: queue.Queue[ProvisioningUpdate],
    approve: bool,
) -> ProvisioningUpdate | None:
    """Drive provisioning until a terminal update arrives.

    Returns:
        The terminal update, or None if the user declined a large download
    """
    controller = provisioner.controller

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task(f"Preparing session '{session.name}'...", total=None)
        try:
            controller.select_session(session)
        except FilesystemNotFoundError as e:
            return IllegalState(str(e))

        while True:
            try:
                update = updates.get(timeout=UPDATE_POLL_SECONDS)
            except queue.Empty:
                if provisioner.download_manager.active_downloads or provisioner.fsm.is_processing:
                    continue
                # Re-check: the last worker may have published before finishing
                try:
                    update = updates.get_nowait()
                except queue.Empty:
                    return IllegalState(STALLED_REASON)
            if isinstance(update, TERMINAL_UPDATES):
                return update

            if isinstance(update, LargeDownloadRequired):
                if controller.auto_approve_large_downloads:
                    continue
                names = ", ".join(asset.name for asset in update.downloads)
                progress.stop()
                approved = approve or click.confirm(
                    f"Large download required ({names}). Continue?", default=True
                )
                progress.start()
                if not approved:
                    controller.cancel()
                    return None
                controller.approve_large_downloads()
                continue

            progress.update(task, description=describe_update(update))


if __name__ == "__main__":
    main()
