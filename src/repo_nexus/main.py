"""RepoNexus CLI - discover repositories and analyze them once, cached.

Usage:
    repo-nexus scan ~/code
    repo-nexus repos
    repo-nexus analyze owner/project --detailed
    repo-nexus sync --limit 20
    repo-nexus inventory --output strategy.json
    repo-nexus portfolio --output portfolio.md
"""

from __future__ import annotations

import json
import signal
import threading
from dataclasses import dataclass, field
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .cache import AnalysisCache, JsonFileStore, format_cache_age
from .config import ConfigError, Settings
from .errors import NexusError
from .logging import configure_logging, get_logger
from .merger import RepositoryMerger
from .orchestrator import AnalysisOrchestrator, AnalysisOutcome
from .provider import OpenRouterProvider
from .reports import inventory_entries, portfolio_entries, render_portfolio_markdown
from .records import DETAILED, SUPERFICIAL, RepositoryRecord, SyncProgress
from .scanner import ForensicScanner
from .sources import GitHubSource, LocalSource, RoutingSource
from .sync import SyncCoordinator

console = Console()
logger = get_logger("cli")


@dataclass
class AppContext:
    """Collaborators shared by every command."""

    settings: Settings
    cache: AnalysisCache
    merger: RepositoryMerger
    # HTTP clients opened by this invocation, closed when the command ends
    clients: list = field(default_factory=list)

    def remote_source(self) -> GitHubSource | None:
        if not (self.settings.github_token or self.settings.github_user):
            return None
        return self._track(GitHubSource(self.settings.github_token, self.settings.github_user))

    def collect(self, remote: GitHubSource | None) -> list[RepositoryRecord]:
        """Remote listing (if configured) merged with the local snapshot."""
        remote_records: list[RepositoryRecord] = []
        if remote is not None:
            try:
                remote_records = remote.fetch_metadata_list()
            except NexusError as e:
                logger.warning("Could not list GitHub repositories (%s): %s", e.kind, e.message)
        return self.merger.merge(remote_records, [])

    def provider(self) -> OpenRouterProvider:
        return self._track(OpenRouterProvider(
            self.settings.openrouter_api_key, model=self.settings.openrouter_model
        ))

    def orchestrator(self, remote: GitHubSource | None) -> AnalysisOrchestrator:
        local = LocalSource(self.merger.local_records)
        source = RoutingSource(remote, local) if remote is not None else local
        return AnalysisOrchestrator(self.cache, source, self.provider())

    def _track(self, client):
        self.clients.append(client)
        return client

    def close(self) -> None:
        while self.clients:
            self.clients.pop().close()


@click.group()
@click.version_option(version=__version__)
@click.option("--cache-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Where analyses and the local scan snapshot are stored")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, cache_dir: Path | None, verbose: bool):
    """RepoNexus - forensic, cached AI analysis of your repositories.

    Reads GITHUB_TOKEN, REPO_NEXUS_GITHUB_USER and OPENROUTER_API_KEY from
    the environment.
    """
    configure_logging(verbose=verbose, console=Console(stderr=True))
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        raise click.ClickException(str(e))
    if cache_dir is not None:
        settings.cache_dir = cache_dir

    cache = AnalysisCache(JsonFileStore(settings.analysis_dir, settings.cache_quota_bytes))
    cache.migrate()
    app = AppContext(settings, cache, RepositoryMerger(settings.snapshot_path))
    ctx.obj = app
    ctx.call_on_close(app.close)


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_obj
def scan(app: AppContext, path: Path):
    """Scan PATH for git repositories and remember them."""
    try:
        found = ForensicScanner().scan(path)
    except NexusError as e:
        raise click.ClickException(e.message)

    before = len(app.merger.local_records)
    app.merger.merge([], found)
    added = len(app.merger.local_records) - before

    table = Table(title=f"Found {len(found)} local repositories", border_style="dim")
    table.add_column("Repository", style="bold")
    table.add_column("Language")
    table.add_column("Build")
    table.add_column("Dependencies")
    for record in found:
        sig = record.forensic_signature
        table.add_row(
            record.full_name,
            record.language,
            sig.build_system if sig else "",
            ", ".join(sig.dependencies[:5]) if sig else "",
        )
    console.print(table)
    console.print(f"[green]{added} new[/], {len(found) - added} already known")


@cli.command()
@click.pass_obj
def repos(app: AppContext):
    """List remote and scanned repositories with their cache status."""
    records = app.collect(app.remote_source())
    if not records:
        console.print("[yellow]No repositories. Set GITHUB_TOKEN or run: repo-nexus scan <dir>[/]")
        return

    table = Table(show_header=True, border_style="dim")
    table.add_column("Repository", style="bold")
    table.add_column("Source")
    table.add_column("Language")
    table.add_column("Analysis")
    for record in records:
        cached = app.cache.get(record.id)
        status = f"{cached.level}, {format_cache_age(cached.cached_at)}" if cached else "-"
        table.add_row(record.full_name, record.source_type, record.language or "", status)
    console.print(table)


@cli.command()
@click.argument("name")
@click.option("--detailed", is_flag=True, help="Include the file tree in the analysis")
@click.option("--retry", "retry_", is_flag=True, help="Ignore the cache and analyze again")
@click.pass_obj
def analyze(app: AppContext, name: str, detailed: bool, retry_: bool):
    """Analyze one repository by full name (owner/repo, local/path) or name."""
    remote = app.remote_source()
    records = app.collect(remote)
    repo = _find(records, name)
    level = DETAILED if detailed else SUPERFICIAL

    orchestrator = app.orchestrator(remote)
    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                  console=console) as progress:
        task = progress.add_task(f"Analyzing {repo.name}...", total=None)

        def on_transition(_repo, state):
            progress.update(task, description=f"{repo.name}: {state.replace('_', ' ')}")

        orchestrator.on_transition = on_transition
        if retry_:
            outcome = orchestrator.retry(repo, level)
        else:
            outcome = orchestrator.analyze(repo, level)

    _print_outcome(outcome)
    if not outcome.ok:
        raise click.ClickException(f"{outcome.error.kind}: {outcome.error.message}")


@cli.command()
@click.option("--limit", "-n", type=click.IntRange(min=0), default=None,
              help="Maximum repositories to analyze (default: REPO_NEXUS_SYNC_LIMIT or 20)")
@click.option("--detailed", is_flag=True, help="Sync at the detailed level")
@click.option("--deep", is_flag=True, help="Re-analyze records written by an older payload revision")
@click.pass_obj
def sync(app: AppContext, limit: int | None, detailed: bool, deep: bool):
    """Analyze every repository the cache does not already cover."""
    remote = app.remote_source()
    records = app.collect(remote)
    limit = app.settings.sync_limit if limit is None else limit
    cancel = threading.Event()

    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                  BarColumn(), TextColumn("{task.completed}/{task.total}"),
                  console=console) as progress:
        task = progress.add_task("Syncing...", total=min(limit, len(records)))

        def on_progress(p: SyncProgress):
            description = f"Syncing {p.current_name}" if p.current_name else "Done!"
            progress.update(task, description=description, completed=p.current, total=p.total)

        coordinator = SyncCoordinator(app.orchestrator(remote), progress_callback=on_progress)
        previous = signal.signal(signal.SIGINT, _stop_after_current(cancel))
        try:
            report = coordinator.run(
                records, limit, level=DETAILED if detailed else SUPERFICIAL,
                deep=deep, cancel_event=cancel,
            )
        except KeyboardInterrupt:
            raise click.Abort()
        finally:
            signal.signal(signal.SIGINT, previous)

    console.print(Panel.fit(
        f"[bold green]{len(report.analyzed)} analyzed[/], {len(report.skipped)} cached, "
        f"[red]{len(report.failed)} failed[/] of {report.total}",
        border_style="green" if not report.failed else "yellow",
        title="Sync complete",
    ))
    for error in report.errors:
        console.print(f"  [red]{error}[/]")
    if report.cancelled:
        console.print("[yellow]Sync cancelled; run it again to continue.[/]")


@cli.command()
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Also write the strategy as JSON to this file")
@click.pass_obj
def inventory(app: AppContext, output: Path | None):
    """Ask for a strategy across every known repository."""
    records = app.collect(app.remote_source())
    if not records:
        raise click.ClickException("No repositories. Set GITHUB_TOKEN or run: repo-nexus scan <dir>")

    entries = inventory_entries(records, app.cache)
    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                  console=console, transient=True) as progress:
        progress.add_task(f"Summarizing {len(entries)} repositories...", total=None)
        try:
            strategy = app.provider().summarize_inventory(entries)
        except NexusError as e:
            raise click.ClickException(f"{e.kind}: {e.message}")

    _write_json(app.settings.inventory_path, strategy)
    if output is not None:
        _write_json(output, strategy)

    console.print(Panel(strategy["executiveSummary"], title="Nexus strategy", border_style="cyan"))
    table = Table(show_header=True, border_style="dim")
    table.add_column("Repository", style="bold")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Action")
    for item in strategy["repoRegistry"]:
        table.add_row(
            item["name"], str(item.get("status", "")),
            str(item.get("priority", "")), str(item.get("action", "")),
        )
    console.print(table)
    for task in strategy["maintenanceAudit"]:
        console.print(f"  - {task}")


@cli.command()
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Write the report to this file (.md for markdown, JSON otherwise)")
@click.pass_obj
def portfolio(app: AppContext, output: Path | None):
    """Build a resume portfolio from the cached analyses."""
    records = app.collect(app.remote_source())
    entries = portfolio_entries(records, app.cache)
    if not entries:
        raise click.ClickException("No cached analyses. Run: repo-nexus sync")

    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                  console=console, transient=True) as progress:
        progress.add_task(f"Writing portfolio from {len(entries)} analyses...", total=None)
        try:
            report = app.provider().generate_portfolio(entries)
        except NexusError as e:
            raise click.ClickException(f"{e.kind}: {e.message}")

    markdown = render_portfolio_markdown(report, total=len(records))
    if output is None:
        console.print(markdown, markup=False)
    elif output.suffix.lower() == ".md":
        output.write_text(markdown, encoding="utf-8")
        console.print(f"Portfolio written to {output}")
    else:
        _write_json(output, report)
        console.print(f"Portfolio written to {output}")


@cli.group()
def cache():
    """Inspect or clear cached analyses."""


@cache.command("list")
@click.pass_obj
def cache_list(app: AppContext):
    """List cached analyses."""
    records = app.cache.list_all()
    if not records:
        console.print("[yellow]Cache is empty[/]")
        return
    table = Table(show_header=True, border_style="dim")
    table.add_column("Id")
    table.add_column("Repository", style="bold")
    table.add_column("Level")
    table.add_column("Cached")
    for record in sorted(records, key=lambda r: -r.cached_at):
        table.add_row(
            str(record.repo_snapshot.get("id", "")),
            record.repo_snapshot.get("name", ""),
            record.level,
            format_cache_age(record.cached_at),
        )
    console.print(table)


@cache.command("clear")
@click.argument("repo_id", required=False)
@click.pass_obj
def cache_clear(app: AppContext, repo_id: str | None):
    """Clear one cached analysis, or all of them."""
    removed = app.cache.clear(repo_id)
    console.print(f"Removed {removed} cached analys{'is' if removed == 1 else 'es'}")


@cli.command()
def version():
    """Show version information."""
    console.print(f"repo-nexus v{__version__}")
    console.print("Forensic repository discovery with cached AI analysis")


def _write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _stop_after_current(cancel: threading.Event):
    """SIGINT handler: the first Ctrl-C ends the batch cleanly, the second aborts."""

    def handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("Stopping after the current repository (Ctrl-C again to abort)")
        cancel.set()

    return handler


def _find(records: list[RepositoryRecord], name: str) -> RepositoryRecord:
    for record in records:
        if record.full_name == name:
            return record
    matches = [r for r in records if r.name == name]
    if len(matches) == 1:
        return matches[0]
    if matches:
        options = ", ".join(r.full_name for r in matches)
        raise click.ClickException(f"'{name}' is ambiguous: {options}")
    raise click.ClickException(f"Unknown repository: {name}")


def _print_outcome(outcome: AnalysisOutcome) -> None:
    record = outcome.record
    if record is None:
        return
    payload = record.payload
    origin = f"cached {format_cache_age(record.cached_at)}" if outcome.from_cache else "fresh"

    console.print()
    console.print(Panel(
        payload.project_pulse,
        title=f"{outcome.repo.full_name} ({record.level}, {origin})",
        border_style="cyan",
    ))
    if payload.resume_points:
        console.print("[bold]Resume points:[/]")
        for point in payload.resume_points:
            console.print(f"  - {point}")
    if payload.forgotten_ideas:
        console.print("[bold]Forgotten ideas:[/]")
        for idea in payload.forgotten_ideas:
            console.print(f"  - {idea}")
    if payload.reorg_advice:
        console.print(f"[bold]Reorganization:[/] {payload.reorg_advice}")
    if payload.detailed_description:
        console.print()
        console.print(Panel(payload.detailed_description, title="Detailed description",
                            border_style="magenta"))


if __name__ == "__main__":
    cli()
