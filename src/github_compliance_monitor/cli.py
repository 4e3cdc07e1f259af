"""
Command-line interface for the GitHub Compliance Monitor.

Provides commands for syncing the local cache from GitHub, inspecting
cached findings and compliance results, and managing configuration.
"""

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .core.config import ConfigurationError, Settings, create_default_config, get_settings
from .core.models import FindingTool, SyncReport
from .core.sync import SyncError, SyncOrchestrator
from .github.client import GitHubAPIError, GitHubClient
from .storage.database import Database
from .utils.secure_logging import setup_secure_logging

app = typer.Typer(
    name="github-compliance-monitor",
    help="GitHub Compliance Monitor - cache security alerts, ownership and compliance of your repositories",
    add_completion=True,
    no_args_is_help=True,
)

console = Console()

SEVERITY_STYLES = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "blue",
}


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        from . import __version__
        console.print(f"GitHub Compliance Monitor v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", "-v", callback=version_callback, help="Show version"),
    ] = None,
) -> None:
    """GitHub Compliance Monitor."""
    pass


def _load_settings(config: Optional[Path]) -> Settings:
    """Load settings and configure logging, exiting on configuration errors."""
    try:
        settings = get_settings(str(config) if config else None)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)

    setup_secure_logging(settings.logging.level, settings.logging.file)
    return settings


def _require_token(settings: Settings, token: Optional[str]) -> None:
    if token:
        settings.github.token = token
    if not settings.github.token:
        console.print("[red]Error: GitHub token is required. Set GITHUB_TOKEN or use --token[/red]")
        raise typer.Exit(1)


async def _run_sync(settings: Settings, database: Database) -> SyncReport:
    async with GitHubClient(settings.github) as client:
        orchestrator = SyncOrchestrator(client, database, settings)
        return await orchestrator.run_full_sync()


def _print_sync_report(report: SyncReport) -> None:
    table = Table(title="Sync Stages")
    table.add_column("Stage", style="cyan")
    table.add_column("OK", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="yellow")

    for stage, batch in report.stages.items():
        table.add_row(stage, str(len(batch.succeeded)), str(len(batch.skipped)))

    console.print(table)

    skipped = [
        (stage, item)
        for stage, batch in report.stages.items()
        for item in batch.skipped
    ]
    if skipped:
        console.print("\n[yellow]Skipped items:[/yellow]")
        for stage, item in skipped:
            console.print(f"  [dim]{stage}[/dim] {item.key}: {item.reason}")


@app.command()
def sync(
    token: Annotated[
        Optional[str],
        typer.Option("--token", "-t", envvar="GITHUB_TOKEN", help="GitHub token"),
    ] = None,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to config file"),
    ] = None,
    if_stale: Annotated[
        bool,
        typer.Option("--if-stale", help="Only sync when the cache is older than 24 hours"),
    ] = False,
) -> None:
    """
    Sync repositories, teams, findings, ownership and compliance from GitHub.

    Example:
        github-compliance-monitor sync --token $GITHUB_TOKEN
    """
    settings = _load_settings(config)
    database = Database(settings.storage.database_path)

    if if_stale and not database.is_data_stale():
        console.print("[green]✓ Cache is fresh, nothing to do[/green]")
        raise typer.Exit(0)

    _require_token(settings, token)

    console.print(Panel.fit(
        f"[bold]API:[/bold] {settings.github.api_url}\n"
        f"[bold]Organization:[/bold] {settings.github.organization or '(teams of token owner)'}\n"
        f"[bold]Concurrency:[/bold] {settings.sync.max_concurrency}\n"
        f"[bold]Cache:[/bold] {settings.storage.database_path}",
        title="🔄 Sync Configuration",
    ))

    try:
        report = asyncio.run(_run_sync(settings, database))
    except SyncError as e:
        cause = e.__cause__
        console.print(f"[red]Sync failed during {e.stage}: {cause or e}[/red]")
        raise typer.Exit(1)

    _print_sync_report(report)

    metrics = report.metrics
    console.print(
        f"\n[green]✓ Synced {metrics.repository_count} repositories, "
        f"{metrics.team_count} teams in {report.duration_seconds:.1f}s[/green]"
    )


@app.command()
def status(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to config file"),
    ] = None,
) -> None:
    """
    Show the cached metrics summary and whether the cache is stale.

    Example:
        github-compliance-monitor status
    """
    settings = _load_settings(config)
    database = Database(settings.storage.database_path)

    summary = database.get_metrics_summary()
    if summary is None:
        console.print("[yellow]No sync has completed yet. Run 'sync' first.[/yellow]")
        raise typer.Exit(0)

    stale = database.is_data_stale()
    breakdown = database.severity_breakdown()
    compliance = database.compliance_summary()

    console.print(Panel.fit(
        f"[bold]Repositories:[/bold] {summary.repository_count}\n"
        f"[bold]Teams:[/bold] {summary.team_count}\n"
        f"[bold]Commits (30 days, sampled):[/bold] {summary.commit_count}\n"
        f"[bold]Critical/High findings:[/bold] {breakdown['critical_high']}\n"
        f"[bold]Medium findings:[/bold] {breakdown['medium']}\n"
        f"[bold]Low findings:[/bold] {breakdown['low']}\n"
        f"[bold]Compliance rate:[/bold] {compliance['compliance_rate']}%\n"
        f"[bold]Last sync:[/bold] {summary.last_fetched:%Y-%m-%d %H:%M} UTC\n"
        f"[bold]Stale:[/bold] {'[red]yes[/red]' if stale else '[green]no[/green]'}",
        title="📊 Cache Status",
    ))


@app.command("findings")
def findings_cmd(
    repository_id: Annotated[
        Optional[int],
        typer.Option("--repository-id", "-r", help="Filter by repository id"),
    ] = None,
    tool: Annotated[
        Optional[str],
        typer.Option("--tool", help="Filter by tool (code_scanning, secret_scanning, dependabot)"),
    ] = None,
    severity: Annotated[
        Optional[str],
        typer.Option("--severity", "-s", help="Filter by severity (critical, high, medium, low)"),
    ] = None,
    owned: Annotated[
        Optional[bool],
        typer.Option("--owned/--unowned", help="Only findings with / without an owner"),
    ] = None,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to config file"),
    ] = None,
) -> None:
    """
    List cached security findings.

    Example:
        github-compliance-monitor findings --severity critical --unowned
    """
    settings = _load_settings(config)
    database = Database(settings.storage.database_path)

    if tool:
        try:
            tool = FindingTool(tool).value
        except ValueError:
            console.print(f"[red]Invalid tool: {tool}[/red]")
            console.print("[dim]Valid: code_scanning, secret_scanning, dependabot[/dim]")
            raise typer.Exit(1)

    findings = database.get_findings(
        repository_id=repository_id,
        tool=tool,
        severity=severity,
        owned=owned,
    )

    if not findings:
        console.print("[yellow]No findings match the filters[/yellow]")
        return

    table = Table(title=f"Security Findings ({len(findings)})")
    table.add_column("Severity")
    table.add_column("Tool", style="cyan")
    table.add_column("Repository")
    table.add_column("Title")
    table.add_column("Path", style="dim")
    table.add_column("Owner")

    for finding in findings:
        style = SEVERITY_STYLES.get(finding.severity.lower(), "")
        table.add_row(
            f"[{style}]{finding.severity}[/{style}]" if style else finding.severity,
            finding.tool.value,
            finding.repository_name,
            finding.title[:60],
            finding.directory_path,
            finding.owner or "[dim]-[/dim]",
        )

    console.print(table)


@app.command()
def compliance(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to config file"),
    ] = None,
) -> None:
    """
    Show compliance results of production repositories.

    Example:
        github-compliance-monitor compliance
    """
    settings = _load_settings(config)
    database = Database(settings.storage.database_path)

    checks = database.compliance_checks.all()
    if not checks:
        console.print("[yellow]No compliance results cached. Run 'sync' first.[/yellow]")
        return

    def mark(ok: bool) -> str:
        return "[green]✓[/green]" if ok else "[red]✗[/red]"

    table = Table(title="Production Repository Compliance")
    table.add_column("Repository")
    table.add_column("CODEOWNERS", justify="center")
    table.add_column("No old High/Critical", justify="center")
    table.add_column("No direct access", justify="center")
    table.add_column("No admin access", justify="center")
    table.add_column("Compliant", justify="center")

    for check in checks:
        table.add_row(
            check.repository_name,
            mark(check.valid_codeowners),
            mark(not check.old_high_critical_findings),
            mark(not check.direct_user_access),
            mark(not check.admin_owner_access),
            mark(check.is_compliant),
        )

    console.print(table)

    summary = database.compliance_summary()
    console.print(
        f"\n[bold]{summary['compliant']}/{summary['total']}[/bold] compliant "
        f"({summary['compliance_rate']}%)"
    )


@app.command("rate-limit")
def rate_limit_cmd(
    token: Annotated[
        Optional[str],
        typer.Option("--token", "-t", envvar="GITHUB_TOKEN", help="GitHub token"),
    ] = None,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to config file"),
    ] = None,
) -> None:
    """
    Show the current GitHub API quota.

    Example:
        github-compliance-monitor rate-limit
    """
    settings = _load_settings(config)
    _require_token(settings, token)

    async def fetch() -> dict:
        async with GitHubClient(settings.github) as client:
            return await client.get_rate_limit()

    try:
        resources = asyncio.run(fetch())
    except GitHubAPIError as e:
        console.print(f"[red]Error fetching rate limit: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="GitHub API Rate Limit")
    table.add_column("Bucket", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Limit", justify="right")

    for name in ("core", "search", "graphql"):
        bucket = resources.get(name)
        if bucket:
            table.add_row(
                name,
                str(bucket.get("used", 0)),
                str(bucket.get("remaining", 0)),
                str(bucket.get("limit", 0)),
            )

    console.print(table)


@app.command("init-config")
def init_config(
    path: Annotated[Path, typer.Option("--path", "-p")] = Path("config.yaml"),
) -> None:
    """
    Write the default configuration file.

    Example:
        github-compliance-monitor init-config --path config.yaml
    """
    if path.exists():
        if not typer.confirm(f"{path} already exists. Overwrite?"):
            raise typer.Exit(0)

    create_default_config(path)
    console.print(f"[green]✓ Created default config at {path}[/green]")


@app.command()
def reset(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to config file"),
    ] = None,
) -> None:
    """
    Delete all cached data.

    Example:
        github-compliance-monitor reset --yes
    """
    settings = _load_settings(config)

    if not yes and not typer.confirm(f"Clear the cache at {settings.storage.database_path}?"):
        raise typer.Exit(0)

    Database(settings.storage.database_path).clear()
    console.print("[green]✓ Cache cleared[/green]")


if __name__ == "__main__":
    app()
