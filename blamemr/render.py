"""Rich console rendering for CLI output."""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

from .types import LookupResult, MergeRequest, MergeRequestStats, ProviderStatus, VcsError

console = Console()

MAX_TITLE_LENGTH = 60


def format_mr_reference(mr: MergeRequest, provider_id: str) -> str:
    """Provider-style reference: ``!123`` for GitLab, ``#123`` for GitHub."""
    prefix = "!" if provider_id == "gitlab" else "#"
    return f"{prefix}{mr.number}"


def truncate_title(title: str, limit: int = MAX_TITLE_LENGTH) -> str:
    if len(title) <= limit:
        return title
    return title[: max(0, limit - 3)] + "..."


def format_stats(stats: MergeRequestStats) -> str:
    """One-line change summary; GitHub has line counts, GitLab a change count."""
    if stats.additions is not None and stats.deletions is not None:
        line = f"[green]+{stats.additions}[/green] [red]-{stats.deletions}[/red]"
        if stats.changed_files is not None:
            noun = "file" if stats.changed_files == 1 else "files"
            line += f"  {stats.changed_files} {noun}"
        return line
    if stats.changes_count is not None:
        label = "change" if stats.changes_count == "1" else "changes"
        return f"{stats.changes_count} {label}"
    return ""


def print_lookup(result: LookupResult, sha: str, provider_id: str):
    """Print the outcome of a single lookup."""
    console.print()
    if result.mr:
        mr = result.mr
        body = (
            f"[bold]{format_mr_reference(mr, provider_id)}[/bold] "
            f"{truncate_title(mr.title)}\n"
            f"[dim]{mr.web_url}[/dim]\n"
            f"State: {mr.state}"
        )
        if mr.merged_at:
            body += f"  •  Merged: {mr.merged_at}"
        if mr.stats:
            stats_line = format_stats(mr.stats)
            if stats_line:
                body += f"\n{stats_line}"
        source = "cache" if result.from_cache else "live"
        console.print(
            Panel(
                body,
                title=f"[bold green]{sha[:8]}[/bold green]",
                subtitle=f"[dim]{source}[/dim]",
                border_style="green",
                padding=(0, 1),
            )
        )
    elif result.checked:
        console.print(f"[dim]{sha[:8]}: No associated merge request[/dim]")
    else:
        print_info(f"{sha[:8]}: merge request unavailable")


def print_providers(providers: list[ProviderStatus]):
    """Print registered providers in a table."""
    table = Table(box=box.SIMPLE)
    table.add_column("Provider", style="cyan")
    table.add_column("Host")
    table.add_column("Token")
    for p in providers:
        table.add_row(p.name, p.host_url, "[green]yes[/green]" if p.has_credential else "[red]no[/red]")
    console.print(table)


def print_vcs_error(error: VcsError, provider_name: str):
    """Print a provider error that should reach the user."""
    print_error(f"[{provider_name}] {error.message}")


def print_error(message: str):
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_info(message: str):
    """Print an info message."""
    console.print(f"[dim]{message}[/dim]")
