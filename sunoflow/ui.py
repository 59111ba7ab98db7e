"""UI display helpers — headers, track tables, progress lines."""
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import APP_VERSION
from .models import COMPLETE, ERROR, QUEUED, STREAMING, SUBMITTED, CachedTrack, Track
from .state import GenerationSnapshot

console = Console()

_STATUS_STYLE = {
    SUBMITTED: "dim",
    QUEUED: "yellow",
    STREAMING: "cyan",
    COMPLETE: "green",
    ERROR: "red",
}


def fmt_time(seconds: Optional[float]) -> str:
    if seconds is None:
        return "–"
    m, s = divmod(int(seconds), 60)
    return f"{m}:{s:02d}"


def fmt_status(status: str) -> str:
    style = _STATUS_STYLE.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def print_header():
    console.print(
        f"\n  [bold cyan]♪  Suno Studio[/bold cyan]"
        f"  [dim]v{APP_VERSION}[/dim]"
    )


def progress_line(snapshot: GenerationSnapshot) -> str:
    done = sum(1 for t in snapshot.tracks if t.is_terminal)
    return (
        f"  [yellow]✦  {snapshot.status}[/yellow]"
        f"  {snapshot.progress:.0f}%"
        f"  [dim]{done}/{len(snapshot.tracks)} clips finished[/dim]"
    )


def print_tracks(tracks: list[Track], title: str = "Tracks"):
    if not tracks:
        console.print("  [dim]No tracks.[/dim]")
        return

    table = Table(title=title, show_lines=False, expand=False)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Length", justify="right")
    table.add_column("Tags", style="dim")
    if any(isinstance(t, CachedTrack) for t in tracks):
        table.add_column("Cached at", style="dim")

    for t in tracks:
        row = [t.id, t.title or "[dim]untitled[/dim]", fmt_status(t.status),
               fmt_time(t.duration_seconds), (t.tags or "")[:40]]
        if isinstance(t, CachedTrack):
            row.append(t.cached_at[:19].replace("T", " "))
        table.add_row(*row)
    console.print(table)


def print_result(snapshot: GenerationSnapshot):
    """Final summary after a generation finishes."""
    if snapshot.error:
        console.print(f"\n  [red]✗  {snapshot.error}[/red]")
    else:
        console.print(f"\n  [green]✓  Generation {snapshot.generation_id} {snapshot.status}[/green]")
    print_tracks(snapshot.tracks, title="Generation")
    for t in snapshot.tracks:
        if t.audio_url:
            console.print(f"  [bold]{t.title or t.id}[/bold]  {t.audio_url}")


def print_lyrics(text: str):
    console.print(Panel(text, title="[bold cyan]♪[/bold cyan] Lyrics", border_style="cyan", expand=False))
