from __future__ import annotations

from typing import Any, Dict, Optional

from rich import box
from rich.console import Console
from rich.table import Table

_OUTCOME_STYLES = {"success": "green", "skipped": "blue", "failed": "bold red"}


def _console(console: Optional[Console]) -> Console:
    return console or Console()


def print_status(status: Dict[str, Any], console: Optional[Console] = None) -> None:
    """
    Render the global sync status as a rich table, one row per data type.
    """
    console = _console(console)
    last = status.get("last_synced_at") or "never"
    title = f"SRD Sync Status\n[dim]Last sync: {last}[/dim]"
    caption = "[yellow]Sync needed[/yellow]" if status.get("needs_sync") else "All types fresh"

    table = Table(title=title, box=box.ROUNDED, caption=caption)
    table.add_column("Type", style="cyan", no_wrap=True)
    table.add_column("Official", justify="right", style="magenta")
    table.add_column("Custom", justify="right", style="magenta")
    table.add_column("Last synced", style="green")
    table.add_column("Age (h)", justify="right")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Last error", style="red")

    in_progress = set(status.get("in_progress", []))
    for name, record in status.get("types", {}).items():
        label = f"{name} [dim](syncing)[/dim]" if name in in_progress else name
        age = record.get("age_hours")
        table.add_row(
            label,
            f"{status['official_counts'].get(name, 0):,}",
            f"{status['custom_counts'].get(name, 0):,}",
            record.get("last_synced_at") or "never",
            "-" if age is None else f"{age:.1f}",
            str(record.get("skipped_records", 0)),
            record.get("last_error") or "",
        )

    console.print(table)


def print_sweep(sweep: Dict[str, Any], console: Optional[Console] = None) -> None:
    """
    Render a sync result: either one type's result or a sweep with per-type rows.
    """
    console = _console(console)
    results = sweep.get("results")
    if results is None:
        results = [sweep]

    if not results:
        console.print(f"[green]{sweep.get('message', 'Nothing to sync.')}[/green]")
        return

    table = Table(title=sweep.get("message", "Sync"), box=box.ROUNDED)
    table.add_column("Type", style="cyan", no_wrap=True)
    table.add_column("Outcome")
    table.add_column("Entries", justify="right", style="magenta")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Duration (s)", justify="right", style="green")
    table.add_column("Error", style="red")

    for res in results:
        outcome = res.get("outcome", "unknown")
        style = _OUTCOME_STYLES.get(outcome, "white")
        table.add_row(
            res.get("type", "?"),
            f"[{style}]{outcome}[/{style}]",
            f"{res.get('count', 0):,}",
            str(res.get("skipped_records", 0)),
            f"{res.get('duration_seconds', 0.0):.2f}",
            res.get("error") or "",
        )

    console.print(table)


def print_search(page: Dict[str, Any], console: Optional[Console] = None) -> None:
    """
    Render a search page: entry id, name, origin and a short payload summary.
    """
    console = _console(console)
    if not page["results"]:
        console.print(
            f"[yellow]No {page['type']} matching '{page['query']}' (source={page['source']}).[/yellow]"
        )
        return

    title = f"{page['type'].title()} matching '{page['query']}'" if page["query"] else page["type"].title()
    table = Table(
        title=title,
        box=box.ROUNDED,
        caption=(
            f"{page['returned']} of {page['total']} result(s) | "
            f"page {page['page']}/{max(page['total_pages'], 1)} | source={page['source']}"
        ),
    )
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="cyan")
    table.add_column("Origin", style="magenta")
    table.add_column("Details")

    for entry in page["results"]:
        table.add_row(entry["id"], entry["name"], entry["origin"], _summary(entry))

    console.print(table)


def _summary(entry: Dict[str, Any]) -> str:
    payload = entry.get("payload") or {}
    data_type = entry.get("data_type")
    if data_type == "monsters":
        parts = [
            payload.get("size"),
            payload.get("creature_type"),
            f"CR {payload.get('challenge_rating', 0):g}",
        ]
    elif data_type == "spells":
        level = payload.get("level", 0)
        parts = ["cantrip" if level == 0 else f"level {level}", payload.get("school")]
    elif data_type == "items":
        parts = [payload.get("item_kind"), payload.get("category"), payload.get("cost")]
    else:
        description = payload.get("description") or ""
        parts = [description[:60] + ("..." if len(description) > 60 else "")]
    return ", ".join(str(p) for p in parts if p)


__all__ = ["print_search", "print_status", "print_sweep"]
