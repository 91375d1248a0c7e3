from __future__ import annotations

import asyncio
import json
import sys
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

import typer

from srd_engine.config import get_settings
from srd_engine.domain.errors import InvalidArgumentError, SRDError
from srd_engine.reporter import print_search, print_status, print_sweep
from srd_engine.service import SearchFilters, SRDService, build_service, trust_local_operator
from srd_engine.storage import available_backends
from srd_engine.utils.logging import configure_logging

app = typer.Typer(help="SRD reference data sync and search CLI.")

T = TypeVar("T")


def _service() -> SRDService:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    # The CLI is run by the local operator, who may trigger syncs.
    return build_service(settings, authenticator=trust_local_operator)


def _run(action: Callable[[SRDService], Awaitable[T]]) -> T:
    service = _service()

    async def _go() -> T:
        try:
            return await action(service)
        finally:
            await service.aclose()

    return asyncio.run(_go())


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except InvalidArgumentError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    except SRDError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _emit_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    store = settings.storage_backend
    location = (
        f"{settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name}"
        if store == "postgres"
        else str(settings.data_dir)
    )
    typer.echo(
        f"store={store} ({location}) | provider={settings.provider_base_url} "
        f"page_size={settings.provider_page_size} | freshness={settings.sync_freshness_hours:g}h "
        f"timeout={settings.sync_type_timeout_seconds:g}s"
    )


@app.command()
def backends() -> None:
    """
    List available storage backends.
    """
    typer.echo("Available backends: " + ", ".join(available_backends()))


@app.command()
def init(
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON."),
) -> None:
    """
    Populate every data type that has no official entries yet.
    """
    with _cli_errors():
        sweep = _run(lambda service: service.initialize())
    if as_json:
        _emit_json(sweep)
    else:
        print_sweep(sweep)
    if not sweep["success"]:
        raise typer.Exit(code=1)


@app.command()
def sync(
    data_type: Optional[str] = typer.Option(
        None,
        "--type",
        "-t",
        help="Sync a single type (monsters, races, classes, spells, items, backgrounds).",
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Re-fetch types even if synced within the freshness window."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON."),
) -> None:
    """
    Sync one type or sweep all types against the content provider.
    """
    with _cli_errors():
        result = _run(lambda service: service.trigger_sync(None, data_type, force=force))
    if as_json:
        _emit_json(result)
    else:
        print_sweep(result)
    if not result["success"]:
        raise typer.Exit(code=1)


@app.command()
def status(
    as_json: bool = typer.Option(False, "--json", help="Print the raw status as JSON."),
) -> None:
    """
    Show per-type sync status and entry counts.
    """

    async def _status(service: SRDService) -> Any:
        return service.status()

    with _cli_errors():
        snapshot = _run(_status)
    if as_json:
        _emit_json(snapshot)
    else:
        print_status(snapshot)


@app.command()
def search(
    data_type: str = typer.Argument(..., help="Data type to search."),
    query: str = typer.Argument("", help="Case-insensitive text to match."),
    source: str = typer.Option("all", "--source", "-s", help="all, official or custom."),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Results per page."),
    page: int = typer.Option(1, "--page", "-p", help="1-based page number."),
    cr_min: Optional[float] = typer.Option(None, "--cr-min", help="Monsters: minimum CR."),
    cr_max: Optional[float] = typer.Option(None, "--cr-max", help="Monsters: maximum CR."),
    size: Optional[str] = typer.Option(None, "--size", help="Monsters: size."),
    monster_type: Optional[str] = typer.Option(None, "--monster-type", help="Monsters: creature type."),
    spell_level: Optional[int] = typer.Option(None, "--spell-level", help="Spells: level (0-9)."),
    school: Optional[str] = typer.Option(None, "--school", help="Spells: school of magic."),
    spell_class: Optional[str] = typer.Option(None, "--spell-class", help="Spells: class list."),
    ritual_only: bool = typer.Option(False, "--ritual", help="Spells: rituals only."),
    concentration_only: bool = typer.Option(
        False, "--concentration", help="Spells: concentration only."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the raw page as JSON."),
) -> None:
    """
    Search stored entries of one type. Never contacts the provider.
    """
    filters = SearchFilters(
        cr_min=cr_min,
        cr_max=cr_max,
        size=size,
        monster_type=monster_type,
        spell_level=spell_level,
        school=school,
        spell_class=spell_class,
        ritual_only=ritual_only,
        concentration_only=concentration_only,
    )

    async def _search(service: SRDService) -> Any:
        return service.search(
            data_type, query, source=source, limit=limit, page=page, filters=filters
        )

    with _cli_errors():
        result = _run(_search)
    if as_json:
        _emit_json(result)
    else:
        print_search(result)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
