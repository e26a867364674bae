from __future__ import annotations

import json
import sys
from typing import NoReturn, Optional

import typer

from crm_double.config import get_settings
from crm_double.engine import CrmEngine, open_engine
from crm_double.errors import CrmError
from crm_double.reporter import print_search, print_types
from crm_double.utils.logging import configure_logging

app = typer.Typer(help="crm-double: a local CRM record engine.")


def _engine(db_path: Optional[str], seed: Optional[bool] = None) -> CrmEngine:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    return open_engine(db_path, seed=seed)


def _fail(exc: CrmError) -> NoReturn:
    typer.echo(json.dumps(exc.to_dict(), indent=2), err=True)
    raise typer.Exit(code=1)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_path} (busy_timeout={settings.db_busy_timeout_ms}ms) | "
        f"env={settings.app_env} log={settings.log_level}{' json' if settings.log_json else ''} "
        f"seed_on_startup={settings.seed_on_startup}"
    )


@app.command()
def init(
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite path (default from settings)."),
) -> None:
    """
    Create the schema and seed the standard object types.
    """
    with _engine(db_path, seed=True) as engine:
        typer.echo(f"Initialized {engine.db.path} with {len(engine.types.list())} object types.")


@app.command()
def types(
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite path (default from settings)."),
    include_archived: bool = typer.Option(False, "--archived", help="Include archived custom types."),
) -> None:
    """
    List registered object types.
    """
    with _engine(db_path) as engine:
        print_types(engine.types.list(include_archived=include_archived))


@app.command()
def get(
    object_type: str = typer.Argument(..., help="Type name or id, e.g. contacts or 0-1."),
    record_id: str = typer.Argument(..., help="Record id, or a unique property value with --id-property."),
    properties: Optional[str] = typer.Option(None, "--properties", "-p", help="Comma-separated projection."),
    id_property: Optional[str] = typer.Option(None, "--id-property", help="Unique property to look up by."),
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite path (default from settings)."),
) -> None:
    """
    Print one record as JSON.
    """
    with _engine(db_path) as engine:
        try:
            record = engine.records.get(object_type, record_id, properties=properties, id_property=id_property)
        except CrmError as exc:
            _fail(exc)
        typer.echo(json.dumps(record.model_dump(by_alias=True, exclude_none=True), indent=2))


@app.command()
def search(
    object_type: str = typer.Argument(..., help="Type name or id."),
    request: str = typer.Option("{}", "--request", "-r", help="Search request as JSON."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result instead of a table."),
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite path (default from settings)."),
) -> None:
    """
    Run a search request against one object type.
    """
    try:
        body = json.loads(request)
    except json.JSONDecodeError as exc:
        typer.echo(f"--request is not valid JSON: {exc}", err=True)
        raise typer.Exit(code=2)
    with _engine(db_path) as engine:
        try:
            result = engine.search.search(object_type, body)
        except CrmError as exc:
            _fail(exc)
        if as_json:
            typer.echo(json.dumps(result.model_dump(by_alias=True, exclude_none=True), indent=2))
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
