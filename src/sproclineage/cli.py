from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import load_config, RuntimeConfig
from .engine import ExtractRequest, Engine
from .errors import LineageError


app = typer.Typer(add_completion=False, no_args_is_help=True, help="sproclineage CLI")
console = Console()

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def version_callback(value: bool):
    from . import __version__

    if value:
        console.print(f"sproclineage {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=_LEVELS.get((level or "info").lower(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # sqlglot warns on every statement it falls back to Command for
    logging.getLogger("sqlglot").setLevel(logging.ERROR)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="Path to sproclineage.yml"),
    log_level: Optional[str] = typer.Option(None, help="log level: debug|info|warn|error"),
    format: Optional[str] = typer.Option(None, help="output format: text|json"),
    version: bool = typer.Option(False, "--version", callback=version_callback, is_eager=True, help="Show version and exit"),
):
    ctx.ensure_object(dict)
    cfg = load_config(config)
    # override with CLI flags (precedence)
    if log_level:
        cfg.log_level = log_level
    if format:
        cfg.output_format = format
    configure_logging(cfg.log_level)
    ctx.obj["cfg"] = cfg


@app.command()
def extract(
    ctx: typer.Context,
    sql_dir: Optional[Path] = typer.Option(None, exists=True, file_okay=False),
    out_dir: Optional[Path] = typer.Option(None, file_okay=False),
    catalog: Optional[Path] = typer.Option(None, exists=True, dir_okay=False),
    workers: Optional[int] = typer.Option(None, min=1, help="Number of parser workers"),
    home_database: Optional[str] = typer.Option(None, help="Database whose tables are reported unqualified"),
    include: Optional[str] = typer.Option(None, help="Glob include pattern"),
    exclude: Optional[str] = typer.Option(None, help="Glob exclude pattern"),
    encoding: Optional[str] = typer.Option(None, help="auto or a codec name"),
):
    """Extract tables used and portfolio codes mentioned by every routine."""
    cfg: RuntimeConfig = ctx.obj["cfg"]
    engine = Engine(cfg)
    req = ExtractRequest(
        sql_dir=sql_dir or Path(cfg.sql_dir),
        out_dir=out_dir or Path(cfg.out_dir),
        catalog=catalog,
        workers=workers,
        home_database=home_database,
        include=[include] if include else None,
        exclude=[exclude] if exclude else None,
        encoding=encoding,
    )
    try:
        files = engine.routine_files(req)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
            disable=cfg.output_format == "json",
        ) as progress:
            task = progress.add_task("Parsing routines...", total=len(files))
            result = engine.run_extract(
                req, on_routine_done=lambda _name: progress.advance(task), files=files
            )
    except LineageError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    _emit(result, cfg.output_format)


@app.command()
def inspect(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Routine .sql file"),
    catalog: Optional[Path] = typer.Option(None, exists=True, dir_okay=False),
):
    """Parse a single routine and print the facts it produces."""
    cfg: RuntimeConfig = ctx.obj["cfg"]
    engine = Engine(cfg)
    try:
        result = engine.inspect_routine(file, catalog)
    except LineageError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    _emit(result, cfg.output_format)


def _emit(payload: dict, fmt: str) -> None:
    if fmt == "json":
        sys.stdout.write(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")
        return

    if "rows" in payload and isinstance(payload["rows"], list):
        table = Table(show_header=True)
        for k in payload.get("columns", []):
            table.add_column(k)
        for r in payload["rows"]:
            table.add_row(*[str(r.get(c, "")) for c in payload.get("columns", [])])
        console.print(table)
        extras = {k: v for k, v in payload.items() if k not in ("columns", "rows")}
        if extras:
            console.print(", ".join(f"{k}: {v}" for k, v in extras.items()))
    else:
        console.print(payload)


def entrypoint() -> None:
    app()


if __name__ == "__main__":
    entrypoint()
