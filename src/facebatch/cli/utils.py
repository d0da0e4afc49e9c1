"""
CLI utility helpers — output formatting and client setup.
"""

from __future__ import annotations

import json
import sys
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from facebatch.core.errors import FaceBatchError
from facebatch.core.logging import configure_logging
from facebatch.core.settings import FaceBatchSettings, get_settings

console = Console()
err_console = Console(stderr=True)


def load_settings(verbose: bool = False) -> FaceBatchSettings:
    """Read settings and configure logging for a CLI command."""
    settings = get_settings()
    configure_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_format=settings.json_logs,
        stream=sys.stderr,
    )
    return settings


def fail(error: FaceBatchError) -> None:
    """Print ``error`` to stderr and exit with status 1."""
    code = getattr(error, "code", None) or error.category.value
    err_console.print(f"[bold red]Error[/bold red] ({code}): {error.message}")
    raise typer.Exit(code=1)


def output_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def output_enrollment(data: dict[str, Any], *, as_json: bool = False) -> None:
    """Render a ``GroupEnrollment.to_dict()`` payload."""
    if as_json:
        output_json(data)
        return

    table = Table(title=f"Group: {data['group_id']}")
    for column in ("Person", "Person ID", "Faces", "Unprocessable", "Failed", "Skipped"):
        table.add_column(column)
    for person in data["persons"]:
        dispatch = person.get("dispatch") or {}
        table.add_row(
            person["name"],
            person["person_id"],
            str(person["faces"]),
            str(dispatch.get("unprocessable", 0)),
            str(dispatch.get("failed", 0) + dispatch.get("exhausted", 0)),
            str(person["skipped"]),
        )
    console.print(table)
    console.print(f"[bold]{data['total_faces']}[/bold] face(s) added")
    if data["unprocessable"]:
        console.print(
            f"[yellow]{data['unprocessable']} image(s) had more or less than one face "
            "and were not added[/yellow]"
        )
    if data["training"] is not None:
        console.print(f"Training: [green]{data['training'].get('status')}[/green]")


def output_training(status: dict[str, Any], *, group_id: str, as_json: bool = False) -> None:
    if as_json:
        output_json(status)
        return
    table = Table(title=f"Training: {group_id}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in status.items():
        table.add_row(str(key), "" if value is None else str(value))
    console.print(table)
