"""
Root Typer application for the facebatch CLI.

``facebatch enroll`` adds a folder of person folders to a large person group
and trains it; ``facebatch train`` trains an existing group.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path

import httpx
import typer
from typer import Typer

from facebatch import __version__
from facebatch.cli.utils import fail, load_settings, output_enrollment, output_training
from facebatch.client.face_service import FaceServiceClient
from facebatch.core.errors import FaceBatchError
from facebatch.execution.observer import LoggingObserver
from facebatch.workflows.enrollment import enroll_group
from facebatch.workflows.training import train_and_wait

app = Typer(
    name="facebatch",
    help="facebatch — bulk enrolment for the face-recognition service.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"facebatch {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """facebatch CLI — enrol and train large person groups."""


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("enroll")
def enroll(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Folder of person folders"),
    group: str = typer.Option(..., "--group", "-g", help="Large person group ID"),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c", min=1, help="In-flight requests"),
    create: bool = typer.Option(False, "--create", help="Create the group first"),
    limit: int | None = typer.Option(None, "--limit", min=1, help="Images per person"),
    no_train: bool = typer.Option(False, "--no-train", help="Skip training"),
    json_out: bool = typer.Option(False, "--json"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Enrol every sub-folder of ROOT as a person, then train the group."""
    settings = load_settings(verbose)
    dispatch_policy = settings.dispatch_policy()
    if concurrency is not None:
        dispatch_policy = replace(dispatch_policy, max_concurrency=concurrency)

    async def _run():
        async with FaceServiceClient.from_settings(settings) as client:
            return await enroll_group(
                client,
                group,
                root,
                create_group=create,
                train=not no_train,
                retry_policy=settings.retry_policy(),
                dispatch_policy=dispatch_policy,
                suggestion_limit=limit,
                observer=LoggingObserver(),
            )

    try:
        outcome = asyncio.run(_run())
    except FaceBatchError as exc:
        fail(exc)
    except httpx.HTTPError as exc:
        fail(FaceBatchError(f"Request to the face service failed: {exc}"))
    output_enrollment(outcome.to_dict(), as_json=json_out)


@app.command("train")
def train(
    group: str = typer.Argument(..., help="Large person group ID"),
    timeout: float | None = typer.Option(None, "--timeout", "-t", help="Give up after N seconds"),
    poll_interval: float = typer.Option(1.0, "--poll-interval", help="Seconds between status checks"),
    json_out: bool = typer.Option(False, "--json"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Train GROUP and wait until training finishes."""
    settings = load_settings(verbose)

    async def _run():
        async with FaceServiceClient.from_settings(settings) as client:
            return await train_and_wait(
                client,
                group,
                retry_policy=settings.retry_policy(),
                poll_interval=poll_interval,
                timeout=timeout,
                observer=LoggingObserver(),
            )

    try:
        status = asyncio.run(_run())
    except FaceBatchError as exc:
        fail(exc)
    except TimeoutError as exc:
        fail(FaceBatchError(str(exc)))
    except httpx.HTTPError as exc:
        fail(FaceBatchError(f"Request to the face service failed: {exc}"))
    output_training(status, group_id=group, as_json=json_out)
