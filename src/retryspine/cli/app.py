"""
Root Typer application for the retryspine CLI.

    retryspine backoff --retries 5 --base 0.25 --max 10 --jitter full --seed 7
    retryspine config show --format json
"""

from __future__ import annotations

import random

import typer
from rich.table import Table

from retryspine.cli.config import app as config_app
from retryspine.cli.utils import console, err_console
from retryspine.core.settings import get_settings
from retryspine.execution.backoff import Backoff, JitterMode

app = typer.Typer(
    name="retryspine",
    help="retryspine — retry policies and bounded-concurrency batches.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("retryspine")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"retryspine {v}")
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
    """retryspine CLI — inspect retry policies and settings."""


@app.command("backoff")
def show_backoff(
    retries: int | None = typer.Option(
        None, "--retries", "-n", min=0, help="Number of retries (default: settings)"
    ),
    base: float | None = typer.Option(None, "--base", help="Base delay in seconds"),
    max_delay: float | None = typer.Option(None, "--max", help="Maximum delay in seconds"),
    factor: float | None = typer.Option(None, "--factor", help="Exponential factor"),
    jitter: JitterMode | None = typer.Option(None, "--jitter", "-j", help="Jitter mode"),
    seed: int | None = typer.Option(None, "--seed", help="Seed the jitter RNG for a reproducible table"),
) -> None:
    """Print the delay schedule a retry policy would produce."""
    settings = get_settings()
    retries = settings.max_retries if retries is None else retries
    try:
        backoff = Backoff(
            base_delay=settings.base_delay if base is None else base,
            max_delay=settings.max_delay if max_delay is None else max_delay,
            factor=settings.factor if factor is None else factor,
            jitter=jitter or JitterMode(settings.jitter),
            rng=random.Random(seed) if seed is not None else None,
        )
    except ValueError as e:
        err_console.print(f"[red]Invalid policy:[/red] {e}")
        raise typer.Exit(1) from e

    table = Table(title=f"Backoff ({backoff.jitter.value} jitter, factor {backoff.factor:g})")
    table.add_column("Retry", justify="right")
    table.add_column("Delay (s)", justify="right")
    table.add_column("Cumulative (s)", justify="right")

    cumulative = 0.0
    for attempt, delay in enumerate(backoff.schedule(retries)):
        cumulative += delay
        table.add_row(str(attempt + 1), f"{delay:.3f}", f"{cumulative:.3f}")

    console.print(table)
    console.print(f"Total attempts: {retries + 1}, worst-case wait: {cumulative:.3f}s")


app.add_typer(config_app, name="config", help="Configuration inspection.")


if __name__ == "__main__":
    app()
