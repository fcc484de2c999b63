from __future__ import annotations

from pathlib import Path

import typer

app = typer.Typer(no_args_is_help=True, add_completion=False)

CONFIG_OPTION = typer.Option(None, "--config", help="Path to config.toml")
DEBUG_OPTION = typer.Option(False, "--debug", help="Enable debug logging.")
DESIRED_OPTION = typer.Option(..., "--desired", help="Desired events JSON.")


@app.command()
def stamp(
    source: Path = typer.Argument(..., help="Raw events JSON."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the stamped events here."),
) -> None:
    """Compute identity and state hashes for raw events."""
    from .commands.stamp import stamp as stamp_command

    stamp_command(source=source, output=output)


@app.command()
def plan(
    desired: Path = DESIRED_OPTION,
    current: Path | None = typer.Option(
        None, "--current", help="Current manifest JSON (default: the stored manifest)."
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit machine-readable JSON output."),
    config: Path | None = CONFIG_OPTION,
    debug: bool = DEBUG_OPTION,
) -> None:
    """Diff desired events against the manifest and print the action list."""
    from .commands.plan import plan as plan_command

    plan_command(
        desired=desired,
        current=current,
        json_output=json_output,
        config=config,
        debug=debug,
    )


@app.command()
def commit(
    desired: Path = DESIRED_OPTION,
    config: Path | None = CONFIG_OPTION,
    debug: bool = DEBUG_OPTION,
) -> None:
    """Record desired events as the reconciled manifest."""
    from .commands.commit import commit as commit_command

    commit_command(desired=desired, config=config, debug=debug)
