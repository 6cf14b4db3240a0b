"""CLI entrypoint for anchorage."""

import sys
from pathlib import Path

import click

from . import __version__
from .app import build_runtime, configure_logging
from .config import load_config
from .errors import ConfigError


@click.group()
@click.version_option(__version__, prog_name="anchorage")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Path to anchorage.toml (defaults to ./anchorage.toml, then built-in defaults)",
)
@click.option("--verbose", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """anchorage - Anchor artifact hashes on a ledger and track their status.

    Submit files, follow their reconciliation, and verify hashes directly
    against the ledger.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    configure_logging("DEBUG" if verbose else config.logging.level)
    try:
        ctx.obj["runtime"] = build_runtime(config)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--owner", "owner_id", required=True, help="Owner identity the artifact belongs to")
@click.option("--title", default=None, help="Artifact title (default: file name)")
@click.option(
    "--wait/--no-wait",
    default=True,
    show_default=True,
    help="Wait for the ledger outcome before exiting",
)
@click.option(
    "--timeout",
    "timeout_s",
    type=float,
    default=None,
    help="Seconds to wait for the outcome (default: until it arrives)",
)
@click.option("--json", "output_json", is_flag=True, help="Output result as JSON")
@click.pass_context
def submit(
    ctx: click.Context,
    file: Path,
    owner_id: str,
    title: str | None,
    wait: bool,
    timeout_s: float | None,
    output_json: bool,
) -> None:
    """Submit a file for anchoring.

    Identical content already known (from any owner) is reported as a
    conflict with the existing artifact id (exit code 3).

    Examples:

        anchorage submit report.pdf --owner u1

        anchorage submit report.pdf --owner u1 --title "Q3 report" --no-wait
    """
    from .commands.artifact_cmd import run_submit

    exit_code = run_submit(
        ctx.obj["runtime"],
        file,
        owner_id=owner_id,
        title=title,
        wait=wait,
        timeout_s=timeout_s,
        output_json=output_json,
    )
    sys.exit(exit_code)


@cli.command()
@click.option("--owner", "owner_id", required=True, help="Owner identity")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def history(ctx: click.Context, owner_id: str, output_json: bool) -> None:
    """List an owner's artifacts, newest first."""
    from .commands.artifact_cmd import run_history

    sys.exit(run_history(ctx.obj["runtime"], owner_id=owner_id, output_json=output_json))


@cli.command()
@click.argument("artifact_id")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx: click.Context, artifact_id: str, output_json: bool) -> None:
    """Show one artifact record."""
    from .commands.artifact_cmd import run_show

    sys.exit(run_show(ctx.obj["runtime"], artifact_id, output_json=output_json))


@cli.command()
@click.argument("digest", required=False)
@click.option(
    "--file",
    "file_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Hash this file and verify the result",
)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def verify(ctx: click.Context, digest: str | None, file_path: Path | None, output_json: bool) -> None:
    """Verify a hash against the ledger.

    The local database is not consulted: the answer is ledger truth.
    Exit code 0 if registered, 1 if not.

    Examples:

        anchorage verify 0x3f1a...

        anchorage verify --file report.pdf
    """
    from .commands.artifact_cmd import run_verify

    if digest and file_path:
        raise click.UsageError("Pass either DIGEST or --file, not both")

    sys.exit(run_verify(ctx.obj["runtime"], digest, file_path=file_path, output_json=output_json))


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def audit(ctx: click.Context, output_json: bool) -> None:
    """Report records whose status disagrees with the ledger.

    Detection only: pending or failed records the ledger already holds
    (e.g. after a crash) and anchored records the ledger does not know.
    Exit code 1 if any drift is found.
    """
    from .commands.artifact_cmd import run_audit

    sys.exit(run_audit(ctx.obj["runtime"], output_json=output_json))


@cli.command()
@click.argument("artifact_id")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def timeline(ctx: click.Context, artifact_id: str, output_json: bool) -> None:
    """Show the journal events of one artifact."""
    from .commands.artifact_cmd import run_timeline

    sys.exit(run_timeline(ctx.obj["runtime"], artifact_id, output_json=output_json))


@cli.command()
@click.argument("folder", type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path))
@click.option("--owner", "owner_id", required=True, help="Owner identity for every submitted file")
@click.pass_context
def watch(ctx: click.Context, folder: Path, owner_id: str) -> None:
    """Submit every new file dropped into FOLDER.

    Runs until interrupted (Ctrl+C).
    """
    from .commands.artifact_cmd import run_watch

    sys.exit(run_watch(ctx.obj["runtime"], folder, owner_id=owner_id))


if __name__ == "__main__":
    cli()
