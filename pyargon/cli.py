"""CLI interface for pyargon."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import click

from .client import ArgonClient
from .config import load_settings
from .exceptions import ArgonError, ConfigError, TransportError
from .output import OutputFormatter
from .server import run_server
from .sync import SyncSession
from .utils import format_duration, serialized_size

logger = logging.getLogger(__name__)


def _session(ctx: Any, **overrides: Any) -> SyncSession:
    settings = ctx.obj["settings"]
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        settings = settings.with_overrides(**overrides)
        settings.validate()
    return SyncSession(settings, ctx.obj["workspace"])


@click.group()
@click.option(
    "--workspace",
    "-w",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Project directory holding the root folder and manifest",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="JSON settings file (default: ~/.config/pyargon/config.json)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option()
@click.pass_context
def main(
    ctx: Any,
    workspace: Path,
    config_path: Optional[Path],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """pyargon - sync a local Luau project with Roblox Studio."""
    ctx.ensure_object(dict)
    out = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["out"] = out
    ctx.obj["workspace"] = workspace.resolve()

    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyargon").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        ctx.obj["settings"] = load_settings(config_path)
    except ConfigError as e:
        out.error(str(e))
        ctx.exit(1)


@main.command()
@click.option("--host", help="Interface to bind (default from settings)")
@click.option(
    "--port", "-p", type=int, help="Port to listen on (default from settings)"
)
@click.option(
    "--compat/--no-compat",
    default=None,
    help="Use init/init.meta file names for container scripts and properties",
)
@click.pass_context
def serve(
    ctx: Any, host: Optional[str], port: Optional[int], compat: Optional[bool]
) -> None:
    """Serve the workspace to the Studio plugin.

    Local edits are picked up by polling the tree each time the plugin
    asks for changes.
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        session = _session(ctx, host=host, port=port, compatibility_mode=compat)
        session.start(watch=True)
    except ArgonError as e:
        out.error(str(e))
        ctx.exit(1)

    settings = session.settings
    out.success(
        f"Serving {session.title()} on http://{settings.host}:{settings.port}/"
    )

    try:
        run_server(session, settings.host, settings.port)
    except KeyboardInterrupt:
        out.warning("Server stopped by user")
    finally:
        session.stop()


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the port exchange (project events and chunks) to a JSON file",
)
@click.pass_context
def port(ctx: Any, output: Optional[Path]) -> None:
    """Port the whole workspace locally and report what would be sent."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        session = _session(ctx)
        session.start()
    except ArgonError as e:
        out.error(str(e))
        ctx.exit(1)

    first = session.port_project()
    chunks = []
    while session.chunks_remaining:
        chunks.append(session.next_chunk()["Chunk"])
    session.stop()

    sources = sum(len(chunk) for chunk in chunks)
    total = serialized_size(first["Project"]) + sum(
        serialized_size(chunk) for chunk in chunks
    )

    if output is not None:
        try:
            output.write_text(
                json.dumps({"Project": first["Project"], "Chunks": chunks}, indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            out.error(f"Cannot write {output}: {e}")
            ctx.exit(1)
        out.info(f"Wrote port exchange to {output}")

    out.print_summary(
        "Port Summary",
        [
            ("Project", session.title()),
            ("Structural events", str(len(first["Project"]))),
            ("Sources", str(sources)),
            ("Chunks", str(len(chunks))),
            ("Total size", out.format_size(total)),
        ],
    )

    if chunks and not out.json_output and not out.quiet:
        out.output_table(
            [
                {
                    "index": str(i + 1),
                    "events": str(len(chunk)),
                    "size": out.format_size(serialized_size(chunk)),
                }
                for i, chunk in enumerate(chunks)
            ],
            ["index", "events", "size"],
            {"index": "Chunk", "events": "Events", "size": "Size"},
        )


@main.command()
@click.option("--host", help="Server host (default from settings)")
@click.option("--port", "-p", type=int, help="Server port (default from settings)")
@click.pass_context
def status(ctx: Any, host: Optional[str], port: Optional[int]) -> None:
    """Query a running server."""
    out: OutputFormatter = ctx.obj["out"]
    settings = ctx.obj["settings"]

    with ArgonClient(host or settings.host, port or settings.port) as client:
        try:
            millis = client.get_state()
        except TransportError as e:
            out.error(str(e))
            ctx.exit(1)

    if out.json_output:
        out.output_json({"millis_since_materialized": millis})
        return

    out.print_summary(
        "Server Status",
        [
            ("Server", client.base_url),
            ("Last snapshot written", f"{format_duration(millis)} ago"),
        ],
    )


@main.command(name="clear-folders")
@click.pass_context
def clear_folders(ctx: Any) -> None:
    """Remove empty service folders from the root folder."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        session = _session(ctx)
        session.start()
    except ArgonError as e:
        out.error(str(e))
        ctx.exit(1)

    removed = session.clear_folders()
    session.stop()

    if out.json_output:
        out.output_json({"removed": removed})
    else:
        out.success(f"Removed {removed} empty folder(s)")


if __name__ == "__main__":
    main()
