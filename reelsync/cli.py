from __future__ import annotations

import argparse
import asyncio
import json
import subprocess
import sys
from pathlib import Path
from typing import Any, Optional

from rich.console import Console

from .core.config import get_settings
from .core.db import DatabaseHandle
from .core.logging import configure_logging, level_from_name
from .core.storage import get_storage
from .errors import DurationProbeError, ThumbnailError
from .ingest.ffprobe import parse_duration, run_ffprobe
from .ingest.thumbnails import extract_frame
from .services.dispatcher import build_dispatcher
from .services.metadata_store import MetadataStore, SyncRunLog

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reelsync developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe dependencies")

    subparsers = parser.add_subparsers(dest="command")

    probe_parser = subparsers.add_parser("probe", help="Probe a local file and print its duration")
    probe_parser.add_argument("--file", required=True, help="Path to the source media file")
    probe_parser.set_defaults(func=_cmd_probe)

    thumb_parser = subparsers.add_parser("thumb", help="Extract a preview frame from a local file")
    thumb_parser.add_argument("--file", required=True, help="Path to the source media file")
    thumb_parser.add_argument("--out", required=True, help="Where to write the JPEG")
    thumb_parser.add_argument("--offset", type=float, default=None, help="Offset in seconds (default from settings)")
    thumb_parser.set_defaults(func=_cmd_thumb)

    replay_parser = subparsers.add_parser("replay", help="Run a stored event envelope through the dispatcher")
    replay_parser.add_argument("--event", required=True, help="Path to a JSON envelope")
    replay_parser.set_defaults(func=_cmd_replay)

    inspect_parser = subparsers.add_parser("inspect", help="Show catalog size, or one asset with its sync history")
    inspect_parser.add_argument("--key", default=None, help="Object key of the asset to show")
    inspect_parser.set_defaults(func=_cmd_inspect)
    return parser


def _cmd_probe(args: argparse.Namespace) -> None:
    media_path = _existing_file(args.file)
    settings = get_settings()
    try:
        raw = run_ffprobe(str(media_path), timeout_s=settings.probe_timeout_s)
    except DurationProbeError as exc:
        console.print(f"[red]ffprobe failed:[/] {exc}")
        sys.exit(3)
    duration, warning = parse_duration(raw)
    console.print_json(data={"file": str(media_path), "duration": duration, "warning": warning})


def _cmd_thumb(args: argparse.Namespace) -> None:
    media_path = _existing_file(args.file)
    settings = get_settings()
    output_path = Path(args.out).expanduser().resolve()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    offset = settings.thumbnail_offset_s if args.offset is None else args.offset
    try:
        width, height = extract_frame(
            str(media_path),
            output_path,
            offset_s=offset,
            width=settings.thumbnail_width,
            height=settings.thumbnail_height,
            timeout_s=settings.thumbnail_timeout_s,
        )
    except ThumbnailError as exc:
        console.print(f"[red]Thumbnail failed:[/] {exc}")
        sys.exit(3)
    console.print(f"[green]Wrote {width}x{height} frame to {output_path}[/]")


def _cmd_replay(args: argparse.Namespace) -> None:
    event_path = _existing_file(args.event)
    try:
        envelope = json.loads(event_path.read_text())
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid JSON in {event_path}:[/] {exc}")
        sys.exit(2)

    settings = get_settings()
    configure_logging(level=level_from_name(settings.log_level))
    result = asyncio.run(_replay(envelope))
    console.print_json(data=result)
    if result["statusCode"] >= 400:
        sys.exit(1)


async def _replay(envelope: Any) -> dict[str, Any]:
    settings = get_settings()
    database = DatabaseHandle(settings)
    try:
        if settings.database_auto_create:
            await database.create_all()
        dispatcher = build_dispatcher(settings, get_storage(settings), await database.session_factory())
        return await dispatcher.dispatch(envelope)
    finally:
        await database.dispose()


def _cmd_inspect(args: argparse.Namespace) -> None:
    configure_logging(level=level_from_name(get_settings().log_level))
    result = asyncio.run(_inspect(args.key))
    console.print_json(data=result)
    if result.get("error"):
        sys.exit(1)


async def _inspect(key: Optional[str]) -> dict[str, Any]:
    settings = get_settings()
    database = DatabaseHandle(settings)
    try:
        if settings.database_auto_create:
            await database.create_all()
        session_factory = await database.session_factory()
        store = MetadataStore(session_factory)
        if key is None:
            return {"assets": await store.count()}

        asset = await store.find_by_id(key)
        if asset is None:
            return {"key": key, "error": "Video not found"}
        runs = await SyncRunLog(session_factory).for_key(key)
        return {
            "asset": asset.to_document(),
            "syncRuns": [
                {
                    "id": run.id,
                    "eventKind": run.event_kind.value,
                    "status": run.status.value,
                    "instanceId": run.instance_id,
                    "publicAddress": run.public_address,
                    "error": run.error,
                }
                for run in runs
            ],
        }
    finally:
        await database.dispose()


def _existing_file(raw: str) -> Path:
    path = Path(raw).expanduser().resolve()
    if not path.exists():
        console.print(f"[red]File not found: {path}[/]")
        sys.exit(2)
    return path


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    checks = {
        "ffmpeg": ["ffmpeg", "-version"],
        "ffprobe": ["ffprobe", "-version"],
    }
    results = {}
    for label, cmd in checks.items():
        try:
            subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True)
            results[label] = True
        except (OSError, subprocess.CalledProcessError):
            results[label] = False

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Install ffmpeg to provide ffmpeg/ffprobe.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
