from __future__ import annotations

import json
import subprocess
from typing import Any, Dict, Optional, Tuple

from reelsync.errors import DurationProbeError

FFPROBE_BINARY = "ffprobe"


def run_ffprobe(source: str, *, timeout_s: float) -> Dict[str, Any]:
    """Run ffprobe against a path or URL and return its JSON output.

    Only the container header is read, so probing a presigned URL streams a
    small prefix of the object rather than downloading it.

    Args:
        source: Local path, ``file://`` URI or HTTP(S) URL.
        timeout_s: Hard limit for the subprocess.

    Returns:
        The parsed ffprobe JSON document.
    """
    command = [
        FFPROBE_BINARY,
        "-v",
        "error",
        "-show_format",
        "-show_streams",
        "-print_format",
        "json",
        source,
    ]
    try:
        proc = subprocess.run(
            command,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired as exc:
        raise DurationProbeError(f"ffprobe timed out after {timeout_s:.1f}s") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise DurationProbeError(f"ffprobe failed: {stderr}") from exc
    except FileNotFoundError as exc:
        raise DurationProbeError("ffprobe binary not found") from exc

    try:
        return json.loads(proc.stdout)
    except json.JSONDecodeError as exc:
        raise DurationProbeError("ffprobe returned invalid JSON") from exc


def parse_duration(raw: Dict[str, Any]) -> Tuple[Optional[float], Optional[str]]:
    """Pick the media duration from ffprobe output.

    The container duration wins; the longest video stream duration is the
    fallback for containers that do not report one.

    Returns:
        A tuple of the duration in seconds (or None) and an optional warning.
    """
    format_info = raw.get("format") or {}
    duration = _positive_float(format_info.get("duration"))
    if duration is not None:
        return duration, None

    stream_durations = [
        _positive_float(stream.get("duration"))
        for stream in raw.get("streams") or []
        if stream.get("codec_type") == "video"
    ]
    candidates = [value for value in stream_durations if value is not None]
    if candidates:
        return max(candidates), "duration_from_stream"
    return None, "duration_unavailable"


def probe_duration(source: str, *, timeout_s: float) -> float:
    """Return the duration of ``source`` in seconds or raise ``DurationProbeError``."""
    raw = run_ffprobe(source, timeout_s=timeout_s)
    duration, _ = parse_duration(raw)
    if duration is None:
        raise DurationProbeError("duration_unavailable")
    return duration


def _positive_float(value: Any) -> Optional[float]:
    if value in (None, "N/A", ""):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed <= 0:
        return None
    return parsed


__all__ = ["run_ffprobe", "parse_duration", "probe_duration"]
