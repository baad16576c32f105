from __future__ import annotations

import subprocess
from pathlib import Path, PurePosixPath
from typing import Tuple

import cv2  # type: ignore

from reelsync.errors import ThumbnailError


def thumbnail_key(video_key: str, *, prefix: str = "thumbnails/") -> str:
    """Derive ``thumbnails/<basename>.jpg`` for a video key."""
    stem = PurePosixPath(video_key).stem
    return f"{prefix.rstrip('/')}/{stem}.jpg"


def extract_frame(
    source: str,
    output_path: Path,
    *,
    offset_s: float,
    width: int,
    height: int,
    timeout_s: float,
) -> Tuple[int, int]:
    """Write one JPEG frame at ``offset_s`` scaled to ``width`` x ``height``.

    Returns the measured dimensions of the written image.
    """
    command = [
        "ffmpeg",
        "-nostdin",
        "-v",
        "error",
        "-ss",
        f"{max(offset_s, 0.0):.3f}",
        "-i",
        source,
        "-frames:v",
        "1",
        "-vf",
        f"scale={width}:{height}",
        "-q:v",
        "2",
        "-y",
        str(output_path),
    ]
    try:
        subprocess.run(command, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout_s)
    except subprocess.TimeoutExpired as exc:
        output_path.unlink(missing_ok=True)
        raise ThumbnailError(f"ffmpeg timed out after {timeout_s:.1f}s") from exc
    except subprocess.CalledProcessError as exc:
        output_path.unlink(missing_ok=True)
        stderr = exc.stderr.decode(errors="replace") if isinstance(exc.stderr, bytes) else (exc.stderr or "")
        raise ThumbnailError(f"ffmpeg failed: {stderr.strip()}") from exc
    except FileNotFoundError as exc:
        raise ThumbnailError("ffmpeg binary not found") from exc

    try:
        return _image_dimensions(output_path)
    except RuntimeError as exc:
        output_path.unlink(missing_ok=True)
        raise ThumbnailError(str(exc)) from exc


def _image_dimensions(image_path: Path) -> Tuple[int, int]:
    image = cv2.imread(str(image_path))
    if image is None:
        raise RuntimeError(f"Failed to read generated thumbnail at {image_path}")
    height, width = image.shape[:2]
    return width, height


__all__ = ["thumbnail_key", "extract_frame"]
