from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

from beatcut.errors import EngineError


def probe_media(
    media_path: str | Path,
    *,
    ffprobe_binary: str = "ffprobe",
    timeout_seconds: float | None = None,
) -> dict[str, Any]:
    """Probe media metadata via ffprobe and return a normalized summary."""

    source_path = Path(media_path).expanduser().resolve()
    if not source_path.exists():
        raise FileNotFoundError(f"Media file not found: {source_path}")

    payload = _run_ffprobe(source_path, ffprobe_binary=ffprobe_binary, timeout_seconds=timeout_seconds)
    return _normalize_probe_payload(source_path, payload)


def _run_ffprobe(
    media_path: Path,
    *,
    ffprobe_binary: str = "ffprobe",
    timeout_seconds: float | None = None,
) -> dict[str, Any]:
    command = [
        ffprobe_binary,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(media_path),
    ]

    try:
        completed = subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except FileNotFoundError as exc:
        raise EngineError(
            "ffprobe executable was not found. Install FFmpeg so ffprobe is available on PATH."
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise EngineError(f"ffprobe timed out after {timeout_seconds}s reading {media_path}.") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise EngineError(
            f"ffprobe failed to read media file: {media_path}.{details}",
            returncode=exc.returncode,
            stderr=stderr,
        ) from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise EngineError("ffprobe returned invalid JSON output.") from exc


def _normalize_probe_payload(media_path: Path, payload: dict[str, Any]) -> dict[str, Any]:
    stream_entries = payload.get("streams", [])
    format_entry = payload.get("format", {})

    streams = [_normalize_stream(stream) for stream in stream_entries]
    audio_streams = [stream for stream in streams if stream["codec_type"] == "audio"]
    video_streams = [stream for stream in streams if stream["codec_type"] == "video"]

    return {
        "path": str(media_path),
        "format_name": format_entry.get("format_name"),
        "duration_seconds": _to_float(format_entry.get("duration")),
        "size_bytes": _to_int(format_entry.get("size")),
        "streams": streams,
        "audio_stream_count": len(audio_streams),
        "video_stream_count": len(video_streams),
    }


def _normalize_stream(stream: dict[str, Any]) -> dict[str, Any]:
    return {
        "index": stream.get("index"),
        "codec_type": stream.get("codec_type"),
        "codec_name": stream.get("codec_name"),
        "sample_rate": _to_int(stream.get("sample_rate")),
        "channels": _to_int(stream.get("channels")),
        "width": _to_int(stream.get("width")),
        "height": _to_int(stream.get("height")),
        "duration_seconds": _to_float(stream.get("duration")),
    }


def stream_signature(metadata: dict[str, Any]) -> tuple[Any, ...]:
    """Codec parameters that must match for stream-copy concatenation."""

    signature: list[Any] = []
    for stream in metadata.get("streams", []):
        if stream["codec_type"] == "video":
            signature.append(("video", stream["codec_name"], stream["width"], stream["height"]))
        elif stream["codec_type"] == "audio":
            signature.append(("audio", stream["codec_name"], stream["sample_rate"], stream["channels"]))
    return tuple(sorted(signature, key=lambda entry: entry[0]))


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
