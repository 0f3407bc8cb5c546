from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Union

import numpy as np

from beatcut.errors import EngineError

MediaSource = Union[str, Path, bytes]


def is_url(source: MediaSource) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


def is_empty_source(source: MediaSource | None) -> bool:
    if source is None:
        return True
    if isinstance(source, bytes):
        return len(source) == 0
    return not str(source).strip()


def decode_mono_pcm(
    source: MediaSource,
    sample_rate: int = 22050,
    *,
    ffmpeg_binary: str = "ffmpeg",
) -> tuple[np.ndarray, int]:
    """Decode the first audio stream of a path, URL or byte blob to mono float32 samples."""

    if isinstance(source, bytes):
        input_arg = "pipe:0"
        stdin_data: bytes | None = source
    else:
        input_arg = str(source) if is_url(source) else str(Path(source).expanduser())
        stdin_data = None

    command = [
        ffmpeg_binary,
        "-v",
        "error",
        "-i",
        input_arg,
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(sample_rate),
        "-f",
        "s16le",
        "-acodec",
        "pcm_s16le",
        "pipe:1",
    ]

    try:
        completed = subprocess.run(command, input=stdin_data, check=True, capture_output=True)
    except FileNotFoundError as exc:
        raise EngineError("ffmpeg executable was not found. Install FFmpeg so it is available on PATH.") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
        raise EngineError(
            f"ffmpeg failed to decode audio from {input_arg}: {stderr[-300:]}",
            returncode=exc.returncode,
            stderr=stderr,
        ) from exc

    samples = np.frombuffer(completed.stdout, dtype=np.int16)
    return samples.astype(np.float32) / 32768.0, sample_rate
