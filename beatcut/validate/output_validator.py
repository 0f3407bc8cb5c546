from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Protocol

import numpy as np

from beatcut.errors import EngineError
from beatcut.ingest.probe import probe_media
from beatcut.models import MergedOutput, ValidationResult

logger = logging.getLogger(__name__)

NO_AUDIO_REASON = "No audio track detected"
SILENT_REASON = "Audio track silent (low RMS)"


class MediaPlayback(Protocol):
    """Real-time playback exposing the RMS of its most recent analysis window."""

    def __enter__(self) -> "MediaPlayback": ...

    def __exit__(self, *exc_info: object) -> None: ...

    def sample_rms(self) -> float: ...


class FfmpegPlayback:
    """Plays the audio track at native speed (``-re``) and keeps the latest window of samples."""

    def __init__(
        self,
        media_path: Path,
        *,
        window_size: int = 2048,
        sample_rate: int = 44100,
        ffmpeg_binary: str = "ffmpeg",
    ) -> None:
        self.media_path = media_path
        self.window_size = window_size
        self.sample_rate = sample_rate
        self.ffmpeg_binary = ffmpeg_binary
        self._latest = np.zeros(window_size, dtype=np.float32)
        self._lock = threading.Lock()
        self._process: subprocess.Popen[bytes] | None = None
        self._reader: threading.Thread | None = None

    def __enter__(self) -> "FfmpegPlayback":
        command = [
            self.ffmpeg_binary,
            "-v",
            "error",
            "-re",
            "-i",
            str(self.media_path),
            "-vn",
            "-ac",
            "1",
            "-ar",
            str(self.sample_rate),
            "-f",
            "f32le",
            "pipe:1",
        ]
        try:
            self._process = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL)
        except FileNotFoundError as exc:
            raise EngineError("ffmpeg executable was not found. Install FFmpeg so it is available on PATH.") from exc

        self._reader = threading.Thread(target=self._pump, name="beatcut-playback", daemon=True)
        self._reader.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        process = self._process
        if process is not None:
            if process.poll() is None:
                process.terminate()
                try:
                    process.wait(timeout=1.0)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
            if process.stdout is not None:
                process.stdout.close()
        if self._reader is not None:
            self._reader.join(timeout=1.0)
        self._process = None
        self._reader = None

    def sample_rms(self) -> float:
        with self._lock:
            window = self._latest.copy()
        return float(np.sqrt(np.mean(np.square(window, dtype=np.float64))))

    def _pump(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stream = self._process.stdout
        chunk_bytes = self.window_size * 4
        try:
            while True:
                chunk = stream.read(chunk_bytes)
                if not chunk:
                    break
                usable = len(chunk) - (len(chunk) % 4)
                samples = np.frombuffer(chunk[:usable], dtype="<f4")
                with self._lock:
                    self._latest = np.concatenate((self._latest, samples))[-self.window_size :]
        except (OSError, ValueError):
            # stdout closed underneath us during shutdown
            return


PlaybackFactory = Callable[[Path], MediaPlayback]


class OutputValidator:
    """Checks that merged media carries an audible audio track. Never raises."""

    def __init__(
        self,
        *,
        metadata_timeout_ms: int = 3000,
        poll_interval_ms: int = 120,
        window_size: int = 2048,
        audible_threshold: float = 0.003,
        silence_threshold: float = 0.001,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        playback_factory: PlaybackFactory | None = None,
    ) -> None:
        self.metadata_timeout_ms = metadata_timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.window_size = window_size
        self.audible_threshold = audible_threshold
        self.silence_threshold = silence_threshold
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.playback_factory = playback_factory or self._default_playback

    def validate(self, merged_output: MergedOutput, timeout_ms: int = 4000) -> ValidationResult:
        mime_type = merged_output.mime_type or "unknown"
        media_path: Path | None = None

        try:
            handle, raw_path = tempfile.mkstemp(prefix="beatcut-validate-", suffix=".mp4")
            media_path = Path(raw_path)
            with os.fdopen(handle, "wb") as stream:
                stream.write(merged_output.data)

            metadata = probe_media(
                media_path,
                ffprobe_binary=self.ffprobe_binary,
                timeout_seconds=self.metadata_timeout_ms / 1000.0,
            )
            duration = float(metadata.get("duration_seconds") or 0.0)
            if metadata.get("audio_stream_count", 0) == 0:
                return ValidationResult(
                    has_audio_track=False,
                    rms=0.0,
                    duration=duration,
                    mime_type=mime_type,
                    success=False,
                    reason=NO_AUDIO_REASON,
                )

            max_rms = self._sample_peak_rms(media_path, timeout_ms)
            silent = max_rms <= self.silence_threshold
            result = ValidationResult(
                has_audio_track=True,
                rms=max_rms,
                duration=duration,
                mime_type=mime_type,
                success=not silent,
                reason=SILENT_REASON if silent else None,
            )
            logger.info("Validated merged output: rms=%.5f success=%s", max_rms, result.success)
            return result
        except Exception as exc:
            logger.warning("Merged output validation failed: %s", exc)
            return ValidationResult(
                has_audio_track=False,
                rms=0.0,
                duration=0.0,
                mime_type=mime_type,
                success=False,
                reason=str(exc),
            )
        finally:
            if media_path is not None:
                media_path.unlink(missing_ok=True)

    def _sample_peak_rms(self, media_path: Path, timeout_ms: int) -> float:
        """Poll playback RMS until it is audible or the deadline passes."""

        deadline = time.monotonic() + max(timeout_ms, 0) / 1000.0
        poll_seconds = self.poll_interval_ms / 1000.0
        max_rms = 0.0

        with self.playback_factory(media_path) as playback:
            while True:
                max_rms = max(max_rms, playback.sample_rms())
                if max_rms > self.audible_threshold:
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                time.sleep(min(poll_seconds, remaining))

        return max_rms

    def _default_playback(self, media_path: Path) -> MediaPlayback:
        return FfmpegPlayback(media_path, window_size=self.window_size, ffmpeg_binary=self.ffmpeg_binary)


def validate(merged_output: MergedOutput, timeout_ms: int = 4000) -> ValidationResult:
    return OutputValidator().validate(merged_output, timeout_ms=timeout_ms)
