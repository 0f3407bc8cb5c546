from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Any

from beatcut.errors import EngineError
from beatcut.ingest.probe import probe_media

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 500


class TranscodeEngine:
    """An ffmpeg handle bound to a private working directory (its namespace).

    Every file name passed to the engine is resolved inside the namespace, so
    ffmpeg arguments can reference plain names. Components that share the
    engine must prefix their names with a per-run identifier.
    """

    def __init__(
        self,
        *,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        workdir: str | Path | None = None,
    ) -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self._requested_workdir = Path(workdir).expanduser() if workdir else None
        self._root: Path | None = None
        self._owns_root = False
        self._lock = threading.Lock()

    @property
    def started(self) -> bool:
        return self._root is not None

    @property
    def root(self) -> Path:
        if self._root is None:
            raise EngineError("Transcode engine is not started.")
        return self._root

    def start(self) -> "TranscodeEngine":
        """Create the working namespace. Calling it again is a no-op."""

        with self._lock:
            if self._root is not None:
                return self
            if self._requested_workdir is not None:
                self._requested_workdir.mkdir(parents=True, exist_ok=True)
                self._root = self._requested_workdir.resolve()
                self._owns_root = False
            else:
                self._root = Path(tempfile.mkdtemp(prefix="beatcut-engine-"))
                self._owns_root = True
            logger.debug("Transcode engine started in %s", self._root)
            return self

    def close(self) -> None:
        with self._lock:
            if self._root is None:
                return
            if self._owns_root:
                shutil.rmtree(self._root, ignore_errors=True)
            logger.debug("Transcode engine at %s closed", self._root)
            self._root = None

    def __enter__(self) -> "TranscodeEngine":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def path(self, name: str) -> Path:
        if not name or Path(name).name != name:
            raise ValueError(f"Engine file names must be bare names, got {name!r}")
        return self.root / name

    def write_file(self, name: str, data: bytes | str) -> Path:
        target = self.path(name)
        if isinstance(data, str):
            target.write_text(data, encoding="utf-8")
        else:
            target.write_bytes(data)
        return target

    def read_file(self, name: str) -> bytes:
        target = self.path(name)
        if not target.exists():
            raise EngineError(f"Engine output {name} was not created.")
        return target.read_bytes()

    def file_size(self, name: str) -> int:
        target = self.path(name)
        return target.stat().st_size if target.exists() else 0

    def delete_file(self, name: str) -> None:
        self.path(name).unlink(missing_ok=True)

    def list_files(self, prefix: str = "") -> list[str]:
        if self._root is None:
            return []
        return sorted(entry.name for entry in self._root.iterdir() if entry.name.startswith(prefix))

    def exec(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        """Run ffmpeg with ``args`` inside the namespace; raise EngineError on failure."""

        command = [self.ffmpeg_binary, "-hide_banner", "-v", "error", "-y", *args]
        logger.debug("ffmpeg %s", " ".join(args))
        try:
            completed = subprocess.run(
                command,
                cwd=str(self.root),
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as exc:
            raise EngineError(
                "ffmpeg executable was not found. Install FFmpeg so it is available on PATH."
            ) from exc

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()
            raise EngineError(
                f"ffmpeg exited with code {completed.returncode}: {stderr[-STDERR_TAIL_CHARS:]}",
                returncode=completed.returncode,
                stderr=stderr,
            )
        return completed

    def probe(self, name: str) -> dict[str, Any]:
        return probe_media(self.path(name), ffprobe_binary=self.ffprobe_binary)


_shared_engine: TranscodeEngine | None = None
_shared_lock = threading.Lock()


def get_engine(**kwargs: Any) -> TranscodeEngine:
    """Return the process-wide engine, creating and starting it on first use.

    Keyword arguments only apply to the first call.
    """

    global _shared_engine
    with _shared_lock:
        if _shared_engine is None:
            _shared_engine = TranscodeEngine(**kwargs)
        return _shared_engine.start()


def shutdown_engine() -> None:
    global _shared_engine
    with _shared_lock:
        if _shared_engine is not None:
            _shared_engine.close()
            _shared_engine = None
