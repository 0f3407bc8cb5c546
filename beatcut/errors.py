from __future__ import annotations


class BeatcutError(RuntimeError):
    """Base class for failures that abort a pipeline run."""


class AnalysisFailure(BeatcutError):
    """Beat or video analysis backend was unreachable or returned malformed data."""


class EngineError(BeatcutError):
    """The transcoding engine exited non-zero or could not be started."""

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class TrimFailure(BeatcutError):
    """Every extraction strategy was exhausted for one segment."""

    def __init__(self, message: str, *, strategy_errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.strategy_errors = dict(strategy_errors or {})


class ConcatFailure(BeatcutError):
    """Demuxer-level join failed."""

    def __init__(self, message: str, *, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


class MuxFailure(BeatcutError):
    """The audio track could not be muxed onto the merged video."""

    def __init__(self, message: str, *, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics
