from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from beatcut.errors import EngineError, TrimFailure
from beatcut.ingest.decode import MediaSource, is_url
from beatcut.models import ExtractedClip, VideoSegment
from beatcut.render.engine import TranscodeEngine

logger = logging.getLogger(__name__)

DEFAULT_MIN_OUTPUT_BYTES = 1000


@dataclass(frozen=True, slots=True)
class TrimStrategy:
    """One way of cutting [start, end] out of an input into an output name."""

    name: str
    reencodes: bool
    build_args: Callable[[str, str, float, float, str], list[str]]


def _post_seek_copy(source: str, output: str, start: float, end: float, preset: str) -> list[str]:
    return ["-i", source, "-ss", f"{start:.3f}", "-t", f"{end - start:.3f}", "-c", "copy", output]


def _pre_seek_copy(source: str, output: str, start: float, end: float, preset: str) -> list[str]:
    return ["-ss", f"{start:.3f}", "-i", source, "-t", f"{end - start:.3f}", "-c", "copy", output]


def _pre_seek_end_copy(source: str, output: str, start: float, end: float, preset: str) -> list[str]:
    return ["-ss", f"{start:.3f}", "-to", f"{end:.3f}", "-i", source, "-c", "copy", output]


def _filter_trim_reencode(source: str, output: str, start: float, end: float, preset: str) -> list[str]:
    return [
        "-i",
        source,
        "-vf",
        f"trim=start={start:.3f}:end={end:.3f},setpts=PTS-STARTPTS",
        "-af",
        f"atrim=start={start:.3f}:end={end:.3f},asetpts=PTS-STARTPTS",
        "-c:v",
        "libx264",
        "-preset",
        preset,
        "-c:a",
        "aac",
        output,
    ]


DEFAULT_STRATEGIES: tuple[TrimStrategy, ...] = (
    TrimStrategy("post_seek_copy", False, _post_seek_copy),
    TrimStrategy("pre_seek_copy", False, _pre_seek_copy),
    TrimStrategy("pre_seek_end_copy", False, _pre_seek_end_copy),
    TrimStrategy("filter_trim_reencode", True, _filter_trim_reencode),
)


class TrimExecutor:
    """Extracts one segment into an independent clip, falling back across strategies."""

    def __init__(
        self,
        engine: TranscodeEngine,
        run_id: str,
        *,
        strategies: tuple[TrimStrategy, ...] = DEFAULT_STRATEGIES,
        min_output_bytes: int = DEFAULT_MIN_OUTPUT_BYTES,
        verify_streams: bool = False,
        reencode_preset: str = "ultrafast",
    ) -> None:
        self.engine = engine
        self.run_id = run_id
        self.strategies = strategies
        self.min_output_bytes = min_output_bytes
        self.verify_streams = verify_streams
        self.reencode_preset = reencode_preset
        self._staged_input: str | None = None
        self._staged_data: bytes | None = None

    def prepare_source(self, source_video: MediaSource) -> str:
        """Return the ffmpeg input reference for a source.

        Byte sources are written into the namespace once and reused by later
        segments until ``release_source`` is called.
        """

        if isinstance(source_video, bytes):
            if self._staged_data is not source_video:
                self._staged_input = f"{self.run_id}_input.mp4"
                self.engine.write_file(self._staged_input, source_video)
                self._staged_data = source_video
            return self._staged_input
        if is_url(source_video):
            return str(source_video)
        return str(Path(source_video).expanduser().resolve())

    def release_source(self) -> None:
        if self._staged_input is not None:
            self.engine.delete_file(self._staged_input)
        self._staged_input = None
        self._staged_data = None

    def extract_segment(self, source_video: MediaSource, segment: VideoSegment, index: int = 0) -> ExtractedClip:
        if segment.end_time <= segment.start_time:
            raise TrimFailure(f"Segment {index} has an empty range {segment.start_time}-{segment.end_time}s.")

        prefix = f"{self.run_id}_seg{index:04d}"
        owns_input = isinstance(source_video, bytes) and self._staged_input is None
        errors: dict[str, str] = {}

        try:
            source_ref = self.prepare_source(source_video)

            for strategy in self.strategies:
                output_name = f"{prefix}_{strategy.name}.mp4"
                try:
                    data = self._attempt(strategy, source_ref, output_name, segment)
                except EngineError as exc:
                    errors[strategy.name] = str(exc)
                    logger.warning(
                        "Segment %d (%.3f-%.3fs) strategy %s failed: %s",
                        index,
                        segment.start_time,
                        segment.end_time,
                        strategy.name,
                        exc,
                    )
                    continue
                finally:
                    self.engine.delete_file(output_name)

                logger.info(
                    "Segment %d (%.3f-%.3fs) extracted with %s: %d bytes",
                    index,
                    segment.start_time,
                    segment.end_time,
                    strategy.name,
                    len(data),
                )
                return ExtractedClip(data=data, segment=segment, strategy=strategy.name)
        finally:
            if owns_input:
                self.release_source()

        raise TrimFailure(
            f"All {len(self.strategies)} trim strategies failed for segment {index} "
            f"({segment.start_time:.3f}-{segment.end_time:.3f}s)",
            strategy_errors=errors,
        )

    def _attempt(self, strategy: TrimStrategy, source_ref: str, output_name: str, segment: VideoSegment) -> bytes:
        args = strategy.build_args(
            source_ref,
            output_name,
            segment.start_time,
            segment.end_time,
            self.reencode_preset,
        )
        self.engine.exec(args)

        size = self.engine.file_size(output_name)
        if size <= self.min_output_bytes:
            raise EngineError(f"output too small ({size} bytes <= {self.min_output_bytes})")

        if self.verify_streams:
            metadata = self.engine.probe(output_name)
            if metadata["video_stream_count"] == 0:
                raise EngineError("output has no video stream")

        return self.engine.read_file(output_name)
