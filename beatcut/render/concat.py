from __future__ import annotations

import logging
from typing import Any, Literal, Sequence

from beatcut.errors import ConcatFailure, EngineError
from beatcut.ingest.probe import stream_signature
from beatcut.models import DEFAULT_MIME_TYPE, ExtractedClip, MergedOutput
from beatcut.render.engine import TranscodeEngine
from beatcut.render.trim import DEFAULT_STRATEGIES

logger = logging.getLogger(__name__)

REENCODING_STRATEGIES = frozenset(strategy.name for strategy in DEFAULT_STRATEGIES if strategy.reencodes)


class ConcatEngine:
    """Joins ordered clips with the concat demuxer."""

    def __init__(
        self,
        engine: TranscodeEngine,
        run_id: str,
        *,
        on_codec_mismatch: Literal["reencode", "fail"] = "reencode",
        reencode_preset: str = "veryfast",
        probe_clips: bool = True,
    ) -> None:
        self.engine = engine
        self.run_id = run_id
        self.on_codec_mismatch = on_codec_mismatch
        self.reencode_preset = reencode_preset
        self.probe_clips = probe_clips

    def concatenate(self, ordered_clips: Sequence[ExtractedClip]) -> MergedOutput:
        if not ordered_clips:
            raise ConcatFailure("Nothing to concatenate: clip list is empty.")

        clip_names = [f"{self.run_id}_clip_{idx:04d}.mp4" for idx in range(len(ordered_clips))]
        manifest_name = f"{self.run_id}_concat.txt"
        output_name = f"{self.run_id}_merged.mp4"

        try:
            for name, clip in zip(clip_names, ordered_clips):
                self.engine.write_file(name, clip.data)

            manifest = "".join(f"file '{name}'\n" for name in clip_names)
            self.engine.write_file(manifest_name, manifest)

            mismatch = self._codec_mismatch(ordered_clips, clip_names)
            if mismatch and self.on_codec_mismatch == "fail":
                raise ConcatFailure(f"Clips have incompatible codec parameters: {mismatch}", diagnostics=mismatch)

            args = ["-f", "concat", "-safe", "0", "-i", manifest_name]
            if mismatch:
                logger.warning("Re-encoding during concatenation: %s", mismatch)
                args += ["-c:v", "libx264", "-preset", self.reencode_preset, "-c:a", "aac"]
            else:
                args += ["-c", "copy"]
            args += ["-movflags", "+faststart", output_name]

            try:
                self.engine.exec(args)
                data = self.engine.read_file(output_name)
            except EngineError as exc:
                raise ConcatFailure(f"Concatenation failed: {exc}", diagnostics=exc.stderr) from exc

            logger.info("Concatenated %d clips into %d bytes", len(ordered_clips), len(data))
            return MergedOutput(data=data, mime_type=DEFAULT_MIME_TYPE)
        finally:
            for name in [*clip_names, manifest_name, output_name]:
                self.engine.delete_file(name)

    def _codec_mismatch(self, clips: Sequence[ExtractedClip], clip_names: list[str]) -> str:
        """Describe why the clips cannot be stream-copied together, or return ''."""

        strategies = {clip.strategy for clip in clips}
        reencoded = strategies & REENCODING_STRATEGIES
        if reencoded and strategies - REENCODING_STRATEGIES:
            return f"mixed stream-copy and re-encoded clips ({', '.join(sorted(strategies))})"

        if not self.probe_clips or len(clips) < 2:
            return ""

        signatures: dict[tuple[Any, ...], int] = {}
        for idx, name in enumerate(clip_names):
            try:
                signature = stream_signature(self.engine.probe(name))
            except EngineError as exc:
                logger.warning("Could not probe %s before concatenation: %s", name, exc)
                return ""
            signatures.setdefault(signature, idx)

        if len(signatures) > 1:
            first, *others = signatures.items()
            return f"clip {others[0][1]} parameters {others[0][0]} differ from clip {first[1]} parameters {first[0]}"
        return ""
