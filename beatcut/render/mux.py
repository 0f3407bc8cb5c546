from __future__ import annotations

import logging
from pathlib import Path

from beatcut.errors import EngineError, MuxFailure
from beatcut.ingest.decode import MediaSource, is_url
from beatcut.models import DEFAULT_MIME_TYPE, MergedOutput
from beatcut.render.engine import TranscodeEngine

logger = logging.getLogger(__name__)


class AudioMuxer:
    """Replaces the merged video's audio with the beat-source track, cut to the video length."""

    def __init__(
        self,
        engine: TranscodeEngine,
        run_id: str,
        *,
        audio_codec: str = "aac",
        audio_bitrate: str = "192k",
    ) -> None:
        self.engine = engine
        self.run_id = run_id
        self.audio_codec = audio_codec
        self.audio_bitrate = audio_bitrate

    def mux(self, merged_output: MergedOutput, audio_source: MediaSource) -> MergedOutput:
        video_name = f"{self.run_id}_mux_video.mp4"
        audio_name = f"{self.run_id}_mux_audio.bin"
        output_name = f"{self.run_id}_muxed.mp4"
        staged = [video_name, output_name]

        try:
            self.engine.write_file(video_name, merged_output.data)
            if isinstance(audio_source, bytes):
                staged.append(audio_name)
                self.engine.write_file(audio_name, audio_source)
                audio_ref = audio_name
            elif is_url(audio_source):
                audio_ref = str(audio_source)
            else:
                audio_ref = str(Path(audio_source).expanduser().resolve())

            args = [
                "-i",
                video_name,
                "-i",
                audio_ref,
                "-map",
                "0:v:0",
                "-map",
                "1:a:0",
                "-c:v",
                "copy",
                "-c:a",
                self.audio_codec,
                "-b:a",
                self.audio_bitrate,
                "-shortest",
                "-movflags",
                "+faststart",
                output_name,
            ]
            try:
                self.engine.exec(args)
                data = self.engine.read_file(output_name)
            except EngineError as exc:
                raise MuxFailure(f"Muxing the audio track failed: {exc}", diagnostics=exc.stderr) from exc

            logger.info("Muxed audio track onto %d-byte video: %d bytes", len(merged_output.data), len(data))
            return MergedOutput(data=data, mime_type=DEFAULT_MIME_TYPE)
        finally:
            for name in staged:
                self.engine.delete_file(name)
