from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import contextmanager
from time import perf_counter
from typing import Callable, Iterator

from beatcut.config import Settings
from beatcut.features.beats import BeatAnalyzer, EnergyPeakBeatBackend
from beatcut.features.remote import RemoteBeatBackend, RemoteVideoBackend
from beatcut.features.video_content import OpenCVVideoBackend, VideoContentAnalyzer
from beatcut.ingest.decode import MediaSource
from beatcut.models import AnalysisResult, ExtractedClip, PipelineResult
from beatcut.propose.segment_optimizer import optimize_segments
from beatcut.render.concat import ConcatEngine
from beatcut.render.engine import TranscodeEngine, get_engine
from beatcut.render.mux import AudioMuxer
from beatcut.render.trim import TrimExecutor
from beatcut.validate.output_validator import OutputValidator

logger = logging.getLogger(__name__)

TOTAL_STAGES = 5

ProgressCallback = Callable[[str], None]


def build_beat_analyzer(settings: Settings) -> BeatAnalyzer:
    analysis = settings.analysis
    if analysis.beat_backend == "remote":
        return BeatAnalyzer(RemoteBeatBackend(analysis.remote_endpoint, analysis.remote_timeout_seconds))
    return BeatAnalyzer(
        EnergyPeakBeatBackend(
            sample_rate=analysis.sample_rate,
            energy_threshold=analysis.energy_threshold,
            min_beat_interval_seconds=analysis.min_beat_interval_seconds,
            max_beats=analysis.max_beats,
            ffmpeg_binary=settings.engine.ffmpeg_binary,
        )
    )


def build_video_analyzer(settings: Settings) -> VideoContentAnalyzer:
    analysis = settings.analysis
    if analysis.video_backend == "remote":
        return VideoContentAnalyzer(RemoteVideoBackend(analysis.remote_endpoint, analysis.remote_timeout_seconds))
    return VideoContentAnalyzer(
        OpenCVVideoBackend(
            analysis_fps=analysis.analysis_fps,
            processing_width=analysis.processing_width,
            scene_change_multiplier=analysis.scene_change_multiplier,
            face_sample_every=analysis.face_sample_every,
        )
    )


def build_validator(settings: Settings) -> OutputValidator:
    validation = settings.validation
    return OutputValidator(
        metadata_timeout_ms=validation.metadata_timeout_ms,
        poll_interval_ms=validation.poll_interval_ms,
        window_size=validation.window_size,
        audible_threshold=validation.audible_threshold,
        silence_threshold=validation.silence_threshold,
        ffmpeg_binary=settings.engine.ffmpeg_binary,
        ffprobe_binary=settings.engine.ffprobe_binary,
    )


@contextmanager
def _stage(progress: ProgressCallback | None, index: int, label: str, total: int = TOTAL_STAGES) -> Iterator[None]:
    emit = progress or logger.info
    emit(f"[{index}/{total}] {label}...")
    started_at = perf_counter()
    try:
        yield
    except Exception:
        emit(f"[{index}/{total}] {label} failed after {perf_counter() - started_at:.1f}s")
        raise
    emit(f"[{index}/{total}] {label} done in {perf_counter() - started_at:.1f}s")


async def analyze_media(
    video_source: MediaSource,
    audio_source: MediaSource,
    *,
    settings: Settings,
    beat_analyzer: BeatAnalyzer | None = None,
    video_analyzer: VideoContentAnalyzer | None = None,
    max_duration: float | None = None,
) -> AnalysisResult:
    """Run beat and video analysis concurrently, then derive candidate segments."""

    beat_analyzer = beat_analyzer or build_beat_analyzer(settings)
    video_analyzer = video_analyzer or build_video_analyzer(settings)
    loop = asyncio.get_running_loop()
    started_at = perf_counter()

    beat_timeline, video_analysis = await asyncio.gather(
        loop.run_in_executor(None, beat_analyzer.detect_beats, audio_source),
        loop.run_in_executor(None, video_analyzer.analyze_video, video_source),
    )

    segment_settings = settings.segments
    segments = optimize_segments(
        beat_timeline.beats,
        video_analysis,
        max_duration if max_duration is not None else video_analysis.duration,
        max_beats=segment_settings.max_beats,
        lead_seconds=segment_settings.lead_seconds,
        tail_seconds=segment_settings.tail_seconds,
        confidence_step=segment_settings.confidence_step,
        confidence_floor=segment_settings.confidence_floor,
    )

    return AnalysisResult(
        beat_timeline=beat_timeline,
        video_analysis=video_analysis,
        segments=segments,
        processing_time_ms=int(round((perf_counter() - started_at) * 1000)),
    )


async def run_pipeline(
    video_source: MediaSource,
    audio_source: MediaSource,
    *,
    settings: Settings,
    engine: TranscodeEngine | None = None,
    beat_analyzer: BeatAnalyzer | None = None,
    video_analyzer: VideoContentAnalyzer | None = None,
    validator: OutputValidator | None = None,
    max_duration: float | None = None,
    run_id: str | None = None,
    progress: ProgressCallback | None = None,
) -> PipelineResult:
    """Analyze, trim every segment in order, concatenate, mux the audio track, then validate the result."""

    run_id = run_id or uuid.uuid4().hex[:8]
    engine = engine or get_engine(
        ffmpeg_binary=settings.engine.ffmpeg_binary,
        ffprobe_binary=settings.engine.ffprobe_binary,
        workdir=settings.engine.workdir,
    )
    engine.start()
    validator = validator or build_validator(settings)
    loop = asyncio.get_running_loop()
    logger.info("Pipeline run %s started", run_id)

    total = TOTAL_STAGES if settings.mux.enabled else TOTAL_STAGES - 1

    try:
        with _stage(progress, 1, "Analyze beats and video", total):
            analysis = await analyze_media(
                video_source,
                audio_source,
                settings=settings,
                beat_analyzer=beat_analyzer,
                video_analyzer=video_analyzer,
                max_duration=max_duration,
            )

        result = PipelineResult(run_id=run_id, analysis=analysis)
        if not analysis.segments:
            logger.info("Run %s: no beats found, nothing to render", run_id)
            return result

        trimmer = TrimExecutor(
            engine,
            run_id,
            min_output_bytes=settings.trim.min_output_bytes,
            verify_streams=settings.trim.verify_streams,
            reencode_preset=settings.trim.reencode_preset,
        )
        clips: list[ExtractedClip] = []
        with _stage(progress, 2, f"Extract {len(analysis.segments)} segments", total):
            try:
                await loop.run_in_executor(None, trimmer.prepare_source, video_source)
                for index, segment in enumerate(analysis.segments):
                    clip = await loop.run_in_executor(None, trimmer.extract_segment, video_source, segment, index)
                    clips.append(clip)
            finally:
                trimmer.release_source()
        result.clip_strategies = [clip.strategy for clip in clips]

        concatenator = ConcatEngine(
            engine,
            run_id,
            on_codec_mismatch=settings.concat.on_codec_mismatch,
            reencode_preset=settings.concat.reencode_preset,
        )
        with _stage(progress, 3, "Concatenate clips", total):
            result.merged = await loop.run_in_executor(None, concatenator.concatenate, clips)

        if settings.mux.enabled:
            muxer = AudioMuxer(
                engine,
                run_id,
                audio_codec=settings.mux.audio_codec,
                audio_bitrate=settings.mux.audio_bitrate,
            )
            with _stage(progress, 4, "Mux audio track", total):
                result.merged = await loop.run_in_executor(None, muxer.mux, result.merged, audio_source)
            result.audio_muxed = True

        with _stage(progress, total, "Validate merged audio", total):
            result.validation = await loop.run_in_executor(
                None,
                validator.validate,
                result.merged,
                settings.validation.timeout_ms,
            )

        return result
    finally:
        leftovers = engine.list_files(run_id)
        if leftovers:
            logger.warning("Run %s left %d engine files behind; removing", run_id, len(leftovers))
            for name in leftovers:
                engine.delete_file(name)
        logger.info("Pipeline run %s finished", run_id)


def run_pipeline_sync(video_source: MediaSource, audio_source: MediaSource, **kwargs: object) -> PipelineResult:
    return asyncio.run(run_pipeline(video_source, audio_source, **kwargs))  # type: ignore[arg-type]
