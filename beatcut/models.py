from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

SegmentType = Literal["beat-based", "scene-change", "face-focused"]

DEFAULT_TEMPO = 120
DEFAULT_MIME_TYPE = "video/mp4"


@dataclass(frozen=True, slots=True)
class BeatTimeline:
    """Ascending beat timestamps (seconds) with a derived tempo."""

    beats: tuple[float, ...]
    tempo: int = DEFAULT_TEMPO
    confidence: float = 0.0
    energy: float | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["beats"] = list(self.beats)
        return payload


@dataclass(frozen=True, slots=True)
class BoundingBox:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class FaceDetection:
    timestamp: float
    confidence: float
    bounding_box: BoundingBox


@dataclass(frozen=True, slots=True)
class VideoAnalysis:
    """Content features of one video source."""

    duration: float
    scene_changes: tuple[float, ...] = ()
    face_detections: tuple[FaceDetection, ...] = ()
    quality_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "duration": self.duration,
            "scene_changes": list(self.scene_changes),
            "face_detections": [asdict(face) for face in self.face_detections],
            "quality_score": self.quality_score,
        }


@dataclass(frozen=True, slots=True)
class VideoSegment:
    """A time range of the source video selected for the output."""

    start_time: float
    end_time: float
    confidence: float
    type: SegmentType = "beat-based"
    has_motion: bool = True
    face_detected: bool = False
    energy: float | None = None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(slots=True)
class AnalysisResult:
    beat_timeline: BeatTimeline
    video_analysis: VideoAnalysis
    segments: list[VideoSegment]
    processing_time_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "beat_timeline": self.beat_timeline.to_dict(),
            "video_analysis": self.video_analysis.to_dict(),
            "segments": [asdict(segment) for segment in self.segments],
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass(slots=True)
class ExtractedClip:
    """Bytes of one extracted segment plus the strategy that produced them."""

    data: bytes
    segment: VideoSegment
    strategy: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(slots=True)
class MergedOutput:
    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE


@dataclass(slots=True)
class ValidationResult:
    has_audio_track: bool
    rms: float
    duration: float
    mime_type: str
    success: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class PipelineResult:
    """Everything a caller gets back from one pipeline run."""

    run_id: str
    analysis: AnalysisResult
    merged: MergedOutput | None = None
    validation: ValidationResult | None = None
    clip_strategies: list[str] = field(default_factory=list)
    audio_muxed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "analysis": self.analysis.to_dict(),
            "merged": (
                {"size_bytes": len(self.merged.data), "mime_type": self.merged.mime_type}
                if self.merged is not None
                else None
            ),
            "validation": self.validation.to_dict() if self.validation is not None else None,
            "clip_strategies": list(self.clip_strategies),
            "audio_muxed": self.audio_muxed,
        }
