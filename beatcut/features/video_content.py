from __future__ import annotations

import logging
import math
import tempfile
from pathlib import Path
from typing import Any, Protocol

import numpy as np

from beatcut.errors import AnalysisFailure
from beatcut.ingest.decode import MediaSource, is_empty_source, is_url
from beatcut.models import BoundingBox, FaceDetection, VideoAnalysis

logger = logging.getLogger(__name__)

# Laplacian variance at which a frame counts as fully sharp
SHARPNESS_SATURATION = 500.0


class VideoBackend(Protocol):
    def analyze(self, video_source: MediaSource) -> VideoAnalysis: ...


class VideoContentAnalyzer:
    """Derives scene changes, faces and a quality score from a video source."""

    def __init__(self, backend: VideoBackend) -> None:
        self.backend = backend

    def analyze_video(self, video_source: MediaSource) -> VideoAnalysis:
        if is_empty_source(video_source):
            raise AnalysisFailure("Video source is empty.")

        try:
            analysis = self.backend.analyze(video_source)
        except AnalysisFailure:
            raise
        except Exception as exc:
            raise AnalysisFailure(f"Video analysis backend failed: {exc}") from exc

        check_video_analysis(analysis)
        logger.info(
            "Video analysis: duration=%.2fs scene_changes=%d faces=%d quality=%.2f",
            analysis.duration,
            len(analysis.scene_changes),
            len(analysis.face_detections),
            analysis.quality_score,
        )
        return analysis


def check_video_analysis(analysis: VideoAnalysis) -> None:
    """Raise AnalysisFailure unless every timestamp lies within [0, duration]."""

    if not isinstance(analysis, VideoAnalysis):
        raise AnalysisFailure("Video analysis backend returned an unexpected type.")
    if not math.isfinite(analysis.duration) or analysis.duration < 0:
        raise AnalysisFailure(f"Invalid video duration: {analysis.duration!r}")
    if not 0.0 <= analysis.quality_score <= 1.0:
        raise AnalysisFailure(f"Quality score out of range: {analysis.quality_score!r}")

    previous = -1.0
    for timestamp in analysis.scene_changes:
        if not 0.0 <= timestamp <= analysis.duration:
            raise AnalysisFailure(f"Scene change {timestamp} outside [0, {analysis.duration}].")
        if timestamp <= previous:
            raise AnalysisFailure("Scene change timestamps must be strictly ascending.")
        previous = timestamp

    for face in analysis.face_detections:
        if not 0.0 <= face.timestamp <= analysis.duration:
            raise AnalysisFailure(f"Face detection at {face.timestamp} outside [0, {analysis.duration}].")
        if face.bounding_box.width < 0 or face.bounding_box.height < 0:
            raise AnalysisFailure("Face bounding box dimensions must be non-negative.")
        if not 0.0 <= face.confidence <= 1.0:
            raise AnalysisFailure(f"Face confidence out of range: {face.confidence!r}")


class OpenCVVideoBackend:
    """Low-FPS frame differencing, Haar-cascade faces and Laplacian sharpness."""

    def __init__(
        self,
        *,
        analysis_fps: float = 2.0,
        processing_width: int = 320,
        scene_change_multiplier: float = 2.5,
        face_sample_every: int = 4,
    ) -> None:
        self.analysis_fps = analysis_fps
        self.processing_width = processing_width
        self.scene_change_multiplier = scene_change_multiplier
        self.face_sample_every = max(face_sample_every, 1)

    def analyze(self, video_source: MediaSource) -> VideoAnalysis:
        if isinstance(video_source, bytes):
            # cv2.VideoCapture only opens paths and URLs
            with tempfile.NamedTemporaryFile(prefix="beatcut-video-", suffix=".mp4", delete=False) as handle:
                handle.write(video_source)
                spooled_path = Path(handle.name)
            try:
                return self._analyze_capture(str(spooled_path))
            finally:
                spooled_path.unlink(missing_ok=True)

        source = str(video_source) if is_url(video_source) else str(Path(video_source).expanduser().resolve())
        if not is_url(video_source) and not Path(source).exists():
            raise FileNotFoundError(f"Video file not found: {source}")
        return self._analyze_capture(source)

    def _analyze_capture(self, source: str) -> VideoAnalysis:
        import cv2

        capture = cv2.VideoCapture(source)
        if not capture.isOpened():
            raise AnalysisFailure(f"Unable to open video for content analysis: {source}")

        cascade = cv2.CascadeClassifier(cv2.data.haarcascades + "haarcascade_frontalface_default.xml")

        native_fps = float(capture.get(cv2.CAP_PROP_FPS) or 0.0)
        if native_fps <= 0:
            native_fps = max(self.analysis_fps, 1.0)
        frame_interval = max(int(round(native_fps / max(self.analysis_fps, 0.1))), 1)

        samples: list[dict[str, Any]] = []
        faces: list[FaceDetection] = []
        sharpness_values: list[float] = []
        prev_gray = None
        frame_index = 0

        try:
            while True:
                ok, frame = capture.read()
                if not ok:
                    break

                if frame_index % frame_interval != 0:
                    frame_index += 1
                    continue

                timestamp_seconds = float(capture.get(cv2.CAP_PROP_POS_MSEC) / 1000.0)
                source_width = int(frame.shape[1])
                frame = _resize_for_analysis(frame, self.processing_width, cv2)
                gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

                if prev_gray is None:
                    motion_score = 0.0
                else:
                    motion_score = float(np.mean(cv2.absdiff(gray, prev_gray)) / 255.0)

                samples.append({"timestamp_seconds": round(timestamp_seconds, 3), "motion_score": motion_score})
                sharpness_values.append(float(cv2.Laplacian(gray, cv2.CV_64F).var()))

                if (len(samples) - 1) % self.face_sample_every == 0:
                    faces.extend(_detect_faces(cascade, gray, timestamp_seconds, frame.shape[1], source_width))

                prev_gray = gray
                frame_index += 1

            frame_count = float(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0)
        finally:
            capture.release()

        duration = _estimate_duration_seconds(samples, frame_count, native_fps)
        scene_changes = find_scene_changes(samples, self.scene_change_multiplier)
        quality = _quality_score(sharpness_values)

        return VideoAnalysis(
            duration=round(duration, 3),
            scene_changes=tuple(scene_changes),
            face_detections=tuple(faces),
            quality_score=quality,
        )


def find_scene_changes(samples: list[dict[str, Any]], multiplier: float) -> list[float]:
    """Timestamps whose motion score reaches mean + multiplier * std."""

    motion_values = [sample["motion_score"] for sample in samples[1:]]
    if not motion_values:
        return []

    motion_mean = float(np.mean(motion_values))
    motion_std = float(np.std(motion_values))
    if motion_std == 0:
        return []
    threshold = motion_mean + multiplier * motion_std

    changes: list[float] = []
    for sample in samples[1:]:
        timestamp = sample["timestamp_seconds"]
        if sample["motion_score"] >= threshold and (not changes or timestamp > changes[-1]):
            changes.append(timestamp)
    return changes


def _resize_for_analysis(frame: Any, processing_width: int, cv2_module: Any) -> Any:
    if processing_width <= 0:
        return frame

    height, width = frame.shape[:2]
    if width <= processing_width:
        return frame

    target_height = max(int(round(height * (processing_width / float(width)))), 1)
    return cv2_module.resize(frame, (processing_width, target_height), interpolation=cv2_module.INTER_AREA)


def _detect_faces(
    cascade: Any,
    gray: Any,
    timestamp_seconds: float,
    frame_width: int,
    source_width: int | None,
) -> list[FaceDetection]:
    if cascade is None or cascade.empty():
        return []

    rects, _, level_weights = cascade.detectMultiScale3(
        gray,
        scaleFactor=1.1,
        minNeighbors=5,
        outputRejectLevels=True,
    )
    scale = (source_width / float(frame_width)) if source_width else 1.0

    detections: list[FaceDetection] = []
    weights = [float(value) for value in np.ravel(level_weights)] if len(rects) else []
    for (x, y, w, h), weight in zip(rects, weights):
        detections.append(
            FaceDetection(
                timestamp=round(timestamp_seconds, 3),
                confidence=_weight_to_confidence(weight),
                bounding_box=BoundingBox(
                    x=int(x * scale),
                    y=int(y * scale),
                    width=max(int(w * scale), 0),
                    height=max(int(h * scale), 0),
                ),
            )
        )
    return detections


def _weight_to_confidence(weight: float) -> float:
    # cascade level weights are unbounded; squash into (0, 1)
    return round(1.0 / (1.0 + math.exp(-weight)), 4)


def _quality_score(sharpness_values: list[float]) -> float:
    if not sharpness_values:
        return 0.0
    normalized = [min(value / SHARPNESS_SATURATION, 1.0) for value in sharpness_values]
    return round(sum(normalized) / len(normalized), 4)


def _estimate_duration_seconds(samples: list[dict[str, Any]], frame_count: float, native_fps: float) -> float:
    sample_based = samples[-1]["timestamp_seconds"] if samples else 0.0
    frame_based = frame_count / native_fps if native_fps > 0 else 0.0
    return max(sample_based, frame_based)


class StaticVideoBackend:
    """Returns a fixed analysis; useful when features were computed elsewhere."""

    def __init__(self, analysis: VideoAnalysis) -> None:
        self.analysis = analysis

    def analyze(self, video_source: MediaSource) -> VideoAnalysis:
        return self.analysis
