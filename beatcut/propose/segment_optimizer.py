from __future__ import annotations

from typing import Sequence

from beatcut.models import VideoAnalysis, VideoSegment


def optimize_segments(
    beats: Sequence[float],
    video_analysis: VideoAnalysis,
    max_duration: float,
    *,
    max_beats: int = 8,
    lead_seconds: float = 0.5,
    tail_seconds: float = 1.5,
    confidence_step: float = 0.05,
    confidence_floor: float = 0.7,
) -> list[VideoSegment]:
    """Build beat-anchored candidate segments.

    Pipeline:
    1) keep the first ``max_beats`` beats
    2) window each beat as [beat - lead, beat + tail], clipped to [0, max_duration]
    3) score confidence by beat index with a floor
    4) flag windows that contain a face detection

    An empty beat list yields an empty segment list.
    """

    segments: list[VideoSegment] = []
    for index, beat in enumerate(list(beats)[: max(max_beats, 0)]):
        start = round(max(0.0, beat - lead_seconds), 3)
        end = round(min(max_duration, beat + tail_seconds), 3)
        if start >= end:
            continue

        segments.append(
            VideoSegment(
                start_time=start,
                end_time=end,
                confidence=_beat_confidence(index, confidence_step, confidence_floor),
                type="beat-based",
                has_motion=True,
                face_detected=_has_face_in_window(video_analysis, start, end),
            )
        )

    # beats are ascending already; keep beat order on ties
    return sorted(segments, key=lambda segment: segment.start_time)


def _beat_confidence(index: int, step: float, floor: float) -> float:
    return round(max(floor, 1.0 - index * step), 4)


def _has_face_in_window(video_analysis: VideoAnalysis, start: float, end: float) -> bool:
    return any(start <= face.timestamp <= end for face in video_analysis.face_detections)
