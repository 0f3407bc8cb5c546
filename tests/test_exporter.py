from __future__ import annotations

import csv
import json

from beatcut.models import (
    AnalysisResult,
    BeatTimeline,
    MergedOutput,
    PipelineResult,
    ValidationResult,
    VideoAnalysis,
    VideoSegment,
)
from beatcut.propose.exporter import (
    build_ffmpeg_trim_command,
    export_run_outputs,
    export_segments,
    generate_review_manifest,
)


def _sample_segments() -> list[VideoSegment]:
    return [
        VideoSegment(start_time=0.0, end_time=2.0, confidence=1.0, face_detected=True),
        VideoSegment(start_time=1.3, end_time=3.3, confidence=0.75, energy=0.4),
    ]


def _sample_result(merged: MergedOutput | None) -> PipelineResult:
    analysis = AnalysisResult(
        beat_timeline=BeatTimeline(beats=(0.5, 1.8), tempo=46, confidence=0.85),
        video_analysis=VideoAnalysis(duration=10.0, scene_changes=(2.5,), quality_score=0.8),
        segments=_sample_segments(),
        processing_time_ms=42,
    )
    validation = ValidationResult(has_audio_track=True, rms=0.02, duration=4.0, mime_type="video/mp4", success=True)
    return PipelineResult(
        run_id="run1",
        analysis=analysis,
        merged=merged,
        validation=validation if merged is not None else None,
        clip_strategies=["post_seek_copy", "pre_seek_copy"] if merged is not None else [],
    )


def test_export_segments_json(tmp_path) -> None:
    out = tmp_path / "segments.json"
    export_segments(_sample_segments(), str(out))

    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload[0]["start_time"] == 0.0
    assert payload[0]["face_detected"] is True
    assert payload[1]["duration"] == 2.0


def test_export_segments_csv(tmp_path) -> None:
    out = tmp_path / "nested" / "segments.csv"
    export_segments(_sample_segments(), out)

    with out.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))

    assert rows[1]["start_time"] == "1.300"
    assert rows[0]["energy"] == ""
    assert rows[1]["energy"] == "0.4"


def test_generate_review_manifest_with_ffmpeg_command() -> None:
    manifest = generate_review_manifest(_sample_segments(), video_path="/tmp/source clip.mp4")

    assert manifest[0]["confidence_label"] == "high"
    assert manifest[1]["confidence_label"] == "low"
    assert "-ss 1.300" in manifest[1]["ffmpeg_command"]
    assert "'/tmp/source clip.mp4'" in manifest[1]["ffmpeg_command"]


def test_export_run_outputs_writes_media_and_report(tmp_path) -> None:
    exported = export_run_outputs(
        _sample_result(MergedOutput(data=b"merged-bytes")),
        tmp_path / "out" / "final.mp4",
        video_path="/tmp/clip.mp4",
    )

    assert exported["media"].read_bytes() == b"merged-bytes"
    assert exported["report"].name == "final_report.json"
    report = json.loads(exported["report"].read_text(encoding="utf-8"))
    assert report["merged"] == {"size_bytes": 12, "mime_type": "video/mp4"}
    assert report["validation"]["success"] is True
    assert report["clip_strategies"] == ["post_seek_copy", "pre_seek_copy"]
    assert report["analysis"]["beat_timeline"]["beats"] == [0.5, 1.8]
    assert len(report["review"]) == 2


def test_export_run_outputs_without_merged_media(tmp_path) -> None:
    exported = export_run_outputs(_sample_result(None), tmp_path / "final.mp4")

    assert "media" not in exported
    assert not (tmp_path / "final.mp4").exists()
    assert json.loads(exported["report"].read_text(encoding="utf-8"))["merged"] is None


def test_build_ffmpeg_trim_command() -> None:
    cmd = build_ffmpeg_trim_command(video_path="/tmp/clip.mp4", segment=_sample_segments()[1], output_name="seg.mp4")

    assert cmd == "ffmpeg -ss 1.300 -i /tmp/clip.mp4 -t 2.000 -c copy seg.mp4"
