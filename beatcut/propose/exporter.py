from __future__ import annotations

import csv
import json
import shlex
from pathlib import Path
from typing import Any

from beatcut.models import PipelineResult, VideoSegment


def export_segments(segments: list[VideoSegment], output_path: str | Path) -> Path:
    """Export segments to JSON (default) or CSV, based on file extension."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == ".csv":
        _write_csv(segments, path)
    else:
        path.write_text(json.dumps([_segment_row(segment) for segment in segments], indent=2), encoding="utf-8")

    return path


def export_run_outputs(
    result: PipelineResult,
    output_path: str | Path,
    *,
    video_path: str | None = None,
) -> dict[str, Path]:
    """Write the merged media and a JSON run report next to it."""

    media_path = Path(output_path)
    media_path.parent.mkdir(parents=True, exist_ok=True)
    report_path = media_path.with_name(f"{media_path.stem}_report.json")

    exported: dict[str, Path] = {}
    if result.merged is not None:
        media_path.write_bytes(result.merged.data)
        exported["media"] = media_path

    report = result.to_dict()
    report["review"] = generate_review_manifest(result.analysis.segments, video_path=video_path)
    report_path.write_text(json.dumps(report, indent=2, ensure_ascii=False), encoding="utf-8")
    exported["report"] = report_path

    return exported


def generate_review_manifest(
    segments: list[VideoSegment],
    *,
    video_path: str | None = None,
) -> list[dict[str, Any]]:
    manifest: list[dict[str, Any]] = []
    for idx, segment in enumerate(segments, start=1):
        entry = {
            "index": idx,
            **_segment_row(segment),
            "confidence_label": _confidence_label(segment.confidence),
        }
        if video_path:
            entry["ffmpeg_command"] = build_ffmpeg_trim_command(
                video_path=video_path,
                segment=segment,
                output_name=f"segment_{idx:04d}.mp4",
            )
        manifest.append(entry)
    return manifest


def build_ffmpeg_trim_command(*, video_path: str, segment: VideoSegment, output_name: str) -> str:
    """Copy-paste ffmpeg command that cuts a segment with stream copy."""

    return (
        "ffmpeg "
        f"-ss {segment.start_time:.3f} "
        f"-i {shlex.quote(video_path)} "
        f"-t {segment.duration:.3f} "
        "-c copy "
        f"{shlex.quote(output_name)}"
    )


def _segment_row(segment: VideoSegment) -> dict[str, Any]:
    return {
        "start_time": segment.start_time,
        "end_time": segment.end_time,
        "duration": round(segment.duration, 3),
        "confidence": segment.confidence,
        "type": segment.type,
        "has_motion": segment.has_motion,
        "face_detected": segment.face_detected,
        "energy": segment.energy,
    }


def _write_csv(segments: list[VideoSegment], path: Path) -> None:
    fields = ["start_time", "end_time", "duration", "confidence", "type", "has_motion", "face_detected", "energy"]

    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fields)
        writer.writeheader()
        for segment in segments:
            row = _segment_row(segment)
            row["start_time"] = f"{segment.start_time:.3f}"
            row["end_time"] = f"{segment.end_time:.3f}"
            row["energy"] = "" if segment.energy is None else segment.energy
            writer.writerow(row)


def _confidence_label(confidence: float) -> str:
    if confidence >= 0.9:
        return "high"
    if confidence >= 0.8:
        return "medium"
    return "low"
