from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

import beatcut.cli as cli
from beatcut.config import Settings
from beatcut.errors import TrimFailure
from beatcut.features.beats import StaticBeatBackend
from beatcut.models import (
    AnalysisResult,
    BeatTimeline,
    MergedOutput,
    PipelineResult,
    ValidationResult,
    VideoAnalysis,
    VideoSegment,
)


def _analysis() -> AnalysisResult:
    return AnalysisResult(
        beat_timeline=BeatTimeline(beats=(0.5, 1.8), tempo=46, confidence=0.85),
        video_analysis=VideoAnalysis(duration=10.0),
        segments=[VideoSegment(0.0, 2.0, 1.0), VideoSegment(1.3, 3.3, 0.95)],
        processing_time_ms=5,
    )


def _validation(success: bool) -> ValidationResult:
    return ValidationResult(
        has_audio_track=True,
        rms=0.02 if success else 0.0,
        duration=4.0,
        mime_type="video/mp4",
        success=success,
        reason=None if success else "Audio track silent (low RMS)",
    )


def _inputs(tmp_path: Path) -> tuple[Path, Path]:
    video = tmp_path / "clip.mp4"
    audio = tmp_path / "song.mp3"
    video.write_bytes(b"video")
    audio.write_bytes(b"audio")
    return video, audio


def test_run_command_prints_clean_error_without_traceback(tmp_path: Path, monkeypatch) -> None:
    video, audio = _inputs(tmp_path)
    shutdowns: list[bool] = []

    async def _failing_pipeline(*args, progress=None, **kwargs):
        progress("[2/5] Extract 2 segments...")
        raise TrimFailure("All 4 trim strategies failed for segment 0 (0.000-2.000s)")

    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())
    monkeypatch.setattr(cli, "run_pipeline", _failing_pipeline)
    monkeypatch.setattr(cli, "shutdown_engine", lambda: shutdowns.append(True))

    result = CliRunner().invoke(cli.app, ["run", str(video), str(audio), "-o", str(tmp_path / "out.mp4")])

    assert result.exit_code == 1
    assert "[2/5] Extract 2 segments..." in result.output
    assert "Error: All 4 trim strategies failed" in result.output
    assert "Traceback" not in result.output
    assert shutdowns == [True]


def test_run_command_writes_media_and_report(tmp_path: Path, monkeypatch) -> None:
    video, audio = _inputs(tmp_path)
    seen: dict[str, object] = {}

    async def _pipeline(video_source, audio_source, **kwargs):
        seen["video"] = video_source
        seen["audio"] = audio_source
        return PipelineResult(
            run_id="abc123",
            analysis=_analysis(),
            merged=MergedOutput(data=b"merged"),
            validation=_validation(True),
            clip_strategies=["post_seek_copy", "post_seek_copy"],
        )

    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())
    monkeypatch.setattr(cli, "run_pipeline", _pipeline)
    monkeypatch.setattr(cli, "shutdown_engine", lambda: None)

    out = tmp_path / "out" / "final.mp4"
    result = CliRunner().invoke(cli.app, ["run", str(video), str(audio), "-o", str(out)])

    assert result.exit_code == 0
    assert seen["video"] == str(video.resolve())
    assert seen["audio"] == str(audio.resolve())
    assert out.read_bytes() == b"merged"
    assert (tmp_path / "out" / "final_report.json").exists()
    assert '"status": "ok"' in result.output


def test_run_command_strict_fails_on_silent_output(tmp_path: Path, monkeypatch) -> None:
    video, audio = _inputs(tmp_path)

    async def _pipeline(*args, **kwargs):
        return PipelineResult(
            run_id="abc123",
            analysis=_analysis(),
            merged=MergedOutput(data=b"merged"),
            validation=_validation(False),
        )

    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())
    monkeypatch.setattr(cli, "run_pipeline", _pipeline)
    monkeypatch.setattr(cli, "shutdown_engine", lambda: None)

    args = ["run", str(video), str(audio), "-o", str(tmp_path / "final.mp4")]
    assert CliRunner().invoke(cli.app, args).exit_code == 0
    assert CliRunner().invoke(cli.app, [*args, "--strict"]).exit_code == 2


def test_analyze_command_uses_beats_file(tmp_path: Path, monkeypatch) -> None:
    video, _ = _inputs(tmp_path)
    beats_file = tmp_path / "beats.json"
    beats_file.write_text(json.dumps({"beats": [0.5, 1.8, 3.2]}), encoding="utf-8")
    seen: dict[str, object] = {}

    async def _analyze(video_source, audio_source, *, beat_analyzer=None, **kwargs):
        seen["backend"] = beat_analyzer.backend
        seen["audio"] = audio_source
        return _analysis()

    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())
    monkeypatch.setattr(cli, "analyze_media", _analyze)

    segments_out = tmp_path / "segments.csv"
    result = CliRunner().invoke(
        cli.app,
        [
            "analyze",
            str(video),
            "https://cdn.example/song.mp3",
            "--beats-file",
            str(beats_file),
            "--segments-out",
            str(segments_out),
        ],
    )

    assert result.exit_code == 0
    assert isinstance(seen["backend"], StaticBeatBackend)
    assert seen["backend"].beats == [0.5, 1.8, 3.2]
    assert seen["audio"] == "https://cdn.example/song.mp3"
    assert segments_out.exists()
    assert '"tempo": 46' in result.output


def test_analyze_command_reports_missing_video(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())

    result = CliRunner().invoke(cli.app, ["analyze", str(tmp_path / "missing.mp4"), "https://cdn.example/a.mp3"])

    assert result.exit_code == 1
    assert "Error: Video file not found" in result.output


def test_validate_command_exit_code_follows_result(tmp_path: Path, monkeypatch) -> None:
    media = tmp_path / "merged.mp4"
    media.write_bytes(b"merged")
    outcomes = iter([_validation(True), _validation(False)])

    class _Validator:
        def validate(self, merged_output, timeout_ms=4000):
            assert merged_output.data == b"merged"
            return next(outcomes)

    monkeypatch.setattr(cli, "_bootstrap", lambda *_: Settings())
    monkeypatch.setattr(cli, "build_validator", lambda _settings: _Validator())

    assert CliRunner().invoke(cli.app, ["validate", str(media)]).exit_code == 0
    failed = CliRunner().invoke(cli.app, ["validate", str(media), "--timeout-ms", "500"])
    assert failed.exit_code == 1
    assert "low RMS" in failed.output


def test_config_show_prints_resolved_settings(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("BEATCUT_CONFIG", raising=False)
    monkeypatch.setattr(cli, "configure_logging", lambda *_args, **_kwargs: None)

    result = CliRunner().invoke(cli.app, ["config", "show", "--config", str(tmp_path / "absent.yaml")])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["validation"]["audible_threshold"] == 0.003
    assert payload["concat"]["on_codec_mismatch"] == "reencode"
