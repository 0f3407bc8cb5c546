from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import typer

from beatcut.config import Settings, load_settings
from beatcut.errors import BeatcutError
from beatcut.features.beats import BeatAnalyzer, StaticBeatBackend, generate_smart_beats
from beatcut.ingest.probe import probe_media
from beatcut.logging_config import configure_logging
from beatcut.models import MergedOutput
from beatcut.pipeline import analyze_media, build_validator, run_pipeline
from beatcut.propose.exporter import export_run_outputs, export_segments
from beatcut.render.engine import shutdown_engine

app = typer.Typer(help="Cut a video to the beats of an audio track and check the result is audible.")
config_app = typer.Typer(help="Configuration commands.")
app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

CONFIG_OPTION = typer.Option(
    Path("configs/default.yaml"),
    "--config",
    "-c",
    envvar="BEATCUT_CONFIG",
    help="Path to YAML configuration file.",
)


def _bootstrap(config_path: Path, verbose: bool = False) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging, verbose=verbose)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _progress(message: str) -> None:
    typer.echo(message, err=True)


def _load_beats_file(path: Path) -> list[float]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("beats")
    if not isinstance(payload, list):
        raise ValueError(f"Beats file {path} must hold a JSON list or an object with a 'beats' list.")
    return [float(value) for value in payload]


def _beat_analyzer_override(
    video_path: Path,
    beats_file: Path | None,
    tempo_grid: int | None,
    seed: int | None,
    settings: Settings,
) -> BeatAnalyzer | None:
    if beats_file is not None:
        return BeatAnalyzer(StaticBeatBackend(_load_beats_file(beats_file)))
    if tempo_grid is not None:
        metadata = probe_media(video_path, ffprobe_binary=settings.engine.ffprobe_binary)
        duration = float(metadata.get("duration_seconds") or 0.0)
        return BeatAnalyzer(StaticBeatBackend(generate_smart_beats(duration, tempo_grid, seed=seed)))
    return None


def _resolve_existing(path: Path, label: str) -> Path:
    resolved = path.expanduser().resolve()
    if not resolved.exists():
        raise FileNotFoundError(f"{label} file not found: {resolved}")
    return resolved


def _audio_source(audio: str) -> str:
    if audio.startswith(("http://", "https://")):
        return audio
    return str(_resolve_existing(Path(audio), "Audio"))


@config_app.command("show")
def show_config(config_path: Path = CONFIG_OPTION) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command()
def analyze(
    video_path: Path = typer.Argument(..., help="Source video file."),
    audio: str = typer.Argument(..., help="Audio file path or http(s) URL."),
    config_path: Path = CONFIG_OPTION,
    beats_file: Path | None = typer.Option(None, help="JSON beat list to use instead of beat detection."),
    tempo_grid: int | None = typer.Option(None, help="Use a synthetic beat grid at this BPM instead of detection."),
    seed: int | None = typer.Option(None, help="Seed for the synthetic beat grid jitter."),
    max_duration: float | None = typer.Option(None, help="Clip segment windows to this many seconds."),
    segments_out: Path | None = typer.Option(None, help="Also export segments to this .json or .csv path."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Analyze beats and video content and print the candidate segments."""

    settings = _bootstrap(config_path, verbose)
    try:
        video = _resolve_existing(video_path, "Video")
        beat_analyzer = _beat_analyzer_override(video, beats_file, tempo_grid, seed, settings)
        result = asyncio.run(
            analyze_media(
                str(video),
                _audio_source(audio),
                settings=settings,
                beat_analyzer=beat_analyzer,
                max_duration=max_duration,
            )
        )
    except (BeatcutError, ValueError, FileNotFoundError) as exc:
        logger.error("Analysis failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if segments_out is not None:
        export_segments(result.segments, segments_out)
    typer.echo(json.dumps(result.to_dict(), indent=2))


@app.command("run")
def run_command(
    video_path: Path = typer.Argument(..., help="Source video file."),
    audio: str = typer.Argument(..., help="Audio file path or http(s) URL."),
    output: Path = typer.Option(Path("beatcut_output.mp4"), "--output", "-o", help="Where to write the merged video."),
    config_path: Path = CONFIG_OPTION,
    beats_file: Path | None = typer.Option(None, help="JSON beat list to use instead of beat detection."),
    tempo_grid: int | None = typer.Option(None, help="Use a synthetic beat grid at this BPM instead of detection."),
    seed: int | None = typer.Option(None, help="Seed for the synthetic beat grid jitter."),
    max_duration: float | None = typer.Option(None, help="Clip segment windows to this many seconds."),
    strict: bool = typer.Option(False, help="Exit non-zero when the merged output fails audio validation."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Run the full analyze, trim, concatenate and validate pipeline."""

    settings = _bootstrap(config_path, verbose)
    try:
        video = _resolve_existing(video_path, "Video")
        beat_analyzer = _beat_analyzer_override(video, beats_file, tempo_grid, seed, settings)
        result = asyncio.run(
            run_pipeline(
                str(video),
                _audio_source(audio),
                settings=settings,
                beat_analyzer=beat_analyzer,
                max_duration=max_duration,
                progress=_progress,
            )
        )
        exported = export_run_outputs(result, output, video_path=str(video))
    except (BeatcutError, ValueError, FileNotFoundError) as exc:
        logger.error("Pipeline failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        shutdown_engine()

    summary: dict[str, Any] = {
        "status": "ok",
        "run_id": result.run_id,
        "segment_count": len(result.analysis.segments),
        "clip_strategies": result.clip_strategies,
        "validation": result.validation.to_dict() if result.validation is not None else None,
        "outputs": {key: str(path) for key, path in exported.items()},
    }
    typer.echo(json.dumps(summary, indent=2))

    if strict and result.validation is not None and not result.validation.success:
        raise typer.Exit(code=2)


@app.command()
def validate(
    media_path: Path = typer.Argument(..., help="Merged media file to check."),
    config_path: Path = CONFIG_OPTION,
    timeout_ms: int | None = typer.Option(None, help="Sampling deadline in milliseconds."),
) -> None:
    """Check that a media file carries an audible audio track."""

    settings = _bootstrap(config_path)
    try:
        data = _resolve_existing(media_path, "Media").read_bytes()
    except FileNotFoundError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    validator = build_validator(settings)
    result = validator.validate(
        MergedOutput(data=data),
        timeout_ms=timeout_ms if timeout_ms is not None else settings.validation.timeout_ms,
    )
    typer.echo(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
