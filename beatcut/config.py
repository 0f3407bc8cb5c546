from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "BEATCUT_"


class AnalysisSettings(BaseModel):
    beat_backend: Literal["energy", "remote"] = "energy"
    video_backend: Literal["opencv", "remote"] = "opencv"
    remote_endpoint: str = "http://localhost:8080"
    remote_timeout_seconds: int = 30
    sample_rate: int = 22050
    energy_threshold: float = 0.3
    min_beat_interval_seconds: float = 0.3
    max_beats: int = 20
    analysis_fps: float = 2.0
    processing_width: int = 320
    scene_change_multiplier: float = 2.5
    face_sample_every: int = 4


class SegmentSettings(BaseModel):
    max_beats: int = 8
    lead_seconds: float = 0.5
    tail_seconds: float = 1.5
    confidence_step: float = 0.05
    confidence_floor: float = 0.7


class TrimSettings(BaseModel):
    min_output_bytes: int = 1000
    verify_streams: bool = False
    reencode_preset: str = "ultrafast"


class ConcatSettings(BaseModel):
    on_codec_mismatch: Literal["reencode", "fail"] = "reencode"
    reencode_preset: str = "veryfast"


class MuxSettings(BaseModel):
    enabled: bool = True
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"


class ValidationSettings(BaseModel):
    timeout_ms: int = 4000
    metadata_timeout_ms: int = 3000
    poll_interval_ms: int = 120
    window_size: int = 2048
    audible_threshold: float = 0.003
    silence_threshold: float = 0.001


class EngineSettings(BaseModel):
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    workdir: Path | None = None


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    segments: SegmentSettings = Field(default_factory=SegmentSettings)
    trim: TrimSettings = Field(default_factory=TrimSettings)
    concat: ConcatSettings = Field(default_factory=ConcatSettings)
    mux: MuxSettings = Field(default_factory=MuxSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config: dict[str, Any] = {}
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
