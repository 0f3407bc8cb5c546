from __future__ import annotations

import os
from pathlib import Path

import pytest

from beatcut.config import Settings, load_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("BEATCUT_"):
            monkeypatch.delenv(key)


def test_missing_config_file_falls_back_to_defaults(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "absent.yaml")

    assert settings == Settings()
    assert settings.trim.min_output_bytes == 1000
    assert settings.validation.poll_interval_ms == 120
    assert settings.mux.enabled is True
    assert settings.mux.audio_codec == "aac"


def test_yaml_values_are_loaded(tmp_path: Path) -> None:
    config = tmp_path / "beatcut.yaml"
    config.write_text(
        "analysis:\n"
        "  beat_backend: remote\n"
        "  remote_endpoint: http://ml.internal:9000\n"
        "concat:\n"
        "  on_codec_mismatch: fail\n",
        encoding="utf-8",
    )

    settings = load_settings(config)

    assert settings.analysis.beat_backend == "remote"
    assert settings.analysis.remote_endpoint == "http://ml.internal:9000"
    assert settings.concat.on_codec_mismatch == "fail"
    assert settings.segments.max_beats == 8


def test_environment_overrides_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "beatcut.yaml"
    config.write_text("validation:\n  timeout_ms: 2000\n", encoding="utf-8")
    monkeypatch.setenv("BEATCUT_VALIDATION__TIMEOUT_MS", "6000")
    monkeypatch.setenv("BEATCUT_TRIM__VERIFY_STREAMS", "yes")
    monkeypatch.setenv("BEATCUT_SEGMENTS__LEAD_SECONDS", "0.25")
    monkeypatch.setenv("BEATCUT_ENGINE__WORKDIR", str(tmp_path / "engine"))
    monkeypatch.setenv("BEATCUT_MUX__ENABLED", "false")
    monkeypatch.setenv("BEATCUT_UNKNOWN__KEY", "ignored")

    settings = load_settings(config)

    assert settings.validation.timeout_ms == 6000
    assert settings.trim.verify_streams is True
    assert settings.segments.lead_seconds == pytest.approx(0.25)
    assert settings.engine.workdir == tmp_path / "engine"
    assert settings.mux.enabled is False


def test_config_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "other.yaml"
    config.write_text("logging:\n  level: DEBUG\n", encoding="utf-8")
    monkeypatch.setenv("BEATCUT_CONFIG", str(config))

    assert load_settings().logging.level == "DEBUG"
