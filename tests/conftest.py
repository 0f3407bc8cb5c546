from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

import pytest

DEFAULT_PROBE_PAYLOAD: dict[str, Any] = {
    "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "2.000000", "size": "4096"},
    "streams": [
        {"index": 0, "codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720},
        {"index": 1, "codec_type": "audio", "codec_name": "aac", "sample_rate": "44100", "channels": 2},
    ],
}


class FakeFfmpeg:
    """Stands in for ``subprocess.run`` and imitates ffmpeg/ffprobe inside the engine namespace."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.failing_strategies: set[str] = set()
        self.tiny_strategies: set[str] = set()
        self.concat_fails = False
        self.concat_writes_nothing = False
        self.mux_fails = False
        self.manifests: list[str] = []
        self.probe_payloads: dict[str, dict[str, Any]] = {}

    def __call__(self, command: list[str], cwd: str | None = None, **kwargs: Any) -> subprocess.CompletedProcess:
        command = list(command)
        self.calls.append(command)

        if Path(command[0]).name == "ffprobe":
            payload = self.probe_payloads.get(Path(command[-1]).name, DEFAULT_PROBE_PAYLOAD)
            return subprocess.CompletedProcess(command, 0, stdout=json.dumps(payload), stderr="")

        workdir = Path(cwd or ".")
        output_name = command[-1]

        for strategy in self.failing_strategies:
            if output_name.endswith(f"_{strategy}.mp4"):
                return subprocess.CompletedProcess(command, 1, stdout="", stderr=f"{strategy}: no keyframe at seek point")

        if "-shortest" in command:
            if self.mux_fails:
                return subprocess.CompletedProcess(command, 1, stdout="", stderr="Stream map '1:a:0' matches no streams.")
            video = (workdir / command[command.index("-i") + 1]).read_bytes()
            (workdir / output_name).write_bytes(video + b"+audio")
            return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

        if "concat" in command:
            if self.concat_fails:
                return subprocess.CompletedProcess(command, 1, stdout="", stderr="Non-monotonous DTS in output stream")
            if self.concat_writes_nothing:
                return subprocess.CompletedProcess(command, 0, stdout="", stderr="")
            manifest = (workdir / command[command.index("-i") + 1]).read_text(encoding="utf-8")
            self.manifests.append(manifest)
            parts = [
                (workdir / line.split("'")[1]).read_bytes()
                for line in manifest.splitlines()
                if line.startswith("file ")
            ]
            (workdir / output_name).write_bytes(b"".join(parts))
            return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

        size = 16 if any(output_name.endswith(f"_{s}.mp4") for s in self.tiny_strategies) else 4096
        (workdir / output_name).write_bytes(output_name.encode("utf-8").ljust(size, b"\0"))
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

    def ffmpeg_calls(self) -> list[list[str]]:
        return [call for call in self.calls if Path(call[0]).name != "ffprobe"]


@pytest.fixture
def fake_ffmpeg(monkeypatch: pytest.MonkeyPatch) -> FakeFfmpeg:
    fake = FakeFfmpeg()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake
