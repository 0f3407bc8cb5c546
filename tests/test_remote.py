from __future__ import annotations

import base64
from urllib.error import URLError

import pytest

from beatcut.errors import AnalysisFailure
from beatcut.features import remote
from beatcut.features.beats import BeatAnalyzer
from beatcut.features.video_content import VideoContentAnalyzer


def test_remote_beat_backend_posts_url_and_parses_beats(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[str, dict]] = []

    def _fake_post(url, body, *, timeout_seconds):
        calls.append((url, body))
        return {"beats": [1.0, 0.5], "energy": 0.6}

    monkeypatch.setattr(remote, "_post_json", _fake_post)

    timeline = BeatAnalyzer(remote.RemoteBeatBackend("http://beats.local/")).detect_beats("https://cdn.example/song.mp3")

    assert calls == [("http://beats.local/beats", {"audio_url": "https://cdn.example/song.mp3"})]
    assert timeline.beats == (0.5, 1.0)
    assert timeline.energy == pytest.approx(0.6)


def test_remote_beat_backend_sends_bytes_as_base64(monkeypatch: pytest.MonkeyPatch) -> None:
    bodies: list[dict] = []

    def _fake_post(url, body, *, timeout_seconds):
        bodies.append(body)
        return {"beats": []}

    monkeypatch.setattr(remote, "_post_json", _fake_post)

    remote.RemoteBeatBackend().detect(b"RIFFdata")

    assert bodies[0] == {"audio_base64": base64.b64encode(b"RIFFdata").decode("ascii")}


def test_remote_beat_backend_requires_beats_list(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(remote, "_post_json", lambda *_args, **_kwargs: {"beats": "1,2,3"})

    with pytest.raises(AnalysisFailure, match="'beats' list"):
        remote.RemoteBeatBackend().detect("https://cdn.example/song.mp3")


def test_remote_video_backend_parses_analysis(monkeypatch: pytest.MonkeyPatch) -> None:
    payload = {
        "duration": 30,
        "scene_changes": [2.5, 8.3],
        "face_detections": [
            {"timestamp": 1.2, "confidence": 0.92, "bounding_box": {"x": 100, "y": 50, "width": 150, "height": 200}}
        ],
        "quality_score": 0.85,
    }
    monkeypatch.setattr(remote, "_post_json", lambda *_args, **_kwargs: payload)

    analysis = VideoContentAnalyzer(remote.RemoteVideoBackend()).analyze_video("https://cdn.example/clip.mp4")

    assert analysis.duration == pytest.approx(30.0)
    assert analysis.scene_changes == (2.5, 8.3)
    assert analysis.face_detections[0].bounding_box.width == 150
    assert analysis.quality_score == pytest.approx(0.85)


def test_parse_video_analysis_rejects_malformed_payload() -> None:
    with pytest.raises(AnalysisFailure, match="Malformed"):
        remote.parse_video_analysis({"scene_changes": [1.0]})


def test_post_json_wraps_unreachable_service(monkeypatch: pytest.MonkeyPatch) -> None:
    def _refuse(*_args, **_kwargs):
        raise URLError("connection refused")

    monkeypatch.setattr(remote.request, "urlopen", _refuse)

    with pytest.raises(AnalysisFailure, match="unreachable"):
        remote._post_json("http://localhost:1/beats", {"audio_url": "x"}, timeout_seconds=1)
