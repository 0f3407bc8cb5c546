from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any
from urllib import request
from urllib.error import HTTPError, URLError

from beatcut.errors import AnalysisFailure
from beatcut.ingest.decode import MediaSource, is_url
from beatcut.models import BoundingBox, FaceDetection, VideoAnalysis

DEFAULT_ENDPOINT = "http://localhost:8080"
DEFAULT_TIMEOUT_SECONDS = 30


class RemoteBeatBackend:
    """Calls ``POST {endpoint}/beats`` and expects ``{"beats": [...], "energy": ...}``."""

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT, timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds

    def detect(self, audio_source: MediaSource) -> dict[str, Any]:
        payload = _post_json(
            f"{self.endpoint.rstrip('/')}/beats",
            _source_body("audio", audio_source),
            timeout_seconds=self.timeout_seconds,
        )
        if not isinstance(payload.get("beats"), list):
            raise AnalysisFailure("Remote beat service response is missing a 'beats' list.")
        return {"beats": payload["beats"], "energy": payload.get("energy")}


class RemoteVideoBackend:
    """Calls ``POST {endpoint}/video-analysis`` and parses the returned analysis."""

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT, timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds

    def analyze(self, video_source: MediaSource) -> VideoAnalysis:
        payload = _post_json(
            f"{self.endpoint.rstrip('/')}/video-analysis",
            _source_body("video", video_source),
            timeout_seconds=self.timeout_seconds,
        )
        return parse_video_analysis(payload)


def parse_video_analysis(payload: dict[str, Any]) -> VideoAnalysis:
    """Build a VideoAnalysis from its JSON shape, rejecting malformed fields."""

    try:
        faces = tuple(
            FaceDetection(
                timestamp=float(face["timestamp"]),
                confidence=float(face["confidence"]),
                bounding_box=BoundingBox(
                    x=int(face["bounding_box"]["x"]),
                    y=int(face["bounding_box"]["y"]),
                    width=int(face["bounding_box"]["width"]),
                    height=int(face["bounding_box"]["height"]),
                ),
            )
            for face in payload.get("face_detections", [])
        )
        return VideoAnalysis(
            duration=float(payload["duration"]),
            scene_changes=tuple(float(value) for value in payload.get("scene_changes", [])),
            face_detections=faces,
            quality_score=float(payload.get("quality_score", 0.0)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise AnalysisFailure(f"Malformed video analysis payload: {exc}") from exc


def _source_body(kind: str, source: MediaSource) -> dict[str, Any]:
    if isinstance(source, bytes):
        return {f"{kind}_base64": base64.b64encode(source).decode("ascii")}
    if is_url(source):
        return {f"{kind}_url": str(source)}
    path = Path(source).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Media file not found: {path}")
    return {f"{kind}_base64": base64.b64encode(path.read_bytes()).decode("ascii"), "filename": path.name}


def _post_json(url: str, body: dict[str, Any], *, timeout_seconds: int) -> dict[str, Any]:
    req = request.Request(
        url,
        data=json.dumps(body).encode("utf-8"),
        method="POST",
        headers={"Content-Type": "application/json"},
    )

    try:
        with request.urlopen(req, timeout=timeout_seconds) as response:
            payload = json.loads(response.read().decode("utf-8"))
    except (HTTPError, URLError, TimeoutError) as exc:
        raise AnalysisFailure(f"Analysis service unreachable at {url}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise AnalysisFailure(f"Analysis service at {url} returned invalid JSON.") from exc

    if not isinstance(payload, dict):
        raise AnalysisFailure(f"Analysis service at {url} returned a non-object payload.")
    return payload
