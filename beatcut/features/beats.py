from __future__ import annotations

import logging
import math
import random
from typing import Any, Protocol, Sequence

import numpy as np

from beatcut.errors import AnalysisFailure
from beatcut.ingest.decode import MediaSource, decode_mono_pcm, is_empty_source
from beatcut.models import DEFAULT_TEMPO, BeatTimeline

logger = logging.getLogger(__name__)

FOUND_CONFIDENCE = 0.85
EMPTY_CONFIDENCE = 0.3


class BeatBackend(Protocol):
    """Anything that can turn an audio source into a ``{"beats": [...]}`` payload."""

    def detect(self, audio_source: MediaSource) -> dict[str, Any]: ...


class BeatAnalyzer:
    """Derives a beat timeline and tempo estimate from an audio source."""

    def __init__(self, backend: BeatBackend) -> None:
        self.backend = backend

    def detect_beats(self, audio_source: MediaSource) -> BeatTimeline:
        if is_empty_source(audio_source):
            raise AnalysisFailure("Audio source is empty.")

        try:
            payload = self.backend.detect(audio_source)
        except AnalysisFailure:
            raise
        except Exception as exc:
            raise AnalysisFailure(f"Beat detection backend failed: {exc}") from exc

        if not isinstance(payload, dict) or "beats" not in payload:
            raise AnalysisFailure("Beat detection backend returned a payload without 'beats'.")

        beats = normalize_beats(payload["beats"])
        energy = payload.get("energy")
        timeline = BeatTimeline(
            beats=beats,
            tempo=compute_tempo(beats),
            confidence=FOUND_CONFIDENCE if beats else EMPTY_CONFIDENCE,
            energy=float(energy) if energy is not None else None,
        )
        logger.info("Detected %d beats (tempo %d BPM)", len(beats), timeline.tempo)
        return timeline


def normalize_beats(raw_beats: Any) -> tuple[float, ...]:
    """Validate backend timestamps and return them strictly ascending."""

    if not isinstance(raw_beats, (list, tuple)):
        raise AnalysisFailure("Beat timestamps must be a list.")

    values: set[float] = set()
    for raw in raw_beats:
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise AnalysisFailure(f"Beat timestamp is not numeric: {raw!r}")
        value = float(raw)
        if not math.isfinite(value) or value < 0:
            raise AnalysisFailure(f"Beat timestamp out of range: {raw!r}")
        values.add(round(value, 6))

    return tuple(sorted(values))


def compute_tempo(beats: Sequence[float]) -> int:
    """BPM from the mean inter-beat interval; 120 when fewer than two beats."""

    if len(beats) < 2:
        return DEFAULT_TEMPO

    intervals = np.diff(np.asarray(beats, dtype=np.float64))
    mean_interval = float(np.mean(intervals))
    if mean_interval <= 0:
        return DEFAULT_TEMPO
    # half-up rounding, not banker's rounding
    return int(math.floor(60.0 / mean_interval + 0.5))


class EnergyPeakBeatBackend:
    """Local heuristic: local maxima of short-window RMS energy above a threshold."""

    def __init__(
        self,
        *,
        sample_rate: int = 22050,
        window_seconds: float = 0.1,
        energy_threshold: float = 0.3,
        min_beat_interval_seconds: float = 0.3,
        max_beats: int = 20,
        ffmpeg_binary: str = "ffmpeg",
    ) -> None:
        self.sample_rate = sample_rate
        self.window_seconds = window_seconds
        self.energy_threshold = energy_threshold
        self.min_beat_interval_seconds = min_beat_interval_seconds
        self.max_beats = max_beats
        self.ffmpeg_binary = ffmpeg_binary

    def detect(self, audio_source: MediaSource) -> dict[str, Any]:
        samples, sample_rate = decode_mono_pcm(
            audio_source,
            sample_rate=self.sample_rate,
            ffmpeg_binary=self.ffmpeg_binary,
        )
        return {
            "beats": self.find_beats(samples, sample_rate),
            "energy": overall_energy(samples),
        }

    def find_beats(self, samples: np.ndarray, sample_rate: int) -> list[float]:
        window_size = max(int(sample_rate * self.window_seconds), 1)
        hop_size = max(window_size // 4, 1)
        total = len(samples)
        if sample_rate <= 0 or total <= window_size:
            return []

        cumulative = np.concatenate(([0.0], np.cumsum(np.square(samples, dtype=np.float64))))

        def window_rms(start: int) -> float:
            end = min(start + window_size, total)
            return math.sqrt(max(cumulative[end] - cumulative[start], 0.0) / window_size)

        beats: list[float] = []
        last_beat_time = 0.0
        for start in range(0, total - window_size, hop_size):
            energy = window_rms(start)
            time_seconds = start / sample_rate
            if energy <= self.energy_threshold:
                continue
            if time_seconds - last_beat_time <= self.min_beat_interval_seconds:
                continue

            prev_energy = window_rms(start - hop_size) if start > hop_size else 0.0
            next_energy = window_rms(start + hop_size) if start + window_size + hop_size < total else 0.0
            if energy > prev_energy and energy > next_energy:
                beats.append(round(time_seconds, 6))
                last_beat_time = time_seconds
                if len(beats) >= self.max_beats:
                    break

        return beats


def overall_energy(samples: np.ndarray) -> float:
    if len(samples) == 0:
        return 0.0
    return min(float(np.mean(np.abs(samples))) * 10.0, 1.0)


class StaticBeatBackend:
    """Returns a fixed beat list; used for pre-computed beat files."""

    def __init__(self, beats: Sequence[float], energy: float | None = None) -> None:
        self.beats = list(beats)
        self.energy = energy

    def detect(self, audio_source: MediaSource) -> dict[str, Any]:
        return {"beats": list(self.beats), "energy": self.energy}


def generate_smart_beats(
    video_duration: float,
    tempo: int = DEFAULT_TEMPO,
    *,
    jitter_seconds: float = 0.1,
    limit: int = 15,
    seed: int | None = None,
) -> list[float]:
    """Synthetic beat grid at ``tempo`` starting at 0.5s, with slight random jitter."""

    if tempo <= 0:
        raise ValueError("Tempo must be positive.")

    rng = random.Random(seed)
    interval = 60.0 / tempo
    beats: list[float] = []
    current = 0.5
    while current < video_duration - 1 and len(beats) < limit:
        beats.append(round(current, 3))
        current += interval + (rng.random() - 0.5) * jitter_seconds
    return beats
