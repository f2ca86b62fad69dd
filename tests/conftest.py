"""
Shared fakes for the monitor's collaborators.
"""
from __future__ import annotations

import numpy as np
import pytest

from examguard.adapters import ObjectDetectorAdapter, PostureClassifierAdapter
from examguard.config import MonitorConfig
from examguard.dispatcher import AlertDispatcher
from examguard.knn import KNNClassifier
from examguard.models import AlertKind, DetectedObject, Label
from examguard.session import ProctorSession

DIM = 8

NORMAL_LIKE = np.array([1, 0, 0, 0, 0.1, 0, 0, 0], dtype=np.float32)
ABSENT_LIKE = np.array([0, 0, 0, 0, 0, 0, 0, 1], dtype=np.float32)


class FakeVideo:
    def __init__(self, ready: bool = True, is_open: bool = True) -> None:
        self.ready = ready
        self.is_open = is_open
        self.reads = 0

    def read(self):
        if not self.ready:
            return None
        self.reads += 1
        return np.zeros((4, 4, 3), dtype=np.uint8)


class FakeEmbedder:
    """Returns whatever ``vector`` currently holds, standing in for the scene in front of the camera."""

    name = "fake"

    def __init__(self, vector: np.ndarray | None = None) -> None:
        self.vector = NORMAL_LIKE if vector is None else vector
        self.fail = False
        self.calls = 0

    def embed(self, frame):
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding backend exploded")
        return self.vector.copy()

    def close(self) -> None:
        return None


class FakeDetector:
    name = "fake"

    def __init__(self, objects: list[DetectedObject] | None = None) -> None:
        self.objects = objects or []
        self.fail = False

    def detect(self, frame):
        if self.fail:
            raise RuntimeError("detector exploded")
        return list(self.objects)

    def close(self) -> None:
        return None


class FakePlayer:
    """Records plays; cues stay 'playing' only while listed in ``playing``."""

    def __init__(self) -> None:
        self.played: list[AlertKind] = []
        self.playing: set[AlertKind] = set()

    def play(self, kind: AlertKind) -> None:
        self.played.append(kind)

    def is_playing(self, kind: AlertKind) -> bool:
        return kind in self.playing

    def close(self) -> None:
        return None

    def count(self, kind: AlertKind) -> int:
        return self.played.count(kind)


def phone(score: float = 0.3) -> DetectedObject:
    return DetectedObject(cls="cell phone", score=score, bbox=(10.0, 20.0, 30.0, 40.0))


def fast_config(**overrides) -> MonitorConfig:
    values = dict(
        examples_per_label=5,
        training_interval_ms=0,
        posture_interval_ms=5,
        detection_interval_ms=5,
        countdown_tick_s=0.005,
        required_labels=[Label.NORMAL_POSTURE, Label.ABSENT],
    )
    values.update(overrides)
    return MonitorConfig(**values)


@pytest.fixture
def player() -> FakePlayer:
    return FakePlayer()


@pytest.fixture
def video() -> FakeVideo:
    return FakeVideo()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def detector() -> FakeDetector:
    return FakeDetector()


@pytest.fixture
def knn() -> KNNClassifier:
    return KNNClassifier()


@pytest.fixture
def dispatcher(player) -> AlertDispatcher:
    return AlertDispatcher(player)


@pytest.fixture
def config() -> MonitorConfig:
    return fast_config()


@pytest.fixture
def session(video, embedder, detector, knn, dispatcher, config) -> ProctorSession:
    return ProctorSession(
        video=video,
        classifier=PostureClassifierAdapter(embedder, knn),
        detector=ObjectDetectorAdapter(detector),
        dispatcher=dispatcher,
        config=config,
    )


def seed_dataset(knn: KNNClassifier, per_label: int = 5) -> None:
    rng = np.random.default_rng(0)
    for _ in range(per_label):
        knn.add_example(NORMAL_LIKE + rng.normal(0, 0.01, DIM).astype(np.float32), Label.NORMAL_POSTURE)
        knn.add_example(ABSENT_LIKE + rng.normal(0, 0.01, DIM).astype(np.float32), Label.ABSENT)
