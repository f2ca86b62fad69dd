from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import numpy as np


class Label(str, Enum):
    """Posture/presence classes the classifier can be trained on."""

    NORMAL_POSTURE = "normal_posture"
    HEAD_LEFT = "head_left"
    HEAD_RIGHT = "head_right"
    STANDING_UP = "standing_up"
    ABSENT = "absent"


class AlertKind(str, Enum):
    PHONE_DETECTED = "phone_detected"
    NO_MOVEMENT_ALLOWED = "no_movement_allowed"
    NO_CHEATING_ALLOWED = "no_cheating_allowed"
    TEST_STARTED = "test_started"
    TEST_ENDED = "test_ended"


class SessionPhase(str, Enum):
    IDLE = "idle"
    TRAINING = "training"
    READY = "ready"
    TESTING = "testing"
    FINISHED = "finished"


# Label -> (n_examples, dim) float32 array. Every label shares the same dim.
ClassifierDataset = dict[Label, np.ndarray]


@dataclass(frozen=True)
class ClassificationResult:
    label: Label
    confidence: float


@dataclass(frozen=True)
class DetectedObject:
    cls: str
    score: float
    bbox: tuple[float, float, float, float]  # x, y, width, height in frame pixels


@dataclass
class CooldownState:
    last_fired_at: float | None = None


@dataclass(frozen=True)
class SessionState:
    phase: SessionPhase
    label: Label | None = None
    progress: int = 0
    remaining_seconds: int | None = None

    @classmethod
    def idle(cls) -> SessionState:
        return cls(SessionPhase.IDLE)

    @classmethod
    def training(cls, label: Label, progress: int = 0) -> SessionState:
        return cls(SessionPhase.TRAINING, label=label, progress=progress)

    @classmethod
    def ready(cls) -> SessionState:
        return cls(SessionPhase.READY)

    @classmethod
    def testing(cls, remaining_seconds: int) -> SessionState:
        return cls(SessionPhase.TESTING, remaining_seconds=remaining_seconds)

    @classmethod
    def finished(cls) -> SessionState:
        return cls(SessionPhase.FINISHED)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"phase": self.phase.value}
        if self.phase is SessionPhase.TRAINING:
            out["label"] = self.label.value if self.label else None
            out["progress"] = self.progress
        if self.phase is SessionPhase.TESTING:
            out["remaining_seconds"] = self.remaining_seconds
        return out

    def __str__(self) -> str:
        if self.phase is SessionPhase.TRAINING:
            return f"Training({self.label.value if self.label else '?'}, {self.progress})"
        if self.phase is SessionPhase.TESTING:
            return f"Testing({self.remaining_seconds})"
        return self.phase.value.capitalize()


@dataclass
class Prediction:
    label: Label
    confidences: dict[Label, float] = field(default_factory=dict)


class FrameSource(Protocol):
    @property
    def ready(self) -> bool: ...

    @property
    def is_open(self) -> bool: ...

    def read(self) -> np.ndarray | None: ...


class Embedder(Protocol):
    name: str

    def embed(self, frame_bgr: np.ndarray) -> np.ndarray: ...

    def close(self) -> None: ...


class ObjectDetector(Protocol):
    name: str

    def detect(self, frame_bgr: np.ndarray) -> list[DetectedObject]: ...

    def close(self) -> None: ...


class CuePlayer(Protocol):
    def play(self, kind: AlertKind) -> None: ...

    def is_playing(self, kind: AlertKind) -> bool: ...

    def close(self) -> None: ...


class RenderSurface(Protocol):
    def show_behavior(self, label: Label | None) -> None: ...

    def show_detections(self, objects: list[DetectedObject]) -> None: ...
