from __future__ import annotations

import zlib

import cv2
import numpy as np

from examguard.models import DetectedObject, Label, SessionPhase, SessionState

_ALERT_LABELS = {Label.HEAD_LEFT, Label.HEAD_RIGHT, Label.STANDING_UP, Label.ABSENT}


def class_color(name: str) -> tuple[int, int, int]:
    """Stable BGR color per detector class."""
    h = zlib.crc32(name.encode("utf-8"))
    return (64 + (h & 0x7F), 64 + ((h >> 8) & 0x7F), 64 + ((h >> 16) & 0x7F))


class OverlayRenderer:
    """Render surface that keeps the latest behavior/detections and draws them on frames."""

    def __init__(self) -> None:
        self.behavior: Label | None = None
        self.detections: list[DetectedObject] = []

    def show_behavior(self, label: Label | None) -> None:
        self.behavior = label

    def show_detections(self, objects: list[DetectedObject]) -> None:
        self.detections = list(objects)

    def draw(self, frame: np.ndarray, state: SessionState) -> np.ndarray:
        draw_detections(frame, self.detections)
        draw_status(frame, self.behavior, state, self.detections)
        return frame


def draw_detections(frame: np.ndarray, detections: list[DetectedObject]) -> None:
    for obj in detections:
        x, y, w, h = (int(v) for v in obj.bbox)
        color = class_color(obj.cls)
        cv2.rectangle(frame, (x, y), (x + w, y + h), color, 2)
        cv2.putText(
            frame,
            obj.cls,
            (x, max(y - 10, 12)),  # label above the box
            cv2.FONT_HERSHEY_SIMPLEX,
            0.6,
            color,
            2,
        )


def draw_status(
    frame: np.ndarray,
    behavior: Label | None,
    state: SessionState,
    detections: list[DetectedObject],
) -> None:
    label = behavior.value if behavior else "-"
    color = (0, 0, 255) if behavior in _ALERT_LABELS else (0, 255, 0)

    cv2.putText(
        frame,
        f"State: {state}",
        (16, 28),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.65,
        (255, 255, 255),
        2,
    )
    cv2.putText(
        frame,
        f"Current Behavior: {label}",
        (16, 58),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.65,
        color,
        2,
    )
    if state.phase is SessionPhase.TESTING and state.remaining_seconds is not None:
        minutes, seconds = divmod(state.remaining_seconds, 60)
        cv2.putText(
            frame,
            f"Time left: {minutes:02d}:{seconds:02d}",
            (16, 88),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.65,
            (255, 255, 0),
            2,
        )

    y = 118
    for obj in detections:
        cv2.putText(
            frame,
            f"{obj.cls} ({round(obj.score * 100)}%)",
            (16, y),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.5,
            (200, 200, 200),
            1,
        )
        y += 22

    cv2.putText(
        frame,
        "Press q to stop",
        (16, frame.shape[0] - 16),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.55,
        (200, 200, 200),
        2,
    )
