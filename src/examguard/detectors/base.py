from __future__ import annotations

import numpy as np

from examguard.models import DetectedObject


class BaseEmbedder:
    """Maps a BGR frame to a fixed-length float32 vector."""

    name = "base"
    dim: int | None = None

    def embed(self, frame_bgr: np.ndarray) -> np.ndarray:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:
        return None


class BaseObjectDetector:
    name = "base"

    def detect(self, frame_bgr: np.ndarray) -> list[DetectedObject]:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:
        return None


def xyxy_to_xywh(box) -> tuple[float, float, float, float]:
    x1, y1, x2, y2 = (float(v) for v in box)
    return (x1, y1, max(x2 - x1, 0.0), max(y2 - y1, 0.0))
