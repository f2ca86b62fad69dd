from __future__ import annotations

import os
from pathlib import Path

import cv2

# CPU only; GPU delegates are unreliable on laptop webcams.
os.environ.setdefault("MEDIAPIPE_DISABLE_GPU", "1")

import mediapipe as mp
import numpy as np

from examguard.detectors.base import BaseEmbedder

NUM_LANDMARKS = 33
LEFT_SHOULDER = 11
RIGHT_SHOULDER = 12
DEFAULT_TASK_MODEL = "models/mediapipe/pose_landmarker_lite.task"


class MediaPipePoseEmbedder(BaseEmbedder):
    """
    Pose embedding: 33 landmarks as (x, y, visibility), centred on the
    shoulder midpoint and scaled by shoulder width, followed by one absent
    flag. A frame with no person maps to the all-zero vector with the flag
    set, so every empty frame embeds identically.
    """

    name = "mediapipe-pose"
    dim = NUM_LANDMARKS * 3 + 1

    def __init__(
        self,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        task_model_path: str | None = None,
    ) -> None:
        self.backend, self.pose = _open_pose(min_detection_confidence, min_tracking_confidence, task_model_path)

    def embed(self, frame_bgr: np.ndarray) -> np.ndarray:
        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        if self.backend == "solutions":
            found = self.pose.process(rgb).pose_landmarks
            landmarks = found.landmark if found else None
        else:
            found = self.pose.detect(mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)).pose_landmarks
            landmarks = found[0] if found else None

        if not landmarks:
            return absent_embedding()
        points = np.array(
            [(lm.x, lm.y, getattr(lm, "visibility", 1.0)) for lm in landmarks[:NUM_LANDMARKS]],
            dtype=np.float32,
        )
        return pose_embedding(points)

    def close(self) -> None:
        if hasattr(self.pose, "close"):
            self.pose.close()


def _open_pose(detection_conf: float, tracking_conf: float, task_model_path: str | None):
    """Legacy ``solutions`` API when the installed mediapipe has it, else the tasks PoseLandmarker."""
    if hasattr(mp, "solutions"):
        pose = mp.solutions.pose.Pose(
            model_complexity=1,
            min_detection_confidence=detection_conf,
            min_tracking_confidence=tracking_conf,
        )
        return "solutions", pose

    model_path = Path(task_model_path or DEFAULT_TASK_MODEL)
    if not model_path.exists():
        raise RuntimeError(
            f"Pose landmarker model missing at {model_path}; run scripts/fetch_pose_model.py first."
        )

    from mediapipe.tasks import python as mp_tasks
    from mediapipe.tasks.python import vision

    base = mp_tasks.BaseOptions(model_asset_path=str(model_path), delegate=mp_tasks.BaseOptions.Delegate.CPU)
    landmarker = vision.PoseLandmarker.create_from_options(
        vision.PoseLandmarkerOptions(
            base_options=base,
            running_mode=vision.RunningMode.IMAGE,
            num_poses=1,
            min_pose_detection_confidence=detection_conf,
            min_pose_presence_confidence=detection_conf,
            min_tracking_confidence=tracking_conf,
        )
    )
    return "tasks", landmarker


def absent_embedding() -> np.ndarray:
    vec = np.zeros(MediaPipePoseEmbedder.dim, dtype=np.float32)
    vec[-1] = 1.0
    return vec


def pose_embedding(points: np.ndarray) -> np.ndarray:
    """``points`` is (33, 3) normalised image coords plus visibility."""
    xy = points[:, :2]
    centre = (xy[LEFT_SHOULDER] + xy[RIGHT_SHOULDER]) / 2.0
    scale = float(np.linalg.norm(xy[LEFT_SHOULDER] - xy[RIGHT_SHOULDER]))
    if scale < 1e-4:
        scale = 1.0

    normalised = (xy - centre) / scale
    vec = np.concatenate([np.column_stack([normalised, points[:, 2]]).ravel(), [0.0]])
    return vec.astype(np.float32)
