from __future__ import annotations

import logging
import platform
import re
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass

import cv2
import numpy as np

from examguard.errors import CameraUnavailableError

logger = logging.getLogger(__name__)

_BUILT_IN_TOKENS = {"facetime", "built", "integrated"}


@dataclass
class CameraDevice:
    idx: int
    name: str


class VideoSource:
    """
    Webcam frames grabbed on a background thread; ``read`` returns the most
    recent frame without blocking.

    Parameters
    ----------
    camera_id : int
        OpenCV device index.
    """

    def __init__(self, camera_id: int = 0) -> None:
        self.camera_id = camera_id
        if platform.system() == "Darwin":
            self._cap = cv2.VideoCapture(camera_id, cv2.CAP_AVFOUNDATION)
        else:
            self._cap = cv2.VideoCapture(camera_id)
        if not self._cap.isOpened():
            raise CameraUnavailableError(f"Could not open webcam camera_id={camera_id}")

        self._lock = threading.Lock()
        self._frame: np.ndarray | None = None
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._grab_loop, name=f"camera-{camera_id}", daemon=True)
        self._thread.start()

    # ------------------------------------------------------------------
    @property
    def is_open(self) -> bool:
        return not self._stop.is_set() and self._cap.isOpened()

    @property
    def ready(self) -> bool:
        """True once a frame with valid dimensions has been captured."""
        return self.frame_size is not None

    @property
    def frame_size(self) -> tuple[int, int] | None:
        with self._lock:
            if self._frame is None:
                return None
            h, w = self._frame.shape[:2]
        if w <= 0 or h <= 0:
            return None
        return w, h

    def read(self) -> np.ndarray | None:
        with self._lock:
            return None if self._frame is None else self._frame.copy()

    def wait_ready(self, timeout_s: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout_s
        while not self.ready:
            if time.monotonic() >= deadline or not self.is_open:
                return False
            time.sleep(0.02)
        return True

    def _grab_loop(self) -> None:
        failures = 0
        while not self._stop.is_set():
            ok, frame = self._cap.read()
            if not ok:
                failures += 1
                if failures == 30:
                    logger.warning("camera %s: no frames after %d reads", self.camera_id, failures)
                time.sleep(0.01)
                continue
            failures = 0
            with self._lock:
                self._frame = frame

    def close(self) -> None:
        self._stop.set()
        self._thread.join(timeout=1.0)
        self._cap.release()

    def __enter__(self) -> VideoSource:
        return self

    def __exit__(self, *_) -> None:
        self.close()


def resolve_camera_id(camera_id: int, camera_name: str | None) -> int:
    if not camera_name:
        return camera_id

    devices = list_cameras_avfoundation()
    resolved = _pick_best_match(camera_name.strip(), devices)
    if resolved is not None:
        return resolved

    available = ", ".join([f"[{d.idx}] {d.name}" for d in devices]) or "none found"
    raise CameraUnavailableError(
        f'Camera name "{camera_name}" not found. Available video devices: {available}. '
        "Use --camera-id explicitly if needed."
    )


def list_cameras_avfoundation() -> list[CameraDevice]:
    ffmpeg = shutil.which("ffmpeg")
    if not ffmpeg:
        return []

    try:
        proc = subprocess.run(
            [ffmpeg, "-f", "avfoundation", "-list_devices", "true", "-i", ""],
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError as e:
        logger.debug("ffmpeg device listing failed: %s", e)
        return []

    # ffmpeg writes device list to stderr for avfoundation.
    return parse_avfoundation_devices((proc.stderr or "") + "\n" + (proc.stdout or ""))


def parse_avfoundation_devices(text: str) -> list[CameraDevice]:
    in_video_section = False
    devices: list[CameraDevice] = []
    for line in text.splitlines():
        if "AVFoundation video devices" in line:
            in_video_section = True
            continue
        if in_video_section and "AVFoundation audio devices" in line:
            break
        if not in_video_section:
            continue

        m = re.search(r"\[(\d+)\]\s+(.*)$", line)
        if m:
            devices.append(CameraDevice(idx=int(m.group(1)), name=m.group(2).strip()))
    return devices


def _pick_best_match(wanted: str, devices: list[CameraDevice]) -> int | None:
    wanted_norm = _norm(wanted)
    wanted_tokens = set(wanted_norm.split())

    best: tuple[int, int] | None = None  # (score, -idx) so lower indexes win ties
    for d in devices:
        name_norm = _norm(d.name)
        name_tokens = set(name_norm.split())

        score = 0
        if wanted_norm == name_norm:
            score += 100
        elif wanted_norm in name_norm or name_norm in wanted_norm:
            score += 50
        score += 10 * len(wanted_tokens & name_tokens)

        # Asking for an external camera should not land on the built-in one.
        if not wanted_tokens & _BUILT_IN_TOKENS and name_tokens & _BUILT_IN_TOKENS:
            score -= 40

        if score <= 0:
            continue
        candidate = (score, -d.idx)
        if best is None or candidate > best:
            best = candidate

    return -best[1] if best is not None else None


def _norm(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", text.lower()).strip()
