#!/usr/bin/env python3
"""Download the MediaPipe pose landmarker used by the mediapipe-pose embedder."""
from __future__ import annotations

import argparse
import urllib.request
from pathlib import Path

from examguard.config import load_model_config

MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/pose_landmarker/"
    "pose_landmarker_lite/float16/latest/pose_landmarker_lite.task"
)
DEFAULT_PATH = "models/mediapipe/pose_landmarker_lite.task"


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", default="configs/monitor.yaml", help="Config YAML with a models.mediapipe-pose block")
    args = parser.parse_args()

    cfg = load_model_config(Path(args.config), "mediapipe-pose")
    out_path = Path(cfg.get("task_model_path") or DEFAULT_PATH)
    if out_path.exists():
        print(f"Pose model already present at {out_path}")
        return 0

    out_path.parent.mkdir(parents=True, exist_ok=True)
    print(f"Downloading pose model to {out_path} ...")
    urllib.request.urlretrieve(MODEL_URL, out_path)
    print("Done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
