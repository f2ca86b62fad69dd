from __future__ import annotations

from examguard.detectors.base import BaseEmbedder, BaseObjectDetector


def build_embedder(model_name: str, model_cfg: dict | None = None) -> BaseEmbedder:
    cfg = model_cfg or {}
    key = model_name.lower()

    if key == "yolo-embed":
        from examguard.detectors.yolo import YoloEmbedder

        return YoloEmbedder(
            model_path=str(cfg.get("model_path", "yolo11n-cls.pt")),
            imgsz=int(cfg.get("imgsz", 224)),
            device=str(cfg.get("device", "cpu")),
        )

    if key == "mediapipe-pose":
        from examguard.detectors.mediapipe_pose import MediaPipePoseEmbedder

        return MediaPipePoseEmbedder(
            min_detection_confidence=float(cfg.get("min_detection_confidence", 0.5)),
            min_tracking_confidence=float(cfg.get("min_tracking_confidence", 0.5)),
            task_model_path=cfg.get("task_model_path"),
        )

    raise ValueError(f"Unsupported embedder: {model_name}")


def build_object_detector(model_name: str, model_cfg: dict | None = None) -> BaseObjectDetector:
    cfg = model_cfg or {}
    key = model_name.lower()

    if key == "yolo-detect":
        from examguard.detectors.yolo import YoloObjectDetector

        return YoloObjectDetector(
            model_path=str(cfg.get("model_path", "yolo11n.pt")),
            conf_threshold=float(cfg.get("conf_threshold", 0.25)),
            iou_threshold=float(cfg.get("iou_threshold", 0.45)),
            imgsz=int(cfg.get("imgsz", 640)),
            device=str(cfg.get("device", "cpu")),
        )

    raise ValueError(f"Unsupported object detector: {model_name}")
