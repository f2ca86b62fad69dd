from __future__ import annotations

import numpy as np

from examguard.detectors.base import BaseEmbedder, BaseObjectDetector, xyxy_to_xywh
from examguard.models import DetectedObject


def _load_yolo(model_path: str):
    try:
        from ultralytics import YOLO
    except ImportError as e:
        raise RuntimeError(
            "YOLO backends require ultralytics. Install with: pip install ultralytics"
        ) from e
    return YOLO(model_path)


class YoloEmbedder(BaseEmbedder):
    """Image embedding from a YOLO classification backbone (penultimate features)."""

    name = "yolo-embed"

    def __init__(self, model_path: str = "yolo11n-cls.pt", imgsz: int = 224, device: str = "cpu") -> None:
        self.model = _load_yolo(model_path)
        self.imgsz = imgsz
        self.device = device

    def embed(self, frame_bgr: np.ndarray) -> np.ndarray:
        features = self.model.embed(frame_bgr, imgsz=self.imgsz, device=self.device, verbose=False)
        if not features:
            raise RuntimeError("YOLO returned no embedding")
        vec = features[0].detach().cpu().numpy().astype(np.float32).ravel()
        if self.dim is None:
            self.dim = int(vec.shape[0])
        return vec


class YoloObjectDetector(BaseObjectDetector):
    """COCO object detector; returns objects in the model's output order."""

    name = "yolo-detect"

    def __init__(
        self,
        model_path: str = "yolo11n.pt",
        conf_threshold: float = 0.25,
        iou_threshold: float = 0.45,
        imgsz: int = 640,
        device: str = "cpu",
    ) -> None:
        self.model = _load_yolo(model_path)
        self.conf_threshold = conf_threshold
        self.iou_threshold = iou_threshold
        self.imgsz = imgsz
        self.device = device

    def detect(self, frame_bgr: np.ndarray) -> list[DetectedObject]:
        results = self.model.predict(
            source=frame_bgr,
            conf=self.conf_threshold,
            iou=self.iou_threshold,
            imgsz=self.imgsz,
            device=self.device,
            verbose=False,
        )
        if not results or results[0].boxes is None:
            return []

        result = results[0]
        names = result.names or self.model.names
        xyxy = result.boxes.xyxy.cpu().numpy()
        confs = result.boxes.conf.cpu().numpy()
        classes = result.boxes.cls.cpu().numpy().astype(int)

        return [
            DetectedObject(
                cls=str(names.get(int(cls_id), f"class_{cls_id}")),
                score=float(conf),
                bbox=xyxy_to_xywh(box),
            )
            for box, conf, cls_id in zip(xyxy, confs, classes)
        ]
