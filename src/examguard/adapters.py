"""
Async adapters around the blocking model collaborators.

Model calls run in a worker thread so the event loop keeps serving ticks,
timers and commands while inference is pending. Every failure surfaces as
ModelInferenceError.
"""
from __future__ import annotations

import asyncio
import logging

import numpy as np

from examguard.errors import ModelInferenceError
from examguard.knn import KNNClassifier
from examguard.models import ClassificationResult, ClassifierDataset, DetectedObject, Embedder, Label, ObjectDetector

logger = logging.getLogger(__name__)


class PostureClassifierAdapter:
    """Embedding function + k-NN classifier behind one ``classify`` call.

    Returns the raw top label and its confidence; thresholding belongs to
    the caller.
    """

    def __init__(self, embedder: Embedder, classifier: KNNClassifier) -> None:
        self.embedder = embedder
        self.classifier = classifier

    @property
    def has_dataset(self) -> bool:
        return self.classifier.num_examples > 0

    @property
    def dataset(self) -> ClassifierDataset:
        return self.classifier.get_dataset()

    def replace_dataset(self, dataset: ClassifierDataset) -> None:
        self.classifier.set_dataset(dataset)

    def trained_labels(self) -> set[Label]:
        return {label for label, n in self.classifier.class_example_count().items() if n > 0}

    async def classify(self, frame: np.ndarray) -> ClassificationResult:
        embedding = await self._embed(frame)
        # The classifier is only read and written on the loop thread.
        try:
            prediction = self.classifier.predict_class(embedding)
        except Exception as e:
            raise ModelInferenceError(f"posture classification failed: {e}") from e
        confidence = float(prediction.confidences.get(prediction.label, 0.0))
        return ClassificationResult(label=prediction.label, confidence=confidence)

    async def add_example(self, frame: np.ndarray, label: Label) -> None:
        embedding = await self._embed(frame)
        try:
            self.classifier.add_example(embedding, label)
        except ValueError as e:
            raise ModelInferenceError(f"cannot store example for {Label(label).value}: {e}") from e

    async def _embed(self, frame: np.ndarray) -> np.ndarray:
        try:
            return await asyncio.to_thread(self.embedder.embed, frame)
        except Exception as e:
            raise ModelInferenceError(f"embedding failed: {e}") from e

    def close(self) -> None:
        self.embedder.close()


class ObjectDetectorAdapter:
    def __init__(self, detector: ObjectDetector) -> None:
        self.detector = detector

    async def detect(self, frame: np.ndarray) -> list[DetectedObject]:
        try:
            objects = await asyncio.to_thread(self.detector.detect, frame)
        except Exception as e:
            raise ModelInferenceError(f"object detection failed: {e}") from e
        return list(objects)

    def close(self) -> None:
        self.detector.close()
