"""
Dataset persistence: the classifier's labeled examples as a portable
label-keyed JSON document (label -> list of embedding vectors).
"""
from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any

import numpy as np

from examguard.errors import EmptyDatasetError, MalformedDatasetError
from examguard.knn import KNNClassifier
from examguard.models import ClassifierDataset, Label

logger = logging.getLogger(__name__)

_FLOAT32_MAX = float(np.finfo(np.float32).max)


def save(dataset: ClassifierDataset) -> dict[str, list[list[float]]]:
    return {
        Label(label).value: np.asarray(vectors, dtype=np.float32).tolist()
        for label, vectors in dataset.items()
    }


def load(document: Any) -> ClassifierDataset:
    if not isinstance(document, dict):
        raise MalformedDatasetError(f"Dataset document must be a mapping, got {type(document).__name__}")
    if not document:
        raise EmptyDatasetError("Dataset document has no labels")

    dataset: ClassifierDataset = {}
    dim: int | None = None
    for key, entries in document.items():
        try:
            label = Label(key)
        except ValueError:
            raise MalformedDatasetError(f"Unknown label: {key!r}") from None

        arr = _as_matrix(key, entries)
        if dim is None:
            dim = arr.shape[1]
        elif arr.shape[1] != dim:
            raise MalformedDatasetError(
                f"Label {key!r} has vectors of length {arr.shape[1]}, expected {dim}"
            )
        dataset[label] = arr

    return dataset


def dumps(dataset: ClassifierDataset) -> bytes:
    return json.dumps(save(dataset)).encode("utf-8")


def loads(raw: bytes | str) -> ClassifierDataset:
    try:
        document = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedDatasetError(f"Dataset is not valid JSON: {e}") from e
    return load(document)


def _as_matrix(key: str, entries: Any) -> np.ndarray:
    if not isinstance(entries, list) or not entries:
        raise MalformedDatasetError(f"Label {key!r} must map to a non-empty list of vectors")

    width: int | None = None
    for row in entries:
        if not isinstance(row, list) or not row:
            raise MalformedDatasetError(f"Label {key!r} contains a non-vector entry")
        if width is None:
            width = len(row)
        elif len(row) != width:
            raise MalformedDatasetError(f"Label {key!r} is jagged: rows of length {width} and {len(row)}")
        for value in row:
            # bool is an int subclass but is not a valid embedding value
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise MalformedDatasetError(f"Label {key!r} contains a non-numeric value: {value!r}")
            try:
                magnitude = abs(float(value))
            except OverflowError:
                magnitude = math.inf
            if not magnitude <= _FLOAT32_MAX:
                raise MalformedDatasetError(f"Label {key!r} contains a value outside float32 range: {value!r}")

    return np.asarray(entries, dtype=np.float32)


class ModelStore:
    """Reads and writes dataset documents on disk for a classifier."""

    def export_dataset(self, classifier: KNNClassifier, path: Path) -> Path:
        dataset = classifier.get_dataset()
        if not dataset:
            raise EmptyDatasetError("Classifier has no examples to export")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(dumps(dataset))
        logger.info("exported dataset to %s (%s)", path, _describe(dataset))
        return path

    def import_dataset(self, classifier: KNNClassifier, path: Path) -> ClassifierDataset:
        if not path.exists():
            raise FileNotFoundError(f"Dataset file not found: {path}")
        dataset = loads(path.read_bytes())
        # Validation passed: swap wholesale.
        classifier.set_dataset(dataset)
        logger.info("imported dataset from %s (%s)", path, _describe(dataset))
        return dataset


def _describe(dataset: ClassifierDataset) -> str:
    return ", ".join(f"{label.value}={len(arr)}" for label, arr in dataset.items())
