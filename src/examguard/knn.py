"""
KNNClassifier: cosine-similarity k-nearest-neighbour classifier over
embedding vectors, with incremental example collection.

Confidence for a label is the fraction of the k nearest examples that carry
that label, so with k=3 the only attainable values are 0, 1/3, 2/3 and 1.
"""
from __future__ import annotations

import numpy as np

from examguard.models import ClassifierDataset, Label, Prediction


class KNNClassifier:
    """
    Parameters
    ----------
    k : int
        Number of neighbours that vote on each prediction.
    """

    def __init__(self, k: int = 3) -> None:
        if k < 1:
            raise ValueError("k must be >= 1")
        self.k = k
        self._examples: dict[Label, list[np.ndarray]] = {}
        self._dim: int | None = None

    # ------------------------------------------------------------------
    @property
    def dim(self) -> int | None:
        return self._dim

    @property
    def num_examples(self) -> int:
        return sum(len(v) for v in self._examples.values())

    def class_example_count(self) -> dict[Label, int]:
        return {label: len(v) for label, v in self._examples.items()}

    def add_example(self, vector: np.ndarray, label: Label) -> None:
        vec = np.asarray(vector, dtype=np.float32).ravel()
        if self._dim is None:
            self._dim = int(vec.shape[0])
        elif vec.shape[0] != self._dim:
            raise ValueError(f"Embedding has dim {vec.shape[0]}, classifier expects {self._dim}")
        self._examples.setdefault(Label(label), []).append(vec)

    def predict_class(self, vector: np.ndarray) -> Prediction:
        if self.num_examples == 0:
            raise ValueError("Cannot predict without adding examples")

        query = np.asarray(vector, dtype=np.float32).ravel()
        if query.shape[0] != self._dim:
            raise ValueError(f"Embedding has dim {query.shape[0]}, classifier expects {self._dim}")

        labels: list[Label] = []
        rows: list[np.ndarray] = []
        for label, vectors in self._examples.items():
            labels.extend([label] * len(vectors))
            rows.extend(vectors)
        matrix = np.stack(rows)

        sims = _normalise(matrix) @ _normalise(query[None, :])[0]
        k = min(self.k, len(rows))
        # stable sort keeps insertion order on similarity ties
        nearest = np.argsort(-sims, kind="stable")[:k]

        votes: dict[Label, int] = {label: 0 for label in self._examples}
        for idx in nearest:
            votes[labels[idx]] += 1

        confidences = {label: count / k for label, count in votes.items()}
        top = max(votes, key=lambda lb: votes[lb])
        return Prediction(label=top, confidences=confidences)

    def get_dataset(self) -> ClassifierDataset:
        return {label: np.stack(vectors) for label, vectors in self._examples.items() if vectors}

    def set_dataset(self, dataset: ClassifierDataset) -> None:
        """Replace every stored example with ``dataset`` (no merge)."""
        dims = {int(np.asarray(v).shape[1]) for v in dataset.values()}
        if len(dims) > 1:
            raise ValueError(f"Dataset mixes embedding dims: {sorted(dims)}")
        self._examples = {
            Label(label): [row.astype(np.float32) for row in np.asarray(arr, dtype=np.float32)]
            for label, arr in dataset.items()
        }
        self._dim = dims.pop() if dims else None

    def clear(self) -> None:
        self._examples = {}
        self._dim = None


def _normalise(arr: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(arr, axis=1, keepdims=True)
    return arr / np.maximum(norms, 1e-12)
