"""
Glyph Classifier Module for the ANPR pipeline

Bộ phân loại k-NN (phi tham số) trên glyph 28x28 đã làm phẳng.

- train(): tạo TrainedModel bất biến từ các cặp (GlyphImage, label)
- GlyphClassifier.classify(): bỏ phiếu có trọng số theo khoảng cách của
  k mẫu gần nhất (Euclidean)
- save_model() / load_model(): lưu/đọc file .npz có version

Bỏ phiếu:
    trọng số = 1 / khoảng cách; nếu có láng giềng ở khoảng cách 0 thì chỉ
    các láng giềng đó được bỏ phiếu. Khi trọng số bằng nhau, label có tổng
    khoảng cách nhỏ hơn thắng, sau đó theo thứ tự label.
"""

import logging
import os
import zipfile
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

import numpy as np
from sklearn.neighbors import NearestNeighbors

from anpr_errors import InsufficientTrainingData, ModelFormatError
from anpr_types import FEATURE_LENGTH, GlyphImage, GlyphPrediction
from utils.text_utils import normalize_label


logger = logging.getLogger(__name__)

MODEL_FORMAT_VERSION = 1
DEFAULT_K = 3
SUPPORTED_METRICS = ("euclidean",)


# =============================================================================
# TRAINED MODEL
# =============================================================================

@dataclass(frozen=True, eq=False)
class TrainedModel:
    """
    Bảng mẫu của classifier đã train.

    Tạo một lần rồi chỉ đọc: ma trận feature bị đánh dấu read-only và không
    có method nào thay đổi trạng thái, nên nhiều thread nhận dạng có thể
    dùng chung một instance.
    """
    features: np.ndarray            # (n_samples, 784) float64 in [0, 1]
    labels: Tuple[str, ...]
    k: int = DEFAULT_K
    metric: str = "euclidean"

    def __post_init__(self):
        features = np.array(self.features, dtype=np.float64)
        if features.ndim != 2 or features.shape[1] != FEATURE_LENGTH:
            raise ValueError(
                f"features phải có shape (n, {FEATURE_LENGTH}), nhận được {features.shape}"
            )
        if features.shape[0] != len(self.labels):
            raise ValueError(
                f"{features.shape[0]} dòng feature nhưng có {len(self.labels)} label"
            )
        if self.metric not in SUPPORTED_METRICS:
            raise ValueError(f"Metric không được hỗ trợ: {self.metric}")
        if self.k < 1:
            raise ValueError(f"k phải >= 1, nhận được: {self.k}")
        if features.shape[0] < self.k:
            raise InsufficientTrainingData(features.shape[0], self.k)

        labels = tuple(normalize_label(label) for label in self.labels)

        features.setflags(write=False)
        object.__setattr__(self, "features", features)
        object.__setattr__(self, "labels", labels)

    @property
    def n_samples(self) -> int:
        return len(self.labels)

    @property
    def classes(self) -> List[str]:
        return sorted(set(self.labels))

    def __repr__(self) -> str:
        return (
            f"TrainedModel(n_samples={self.n_samples}, classes={len(self.classes)}, "
            f"k={self.k}, metric='{self.metric}')"
        )


def train(
    samples: Iterable[Tuple[GlyphImage, str]],
    k: int = DEFAULT_K,
    metric: str = "euclidean"
) -> TrainedModel:
    """
    Train TrainedModel từ các glyph đã gán nhãn.

    Args:
        samples: Các cặp (GlyphImage, label); label được chuẩn hoá về 0-9A-Z
        k: Số láng giềng dùng khi inference
        metric: Metric khoảng cách (chỉ "euclidean")

    Returns:
        TrainedModel

    Raises:
        InsufficientTrainingData: ít hơn k mẫu
        ValueError: k, metric hoặc label không hợp lệ
    """
    if k < 1:
        raise ValueError(f"k phải >= 1, nhận được: {k}")

    vectors = []
    labels = []
    for glyph, label in samples:
        vectors.append(glyph.features())
        labels.append(normalize_label(label))

    if len(labels) < k:
        raise InsufficientTrainingData(len(labels), k)

    model = TrainedModel(
        features=np.vstack(vectors),
        labels=tuple(labels),
        k=k,
        metric=metric
    )
    logger.info("Trained %r", model)
    return model


# =============================================================================
# CLASSIFIER
# =============================================================================

class GlyphClassifier:
    """
    Inference k-NN trên một TrainedModel.

    Index láng giềng được tạo một lần trong constructor; classify() chỉ đọc
    nên có thể dùng chung classifier giữa các thread.
    """

    def __init__(self, model: TrainedModel):
        self.model = model
        self._index = NearestNeighbors(
            n_neighbors=model.k,
            algorithm="brute",
            metric=model.metric
        ).fit(model.features)

    @staticmethod
    def _vote(labels: Sequence[str], distances: Sequence[float]) -> GlyphPrediction:
        distances = np.asarray(distances, dtype=np.float64)
        exact = distances <= 0.0
        if exact.any():
            weights = exact.astype(np.float64)
        else:
            weights = 1.0 / distances

        scores: Dict[str, float] = {}
        distance_sums: Dict[str, float] = {}
        nearest: Dict[str, float] = {}
        for label, distance, weight in zip(labels, distances, weights):
            scores[label] = scores.get(label, 0.0) + weight
            distance_sums[label] = distance_sums.get(label, 0.0) + distance
            nearest[label] = min(nearest.get(label, np.inf), distance)

        best_score = max(scores.values())
        tied = [
            label for label, score in scores.items()
            if np.isclose(score, best_score, rtol=1e-12, atol=0.0)
        ]
        winner = min(tied, key=lambda label: (distance_sums[label], label))

        return GlyphPrediction(
            label=winner,
            distance=float(nearest[winner]),
            confidence=float(scores[winner] / weights.sum())
        )

    def classify(self, glyph: GlyphImage) -> GlyphPrediction:
        """
        Gán nhãn cho một glyph.

        Args:
            glyph: Glyph nhị phân 28x28

        Returns:
            GlyphPrediction (label, khoảng cách tới mẫu gần nhất của label
            thắng, tỉ lệ trọng số phiếu)
        """
        query = glyph.features().reshape(1, -1)
        distances, indices = self._index.kneighbors(query, n_neighbors=self.model.k)
        labels = [self.model.labels[i] for i in indices[0]]
        return self._vote(labels, distances[0])

    def classify_many(self, glyphs: Sequence[GlyphImage]) -> List[GlyphPrediction]:
        """Gán nhãn cho nhiều glyph, giữ nguyên thứ tự."""
        return [self.classify(glyph) for glyph in glyphs]

    def __repr__(self) -> str:
        return f"GlyphClassifier({self.model!r})"


# =============================================================================
# PERSISTENCE
# =============================================================================

def save_model(model: TrainedModel, path: str) -> str:
    """
    Ghi model ra file .npz (nén).

    Args:
        model: TrainedModel
        path: Đường dẫn output (tự thêm ".npz" nếu thiếu)

    Returns:
        Đường dẫn thực tế đã ghi
    """
    if not path.endswith(".npz"):
        path = path + ".npz"

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    np.savez_compressed(
        path,
        format_version=np.array(MODEL_FORMAT_VERSION),
        features=(model.features * 255).astype(np.uint8),
        labels=np.array(model.labels, dtype="U1"),
        k=np.array(model.k),
        metric=np.array(model.metric)
    )
    logger.info("Model saved to %s (%d exemplars)", path, model.n_samples)
    return path


def load_model(path: str) -> TrainedModel:
    """
    Đọc model đã ghi bằng save_model().

    Raises:
        FileNotFoundError: file không tồn tại
        ModelFormatError: file không đọc được, dữ liệu không nhất quán hoặc
            version không được hỗ trợ
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Không tìm thấy model: {path}")

    try:
        data = np.load(path, allow_pickle=False)
    except (OSError, EOFError, ValueError, zipfile.BadZipFile) as e:
        raise ModelFormatError(f"Không đọc được model {path}: {e}") from e

    if not isinstance(data, np.lib.npyio.NpzFile):
        raise ModelFormatError(f"Không phải file model .npz: {path}")

    with data:
        try:
            version = int(data["format_version"])
            if version != MODEL_FORMAT_VERSION:
                raise ModelFormatError(
                    f"Version model {version} không được hỗ trợ: {path}"
                )
            model = TrainedModel(
                features=data["features"].astype(np.float64) / 255.0,
                labels=tuple(str(label) for label in data["labels"]),
                k=int(data["k"]),
                metric=str(data["metric"])
            )
        except ModelFormatError:
            raise
        except (OSError, KeyError, ValueError, TypeError, InsufficientTrainingData) as e:
            raise ModelFormatError(f"Không đọc được model {path}: {e}") from e

    logger.info("Model loaded from %s: %r", path, model)
    return model
