"""
Data model dùng chung cho các bước của pipeline ANPR.

Frame và RegionOfInterest chỉ tồn tại trong một lần nhận dạng. GlyphImage là
bitmap ký tự 28x28 chuẩn, truyền từ segmenter sang classifier.
RecognitionResult là kết quả pipeline trả về.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


GLYPH_SIZE = 28
FEATURE_LENGTH = GLYPH_SIZE * GLYPH_SIZE


# =============================================================================
# FRAME / ROI
# =============================================================================

@dataclass(frozen=True, eq=False)
class Frame:
    """
    Ảnh đầu vào kèm nguồn và thời điểm chụp.

    Pipeline không bao giờ sửa buffer pixel; bước nào cần đổi pixel thì làm
    trên bản copy riêng.
    """
    data: np.ndarray          # HxW grayscale or HxWxC (BGR / BGRA)
    timestamp: float = field(default_factory=time.time)
    source: str = "memory"

    @property
    def image(self) -> np.ndarray:
        return self.data

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def is_color(self) -> bool:
        return self.data.ndim == 3 and self.data.shape[2] > 1

    def to_dict(self) -> Dict[str, Any]:
        """Serializable summary without the pixels (for logs)."""
        return {
            "timestamp": self.timestamp,
            "source": self.source,
            "shape": tuple(self.data.shape),
        }


@dataclass(frozen=True)
class RegionOfInterest:
    """Axis-aligned rectangle in frame coordinates."""
    x: int
    y: int
    width: int
    height: int

    @property
    def aspect_ratio(self) -> float:
        return self.width / float(self.height) if self.height else 0.0

    @property
    def area(self) -> int:
        return self.width * self.height

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)

    def view(self, image: np.ndarray) -> np.ndarray:
        """Slice of `image` covered by this ROI (a numpy view, not a copy)."""
        return image[self.y:self.y + self.height, self.x:self.x + self.width]

    def crop(self, image: np.ndarray) -> np.ndarray:
        return self.view(image).copy()


# =============================================================================
# GLYPHS
# =============================================================================

@dataclass(frozen=True, eq=False)
class GlyphImage:
    """
    Một ký tự đã tách, chuẩn hóa về GLYPH_SIZE x GLYPH_SIZE.

    Pixel là uint8 và chỉ có 2 giá trị (0 nền, 255 nét chữ).
    `bbox` là (x, y, w, h) trong vùng biển số mà glyph được cắt ra.
    """
    pixels: np.ndarray
    bbox: Optional[Tuple[int, int, int, int]] = None

    def __post_init__(self):
        pixels = np.asarray(self.pixels)
        if pixels.shape != (GLYPH_SIZE, GLYPH_SIZE):
            raise ValueError(
                f"Glyph must be {GLYPH_SIZE}x{GLYPH_SIZE}, got shape {pixels.shape}"
            )
        if not np.isin(pixels, (0, 255)).all():
            raise ValueError("Glyph pixels must be binary (0 or 255)")
        pixels = pixels.astype(np.uint8, copy=True)
        pixels.setflags(write=False)
        object.__setattr__(self, "pixels", pixels)

    @property
    def x(self) -> int:
        return self.bbox[0] if self.bbox is not None else 0

    def features(self) -> np.ndarray:
        """Flattened 784-dim feature vector scaled to [0, 1]."""
        return self.pixels.reshape(-1).astype(np.float64) / 255.0


@dataclass(frozen=True)
class GlyphPrediction:
    """Classifier output for one glyph."""
    label: str
    distance: float
    confidence: float


# =============================================================================
# RECOGNITION RESULT
# =============================================================================

class PipelineStage(str, Enum):
    IDLE = "idle"
    PREPROCESSING = "preprocessing"
    LOCALIZING = "localizing"
    SEGMENTING = "segmenting"
    CLASSIFYING = "classifying"
    DONE = "done"


class RecognitionStatus(str, Enum):
    SUCCESS = "success"
    NO_PLATE = "no_plate"
    NO_GLYPHS = "no_glyphs"
    INVALID_FRAME = "invalid_frame"


@dataclass
class RecognitionResult:
    """
    Kết quả của một lần chạy pipeline.

    text là None khi không tìm thấy biển số (hoặc frame lỗi), và là "" khi
    tìm thấy biển số nhưng không tách được glyph nào.
    """
    status: RecognitionStatus
    text: Optional[str] = None
    roi: Optional[RegionOfInterest] = None
    predictions: List[GlyphPrediction] = field(default_factory=list)
    stage: PipelineStage = PipelineStage.IDLE
    latency_ms: float = 0.0
    error: Optional[str] = None

    @property
    def plate_found(self) -> bool:
        return self.roi is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "text": self.text,
            "roi": self.roi.as_tuple() if self.roi else None,
            "predictions": [
                {"label": p.label, "distance": p.distance, "confidence": p.confidence}
                for p in self.predictions
            ],
            "stage": self.stage.value,
            "latency_ms": self.latency_ms,
            "error": self.error,
        }
