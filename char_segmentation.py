"""
Character Segmentation Module for the ANPR pipeline

Cắt ảnh biển số thành các glyph ký tự đã chuẩn hoá kích thước:
adaptive threshold -> xoá viền -> morphological opening ->
external contours -> lọc kích thước -> glyph 28x28 sắp xếp từ trái sang phải.
"""

import logging
import cv2
import numpy as np
from typing import Any, Dict, List, Optional, Tuple

from anpr_types import GLYPH_SIZE, GlyphImage
from utils.image_utils import ensure_grayscale


logger = logging.getLogger(__name__)

Box = Tuple[int, int, int, int]

_ADAPTIVE_METHODS = {
    "mean": cv2.ADAPTIVE_THRESH_MEAN_C,
    "gaussian": cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
}


def normalize_glyph(region: np.ndarray, size: int = GLYPH_SIZE) -> np.ndarray:
    """
    Resize vùng ký tự nhị phân về size x size rồi nhị phân hoá lại.

    Args:
        region: Lát cắt mask nhị phân (0/255)
        size: Kích thước cạnh đầu ra

    Returns:
        Mảng uint8 chỉ gồm giá trị {0, 255}
    """
    resized = cv2.resize(region, (size, size), interpolation=cv2.INTER_AREA)
    return np.where(resized >= 128, 255, 0).astype(np.uint8)


class CharacterSegmenter:
    """
    Tách ảnh biển số thành các GlyphImage.

    Giả định ký tự tối hơn nền biển số. Trong mask nhị phân, nét chữ = 255.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = dict(config or {})
        self.config = config

        self.block_size = int(config.get("block_size", 11))
        self.c = config.get("c", 2)
        self.method = config.get("method", "mean").lower()
        self.open_kernel = tuple(config.get("open_kernel", [2, 2]))
        self.border_margin_ratio = float(config.get("border_margin_ratio", 0.05))
        self.min_border_margin = int(config.get("min_border_margin", 2))
        self.min_char_height_px = int(config.get("min_char_height_px", 8))
        self.min_char_width_px = int(config.get("min_char_width_px", 2))
        self.min_height_ratio = float(config.get("min_height_ratio", 0.3))
        self.max_height_ratio = float(config.get("max_height_ratio", 0.95))

        if self.block_size < 3 or self.block_size % 2 == 0:
            raise ValueError(f"block_size phải lẻ và >= 3, nhận được: {self.block_size}")
        if self.method not in _ADAPTIVE_METHODS:
            raise ValueError(
                f"method phải là một trong {sorted(_ADAPTIVE_METHODS)}, nhận được: {self.method}"
            )

    # =========================================================================
    # BINARIZATION
    # =========================================================================

    def border_margin(self, shape: Tuple[int, ...]) -> int:
        height, width = shape[:2]
        return max(self.min_border_margin, int(round(self.border_margin_ratio * min(height, width))))

    def binarize(self, image: np.ndarray) -> np.ndarray:
        """
        Mask nhị phân của nét chữ.

        Args:
            image: Ảnh biển số đã crop (BGR hoặc grayscale)

        Returns:
            Mask uint8, nét chữ = 255

        Raises:
            InvalidFrame: ảnh crop rỗng hoặc sai định dạng
        """
        gray = ensure_grayscale(image)

        mask = cv2.adaptiveThreshold(
            gray, 255,
            _ADAPTIVE_METHODS[self.method],
            cv2.THRESH_BINARY_INV,
            self.block_size,
            self.c
        )

        # Viền biển số còn sót trong crop tạo thành một khung bao quanh các
        # ký tự, khi đó cả khung chỉ ra một external contour duy nhất.
        margin = self.border_margin(mask.shape)
        mask[:margin, :] = 0
        mask[-margin:, :] = 0
        mask[:, :margin] = 0
        mask[:, -margin:] = 0

        kernel = np.ones(self.open_kernel, np.uint8)
        return cv2.morphologyEx(mask, cv2.MORPH_OPEN, kernel)

    # =========================================================================
    # CHARACTER BOXES
    # =========================================================================

    def _is_character(self, box: Box, crop_height: int) -> bool:
        _, _, w, h = box
        min_height = max(self.min_char_height_px, self.min_height_ratio * crop_height)
        return (
            h > w
            and h >= min_height
            and h <= self.max_height_ratio * crop_height
            and w >= self.min_char_width_px
        )

    def find_boxes(self, mask: np.ndarray) -> List[Box]:
        """
        Bounding box các ký tự trong mask, sắp xếp từ trái sang phải.

        Khoá sắp xếp là x; y, w, h chỉ dùng khi x trùng nhau.
        """
        contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        boxes = []
        for contour in contours:
            box = tuple(int(v) for v in cv2.boundingRect(contour))
            if self._is_character(box, mask.shape[0]):
                boxes.append(box)

        boxes.sort()
        return boxes

    # =========================================================================
    # SEGMENT
    # =========================================================================

    def segment(self, image: np.ndarray) -> List[GlyphImage]:
        """
        Tách ảnh biển số thành các glyph.

        Args:
            image: Ảnh biển số đã crop (BGR hoặc grayscale)

        Returns:
            Danh sách glyph theo vị trí ngang (có thể rỗng)
        """
        mask = self.binarize(image)
        boxes = self.find_boxes(mask)

        glyphs = []
        for x, y, w, h in boxes:
            pixels = normalize_glyph(mask[y:y + h, x:x + w])
            glyphs.append(GlyphImage(pixels=pixels, bbox=(x, y, w, h)))

        logger.debug("Segmented %d glyphs from %s crop", len(glyphs), mask.shape)
        return glyphs

    def __repr__(self) -> str:
        return (
            f"CharacterSegmenter(block_size={self.block_size}, c={self.c}, "
            f"method='{self.method}', min_height_ratio={self.min_height_ratio})"
        )
