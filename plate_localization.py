"""
Plate Localization Module for the ANPR pipeline

Tìm vùng có hình dạng biển số trên frame xám đã tiền xử lý:
Canny -> morphological closing -> contours -> lọc theo tỉ lệ khung và
diện tích.

Cách chọn khi có nhiều contour hợp lệ:
- "first"   : contour hợp lệ đầu tiên theo thứ tự của cv2.findContours
- "largest" : contour hợp lệ có diện tích lớn nhất (bằng nhau: lấy cái trước)
"""

import logging
import cv2
import numpy as np
from typing import Any, Dict, List, Optional, Tuple

from anpr_types import RegionOfInterest
from utils.image_utils import ensure_grayscale


logger = logging.getLogger(__name__)

_RETRIEVAL_MODES = {
    "external": cv2.RETR_EXTERNAL,
    "tree": cv2.RETR_TREE,
    "list": cv2.RETR_LIST,
}

_SELECTIONS = ("first", "largest")


class PlateLocalizer:
    """
    Tìm biển số dựa trên cạnh và contour.

    Mọi ngưỡng hình học lấy từ mục `localization` của config. Diện tích tối
    thiểu là tỉ lệ so với diện tích frame nên cùng một config dùng được cho
    nhiều độ phân giải; `min_area_px` là ngưỡng tuyệt đối (tuỳ chọn).
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = dict(config or {})
        self.config = config

        self.canny_threshold1 = config.get("canny_threshold1", 100)
        self.canny_threshold2 = config.get("canny_threshold2", 200)
        self.close_kernel = tuple(config.get("close_kernel", [5, 5]))
        self.min_aspect_ratio = float(config.get("min_aspect_ratio", 2.0))
        self.max_aspect_ratio = float(config.get("max_aspect_ratio", 6.0))
        self.min_area_ratio = float(config.get("min_area_ratio", 0.002))
        self.min_area_px = float(config.get("min_area_px", 0))
        self.retrieval = config.get("retrieval", "external").lower()
        self.selection = config.get("selection", "first").lower()

        if self.retrieval not in _RETRIEVAL_MODES:
            raise ValueError(
                f"retrieval phải là một trong {sorted(_RETRIEVAL_MODES)}, nhận được: {self.retrieval}"
            )
        if self.selection not in _SELECTIONS:
            raise ValueError(f"selection phải là một trong {_SELECTIONS}, nhận được: {self.selection}")
        if not 0 < self.min_aspect_ratio <= self.max_aspect_ratio:
            raise ValueError(
                f"Khoảng aspect ratio không hợp lệ: [{self.min_aspect_ratio}, {self.max_aspect_ratio}]"
            )

    def min_area(self, image_shape: Tuple[int, ...]) -> float:
        """Diện tích contour tối thiểu (pixel) cho frame có shape này."""
        height, width = image_shape[:2]
        return max(self.min_area_ratio * height * width, self.min_area_px)

    def edge_map(self, image: np.ndarray) -> np.ndarray:
        """Cạnh Canny, các khe hở nhỏ trên viền biển số đã được nối lại."""
        edges = cv2.Canny(image, self.canny_threshold1, self.canny_threshold2)
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, self.close_kernel)
        return cv2.morphologyEx(edges, cv2.MORPH_CLOSE, kernel)

    def find_candidates(self, image: np.ndarray) -> List[Tuple[RegionOfInterest, float]]:
        """
        Tất cả vùng hợp lệ, theo thứ tự tìm thấy contour.

        Args:
            image: Frame xám đã tiền xử lý

        Returns:
            List of (roi, contour_area)
        """
        image = ensure_grayscale(image)
        closed = self.edge_map(image)
        contours, _ = cv2.findContours(
            closed, _RETRIEVAL_MODES[self.retrieval], cv2.CHAIN_APPROX_SIMPLE
        )

        min_area = self.min_area(image.shape)
        candidates = []
        for contour in contours:
            x, y, w, h = cv2.boundingRect(contour)
            if h == 0:
                continue
            aspect_ratio = w / float(h)
            area = cv2.contourArea(contour)

            if (self.min_aspect_ratio <= aspect_ratio <= self.max_aspect_ratio
                    and area >= min_area):
                candidates.append((RegionOfInterest(x, y, w, h), area))

        logger.debug(
            "%d contours, %d plate candidates (min_area=%.0f)",
            len(contours), len(candidates), min_area
        )
        return candidates

    def localize(self, image: np.ndarray) -> Optional[RegionOfInterest]:
        """
        Chọn vùng biển số.

        Args:
            image: Frame xám đã tiền xử lý

        Returns:
            RegionOfInterest, hoặc None nếu không có vùng nào giống biển số
        """
        candidates = self.find_candidates(image)
        if not candidates:
            return None

        if self.selection == "largest":
            # max() giữ contour đầu tiên khi diện tích bằng nhau
            roi, _ = max(candidates, key=lambda c: c[1])
            return roi

        return candidates[0][0]

    def __repr__(self) -> str:
        return (
            f"PlateLocalizer(aspect=[{self.min_aspect_ratio}, {self.max_aspect_ratio}], "
            f"min_area_ratio={self.min_area_ratio}, selection='{self.selection}')"
        )
