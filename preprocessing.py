"""
Preprocessing Module for the ANPR pipeline

Chuẩn hoá frame đầu vào trước khi tìm biển số: chuyển ảnh xám, khử nhiễu
giữ cạnh và cân bằng tương phản theo từng ô (CLAHE). Có thể cấu hình
on/off từng bước thông qua mục `preprocessing` của file config YAML.
"""

import cv2
import numpy as np
from typing import Any, Dict, List, Optional, Union

from anpr_types import Frame
from utils.image_utils import ensure_grayscale


MAX_CLIP_LIMIT = 40.0


# =============================================================================
# INDIVIDUAL PREPROCESSING FUNCTIONS
# =============================================================================

def denoise_image(
    image: np.ndarray,
    method: str = "bilateral",
    kernel_size: int = 9,
    sigma_color: float = 75,
    sigma_space: float = 75
) -> np.ndarray:
    """
    Khử nhiễu ảnh.

    Mặc định dùng bilateral: làm mịn vùng phẳng nhưng vẫn giữ cạnh ký tự.

    Args:
        image: Ảnh xám
        method: "bilateral", "median" hoặc "gaussian"
        kernel_size: Đường kính bộ lọc (ép lẻ với median/gaussian)
        sigma_color: Sigma theo cường độ của bilateral
        sigma_space: Sigma theo không gian của bilateral

    Returns:
        Ảnh đã khử nhiễu
    """
    method = method.lower()

    if method == "bilateral":
        return cv2.bilateralFilter(image, kernel_size, sigma_color, sigma_space)

    # Ensure kernel size is odd
    if kernel_size % 2 == 0:
        kernel_size += 1

    if method == "median":
        return cv2.medianBlur(image, kernel_size)
    elif method == "gaussian":
        return cv2.GaussianBlur(image, (kernel_size, kernel_size), 0)

    raise ValueError(f"Phương pháp khử nhiễu không hợp lệ: {method}")


def enhance_contrast(
    image: np.ndarray,
    method: str = "clahe",
    clip_limit: float = 2.0,
    tile_grid_size: tuple = (8, 8)
) -> np.ndarray:
    """
    Cân bằng độ sáng trên toàn frame.

    Args:
        image: Ảnh xám
        method: "clahe", "histogram_eq" hoặc "none"
        clip_limit: Ngưỡng cắt tương phản của CLAHE, trong (0, MAX_CLIP_LIMIT]
        tile_grid_size: Lưới ô của CLAHE

    Returns:
        Ảnh đã tăng tương phản
    """
    method = method.lower()

    if method == "none":
        return image

    if method == "histogram_eq":
        return cv2.equalizeHist(image)

    if method != "clahe":
        raise ValueError(f"Phương pháp tăng tương phản không hợp lệ: {method}")

    if not 0 < clip_limit <= MAX_CLIP_LIMIT:
        raise ValueError(
            f"clip_limit phải trong (0, {MAX_CLIP_LIMIT}], nhận được: {clip_limit}"
        )

    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=tuple(tile_grid_size))
    return clahe.apply(image)


# =============================================================================
# PREPROCESSING PIPELINE CLASS
# =============================================================================

class PreprocessingPipeline:
    """
    Pipeline tiền xử lý: grayscale -> denoise -> enhance_contrast.

    Example config:
        denoise:
          enabled: true
          method: bilateral
          kernel_size: 9
        enhance_contrast:
          enabled: true
          clip_limit: 2.0
          tile_grid_size: [8, 8]
    """

    STEPS = ["denoise", "enhance_contrast"]

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Args:
            config: Mục `preprocessing` trong file config YAML
        """
        self.config = dict(config or {})
        self._validate_config()

    def _validate_config(self):
        """Bước nào thiếu trong config thì mặc định bật với tham số mặc định."""
        for step in self.STEPS:
            if step not in self.config or self.config[step] is None:
                self.config[step] = {"enabled": True}

        cfg = self.config["enhance_contrast"]
        clip_limit = cfg.get("clip_limit", 2.0)
        if not 0 < clip_limit <= MAX_CLIP_LIMIT:
            raise ValueError(
                f"clip_limit phải trong (0, {MAX_CLIP_LIMIT}], nhận được: {clip_limit}"
            )

    def process(self, image: Union[np.ndarray, Frame]) -> np.ndarray:
        """
        Chạy các bước đang bật trên một frame.

        Args:
            image: Frame hoặc numpy array (BGR, BGRA hoặc grayscale)

        Returns:
            Ảnh xám uint8, cùng chiều cao và chiều rộng

        Raises:
            InvalidFrame: input là None, rỗng hoặc sai shape
        """
        if isinstance(image, Frame):
            image = image.data

        # 1. Grayscale (luôn chạy)
        result = ensure_grayscale(image)

        # 2. Khử nhiễu
        if self.config["denoise"].get("enabled", True):
            cfg = self.config["denoise"]
            result = denoise_image(
                result,
                method=cfg.get("method", "bilateral"),
                kernel_size=cfg.get("kernel_size", 9),
                sigma_color=cfg.get("sigma_color", 75),
                sigma_space=cfg.get("sigma_space", 75)
            )

        # 3. Tăng tương phản
        if self.config["enhance_contrast"].get("enabled", True):
            cfg = self.config["enhance_contrast"]
            result = enhance_contrast(
                result,
                method=cfg.get("method", "clahe"),
                clip_limit=cfg.get("clip_limit", 2.0),
                tile_grid_size=tuple(cfg.get("tile_grid_size", [8, 8]))
            )

        # Không trả về buffer của caller
        if np.may_share_memory(result, image):
            result = result.copy()

        return result

    def get_enabled_steps(self) -> List[str]:
        """Danh sách các bước đang bật."""
        return [s for s in self.STEPS if self.config[s].get("enabled", True)]

    def __repr__(self) -> str:
        return f"PreprocessingPipeline(enabled_steps={self.get_enabled_steps()})"
