"""
Image Utilities for the ANPR pipeline

Các hàm tiện ích xử lý ảnh đầu vào: load, kiểm tra, chuyển grayscale, và
hàm vẽ ký tự dùng để sinh glyph mẫu.
"""

import os
import base64
import binascii
import numpy as np
import cv2
from typing import Union

from anpr_errors import InvalidFrame
from anpr_types import Frame


# =============================================================================
# IMAGE LOADING
# =============================================================================

def _decode(image_bytes: bytes, flags: int) -> np.ndarray:
    nparr = np.frombuffer(image_bytes, np.uint8)
    if nparr.size == 0:
        raise InvalidFrame("Cannot decode image from empty bytes")
    image = cv2.imdecode(nparr, flags)
    if image is None:
        raise InvalidFrame("Cannot decode image from bytes")
    return image


def load_image(
    source: Union[str, bytes, np.ndarray, Frame],
    flags: int = cv2.IMREAD_COLOR
) -> np.ndarray:
    """
    Load ảnh từ nhiều nguồn khác nhau.

    Hỗ trợ:
    - Đường dẫn file (str)
    - Data URL (data:image/...;base64,...) hoặc chuỗi base64
    - Bytes đã encode (JPEG, PNG, ...)
    - Numpy array hoặc Frame (trả về trực tiếp, không copy)

    Args:
        source: Nguồn ảnh
        flags: OpenCV imread/imdecode flags (default: IMREAD_COLOR = BGR)

    Returns:
        numpy array

    Raises:
        FileNotFoundError: file không tồn tại
        InvalidFrame: không decode được, hoặc source là None / kiểu không
            hỗ trợ

    Examples:
        >>> img = load_image("plate.jpg")
        >>> img = load_image(image_bytes)
        >>> img = load_image(frame)
    """
    if isinstance(source, Frame):
        return source.data

    if isinstance(source, np.ndarray):
        return source

    if isinstance(source, str):
        # Data URL format: data:image/jpeg;base64,/9j/4AAQ...
        if source.startswith("data:image"):
            try:
                _, encoded = source.split(",", 1)
                return _decode(base64.b64decode(encoded), flags)
            except (ValueError, binascii.Error) as e:
                raise InvalidFrame(f"Malformed data URL: {e}") from e

        # Chuỗi base64 (không có header)
        if len(source) > 100 and not os.path.exists(source):
            try:
                image_bytes = base64.b64decode(source, validate=True)
            except binascii.Error:
                image_bytes = None  # Not base64, try as file path
            if image_bytes is not None:
                return _decode(image_bytes, flags)

        if not os.path.exists(source):
            raise FileNotFoundError(f"Image file not found: {source}")

        image = cv2.imread(source, flags)
        if image is None:
            raise InvalidFrame(f"Cannot read image: {source}")
        return image

    if isinstance(source, (bytes, bytearray)):
        return _decode(bytes(source), flags)

    raise InvalidFrame(f"Unsupported source type: {type(source)}")


def to_frame(source: Union[str, bytes, np.ndarray, Frame]) -> Frame:
    """Bọc nguồn ảnh thành Frame, giữ lại nhãn nguồn."""
    if isinstance(source, Frame):
        return source
    label = source if isinstance(source, str) and len(source) < 256 else type(source).__name__
    return Frame(data=load_image(source), source=label)


# =============================================================================
# IMAGE VALIDATION / CONVERSION
# =============================================================================

def is_valid_image(image: np.ndarray) -> bool:
    """
    Kiểm tra ảnh có hợp lệ không.

    Args:
        image: Ảnh cần kiểm tra

    Returns:
        True nếu hợp lệ
    """
    if image is None:
        return False

    if not isinstance(image, np.ndarray):
        return False

    if image.size == 0:
        return False

    # Phải có 2 chiều (h, w) hoặc 3 chiều (h, w, c)
    if image.ndim not in (2, 3):
        return False

    # Nếu có 3 chiều, channel phải là 1, 3, hoặc 4
    if image.ndim == 3 and image.shape[2] not in (1, 3, 4):
        return False

    return True


def ensure_uint8(image: np.ndarray) -> np.ndarray:
    """Cắt giá trị về 0..255 và chuyển sang uint8 (bool -> 0/255)."""
    if image.dtype == np.uint8:
        return image
    if image.dtype == np.bool_:
        return image.astype(np.uint8) * 255
    return np.clip(image, 0, 255).astype(np.uint8)


def ensure_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Đảm bảo ảnh ở format grayscale 1 channel, uint8.

    Args:
        image: Ảnh đầu vào

    Returns:
        Ảnh grayscale (HxW)

    Raises:
        InvalidFrame: ảnh rỗng hoặc shape không hỗ trợ
    """
    if not is_valid_image(image):
        shape = getattr(image, "shape", None)
        raise InvalidFrame(f"Unsupported or empty image (shape={shape})")

    image = ensure_uint8(image)

    # Already grayscale
    if image.ndim == 2:
        return image

    if image.shape[2] == 1:
        return image[:, :, 0]

    # BGR -> Grayscale
    if image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

    # BGRA -> Grayscale
    return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)


def get_image_info(image: np.ndarray) -> dict:
    """
    Lấy thông tin về ảnh (dùng cho log).

    Args:
        image: Ảnh đầu vào

    Returns:
        Dict với thông tin ảnh
    """
    if not is_valid_image(image):
        return {"valid": False}

    info = {
        "valid": True,
        "height": image.shape[0],
        "width": image.shape[1],
        "channels": image.shape[2] if image.ndim == 3 else 1,
        "dtype": str(image.dtype),
        "size_mb": image.nbytes / (1024 * 1024),
    }

    if image.ndim == 2 or image.shape[2] == 1:
        info["format"] = "grayscale"
    elif image.shape[2] == 3:
        info["format"] = "BGR"
    else:
        info["format"] = "BGRA"

    return info


# =============================================================================
# CHARACTER RENDERING
# =============================================================================

def render_character(
    char: str,
    font_face: int = cv2.FONT_HERSHEY_SIMPLEX,
    font_scale: float = 1.5,
    thickness: int = 3,
    padding: int = 10
) -> np.ndarray:
    """
    Vẽ một ký tự màu đen trên ô nền trắng.

    Kích thước ô lấy từ cv2.getTextSize cộng `padding` mỗi phía, nên nét chữ
    không chạm viền ô. Ô được threshold sau khi vẽ nên chỉ có giá trị 0/255,
    kể cả với bản OpenCV vẽ mép nét thành màu xám.

    Args:
        char: Ký tự cần vẽ
        font_face: Font Hershey của OpenCV
        font_scale: Tỉ lệ font
        thickness: Độ dày nét (pixel)
        padding: Lề trắng quanh khung chữ

    Returns:
        Ô grayscale uint8
    """
    if not char:
        raise ValueError("char must be a non-empty string")

    (text_w, text_h), baseline = cv2.getTextSize(char, font_face, font_scale, thickness)
    height = text_h + baseline + 2 * padding
    width = text_w + 2 * padding

    tile = np.full((height, width), 255, dtype=np.uint8)
    cv2.putText(
        tile, char, (padding, padding + text_h),
        font_face, font_scale, 0, thickness, cv2.LINE_8
    )
    # Một số bản OpenCV để lại pixel xám ở mép nét
    return np.where(tile < 128, 0, 255).astype(np.uint8)
