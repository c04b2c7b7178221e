"""
Text Utilities for the ANPR pipeline

Bảng ký tự cho glyph classifier và chuẩn hóa chuỗi biển số nhận dạng được.

Classifier có 36 lớp:
- Chữ số 0-9
- Chữ cái latin in hoa A-Z
"""

import re
import string
from typing import Optional

# =============================================================================
# CONSTANTS
# =============================================================================

ALPHABET = string.digits + string.ascii_uppercase

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


# =============================================================================
# NORMALIZE FUNCTIONS
# =============================================================================

def normalize_label(label: str) -> str:
    """
    Chuẩn hóa nhãn training thành một ký tự trong bảng.

    Args:
        label: Nhãn gốc (vd: "a", " 7 ")

    Returns:
        Một ký tự in hoa

    Raises:
        ValueError: nhãn không thuộc 36 ký tự chữ và số

    Examples:
        >>> normalize_label("a")
        "A"
    """
    if not isinstance(label, str):
        raise ValueError(f"Label must be a string, got: {type(label)}")

    result = label.strip().upper()
    if len(result) != 1 or result not in ALPHABET:
        raise ValueError(f"Label must be one of 0-9A-Z, got: {label!r}")
    return result


def normalize_plate(plate_text: Optional[str]) -> str:
    """
    Chuẩn hóa text biển số.

    - Chuyển thành chữ hoa
    - Loại bỏ dấu phân cách và ký tự ngoài 0-9A-Z

    Args:
        plate_text: Text biển số gốc

    Returns:
        Text đã chuẩn hóa ("" nếu None/rỗng)

    Examples:
        >>> normalize_plate("ab-12 3")
        "AB123"
    """
    if not plate_text:
        return ""

    return _NON_ALNUM.sub("", plate_text.upper())


# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================

def is_valid_plate(plate_text: str, min_length: int = 1, max_length: int = 10) -> bool:
    """
    Kiểm tra biển số chỉ gồm ký tự trong bảng và có độ dài hợp lý.

    Args:
        plate_text: Text biển số (đã chuẩn hóa)
        min_length: Số ký tự tối thiểu
        max_length: Số ký tự tối đa

    Returns:
        True nếu hợp lệ
    """
    if not plate_text:
        return False

    if not min_length <= len(plate_text) <= max_length:
        return False

    return all(c in ALPHABET for c in plate_text)
