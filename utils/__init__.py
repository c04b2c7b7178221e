"""
Utils Module for the ANPR pipeline

Các hàm tiện ích dùng chung cho các bước của pipeline.
"""

from .text_utils import ALPHABET, normalize_label, normalize_plate, is_valid_plate
from .image_utils import load_image, to_frame, ensure_grayscale, is_valid_image, render_character

__all__ = [
    # Text utils
    "ALPHABET",
    "normalize_label",
    "normalize_plate",
    "is_valid_plate",
    # Image utils
    "load_image",
    "to_frame",
    "ensure_grayscale",
    "is_valid_image",
    "render_character",
]
