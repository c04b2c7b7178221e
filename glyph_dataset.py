"""
Glyph Dataset Module for the ANPR pipeline

Tạo các cặp (GlyphImage, label) để train glyph classifier.

Cấu trúc thư mục cho load_glyph_dataset():

    dataset/
        0/  img001.png img002.png ...
        1/  ...
        A/  ...

Mọi ảnh đều đi qua cùng CharacterSegmenter dùng lúc inference, nên glyph
train và glyph trên biển số được chuẩn hoá giống nhau.
"""

import logging
import os
from typing import Iterable, List, Optional, Sequence, Tuple

import cv2

from anpr_errors import InvalidFrame
from anpr_types import GlyphImage
from char_segmentation import CharacterSegmenter
from utils.image_utils import load_image, render_character
from utils.text_utils import ALPHABET, normalize_label


logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff")

DEFAULT_FONT_FACES = (
    cv2.FONT_HERSHEY_SIMPLEX,
    cv2.FONT_HERSHEY_DUPLEX,
)

Sample = Tuple[GlyphImage, str]


def glyph_from_image(image, segmenter: CharacterSegmenter) -> Optional[GlyphImage]:
    """
    Glyph cao nhất trong ảnh một ký tự, hoặc None.

    Args:
        image: Ảnh ký tự (chữ tối trên nền sáng)
        segmenter: Segmenter dùng để tách glyph
    """
    glyphs = segmenter.segment(image)
    if not glyphs:
        return None
    # max() giữ glyph bên trái nhất khi chiều cao bằng nhau
    return max(glyphs, key=lambda g: g.bbox[3])


def load_glyph_dataset(
    root: str,
    segmenter: Optional[CharacterSegmenter] = None
) -> List[Sample]:
    """
    Load glyph đã gán nhãn từ cây thư mục (mỗi label một thư mục con).

    Bỏ qua thư mục con có tên không phải label hợp lệ, ảnh không đọc được
    và ảnh không chứa ký tự nào.

    Args:
        root: Thư mục dataset
        segmenter: Segmenter sử dụng (config mặc định nếu None)

    Returns:
        List (GlyphImage, label), sắp xếp theo label rồi theo tên file

    Raises:
        FileNotFoundError: root không tồn tại
    """
    if not os.path.isdir(root):
        raise FileNotFoundError(f"Không tìm thấy thư mục dataset: {root}")

    segmenter = segmenter or CharacterSegmenter()
    samples = []
    skipped = 0

    for entry in sorted(os.listdir(root)):
        label_dir = os.path.join(root, entry)
        if not os.path.isdir(label_dir):
            continue
        try:
            label = normalize_label(entry)
        except ValueError:
            logger.warning("Skipping directory %s: not a 0-9A-Z label", label_dir)
            continue

        for file_name in sorted(os.listdir(label_dir)):
            if not file_name.lower().endswith(IMAGE_EXTENSIONS):
                continue
            path = os.path.join(label_dir, file_name)
            try:
                glyph = glyph_from_image(load_image(path, cv2.IMREAD_GRAYSCALE), segmenter)
            except InvalidFrame as e:
                logger.warning("Skipping %s: %s", path, e)
                skipped += 1
                continue
            if glyph is None:
                logger.warning("Skipping %s: no character found", path)
                skipped += 1
                continue
            samples.append((glyph, label))

    logger.info("Loaded %d glyphs from %s (%d skipped)", len(samples), root, skipped)
    return samples


def render_glyph_samples(
    labels: Iterable[str] = ALPHABET,
    font_faces: Sequence[int] = DEFAULT_FONT_FACES,
    font_scales: Sequence[float] = (1.5,),
    thicknesses: Sequence[int] = (3,),
    segmenter: Optional[CharacterSegmenter] = None
) -> List[Sample]:
    """
    Sinh glyph có nhãn bằng cách vẽ ký tự với font Hershey.

    Mỗi tổ hợp (label, font, scale, thickness) cho một mẫu. Ký tự bị
    segmenter loại (vd. chữ rộng hơn cao) sẽ bị bỏ qua.

    Returns:
        List (GlyphImage, label)
    """
    segmenter = segmenter or CharacterSegmenter()
    samples = []

    for label in labels:
        label = normalize_label(label)
        for font_face in font_faces:
            for scale in font_scales:
                for thickness in thicknesses:
                    tile = render_character(label, font_face, scale, thickness)
                    glyph = glyph_from_image(tile, segmenter)
                    if glyph is None:
                        logger.debug(
                            "No glyph for %r (font=%d, scale=%s, thickness=%d)",
                            label, font_face, scale, thickness
                        )
                        continue
                    samples.append((glyph, label))

    logger.info("Rendered %d synthetic glyphs", len(samples))
    return samples
