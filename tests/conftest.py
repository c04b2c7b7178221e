"""
Shared fixtures: synthetic plates and frames drawn with OpenCV.

Characters are rendered with utils.image_utils.render_character, the same
renderer used to build the synthetic training glyphs, so a glyph cut from
a synthetic plate matches its training exemplar pixel for pixel.
"""

import cv2
import numpy as np
import pytest

from glyph_classifier import train
from glyph_dataset import render_glyph_samples
from utils.image_utils import render_character


DIGITS = "0123456789"
PLATE_TEXT = "731"
BACKGROUND = 50


def compose_plate(text, pad_x=40, pad_y=8):
    """White plate with the characters of `text` side by side."""
    tiles = [render_character(c) for c in text]
    height = max(t.shape[0] for t in tiles) + 2 * pad_y
    width = sum(t.shape[1] for t in tiles) + 2 * pad_x

    plate = np.full((height, width), 255, dtype=np.uint8)
    x = pad_x
    for tile in tiles:
        h, w = tile.shape
        plate[pad_y:pad_y + h, x:x + w] = tile
        x += w
    return plate


def compose_frame(plate=None, size=(480, 640), origin=(200, 180), background=BACKGROUND):
    """BGR frame with `plate` pasted at origin=(x, y)."""
    frame = np.full(size, background, dtype=np.uint8)
    if plate is not None:
        x, y = origin
        h, w = plate.shape[:2]
        frame[y:y + h, x:x + w] = plate
    return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)


@pytest.fixture
def make_plate():
    return compose_plate


@pytest.fixture
def make_frame():
    return compose_frame


@pytest.fixture
def plate_frame():
    """(frame, plate_box) for a plate reading PLATE_TEXT."""
    plate = compose_plate(PLATE_TEXT)
    origin = (200, 180)
    frame = compose_frame(plate, origin=origin)
    box = (origin[0], origin[1], plate.shape[1], plate.shape[0])
    return frame, box


@pytest.fixture(scope="session")
def digit_samples():
    return render_glyph_samples(DIGITS, font_faces=(cv2.FONT_HERSHEY_SIMPLEX,))


@pytest.fixture(scope="session")
def digit_model(digit_samples):
    return train(digit_samples, k=3)
