import pytest

from utils.text_utils import ALPHABET, is_valid_plate, normalize_label, normalize_plate


def test_alphabet():
    assert len(ALPHABET) == 36
    assert ALPHABET[:10] == "0123456789"


@pytest.mark.parametrize("raw, expected", [("a", "A"), (" 7 ", "7"), ("Z", "Z")])
def test_normalize_label(raw, expected):
    assert normalize_label(raw) == expected


@pytest.mark.parametrize("raw", ["", "AB", "-", "é", None, 3])
def test_normalize_label_rejects(raw):
    with pytest.raises(ValueError):
        normalize_label(raw)


@pytest.mark.parametrize("raw, expected", [
    ("ab-12 3", "AB123"),
    ("51F.123.45", "51F12345"),
    ("", ""),
    (None, ""),
])
def test_normalize_plate(raw, expected):
    assert normalize_plate(raw) == expected


def test_is_valid_plate():
    assert is_valid_plate("731")
    assert not is_valid_plate("")
    assert not is_valid_plate("73-1")
    assert not is_valid_plate("ABCDEFGHIJK")
    assert is_valid_plate("AB", min_length=2, max_length=2)
