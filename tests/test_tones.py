import numpy as np
import pytest

from tones import DEFAULT_TONES, TONE_LIBRARY, TONE_PERIOD, ToneLibrary, tone_from_rows
from utils import ConfigurationError


def test_default_tones_are_read_only_period_bitmaps():
    for tone in TONE_LIBRARY:
        assert tone.bitmap.shape == (TONE_PERIOD, TONE_PERIOD)
        assert tone.bitmap.dtype == bool
        assert not tone.bitmap.flags.writeable


def test_bitmap_cannot_be_modified():
    with pytest.raises(ValueError):
        TONE_LIBRARY.get("checker").bitmap[0, 0] = False


def test_library_keeps_definition_order():
    assert TONE_LIBRARY.names() == list(DEFAULT_TONES)
    assert TONE_LIBRARY.names()[0] == "fill"
    assert len(TONE_LIBRARY) == len(DEFAULT_TONES)


def test_fill_covers_whole_period():
    assert TONE_LIBRARY.get("fill").coverage == 1.0


def test_is_foreground_wraps_around_period():
    checker = TONE_LIBRARY.get("checker")
    assert checker.is_foreground(0, 0)
    assert not checker.is_foreground(1, 0)
    assert checker.is_foreground(TONE_PERIOD, TONE_PERIOD)
    assert not checker.is_foreground(TONE_PERIOD + 1, 0)


def test_unknown_tone_raises():
    assert "zigzag" not in TONE_LIBRARY
    with pytest.raises(ConfigurationError):
        TONE_LIBRARY.get("zigzag")


def test_tone_from_rows_rejects_wrong_size():
    with pytest.raises(ConfigurationError):
        tone_from_rows(["#."] * TONE_PERIOD)


def test_library_rejects_wrong_shape():
    with pytest.raises(ConfigurationError):
        ToneLibrary({"tiny": np.ones((8, 8), dtype=bool)})
    with pytest.raises(ConfigurationError):
        ToneLibrary({})


def test_library_copies_bitmaps():
    bitmap = np.zeros((TONE_PERIOD, TONE_PERIOD), dtype=bool)
    library = ToneLibrary({"blank": bitmap})
    bitmap[0, 0] = True
    assert not library.get("blank").is_foreground(0, 0)
