import numpy as np
import pytest

from mibae_lib import EuclideanColorDistance, PatternCache, PatternSearch, PerceptualColorDistance
from palettes import Palette
from tones import TONE_PERIOD


def solid_rgba(height, width, rgb, alpha=255):
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[..., :3] = rgb
    pixels[..., 3] = alpha
    return pixels


def random_rgba(height, width, seed=0):
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    pixels[..., 3] = 255
    return pixels


@pytest.fixture
def pattern_cache():
    return PatternCache()


@pytest.fixture
def euclidean_search(pattern_cache):
    return PatternSearch(pattern_cache, EuclideanColorDistance())


@pytest.fixture
def perceptual_search(pattern_cache):
    return PatternSearch(pattern_cache, PerceptualColorDistance())


@pytest.fixture
def solid_window():
    def make(rgb, alpha=255):
        return solid_rgba(TONE_PERIOD, TONE_PERIOD, rgb, alpha)
    return make


@pytest.fixture
def greedy_palette():
    """Palette where the tier-by-tier search misses the best foreground."""
    return Palette({
        "light": ["#5a5a5a", "#ffffff"],
        "dark": ["#000000", "#646464"],
    })
