import numpy as np
import pytest
from PIL import Image

from conftest import random_rgba, solid_rgba
from mibae_lib import (
    LUMA_WEIGHTS,
    ImageFilterer,
    MibaeFilter,
    PatternCache,
)
from tones import ToneLibrary, TONE_PERIOD
from utils import ConfigurationError


@pytest.fixture
def euclidean_filter():
    return MibaeFilter(distance_metric="euclidean")


def test_runs_are_deterministic(euclidean_filter):
    pixels = random_rgba(10, 12, seed=3)
    original = pixels.copy()

    first = euclidean_filter.apply(pixels)
    second = MibaeFilter(distance_metric="euclidean", pattern_cache=PatternCache()).apply(pixels)

    np.testing.assert_array_equal(first, second)
    np.testing.assert_array_equal(pixels, original)


def test_reversed_row_order_changes_result(euclidean_filter):
    pixels = random_rgba(12, 12, seed=0)
    forward = euclidean_filter.apply(pixels)

    context = euclidean_filter.create_context(pixels)
    for y in reversed(range(context.height)):
        euclidean_filter.process_row(context, y)

    assert not np.array_equal(forward, context.output)


@pytest.mark.parametrize("distance_metric", ["euclidean", "perceptual"])
def test_palette_colored_image_is_reproduced(distance_metric):
    mibae_filter = MibaeFilter(distance_metric=distance_metric)
    pixels = solid_rgba(6, 7, (255, 255, 255))
    context = mibae_filter.create_context(pixels, zoom=2)

    for _ in mibae_filter.iter_rows(context):
        pass

    assert (context.output == 255).all()
    # no error, no drift
    np.testing.assert_array_equal(context.source, pixels)


def test_mid_gray_stays_near_mid_gray(euclidean_filter):
    output = euclidean_filter.apply(solid_rgba(12, 12, (128, 128, 128)))
    mean_luma = float((output[..., :3].astype(np.float64) @ LUMA_WEIGHTS).mean())
    assert abs(mean_luma - 128) <= 64


def test_output_is_zoomed_in_uniform_blocks(euclidean_filter):
    zoom = 3
    output = euclidean_filter.apply(random_rgba(4, 5, seed=1), zoom=zoom)

    assert output.shape == (4 * zoom, 5 * zoom, 4)
    assert output.dtype == np.uint8
    assert (output[..., 3] == 255).all()
    for y in range(4):
        for x in range(5):
            block = output[y * zoom:(y + 1) * zoom, x * zoom:(x + 1) * zoom]
            assert (block == block[0, 0]).all()


def test_output_only_uses_palette_colors(euclidean_filter):
    output = euclidean_filter.apply(random_rgba(6, 6, seed=2))
    palette_rgb = {euclidean_filter.palette.rgb(color) for color in euclidean_filter.palette.colors()}
    used = {tuple(int(v) for v in pixel[:3]) for pixel in output.reshape(-1, 4)}
    assert used <= palette_rgb


def test_stop_after_first_row(euclidean_filter):
    progress = []
    output = euclidean_filter.apply(
        random_rgba(5, 4, seed=4), zoom=2,
        progress_callback=lambda fraction, message: progress.append(fraction),
        should_stop=lambda: True,
    )

    assert progress == [pytest.approx(1 / 5)]
    assert (output[:2, :, 3] == 255).all()
    assert (output[2:] == 0).all()


def test_progress_reported_per_row(euclidean_filter):
    progress = []
    euclidean_filter.apply(random_rgba(4, 3, seed=5),
                           progress_callback=lambda fraction, message: progress.append((fraction, message)))

    assert [fraction for fraction, _ in progress] == pytest.approx([0.25, 0.5, 0.75, 1.0])
    assert progress[-1][1] == "Row 4/4"


def test_row_generator_can_be_resumed(euclidean_filter):
    pixels = random_rgba(6, 5, seed=6)
    context = euclidean_filter.create_context(pixels)

    rows = euclidean_filter.iter_rows(context)
    assert [next(rows), next(rows)] == [0, 1]
    assert context.rows_done == 2
    assert (context.output[2:] == 0).all()

    # A fresh generator picks up where the previous one left off.
    assert list(euclidean_filter.iter_rows(context)) == [2, 3, 4, 5]
    np.testing.assert_array_equal(context.output, euclidean_filter.apply(pixels))


def test_window_is_centered_on_pixel(euclidean_filter):
    pixels = random_rgba(3, 3, seed=8)
    context = euclidean_filter.create_context(pixels)
    window = euclidean_filter.extract_window(context, 0, 0)

    half = TONE_PERIOD // 2
    assert window.shape == (TONE_PERIOD, TONE_PERIOD, 4)
    assert (window[:half, :, 3] == 0).all()
    np.testing.assert_array_equal(window[half:half + 3, half:half + 3], pixels)


def test_phase_offsets_use_non_negative_remainder(euclidean_filter):
    half = TONE_PERIOD // 2
    context = euclidean_filter.create_context(random_rgba(TONE_PERIOD + 2, TONE_PERIOD + 2, seed=10))

    # left of and above P/2 the offset is P - (P/2 - x), not abs(x - P/2)
    corner = euclidean_filter.process_cell(context, 2, 3)
    assert (corner.offset_x, corner.offset_y) == (TONE_PERIOD - half + 2, TONE_PERIOD - half + 3)

    centered = euclidean_filter.process_cell(context, half, half)
    assert (centered.offset_x, centered.offset_y) == (0, 0)

    far = euclidean_filter.process_cell(context, TONE_PERIOD + 1, half + 1)
    assert (far.offset_x, far.offset_y) == (half + 1, 1)


def test_invalid_buffers_are_rejected(euclidean_filter):
    with pytest.raises(ValueError):
        euclidean_filter.apply(np.zeros((4, 4, 3), dtype=np.uint8))
    with pytest.raises(TypeError):
        euclidean_filter.apply(np.zeros((4, 4, 4), dtype=np.float32))
    with pytest.raises(ValueError):
        euclidean_filter.apply(np.zeros((4, 4, 4), dtype=np.uint8), zoom=0)


def test_invalid_parameters_are_rejected():
    with pytest.raises(ValueError):
        MibaeFilter(distance_metric="manhattan")
    with pytest.raises(ValueError):
        MibaeFilter(search_mode="random")
    with pytest.raises(ValueError):
        MibaeFilter(flat_window_lightness=300)
    with pytest.raises(ValueError):
        MibaeFilter(dithering_rate=-1)

    other_tones = ToneLibrary({"fill": np.ones((TONE_PERIOD, TONE_PERIOD), dtype=bool)})
    with pytest.raises(ConfigurationError):
        MibaeFilter(tones=other_tones, pattern_cache=PatternCache())


def test_current_parameters_round_trip():
    params = {
        'distance_metric': 'euclidean',
        'dithering_rate': 0.25,
        'flat_window_lightness': 40,
        'search_mode': 'exact',
    }
    assert MibaeFilter(**params).get_current_parameters() == params
    defaults = {key: info['default'] for key, info in MibaeFilter.get_parameter_info().items()}
    assert MibaeFilter().get_current_parameters() == defaults


def test_exact_search_gives_same_image():
    pixels = random_rgba(3, 4, seed=9)
    vectorized = MibaeFilter(distance_metric="euclidean").apply(pixels)
    exact = MibaeFilter(distance_metric="euclidean", search_mode="exact").apply(pixels)
    np.testing.assert_array_equal(vectorized, exact)


def test_custom_tone_library_gets_own_cache():
    tones = ToneLibrary({"fill": np.ones((TONE_PERIOD, TONE_PERIOD), dtype=bool)})
    mibae_filter = MibaeFilter(distance_metric="euclidean", tones=tones)
    assert mibae_filter.pattern_cache is not PatternCache.shared()
    mibae_filter.apply(random_rgba(2, 2))
    assert len(mibae_filter.pattern_cache) > 0


def test_geometry_resolution():
    assert ImageFilterer(zoom=2).resolve_geometry((640, 360)) == ((320, 180), 2)
    assert ImageFilterer(container_size=(1344, 868)).resolve_geometry((640, 360)) == ((320, 180), 8)
    assert ImageFilterer().resolve_geometry((640, 360)) == ((320, 180), 1)
    # explicit zoom wins
    assert ImageFilterer(zoom=3, container_size=(1344, 868)).resolve_geometry((640, 360))[1] == 3


def test_apply_filter_on_pillow_image():
    filterer = ImageFilterer(MibaeFilter(distance_metric="euclidean"), target_pixels=50, zoom=2)
    image = Image.new("RGB", (40, 20), (255, 255, 255))

    result = filterer.apply_filter(image)

    assert result.mode == "RGBA"
    assert result.size == (20, 10)
    assert (np.array(result) == 255).all()
