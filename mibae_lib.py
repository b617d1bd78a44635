"""
The Mibae filter: turns a raster image into a stylized halftone built from a
small tiered palette and a library of repeating dot/line tones.

For every pixel of the working image the filter looks at the tone-period
window around it, picks the tone and the background/foreground colors whose
rendered tile is closest to that window, stamps the matching color into the
output, and diffuses the remaining error Floyd–Steinberg style.
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image
from skimage.color import deltaE_cie76, rgb2lab

from palettes import DEFAULT_PALETTE, Palette
from tones import TONE_LIBRARY, TONE_PERIOD, ToneLibrary
from utils import (
    TARGET_PIXELS,
    ConfigurationError,
    compute_working_size,
    compute_zoom,
    ensure_rgba,
    parse_color,
)

logger = logging.getLogger('mibae')

OPAQUE = 255

# Rec. 601 luma
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)

# Lightness given to every opaque pixel of a window whose lightness is flat.
FLAT_WINDOW_LIGHTNESS = 0

DITHERING_RATE = 0.5

# (delta_x, delta_y, weight)
DIFFUSION_PATTERN = (
    (1, 0, 7 / 16),
    (-1, 1, 3 / 16),
    (0, 1, 5 / 16),
    (1, 1, 1 / 16),
)


# -------------------- Enumerations --------------------

class DistanceMetric(Enum):
    PERCEPTUAL = "perceptual"
    EUCLIDEAN = "euclidean"


class SearchMode(Enum):
    VECTORIZED = "vectorized"
    EXACT = "exact"


class EmptyCandidateListError(ValueError):
    """Raised when a pattern search is given no candidates."""
    pass


# -------------------- Patterns & Pattern Cache --------------------

@dataclass(frozen=True)
class Pattern:
    """
    One renderable tile: a tone drawn with two colors at a phase offset.
    """
    tone_type: str
    background_color: str
    foreground_color: str
    offset_y: int
    offset_x: int


@dataclass(frozen=True, eq=False)
class PatternTile:
    pattern: Pattern
    pixels: np.ndarray
    # metric name -> tile colors converted into that metric's space
    prepared: Dict[str, np.ndarray] = field(default_factory=dict, repr=False)

    @property
    def rgb(self) -> np.ndarray:
        return self.pixels[..., :3]


class PatternCache:
    """
    Write-once cache of rendered pattern tiles.

    Tiles are rendered lazily on first request and kept for the lifetime of
    the cache; a cached tile is never re-rendered or replaced.
    """

    _shared: Optional['PatternCache'] = None
    _shared_lock = threading.Lock()

    def __init__(self, tones: ToneLibrary = TONE_LIBRARY):
        self.tones = tones
        self._tiles: Dict[Pattern, PatternTile] = {}
        self._lock = threading.Lock()

    @classmethod
    def shared(cls) -> 'PatternCache':
        """Process-wide cache for the default tone library."""
        with cls._shared_lock:
            if cls._shared is None:
                cls._shared = cls(TONE_LIBRARY)
            return cls._shared

    def render_or_fetch(self, pattern: Pattern) -> PatternTile:
        tile = self._tiles.get(pattern)
        if tile is not None:
            return tile
        with self._lock:
            tile = self._tiles.get(pattern)
            if tile is None:
                tile = self._render(pattern)
                self._tiles[pattern] = tile
        return tile

    def _render(self, pattern: Pattern) -> PatternTile:
        if not (0 <= pattern.offset_y < TONE_PERIOD and 0 <= pattern.offset_x < TONE_PERIOD):
            raise ValueError(
                f"Pattern offsets must be in [0, {TONE_PERIOD}), "
                f"got ({pattern.offset_y}, {pattern.offset_x})"
            )
        tone = self.tones.get(pattern.tone_type)
        background = np.array(parse_color(pattern.background_color), dtype=np.uint8)
        foreground = np.array(parse_color(pattern.foreground_color), dtype=np.uint8)

        # mask[y, x] = bitmap[(y + offset_y) % P, (x + offset_x) % P]
        mask = np.roll(tone.bitmap, shift=(-pattern.offset_y, -pattern.offset_x), axis=(0, 1))

        pixels = np.empty((TONE_PERIOD, TONE_PERIOD, 4), dtype=np.uint8)
        pixels[..., :3] = np.where(mask[..., np.newaxis], foreground, background)
        pixels[..., 3] = OPAQUE
        pixels.setflags(write=False)
        return PatternTile(pattern, pixels)

    def __contains__(self, pattern: Pattern) -> bool:
        return pattern in self._tiles

    def __len__(self) -> int:
        return len(self._tiles)


# -------------------- Color Distance Strategies --------------------

class BaseColorDistance:
    """
    Base class for color distance metrics.

    Each metric must implement .prepare(rgb), which converts an (..., 3) RGB
    array into the space the metric works in, and .pixel_distances(a, b),
    which reduces prepared colors over the last axis to one distance each.
    Scalar distances are memoized by the six channel values of the pair.
    """
    name = "base"

    def __init__(self):
        self._cache: Dict[Tuple[int, int, int, int, int, int], float] = {}

    def prepare(self, rgb: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def pixel_distances(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def distance(self, a: Sequence[int], b: Sequence[int]) -> float:
        key = (int(a[0]), int(a[1]), int(a[2]), int(b[0]), int(b[1]), int(b[2]))
        cached = self._cache.get(key)
        if cached is None:
            # setdefault keeps whichever value was stored first
            cached = self._cache.setdefault(key, self.compute(key))
        return cached

    def compute(self, key: Tuple[int, int, int, int, int, int]) -> float:
        """Uncached distance for a 6-channel key."""
        pair = self.prepare(np.array(key, dtype=np.uint8).reshape(2, 3))
        return float(self.pixel_distances(pair[0], pair[1]))

    def prepare_pixels(self, rgb: np.ndarray) -> np.ndarray:
        """
        prepare() applied per distinct color, so equal colors always get
        bit-identical prepared values wherever they sit in the array.
        """
        colors, inverse = np.unique(np.asarray(rgb).reshape(-1, 3), axis=0, return_inverse=True)
        return self.prepare(colors)[inverse.reshape(-1)]

    def prepare_tile(self, tile: PatternTile) -> np.ndarray:
        prepared = tile.prepared.get(self.name)
        if prepared is None:
            prepared = self.prepare_pixels(tile.rgb)
            prepared.setflags(write=False)
            prepared = tile.prepared.setdefault(self.name, prepared)
        return prepared

    def cache_size(self) -> int:
        return len(self._cache)


class PerceptualColorDistance(BaseColorDistance):
    """
    CIE76 color difference between colors converted to CIE Lab (D65).
    """
    name = DistanceMetric.PERCEPTUAL.value

    def prepare(self, rgb: np.ndarray) -> np.ndarray:
        rgb = np.asarray(rgb, dtype=np.float64) / 255.0
        return rgb2lab(rgb.reshape(1, -1, 3)).reshape(rgb.shape)

    def pixel_distances(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        return deltaE_cie76(a, b)


class EuclideanColorDistance(BaseColorDistance):
    """
    Sum of squared differences of the raw RGB channels.
    """
    name = DistanceMetric.EUCLIDEAN.value

    def prepare(self, rgb: np.ndarray) -> np.ndarray:
        return np.array(rgb, dtype=np.float64)

    def pixel_distances(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        diff = a - b
        return np.sum(diff * diff, axis=-1)


_STRATEGY_CLASSES = {
    DistanceMetric.PERCEPTUAL: PerceptualColorDistance,
    DistanceMetric.EUCLIDEAN: EuclideanColorDistance,
}
_STRATEGIES: Dict[DistanceMetric, BaseColorDistance] = {}
_strategies_lock = threading.Lock()


def get_distance_strategy(metric) -> BaseColorDistance:
    """
    Process-wide instance of a distance metric, so memoized distances are
    shared by every filter run.
    """
    metric = DistanceMetric(metric)
    with _strategies_lock:
        strategy = _STRATEGIES.get(metric)
        if strategy is None:
            strategy = _STRATEGIES[metric] = _STRATEGY_CLASSES[metric]()
    return strategy


# -------------------- Pattern Search --------------------

@dataclass
class SearchWindow:
    pixels: np.ndarray
    opaque: np.ndarray
    prepared: Optional[np.ndarray] = None


class PatternSearch:
    """
    Picks the candidate pattern whose tile is closest to a window.

    Only window pixels with full alpha take part in the comparison. The first
    candidate with the strictly lowest total distance wins.
    """

    def __init__(self, pattern_cache: PatternCache, metric: BaseColorDistance, exact: bool = False):
        self.pattern_cache = pattern_cache
        self.metric = metric
        self.exact = exact

    def prepare_window(self, window: np.ndarray) -> SearchWindow:
        pixels = np.asarray(window, dtype=np.uint8).reshape(-1, 4)
        if pixels.shape[0] != TONE_PERIOD * TONE_PERIOD:
            raise ValueError(
                f"Window must hold {TONE_PERIOD}x{TONE_PERIOD} pixels, got {pixels.shape[0]}"
            )
        opaque = pixels[:, 3] == OPAQUE
        prepared = None
        if not self.exact and opaque.any():
            prepared = self.metric.prepare_pixels(pixels[opaque, :3])
        return SearchWindow(pixels, opaque, prepared)

    def best_pattern(self, window: np.ndarray, candidates: Sequence[Pattern]) -> Pattern:
        return self.best_prepared(self.prepare_window(window), candidates)

    def best_prepared(self, window: SearchWindow, candidates: Sequence[Pattern]) -> Pattern:
        if not candidates:
            raise EmptyCandidateListError("Pattern search needs at least one candidate")
        if self.exact:
            return self._best_exact(window, candidates)
        if window.prepared is None:
            return candidates[0]

        tiles = np.stack([
            self.metric.prepare_tile(self.pattern_cache.render_or_fetch(candidate))[window.opaque]
            for candidate in candidates
        ])
        per_pixel = self.metric.pixel_distances(tiles, window.prepared)
        # fsum is exact, so tiles that are permutations of each other tie exactly
        totals = [math.fsum(row) for row in per_pixel]
        # argmin returns the first of equal minima
        return candidates[int(np.argmin(totals))]

    def distances(self, window: np.ndarray, candidates: Sequence[Pattern]) -> List[float]:
        """Total distance of every candidate, in candidate order."""
        prepared = self.prepare_window(window)
        totals = []
        for candidate in candidates:
            tile = self.pattern_cache.render_or_fetch(candidate).pixels.reshape(-1, 4)
            totals.append(self._total_distance(prepared, tile))
        return totals

    def _best_exact(self, window: SearchWindow, candidates: Sequence[Pattern]) -> Pattern:
        best_pattern = candidates[0]
        best_distance = math.inf
        for candidate in candidates:
            tile = self.pattern_cache.render_or_fetch(candidate).pixels.reshape(-1, 4)
            total = self._total_distance(window, tile)
            if total < best_distance:
                best_pattern = candidate
                best_distance = total
        return best_pattern

    def _total_distance(self, window: SearchWindow, tile: np.ndarray) -> float:
        return math.fsum(
            self.metric.distance(window.pixels[index], tile[index])
            for index in np.flatnonzero(window.opaque)
        )


# -------------------- Window Normalization --------------------

def normalize_window(window: np.ndarray, flat_lightness: int = FLAT_WINDOW_LIGHTNESS) -> np.ndarray:
    """
    Grayscale, contrast-stretched copy of a window.

    Every opaque pixel is replaced by its luma, rounded to 8 bits and
    rescaled so that the darkest opaque pixel maps to 0 and the lightest to
    255. When all opaque pixels share one lightness they all become
    `flat_lightness`. Pixels that are not fully opaque are left as they are.
    """
    normalized = np.array(window, dtype=np.uint8, copy=True)
    opaque = normalized[..., 3] == OPAQUE
    if not opaque.any():
        return normalized

    # luma is stored as 8-bit before it is stretched
    lightness = np.clip(np.rint(normalized[..., :3][opaque].astype(np.float64) @ LUMA_WEIGHTS), 0, 255)
    min_lightness = lightness.min()
    max_lightness = lightness.max()
    if max_lightness == min_lightness:
        logger.debug(f"Flat window (lightness {min_lightness:.1f}), using {flat_lightness}")
        stretched = np.full_like(lightness, float(flat_lightness))
    else:
        stretched = (lightness - min_lightness) * 255.0 / (max_lightness - min_lightness)

    values = np.clip(np.rint(stretched), 0, 255).astype(np.uint8)
    normalized[..., :3][opaque] = values[:, np.newaxis]
    return normalized


# -------------------- Quantizer --------------------

class Quantizer:
    """
    Chooses tone, background and foreground for one output cell.

    The search is greedy: the tone is picked against anchor colors, then the
    background tier, the background color, the foreground tier and the
    foreground color, each with everything chosen before it held fixed. This
    replaces a joint search over every color pair and can miss the best pair.
    """

    def __init__(self, search: PatternSearch,
                 palette: Palette = DEFAULT_PALETTE,
                 tones: ToneLibrary = TONE_LIBRARY):
        self.search = search
        self.palette = palette
        self.tones = tones

    def quantize(self, window: np.ndarray, normalized_window: np.ndarray,
                 offset_y: int, offset_x: int) -> Pattern:
        palette = self.palette
        search = self.search
        raw = search.prepare_window(window)
        normalized = search.prepare_window(normalized_window)

        tone_type = search.best_prepared(normalized, [
            Pattern(tone_type, palette.background_anchor, palette.foreground_anchor, offset_y, offset_x)
            for tone_type in self.tones.names()
        ]).tone_type

        background_head = search.best_prepared(raw, [
            Pattern(tone_type, head, palette.foreground_anchor, offset_y, offset_x)
            for head in palette.tier_heads()
        ]).background_color

        background_color = search.best_prepared(raw, [
            Pattern(tone_type, color, palette.foreground_anchor, offset_y, offset_x)
            for color in palette.tier(background_head)
        ]).background_color

        foreground_head = search.best_prepared(raw, [
            Pattern(tone_type, background_color, head, offset_y, offset_x)
            for head in palette.tier_heads()
        ]).foreground_color

        return search.best_prepared(raw, [
            Pattern(tone_type, background_color, color, offset_y, offset_x)
            for color in palette.tier(foreground_head)
        ])


# -------------------- Floyd–Steinberg Error Diffusion --------------------

class FloydSteinbergDitherer:
    """
    Pushes the quantization error of a cell into its unvisited neighbours.

    Corrections are written into the 8-bit source buffer in place (rounded and
    clamped), so cells processed later read the corrected values. The scan
    must therefore run row by row, left to right.
    """

    def __init__(self, rate: float = DITHERING_RATE,
                 pattern: Sequence[Tuple[int, int, float]] = DIFFUSION_PATTERN):
        if rate < 0:
            raise ValueError(f"Dithering rate must be >= 0, got {rate}")
        self.rate = rate
        self.pattern = tuple(pattern)

    @property
    def total_weight(self) -> float:
        """Share of the error handed on to neighbours."""
        return sum(weight for _, _, weight in self.pattern) * self.rate

    @staticmethod
    def quantization_error(original: np.ndarray, rendered: np.ndarray) -> np.ndarray:
        return np.asarray(original[:3], dtype=np.int16) - np.asarray(rendered[:3], dtype=np.int16)

    def diffuse(self, source: np.ndarray, x: int, y: int, error: np.ndarray):
        height, width = source.shape[:2]
        for delta_x, delta_y, weight in self.pattern:
            nx = x + delta_x
            ny = y + delta_y
            if not (0 <= nx < width and 0 <= ny < height):
                continue
            corrected = source[ny, nx, :3] + error * (weight * self.rate)
            source[ny, nx, :3] = np.clip(np.rint(corrected), 0, 255)


# -------------------- Filter Pipeline --------------------

@dataclass
class FilterContext:
    """
    Buffers of one filter run.

    `padded` holds the source image inside a transparent border of half a tone
    period, so every window is a plain slice; `source` is the image part of it.
    """
    padded: np.ndarray
    source: np.ndarray
    output: np.ndarray
    zoom: int
    rows_done: int = 0

    @property
    def width(self) -> int:
        return self.source.shape[1]

    @property
    def height(self) -> int:
        return self.source.shape[0]


class MibaeFilter:
    """
    Runs the Mibae filter over an RGBA buffer.
    """

    @staticmethod
    def get_parameter_info():
        """
        Returns metadata about configurable parameters of the filter.
        """
        return {
            'distance_metric': {
                'type': 'choice',
                'default': DistanceMetric.PERCEPTUAL.value,
                'choices': [metric.value for metric in DistanceMetric],
                'label': 'Distance Metric',
                'description': 'How closely two colors match (perceptual = CIE Lab, euclidean = raw RGB)'
            },
            'dithering_rate': {
                'type': 'float',
                'default': DITHERING_RATE,
                'min': 0.0,
                'max': 1.0,
                'step': 0.05,
                'label': 'Dithering Rate',
                'description': 'Share of the quantization error pushed to neighbouring pixels'
            },
            'flat_window_lightness': {
                'type': 'int',
                'default': FLAT_WINDOW_LIGHTNESS,
                'min': 0,
                'max': 255,
                'label': 'Flat Window Lightness',
                'description': 'Lightness used for windows without contrast (0 = solid fill)'
            },
            'search_mode': {
                'type': 'choice',
                'default': SearchMode.VECTORIZED.value,
                'choices': [mode.value for mode in SearchMode],
                'label': 'Search Mode',
                'description': 'vectorized = numpy batch search, exact = memoized pixel-by-pixel search'
            }
        }

    def __init__(self,
                 distance_metric: str = DistanceMetric.PERCEPTUAL.value,
                 dithering_rate: float = DITHERING_RATE,
                 flat_window_lightness: int = FLAT_WINDOW_LIGHTNESS,
                 search_mode: str = SearchMode.VECTORIZED.value,
                 palette: Optional[Palette] = None,
                 tones: Optional[ToneLibrary] = None,
                 pattern_cache: Optional[PatternCache] = None):
        if not 0 <= flat_window_lightness <= 255:
            raise ValueError(f"flat_window_lightness must be in [0, 255], got {flat_window_lightness}")

        self.distance_metric = DistanceMetric(distance_metric)
        self.search_mode = SearchMode(search_mode)
        self.flat_window_lightness = int(flat_window_lightness)
        self.palette = palette if palette is not None else DEFAULT_PALETTE
        self.tones = tones if tones is not None else TONE_LIBRARY

        if pattern_cache is None:
            if self.tones is TONE_LIBRARY:
                pattern_cache = PatternCache.shared()
            else:
                pattern_cache = PatternCache(self.tones)
        elif pattern_cache.tones is not self.tones:
            raise ConfigurationError("Pattern cache was built for a different tone library")
        self.pattern_cache = pattern_cache

        self.metric = get_distance_strategy(self.distance_metric)
        self.search = PatternSearch(pattern_cache, self.metric,
                                    exact=self.search_mode is SearchMode.EXACT)
        self.quantizer = Quantizer(self.search, self.palette, self.tones)
        self.ditherer = FloydSteinbergDitherer(rate=dithering_rate)

    def get_current_parameters(self):
        """Returns current parameter values."""
        return {
            'distance_metric': self.distance_metric.value,
            'dithering_rate': self.ditherer.rate,
            'flat_window_lightness': self.flat_window_lightness,
            'search_mode': self.search_mode.value
        }

    def create_context(self, pixels: np.ndarray, zoom: int = 1) -> FilterContext:
        pixels = np.asarray(pixels)
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"Expected an RGBA buffer of shape (H, W, 4), got {pixels.shape}")
        if pixels.dtype != np.uint8:
            raise TypeError("pixels must be uint8")
        if zoom < 1:
            raise ValueError(f"Zoom must be >= 1, got {zoom}")

        height, width = pixels.shape[:2]
        half = TONE_PERIOD // 2
        padded = np.zeros((height + TONE_PERIOD, width + TONE_PERIOD, 4), dtype=np.uint8)
        padded[half:half + height, half:half + width] = pixels
        output = np.zeros((height * zoom, width * zoom, 4), dtype=np.uint8)
        return FilterContext(
            padded=padded,
            source=padded[half:half + height, half:half + width],
            output=output,
            zoom=int(zoom),
        )

    @staticmethod
    def extract_window(context: FilterContext, x: int, y: int) -> np.ndarray:
        """The tone-period window whose top-left corner is (x - P/2, y - P/2)."""
        return context.padded[y:y + TONE_PERIOD, x:x + TONE_PERIOD]

    def process_cell(self, context: FilterContext, x: int, y: int) -> Pattern:
        """
        Quantize, stamp and diffuse the cell at (x, y).

        The phase offsets are the non-negative remainders (x - P/2) mod P and
        (y - P/2) mod P. For the first P/2 columns and rows this is not the
        absolute value of the signed remainder: the mod form keeps the
        candidate tiles in phase with the bitmap that gets stamped.
        """
        half = TONE_PERIOD // 2
        window = self.extract_window(context, x, y)
        normalized = normalize_window(window, self.flat_window_lightness)
        pattern = self.quantizer.quantize(
            window, normalized,
            offset_y=(y - half) % TONE_PERIOD,
            offset_x=(x - half) % TONE_PERIOD,
        )

        tone = self.tones.get(pattern.tone_type)
        color = pattern.foreground_color if tone.is_foreground(x, y) else pattern.background_color
        zoom = context.zoom
        block = context.output[y * zoom:(y + 1) * zoom, x * zoom:(x + 1) * zoom]
        block[..., :3] = self.palette.rgb(color)
        block[..., 3] = OPAQUE

        error = self.ditherer.quantization_error(
            context.source[y, x], context.output[y * zoom, x * zoom]
        )
        self.ditherer.diffuse(context.source, x, y, error)
        return pattern

    def process_row(self, context: FilterContext, y: int):
        for x in range(context.width):
            self.process_cell(context, x, y)
        context.rows_done += 1

    def iter_rows(self, context: FilterContext) -> Iterator[int]:
        """
        Process the remaining rows top to bottom, yielding each finished row.

        Suspending between yields lets a host interleave other work without
        changing the result.
        """
        for y in range(context.rows_done, context.height):
            self.process_row(context, y)
            yield y

    def apply(self, pixels: np.ndarray, zoom: int = 1,
              progress_callback: Optional[Callable[[float, str], None]] = None,
              should_stop: Optional[Callable[[], bool]] = None) -> np.ndarray:
        """
        Filter an RGBA buffer and return the output at `zoom` times its size.

        Args:
            pixels: uint8 array (H, W, 4)
            zoom: Output pixels per working pixel along each axis
            progress_callback: Called with (fraction, message) after every row
            should_stop: Checked after every row; the run ends when it returns True

        Returns:
            uint8 array (H * zoom, W * zoom, 4). Rows not reached stay transparent.
        """
        context = self.create_context(pixels, zoom)
        height = context.height
        logger.debug(f"Mibae filter on {context.width}x{height}, zoom {zoom}, "
                     f"{self.distance_metric.value} distance, {self.search_mode.value} search")

        for y in self.iter_rows(context):
            if progress_callback:
                progress_callback((y + 1) / height, f"Row {y + 1}/{height}")
            if should_stop is not None and should_stop():
                logger.info(f"Filter stopped after row {y + 1}/{height}")
                break

        logger.debug(f"Pattern cache holds {len(self.pattern_cache)} tiles, "
                     f"{self.metric.cache_size()} memoized distances")
        return context.output


# -------------------- Image Filterer --------------------

class ImageFilterer:
    """
    Orchestrates loading geometry (working resolution, display zoom) plus the
    Mibae filter for Pillow images.
    """

    def __init__(self,
                 mibae_filter: Optional[MibaeFilter] = None,
                 target_pixels: int = TARGET_PIXELS,
                 zoom: Optional[int] = None,
                 container_size: Optional[Tuple[float, float]] = None,
                 pixel_ratio: float = 2.0):
        self.mibae_filter = mibae_filter if mibae_filter is not None else MibaeFilter()
        self.target_pixels = target_pixels
        self.zoom = zoom
        self.container_size = container_size
        self.pixel_ratio = pixel_ratio

    def resolve_geometry(self, natural_size: Tuple[int, int]) -> Tuple[Tuple[int, int], int]:
        """
        Returns ((working width, working height), output zoom).
        """
        working_size = compute_working_size(natural_size[0], natural_size[1], self.target_pixels)
        if self.zoom is not None:
            zoom = int(self.zoom)
        elif self.container_size is not None:
            container_w, container_h = self.container_size
            _, zoom = compute_zoom(working_size[0], working_size[1],
                                   container_w, container_h, self.pixel_ratio)
        else:
            zoom = 1
        return working_size, zoom

    def apply_filter(self, image: Image.Image,
                     progress_callback: Optional[Callable[[float, str], None]] = None,
                     should_stop: Optional[Callable[[], bool]] = None) -> Image.Image:
        working_size, zoom = self.resolve_geometry(image.size)
        working = ensure_rgba(image).resize(working_size, Image.Resampling.NEAREST)
        logger.info(f"Working size {working_size[0]}x{working_size[1]}, zoom x{zoom}")

        pixels = np.array(working, dtype=np.uint8)
        output = self.mibae_filter.apply(pixels, zoom=zoom,
                                         progress_callback=progress_callback,
                                         should_stop=should_stop)
        return Image.fromarray(output)
