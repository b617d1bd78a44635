"""
Tone library: periodic binary bitmaps used to render halftone dots and lines.

Every tone shares the same period so that pattern tiles and the filter's
sampling windows all have the same shape.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Mapping, Sequence

import numpy as np

from utils import ConfigurationError

__all__ = [
    'TONE_PERIOD',
    'Tone',
    'ToneLibrary',
    'tone_from_function',
    'tone_from_rows',
    'DEFAULT_TONES',
    'TONE_LIBRARY',
]

TONE_PERIOD = 16


@dataclass(frozen=True, eq=False)
class Tone:
    name: str
    bitmap: np.ndarray

    def is_foreground(self, x: int, y: int) -> bool:
        return bool(self.bitmap[y % TONE_PERIOD, x % TONE_PERIOD])

    @property
    def coverage(self) -> float:
        """Fraction of the period drawn in the foreground color."""
        return float(self.bitmap.mean())


def _freeze(bitmap: np.ndarray) -> np.ndarray:
    bitmap = np.array(bitmap, dtype=bool)
    bitmap.setflags(write=False)
    return bitmap


def tone_from_function(fn: Callable[[np.ndarray, np.ndarray], np.ndarray]) -> np.ndarray:
    """Build a bitmap from fn(y, x) evaluated on the period grid."""
    y, x = np.mgrid[0:TONE_PERIOD, 0:TONE_PERIOD]
    return _freeze(fn(y, x))


def tone_from_rows(rows: Sequence[str]) -> np.ndarray:
    """Build a bitmap from text rows, '#' is foreground and '.' background."""
    if len(rows) != TONE_PERIOD or any(len(row) != TONE_PERIOD for row in rows):
        raise ConfigurationError(f"Tone rows must be {TONE_PERIOD}x{TONE_PERIOD}")
    return _freeze([[ch == '#' for ch in row] for row in rows])


def _round_dots(radius: float, cell: int = 8) -> np.ndarray:
    center = (cell - 1) / 2
    return tone_from_function(
        lambda y, x: (x % cell - center) ** 2 + (y % cell - center) ** 2 <= radius ** 2
    )


_BRICK_ROWS = [
    "################",
    "#.......#.......",
    "#.......#.......",
    "#.......#.......",
    "################",
    "....#.......#...",
    "....#.......#...",
    "....#.......#...",
] * 2


# Definition order is the candidate order when a tone is chosen.
DEFAULT_TONES = {
    "fill": tone_from_function(lambda y, x: np.ones_like(x, dtype=bool)),
    "light_dots": tone_from_function(lambda y, x: (x % 4 == 0) & (y % 4 == 0)),
    "medium_dots": tone_from_function(
        lambda y, x: ((x % 4 == 0) & (y % 4 == 0)) | ((x % 4 == 2) & (y % 4 == 2))
    ),
    "halftone_dots": _round_dots(1.6),
    "large_dots": _round_dots(3.2),
    "checker": tone_from_function(lambda y, x: (x + y) % 2 == 0),
    "horizontal_lines": tone_from_function(lambda y, x: y % 4 == 0),
    "vertical_lines": tone_from_function(lambda y, x: x % 4 == 0),
    "diagonal_lines": tone_from_function(lambda y, x: (x + y) % 4 == 0),
    "anti_diagonal_lines": tone_from_function(lambda y, x: (x - y) % 4 == 0),
    "bold_horizontal_lines": tone_from_function(lambda y, x: y % 4 < 2),
    "bold_diagonal_lines": tone_from_function(lambda y, x: (x + y) % 8 < 4),
    "cross_hatch": tone_from_function(lambda y, x: (x % 4 == 0) | (y % 4 == 0)),
    "bricks": tone_from_rows(_BRICK_ROWS),
}


class ToneLibrary:
    """
    Fixed, ordered mapping from tone identifiers to period-P bitmaps.
    """

    def __init__(self, bitmaps: Mapping[str, np.ndarray]):
        if not bitmaps:
            raise ConfigurationError("Tone library needs at least one tone")
        self._tones: Dict[str, Tone] = {}
        for name, bitmap in bitmaps.items():
            bitmap = np.asarray(bitmap)
            if bitmap.shape != (TONE_PERIOD, TONE_PERIOD):
                raise ConfigurationError(
                    f"Tone '{name}' must be {TONE_PERIOD}x{TONE_PERIOD}, got {bitmap.shape}"
                )
            self._tones[name] = Tone(name, _freeze(bitmap))

    def get(self, tone_type: str) -> Tone:
        try:
            return self._tones[tone_type]
        except KeyError:
            raise ConfigurationError(f"Unknown tone: {tone_type!r}") from None

    def names(self) -> List[str]:
        return list(self._tones)

    def __contains__(self, tone_type: str) -> bool:
        return tone_type in self._tones

    def __iter__(self) -> Iterator[Tone]:
        return iter(self._tones.values())

    def __len__(self) -> int:
        return len(self._tones)


TONE_LIBRARY = ToneLibrary(DEFAULT_TONES)
