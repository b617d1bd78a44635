"""
Utility functions for the Mibae filter.
"""

import colorsys
import json
import logging
import math
import os
import re
from functools import lru_cache
from typing import List, Tuple, Dict, Optional

from PIL import Image

__all__ = [
    # Exceptions
    'ConfigurationError',
    # Functions
    'load_palettes_from_file',
    'save_palettes_to_file',
    'hex_to_rgb',
    'rgb_to_hex',
    'hsl_to_rgb',
    'parse_color',
    'compute_working_size',
    'compute_zoom',
    'validate_image_file',
    'get_image_info',
    'ensure_rgba',
    # Classes
    'PaletteManager',
]

logger = logging.getLogger('mibae')

# Images are rescaled to about this many pixels (a 320x180 canvas) before filtering.
TARGET_PIXELS = 320 * 180

# Space the dialog chrome takes around the canvas.
CONTAINER_VERTICAL_MARGIN = 112
CONTAINER_HORIZONTAL_MARGIN = 64
CONTAINER_MAX_WIDTH = 1280

_HSL_PATTERN = re.compile(
    r'^hsl\(\s*(-?[\d.]+)\s*,\s*([\d.]+)%\s*,\s*([\d.]+)%\s*\)$'
)


class ConfigurationError(Exception):
    """Raised when an unknown tone or color identifier is referenced."""
    pass


def load_palettes_from_file(filepath: str = "palette.json") -> List[Dict]:
    """
    Load tiered palettes from JSON file.

    Args:
        filepath: Path to palette JSON file

    Returns:
        List of palette dictionaries with 'name' and 'tiers' keys
    """
    if not os.path.exists(filepath):
        return []

    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            palettes = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Error loading palettes from {filepath}: {e}")
        return []
    return palettes if isinstance(palettes, list) else []


def save_palettes_to_file(palettes: List[Dict], filepath: str = "palette.json"):
    """
    Save palettes to JSON file.

    Args:
        palettes: List of palette dictionaries
        filepath: Path to save JSON file
    """
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(palettes, f, indent=4)


def hex_to_rgb(hex_color: str) -> Tuple[int, int, int]:
    """
    Convert hex color string to RGB tuple.

    Args:
        hex_color: Hex string like "#FF0000", "FF0000" or "#F00"

    Returns:
        RGB tuple (r, g, b)
    """
    hex_color = hex_color.lstrip('#')
    if len(hex_color) == 3:
        hex_color = ''.join(ch * 2 for ch in hex_color)
    if len(hex_color) != 6:
        raise ValueError(f"Invalid hex color: {hex_color}")
    return tuple(int(hex_color[i:i+2], 16) for i in (0, 2, 4))


def rgb_to_hex(rgb: Tuple[int, int, int]) -> str:
    """
    Convert RGB tuple to hex color string.

    Args:
        rgb: RGB tuple (r, g, b)

    Returns:
        Hex string like "#ff0000"
    """
    return f'#{rgb[0]:02x}{rgb[1]:02x}{rgb[2]:02x}'


def hsl_to_rgb(hue: float, saturation: float, lightness: float) -> Tuple[int, int, int]:
    """
    Convert CSS-style HSL (degrees, percent, percent) to an 8-bit RGB tuple.
    """
    r, g, b = colorsys.hls_to_rgb((hue % 360) / 360.0, lightness / 100.0, saturation / 100.0)
    return (int(round(r * 255)), int(round(g * 255)), int(round(b * 255)))


@lru_cache(maxsize=None)
def parse_color(color: str) -> Tuple[int, int, int]:
    """
    Parse a CSS color identifier ("#rrggbb", "#rgb" or "hsl(h, s%, l%)").

    Raises:
        ConfigurationError: if the identifier cannot be parsed
    """
    text = color.strip().lower()
    if text.startswith('#'):
        try:
            return hex_to_rgb(text)
        except ValueError as e:
            raise ConfigurationError(f"Unknown color identifier: {color!r}") from e
    match = _HSL_PATTERN.match(text)
    if match:
        hue, saturation, lightness = (float(v) for v in match.groups())
        if saturation > 100 or lightness > 100:
            raise ConfigurationError(f"Out of range HSL color: {color!r}")
        return hsl_to_rgb(hue, saturation, lightness)
    raise ConfigurationError(f"Unknown color identifier: {color!r}")


def compute_working_size(orig_w: int, orig_h: int, target_pixels: int = TARGET_PIXELS) -> Tuple[int, int]:
    """
    Compute the working resolution the filter runs at.

    The image is scaled uniformly so that its area is close to target_pixels,
    keeping the aspect ratio.

    Args:
        orig_w: Natural width
        orig_h: Natural height
        target_pixels: Desired pixel count of the working image

    Returns:
        Tuple of (width, height)
    """
    if orig_w <= 0 or orig_h <= 0:
        raise ValueError(f"Image size must be positive, got {orig_w}x{orig_h}")
    density = math.sqrt(target_pixels / (orig_w * orig_h))
    return max(1, int(round(orig_w * density))), max(1, int(round(orig_h * density)))


def compute_zoom(image_w: int, image_h: int,
                 container_w: float, container_h: float,
                 pixel_ratio: float = 2.0) -> Tuple[float, int]:
    """
    Compute how large the working image is shown inside a container.

    Args:
        image_w: Working image width
        image_h: Working image height
        container_w: Width budget of the host container
        container_h: Height budget of the host container
        pixel_ratio: Device pixel ratio (2 for retina displays)

    Returns:
        Tuple of (displaying zoom, actual integer zoom of the output buffer)
    """
    height_zoom = (container_h - CONTAINER_VERTICAL_MARGIN) / image_h
    width_zoom = (min(container_w, CONTAINER_MAX_WIDTH) - CONTAINER_HORIZONTAL_MARGIN) / image_w
    displaying_zoom = min(height_zoom, width_zoom)
    actual_zoom = max(1, int(math.ceil(displaying_zoom * pixel_ratio)))
    return displaying_zoom, actual_zoom


def validate_image_file(filepath: str) -> bool:
    """
    Check if file is a valid image file.

    Args:
        filepath: Path to image file

    Returns:
        True if valid image file
    """
    image_extensions = {'.png', '.jpg', '.jpeg', '.gif', '.bmp', '.tiff', '.webp'}
    ext = os.path.splitext(filepath)[1].lower()
    return ext in image_extensions and os.path.exists(filepath)


def get_image_info(filepath: str) -> Optional[Dict]:
    """
    Get basic image information.

    Args:
        filepath: Path to image file

    Returns:
        Dictionary with width, height, mode, format
    """
    try:
        with Image.open(filepath) as img:
            return {
                'width': img.width,
                'height': img.height,
                'mode': img.mode,
                'format': img.format
            }
    except OSError as e:
        logger.warning(f"Error getting image info: {e}")
        return None


def ensure_rgba(image: Image.Image) -> Image.Image:
    """
    Ensure image is in RGBA mode.

    Args:
        image: PIL Image

    Returns:
        Image in RGBA mode
    """
    if image.mode != 'RGBA':
        return image.convert('RGBA')
    return image


class PaletteManager:
    """
    Manages custom tiered palettes with loading, saving, and validation.
    """

    def __init__(self, filepath: str = "palette.json"):
        self.filepath = filepath
        self.palettes = []
        self.load()

    def load(self):
        """Load palettes from file."""
        self.palettes = load_palettes_from_file(self.filepath)

    def save(self):
        """Save palettes to file."""
        save_palettes_to_file(self.palettes, self.filepath)

    def add_palette(self, name: str, tiers: Dict[str, List[str]],
                    background_tier: Optional[str] = None,
                    foreground_tier: Optional[str] = None):
        """Add a new palette, replacing one with the same name."""
        for tier_colors in tiers.values():
            for color in tier_colors:
                parse_color(color)

        entry = {'name': name, 'tiers': tiers}
        if background_tier:
            entry['background_tier'] = background_tier
        if foreground_tier:
            entry['foreground_tier'] = foreground_tier

        for i, pal in enumerate(self.palettes):
            if pal['name'] == name:
                self.palettes[i] = entry
                self.save()
                return

        self.palettes.append(entry)
        self.save()

    def remove_palette(self, name: str):
        """Remove a palette by name."""
        self.palettes = [p for p in self.palettes if p['name'] != name]
        self.save()

    def get_palette(self, name: str) -> Optional[Dict]:
        """Get palette by name."""
        for pal in self.palettes:
            if pal['name'] == name:
                return pal
        return None

    def list_palette_names(self) -> List[str]:
        """Get list of all palette names."""
        return [p['name'] for p in self.palettes]
