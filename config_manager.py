"""
Configuration management for the Mibae filter.
Handles loading, saving, and managing user preferences.
"""

import copy
import json
import logging
import os
from typing import Any, Optional, Dict, List
from pathlib import Path

__all__ = [
    'ConfigManager',
]

logger = logging.getLogger('mibae')


class ConfigManager:
    """Manages filter defaults and user preferences."""

    DEFAULT_CONFIG = {
        # Filter settings
        "filter": {
            "distance_metric": "perceptual",  # "perceptual", "euclidean"
            "dithering_rate": 0.5,
            "flat_window_lightness": 0,
            "search_mode": "vectorized"  # "vectorized", "exact"
        },

        # Working resolution
        "image": {
            "target_pixels": 320 * 180
        },

        # Output geometry
        "display": {
            "zoom": None,  # None means compute from the container size
            "container_width": 1344,
            "container_height": 868,
            "pixel_ratio": 2
        },

        # Palette selection
        "palette": {
            "source": "default",  # "default", "custom:<name>", "file:<path>"
            "palette_file": "palette.json"
        },

        # Directories of the last processed input and output
        "paths": {
            "last_image_dir": None,
            "last_save_dir": None
        },

        # Most recent first
        "recent_files": []
    }

    def __init__(self, config_file: str = "mibae_config.json"):
        """
        Args:
            config_file: JSON preferences file; it is only written by save()
        """
        self.config_file = config_file
        self.config = self._load_config()

    def _load_config(self) -> Dict:
        """Load config from file, or fall back to defaults if it is missing or unreadable."""
        defaults = copy.deepcopy(self.DEFAULT_CONFIG)
        if not os.path.exists(self.config_file):
            return defaults
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Error loading config {self.config_file}: {e}")
            return defaults
        if not isinstance(loaded, dict):
            logger.warning(f"Ignoring config {self.config_file}: top level is not an object")
            return defaults
        return self._merge_configs(defaults, loaded)

    def _merge_configs(self, base: Dict, overrides: Dict) -> Dict:
        """
        Overlay stored values on `base` section by section.
        Keys unknown to `base` are dropped, keys missing from `overrides` keep
        their default.
        """
        for key, default_value in base.items():
            if key not in overrides:
                continue
            stored = overrides[key]
            if isinstance(default_value, dict) and isinstance(stored, dict):
                self._merge_configs(default_value, stored)
            else:
                base[key] = stored
        return base

    def save(self):
        """Write the current preferences to the config file."""
        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump(self.config, f, indent=4)

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Look up a value by its path of keys.

        Example:
            config.get("filter", "dithering_rate")  # 0.5
        """
        node = self.config
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def set(self, *keys: str, value: Any):
        """
        Store a value under its path of keys, creating sections as needed.

        Example:
            config.set("filter", "dithering_rate", value=0.25)
        """
        if not keys:
            return
        section = self.config
        for key in keys[:-1]:
            section = section.setdefault(key, {})
        section[keys[-1]] = value

    def get_filter_settings(self) -> Dict[str, Any]:
        """Copy of the filter section, ready to be passed to MibaeFilter."""
        return dict(self.get("filter", default={}))

    def update_last_path(self, path_type: str, filepath: str):
        """Remember the directory of `filepath` for "image" or "save"."""
        if filepath:
            self.set("paths", f"last_{path_type}_dir", value=str(Path(filepath).parent))

    def get_last_path(self, path_type: str) -> Optional[str]:
        return self.get("paths", f"last_{path_type}_dir")

    def add_recent_file(self, filepath: str, max_recent: int = 10):
        """Move `filepath` to the front of the recent files, keeping at most `max_recent`."""
        recent = [f for f in self.get("recent_files", default=[]) if f != filepath]
        self.set("recent_files", value=[filepath] + recent[:max_recent - 1])

    def get_recent_files(self, max_count: int = 10) -> List[str]:
        """Recent files that still exist, most recent first."""
        existing = [f for f in self.get("recent_files", default=[]) if os.path.exists(f)]
        return existing[:max_count]

    def clear_recent_files(self):
        self.set("recent_files", value=[])
