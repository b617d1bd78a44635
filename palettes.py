"""
Lightness-tiered palettes used by the Mibae filter.

A palette is an ordered set of tiers. Each tier is an ordered list of CSS
color identifiers and is addressed by its head (first color) when the
quantizer chooses a tier. The head of the background tier and the head of the
foreground tier are the anchors used while the tone is being chosen.
"""

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from utils import ConfigurationError, parse_color

__all__ = [
    'DEFAULT_TIERS',
    'Palette',
    'DEFAULT_PALETTE',
    'palette_from_dict',
]


DEFAULT_TIERS = {
    "light": [
        "hsl(0, 0%, 100%)",
        "hsl(0, 0%, 67%)",
        "hsl(0, 67%, 67%)",
        "hsl(60, 67%, 67%)",
        "hsl(120, 67%, 67%)",
        "hsl(180, 67%, 67%)",
        "hsl(240, 67%, 67%)",
        "hsl(300, 67%, 67%)",
    ],
    "dark": [
        "hsl(0, 0%, 0%)",
        "hsl(0, 0%, 33%)",
        "hsl(0, 33%, 33%)",
        "hsl(60, 33%, 33%)",
        "hsl(120, 33%, 33%)",
        "hsl(180, 33%, 33%)",
        "hsl(240, 33%, 33%)",
        "hsl(300, 33%, 33%)",
    ],
}


class Palette:
    """
    Immutable tiered palette.

    Args:
        tiers: Mapping of tier name to its ordered colors
        background_tier: Tier whose head is the background anchor
        foreground_tier: Tier whose head is the foreground anchor
    """

    def __init__(self,
                 tiers: Mapping[str, Sequence[str]],
                 background_tier: str = "light",
                 foreground_tier: str = "dark"):
        if not tiers:
            raise ConfigurationError("Palette needs at least one tier")

        self._tiers: Dict[str, Tuple[str, ...]] = {}
        self._rgb: Dict[str, Tuple[int, int, int]] = {}
        for name, colors in tiers.items():
            if not colors:
                raise ConfigurationError(f"Palette tier '{name}' is empty")
            for color in colors:
                if color in self._rgb:
                    raise ConfigurationError(f"Color {color!r} appears in more than one tier")
                self._rgb[color] = parse_color(color)
            self._tiers[name] = tuple(colors)

        for role, tier in (("background", background_tier), ("foreground", foreground_tier)):
            if tier not in self._tiers:
                raise ConfigurationError(f"Unknown {role} tier: {tier!r}")

        self.background_tier = background_tier
        self.foreground_tier = foreground_tier
        self._tier_by_head = {colors[0]: colors for colors in self._tiers.values()}

    @property
    def background_anchor(self) -> str:
        return self._tiers[self.background_tier][0]

    @property
    def foreground_anchor(self) -> str:
        return self._tiers[self.foreground_tier][0]

    @property
    def tier_names(self) -> List[str]:
        return list(self._tiers)

    def tier_heads(self) -> List[str]:
        """Head color of every tier, in tier order."""
        return list(self._tier_by_head)

    def tier(self, head: str) -> Tuple[str, ...]:
        """Colors of the tier whose head is `head`."""
        try:
            return self._tier_by_head[head]
        except KeyError:
            raise ConfigurationError(f"No palette tier is headed by {head!r}") from None

    def colors(self) -> List[str]:
        return list(self._rgb)

    def rgb(self, color: str) -> Tuple[int, int, int]:
        try:
            return self._rgb[color]
        except KeyError:
            raise ConfigurationError(f"Color {color!r} is not in the palette") from None

    def __contains__(self, color: str) -> bool:
        return color in self._rgb

    def __len__(self) -> int:
        return len(self._rgb)

    def __repr__(self) -> str:
        tiers = ", ".join(f"{name}={len(colors)}" for name, colors in self._tiers.items())
        return f"Palette({tiers})"


def palette_from_dict(data: Mapping, default_name: Optional[str] = None) -> Palette:
    """
    Build a palette from its JSON form:
    {"tiers": {...}, "background_tier": ..., "foreground_tier": ...}
    """
    tiers = data.get('tiers')
    if not isinstance(tiers, Mapping):
        name = data.get('name', default_name)
        raise ConfigurationError(f"Palette {name!r} has no 'tiers' mapping")
    tier_names = list(tiers)
    return Palette(
        tiers,
        background_tier=data.get('background_tier', tier_names[0] if tier_names else "light"),
        foreground_tier=data.get('foreground_tier', tier_names[-1] if tier_names else "dark"),
    )


DEFAULT_PALETTE = Palette(DEFAULT_TIERS)
