#!/usr/bin/env python3
"""
CLI module for Mibae Kanvas - Command-Line Interface

Applies the Mibae halftone filter to images (or folders of images) described
by a JSON job file. Uses Rich for terminal output.
"""

import sys
import logging
import argparse
import json
from pathlib import Path
from typing import Optional, Dict, Any, List

# Rich imports for terminal output
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.panel import Panel

# Local imports
from config_manager import ConfigManager
from mibae_lib import DistanceMetric, ImageFilterer, MibaeFilter, SearchMode
from palettes import DEFAULT_PALETTE, Palette, palette_from_dict
from utils import ConfigurationError, PaletteManager, get_image_info, validate_image_file
from PIL import Image


# Initialize Rich console
console = Console()

# Logger instance
logger = logging.getLogger('mibae.cli')


def setup_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None):
    """
    Setup logging with Rich handler for terminal output.

    Args:
        verbose: Enable verbose (DEBUG) logging
        quiet: Suppress all but ERROR messages
        log_file: Optional path to log file
    """
    global logger

    # Determine logging level
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    handlers = []

    # Rich handler for console output
    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        markup=True,
        rich_tracebacks=True
    )
    handlers.append(rich_handler)

    # File handler if specified
    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        handlers.append(file_handler)

    # Setup root logger
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers
    )

    # The library logs under "mibae", the CLI under "mibae.cli"
    logging.getLogger('mibae').setLevel(level)
    logger = logging.getLogger('mibae.cli')
    logger.setLevel(level)

    return logger


class CLIProgressCallback:
    """
    Progress callback that uses Rich progress bars.
    Compatible with MibaeFilter.apply progress_callback signature.
    """

    def __init__(self, description: str = "Filtering..."):
        """
        Initialize progress tracker.

        Args:
            description: Initial task description
        """
        self.description = description
        self.progress = None
        self.task = None

    def __enter__(self):
        """Setup progress bar."""
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console
        )
        self.progress.__enter__()
        self.task = self.progress.add_task(self.description, total=100)
        return self

    def __exit__(self, *args):
        """Cleanup progress bar."""
        if self.progress:
            self.progress.__exit__(*args)

    def update(self, fraction: float, message: str):
        """
        Update progress bar.

        Args:
            fraction: Progress fraction (0.0 to 1.0)
            message: Status message
        """
        if self.progress and self.task is not None:
            self.progress.update(self.task, completed=fraction * 100, description=message)

    def finish(self):
        """Mark as complete."""
        if self.progress and self.task is not None:
            self.progress.update(self.task, completed=100, description="Complete!")


# ==================== Config Schema & Validation ====================

VALID_MODES = ["image", "folder"]
VALID_DISTANCE_METRICS = [metric.value for metric in DistanceMetric]
VALID_SEARCH_MODES = [mode.value for mode in SearchMode]
IMAGE_EXTENSIONS = ['.png', '.jpg', '.jpeg', '.gif', '.bmp', '.tiff', '.webp']
# Formats Pillow cannot write with an alpha channel
OPAQUE_ONLY_EXTENSIONS = ['.jpg', '.jpeg', '.bmp']


class ConfigValidationError(Exception):
    """Raised when config validation fails."""
    pass


def _check_number(errors: List[str], section: Dict[str, Any], key: str, label: str,
                  kind=float, minimum=None, maximum=None, allow_none: bool = False):
    if key not in section:
        return
    value = section[key]
    if value is None and allow_none:
        return
    try:
        number = kind(value)
    except (ValueError, TypeError):
        errors.append(f"'{label}' must be a{'n integer' if kind is int else ' number'}")
        return
    if kind is int and isinstance(value, float) and not value.is_integer():
        errors.append(f"'{label}' must be an integer, got {value}")
        return
    if minimum is not None and number < minimum:
        errors.append(f"'{label}' must be >= {minimum}")
    if maximum is not None and number > maximum:
        errors.append(f"'{label}' must be <= {maximum}")


def validate_config(config: Dict[str, Any], config_path: Path,
                    preferences: Optional[ConfigManager] = None) -> Dict[str, Any]:
    """
    Validate configuration and return normalized config.

    Args:
        config: Raw config dictionary
        config_path: Path to config file (for resolving relative paths)
        preferences: User preferences supplying defaults for missing settings

    Returns:
        Validated and normalized config

    Raises:
        ConfigValidationError: If validation fails
    """
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration must be a JSON object")

    errors = []

    # Required fields
    if "input" not in config:
        errors.append("Missing required field: 'input'")

    if "output" not in config:
        errors.append("Missing required field: 'output'")

    # Validate mode (optional, can be auto-detected)
    mode = config.get("mode")
    if mode and mode not in VALID_MODES:
        errors.append(f"Invalid mode: '{mode}'. Must be one of: {VALID_MODES}")

    for section_name in ("filter", "palette", "display", "image"):
        if section_name in config and not isinstance(config[section_name], dict):
            errors.append(f"'{section_name}' must be an object/dictionary")

    # Validate filter section
    filt = config.get("filter")
    if isinstance(filt, dict):
        if "distance_metric" in filt and filt["distance_metric"] not in VALID_DISTANCE_METRICS:
            errors.append(f"Invalid distance metric: '{filt['distance_metric']}'. "
                          f"Must be one of: {VALID_DISTANCE_METRICS}")
        if "search_mode" in filt and filt["search_mode"] not in VALID_SEARCH_MODES:
            errors.append(f"Invalid search mode: '{filt['search_mode']}'. "
                          f"Must be one of: {VALID_SEARCH_MODES}")
        _check_number(errors, filt, "dithering_rate", "filter.dithering_rate", float, 0.0, 1.0)
        _check_number(errors, filt, "flat_window_lightness", "filter.flat_window_lightness", int, 0, 255)

    # Validate palette section
    pal = config.get("palette")
    if isinstance(pal, dict) and "source" in pal and not isinstance(pal["source"], str):
        errors.append("'palette.source' must be a string")

    # Validate display section
    disp = config.get("display")
    if isinstance(disp, dict):
        _check_number(errors, disp, "zoom", "display.zoom", int, 1, allow_none=True)
        _check_number(errors, disp, "container_width", "display.container_width", float, 1)
        _check_number(errors, disp, "container_height", "display.container_height", float, 1)
        _check_number(errors, disp, "pixel_ratio", "display.pixel_ratio", float, 0.1)

    # Validate image section
    img = config.get("image")
    if isinstance(img, dict):
        _check_number(errors, img, "target_pixels", "image.target_pixels", int, 1)

    # If any errors, raise
    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  • {e}" for e in errors)
        raise ConfigValidationError(error_msg)

    # Normalize paths (resolve relative to config file)
    config_dir = config_path.parent

    input_path = Path(config["input"])
    if not input_path.is_absolute():
        input_path = (config_dir / input_path).resolve()
    config["input"] = str(input_path)

    output_path = Path(config["output"])
    if not output_path.is_absolute():
        output_path = (config_dir / output_path).resolve()
    config["output"] = str(output_path)

    if not input_path.exists():
        raise ConfigValidationError(f"Input file/directory not found: {config['input']}")

    # Missing sections and keys come from the user's preferences
    config.setdefault("mode", None)  # Will be auto-detected
    for section_name in ("filter", "palette", "display", "image"):
        if preferences is not None and section_name == "filter":
            defaults = preferences.get_filter_settings()
        elif preferences is not None:
            defaults = preferences.get(section_name, default={})
        else:
            defaults = ConfigManager.DEFAULT_CONFIG[section_name]
        section = config.setdefault(section_name, {})
        for key, value in defaults.items():
            section.setdefault(key, value)

    palette_file = Path(config["palette"].get("palette_file", "palette.json"))
    if not palette_file.is_absolute():
        palette_file = (config_dir / palette_file).resolve()
    config["palette"]["palette_file"] = str(palette_file)

    source = config["palette"].get("source", "default")
    if source.startswith("file:") and not Path(source[5:]).is_absolute():
        config["palette"]["source"] = "file:" + str((config_dir / source[5:]).resolve())

    return config


def load_config(config_path: Path, preferences: Optional[ConfigManager] = None) -> Dict[str, Any]:
    """
    Load and validate configuration from JSON file.

    Args:
        config_path: Path to JSON config file
        preferences: User preferences supplying defaults

    Returns:
        Validated config dictionary

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"Invalid JSON in config file:\n  Line {e.lineno}: {e.msg}")
    except OSError as e:
        raise ConfigValidationError(f"Failed to load config file: {e}")

    return validate_config(config, config_path, preferences)


def detect_mode(input_path: Path) -> str:
    """
    Auto-detect processing mode based on input path.

    Args:
        input_path: Input file or directory path

    Returns:
        Mode string: "image" or "folder"
    """
    if input_path.is_dir():
        return "folder"

    ext = input_path.suffix.lower()
    if ext in IMAGE_EXTENSIONS:
        return "image"
    raise ConfigValidationError(f"Cannot determine mode for file extension: {ext}")


# ==================== Palette Setup ====================

def setup_palette_from_config(palette_config: Dict[str, Any]) -> Palette:
    """
    Setup palette based on configuration.

    Args:
        palette_config: Palette configuration from config

    Returns:
        Tiered palette
    """
    source = palette_config.get("source", "default")

    try:
        if source == "default":
            palette = DEFAULT_PALETTE

        elif source.startswith("file:"):
            file_path = Path(source[5:])
            if not file_path.exists():
                raise ConfigValidationError(f"Palette file not found: {file_path}")
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            palette = palette_from_dict(data, default_name=file_path.stem)

        else:
            palette_name = source[7:] if source.startswith("custom:") else source
            palette_mgr = PaletteManager(palette_config.get("palette_file", "palette.json"))
            data = palette_mgr.get_palette(palette_name)
            if data is None:
                raise ConfigValidationError(f"Unknown palette source: {source}")
            palette = palette_from_dict(data, default_name=palette_name)

    except ConfigurationError as e:
        raise ConfigValidationError(f"Invalid palette '{source}': {e}")
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"Invalid JSON in palette file:\n  Line {e.lineno}: {e.msg}")

    logger.info(f"[green]✓[/] Palette ready: {len(palette)} colors in "
                f"{len(palette.tier_names)} tiers ({', '.join(palette.tier_names)})")
    return palette


def build_filterer(config: Dict[str, Any]) -> ImageFilterer:
    """
    Build the image filterer described by a validated config.
    """
    palette = setup_palette_from_config(config["palette"])

    params = MibaeFilter.get_parameter_info()
    settings = {key: info['default'] for key, info in params.items()}
    settings.update({key: value for key, value in config["filter"].items() if key in params})
    mibae_filter = MibaeFilter(palette=palette, **settings)

    display = config["display"]
    zoom = display.get("zoom")
    container_size = None
    if zoom is None and display.get("container_width") and display.get("container_height"):
        container_size = (float(display["container_width"]), float(display["container_height"]))

    return ImageFilterer(
        mibae_filter,
        target_pixels=int(config["image"].get("target_pixels", 320 * 180)),
        zoom=int(zoom) if zoom is not None else None,
        container_size=container_size,
        pixel_ratio=float(display.get("pixel_ratio", 2)),
    )


# ==================== Image Processing ====================

def save_image(image: Image.Image, output_path: Path):
    """Save a filtered image, dropping alpha for formats that cannot store it."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.suffix.lower() in OPAQUE_ONLY_EXTENSIONS:
        image = image.convert('RGB')
    image.save(output_path)


def process_single_image(config: Dict[str, Any], filterer: Optional[ImageFilterer] = None) -> bool:
    """
    Filter a single image.

    Args:
        config: Validated configuration dictionary
        filterer: Optional pre-built filterer (for batch processing)

    Returns:
        True if successful, False otherwise
    """
    try:
        input_path = Path(config["input"])
        output_path = Path(config["output"])

        info = get_image_info(str(input_path))
        if info is None:
            logger.error(f"Cannot read image: {input_path}")
            return False
        logger.info(f"Loading image: [cyan]{input_path.name}[/] "
                    f"({info['width']}x{info['height']}, {info['format']} {info['mode']})")
        with Image.open(input_path) as loaded:
            image = loaded.convert('RGBA')

        if filterer is None:
            filterer = build_filterer(config)

        logger.info(f"Applying Mibae filter: [cyan]{filterer.mibae_filter.distance_metric.value}[/] distance")
        with CLIProgressCallback() as progress:
            result = filterer.apply_filter(image, progress_callback=progress.update)
            progress.finish()
        logger.info(f"[green]✓[/] Filtered to {result.size[0]}x{result.size[1]}")

        logger.info(f"Saving to: [cyan]{output_path}[/]")
        save_image(result, output_path)

        size_kb = output_path.stat().st_size / 1024
        logger.info(f"[bold green]✓ Image saved successfully![/] ({size_kb:.1f} KB)")
        return True

    except ConfigValidationError as e:
        logger.error(f"[bold red]{e}[/]")
        return False
    except Exception as e:
        logger.error(f"Failed to process image: {e}", exc_info=True)
        return False


def process_folder(config: Dict[str, Any]) -> bool:
    """
    Filter every image of a folder into the output folder (as PNG).

    Returns:
        True if every image succeeded
    """
    input_dir = Path(config["input"])
    output_dir = Path(config["output"])
    image_paths = sorted(
        p for p in input_dir.iterdir()
        if p.suffix.lower() in IMAGE_EXTENSIONS and validate_image_file(str(p))
    )
    if not image_paths:
        logger.error(f"No images found in: {input_dir}")
        return False

    try:
        filterer = build_filterer(config)
    except ConfigValidationError as e:
        logger.error(f"[bold red]{e}[/]")
        return False

    logger.info(f"Found {len(image_paths)} images")
    failures = 0
    for index, image_path in enumerate(image_paths, start=1):
        logger.info(f"[{index}/{len(image_paths)}] {image_path.name}")
        image_config = dict(config, input=str(image_path),
                            output=str(output_dir / f"{image_path.stem}.png"))
        if not process_single_image(image_config, filterer=filterer):
            failures += 1

    if failures:
        logger.error(f"{failures} of {len(image_paths)} images failed")
    return failures == 0


def show_banner():
    """Display application banner."""
    banner = """
[bold cyan]╔═══════════════════════════════════════╗[/]
[bold cyan]║[/]     [bold white]Mibae Kanvas CLI[/] [dim]- v1.0[/]        [bold cyan]║[/]
[bold cyan]║[/]   Halftone Tone & Palette Filter      [bold cyan]║[/]
[bold cyan]╚═══════════════════════════════════════╝[/]
"""
    console.print(banner)


def show_help():
    """Display detailed help information."""
    help_text = """
[bold cyan]Mibae Kanvas CLI - Usage[/]

[bold]Basic Usage:[/]
  python mibae_cli.py <config.json>        Process with JSON config
  python mibae_cli.py --help               Show this help
  python mibae_cli.py --example-config     Generate example config

[bold]Options:[/]
  --verbose, -v     Enable verbose output
  --quiet, -q       Suppress all but error messages
  --log-file FILE   Write log to file
  --settings FILE   Preferences file supplying defaults

[bold]Config File Format:[/]
  JSON file specifying input, output, and filter parameters.
  Use --example-config to generate a template.

[bold]Examples:[/]
  # Filter a single image
  python mibae_cli.py configs/photo.json

  # Filter a folder with verbose output
  python mibae_cli.py -v configs/folder.json
"""

    console.print(help_text)

    console.print("  [bold]Filter Parameters:[/]")
    for key, info in MibaeFilter.get_parameter_info().items():
        console.print(f"    • [cyan]{key}[/] (default {info['default']!r}): {info['description']}")
    console.print()


def generate_example_config():
    """Generate and print an example configuration file."""
    example = {
        "_comment": "Mibae Kanvas CLI Configuration",
        "input": "path/to/input.png",
        "output": "path/to/output.png",
        "mode": "image",
        "filter": {
            "distance_metric": "perceptual",
            "dithering_rate": 0.5,
            "flat_window_lightness": 0,
            "search_mode": "vectorized"
        },
        "palette": {
            "_comment_source": "Options: default, custom:palette_name, file:path.json",
            "source": "default"
        },
        "display": {
            "_comment_zoom": "Set zoom to an integer, or null to derive it from the container size",
            "zoom": None,
            "container_width": 1344,
            "container_height": 868,
            "pixel_ratio": 2
        },
        "image": {
            "target_pixels": 57600
        }
    }

    example_json = json.dumps(example, indent=4)

    console.print("\n[bold cyan]Example Configuration:[/]\n")
    console.print(Panel(example_json, title="config.json", border_style="cyan"))
    console.print("\n[dim]Save this to a .json file and modify as needed.[/]\n")


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Mibae Kanvas CLI - Halftone Tone & Palette Filter",
        add_help=False  # We'll handle help ourselves
    )

    parser.add_argument('config', nargs='?', help='Path to JSON configuration file')
    parser.add_argument('--help', '-h', action='store_true', help='Show help')
    parser.add_argument('--example-config', action='store_true', help='Generate example config')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--quiet', '-q', action='store_true', help='Quiet mode (errors only)')
    parser.add_argument('--log-file', type=str, help='Log to file')
    parser.add_argument('--settings', type=str, default="mibae_config.json",
                        help='Preferences file supplying defaults')

    args = parser.parse_args(argv)

    # Handle special commands first (before logging setup)
    if args.help:
        show_banner()
        show_help()
        sys.exit(0)

    if args.example_config:
        show_banner()
        generate_example_config()
        sys.exit(0)

    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    if not args.quiet:
        show_banner()

    if not args.config:
        console.print("[bold red]Error:[/] No configuration file specified.\n")
        console.print("Usage: python mibae_cli.py <config.json>")
        console.print("       python mibae_cli.py --help\n")
        sys.exit(1)

    config_path = Path(args.config)
    if not config_path.exists():
        logger.error(f"Configuration file not found: {config_path}")
        sys.exit(1)

    preferences = ConfigManager(args.settings)
    logger.info(f"Loading configuration from: [cyan]{config_path}[/]")

    try:
        config = load_config(config_path, preferences)
    except ConfigValidationError as e:
        logger.error(f"[bold red]{e}[/]")
        sys.exit(1)

    logger.info("[green]✓[/] Configuration validated")

    # Auto-detect mode if not specified
    if not config["mode"]:
        try:
            config["mode"] = detect_mode(Path(config["input"]))
            logger.info(f"Auto-detected mode: [cyan]{config['mode']}[/]")
        except ConfigValidationError as e:
            logger.error(f"{e}")
            sys.exit(1)

    logger.info(f"Input:  [cyan]{config['input']}[/]")
    logger.info(f"Output: [cyan]{config['output']}[/]")
    logger.info(f"Mode:   [cyan]{config['mode']}[/]")
    logger.info(f"Filter: [yellow]{config['filter']['distance_metric']}[/] distance, "
                f"dithering rate {config['filter']['dithering_rate']}")
    logger.info(f"Palette: [yellow]{config['palette']['source']}[/]")
    logger.info("")

    mode = config["mode"]
    if mode == "image":
        success = process_single_image(config)
    else:
        success = process_folder(config)

    if success:
        preferences.update_last_path("image", config["input"])
        preferences.update_last_path("save", config["output"])
        preferences.add_recent_file(config["input"])
        try:
            preferences.save()
        except OSError as e:
            logger.warning(f"Could not save preferences: {e}")
        logger.info("")
        logger.info("[bold green]✓ Processing complete![/]")
        sys.exit(0)
    else:
        logger.error("")
        logger.error("[bold red]✗ Processing failed![/]")
        sys.exit(1)


if __name__ == "__main__":
    main()
