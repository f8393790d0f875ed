"""Configuration constants and persisted settings for PSD layout imports."""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import os

import toml
from rich.console import Console

console = Console()

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "config.toml")

SETTINGS_SECTION = "psd_import"

# Raster file extension produced for every exported layer
RASTER_EXTENSION = ".png"

# Companion metadata written by asset databases next to generated files
META_EXTENSION = ".meta"

FRAME_SEQUENCE_EXTENSION = ".anim"
STATE_MACHINE_EXTENSION = ".controller"
PREFAB_EXTENSION = ".prefab"

DEFAULT_FPS = 30.0

# Tried in order after the layer's own font so CJK glyphs still render
FALLBACK_FONTS: List[str] = [
    "Microsoft YaHei",
    "SimHei",
    "SimSun",
    "PingFang SC",
    "Heiti SC",
    "Noto Sans CJK SC",
    "Arial Unicode MS",
    "Arial",
]

BUILTIN_FONT = "Arial"

# Default console colors
DEFAULT_CONSOLE_COLORS = {
    "texture": "green",
    "animation": "bold green",
    "button": "magenta",
    "text": "yellow",
    "container": "cyan",
    "delete": "bright_red",
    "unknown": "white",
}

CONSOLE_COLORS = DEFAULT_CONSOLE_COLORS.copy()


class OutputDirectoryMode(str, Enum):
    """Where the generated output folder is created."""

    SIBLING_OF_SOURCE = "SiblingOfSource"
    UNDER_ROOT = "UnderRoot"


class PrefabOutputMode(str, Enum):
    """Where the generated prefab is saved relative to the output folder."""

    SIBLING_OF_OUTPUT_FOLDER = "SiblingOfOutputFolder"
    INSIDE_OUTPUT_FOLDER = "InsideOutputFolder"


@dataclass(frozen=True)
class ImportTargetConfig:
    """Settings read at the start of an import run.

    The object is frozen: callers build a new one (``with_changes``) between
    runs instead of mutating it while a run is in progress.
    """

    pixels_per_unit: float = 100.0
    maximum_depth: float = 10.0
    use_composited_ui: bool = False
    output_directory_mode: OutputDirectoryMode = OutputDirectoryMode.SIBLING_OF_SOURCE
    output_folder_name: str = ""
    prefab_output_mode: PrefabOutputMode = PrefabOutputMode.SIBLING_OF_OUTPUT_FOLDER
    target_container_path: str = ""
    scale_to_target_container: bool = True
    preserve_aspect_ratio: bool = True
    project_root: str = "."
    assets_root: str = "Assets"
    console_colors: Dict[str, str] = field(default_factory=lambda: DEFAULT_CONSOLE_COLORS.copy())

    def with_changes(self, **changes: Any) -> "ImportTargetConfig":
        return replace(self, **changes)


# Keys persisted in the settings file, in the order they are written
PERSISTED_KEYS: Tuple[str, ...] = (
    "pixels_per_unit",
    "maximum_depth",
    "use_composited_ui",
    "output_directory_mode",
    "output_folder_name",
    "prefab_output_mode",
    "target_container_path",
    "scale_to_target_container",
    "preserve_aspect_ratio",
    "project_root",
    "assets_root",
)


def load_toml_config(config_path: str, section: str) -> Dict[str, Any]:
    """Load a configuration section from a TOML file.

    Args:
        config_path: Path to the TOML file
        section: Name of the section to load

    Returns:
        Dictionary containing the configuration data
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        config = toml.load(config_path)
    except Exception as e:
        raise ValueError(f"Failed to parse config file: {str(e)}")

    section_data = config.get(section, {})
    if not section_data:
        raise ValueError(f"No {section} configuration found in TOML file")

    return section_data


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"{key} must be true or false, got {value!r}")


def _coerce_settings(data: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key in PERSISTED_KEYS:
        if key not in data:
            continue
        value = data[key]
        if key in ("pixels_per_unit", "maximum_depth"):
            value = float(value)
        elif key in ("use_composited_ui", "scale_to_target_container", "preserve_aspect_ratio"):
            value = _coerce_bool(key, value)
        elif key == "output_directory_mode":
            value = OutputDirectoryMode(value)
        elif key == "prefab_output_mode":
            value = PrefabOutputMode(value)
        else:
            value = str(value)
        values[key] = value
    return values


def load_import_settings(
    config_path: Optional[str] = None,
    console: Optional[Console] = None,
) -> ImportTargetConfig:
    """Read persisted import settings, falling back to defaults.

    Args:
        config_path: TOML file holding a ``[psd_import]`` section
        console: Console used to report problems

    Returns:
        ImportTargetConfig built from the file, or the defaults when the file
        is missing or malformed
    """
    console = console or globals()["console"]
    config_path = config_path or DEFAULT_CONFIG_PATH

    try:
        section = load_toml_config(config_path, SETTINGS_SECTION)
    except FileNotFoundError:
        return ImportTargetConfig()
    except ValueError as e:
        console.print(f"[yellow]Warning: Failed to load import settings: {e}[/yellow]")
        return ImportTargetConfig()

    try:
        values = _coerce_settings(section)
    except ValueError as e:
        console.print(f"[yellow]Warning: Invalid import settings in {config_path}: {e}[/yellow]")
        return ImportTargetConfig()

    colors = DEFAULT_CONSOLE_COLORS.copy()
    try:
        colors.update(load_toml_config(config_path, "colors"))
    except ValueError:
        pass

    if values.get("pixels_per_unit", 1.0) <= 0:
        console.print("[yellow]Warning: pixels_per_unit must be positive, using 100[/yellow]")
        values["pixels_per_unit"] = 100.0

    return ImportTargetConfig(console_colors=colors, **values)


def save_import_settings(settings: ImportTargetConfig, config_path: Optional[str] = None) -> None:
    """Write the persisted keys back to the settings file.

    Other sections already present in the file are preserved.
    """
    config_path = config_path or DEFAULT_CONFIG_PATH

    document: Dict[str, Any] = {}
    if os.path.exists(config_path):
        document = toml.load(config_path)

    raw = asdict(settings)
    section: Dict[str, Any] = {}
    for key in PERSISTED_KEYS:
        value = raw[key]
        if isinstance(value, Enum):
            value = value.value
        section[key] = value
    document[SETTINGS_SECTION] = section

    parent = os.path.dirname(os.path.abspath(config_path))
    os.makedirs(parent, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        toml.dump(document, f)
