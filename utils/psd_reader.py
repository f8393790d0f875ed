# -*- coding: utf-8 -*-

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from PIL import Image
from rich.console import Console

from module.layer_tree import Color, Document, Justification, Layer, Rect
from utils.image_process import blank_image

try:
    from psd_tools import PSDImage
except Exception as e:  # pragma: no cover
    PSDImage = None  # type: ignore
    _PSD_IMPORT_ERROR = e
else:
    _PSD_IMPORT_ERROR = None

console = Console()

# Name the decoder gives the hidden divider record that closes a group
GROUP_END_MARKER = "</Layer group>"

# Photoshop paragraph justification codes
_JUSTIFICATION = {0: Justification.LEFT, 1: Justification.RIGHT, 2: Justification.CENTER}


def _ensure_psd_tools_available() -> None:
    if PSDImage is None:
        raise RuntimeError(
            "psd-tools is not available. Please install dependencies first (pip install psd-tools). "
            f"Import error: {_PSD_IMPORT_ERROR}"
        )


def _layer_rect(layer) -> Rect:
    bbox = getattr(layer, "bbox", None)
    if bbox is None:
        return Rect()
    try:
        left, top, right, bottom = (int(round(float(v))) for v in bbox)
    except (TypeError, ValueError):
        return Rect()
    return Rect(left, top, max(0, right - left), max(0, bottom - top))


def _layer_opacity(layer) -> int:
    try:
        return max(0, min(255, int(getattr(layer, "opacity", 255))))
    except (TypeError, ValueError):
        return 255


def _style_sheet(engine: Dict[str, Any]) -> Dict[str, Any]:
    run_array = engine.get("StyleRun", {}).get("RunArray", [{}])
    if not run_array:
        return {}
    return run_array[0].get("StyleSheet", {}).get("StyleSheetData", {}) or {}


def _paragraph_properties(engine: Dict[str, Any]) -> Dict[str, Any]:
    run_array = engine.get("ParagraphRun", {}).get("RunArray", [{}])
    if not run_array:
        return {}
    return run_array[0].get("ParagraphSheet", {}).get("Properties", {}) or {}


def _font_name(layer, style: Dict[str, Any]) -> str:
    try:
        font_set = layer.resource_dict["FontSet"]
        index = int(style.get("Font", 0))
        return str(font_set[index]["Name"]).strip("'\"")
    except (AttributeError, KeyError, IndexError, TypeError, ValueError):
        return ""


def _fill_color(style: Dict[str, Any]) -> Color:
    values = style.get("FillColor", {}).get("Values")
    if not values or len(values) < 4:
        return Color()
    a, r, g, b = (float(v) for v in values[:4])
    return Color(r, g, b, a)


def _font_size(layer, style: Dict[str, Any]) -> float:
    try:
        size = float(style.get("FontSize", 0.0))
    except (TypeError, ValueError):
        return 0.0
    # Photoshop stores the unscaled size; the layer transform carries the scale
    transform = getattr(layer, "transform", None)
    if transform and len(transform) >= 4:
        try:
            size *= abs(float(transform[3]))
        except (TypeError, ValueError):
            pass
    return size


def _text_fields(layer) -> Dict[str, Any]:
    engine = getattr(layer, "engine_dict", None) or {}
    style = _style_sheet(engine)
    justification = _paragraph_properties(engine).get("Justification", 0)
    return {
        "is_text_layer": True,
        "text": str(getattr(layer, "text", "") or "").replace("\r", "\n"),
        "font_name": _font_name(layer, style),
        "font_size": _font_size(layer, style),
        "justification": _JUSTIFICATION.get(justification, Justification.LEFT),
        "fill_color": _fill_color(style),
    }


def _convert_layer(layer) -> Layer:
    fields: Dict[str, Any] = {}
    if getattr(layer, "kind", None) == "type":
        fields = _text_fields(layer)
    return Layer(
        name=str(getattr(layer, "name", "")),
        rect=_layer_rect(layer),
        opacity=_layer_opacity(layer),
        source=layer,
        **fields,
    )


def flatten_layers(root: Iterable, include_invisible: bool = True) -> List[Layer]:
    """Emit layers in the decoder-native order.

    psd-tools iterates a group bottom to top, which is the on-disk record order:
    a group's end divider comes first, then its children, then the group
    record itself acting as the start marker.
    """
    flat: List[Layer] = []

    def walk(layer_iter: Iterable) -> None:
        for layer in layer_iter:
            visible = bool(getattr(layer, "is_visible", lambda: True)())
            if not include_invisible and not visible:
                continue

            if bool(getattr(layer, "is_group", lambda: False)()):
                flat.append(Layer(name=GROUP_END_MARKER, is_group_boundary_marker=True))
                walk(layer)
                flat.append(
                    Layer(
                        name=str(getattr(layer, "name", "")),
                        opacity=_layer_opacity(layer),
                        is_group_boundary_marker=True,
                        source=layer,
                    )
                )
            else:
                flat.append(_convert_layer(layer))

    walk(root)
    return flat


def decode_document(
    psd_path: Union[str, Path],
    include_invisible: bool = True,
    console: Optional[Console] = None,
) -> Document:
    """Open a PSD and return its size plus the flat, back-to-front layer list."""
    _ensure_psd_tools_available()
    console = console or globals()["console"]

    psd_path = Path(psd_path)
    if not psd_path.exists():
        raise FileNotFoundError(f"PSD not found: {psd_path}")

    psd = PSDImage.open(psd_path)
    width = int(getattr(psd, "width", 0))
    height = int(getattr(psd, "height", 0))
    if width <= 0 or height <= 0:
        raise RuntimeError(f"Invalid PSD canvas size: {psd_path}")

    layers = flatten_layers(psd, include_invisible=include_invisible)
    console.print(f"[blue]PSD opened:[/blue] {psd_path} ({width}x{height}, {len(layers)} records)")
    return Document(width=width, height=height, layers=layers, name=psd_path.stem)


class PsdRasterizer:
    """Turn a decoded layer back into pixels through psd-tools."""

    def decode(self, layer: Layer) -> Image.Image:
        source = layer.source
        if source is None:
            return blank_image((layer.rect.width, layer.rect.height))
        img = source.topil()
        if img is None:
            img = source.composite()
        if img is None:
            return blank_image((layer.rect.width, layer.rect.height))
        return img
