# -*- coding: utf-8 -*-
"""
Walk a layer forest and turn it into raster files and scene nodes.

The same walk runs twice per import: once as a dry run that only records the
raster paths it would produce, and once for real. Sharing the code keeps the
expected file set identical to what the write run produces.
"""
from __future__ import annotations

import functools
import json
import math
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

from PIL import ImageFont
from rich.console import Console

from config.config import (
    BUILTIN_FONT,
    FALLBACK_FONTS,
    FRAME_SEQUENCE_EXTENSION,
    RASTER_EXTENSION,
    STATE_MACHINE_EXTENSION,
    ImportTargetConfig,
)
from module.conflict_resolver import normalize_path
from module.coordinate_mapper import CoordinateMapper, DepthAllocator
from module.layer_tree import Justification, Layer
from module.scene import NodeFactory
from module.tag_grammar import ButtonState, Role, TagKind, leading_segment, make_name_safe, parse_name
from utils.image_process import save_png

console = Console()

ANCHORS = {
    Justification.LEFT: "middle_left",
    Justification.CENTER: "middle_center",
    Justification.RIGHT: "middle_right",
}


@functools.lru_cache(maxsize=64)
def _system_font_available(font_name: str) -> bool:
    try:
        ImageFont.truetype(font_name, 16)
    except OSError:
        return False
    return True


class FontResolver:
    """Pick the first installed font among the layer font and the fallbacks."""

    def __init__(self, is_available: Optional[Callable[[str], bool]] = None) -> None:
        self.is_available = is_available or _system_font_available

    def candidates(self, font_name: str) -> List[str]:
        names: List[str] = []
        seen: Set[str] = set()
        for name in [(font_name or "").strip()] + FALLBACK_FONTS:
            if not name or name.lower() in seen:
                continue
            seen.add(name.lower())
            names.append(name)
        return names

    def resolve(self, font_name: str) -> str:
        for name in self.candidates(font_name):
            if self.is_available(name):
                return name
        return BUILTIN_FONT


def fit_font_size(font_size: float, width: float, height: float) -> Tuple[int, Tuple[float, float], float]:
    """Round a fractional font size up to an integer.

    The rect grows by the rounding factor and the local scale shrinks by it,
    so the rendered text keeps its size. Returns (font size, rect size, scale).
    """
    if font_size <= 0 or not math.isfinite(font_size):
        return 0, (width, height), 1.0
    ceiling = math.ceil(font_size)
    if font_size < ceiling:
        factor = ceiling / font_size
        return int(ceiling), (width * factor, height * factor), 1.0 / factor
    return int(font_size), (width, height), 1.0


@dataclass
class RunContext:
    """State of one materializer walk.

    ``current_path`` and ``current_parent`` change while the walk descends into
    groups and are restored by ``scope``. Everything else is fixed for the run.
    """

    config: ImportTargetConfig
    mapper: CoordinateMapper
    depth: DepthAllocator
    output_root: str
    dry_run: bool = False
    layout: bool = False
    composited: bool = False
    scene: Optional[NodeFactory] = None
    rasterizer: Any = None
    can_write: Callable[[str], bool] = lambda path: True
    stop_at: Any = None
    reported: Set[str] = field(default_factory=set)
    expected: Set[str] = field(default_factory=set)
    written: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    on_raster: Optional[Callable[[str], None]] = None
    fonts: FontResolver = field(default_factory=FontResolver)
    console: Console = field(default_factory=lambda: console)
    current_path: str = ""
    current_parent: Any = None

    def __post_init__(self) -> None:
        if not self.current_path:
            self.current_path = self.output_root

    @property
    def creates_nodes(self) -> bool:
        return self.layout and not self.dry_run and self.scene is not None

    @contextmanager
    def scope(self, path: Optional[str] = None, parent: Any = None) -> Iterator["RunContext"]:
        old_path, old_parent = self.current_path, self.current_parent
        if path is not None:
            self.current_path = path
        if parent is not None:
            self.current_parent = parent
        try:
            yield self
        finally:
            self.current_path, self.current_parent = old_path, old_parent

    def report_once(self, key: str, message: str) -> None:
        if key in self.reported:
            return
        self.reported.add(key)
        self.console.print(message)

    def make_directory(self, path: str) -> None:
        if not self.dry_run:
            os.makedirs(path, exist_ok=True)


class NodeMaterializer:
    """Dispatch every layer on its kind, tag role and the current mode."""

    def __init__(self, context: RunContext) -> None:
        self.context = context

    def materialize(self, forest: List[Layer]) -> None:
        # back-to-front: the first node created is drawn furthest back
        for layer in reversed(forest):
            self._layer(layer)

    def _safe_name(self, name: str) -> str:
        return make_name_safe(name, None if self.context.dry_run else self.context.console)

    def _layer(self, layer: Layer) -> None:
        name = self._safe_name(layer.name)
        if layer.is_group:
            self._group(layer, name)
        else:
            self._art(layer, name)

    # Leaves

    def _art(self, layer: Layer, name: str) -> None:
        ctx = self.context
        parsed = parse_name(name, layer.is_text_layer)
        if layer.is_text_layer:
            if ctx.layout:
                self._text_node(layer, parsed.clean_name, ctx.current_parent)
            return
        if ctx.layout:
            self._image_node(layer, parsed.clean_name, ctx.current_parent)
        else:
            self.write_raster(layer, ctx.current_path, parsed.clean_name)

    def write_raster(self, layer: Layer, directory: str, name: str) -> Optional[str]:
        """Rasterize ``layer`` to ``<directory>/<name>.png``.

        Returns the normalized path, or None for layers without pixels. The
        path is recorded even when the overwrite rule keeps the old file.
        """
        if layer.children or layer.rect.width <= 0:
            return None
        ctx = self.context
        path = normalize_path(os.path.join(directory, name + RASTER_EXTENSION))
        ctx.expected.add(path)
        if ctx.dry_run:
            return path
        if ctx.can_write(path):
            save_png(ctx.rasterizer.decode(layer), path)
            ctx.written.append(path)
        else:
            ctx.skipped.append(path)
        if ctx.on_raster:
            ctx.on_raster(path)
        return path

    def _position(self, layer: Layer, parent: Any) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        mapper = self.context.mapper
        return mapper.local_position(layer.rect, parent, self.context.stop_at), mapper.size(layer.rect)

    def _image_node(self, layer: Layer, name: str, parent: Any) -> Any:
        ctx = self.context
        image_path = self.write_raster(layer, ctx.current_path, name)
        depth, order = ctx.depth.allocate()
        if not ctx.creates_nodes:
            return None
        position, size = self._position(layer, parent)
        return ctx.scene.create_image_node(
            parent, name, image_path, position, size, depth=depth, order=order, ui=ctx.composited
        )

    def _text_node(self, layer: Layer, name: str, parent: Any) -> Any:
        ctx = self.context
        depth, order = ctx.depth.allocate()
        if not ctx.creates_nodes:
            return None

        position, size = self._position(layer, parent)
        color = layer.fill_color.with_opacity(layer.opacity)
        properties: Dict[str, Any] = {
            "text": layer.text,
            "font": ctx.fonts.resolve(layer.font_name),
            "color": (color.r, color.g, color.b, color.a),
            "anchor": ANCHORS.get(layer.justification, ANCHORS[Justification.CENTER]),
            "alignment": layer.justification,
        }
        if ctx.composited:
            font_size, size, local_scale = fit_font_size(layer.font_size * ctx.mapper.font_scale(), *size)
            properties.update(font_size=font_size, local_scale=local_scale)
        else:
            properties.update(font_size=0, character_size=layer.font_size / ctx.mapper.pixels_per_unit)

        return ctx.scene.create_text_node(
            parent, name, position, size, depth=depth, order=order, ui=ctx.composited, **properties
        )

    # Groups

    def _group(self, layer: Layer, name: str) -> None:
        ctx = self.context
        parsed = parse_name(name)
        if parsed.role == Role.BUTTON:
            if ctx.composited:
                self._button(layer, parsed.clean_name)
                return
            ctx.report_once(
                "button",
                "[yellow]Button groups are only supported in composited UI mode; "
                f'"{parsed.clean_name}" and any other button is imported as a plain group.[/yellow]',
            )
        elif parsed.role == Role.ANIMATION:
            if not ctx.composited:
                self._animation(layer, parsed.clean_name, parsed.fps, parsed.fps_error)
                return
            ctx.report_once(
                "animation",
                "[yellow]Animation groups are unsupported in composited UI mode; "
                f'"{parsed.clean_name}" and any other animation is imported as a plain group.[/yellow]',
            )
        self._plain_group(layer, parsed.clean_name)

    def _plain_group(self, layer: Layer, name: str) -> None:
        ctx = self.context
        directory = os.path.join(ctx.current_path, name)
        ctx.make_directory(directory)

        container = None
        if ctx.creates_nodes:
            container = ctx.scene.create_container(ctx.current_parent, name)

        with ctx.scope(directory, container):
            for child in reversed(layer.children):
                self._layer(child)

    def _animation(self, layer: Layer, name: str, fps: float, fps_error: Optional[str]) -> None:
        ctx = self.context
        if fps_error and not ctx.dry_run:
            ctx.console.print(f"[red]{fps_error}[/red]")

        directory = os.path.join(ctx.current_path, leading_segment(name))
        ctx.make_directory(directory)

        frames: List[str] = []
        first_frame = None
        for child in layer.children:
            child_name = self._safe_name(child.name)
            path = self.write_raster(child, directory, parse_name(child_name, child.is_text_layer).clean_name)
            if path:
                frames.append(path)
                first_frame = first_frame or child

        if not ctx.layout:
            return
        if not frames:
            if not ctx.dry_run:
                ctx.console.print(f'[yellow]Animation "{name}" has no frames, skipping it.[/yellow]')
            return

        depth, order = ctx.depth.allocate()
        if not ctx.creates_nodes:
            return

        parent = ctx.current_parent
        position, size = self._position(first_frame, parent)
        node = ctx.scene.create_image_node(
            parent, name, frames[0], position, size, depth=depth, order=order, ui=False
        )

        clip_path = normalize_path(os.path.join(directory, name + FRAME_SEQUENCE_EXTENSION))
        controller_path = normalize_path(os.path.join(directory, name + STATE_MACHINE_EXTENSION))
        write_frame_sequence(clip_path, name, frames, fps)
        write_state_machine(controller_path, name, clip_path)
        ctx.scene.attach_behavior(node, "animator", controller=controller_path, clip=clip_path, fps=fps, loop=True)

    def _button(self, layer: Layer, name: str) -> None:
        ctx = self.context
        parent = ctx.current_parent

        base = None
        depth, order = ctx.depth.allocate()
        if ctx.creates_nodes:
            position, size = self._position(layer, parent)
            base = ctx.scene.create_image_node(parent, name, None, position, size, depth=depth, order=order, ui=True)

        children = [
            (child, parse_name(self._safe_name(child.name), child.is_text_layer)) for child in layer.children
        ]
        # the Normal graphic defines the button rect; text slots are placed relative to it
        normal = next((child for child, parsed in children if parsed.state == ButtonState.NORMAL), None)
        if base is not None and normal is not None:
            position, size = self._position(normal, parent)
            ctx.scene.update_node(base, position=position, size=size)

        states: Dict[str, str] = {}
        target_graphic = None
        for child, parsed in children:
            if parsed.state is not None:
                path = self.write_raster(child, ctx.current_path, parsed.clean_name)
                if parsed.state == ButtonState.NORMAL:
                    if base is not None:
                        ctx.scene.update_node(base, image=path)
                        target_graphic = name
                else:
                    states[parsed.state.value] = path
            elif parsed.has(TagKind.TEXT) and not child.is_text_layer:
                if ctx.layout:
                    self._image_node(child, parsed.clean_name, base)
                else:
                    self.write_raster(child, ctx.current_path, parsed.clean_name)

            if child.is_text_layer:
                ctx.report_once(
                    "button_text",
                    '[yellow]Text layers inside buttons are not supported yet; '
                    f'skipped "{parsed.clean_name}" in "{name}".[/yellow]',
                )

        if base is not None:
            ctx.scene.attach_behavior(
                base,
                "button",
                transition="sprite_swap" if states else "none",
                states=states,
                target_graphic=target_graphic,
            )


def write_frame_sequence(path: str, name: str, frames: List[str], fps: float) -> str:
    """Write a looping frame-sequence asset with frames at ``index / fps``."""
    directory = os.path.dirname(path)
    clip = {
        "name": name,
        "frame_rate": fps,
        "loop": True,
        "frames": [
            {"time": index / fps, "image": os.path.relpath(frame, directory).replace(os.sep, "/")}
            for index, frame in enumerate(frames)
        ],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(clip, f, ensure_ascii=False, indent=2)
    return path


def write_state_machine(path: str, name: str, clip_path: str) -> str:
    directory = os.path.dirname(path)
    controller = {
        "name": name,
        "layers": [
            {
                "name": "Base Layer",
                "default_state": name,
                "states": [{"name": name, "motion": os.path.relpath(clip_path, directory).replace(os.sep, "/")}],
            }
        ],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(controller, f, ensure_ascii=False, indent=2)
    return path


def ensure_event_system(scene: NodeFactory) -> Any:
    node = scene.find("EventSystem")
    if node is None:
        node = scene.create_container(None, "EventSystem")
        scene.attach_behavior(node, "event_system")
        scene.attach_behavior(node, "input_module")
    return node


def create_root(context: RunContext, name: str, target: Any = None) -> Any:
    """Create the node every generated node hangs under.

    Anchored imports get a centered container under ``target``. Composited
    imports without a target get their own world-space canvas. Scene imports
    get a plain container.
    """
    scene = context.scene
    mapper = context.mapper
    if context.composited:
        ensure_event_system(scene)
        if target is not None:
            return scene.create_container(target, name, position=(0.0, 0.0), size=mapper.root_size(), anchor="center")
        root = scene.create_container(None, name, size=mapper.root_size())
        scene.attach_behavior(root, "canvas", render_mode="world_space")
        scene.attach_behavior(
            root,
            "canvas_scaler",
            dynamic_pixels_per_unit=mapper.pixels_per_unit,
            reference_pixels_per_unit=mapper.pixels_per_unit,
        )
        scene.attach_behavior(root, "graphic_raycaster")
        return root
    return scene.create_container(None, name)
