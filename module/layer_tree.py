# -*- coding: utf-8 -*-

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, List, Optional, Sequence

from rich.console import Console

console = Console()

END_GROUP_NAMES = ("</Layer set>", "</Layer group>")


class Justification(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


@dataclass(frozen=True)
class Rect:
    """Pixel rectangle with a top-left origin and y increasing downward."""

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0


@dataclass(frozen=True)
class Color:
    r: float = 0.0
    g: float = 0.0
    b: float = 0.0
    a: float = 1.0

    def with_opacity(self, opacity: int) -> "Color":
        """Composite a 0-255 layer opacity into the alpha channel."""
        alpha = min(1.0, max(0.0, self.a)) * (opacity / 255.0)
        return Color(self.r, self.g, self.b, alpha)


@dataclass
class Layer:
    name: str
    rect: Rect = field(default_factory=Rect)
    opacity: int = 255
    is_group_boundary_marker: bool = False
    is_text_layer: bool = False
    text: str = ""
    font_name: str = ""
    font_size: float = 0.0
    justification: Justification = Justification.LEFT
    fill_color: Color = field(default_factory=Color)
    children: List["Layer"] = field(default_factory=list)
    # Opaque handle the rasterizer uses to fetch pixel data
    source: Any = field(default=None, repr=False, compare=False)

    @property
    def is_group(self) -> bool:
        return len(self.children) > 0 or self.rect.width == 0


@dataclass
class Document:
    """Decoded layered-image source."""

    width: int
    height: int
    layers: List[Layer]
    name: str = ""


def is_end_group(layer: Layer) -> bool:
    if any(marker in layer.name for marker in END_GROUP_NAMES):
        return True
    return layer.name == " copy" and layer.rect.height == 0


def is_start_group(layer: Layer) -> bool:
    return layer.is_group_boundary_marker and not is_end_group(layer)


def build_layer_tree(flat_layers: Optional[Sequence[Layer]], console: Optional[Console] = None) -> List[Layer]:
    """Rebuild the group hierarchy from the decoder's flat layer stream.

    The decoder emits layers back-to-front with each group's end marker
    before its start marker, so the stream is walked in reverse. The returned
    forest is ordered front-to-back.
    """
    console = console or globals()["console"]
    if flat_layers is None:
        return []

    tree: List[Layer] = []
    current_group: Optional[Layer] = None
    previous_groups: List[Layer] = []
    unmatched_ends = 0

    for layer in reversed(flat_layers):
        if is_end_group(layer):
            if previous_groups:
                parent = previous_groups.pop()
                parent.children.append(current_group)
                current_group = parent
            elif current_group is not None:
                tree.append(current_group)
                current_group = None
            else:
                unmatched_ends += 1
        elif is_start_group(layer):
            if current_group is not None:
                previous_groups.append(current_group)
            current_group = layer
        elif not layer.rect.is_empty:
            if current_group is not None:
                current_group.children.append(layer)
            else:
                tree.append(layer)

    if unmatched_ends:
        console.print(f"[yellow]Ignored {unmatched_ends} group end marker(s) without a matching start.[/yellow]")

    # Dangling groups are only recovered when nothing else made it into the tree.
    if current_group is not None:
        if not tree and current_group.children:
            console.print(f"[yellow]Group \"{current_group.name}\" was never closed, keeping it as a root.[/yellow]")
            tree.append(current_group)
        else:
            console.print(f"[yellow]Group \"{current_group.name}\" was never closed and was dropped.[/yellow]")

    return tree


def iter_layers(forest: Sequence[Layer]) -> Iterator[Layer]:
    """Depth-first, front-to-back iteration over every node of the forest."""
    for layer in forest:
        yield layer
        yield from iter_layers(layer.children)


def iter_leaves(forest: Sequence[Layer]) -> Iterator[Layer]:
    for layer in iter_layers(forest):
        if not layer.children:
            yield layer


def count_layers(forest: Sequence[Layer]) -> int:
    return sum(1 for _ in iter_layers(forest))


def max_depth(forest: Sequence[Layer]) -> int:
    """Nesting depth of the forest; a flat list of leaves has depth 1."""
    if not forest:
        return 0
    return 1 + max(max_depth(layer.children) for layer in forest)
