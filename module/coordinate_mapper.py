# -*- coding: utf-8 -*-

from __future__ import annotations

from typing import Any, Optional, Tuple

from module.layer_tree import Rect


class CoordinateMapper:
    """Convert PSD pixel rectangles into output-space positions and sizes.

    Without a target container (unanchored) positions are expressed in world
    units of ``1 / pixels_per_unit``, the Y axis is flipped to point up and the
    document center becomes the origin. With a target container (anchored)
    positions are expressed in the container's own units, optionally scaled to
    fit the container.
    """

    def __init__(
        self,
        document_size: Tuple[float, float],
        pixels_per_unit: float = 100.0,
        target_size: Optional[Tuple[float, float]] = None,
        scale_to_target: bool = True,
        preserve_aspect: bool = True,
    ) -> None:
        self.document_width = float(document_size[0])
        self.document_height = float(document_size[1])
        self.pixels_per_unit = float(pixels_per_unit) if pixels_per_unit else 100.0
        self.anchored = target_size is not None
        self.scale_to_target = scale_to_target
        self.preserve_aspect = preserve_aspect

        if target_size is None or target_size[0] <= 0 or target_size[1] <= 0:
            self.target_width, self.target_height = self.document_width, self.document_height
        else:
            self.target_width, self.target_height = float(target_size[0]), float(target_size[1])

    # Scale policy

    @property
    def _scaling(self) -> bool:
        return self.anchored and self.scale_to_target

    def _axis_ratio(self, target: float, document: float) -> float:
        return target / document if document > 0 else 1.0

    @property
    def fit_scale(self) -> float:
        return min(
            self._axis_ratio(self.target_width, self.document_width),
            self._axis_ratio(self.target_height, self.document_height),
        )

    @property
    def scale_x(self) -> float:
        if not self._scaling:
            return 1.0
        if self.preserve_aspect:
            return self.fit_scale
        return self._axis_ratio(self.target_width, self.document_width)

    @property
    def scale_y(self) -> float:
        if not self._scaling:
            return 1.0
        if self.preserve_aspect:
            return self.fit_scale
        return self._axis_ratio(self.target_height, self.document_height)

    @property
    def uniform_scale(self) -> float:
        return min(self.scale_x, self.scale_y)

    # Positions and sizes

    def absolute_position(self, rect: Rect) -> Tuple[float, float]:
        """Center of ``rect`` relative to the document center, Y up."""
        center_x = rect.x + rect.width / 2.0 - self.document_width / 2.0
        center_y = self.document_height / 2.0 - (rect.y + rect.height / 2.0)
        if self.anchored:
            return center_x * self.scale_x, center_y * self.scale_y
        return center_x / self.pixels_per_unit, center_y / self.pixels_per_unit

    def size(self, rect: Rect) -> Tuple[float, float]:
        if self.anchored:
            return rect.width * self.scale_x, rect.height * self.scale_y
        return rect.width / self.pixels_per_unit, rect.height / self.pixels_per_unit

    def root_size(self) -> Tuple[float, float]:
        if not self.anchored:
            return self.document_width / self.pixels_per_unit, self.document_height / self.pixels_per_unit
        if not self.scale_to_target:
            return self.document_width, self.document_height
        if not self.preserve_aspect:
            return self.target_width, self.target_height
        fit = self.fit_scale
        return self.document_width * fit, self.document_height * fit

    def font_scale(self) -> float:
        """Factor applied to a PSD font size in composited mode."""
        if self.anchored:
            return self.uniform_scale
        return 1.0 / self.pixels_per_unit

    def local_position(self, rect: Rect, parent: Any, stop_at: Any = None) -> Tuple[float, float]:
        """Position of ``rect`` relative to ``parent``'s accumulated offset."""
        x, y = self.absolute_position(rect)
        offset_x, offset_y = cumulative_offset(parent, stop_at)
        return x - offset_x, y - offset_y


def cumulative_offset(node: Any, stop_at: Any = None) -> Tuple[float, float]:
    """Sum node positions walking up the parent chain until ``stop_at``."""
    offset_x, offset_y = 0.0, 0.0
    current = node
    while current is not None and current is not stop_at:
        position = getattr(current, "position", None) or (0.0, 0.0)
        offset_x += position[0]
        offset_y += position[1]
        current = getattr(current, "parent", None)
    return offset_x, offset_y


class DepthAllocator:
    """Hand out depth values and draw-order indices in traversal order.

    Depth starts at ``maximum_depth`` (the back) and moves toward 0 by a fixed
    step per layer; the draw-order index increases by one per call. Neither
    depends on where the output is viewed from.
    """

    def __init__(self, maximum_depth: float, layer_count: int) -> None:
        self.maximum_depth = float(maximum_depth)
        self.step = self.maximum_depth / layer_count if layer_count else 0.1
        self.current_depth = self.maximum_depth
        self.current_order = 0

    def allocate(self) -> Tuple[float, int]:
        depth, order = self.current_depth, self.current_order
        self.current_depth -= self.step
        self.current_order += 1
        return depth, order
