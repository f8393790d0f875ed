# -*- coding: utf-8 -*-
"""
Node-creation API used by the materializer plus an in-memory scene graph.

Hosts embedding the importer provide their own ``NodeFactory``; the bundled
``SceneGraph`` keeps nodes in memory so a run can be inspected, printed or
saved as a JSON prefab.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class Behavior:
    kind: str
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "properties": _plain(self.properties)}


@dataclass(eq=False)
class SceneNode:
    name: str
    kind: str = "container"
    parent: Optional["SceneNode"] = field(default=None, repr=False)
    position: Tuple[float, float] = (0.0, 0.0)
    size: Optional[Tuple[float, float]] = None
    depth: Optional[float] = None
    order: Optional[int] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    behaviors: List[Behavior] = field(default_factory=list)
    children: List["SceneNode"] = field(default_factory=list, repr=False)

    @property
    def path(self) -> str:
        parts: List[str] = []
        current: Optional[SceneNode] = self
        while current is not None:
            parts.append(current.name)
            current = current.parent
        return "/".join(reversed(parts))

    def child(self, name: str) -> Optional["SceneNode"]:
        for node in self.children:
            if node.name == name:
                return node
        return None

    def behavior(self, kind: str) -> Optional[Behavior]:
        for behavior in self.behaviors:
            if behavior.kind == kind:
                return behavior
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "kind": self.kind,
            "position": list(self.position),
        }
        if self.size is not None:
            data["size"] = list(self.size)
        if self.depth is not None:
            data["depth"] = self.depth
        if self.order is not None:
            data["order"] = self.order
        if self.properties:
            data["properties"] = _plain(self.properties)
        if self.behaviors:
            data["behaviors"] = [behavior.to_dict() for behavior in self.behaviors]
        if self.children:
            data["children"] = [node.to_dict() for node in self.children]
        return data


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


class NodeFactory:
    """Operations the materializer needs from a host scene graph."""

    def create_container(self, parent: Any, name: str, position=(0.0, 0.0), size=None, **properties) -> Any:
        raise NotImplementedError

    def create_image_node(
        self,
        parent: Any,
        name: str,
        image: Optional[str],
        position: Tuple[float, float],
        size: Tuple[float, float],
        depth: Optional[float] = None,
        order: Optional[int] = None,
        ui: bool = False,
    ) -> Any:
        raise NotImplementedError

    def create_text_node(
        self,
        parent: Any,
        name: str,
        position: Tuple[float, float],
        size: Tuple[float, float],
        depth: Optional[float] = None,
        order: Optional[int] = None,
        **text_properties,
    ) -> Any:
        raise NotImplementedError

    def attach_behavior(self, node: Any, kind: str, **properties) -> Any:
        raise NotImplementedError

    def update_node(self, node: Any, **changes) -> None:
        raise NotImplementedError

    def find(self, path: str) -> Any:
        raise NotImplementedError

    def destroy(self, node: Any) -> None:
        raise NotImplementedError


class SceneGraph(NodeFactory):
    """In-memory node tree implementing ``NodeFactory``."""

    def __init__(self) -> None:
        self.roots: List[SceneNode] = []

    def _add(self, parent: Optional[SceneNode], node: SceneNode) -> SceneNode:
        node.parent = parent
        if parent is None:
            self.roots.append(node)
        else:
            parent.children.append(node)
        return node

    def create_container(self, parent, name, position=(0.0, 0.0), size=None, **properties) -> SceneNode:
        return self._add(
            parent,
            SceneNode(name=name, kind="container", position=tuple(position), size=size, properties=dict(properties)),
        )

    def create_image_node(self, parent, name, image, position, size, depth=None, order=None, ui=False) -> SceneNode:
        node = SceneNode(
            name=name,
            kind="ui_image" if ui else "sprite",
            position=tuple(position),
            size=tuple(size),
            depth=depth,
            order=order,
            properties={"image": image},
        )
        return self._add(parent, node)

    def create_text_node(self, parent, name, position, size, depth=None, order=None, **text_properties) -> SceneNode:
        ui = bool(text_properties.pop("ui", False))
        node = SceneNode(
            name=name,
            kind="ui_text" if ui else "text",
            position=tuple(position),
            size=tuple(size),
            depth=depth,
            order=order,
            properties=dict(text_properties),
        )
        return self._add(parent, node)

    def attach_behavior(self, node: SceneNode, kind: str, **properties) -> Behavior:
        behavior = Behavior(kind=kind, properties=dict(properties))
        node.behaviors.append(behavior)
        return behavior

    def update_node(self, node: SceneNode, **changes) -> None:
        for key, value in changes.items():
            if key in ("position", "size", "depth", "order", "name"):
                setattr(node, key, tuple(value) if isinstance(value, list) else value)
            else:
                node.properties[key] = value

    def find(self, path: str) -> Optional[SceneNode]:
        """Resolve a slash-delimited hierarchy path such as ``Canvas/Panel``."""
        parts = [part for part in (path or "").split("/") if part]
        if not parts:
            return None
        candidates = self.roots
        node = None
        for part in parts:
            node = next((candidate for candidate in candidates if candidate.name == part), None)
            if node is None:
                return None
            candidates = node.children
        return node

    def destroy(self, node: SceneNode) -> None:
        if node.parent is None:
            if node in self.roots:
                self.roots.remove(node)
        elif node in node.parent.children:
            node.parent.children.remove(node)
        node.parent = None


class SceneContainerResolver:
    """Resolve the optional target container inside a ``NodeFactory``."""

    def __init__(self, scene: NodeFactory) -> None:
        self.scene = scene

    def resolve(self, path: str) -> Any:
        if not path:
            return None
        return self.scene.find(path)

    def size(self, handle: Any) -> Optional[Tuple[float, float]]:
        """Authoring size of the container.

        A reference resolution (screen-size scaling) wins over the rect size.
        """
        if handle is None:
            return None
        properties = getattr(handle, "properties", {}) or {}
        reference = properties.get("reference_resolution")
        if reference and reference[0] > 0 and reference[1] > 0:
            return float(reference[0]), float(reference[1])
        size = getattr(handle, "size", None)
        if size and size[0] > 0 and size[1] > 0:
            return float(size[0]), float(size[1])
        return None


def save_prefab(node: SceneNode, prefab_path: Path) -> Path:
    prefab_path = Path(prefab_path)
    prefab_path.parent.mkdir(parents=True, exist_ok=True)
    with open(prefab_path, "w", encoding="utf-8") as f:
        json.dump(node.to_dict(), f, ensure_ascii=False, indent=2)
    return prefab_path
