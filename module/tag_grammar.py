# -*- coding: utf-8 -*-
"""
Structural tags embedded in layer names.

A layer or group name may carry ``|``-prefixed tags such as
``Hero|Animation|FPS=12`` or ``Play|Button``. Tags are matched as
case-insensitive substrings anywhere in the name and are always stripped from
the cleaned name, whether or not the current import mode acts on them.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from rich.console import Console

from config.config import DEFAULT_FPS

UNSAFE_NAME_CHARS = re.compile(r"[/:&.<>,$¢;+]")

DEFAULT_ANIMATION_FOLDER = "Animation"


class TagKind(str, Enum):
    ANIMATION = "animation"
    FPS = "fps"
    BUTTON = "button"
    DISABLED = "disabled"
    HIGHLIGHTED = "highlighted"
    PRESSED = "pressed"
    NORMAL = "normal"
    TEXT = "text"


class Role(str, Enum):
    PLAIN = "plain"
    ANIMATION = "animation"
    BUTTON = "button"
    BUTTON_STATE = "button_state"
    TEXT_SLOT = "text_slot"


class ButtonState(str, Enum):
    NORMAL = "normal"
    DISABLED = "disabled"
    HIGHLIGHTED = "highlighted"
    PRESSED = "pressed"


# (token, kind) pairs; Default/Enabled/Normal/Up all name the normal state
TAG_TOKENS: Tuple[Tuple[str, TagKind], ...] = (
    ("|Animation", TagKind.ANIMATION),
    ("|Button", TagKind.BUTTON),
    ("|Disabled", TagKind.DISABLED),
    ("|Highlighted", TagKind.HIGHLIGHTED),
    ("|Pressed", TagKind.PRESSED),
    ("|Default", TagKind.NORMAL),
    ("|Enabled", TagKind.NORMAL),
    ("|Normal", TagKind.NORMAL),
    ("|Up", TagKind.NORMAL),
    ("|Text", TagKind.TEXT),
)

_TOKEN_PATTERNS = tuple((re.compile(re.escape(token), re.IGNORECASE), kind) for token, kind in TAG_TOKENS)

FPS_PATTERN = re.compile(r"\|FPS=([^|]*)", re.IGNORECASE)

# Checked in this order when a layer carries more than one state tag
STATE_PRECEDENCE: Tuple[Tuple[TagKind, ButtonState], ...] = (
    (TagKind.DISABLED, ButtonState.DISABLED),
    (TagKind.HIGHLIGHTED, ButtonState.HIGHLIGHTED),
    (TagKind.PRESSED, ButtonState.PRESSED),
    (TagKind.NORMAL, ButtonState.NORMAL),
)


@dataclass(frozen=True)
class ParsedName:
    clean_name: str
    role: Role
    tags: Tuple[TagKind, ...] = ()
    fps: float = DEFAULT_FPS
    fps_error: Optional[str] = None
    state: Optional[ButtonState] = None

    def has(self, kind: TagKind) -> bool:
        return kind in self.tags


def _strip_tags(name: str) -> Tuple[str, List[TagKind], List[str]]:
    """Remove every recognized tag, repeating until nothing else matches."""
    found: List[TagKind] = []
    fps_values: List[str] = []

    while True:
        stripped = name
        for match in FPS_PATTERN.finditer(stripped):
            fps_values.append(match.group(1))
            found.append(TagKind.FPS)
        stripped = FPS_PATTERN.sub("", stripped)

        for pattern, kind in _TOKEN_PATTERNS:
            if pattern.search(stripped):
                found.append(kind)
                stripped = pattern.sub("", stripped)

        if stripped == name:
            break
        name = stripped

    unique: List[TagKind] = []
    for kind in found:
        if kind not in unique:
            unique.append(kind)
    return name, unique, fps_values


def _parse_fps(values: List[str]) -> Tuple[float, Optional[str]]:
    fps = DEFAULT_FPS
    error = None
    for raw in values:
        try:
            value = float(raw.strip())
        except ValueError:
            error = f'Unable to parse FPS: "FPS={raw}"'
            continue
        if not math.isfinite(value) or value <= 0:
            error = f'Unable to parse FPS: "FPS={raw}"'
            continue
        fps = value
    return fps, error


def parse_name(name: str, is_text_layer: bool = False) -> ParsedName:
    """Split a layer name into its cleaned name, tags and structural role.

    Args:
        name: Raw (already sanitized) layer name
        is_text_layer: ``Text`` only marks a text slot on non-text layers

    Returns:
        ParsedName; parsing ``clean_name`` again yields no tags
    """
    clean_name, tags, fps_values = _strip_tags(name or "")
    fps, fps_error = _parse_fps(fps_values)

    state = None
    for kind, button_state in STATE_PRECEDENCE:
        if kind in tags:
            state = button_state
            break

    if TagKind.BUTTON in tags:
        role = Role.BUTTON
    elif TagKind.ANIMATION in tags:
        role = Role.ANIMATION
    elif state is not None:
        role = Role.BUTTON_STATE
    elif TagKind.TEXT in tags and not is_text_layer:
        role = Role.TEXT_SLOT
    else:
        role = Role.PLAIN

    return ParsedName(
        clean_name=clean_name,
        role=role,
        tags=tuple(tags),
        fps=fps,
        fps_error=fps_error,
        state=state,
    )


def leading_segment(name: str) -> str:
    """First non-empty ``|`` segment, used to name an animation's frame folder."""
    parts = [part for part in (name or "").split("|") if part]
    if parts:
        return parts[0]
    return DEFAULT_ANIMATION_FOLDER


def make_name_safe(name: str, console: Optional[Console] = None) -> str:
    """Replace characters that are unsafe in file and asset names with ``_``."""
    new_name = UNSAFE_NAME_CHARS.sub("_", name or "")
    if console and new_name != name:
        console.print(f'[blue]Layer name "{name}" was changed to "{new_name}"[/blue]')
    return new_name
