# -*- coding: utf-8 -*-
"""
Re-import bookkeeping.

Before anything is written, the raster paths an import would produce are
compared with the files already present in the output folder. Files present
in both are updates, files only on disk are stale and may be deleted.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Set

from rich.console import Console

from config.config import META_EXTENSION, RASTER_EXTENSION, ImportTargetConfig

console = Console()


def normalize_path(path: str) -> str:
    """Absolute path with forward slashes; paths are compared exactly."""
    return os.path.abspath(path).replace(os.sep, "/")


def to_display_path(path: str, project_root: Optional[str] = None) -> str:
    normalized = normalize_path(path)
    if project_root:
        root = normalize_path(project_root).rstrip("/")
        if normalized.startswith(root + "/"):
            return normalized[len(root) + 1 :]
    return normalized


def is_path_inside(path: str, root: str) -> bool:
    """True only for paths strictly below ``root``."""
    root = normalize_path(root).rstrip("/")
    return normalize_path(path).rstrip("/").startswith(root + "/")


@dataclass
class ConflictAnalysis:
    output_root: str
    prefab_path: Optional[str] = None
    project_root: Optional[str] = None
    expected_files: List[str] = field(default_factory=list)
    existing_files: List[str] = field(default_factory=list)
    same_name: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)
    has_existing_output_directory: bool = False
    has_existing_prefab: bool = False

    @property
    def has_existing_targets(self) -> bool:
        return self.has_existing_output_directory or self.has_existing_prefab

    @property
    def has_selectable_entries(self) -> bool:
        return bool(self.same_name or self.stale)

    def display(self, path: str) -> str:
        return to_display_path(path, self.project_root)


@dataclass
class ConflictSelection:
    confirmed: bool = True
    paths_to_update: Set[str] = field(default_factory=set)
    paths_to_delete: Set[str] = field(default_factory=set)

    def restricted_to(self, analysis: ConflictAnalysis) -> "ConflictSelection":
        """Drop entries that are not update or delete candidates of ``analysis``."""
        same_name = set(analysis.same_name)
        stale = set(analysis.stale)
        return ConflictSelection(
            confirmed=self.confirmed,
            paths_to_update={normalize_path(p) for p in self.paths_to_update} & same_name,
            paths_to_delete={normalize_path(p) for p in self.paths_to_delete} & stale,
        )


def collect_expected_paths(
    forest: Sequence,
    output_root: str,
    config: ImportTargetConfig,
    reported: Optional[Set[str]] = None,
    console: Optional[Console] = None,
) -> Set[str]:
    """Dry-run the materializer and return every raster path it would write."""
    from module.coordinate_mapper import CoordinateMapper, DepthAllocator
    from module.layer_tree import count_layers
    from module.materializer import NodeMaterializer, RunContext

    context = RunContext(
        config=config,
        mapper=CoordinateMapper((0, 0), config.pixels_per_unit),
        depth=DepthAllocator(config.maximum_depth, count_layers(forest)),
        output_root=normalize_path(output_root),
        dry_run=True,
        composited=config.use_composited_ui,
        reported=reported if reported is not None else set(),
        console=console or globals()["console"],
    )
    NodeMaterializer(context).materialize(list(forest))
    return set(context.expected)


def scan_existing_files(output_root: str, extension: str = RASTER_EXTENSION) -> Set[str]:
    found: Set[str] = set()
    if not os.path.isdir(output_root):
        return found
    for dirpath, _, filenames in os.walk(output_root):
        for filename in filenames:
            if filename.lower().endswith(extension.lower()):
                found.add(normalize_path(os.path.join(dirpath, filename)))
    return found


def _sorted_unique(paths: Iterable[str], project_root: Optional[str]) -> List[str]:
    return sorted(set(paths), key=lambda p: to_display_path(p, project_root).lower())


def analyze_conflicts(
    expected_files: Iterable[str],
    output_root: str,
    prefab_path: Optional[str] = None,
    project_root: Optional[str] = None,
    extension: str = RASTER_EXTENSION,
) -> ConflictAnalysis:
    """Split the existing outputs into updates and stale files.

    An existing prefab is listed with the updates so it can be deselected
    like any other generated file.
    """
    expected = {normalize_path(p) for p in expected_files}
    output_root = normalize_path(output_root)
    prefab_path = normalize_path(prefab_path) if prefab_path else None

    has_output = os.path.isdir(output_root)
    existing = scan_existing_files(output_root, extension) if has_output else set()

    same_name = existing & expected
    stale = existing - expected

    has_prefab = bool(prefab_path) and os.path.isfile(prefab_path)
    if has_prefab:
        same_name.add(prefab_path)

    return ConflictAnalysis(
        output_root=output_root,
        prefab_path=prefab_path,
        project_root=project_root,
        expected_files=_sorted_unique(expected, project_root),
        existing_files=_sorted_unique(existing, project_root),
        same_name=_sorted_unique(same_name, project_root),
        stale=_sorted_unique(stale, project_root),
        has_existing_output_directory=has_output,
        has_existing_prefab=has_prefab,
    )


def create_default_selection(analysis: ConflictAnalysis) -> ConflictSelection:
    return ConflictSelection(
        confirmed=True,
        paths_to_update=set(analysis.same_name),
        paths_to_delete=set(analysis.stale),
    )


def should_overwrite(path: str, selection: Optional[ConflictSelection]) -> bool:
    if not os.path.exists(path):
        return True
    if selection is None:
        return True
    return normalize_path(path) in selection.paths_to_update


def should_save_prefab(prefab_path: Optional[str], selection: Optional[ConflictSelection]) -> bool:
    if not prefab_path:
        return False
    return should_overwrite(prefab_path, selection)


def delete_file_with_meta(path: str, console: Optional[Console] = None) -> bool:
    console = console or globals()["console"]
    try:
        if os.path.isfile(path):
            os.remove(path)
        meta_path = path + META_EXTENSION
        if os.path.isfile(meta_path):
            os.remove(meta_path)
    except OSError as e:
        console.print(f"[yellow]Failed to delete file '{path}': {e}[/yellow]")
        return False
    return True


def delete_empty_subdirectories(root: str, console: Optional[Console] = None) -> List[str]:
    """Remove empty directories below ``root`` bottom-up, with their ``.meta``."""
    console = console or globals()["console"]
    removed: List[str] = []
    if not os.path.isdir(root):
        return removed

    for entry in sorted(os.listdir(root)):
        subdirectory = os.path.join(root, entry)
        if not os.path.isdir(subdirectory):
            continue
        removed.extend(delete_empty_subdirectories(subdirectory, console))
        if os.listdir(subdirectory):
            continue
        try:
            os.rmdir(subdirectory)
            meta_path = subdirectory + META_EXTENSION
            if os.path.isfile(meta_path):
                os.remove(meta_path)
        except OSError as e:
            console.print(f"[yellow]Failed to remove directory '{subdirectory}': {e}[/yellow]")
            continue
        removed.append(normalize_path(subdirectory))
    return removed


def delete_selected_files(
    paths: Iterable[str],
    output_root: str,
    console: Optional[Console] = None,
) -> List[str]:
    """Delete stale outputs that lie inside ``output_root``.

    Returns the paths that were deleted. Paths outside the root are skipped.
    """
    console = console or globals()["console"]
    paths = sorted({normalize_path(p) for p in paths or ()})
    if not paths or not os.path.isdir(output_root):
        return []

    deleted: List[str] = []
    for path in paths:
        if not is_path_inside(path, output_root):
            console.print(f"[yellow]Refusing to delete '{path}': it is outside {normalize_path(output_root)}[/yellow]")
            continue
        if delete_file_with_meta(path, console):
            deleted.append(path)

    delete_empty_subdirectories(output_root, console)
    return deleted
