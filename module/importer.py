# -*- coding: utf-8 -*-
"""
Import orchestration.

An import decodes the document, rebuilds its layer tree, works out which
existing outputs it would touch and only then writes anything. When earlier
outputs exist the run stops at a ``PendingConfirmation`` so a caller (a
terminal prompt, a GUI, a test) can pick what to update and delete before the
run is resumed.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Set, Union

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from config.config import PREFAB_EXTENSION, ImportTargetConfig, OutputDirectoryMode, PrefabOutputMode
from module.conflict_resolver import (
    ConflictAnalysis,
    ConflictSelection,
    analyze_conflicts,
    collect_expected_paths,
    create_default_selection,
    delete_selected_files,
    normalize_path,
    should_overwrite,
    should_save_prefab,
)
from module.coordinate_mapper import CoordinateMapper, DepthAllocator
from module.layer_tree import Document, Layer, build_layer_tree
from module.materializer import NodeMaterializer, RunContext, create_root
from module.scene import NodeFactory, SceneContainerResolver, SceneGraph, save_prefab
from module.tag_grammar import make_name_safe

console = Console()

STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

# Set while a PendingConfirmation is waiting for an answer
_confirmation_pending = False


class ConfirmationInProgressError(RuntimeError):
    """Raised when an import needs confirmation while another one is pending."""


def confirmation_pending() -> bool:
    return _confirmation_pending


def _acquire_confirmation() -> None:
    global _confirmation_pending
    if _confirmation_pending:
        raise ConfirmationInProgressError(
            "Another update/delete confirmation is already open. Finish it before starting a new one."
        )
    _confirmation_pending = True


def _release_confirmation() -> None:
    global _confirmation_pending
    _confirmation_pending = False


@dataclass
class ImportOutcome:
    status: str
    source_path: str
    output_root: str = ""
    prefab_path: Optional[str] = None
    root_node: Any = None
    analysis: Optional[ConflictAnalysis] = None
    written: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    prefab_saved: bool = False

    @property
    def cancelled(self) -> bool:
        return self.status == STATUS_CANCELLED


class PendingConfirmation:
    """An import paused until the caller answers the conflict question."""

    def __init__(
        self,
        importer: "PsdImporter",
        source_path: str,
        analysis: ConflictAnalysis,
        default_selection: ConflictSelection,
    ) -> None:
        self.importer = importer
        self.source_path = source_path
        self.analysis = analysis
        self.default_selection = default_selection
        self.resolved = False

    def _finish(self) -> None:
        if self.resolved:
            raise RuntimeError("This confirmation has already been answered.")
        self.resolved = True
        _release_confirmation()

    def resume(self, selection: Optional[ConflictSelection]) -> ImportOutcome:
        """Re-run the import with ``selection`` and without prompting again."""
        self._finish()
        if selection is None or not selection.confirmed:
            return self.importer._cancelled(self.source_path, self.analysis)
        return self.importer._import(self.source_path, selection, skip_prompt=True)

    def cancel(self) -> ImportOutcome:
        self._finish()
        return self.importer._cancelled(self.source_path, self.analysis)


class AcceptDefaults:
    """Confirmer that always updates and applies the default selection."""

    def confirm_update(self, analysis: ConflictAnalysis) -> bool:
        return True

    def select(self, analysis: ConflictAnalysis, default: ConflictSelection) -> Optional[ConflictSelection]:
        return default


def output_root_for(source_path: str, config: ImportTargetConfig, console: Optional[Console] = None) -> str:
    """``<source dir | assets root>/<output folder name | source base name>``."""
    psd_name = Path(source_path).stem
    assets_root = os.path.join(config.project_root, config.assets_root)
    if config.output_directory_mode == OutputDirectoryMode.UNDER_ROOT:
        base = assets_root
    else:
        base = os.path.dirname(source_path) or assets_root

    folder = (config.output_folder_name or "").strip() or psd_name
    return normalize_path(os.path.join(base, make_name_safe(folder, console)))


def prefab_path_for(output_root: str, psd_name: str, config: ImportTargetConfig) -> str:
    if config.prefab_output_mode == PrefabOutputMode.INSIDE_OUTPUT_FOLDER:
        return normalize_path(os.path.join(output_root, psd_name + PREFAB_EXTENSION))
    parent = os.path.dirname(output_root.rstrip("/")) or os.path.join(config.project_root, config.assets_root)
    return normalize_path(os.path.join(parent, psd_name + PREFAB_EXTENSION))


@dataclass
class _Prepared:
    source_path: str
    document: Document
    tree: List[Layer]
    output_root: str
    prefab_path: Optional[str]
    analysis: ConflictAnalysis
    reported: Set[str]


class PsdImporter:
    """Sequence decoding, conflict analysis and materialization for one document.

    Args:
        config: Settings read at the start of every run
        layout: Lay the generated nodes out in ``scene``
        create_prefab: Save the generated hierarchy as a prefab asset
        scene: Node factory receiving the nodes; an in-memory graph by default
        decoder: ``decode(path) -> Document``
        rasterizer: Object with ``decode(layer) -> PIL.Image``
        target_resolver: Object with ``resolve(path)`` and ``size(handle)``
    """

    def __init__(
        self,
        config: Optional[ImportTargetConfig] = None,
        layout: bool = False,
        create_prefab: bool = False,
        scene: Optional[NodeFactory] = None,
        decoder: Optional[Callable[[str], Document]] = None,
        rasterizer: Any = None,
        target_resolver: Any = None,
        show_progress: bool = True,
        console: Optional[Console] = None,
    ) -> None:
        self.config = config or ImportTargetConfig()
        self.layout = layout
        self.create_prefab = create_prefab
        self.scene = scene if scene is not None else SceneGraph()
        self.target_resolver = target_resolver or SceneContainerResolver(self.scene)
        self.show_progress = show_progress
        self.console = console or globals()["console"]

        if decoder is None or rasterizer is None:
            from utils.psd_reader import PsdRasterizer, decode_document

            decoder = decoder or (lambda path: decode_document(path, console=self.console))
            rasterizer = rasterizer or PsdRasterizer()
        self.decoder = decoder
        self.rasterizer = rasterizer

    @property
    def builds_nodes(self) -> bool:
        return self.layout or self.create_prefab

    # Two-phase protocol

    def begin(self, source_path: Union[str, Path]) -> Union[ImportOutcome, PendingConfirmation]:
        """Start an import.

        Returns the finished outcome, or a ``PendingConfirmation`` when earlier
        outputs exist and the caller has to decide what to update.
        """
        return self._import(str(source_path), None, skip_prompt=False)

    def run(self, source_path: Union[str, Path], confirmer: Any = None) -> ImportOutcome:
        """Drive both phases, asking ``confirmer`` when a confirmation is needed."""
        confirmer = confirmer or AcceptDefaults()
        result = self.begin(source_path)
        if isinstance(result, ImportOutcome):
            return result

        try:
            if not confirmer.confirm_update(result.analysis):
                return result.cancel()
            if not result.analysis.has_selectable_entries:
                return result.resume(result.default_selection)
            return result.resume(confirmer.select(result.analysis, result.default_selection))
        finally:
            if not result.resolved:
                # the confirmer raised; do not leave the guard held
                result.resolved = True
                _release_confirmation()

    def _cancelled(self, source_path: str, analysis: Optional[ConflictAnalysis]) -> ImportOutcome:
        self.console.print(f"[yellow]Import of {source_path} was cancelled, nothing was changed.[/yellow]")
        return ImportOutcome(
            status=STATUS_CANCELLED,
            source_path=source_path,
            output_root=analysis.output_root if analysis else "",
            prefab_path=analysis.prefab_path if analysis else None,
            analysis=analysis,
        )

    # Pipeline

    def _resolve_source(self, source_path: str) -> str:
        if not os.path.isabs(source_path) and not os.path.exists(source_path):
            candidate = os.path.join(self.config.project_root, source_path)
            if os.path.exists(candidate):
                source_path = candidate
        if not os.path.isfile(source_path):
            raise FileNotFoundError(f"PSD not found: {source_path}")
        return source_path

    def _prepare(self, source_path: str) -> _Prepared:
        source_path = self._resolve_source(source_path)
        document = self.decoder(source_path)
        tree = build_layer_tree(document.layers, console=self.console)

        psd_name = Path(source_path).stem
        output_root = output_root_for(source_path, self.config, self.console)
        prefab_path = prefab_path_for(output_root, psd_name, self.config) if self.create_prefab else None

        reported: Set[str] = set()
        expected = collect_expected_paths(tree, output_root, self.config, reported=reported, console=self.console)
        analysis = analyze_conflicts(expected, output_root, prefab_path, project_root=self.config.project_root)
        return _Prepared(source_path, document, tree, output_root, prefab_path, analysis, reported)

    def _import(
        self,
        source_path: str,
        selection: Optional[ConflictSelection],
        skip_prompt: bool,
    ) -> Union[ImportOutcome, PendingConfirmation]:
        prepared = self._prepare(source_path)
        analysis = prepared.analysis

        if not skip_prompt and analysis.has_existing_targets:
            _acquire_confirmation()
            return PendingConfirmation(self, source_path, analysis, create_default_selection(analysis))

        if selection is not None:
            selection = selection.restricted_to(analysis)
        return self._execute(prepared, selection)

    def _resolve_target(self) -> Any:
        path = self.config.target_container_path
        if not (self.builds_nodes and self.config.use_composited_ui and path):
            return None
        handle = self.target_resolver.resolve(path)
        if handle is None:
            self.console.print(
                f'[yellow]Target container "{path}" was not found, creating a standalone canvas instead.[/yellow]'
            )
        return handle

    def _mapper(self, document: Document, target: Any) -> CoordinateMapper:
        target_size = None
        if target is not None:
            target_size = self.target_resolver.size(target) or (document.width, document.height)
        return CoordinateMapper(
            (document.width, document.height),
            self.config.pixels_per_unit,
            target_size=target_size,
            scale_to_target=self.config.scale_to_target_container,
            preserve_aspect=self.config.preserve_aspect_ratio,
        )

    def _execute(self, prepared: _Prepared, selection: Optional[ConflictSelection]) -> ImportOutcome:
        config = self.config
        document = prepared.document
        outcome = ImportOutcome(
            status=STATUS_COMPLETED,
            source_path=prepared.source_path,
            output_root=prepared.output_root,
            prefab_path=prepared.prefab_path,
            analysis=prepared.analysis,
        )

        os.makedirs(prepared.output_root, exist_ok=True)
        if selection is not None:
            outcome.deleted = delete_selected_files(selection.paths_to_delete, prepared.output_root, self.console)

        target = self._resolve_target()
        context = RunContext(
            config=config,
            mapper=self._mapper(document, target),
            depth=DepthAllocator(config.maximum_depth, len(document.layers)),
            output_root=prepared.output_root,
            layout=self.builds_nodes,
            composited=config.use_composited_ui,
            scene=self.scene,
            rasterizer=self.rasterizer,
            can_write=lambda path: should_overwrite(path, selection),
            stop_at=target,
            reported=prepared.reported,
            console=self.console,
        )

        psd_name = Path(prepared.source_path).stem
        if self.builds_nodes:
            context.current_parent = create_root(context, psd_name, target)
            outcome.root_node = context.current_parent

        materializer = NodeMaterializer(context)
        if self.show_progress:
            with Progress(
                "[progress.description]{task.description}",
                SpinnerColumn(spinner_name="dots"),
                MofNCompleteColumn(separator="/"),
                BarColumn(bar_width=40, complete_style="green", finished_style="bold green"),
                TextColumn("•"),
                TaskProgressColumn(),
                TextColumn("•"),
                TimeElapsedColumn(),
                console=self.console,
            ) as progress:
                task = progress.add_task("[bold cyan]Writing layers...", total=len(prepared.analysis.expected_files))
                context.on_raster = lambda path: progress.advance(task)
                materializer.materialize(prepared.tree)
        else:
            materializer.materialize(prepared.tree)

        outcome.written = list(context.written)
        outcome.skipped = list(context.skipped)

        if self.create_prefab and outcome.root_node is not None:
            if should_save_prefab(prepared.prefab_path, selection):
                save_prefab(outcome.root_node, prepared.prefab_path)
                outcome.prefab_saved = True
            if not self.layout:
                # the nodes only existed to build the prefab
                self.scene.destroy(outcome.root_node)

        self.console.print(
            f"[green]Imported {psd_name}:[/green] {len(outcome.written)} written, "
            f"{len(outcome.skipped)} kept, {len(outcome.deleted)} deleted -> {prepared.output_root}"
        )
        return outcome


# Caller actions


def export_layers_as_textures(
    path: Union[str, Path],
    config: Optional[ImportTargetConfig] = None,
    confirmer: Any = None,
    **kwargs,
) -> ImportOutcome:
    """Write one raster per layer without creating any nodes."""
    return PsdImporter(config, layout=False, create_prefab=False, **kwargs).run(path, confirmer)


def layout_in_current_container(
    path: Union[str, Path],
    config: Optional[ImportTargetConfig] = None,
    confirmer: Any = None,
    **kwargs,
) -> ImportOutcome:
    """Write the rasters and lay the document out as nodes in the scene."""
    return PsdImporter(config, layout=True, create_prefab=False, **kwargs).run(path, confirmer)


def generate_reusable_asset(
    path: Union[str, Path],
    config: Optional[ImportTargetConfig] = None,
    confirmer: Any = None,
    **kwargs,
) -> ImportOutcome:
    """Write the rasters and save the generated hierarchy as a prefab."""
    return PsdImporter(config, layout=False, create_prefab=True, **kwargs).run(path, confirmer)
