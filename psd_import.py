import argparse
from typing import Any, Dict, List, Optional

from rich.console import Console

from config.config import (
    DEFAULT_CONFIG_PATH,
    ImportTargetConfig,
    OutputDirectoryMode,
    PrefabOutputMode,
    load_import_settings,
    save_import_settings,
)
from module.importer import (
    AcceptDefaults,
    ConfirmationInProgressError,
    ImportOutcome,
    export_layers_as_textures,
    generate_reusable_asset,
    layout_in_current_container,
)
from utils.console_util import ConsoleConfirmer, print_node_tree

console = Console()

ACTIONS = {
    "textures": export_layers_as_textures,
    "layout": layout_in_current_container,
    "prefab": generate_reusable_asset,
}


def setup_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import PSD layouts as textures, scene nodes or prefabs.")

    parser.add_argument("psd", type=str, nargs="+", help="Path(s) to .psd")

    parser.add_argument(
        "--action",
        type=str,
        choices=sorted(ACTIONS),
        default="textures",
        help="textures: export layer PNGs only; layout: lay out nodes; prefab: save a prefab",
    )

    parser.add_argument(
        "--config",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help="Path to config file",
    )

    parser.add_argument("--pixels_per_unit", type=float, default=None, help="PSD pixels per output unit")
    parser.add_argument("--maximum_depth", type=float, default=None, help="Depth of the back-most layer")

    parser.add_argument(
        "--composited_ui",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Build UI-style nodes instead of plain scene nodes",
    )

    parser.add_argument(
        "--output_mode",
        type=str,
        choices=[mode.value for mode in OutputDirectoryMode],
        default=None,
        help="Create the output folder beside the PSD or under the assets root",
    )

    parser.add_argument("--output_folder", type=str, default=None, help="Output folder name (default: PSD name)")

    parser.add_argument(
        "--prefab_mode",
        type=str,
        choices=[mode.value for mode in PrefabOutputMode],
        default=None,
        help="Save the prefab beside or inside the output folder",
    )

    parser.add_argument(
        "--target",
        type=str,
        default=None,
        help="Slash-delimited container path resolved in the host scene the importer is embedded in; "
        "this CLI starts from an empty scene, so here it only reports the miss and builds a standalone canvas "
        "(use with --save_settings to store it for the host)",
    )

    parser.add_argument(
        "--scale_to_target",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Scale the layout to fit the target container",
    )

    parser.add_argument(
        "--preserve_aspect",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Use one scale factor for both axes when scaling",
    )

    parser.add_argument("--project_root", type=str, default=None, help="Project root used for display paths")
    parser.add_argument("--assets_root", type=str, default=None, help="Assets root, relative to the project root")

    parser.add_argument(
        "--save_settings",
        action="store_true",
        help="Write the effective settings back to the config file",
    )

    parser.add_argument(
        "--yes",
        action="store_true",
        help="Update existing files and delete stale ones without asking",
    )

    parser.add_argument("--show_tree", action="store_true", help="Print the generated node hierarchy")
    parser.add_argument("--no_progress", action="store_true", help="Hide the progress bar")

    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    mapping = {
        "pixels_per_unit": args.pixels_per_unit,
        "maximum_depth": args.maximum_depth,
        "use_composited_ui": args.composited_ui,
        "output_directory_mode": OutputDirectoryMode(args.output_mode) if args.output_mode else None,
        "output_folder_name": args.output_folder,
        "prefab_output_mode": PrefabOutputMode(args.prefab_mode) if args.prefab_mode else None,
        "target_container_path": args.target,
        "scale_to_target_container": args.scale_to_target,
        "preserve_aspect_ratio": args.preserve_aspect,
        "project_root": args.project_root,
        "assets_root": args.assets_root,
    }
    return {key: value for key, value in mapping.items() if value is not None}


def build_settings(args: argparse.Namespace) -> ImportTargetConfig:
    settings = load_import_settings(args.config, console=console)
    overrides = _overrides(args)
    if overrides:
        settings = settings.with_changes(**overrides)
    if settings.pixels_per_unit <= 0:
        raise ValueError("pixels_per_unit must be positive")
    return settings


def _report(outcome: ImportOutcome, show_tree: bool, settings: ImportTargetConfig) -> None:
    if outcome.cancelled:
        return
    if outcome.prefab_saved:
        console.print(f"[green]Prefab saved:[/green] {outcome.prefab_path}")
    if show_tree and outcome.root_node is not None:
        print_node_tree(outcome.root_node, console=console, colors=settings.console_colors)


def _main(argv: Optional[List[str]] = None) -> int:
    args = setup_parser().parse_args(argv)

    try:
        settings = build_settings(args)
    except ValueError as e:
        console.print(f"[red]Invalid settings: {e}[/red]")
        return 2

    if args.save_settings:
        save_import_settings(settings, args.config)
        console.print(f"[blue]Settings saved to {args.config}[/blue]")

    confirmer = AcceptDefaults() if args.yes else ConsoleConfirmer(console=console, colors=settings.console_colors)
    action = ACTIONS[args.action]

    exit_code = 0
    for psd in args.psd:
        try:
            outcome = action(psd, settings, confirmer, show_progress=not args.no_progress, console=console)
        except (FileNotFoundError, RuntimeError) as e:
            # ConfirmationInProgressError is a RuntimeError as well
            kind = "Busy" if isinstance(e, ConfirmationInProgressError) else "Error"
            console.print(f"[red]{kind}:[/red] {e}")
            exit_code = 1
            continue
        _report(outcome, args.show_tree, settings)

    return exit_code


if __name__ == "__main__":
    raise SystemExit(_main())
