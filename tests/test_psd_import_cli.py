import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

import psd_import
from config.config import OutputDirectoryMode, load_import_settings
from module.importer import AcceptDefaults, ConfirmationInProgressError, ImportOutcome
from utils.console_util import ConsoleConfirmer


class TestParser(unittest.TestCase):

    def test_defaults(self):
        args = psd_import.setup_parser().parse_args(["Menu.psd"])
        self.assertEqual(args.psd, ["Menu.psd"])
        self.assertEqual(args.action, "textures")
        self.assertIsNone(args.composited_ui)
        self.assertEqual(psd_import._overrides(args), {})

    def test_overrides(self):
        args = psd_import.setup_parser().parse_args(
            ["a.psd", "--composited_ui", "--output_mode", "UnderRoot", "--pixels_per_unit", "64", "--no-preserve_aspect"]
        )
        overrides = psd_import._overrides(args)
        self.assertEqual(overrides["use_composited_ui"], True)
        self.assertEqual(overrides["output_directory_mode"], OutputDirectoryMode.UNDER_ROOT)
        self.assertEqual(overrides["pixels_per_unit"], 64.0)
        self.assertEqual(overrides["preserve_aspect_ratio"], False)

    def test_target_help_describes_standalone_fallback(self):
        parser = psd_import.setup_parser()
        action = next(action for action in parser._actions if action.dest == "target")
        self.assertIn("host scene", action.help)
        self.assertIn("standalone canvas", action.help)

        args = parser.parse_args(["a.psd", "--target", "Canvas/Panel"])
        self.assertEqual(psd_import._overrides(args)["target_container_path"], "Canvas/Panel")


class TestMain(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self.tmp.name, "config.toml")

    def tearDown(self):
        self.tmp.cleanup()

    def argv(self, *extra):
        return ["Menu.psd", "--config", self.config_path] + list(extra)

    @patch.dict(psd_import.ACTIONS, {"textures": MagicMock()})
    def test_runs_action_with_console_confirmer(self):
        action = psd_import.ACTIONS["textures"]
        action.return_value = ImportOutcome(status="completed", source_path="Menu.psd")

        self.assertEqual(psd_import._main(self.argv("--no_progress")), 0)

        args, kwargs = action.call_args
        self.assertEqual(args[0], "Menu.psd")
        self.assertIsInstance(args[2], ConsoleConfirmer)
        self.assertFalse(kwargs["show_progress"])

    @patch.dict(psd_import.ACTIONS, {"prefab": MagicMock()})
    def test_yes_accepts_defaults(self):
        action = psd_import.ACTIONS["prefab"]
        action.return_value = ImportOutcome(status="cancelled", source_path="Menu.psd")
        self.assertEqual(psd_import._main(self.argv("--action", "prefab", "--yes")), 0)
        self.assertIsInstance(action.call_args[0][2], AcceptDefaults)

    @patch.dict(psd_import.ACTIONS, {"textures": MagicMock()})
    def test_failures_set_exit_code(self):
        psd_import.ACTIONS["textures"].side_effect = [
            FileNotFoundError("PSD not found"),
            ConfirmationInProgressError("busy"),
        ]
        self.assertEqual(psd_import._main(["a.psd", "b.psd", "--config", self.config_path]), 1)

    def test_invalid_pixels_per_unit(self):
        self.assertEqual(psd_import._main(self.argv("--pixels_per_unit", "0")), 2)

    @patch.dict(psd_import.ACTIONS, {"textures": MagicMock()})
    def test_save_settings(self):
        psd_import.ACTIONS["textures"].return_value = ImportOutcome(status="completed", source_path="Menu.psd")
        psd_import._main(self.argv("--maximum_depth", "4", "--save_settings"))
        self.assertEqual(load_import_settings(self.config_path).maximum_depth, 4.0)


if __name__ == '__main__':
    unittest.main()
