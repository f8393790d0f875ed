import json
import os
import tempfile
import unittest
from unittest.mock import MagicMock

from PIL import Image

import module.importer as importer_module
from config.config import ImportTargetConfig
from module.conflict_resolver import normalize_path
from module.importer import PsdImporter
from module.layer_tree import Document, Layer, Rect
from module.scene import SceneGraph


def start(name):
    return Layer(name=name, is_group_boundary_marker=True)


def end():
    return Layer(name="</Layer group>", is_group_boundary_marker=True)


def leaf(name, x, y, w=100, h=100):
    return Layer(name=name, rect=Rect(x, y, w, h))


class ScenarioTestCase(unittest.TestCase):

    def setUp(self):
        importer_module._release_confirmation()
        self.tmp = tempfile.TemporaryDirectory()
        self.project = normalize_path(self.tmp.name)
        self.psd = os.path.join(self.project, "Assets", "Scene.psd")
        os.makedirs(os.path.dirname(self.psd))
        open(self.psd, "wb").close()
        self.output = normalize_path(os.path.join(self.project, "Assets", "Scene"))

        self.layers = []
        self.rasterizer = MagicMock()
        self.rasterizer.decode.return_value = Image.new("RGBA", (8, 8))
        self.console = MagicMock()

    def tearDown(self):
        importer_module._release_confirmation()
        self.tmp.cleanup()

    def decode(self, path):
        # fresh layer objects on every decode; the tree builder links children into them
        return Document(
            width=800,
            height=600,
            layers=[
                Layer(name=layer.name, rect=layer.rect, is_group_boundary_marker=layer.is_group_boundary_marker)
                for layer in self.layers
            ],
        )

    def importer(self, composited=False, layout=True, scene=None):
        return PsdImporter(
            ImportTargetConfig(project_root=self.project, use_composited_ui=composited),
            layout=layout,
            scene=scene or SceneGraph(),
            decoder=self.decode,
            rasterizer=self.rasterizer,
            show_progress=False,
            console=self.console,
        )

    def path(self, *parts):
        return normalize_path(os.path.join(self.output, *parts))


class TestAnimationScenario(ScenarioTestCase):

    def test_hero_animation(self):
        # frame_01 is the front-most child
        self.layers = [
            end(),
            leaf("frame_03", 20, 0),
            leaf("frame_02", 10, 0),
            leaf("frame_01", 0, 0),
            start("Hero|Animation|FPS=12"),
        ]
        outcome = self.importer().run(self.psd)

        frames = [self.path("Hero", f"frame_0{i}.png") for i in (1, 2, 3)]
        self.assertEqual(outcome.written, frames)

        with open(self.path("Hero", "Hero.anim"), encoding="utf-8") as f:
            clip = json.load(f)
        times = [frame["time"] for frame in clip["frames"]]
        for actual, expected in zip(times, (0.0, 1 / 12.0, 2 / 12.0)):
            self.assertAlmostEqual(actual, expected)
        self.assertTrue(clip["loop"])

        hero = outcome.root_node.child("Hero")
        self.assertTrue(hero.behavior("animator").properties["loop"])
        # positioned from frame_01: center (50, 50) on an 800x600 canvas
        self.assertAlmostEqual(hero.position[0], -3.5)
        self.assertAlmostEqual(hero.position[1], 2.5)


class TestButtonScenario(ScenarioTestCase):

    def test_play_button(self):
        self.layers = [
            end(),
            leaf("Down|Pressed", 0, 0, 200, 80),
            leaf("Up|Normal", 300, 200, 200, 80),
            start("Play|Button"),
        ]
        outcome = self.importer(composited=True).run(self.psd)

        self.assertEqual(sorted(outcome.written), [self.path("Down.png"), self.path("Up.png")])
        play = outcome.root_node.child("Play")
        self.assertEqual(play.properties["image"], self.path("Up.png"))
        self.assertAlmostEqual(play.position[0], 0.0)
        self.assertAlmostEqual(play.position[1], 0.6)
        self.assertEqual(play.size, (2.0, 0.8))

        button = play.behavior("button")
        self.assertEqual(button.properties["states"], {"pressed": self.path("Down.png")})
        self.assertEqual(len(outcome.root_node.children), 1)


class TestReimportScenarios(ScenarioTestCase):

    def setUp(self):
        super().setUp()
        self.layers = [
            end(),
            leaf("old", 0, 0),
            start("Extras"),
            leaf("keep", 100, 100),
        ]
        self.importer(layout=False).run(self.psd)

    def test_unchanged_reimport(self):
        pending = self.importer(layout=False).begin(self.psd)
        analysis = pending.analysis

        self.assertEqual(analysis.stale, [])
        self.assertEqual(analysis.same_name, [self.path("Extras", "old.png"), self.path("keep.png")])
        self.assertEqual(pending.default_selection.paths_to_update, set(analysis.same_name))

        outcome = pending.resume(pending.default_selection)
        self.assertEqual(outcome.deleted, [])
        self.assertEqual(sorted(outcome.written), analysis.same_name)

    def test_reimport_after_removing_a_layer(self):
        old = self.path("Extras", "old.png")
        with open(old + ".meta", "w", encoding="utf-8") as f:
            f.write("guid: 1\n")
        with open(self.path("Extras") + ".meta", "w", encoding="utf-8") as f:
            f.write("guid: 2\n")

        self.layers = [leaf("keep", 100, 100)]
        pending = self.importer(layout=False).begin(self.psd)
        self.assertEqual(pending.analysis.stale, [old])

        outcome = pending.resume(pending.default_selection)
        self.assertEqual(outcome.deleted, [old])
        self.assertFalse(os.path.exists(old))
        self.assertFalse(os.path.exists(old + ".meta"))
        self.assertFalse(os.path.exists(self.path("Extras")))
        self.assertFalse(os.path.exists(self.path("Extras") + ".meta"))
        self.assertTrue(os.path.exists(self.path("keep.png")))


if __name__ == '__main__':
    unittest.main()
