import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from PIL import Image

from module.layer_tree import Justification, Layer, Rect, build_layer_tree
from utils.psd_reader import PsdRasterizer, decode_document, flatten_layers


class FakePsdLayer:
    """Minimal stand-in for a psd-tools layer."""

    def __init__(self, name, bbox=(0, 0, 10, 10), children=None, visible=True, kind="pixel", **attrs):
        self.name = name
        self.bbox = bbox
        self.opacity = 255
        self.kind = kind
        self._children = children
        self._visible = visible
        for key, value in attrs.items():
            setattr(self, key, value)

    def is_group(self):
        return self._children is not None

    def is_visible(self):
        return self._visible

    def __iter__(self):
        return iter(self._children or [])


def type_layer(name, justification=2):
    engine = {
        "StyleRun": {
            "RunArray": [
                {"StyleSheet": {"StyleSheetData": {"Font": 1, "FontSize": 20.0, "FillColor": {"Values": [1.0, 0.5, 0.25, 0.0]}}}}
            ]
        },
        "ParagraphRun": {"RunArray": [{"ParagraphSheet": {"Properties": {"Justification": justification}}}]},
    }
    return FakePsdLayer(
        name,
        bbox=(10, 20, 110, 60),
        kind="type",
        text="Line 1\rLine 2",
        engine_dict=engine,
        resource_dict={"FontSet": [{"Name": "'AdobeInvisFont'"}, {"Name": "'Arial-BoldMT'"}]},
        transform=(1.0, 0.0, 0.0, 1.5, 0.0, 0.0),
    )


class TestFlattenLayers(unittest.TestCase):

    def test_decoder_order_round_trips_through_tree_builder(self):
        # psd-tools iterates bottom to top
        psd = [
            FakePsdLayer("background"),
            FakePsdLayer("G", children=[FakePsdLayer("b"), FakePsdLayer("a")]),
            FakePsdLayer("top"),
        ]
        flat = flatten_layers(psd)
        self.assertEqual([layer.name for layer in flat], ["background", "</Layer group>", "b", "a", "G", "top"])

        forest = build_layer_tree(flat, console=MagicMock())
        self.assertEqual([layer.name for layer in forest], ["top", "G", "background"])
        self.assertEqual([layer.name for layer in forest[1].children], ["a", "b"])

    def test_invisible_layers_can_be_skipped(self):
        psd = [FakePsdLayer("hidden", visible=False), FakePsdLayer("shown")]
        self.assertEqual([layer.name for layer in flatten_layers(psd, include_invisible=False)], ["shown"])
        self.assertEqual(len(flatten_layers(psd)), 2)

    def test_rect_from_bbox(self):
        layer = flatten_layers([FakePsdLayer("a", bbox=(5, 6, 25, 16))])[0]
        self.assertEqual(layer.rect, Rect(5, 6, 20, 10))
        self.assertFalse(layer.is_text_layer)

    def test_text_fields(self):
        layer = flatten_layers([type_layer("Title")])[0]
        self.assertTrue(layer.is_text_layer)
        self.assertEqual(layer.text, "Line 1\nLine 2")
        self.assertEqual(layer.font_name, "Arial-BoldMT")
        self.assertAlmostEqual(layer.font_size, 30.0)
        self.assertEqual(layer.justification, Justification.CENTER)
        self.assertEqual((layer.fill_color.r, layer.fill_color.g, layer.fill_color.b), (0.5, 0.25, 0.0))
        self.assertEqual(layer.fill_color.a, 1.0)

    def test_justification_codes(self):
        for code, expected in ((0, Justification.LEFT), (1, Justification.RIGHT), (2, Justification.CENTER)):
            with self.subTest(code=code):
                self.assertEqual(flatten_layers([type_layer("T", code)])[0].justification, expected)


class TestRasterizer(unittest.TestCase):

    def test_prefers_layer_pixels(self):
        source = MagicMock()
        source.topil.return_value = Image.new("RGBA", (3, 3))
        image = PsdRasterizer().decode(Layer(name="a", rect=Rect(0, 0, 3, 3), source=source))
        self.assertEqual(image.size, (3, 3))
        source.composite.assert_not_called()

    def test_falls_back_to_composite_then_blank(self):
        source = MagicMock()
        source.topil.return_value = None
        source.composite.return_value = Image.new("RGBA", (2, 2))
        self.assertEqual(PsdRasterizer().decode(Layer(name="a", source=source)).size, (2, 2))

        source.composite.return_value = None
        blank = PsdRasterizer().decode(Layer(name="a", rect=Rect(0, 0, 6, 4), source=source))
        self.assertEqual(blank.size, (6, 4))
        self.assertEqual(blank.getextrema()[3], (0, 0))


class TestDecodeDocument(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.psd_path = os.path.join(self.tmp.name, "Menu.psd")
        open(self.psd_path, "wb").close()

    def tearDown(self):
        self.tmp.cleanup()

    @patch("utils.psd_reader.PSDImage")
    def test_document(self, mock_psd_image):
        psd = MagicMock()
        psd.width, psd.height = 800, 600
        psd.__iter__.return_value = iter([FakePsdLayer("a")])
        mock_psd_image.open.return_value = psd

        document = decode_document(self.psd_path, console=MagicMock())
        self.assertEqual((document.width, document.height), (800, 600))
        self.assertEqual(document.name, "Menu")
        self.assertEqual([layer.name for layer in document.layers], ["a"])

    @patch("utils.psd_reader.PSDImage")
    def test_invalid_canvas(self, mock_psd_image):
        psd = MagicMock()
        psd.width, psd.height = 0, 0
        mock_psd_image.open.return_value = psd
        with self.assertRaises(RuntimeError):
            decode_document(self.psd_path, console=MagicMock())

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            decode_document(os.path.join(self.tmp.name, "missing.psd"), console=MagicMock())


if __name__ == '__main__':
    unittest.main()
