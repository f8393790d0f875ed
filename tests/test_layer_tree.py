import unittest
from unittest.mock import MagicMock

from module.layer_tree import (
    Layer,
    Rect,
    build_layer_tree,
    count_layers,
    is_end_group,
    is_start_group,
    iter_leaves,
    max_depth,
)


def leaf(name, x=0, y=0, w=10, h=10):
    return Layer(name=name, rect=Rect(x, y, w, h))


def start(name):
    return Layer(name=name, is_group_boundary_marker=True)


def end(name="</Layer group>"):
    return Layer(name=name, is_group_boundary_marker=True)


def emit(layout):
    """Decoder-native stream for a front-to-back layout.

    A layout item is a leaf name or a (group name, [children]) tuple.
    """
    stream = []
    for item in reversed(layout):
        if isinstance(item, tuple):
            name, children = item
            stream.append(end())
            stream.extend(emit(children))
            stream.append(start(name))
        else:
            stream.append(leaf(item))
    return stream


def shape(forest):
    return [(layer.name, shape(layer.children)) if layer.children else layer.name for layer in forest]


class TestMarkers(unittest.TestCase):

    def test_end_marker_names(self):
        self.assertTrue(is_end_group(end("</Layer group>")))
        self.assertTrue(is_end_group(end("</Layer set>")))
        self.assertFalse(is_end_group(start("Group")))

    def test_legacy_copy_marker_needs_zero_height(self):
        self.assertTrue(is_end_group(Layer(name=" copy", rect=Rect(0, 0, 5, 0))))
        self.assertFalse(is_end_group(Layer(name=" copy", rect=Rect(0, 0, 5, 5))))

    def test_start_marker(self):
        self.assertTrue(is_start_group(start("Group")))
        self.assertFalse(is_start_group(end()))
        self.assertFalse(is_start_group(leaf("art")))


class TestBuildLayerTree(unittest.TestCase):

    def setUp(self):
        self.console = MagicMock()

    def test_none_yields_empty_forest(self):
        self.assertEqual(build_layer_tree(None, console=self.console), [])

    def test_single_group_is_front_to_back(self):
        stream = [leaf("bg"), end(), leaf("b"), leaf("a"), start("G"), leaf("top")]
        forest = build_layer_tree(stream, console=self.console)
        self.assertEqual(shape(forest), ["top", ("G", ["a", "b"]), "bg"])

    def test_nested_groups(self):
        stream = [end(), end(), leaf("c"), start("Inner"), leaf("a"), start("Outer")]
        forest = build_layer_tree(stream, console=self.console)
        self.assertEqual(shape(forest), [("Outer", ["a", ("Inner", ["c"])])])
        self.assertEqual(count_layers(forest), 4)
        self.assertEqual(max_depth(forest), 3)
        self.assertEqual([layer.name for layer in iter_leaves(forest)], ["a", "c"])

    def test_input_is_not_mutated(self):
        stream = [end(), leaf("a"), start("G")]
        names = [layer.name for layer in stream]
        build_layer_tree(stream, console=self.console)
        self.assertEqual([layer.name for layer in stream], names)

    def test_zero_rect_content_is_dropped(self):
        stream = [leaf("empty", w=0, h=0), leaf("flat", h=0), leaf("art")]
        forest = build_layer_tree(stream, console=self.console)
        self.assertEqual(shape(forest), ["art"])

    def test_legacy_copy_marker_closes_group(self):
        stream = [Layer(name=" copy", rect=Rect(0, 0, 5, 0)), leaf("a"), start("G")]
        forest = build_layer_tree(stream, console=self.console)
        self.assertEqual(shape(forest), [("G", ["a"])])

    def test_unmatched_end_marker_is_reported(self):
        forest = build_layer_tree([leaf("a"), end()], console=self.console)
        self.assertEqual(shape(forest), ["a"])
        messages = [args[0] for args, _ in self.console.print.call_args_list]
        self.assertTrue(any("without a matching start" in m for m in messages))

    def test_dangling_group_recovered_when_forest_is_empty(self):
        forest = build_layer_tree([leaf("a"), start("G")], console=self.console)
        self.assertEqual(shape(forest), [("G", ["a"])])
        self.console.print.assert_called_once()

    def test_dangling_group_dropped_when_forest_has_roots(self):
        stream = [leaf("b"), leaf("a"), start("G"), leaf("top")]
        forest = build_layer_tree(stream, console=self.console)
        self.assertEqual(shape(forest), ["top"])
        messages = [args[0] for args, _ in self.console.print.call_args_list]
        self.assertTrue(any("dropped" in m for m in messages))

    def test_round_trip_preserves_structure(self):
        layouts = [
            [],
            ["a"],
            ["a", "b", "c"],
            [("G", ["a", "b"])],
            [("G", [("H", [("I", ["deep"])]), "x"]), "y"],
            ["top", ("A", ["a1"]), ("B", [("C", ["c1", "c2"]), "b1"]), "bottom"],
        ]
        for layout in layouts:
            with self.subTest(layout=layout):
                forest = build_layer_tree(emit(layout), console=self.console)
                self.assertEqual(shape(forest), layout)
                self.console.print.assert_not_called()


if __name__ == '__main__':
    unittest.main()
