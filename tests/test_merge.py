import numpy as np

from meshlink.logging_config import configure_logging
from meshlink.services import SubGeometry, merge_sub_geometries, sequential_faces, walk_leaves

configure_logging()


def _part(vertex_count, faces=None):
    vertices = np.arange(vertex_count * 3, dtype=np.float32)
    if faces is not None:
        faces = np.asarray(faces, dtype=np.uint32)
    return SubGeometry(vertices, faces)


def test_merge_offsets_indices_by_vertex_count():
    a = _part(4, [0, 1, 2])
    b = _part(3, [0, 1, 2])

    vertices, faces = merge_sub_geometries([a, b])

    assert vertices.size == 7 * 3
    np.testing.assert_array_equal(vertices[:12], a.vertices)
    np.testing.assert_array_equal(vertices[12:], b.vertices)
    assert faces.tolist() == [0, 1, 2, 4, 5, 6]


def test_merge_three_parts_accumulates_offsets():
    parts = [_part(3, [0, 1, 2]), _part(5, [4, 3, 2]), _part(3, [2, 1, 0])]

    _, faces = merge_sub_geometries(parts)

    assert faces.tolist() == [0, 1, 2, 7, 6, 5, 10, 9, 8]


def test_merge_of_nothing_is_none():
    assert merge_sub_geometries([]) is None


def test_merge_single_part_is_returned_unmodified():
    part = _part(3, [2, 1, 0])

    vertices, faces = merge_sub_geometries([part])

    assert vertices is part.vertices
    assert faces is part.faces


def test_non_indexed_parts_get_sequential_faces():
    indexed = _part(3, [0, 1, 2])
    soup = _part(6)

    vertices, faces = merge_sub_geometries([indexed, soup])

    assert vertices.size == 27
    assert faces.tolist() == [0, 1, 2, 3, 4, 5, 6, 7, 8]


def test_single_non_indexed_part():
    vertices, faces = merge_sub_geometries([_part(3)])

    assert faces.tolist() == [0, 1, 2]
    assert faces.dtype == np.uint32


def test_sequential_faces():
    assert sequential_faces(0).size == 0
    assert sequential_faces(6).tolist() == [0, 1, 2, 3, 4, 5]


def test_walk_leaves_visits_nested_nodes_in_order():
    tree = ["a", ["b", ["c", None, ["d"]]], [], "e"]

    def children_of(node):
        return node if isinstance(node, list) else None

    assert list(walk_leaves(tree, children_of)) == ["a", "b", "c", "d", "e"]


def test_walk_leaves_handles_deep_nesting():
    depth = 5000
    tree = "leaf"
    for _ in range(depth):
        tree = [tree]

    leaves = list(walk_leaves(tree, lambda node: node if isinstance(node, list) else None))

    assert leaves == ["leaf"]
