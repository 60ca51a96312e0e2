"""Combine loader-produced mesh parts into one indexed triangle mesh."""

import logging
from typing import Callable, Iterable, Iterator, NamedTuple, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class SubGeometry(NamedTuple):
    """One drawable part: a flat vertex buffer and an optional index buffer."""

    vertices: np.ndarray
    faces: Optional[np.ndarray] = None

    @property
    def vertex_count(self) -> int:
        return len(self.vertices) // 3


def sequential_faces(vertex_count: int) -> np.ndarray:
    """Index buffer for non-indexed geometry: every 3 vertices form a triangle."""
    return np.arange(vertex_count, dtype=np.uint32)


def _normalized(part: SubGeometry) -> SubGeometry:
    if part.faces is not None:
        return part
    return SubGeometry(part.vertices, sequential_faces(part.vertex_count))


def merge_sub_geometries(
    parts: Sequence[SubGeometry],
) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Concatenate parts in order, offsetting indices by preceding vertex counts.

    Returns ``None`` when there is nothing to merge. A single part is handed
    back unchanged.
    """
    if not parts:
        return None
    if len(parts) == 1:
        only = _normalized(parts[0])
        return only.vertices, only.faces

    normalized = [_normalized(part) for part in parts]
    total_floats = sum(len(part.vertices) for part in normalized)
    total_indices = sum(len(part.faces) for part in normalized)

    vertices = np.empty(total_floats, dtype=np.float32)
    faces = np.empty(total_indices, dtype=np.uint32)

    float_cursor = 0
    index_cursor = 0
    vertex_offset = 0
    for part in normalized:
        n_floats = len(part.vertices)
        n_indices = len(part.faces)
        vertices[float_cursor:float_cursor + n_floats] = part.vertices
        np.add(
            np.asarray(part.faces, dtype=np.uint32),
            np.uint32(vertex_offset),
            out=faces[index_cursor:index_cursor + n_indices],
        )
        float_cursor += n_floats
        index_cursor += n_indices
        vertex_offset += part.vertex_count

    logger.debug(
        "Merged %d parts into %d vertices / %d faces",
        len(parts),
        vertex_offset,
        total_indices // 3,
    )
    return vertices, faces


def walk_leaves(root, children_of: Callable[[object], Optional[Iterable]]) -> Iterator:
    """Depth-first walk yielding leaves in document order.

    ``children_of`` returns the children of a branch node, or ``None`` for a
    leaf. The walk uses an explicit stack, so nesting depth is unbounded.
    """
    stack = [iter([root])]
    while stack:
        try:
            node = next(stack[-1])
        except StopIteration:
            stack.pop()
            continue
        if node is None:
            continue
        children = children_of(node)
        if children is None:
            yield node
        else:
            stack.append(iter(children))
