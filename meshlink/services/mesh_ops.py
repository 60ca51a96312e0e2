import logging
from typing import List, Tuple

import numpy as np
import pyvista as pv

from meshlink.services.merge import SubGeometry, merge_sub_geometries, walk_leaves

logger = logging.getLogger(__name__)


class MeshOperationError(RuntimeError):
    """Raised when a mesh-related operation fails."""


def _block_children(node):
    if isinstance(node, pv.MultiBlock):
        return [node[i] for i in range(node.n_blocks)]
    return None


def _sub_geometry(dataset: pv.DataSet) -> SubGeometry:
    surface = dataset if isinstance(dataset, pv.PolyData) else dataset.extract_surface()
    if surface.n_cells:
        surface = surface.triangulate()
    vertices = np.asarray(surface.points, dtype=np.float32).reshape(-1)
    cells = np.asarray(surface.faces)
    if cells.size == 0:
        return SubGeometry(vertices)
    faces = cells.reshape(-1, 4)[:, 1:].astype(np.uint32).reshape(-1)
    return SubGeometry(vertices, faces)


def sub_geometries_from_dataset(dataset) -> List[SubGeometry]:
    """Collect every non-empty drawable of a (possibly nested) dataset."""
    parts = []
    for leaf in walk_leaves(dataset, _block_children):
        if leaf.n_points == 0:
            continue
        parts.append(_sub_geometry(leaf))
    return parts


def load_geometry(path: str) -> Tuple[np.ndarray, np.ndarray]:
    try:
        dataset = pv.read(path)
        parts = sub_geometries_from_dataset(dataset)
    except Exception as exc:  # pragma: no cover - PyVista provides detail
        logger.exception("Failed to load mesh from %s", path)
        raise MeshOperationError(str(exc)) from exc

    merged = merge_sub_geometries(parts)
    if merged is None:
        message = f"No surface geometry found in {path}"
        logger.error(message)
        raise MeshOperationError(message)

    vertices, faces = merged
    logger.info(
        "Loaded mesh from %s (%d parts, %d points, %d faces)",
        path,
        len(parts),
        vertices.size // 3,
        faces.size // 3,
    )
    return vertices, faces


def polydata_from_geometry(vertices, faces) -> pv.PolyData:
    points = np.asarray(vertices, dtype=np.float32).reshape(-1, 3)
    triangles = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    if triangles.size == 0:
        return pv.PolyData(points)
    cells = np.hstack([np.full((len(triangles), 1), 3, dtype=np.int64), triangles])
    return pv.PolyData(points, cells.reshape(-1))


def save_geometry(vertices, faces, path: str) -> None:
    try:
        polydata_from_geometry(vertices, faces).save(path)
    except Exception as exc:  # pragma: no cover - PyVista provides detail
        logger.exception("Failed to save mesh to %s", path)
        raise MeshOperationError(str(exc)) from exc

    logger.info("Saved mesh to %s", path)


def mesh_color(index: int) -> Tuple[float, float, float]:
    """Stable display color for the n-th loaded mesh."""
    from matplotlib import colormaps

    cmap = colormaps["tab10"]
    rgba = cmap(index % cmap.N)
    return tuple(float(c) for c in rgba[:3])
