"""Convert alignment matrices between the service and renderer conventions.

Services return 4x4 matrices as row-major nested rows; viewports keep a flat
16-element column-major list.
"""

import logging
from typing import Dict, List, Mapping, Sequence

import numpy as np

logger = logging.getLogger(__name__)

IDENTITY_COLUMN_MAJOR = (
    1.0, 0.0, 0.0, 0.0,
    0.0, 1.0, 0.0, 0.0,
    0.0, 0.0, 1.0, 0.0,
    0.0, 0.0, 0.0, 1.0,
)


def to_column_major(matrix: Sequence[Sequence[float]]) -> List[float]:
    """``out[4 * c + r] = matrix[r][c]``."""
    rows = np.asarray(matrix, dtype=np.float64)
    if rows.shape != (4, 4):
        raise ValueError(f"Transformation must be 4x4, got shape {rows.shape}")
    return rows.T.reshape(-1).tolist()


def to_row_major(flat: Sequence[float]) -> np.ndarray:
    """Inverse of :func:`to_column_major`, as a 4x4 array for VTK actors."""
    values = np.asarray(flat, dtype=np.float64)
    if values.shape != (16,):
        raise ValueError(f"Column-major transform needs 16 values, got {values.size}")
    return values.reshape(4, 4).T.copy()


def parse_transformations(payload: Mapping) -> Dict[str, List[float]]:
    """Extract per-mesh column-major matrices from a registration response.

    Each entry may be the nested matrix itself or an object carrying it under
    ``"matrix"`` alongside rotation/translation details.
    """
    entries = payload.get("transformations") or {}
    result = {}
    for mesh_id, data in entries.items():
        matrix = data.get("matrix") if isinstance(data, Mapping) else data
        if matrix is None:
            raise ValueError(f"Registration response has no matrix for mesh {mesh_id}")
        result[str(mesh_id)] = to_column_major(matrix)
    logger.debug("Parsed %d transformations", len(result))
    return result
