"""Service helpers for mesh geometry, interchange and remote processing."""

from .merge import SubGeometry, merge_sub_geometries, sequential_faces, walk_leaves
from .mesh_ops import (
    MeshOperationError,
    load_geometry,
    mesh_color,
    polydata_from_geometry,
    save_geometry,
    sub_geometries_from_dataset,
)
from .ply_codec import PlyFormatError, decode_ply, encode_ply
from .registry import GeometryRegistry, GeometrySnapshot
from .remote import MeshServiceClient, TransportError
from .transforms import (
    IDENTITY_COLUMN_MAJOR,
    parse_transformations,
    to_column_major,
    to_row_major,
)

__all__ = [
    "GeometryRegistry",
    "GeometrySnapshot",
    "IDENTITY_COLUMN_MAJOR",
    "MeshOperationError",
    "MeshServiceClient",
    "PlyFormatError",
    "SubGeometry",
    "TransportError",
    "decode_ply",
    "encode_ply",
    "load_geometry",
    "merge_sub_geometries",
    "mesh_color",
    "parse_transformations",
    "polydata_from_geometry",
    "save_geometry",
    "sequential_faces",
    "sub_geometries_from_dataset",
    "to_column_major",
    "to_row_major",
    "walk_leaves",
]
