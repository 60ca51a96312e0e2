"""Binary little-endian PLY encoding used as the wire format for mesh services.

Only triangle meshes are written. Reading tolerates extra per-vertex
properties (colors, normals) and trailing per-face scalars, which are
skipped using the widths declared in the header.
"""

import logging
from typing import List, NamedTuple, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

HEADER_END = b"end_header\n"

# name -> (numpy dtype, byte width)
_PLY_TYPES = {
    "char": ("<i1", 1),
    "int8": ("<i1", 1),
    "uchar": ("<u1", 1),
    "uint8": ("<u1", 1),
    "short": ("<i2", 2),
    "int16": ("<i2", 2),
    "ushort": ("<u2", 2),
    "uint16": ("<u2", 2),
    "int": ("<i4", 4),
    "int32": ("<i4", 4),
    "uint": ("<u4", 4),
    "uint32": ("<u4", 4),
    "float": ("<f4", 4),
    "float32": ("<f4", 4),
    "double": ("<f8", 8),
    "float64": ("<f8", 8),
}
_DEFAULT_WIDTH = 4


class PlyFormatError(ValueError):
    """Raised when a payload is not a readable binary triangle PLY."""


class PlyProperty(NamedTuple):
    name: str
    type_name: str
    # Only set for list properties.
    count_type: Optional[str] = None

    @property
    def is_list(self) -> bool:
        return self.count_type is not None


class PlyElement(NamedTuple):
    name: str
    count: int
    properties: List[PlyProperty]


def type_width(type_name: str) -> int:
    """Byte width of a PLY scalar type; unknown names count as 4 bytes."""
    entry = _PLY_TYPES.get(type_name)
    if entry is None:
        return _DEFAULT_WIDTH
    return entry[1]


def _field_dtype(type_name: str, fallback: str) -> str:
    entry = _PLY_TYPES.get(type_name)
    if entry is None:
        logger.debug("Unknown PLY type %r; reading as %s", type_name, fallback)
        return fallback
    return entry[0]


def _padding_dtype(type_name: str) -> str:
    entry = _PLY_TYPES.get(type_name)
    if entry is None:
        return f"V{_DEFAULT_WIDTH}"
    return entry[0]


def encode_ply(vertices, faces) -> bytes:
    """Encode a flat vertex buffer and a flat triangle index buffer."""
    coords = np.ascontiguousarray(vertices, dtype="<f4").reshape(-1)
    indices = np.ascontiguousarray(faces, dtype="<u4").reshape(-1, 3)
    vertex_count = coords.size // 3
    face_count = indices.shape[0]

    header = "\n".join(
        [
            "ply",
            "format binary_little_endian 1.0",
            f"element vertex {vertex_count}",
            "property float x",
            "property float y",
            "property float z",
            f"element face {face_count}",
            "property list uchar uint vertex_indices",
            "end_header\n",
        ]
    ).encode("ascii")

    records = np.empty(face_count, dtype=[("count", "u1"), ("indices", "<u4", (3,))])
    records["count"] = 3
    records["indices"] = indices

    logger.debug("Encoded PLY with %d vertices and %d faces", vertex_count, face_count)
    return header + coords.tobytes() + records.tobytes()


def find_header_end(data: bytes) -> int:
    """Return the offset of the first payload byte after ``end_header``."""
    marker = bytes(data).find(HEADER_END)
    if marker < 0:
        raise PlyFormatError("Invalid PLY: could not find end_header")
    return marker + len(HEADER_END)


def parse_header(header: str) -> List[PlyElement]:
    lines = header.splitlines()
    if not lines or lines[0].strip() != "ply":
        raise PlyFormatError("Invalid PLY: missing 'ply' magic line")

    elements: List[PlyElement] = []
    for line in lines[1:]:
        parts = line.split()
        if not parts:
            continue
        keyword = parts[0]
        if keyword == "format":
            if len(parts) < 2 or parts[1] != "binary_little_endian":
                raise PlyFormatError(f"Unsupported PLY format: {line.strip()}")
        elif keyword == "element":
            if len(parts) != 3:
                raise PlyFormatError(f"Malformed element line: {line.strip()}")
            try:
                count = int(parts[2])
            except ValueError as exc:
                raise PlyFormatError(f"Malformed element count: {line.strip()}") from exc
            if count < 0:
                raise PlyFormatError(f"Negative element count: {line.strip()}")
            elements.append(PlyElement(parts[1], count, []))
        elif keyword == "property":
            if not elements:
                raise PlyFormatError("Property declared before any element")
            if len(parts) == 5 and parts[1] == "list":
                elements[-1].properties.append(PlyProperty(parts[4], parts[3], parts[2]))
            elif len(parts) == 3:
                elements[-1].properties.append(PlyProperty(parts[2], parts[1]))
            else:
                raise PlyFormatError(f"Malformed property line: {line.strip()}")
        # comment, obj_info and end_header carry nothing we need
    return elements


def _read_records(data: bytes, dtype: np.dtype, count: int, offset: int, what: str) -> np.ndarray:
    available = max(len(data) - offset, 0) // dtype.itemsize
    if available < count:
        raise PlyFormatError(
            f"Invalid PLY: payload truncated in {what} ({available} of {count} records)"
        )
    if not count:
        return np.empty(0, dtype=dtype)
    return np.frombuffer(data, dtype=dtype, count=count, offset=offset)


def _read_vertices(data: bytes, element: PlyElement, offset: int) -> Tuple[np.ndarray, int]:
    if len(element.properties) < 3:
        raise PlyFormatError("Invalid PLY: vertex element needs at least x, y, z")
    if any(prop.is_list for prop in element.properties):
        raise PlyFormatError("Invalid PLY: list properties on vertices are not supported")

    fields = []
    for position, prop in enumerate(element.properties):
        if position < 3:
            fields.append((f"p{position}", _field_dtype(prop.type_name, "<f4")))
        else:
            fields.append((f"p{position}", _padding_dtype(prop.type_name)))
    dtype = np.dtype(fields)

    records = _read_records(data, dtype, element.count, offset, "vertices")
    coords = np.empty((element.count, 3), dtype=np.float32)
    for axis in range(3):
        coords[:, axis] = records[f"p{axis}"]
    return coords.reshape(-1), offset + dtype.itemsize * element.count


def _read_faces(data: bytes, element: PlyElement, offset: int) -> Tuple[np.ndarray, int]:
    list_positions = [i for i, prop in enumerate(element.properties) if prop.is_list]
    if len(list_positions) != 1:
        raise PlyFormatError("Invalid PLY: face element needs exactly one vertex index list")
    list_at = list_positions[0]
    list_prop = element.properties[list_at]

    fields = []
    for position, prop in enumerate(element.properties):
        if position == list_at:
            fields.append(("count", _field_dtype(prop.count_type, "<u4")))
            index_dtype = _field_dtype(prop.type_name, "<u4")
            fields.append(("indices", index_dtype, (3,)))
        else:
            fields.append((f"p{position}", _padding_dtype(prop.type_name)))
    dtype = np.dtype(fields)

    # Records are fixed-size only while every face is a triangle, so the
    # first non-triangle count is still read at its true offset.
    available = min(element.count, max(len(data) - offset, 0) // dtype.itemsize)
    if available:
        records = np.frombuffer(data, dtype=dtype, count=available, offset=offset)
    else:
        records = np.empty(0, dtype=dtype)
    bad = np.flatnonzero(records["count"] != 3)
    if bad.size:
        arity = int(records["count"][bad[0]])
        raise PlyFormatError(
            f"Invalid PLY: expected triangular faces, got {arity} vertices "
            f"in face {int(bad[0])} ({list_prop.name})"
        )
    if available < element.count:
        raise PlyFormatError(
            f"Invalid PLY: payload truncated in faces ({available} of {element.count} records)"
        )

    indices = records["indices"].astype(np.uint32).reshape(-1)
    return indices, offset + dtype.itemsize * element.count


def _skip_element(element: PlyElement, offset: int) -> int:
    if any(prop.is_list for prop in element.properties):
        raise PlyFormatError(
            f"Invalid PLY: cannot skip element '{element.name}' with list properties"
        )
    width = sum(type_width(prop.type_name) for prop in element.properties)
    return offset + width * element.count


def decode_ply(data: bytes) -> Tuple[np.ndarray, np.ndarray]:
    """Decode a binary PLY payload into ``(vertices, faces)`` flat arrays."""
    data = bytes(data)
    payload_start = find_header_end(data)
    header = data[:payload_start].decode("ascii", errors="replace")
    elements = parse_header(header)

    vertices: Optional[np.ndarray] = None
    faces: Optional[np.ndarray] = None
    offset = payload_start
    for element in elements:
        if vertices is not None and faces is not None:
            break
        if element.name == "vertex":
            vertices, offset = _read_vertices(data, element, offset)
        elif element.name == "face":
            faces, offset = _read_faces(data, element, offset)
        else:
            offset = _skip_element(element, offset)

    if vertices is None:
        vertices = np.empty(0, dtype=np.float32)
    if faces is None:
        faces = np.empty(0, dtype=np.uint32)

    logger.debug(
        "Decoded PLY with %d vertices and %d faces", vertices.size // 3, faces.size // 3
    )
    return vertices, faces
