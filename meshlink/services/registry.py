"""Versioned store of the current geometry of every loaded mesh."""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str, int], None]


def _frozen(array, dtype) -> np.ndarray:
    result = np.array(array, dtype=dtype).reshape(-1)
    result.setflags(write=False)
    return result


def validate_geometry(vertices: np.ndarray, faces: np.ndarray) -> None:
    """Check flat buffers for triangle-mesh invariants."""
    if vertices.size % 3:
        raise ValueError(f"Vertex buffer length {vertices.size} is not a multiple of 3")
    if faces.size % 3:
        raise ValueError(f"Face buffer length {faces.size} is not a multiple of 3")
    vertex_count = vertices.size // 3
    if faces.size and int(faces.max()) >= vertex_count:
        raise ValueError(
            f"Face index {int(faces.max())} out of range for {vertex_count} vertices"
        )


@dataclass(frozen=True, eq=False)
class GeometrySnapshot:
    """Read-only vertex/face pair for one mesh at one point in time."""

    vertices: np.ndarray
    faces: np.ndarray

    @classmethod
    def create(cls, vertices, faces) -> "GeometrySnapshot":
        snapshot = cls(_frozen(vertices, np.float32), _frozen(faces, np.uint32))
        validate_geometry(snapshot.vertices, snapshot.faces)
        return snapshot

    @property
    def vertex_count(self) -> int:
        return self.vertices.size // 3

    @property
    def face_count(self) -> int:
        return self.faces.size // 3


@dataclass
class _Entry:
    snapshot: GeometrySnapshot
    version: int = 0


class GeometryRegistry:
    """Single source of truth for mesh geometry after load.

    Each entry carries a version that starts at 0 on registration and grows by
    one per applied update. Updates for unknown ids are ignored, since a mesh
    may be removed while a service response for it is still in flight.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._entries: Dict[str, _Entry] = {}
        self._listeners: List[ChangeCallback] = []

    def register(self, mesh_id: str, vertices, faces) -> GeometrySnapshot:
        snapshot = GeometrySnapshot.create(vertices, faces)
        with self._lock:
            replaced = mesh_id in self._entries
            self._entries[mesh_id] = _Entry(snapshot)
        logger.info(
            "%s mesh %s (%d vertices, %d faces)",
            "Re-registered" if replaced else "Registered",
            mesh_id,
            snapshot.vertex_count,
            snapshot.face_count,
        )
        self._notify(mesh_id, 0)
        return snapshot

    def get(self, mesh_id: str) -> Optional[GeometrySnapshot]:
        with self._lock:
            entry = self._entries.get(mesh_id)
            return entry.snapshot if entry is not None else None

    def get_all(self) -> Dict[str, GeometrySnapshot]:
        with self._lock:
            return {mesh_id: entry.snapshot for mesh_id, entry in self._entries.items()}

    def get_versioned(self, mesh_id: str) -> Tuple[Optional[GeometrySnapshot], int]:
        """Snapshot and version read together, so the pair is never torn."""
        with self._lock:
            entry = self._entries.get(mesh_id)
            if entry is None:
                return None, 0
            return entry.snapshot, entry.version

    def versioned_items(self) -> Dict[str, Tuple[GeometrySnapshot, int]]:
        with self._lock:
            return {
                mesh_id: (entry.snapshot, entry.version)
                for mesh_id, entry in self._entries.items()
            }

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def version(self, mesh_id: str) -> int:
        with self._lock:
            entry = self._entries.get(mesh_id)
            return entry.version if entry is not None else 0

    def update_vertices(self, mesh_id: str, vertices) -> bool:
        """Replace the vertex buffer and keep the faces. Returns False for unknown ids."""
        with self._lock:
            entry = self._entries.get(mesh_id)
            if entry is None:
                logger.info("Ignoring vertex update for unknown mesh %s", mesh_id)
                return False
            snapshot = GeometrySnapshot.create(vertices, entry.snapshot.faces)
            entry.snapshot = snapshot
            entry.version += 1
            version = entry.version
        logger.info("Updated vertices of %s (version %d)", mesh_id, version)
        self._notify(mesh_id, version)
        return True

    def update_full(self, mesh_id: str, vertices, faces) -> bool:
        """Replace both buffers; counts may differ. Returns False for unknown ids."""
        with self._lock:
            entry = self._entries.get(mesh_id)
            if entry is None:
                logger.info("Ignoring geometry update for unknown mesh %s", mesh_id)
                return False
            snapshot = GeometrySnapshot.create(vertices, faces)
            previous = entry.snapshot
            entry.snapshot = snapshot
            entry.version += 1
            version = entry.version
        logger.info(
            "Replaced geometry of %s: %d->%d vertices, %d->%d faces (version %d)",
            mesh_id,
            previous.vertex_count,
            snapshot.vertex_count,
            previous.face_count,
            snapshot.face_count,
            version,
        )
        self._notify(mesh_id, version)
        return True

    def evict(self, mesh_id: str) -> bool:
        with self._lock:
            removed = self._entries.pop(mesh_id, None) is not None
        if removed:
            logger.info("Evicted mesh %s", mesh_id)
            self._notify(mesh_id, 0)
        return removed

    def evict_all(self) -> None:
        with self._lock:
            evicted = list(self._entries)
            self._entries.clear()
        logger.info("Evicted all meshes (%d)", len(evicted))
        for mesh_id in evicted:
            self._notify(mesh_id, 0)

    def subscribe(self, callback: ChangeCallback) -> None:
        """Call ``callback(mesh_id, version)`` after every change, on the writer's thread."""
        with self._lock:
            if callback not in self._listeners:
                self._listeners.append(callback)

    def unsubscribe(self, callback: ChangeCallback) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _notify(self, mesh_id: str, version: int) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            callback(mesh_id, version)

    def __contains__(self, mesh_id) -> bool:
        with self._lock:
            return mesh_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
