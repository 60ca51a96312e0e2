"""HTTP clients for the registration, deformation and cleaning services.

Every request carries meshes encoded with :mod:`meshlink.services.ply_codec`.
"""

import json
import logging
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import requests

from meshlink.config import ServiceSettings
from meshlink.services.ply_codec import decode_ply, encode_ply
from meshlink.services.registry import GeometrySnapshot
from meshlink.services.transforms import parse_transformations

logger = logging.getLogger(__name__)

PLY_MIME = "application/octet-stream"


class TransportError(RuntimeError):
    """Raised when a mesh service cannot be reached or answers with an error."""

    def __init__(self, operation: str, status: Optional[int], body: str):
        self.operation = operation
        self.status = status
        self.body = body
        if status is None:
            message = f"{operation} failed: {body}"
        else:
            message = f"{operation} failed: {status} - {body}"
        super().__init__(message)


def _ply_part(mesh_id: str, snapshot: GeometrySnapshot):
    return (f"{mesh_id}.ply", encode_ply(snapshot.vertices, snapshot.faces), PLY_MIME)


class MeshServiceClient:
    def __init__(self, settings: Optional[ServiceSettings] = None, session=None):
        self.settings = settings or ServiceSettings()
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    def _post(self, operation: str, url: str, data, files) -> requests.Response:
        logger.info("%s request to %s", operation, url)
        try:
            response = self._session.post(
                url, data=data, files=files, timeout=self.settings.timeout
            )
        except requests.RequestException as exc:
            logger.error("%s request to %s failed: %s", operation, url, exc)
            raise TransportError(operation, None, str(exc)) from exc

        if not response.ok:
            body = response.text
            logger.error("%s failed with status %s: %s", operation, response.status_code, body)
            raise TransportError(operation, response.status_code, body)
        return response

    def register_meshes(
        self,
        snapshots: Mapping[str, GeometrySnapshot],
        voxel_size: Optional[float] = None,
    ) -> Dict[str, List[float]]:
        """Align the given meshes; returns column-major 4x4 matrices per mesh id."""
        if voxel_size is None:
            voxel_size = self.settings.voxel_size
        mesh_ids = list(snapshots)
        files = [("meshes", _ply_part(mesh_id, snapshots[mesh_id])) for mesh_id in mesh_ids]
        data = {"mesh_ids": json.dumps(mesh_ids), "voxel_size": str(voxel_size)}

        response = self._post("Registration", self.settings.registration_url, data, files)
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError("Registration", response.status_code, "response is not JSON") from exc
        transformations = parse_transformations(payload)
        logger.info("Registration returned %d transformations", len(transformations))
        return transformations

    def deform_mesh(
        self,
        mesh_id: str,
        snapshot: GeometrySnapshot,
        deformation_ratio: Optional[float] = None,
        number_of_modes: Optional[int] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Perturb vertex positions; the face buffer normally comes back unchanged."""
        if deformation_ratio is None:
            deformation_ratio = self.settings.deformation_ratio
        if number_of_modes is None:
            number_of_modes = self.settings.number_of_modes
        files = {"mesh": _ply_part(mesh_id, snapshot)}
        data = {
            "deformation_ratio": str(float(deformation_ratio)),
            "number_of_modes": str(int(number_of_modes)),
        }
        response = self._post("Deformation", self.settings.deformation_url, data, files)
        vertices, faces = decode_ply(response.content)
        logger.info("Deformation of %s returned %d vertices", mesh_id, vertices.size // 3)
        return vertices, faces

    def clean_mesh(self, mesh_id: str, snapshot: GeometrySnapshot) -> Tuple[np.ndarray, np.ndarray]:
        """Repair a mesh; vertex and face counts may change."""
        files = {"mesh": _ply_part(mesh_id, snapshot)}
        response = self._post("Cleaning", self.settings.cleaning_url, None, files)
        vertices, faces = decode_ply(response.content)
        logger.info(
            "Cleaning of %s returned %d vertices, %d faces",
            mesh_id,
            vertices.size // 3,
            faces.size // 3,
        )
        return vertices, faces
