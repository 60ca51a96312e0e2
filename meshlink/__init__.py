"""MeshLink: view meshes and round-trip them through remote mesh services."""

__version__ = "0.1.0"
