from .main_window import MeshLinkWindow

__all__ = ["MeshLinkWindow"]
