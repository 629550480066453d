"""Frame sources for the recorder."""
from .capture import ImageFolderSource, ScreenSource

__all__ = ["ImageFolderSource", "ScreenSource"]
