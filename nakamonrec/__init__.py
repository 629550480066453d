"""Battle recorder: screen capture, template matching and battle history."""

__version__ = "0.3.0"
