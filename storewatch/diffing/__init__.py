"""Screenshot comparison."""

from .image_diff import ImageDiffEngine, classify_severity

__all__ = ["ImageDiffEngine", "classify_severity"]
