"""Per-store checks: visual pipeline, availability probe, failure tracking."""

from .failures import FailureTracker
from .pipeline import VisualCheckPipeline
from .prober import AvailabilityProber

__all__ = ["AvailabilityProber", "FailureTracker", "VisualCheckPipeline"]
