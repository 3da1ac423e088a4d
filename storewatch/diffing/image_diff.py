"""Pixel diffing between a stored baseline and a fresh homepage capture."""

from __future__ import annotations

import io
from typing import Optional

import structlog
from PIL import Image, ImageChops, UnidentifiedImageError

from storewatch.models import DiffResult, Severity
from storewatch.storage.artifacts import ArtifactStore


logger = structlog.get_logger(__name__)

DEFAULT_DIFF_THRESHOLD_PERCENT = 5.0
DEFAULT_PIXEL_THRESHOLD = 0.1
DEFAULT_HIGH_SEVERITY_PERCENT = 20.0

# Semi-transparent red laid over changed pixels in the review overlay.
OVERLAY_TINT = (255, 0, 0)
OVERLAY_ALPHA = 128


def classify_severity(percentage: float, high_above: float = DEFAULT_HIGH_SEVERITY_PERCENT) -> Severity:
    """Severity of a visual alert for a given diff percentage."""
    return Severity.HIGH if percentage > high_above else Severity.LOW


def _decode(data: bytes) -> Image.Image:
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        return img.convert("RGB")


def diff_mask(baseline: Image.Image, current: Image.Image, pixel_threshold: float) -> Image.Image:
    """Return an L-mode mask that is 255 where the images differ beyond the tolerance."""
    r, g, b = ImageChops.difference(baseline, current).split()
    strongest = ImageChops.lighter(ImageChops.lighter(r, g), b)
    cutoff = int(round(pixel_threshold * 255))
    return strongest.point(lambda v: 255 if v > cutoff else 0)


def render_overlay(current: Image.Image, mask: Image.Image) -> bytes:
    """Tint changed regions of the current capture and encode the result as PNG."""
    tint = Image.new("RGBA", current.size, OVERLAY_TINT + (0,))
    tint.putalpha(mask.point(lambda v: OVERLAY_ALPHA if v else 0))
    ghost = Image.alpha_composite(current.convert("RGBA"), tint)
    out = io.BytesIO()
    ghost.save(out, format="PNG", optimize=True)
    return out.getvalue()


class ImageDiffEngine:
    """Compare two screenshots and decide whether the change is significant."""

    def __init__(
        self,
        diff_threshold_percent: float = DEFAULT_DIFF_THRESHOLD_PERCENT,
        pixel_threshold: float = DEFAULT_PIXEL_THRESHOLD,
        artifacts: Optional[ArtifactStore] = None,
    ):
        self.diff_threshold_percent = diff_threshold_percent
        self.pixel_threshold = pixel_threshold
        self.artifacts = artifacts

    def compare(
        self,
        baseline_bytes: Optional[bytes],
        current_bytes: Optional[bytes],
        *,
        overlay_key: Optional[str] = None,
    ) -> DiffResult:
        """Diff ``current_bytes`` against ``baseline_bytes``.

        Missing or undecodable input is reported as a maximal change instead of
        raising, so an unknown comparison can never hide an alert. Differing
        dimensions are reported separately and are never significant.

        Args:
            baseline_bytes: Encoded baseline image
            current_bytes: Encoded fresh capture
            overlay_key: Artifact key for the highlighted overlay; no overlay when None

        Returns:
            DiffResult describing the change
        """
        if not baseline_bytes or not current_bytes:
            return DiffResult(significant=True, percentage=100.0)

        try:
            baseline = _decode(baseline_bytes)
            current = _decode(current_bytes)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.error("Image decode failed", error=str(e))
            return DiffResult(significant=True, percentage=100.0, error=f"decode failed: {e}")

        if baseline.size != current.size:
            logger.info("Image dimensions changed", baseline=baseline.size, current=current.size)
            return DiffResult(significant=False, percentage=0.0, dimension_changed=True)

        width, height = baseline.size
        total = width * height
        if total == 0:
            return DiffResult(significant=False, percentage=0.0, differing_pixels=0)

        mask = diff_mask(baseline, current, self.pixel_threshold)
        differing = mask.histogram()[255]
        raw_percentage = differing / total * 100
        significant = raw_percentage > self.diff_threshold_percent

        overlay_url = None
        if significant and overlay_key and self.artifacts is not None:
            overlay_url = self._store_overlay(current, mask, overlay_key)

        return DiffResult(
            significant=significant,
            percentage=round(raw_percentage, 2),
            overlay_url=overlay_url,
            differing_pixels=differing,
        )

    def _store_overlay(self, current: Image.Image, mask: Image.Image, key: str) -> Optional[str]:
        try:
            url = self.artifacts.put(key, render_overlay(current, mask))
        except Exception as e:
            # The alert still goes out without its overlay.
            logger.error("Diff overlay upload failed", key=key, error=str(e))
            return None
        logger.info("Diff overlay uploaded", key=key)
        return url
