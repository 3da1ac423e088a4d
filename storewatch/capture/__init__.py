"""Homepage rendering via a browser backend."""

from .renderer import CaptureRequest, PlaywrightRenderService, RenderService, build_capture_request

__all__ = ["CaptureRequest", "PlaywrightRenderService", "RenderService", "build_capture_request"]
