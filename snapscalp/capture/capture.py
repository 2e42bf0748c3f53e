import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

from mss import mss
import numpy as np
import cv2

from ..errors import CaptureError, NoRegionConfigured

logger = logging.getLogger(__name__)


def _round_half_up(value):
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class Region:
    """Screen area in UI-logical pixels."""
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        if not all(math.isfinite(v) for v in (self.x, self.y, self.width, self.height)):
            raise ValueError(f"Region coordinates must be finite, got {self}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Region must have positive size, got {self.width}x{self.height}")

    @classmethod
    def parse(cls, text):
        """Build a Region from an ``x,y,width,height`` string."""
        parts = [p.strip() for p in text.split(",")]
        if len(parts) != 4:
            raise ValueError(f"Expected x,y,width,height but got '{text}'")
        x, y, width, height = (float(p) for p in parts)
        return cls(x, y, width, height)

    def scaled(self, scale_factor):
        """Return the (left, top, width, height) crop box in physical pixels."""
        return (
            _round_half_up(self.x * scale_factor),
            _round_half_up(self.y * scale_factor),
            _round_half_up(self.width * scale_factor),
            _round_half_up(self.height * scale_factor),
        )


@dataclass
class CaptureResult:
    success: bool
    image_bytes: Optional[bytes] = None
    error: Optional[str] = None
    crop_area: Optional[Tuple[int, int, int, int]] = None


class Capture:
    def __init__(self, scale_factor=None, monitor_index=1):
        # scale_factor=None means detect it from the grabbed raster on every capture
        self.scale_factor = scale_factor
        self.monitor_index = monitor_index

    def take_screenshot(self):
        """Grab the whole monitor. Returns (BGR image, monitor geometry)."""
        with mss() as sct:
            monitor = sct.monitors[self.monitor_index]
            img = sct.grab(monitor)
            img_np = np.array(img)
            img_bgr = cv2.cvtColor(img_np, cv2.COLOR_BGRA2BGR)
            return img_bgr, monitor

    def resolve_scale_factor(self, img, monitor):
        if self.scale_factor:
            return self.scale_factor
        # mss reports logical monitor size but returns physical pixels on high-density displays
        logical_width = monitor.get("width") or img.shape[1]
        return img.shape[1] / logical_width

    def crop(self, img, region, scale_factor):
        left, top, width, height = region.scaled(scale_factor)
        img_h, img_w = img.shape[:2]
        if left < 0 or top < 0 or width <= 0 or height <= 0 \
                or left + width > img_w or top + height > img_h:
            raise CaptureError(
                f"Crop area {(left, top, width, height)} is outside the {img_w}x{img_h} screen"
            )
        return img[top:top + height, left:left + width], (left, top, width, height)

    def encode_png(self, img):
        ok, buf = cv2.imencode(".png", img)
        if not ok:
            raise CaptureError("PNG encoding failed")
        return buf.tobytes()

    def capture(self, region):
        """Capture exactly ``region`` as PNG bytes.

        Raises NoRegionConfigured when no region is given. Every other failure
        is reported through the returned CaptureResult.
        """
        if region is None:
            raise NoRegionConfigured()
        try:
            img, monitor = self.take_screenshot()
            scale_factor = self.resolve_scale_factor(img, monitor)
            cropped, crop_area = self.crop(img, region, scale_factor)
            image_bytes = self.encode_png(cropped)
        except Exception as e:
            logger.error(f"Screenshot capture error: {e}")
            return CaptureResult(success=False, error=str(e))
        logger.debug(f"Captured {crop_area} ({len(image_bytes)} bytes, scale {scale_factor})")
        return CaptureResult(success=True, image_bytes=image_bytes, crop_area=crop_area)

    def select_area(self, window_name="Select chart area"):
        """Let the user drag a rectangle over a full screen grab.

        Returns a Region in logical pixels, or None when the selection is cancelled.
        """
        img, monitor = self.take_screenshot()
        scale_factor = self.resolve_scale_factor(img, monitor)
        try:
            x, y, w, h = cv2.selectROI(window_name, img, showCrosshair=True, fromCenter=False)
        finally:
            cv2.destroyWindow(window_name)
        if w <= 0 or h <= 0:
            logger.info("Area selection cancelled")
            return None
        region = Region(x / scale_factor, y / scale_factor, w / scale_factor, h / scale_factor)
        logger.info(f"Area selected: {region}")
        return region
