"""Typed OpenCV facade used by every pipeline stage."""
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

Rect = Tuple[int, int, int, int]

_MORPH_SHAPES = {
    'rect': cv2.MORPH_RECT,
    'ellipse': cv2.MORPH_ELLIPSE,
}


class BufferScope:
    """
    Holds the intermediate buffers of one processing call.

    Every array passed through ``track`` is referenced here until the scope
    closes. Closing drops all references, whether the call returned normally
    or raised.
    """

    def __init__(self, backend: 'ImageBackend', label: str = "scope"):
        self._backend = backend
        self.label = label
        self._buffers: List[np.ndarray] = []

    def track(self, buffer: np.ndarray) -> np.ndarray:
        """Register an intermediate buffer and return it unchanged."""
        self._buffers.append(buffer)
        self._backend._live_buffers += 1
        return buffer

    @property
    def size(self) -> int:
        return len(self._buffers)

    def release(self) -> None:
        """Drop every tracked buffer."""
        released = len(self._buffers)
        nbytes = sum(b.nbytes for b in self._buffers)
        self._buffers.clear()
        self._backend._live_buffers -= released
        if released:
            logger.debug(f"{self.label}: released {released} buffers ({nbytes / 1024:.1f} KiB)")


class ImageBackend:
    """
    The raster operations the extraction pipeline needs, backed by OpenCV.

    Instances are created explicitly with ``ImageBackend.create()`` and passed
    to the stages; nothing here is module-global.
    """

    def __init__(self):
        self._live_buffers = 0

    @classmethod
    def create(cls) -> 'ImageBackend':
        """Initialize the OpenCV backend."""
        backend = cls()
        logger.debug(f"Initialized OpenCV backend {cv2.__version__}")
        return backend

    @property
    def live_buffers(self) -> int:
        """Number of buffers currently held by open scopes."""
        return self._live_buffers

    @contextmanager
    def scope(self, label: str = "scope") -> Iterator[BufferScope]:
        """Open a buffer scope that is released on exit, including on error."""
        buffers = BufferScope(self, label)
        try:
            yield buffers
        finally:
            buffers.release()

    # --- color ---------------------------------------------------------

    def grayscale(self, image: np.ndarray) -> np.ndarray:
        """Convert a gray, RGB or RGBA image to single-channel gray."""
        if image.ndim == 2:
            return image.copy()
        channels = image.shape[2]
        if channels == 4:
            return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
        if channels == 3:
            return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        if channels == 1:
            return image[:, :, 0].copy()
        raise ValueError(f"Unsupported channel count: {channels}")

    def to_rgba(self, image: np.ndarray) -> np.ndarray:
        """Convert a gray, RGB or RGBA image to RGBA."""
        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
        channels = image.shape[2]
        if channels == 4:
            return image.copy()
        if channels == 3:
            return cv2.cvtColor(image, cv2.COLOR_RGB2RGBA)
        if channels == 1:
            return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2RGBA)
        raise ValueError(f"Unsupported channel count: {channels}")

    # --- filtering -----------------------------------------------------

    def gaussian_blur(self, image: np.ndarray, ksize: int) -> np.ndarray:
        return cv2.GaussianBlur(image, (ksize, ksize), 0)

    def mean(self, gray: np.ndarray) -> float:
        """Mean intensity of a single-channel image."""
        return float(cv2.mean(gray)[0])

    def canny(self, gray: np.ndarray, low: float, high: float) -> np.ndarray:
        return cv2.Canny(gray, low, high)

    def count_nonzero(self, image: np.ndarray) -> int:
        return int(cv2.countNonZero(image))

    def adaptive_threshold_inv(self, gray: np.ndarray, block_size: int, c: float) -> np.ndarray:
        """Gaussian-weighted local threshold; dark pixels become 255."""
        return cv2.adaptiveThreshold(
            gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY_INV, block_size, c
        )

    # --- morphology ----------------------------------------------------

    def kernel(self, shape: str, size: int) -> np.ndarray:
        if shape == 'ones':
            return np.ones((size, size), np.uint8)
        return cv2.getStructuringElement(_MORPH_SHAPES[shape], (size, size))

    def open(self, mask: np.ndarray, kernel: np.ndarray, iterations: int = 1) -> np.ndarray:
        return cv2.morphologyEx(mask, cv2.MORPH_OPEN, kernel, iterations=iterations)

    def close(self, mask: np.ndarray, kernel: np.ndarray, iterations: int = 1) -> np.ndarray:
        return cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kernel, iterations=iterations)

    def dilate(self, mask: np.ndarray, kernel: np.ndarray, iterations: int = 1) -> np.ndarray:
        return cv2.dilate(mask, kernel, iterations=iterations)

    def erode(self, mask: np.ndarray, kernel: np.ndarray, iterations: int = 1) -> np.ndarray:
        return cv2.erode(mask, kernel, iterations=iterations)

    # --- contours ------------------------------------------------------

    def external_contours(self, mask: np.ndarray) -> List[Tuple[float, Rect]]:
        """
        Find the outer contours of a binary mask.

        Returns:
            List of (contour_area, (x, y, w, h)) pairs in OpenCV's order
        """
        contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        results = []
        for contour in contours:
            x, y, w, h = cv2.boundingRect(contour)
            results.append((float(cv2.contourArea(contour)), (int(x), int(y), int(w), int(h))))
        return results

    # --- geometry ------------------------------------------------------

    def resize(self, image: np.ndarray, size: Tuple[int, int], upscale: bool) -> np.ndarray:
        """Resize to (width, height); cubic when enlarging, area otherwise."""
        interpolation = cv2.INTER_CUBIC if upscale else cv2.INTER_AREA
        return cv2.resize(image, size, interpolation=interpolation)

    def rotated_crop(
        self,
        image: np.ndarray,
        center: Tuple[float, float],
        size: Tuple[int, int],
        angle: float,
        fill: Optional[Tuple[int, ...]] = None
    ) -> np.ndarray:
        """
        Sample a rotated rectangle out of an image.

        The rectangle is centered on ``center`` and turned clockwise (screen
        coordinates) by ``angle`` degrees. The result is the upright
        ``size``-sized content of that rectangle. Pixels that fall outside
        the source are filled with ``fill``.

        Args:
            image: Source image
            center: (cx, cy) in source pixels
            size: (width, height) of the output crop
            angle: Clockwise rotation of the rectangle in degrees
            fill: Border color, defaults to opaque white

        Returns:
            Upright crop of shape (height, width[, channels])
        """
        width, height = size
        cx, cy = center
        matrix = cv2.getRotationMatrix2D((cx, cy), angle, 1.0)
        matrix[0, 2] += width / 2.0 - cx
        matrix[1, 2] += height / 2.0 - cy
        if fill is None:
            channels = 1 if image.ndim == 2 else image.shape[2]
            fill = (255,) * channels
        return cv2.warpAffine(
            image, matrix, (width, height),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=fill
        )
