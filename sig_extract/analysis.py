"""Whole-page heuristics: default sensitivity and candidate regions."""
import logging
import uuid
from typing import List

import numpy as np

from .backend import ImageBackend
from .image_ops import BLUR_KSIZE, ImageProcessingError, adaptive_constant, mean_brightness, odd_block_size
from .state import Region

logger = logging.getLogger(__name__)

CANNY_LOW = 50
CANNY_HIGH = 150

RECOMMEND_MIN = 5
RECOMMEND_MAX = 35

DETECT_BLOCK_DIVISOR = 30
DETECT_BLOCK_MIN = 11
DETECT_CLOSE_KERNEL = 5
DETECT_CLOSE_ITERATIONS = 2
DETECT_MIN_AREA_RATIO = 0.001
DETECT_MAX_AREA_RATIO = 0.90
DETECT_PAD = 20

_HIGH_NOISE = 0.15
_LOW_NOISE = 0.05


def _lookup_recommendation(noise_density: float, brightness: float) -> int:
    if noise_density > _HIGH_NOISE:
        # busy background, keep the threshold loose
        choices = (12, 10, 8)
    elif noise_density < _LOW_NOISE:
        choices = (28, 25, 20)
    else:
        choices = (22, 18, 15)

    if brightness > 150:
        return choices[0]
    if brightness < 100:
        return choices[2]
    return choices[1]


def recommend_sensitivity(backend: ImageBackend, image: np.ndarray) -> int:
    """
    Suggest a starting sensitivity for a freshly loaded photo.

    Noisy, textured pages get a low value (keep faint strokes, accept some
    background); clean, bright pages get a high one.

    Args:
        backend: Image backend
        image: Full source image (gray, RGB or RGBA)

    Returns:
        Sensitivity in [5, 35]
    """
    if image.size == 0:
        raise ImageProcessingError("Cannot analyse an empty image")

    with backend.scope("recommend") as scope:
        gray = scope.track(backend.grayscale(image))
        blurred = scope.track(backend.gaussian_blur(gray, BLUR_KSIZE))
        brightness = mean_brightness(backend, blurred)
        edges = scope.track(backend.canny(blurred, CANNY_LOW, CANNY_HIGH))
        noise_density = backend.count_nonzero(edges) / float(blurred.size)

    recommended = _lookup_recommendation(noise_density, brightness)
    recommended = max(RECOMMEND_MIN, min(recommended, RECOMMEND_MAX))
    logger.info(
        f"Recommended sensitivity {recommended} "
        f"(brightness={brightness:.1f}, edge density={noise_density:.4f})"
    )
    return recommended


def detect_regions(backend: ImageBackend, image: np.ndarray, sensitivity: int) -> List[Region]:
    """
    Propose candidate signature regions on a full page.

    The page is binarized with a coarse local threshold, broken strokes are
    bridged with a closing, and each outer contour whose bounding box is
    neither a speck nor the whole page becomes a padded region.

    Args:
        backend: Image backend
        image: Full source image (gray, RGB or RGBA)
        sensitivity: Sensitivity value

    Returns:
        Regions in reading order (top to bottom, then left to right)
    """
    if image.size == 0:
        raise ImageProcessingError("Cannot analyse an empty image")

    img_h, img_w = image.shape[:2]
    image_area = float(img_w * img_h)
    min_area = image_area * DETECT_MIN_AREA_RATIO
    max_area = image_area * DETECT_MAX_AREA_RATIO

    with backend.scope("detect") as scope:
        gray = scope.track(backend.grayscale(image))
        blurred = scope.track(backend.gaussian_blur(gray, BLUR_KSIZE))
        brightness = mean_brightness(backend, blurred)
        c = adaptive_constant(sensitivity, brightness)
        block_size = odd_block_size(min(img_w, img_h), DETECT_BLOCK_DIVISOR, DETECT_BLOCK_MIN)
        binary = scope.track(backend.adaptive_threshold_inv(blurred, block_size, c))
        closed = scope.track(backend.close(
            binary, backend.kernel('ones', DETECT_CLOSE_KERNEL), iterations=DETECT_CLOSE_ITERATIONS
        ))
        contours = backend.external_contours(closed)

    regions = []
    for _, (x, y, w, h) in contours:
        area = w * h
        if not (min_area < area < max_area):
            continue
        left = max(0, x - DETECT_PAD)
        top = max(0, y - DETECT_PAD)
        width = min(img_w - left, w + DETECT_PAD * 2)
        height = min(img_h - top, h + DETECT_PAD * 2)
        regions.append(Region(id=uuid.uuid4().hex, x=left, y=top, width=width, height=height))

    regions.sort(key=lambda r: (r.y, r.x))
    logger.info(f"Detected {len(regions)} candidate regions out of {len(contours)} contours")
    return regions
