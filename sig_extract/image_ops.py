"""Per-region raster stages of the signature extraction pipeline."""
import logging
import math
from typing import Optional, Tuple

import numpy as np

from .backend import ImageBackend, Rect
from .state import BACKGROUND_WHITE, OutputSpec, Region

logger = logging.getLogger(__name__)

BLUR_KSIZE = 5
ALPHA_BLUR_KSIZE = 3

BINARIZE_BLOCK_DIVISOR = 8
BINARIZE_BLOCK_MIN = 31

OPEN_KERNEL_SIZE = 3
WEIGHT_KERNEL_SIZE = 3
THICKEN_BELOW = 12
THIN_ABOVE = 28

MIN_CONTOUR_AREA = 20
CONTOUR_AREA_RATIO = 0.01
CONTENT_PAD = 4

OUTPUT_PAD_RATIO = 0.05
OUTPUT_PAD_MIN = 10


class ImageProcessingError(Exception):
    """Raised when image processing operations fail."""
    pass


class InvalidRegionError(ImageProcessingError):
    """Raised when a region has no pixels inside its source image."""
    pass


def mean_brightness(backend: ImageBackend, gray: np.ndarray) -> float:
    """
    Mean luminance of a grayscale image.

    Args:
        backend: Image backend
        gray: Non-empty single-channel image

    Returns:
        Brightness in [0, 255]
    """
    return backend.mean(gray)


def adaptive_constant(sensitivity: int, brightness: float) -> int:
    """
    Threshold constant corrected for overall exposure.

    Bright photos get a stricter constant, dark photos a looser one.
    """
    if brightness > 160:
        return sensitivity + 2
    if brightness < 90:
        return sensitivity - 2
    return sensitivity


def odd_block_size(extent: int, divisor: int, minimum: int) -> int:
    """Block size ``extent // divisor`` rounded up to odd, floored at ``minimum``."""
    block = extent // divisor
    if block % 2 == 0:
        block += 1
    return max(block, minimum)


def binarize(
    backend: ImageBackend,
    gray: np.ndarray,
    sensitivity: int,
    brightness: Optional[float] = None
) -> np.ndarray:
    """
    Convert a grayscale crop into an inverted ink mask (ink = 255).

    Uses a Gaussian-weighted local threshold so uneven lighting across the
    crop does not matter; the constant follows ``adaptive_constant``.

    Args:
        backend: Image backend
        gray: Grayscale crop
        sensitivity: Sensitivity value
        brightness: Precomputed brightness of the blurred crop, if known

    Returns:
        Binary mask with values {0, 255}
    """
    if gray.size == 0:
        raise ImageProcessingError("Cannot binarize an empty image")

    with backend.scope("binarize") as scope:
        blurred = scope.track(backend.gaussian_blur(gray, BLUR_KSIZE))
        if brightness is None:
            brightness = mean_brightness(backend, blurred)
        c = adaptive_constant(sensitivity, brightness)
        height, width = gray.shape[:2]
        block_size = odd_block_size(min(width, height), BINARIZE_BLOCK_DIVISOR, BINARIZE_BLOCK_MIN)
        logger.debug(f"Binarize: brightness={brightness:.1f}, C={c}, block={block_size}")
        return backend.adaptive_threshold_inv(blurred, block_size, c)


def refine_mask(backend: ImageBackend, mask: np.ndarray, sensitivity: int) -> np.ndarray:
    """
    Remove speckle noise and adjust stroke weight.

    A 3x3 opening drops isolated pixels. Below ``THICKEN_BELOW`` strokes are
    dilated once, above ``THIN_ABOVE`` they are eroded once.

    Args:
        backend: Image backend
        mask: Binary ink mask
        sensitivity: Sensitivity value

    Returns:
        Refined binary mask
    """
    with backend.scope("refine") as scope:
        opened = backend.open(mask, backend.kernel('rect', OPEN_KERNEL_SIZE))
        weight_kernel = backend.kernel('ellipse', WEIGHT_KERNEL_SIZE)
        if sensitivity < THICKEN_BELOW:
            return backend.dilate(scope.track(opened), weight_kernel)
        if sensitivity > THIN_ABOVE:
            return backend.erode(scope.track(opened), weight_kernel)
        return opened


def content_bounds(backend: ImageBackend, mask: np.ndarray) -> Optional[Rect]:
    """
    Union bounding box of the contours that belong to the ink body.

    A contour counts when its area exceeds ``max(20, 1% of the largest
    contour area)``; smaller specks are ignored.

    Returns:
        (x, y, w, h) or None when no contour qualifies
    """
    contours = backend.external_contours(mask)
    if not contours:
        return None

    max_area = max(area for area, _ in contours)
    area_threshold = max(MIN_CONTOUR_AREA, CONTOUR_AREA_RATIO * max_area)

    x0 = y0 = math.inf
    x1 = y1 = -math.inf
    kept = 0
    for area, (x, y, w, h) in contours:
        if area <= area_threshold:
            continue
        x0 = min(x0, x)
        y0 = min(y0, y)
        x1 = max(x1, x + w)
        y1 = max(y1, y + h)
        kept += 1

    logger.debug(f"Content bounds: kept {kept}/{len(contours)} contours (threshold {area_threshold:.1f})")
    if not kept:
        return None
    return (int(x0), int(y0), int(x1 - x0), int(y1 - y0))


def content_crop_rect(backend: ImageBackend, mask: np.ndarray, pad: int = CONTENT_PAD) -> Rect:
    """
    Crop rectangle around the ink body, padded to keep anti-aliased edges.

    Falls back to the whole mask when nothing qualifies as content.

    Args:
        backend: Image backend
        mask: Refined binary mask
        pad: Pixels added on each side, clamped to the mask

    Returns:
        (x, y, w, h) within the mask
    """
    height, width = mask.shape[:2]
    bounds = content_bounds(backend, mask)
    if bounds is None:
        logger.debug("No content contour qualified, using full mask")
        return (0, 0, width, height)

    x, y, w, h = bounds
    left = max(0, x - pad)
    top = max(0, y - pad)
    right = min(width, x + w + pad)
    bottom = min(height, y + h + pad)
    return (left, top, right - left, bottom - top)


def output_padding(spec: OutputSpec) -> float:
    """Canvas padding: 5% of the shorter side, at least 10 px."""
    return max(OUTPUT_PAD_MIN, OUTPUT_PAD_RATIO * min(spec.width, spec.height))


def fit_scale(crop_size: Tuple[int, int], spec: OutputSpec) -> float:
    """Uniform scale that fits a crop inside the padded canvas."""
    crop_w, crop_h = crop_size
    pad = output_padding(spec)
    avail_w = max(1.0, spec.width - 2 * pad)
    avail_h = max(1.0, spec.height - 2 * pad)
    return min(avail_w / crop_w, avail_h / crop_h)


def composite(
    backend: ImageBackend,
    mask: np.ndarray,
    crop_rect: Rect,
    spec: OutputSpec
) -> np.ndarray:
    """
    Render black ink from a binary mask onto an ``spec``-sized RGBA canvas.

    The mask is softened into an alpha channel, cropped to ``crop_rect``,
    scaled uniformly into the padded canvas and centered. On a white
    background the ink is flattened to ``255 - alpha`` with full opacity.

    Args:
        backend: Image backend
        mask: Refined binary mask
        crop_rect: Content rectangle from ``content_crop_rect``
        spec: Output canvas spec

    Returns:
        RGBA array of shape (spec.height, spec.width, 4)
    """
    x, y, crop_w, crop_h = crop_rect
    if crop_w <= 0 or crop_h <= 0:
        raise ImageProcessingError(f"Empty crop rectangle: {crop_rect}")

    with backend.scope("composite") as scope:
        alpha = scope.track(backend.gaussian_blur(mask, ALPHA_BLUR_KSIZE))
        ink = scope.track(np.zeros((crop_h, crop_w, 4), dtype=np.uint8))
        ink[:, :, 3] = alpha[y:y + crop_h, x:x + crop_w]

        scale = fit_scale((crop_w, crop_h), spec)
        scaled_w = min(spec.width, max(1, int(round(crop_w * scale))))
        scaled_h = min(spec.height, max(1, int(round(crop_h * scale))))
        scaled = scope.track(backend.resize(ink, (scaled_w, scaled_h), upscale=scale > 1.0))

        dx = (spec.width - scaled_w) // 2
        dy = (spec.height - scaled_h) // 2
        logger.debug(
            f"Composite: crop {crop_w}x{crop_h} -> {scaled_w}x{scaled_h} "
            f"at ({dx}, {dy}), scale {scale:.3f}, background {spec.background}"
        )

        canvas = np.zeros((spec.height, spec.width, 4), dtype=np.uint8)
        if spec.background == BACKGROUND_WHITE:
            canvas[:, :, :3] = 255
            canvas[:, :, 3] = 255
            flattened = 255 - scaled[:, :, 3]
            canvas[dy:dy + scaled_h, dx:dx + scaled_w, :3] = flattened[:, :, np.newaxis]
        else:
            canvas[dy:dy + scaled_h, dx:dx + scaled_w] = scaled
        return canvas


def extract_crop(backend: ImageBackend, source: np.ndarray, region: Region) -> np.ndarray:
    """
    Cut a region out of the source image.

    Axis-aligned regions are clamped to the source bounds. Rotated regions
    are sampled from the full source around the region center, so corners
    outside the unrotated box are still correct.

    Args:
        backend: Image backend
        source: Source image
        region: Region to extract

    Returns:
        Copy of the region's pixels

    Raises:
        InvalidRegionError: If the region has no pixels inside the source
    """
    if not region.is_valid:
        raise InvalidRegionError(f"Region {region.id} has non-positive size")

    src_h, src_w = source.shape[:2]

    if region.rotation_degrees % 360 != 0:
        width = max(1, int(round(region.width)))
        height = max(1, int(round(region.height)))
        return backend.rotated_crop(source, region.center, (width, height), region.rotation_degrees)

    left = max(0, int(round(region.x)))
    top = max(0, int(round(region.y)))
    right = min(src_w, int(round(region.x + region.width)))
    bottom = min(src_h, int(round(region.y + region.height)))
    if right <= left or bottom <= top:
        raise InvalidRegionError(f"Region {region.id} lies outside the source image")
    return source[top:bottom, left:right].copy()
