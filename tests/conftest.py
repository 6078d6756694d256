# tests/conftest.py
from pathlib import Path
import sys

import cv2
import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sig_extract.backend import ImageBackend  # noqa: E402
from sig_extract.config import AppSettings  # noqa: E402
from sig_extract.services import SignatureService  # noqa: E402


def draw_signature(image: np.ndarray, origin=(0, 0), scale: float = 1.0, thickness: int = 3) -> np.ndarray:
    """Draw a looping pen stroke in black onto an RGBA or gray image."""
    ox, oy = origin
    color = (0, 0, 0, 255) if image.ndim == 3 else 0
    points = []
    for i in range(120):
        t = i / 119.0
        x = 20 + 200 * t
        y = 60 + 25 * np.sin(t * 4 * np.pi) - 15 * t
        points.append((ox + int(x * scale), oy + int(y * scale)))
    pts = np.array(points, dtype=np.int32).reshape(-1, 1, 2)
    cv2.polylines(image, [pts], False, color, thickness)
    # underline crossing the loops so the signature is one connected stroke
    cv2.line(image, (ox + int(20 * scale), oy + int(60 * scale)),
             (ox + int(190 * scale), oy + int(92 * scale)), color, thickness)
    return image


def blank_rgba(width: int, height: int, value: int = 245) -> np.ndarray:
    image = np.full((height, width, 4), value, dtype=np.uint8)
    image[:, :, 3] = 255
    return image


@pytest.fixture
def backend() -> ImageBackend:
    return ImageBackend.create()


@pytest.fixture
def service(backend) -> SignatureService:
    return SignatureService(backend=backend, settings=AppSettings())


@pytest.fixture
def signature_crop() -> np.ndarray:
    """300x150 RGBA crop of paper with one signature on it."""
    return draw_signature(blank_rgba(300, 150), origin=(30, 10))


@pytest.fixture
def page() -> np.ndarray:
    """1000x600 RGBA page with a signature inside (100, 100, 300, 150)."""
    image = blank_rgba(1000, 600)
    draw_signature(image, origin=(130, 110))
    return image
