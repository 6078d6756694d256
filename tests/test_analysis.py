import cv2
import numpy as np
import pytest

from sig_extract import analysis
from sig_extract.image_ops import ImageProcessingError

from conftest import blank_rgba, draw_signature


def checkerboard(size: int, cell: int, low: int, high: int) -> np.ndarray:
    yy, xx = np.mgrid[0:size, 0:size]
    board = ((yy // cell + xx // cell) % 2).astype(np.uint8)
    return np.where(board == 1, high, low).astype(np.uint8)


def test_bright_clean_page_gets_high_sensitivity(backend):
    image = blank_rgba(400, 300, value=200)
    assert analysis.recommend_sensitivity(backend, image) == 28


def test_dark_noisy_page_gets_low_sensitivity(backend):
    image = checkerboard(240, 6, 0, 160)
    assert analysis.recommend_sensitivity(backend, image) == 8


@pytest.mark.parametrize("density, brightness, expected", [
    (0.20, 200, 12), (0.20, 120, 10), (0.20, 50, 8),
    (0.10, 200, 22), (0.10, 150, 18), (0.10, 99, 15),
    (0.01, 151, 28), (0.01, 100, 25), (0.01, 20, 20),
    (0.15, 200, 22), (0.05, 200, 22),
])
def test_recommendation_table(density, brightness, expected):
    assert analysis._lookup_recommendation(density, brightness) == expected


def test_recommendation_is_deterministic(backend, page):
    first = analysis.recommend_sensitivity(backend, page)
    assert analysis.recommend_sensitivity(backend, page) == first
    assert analysis.RECOMMEND_MIN <= first <= analysis.RECOMMEND_MAX


def test_recommend_rejects_empty_image(backend):
    with pytest.raises(ImageProcessingError):
        analysis.recommend_sensitivity(backend, np.zeros((0, 0, 4), dtype=np.uint8))


def test_detect_regions_finds_padded_signatures(backend):
    image = blank_rgba(1000, 600)
    draw_signature(image, origin=(100, 350))
    draw_signature(image, origin=(600, 60))

    regions = analysis.detect_regions(backend, image, 15)

    assert len(regions) == 2
    # reading order: the upper signature first
    upper, lower = regions
    assert upper.y < lower.y
    for region, (ox, oy) in ((upper, (600, 60)), (lower, (100, 350))):
        assert region.x <= ox + 20 - analysis.DETECT_PAD
        assert region.y <= oy + 20
        assert region.x + region.width >= ox + 220
        assert region.y + region.height >= oy + 95
        assert region.rotation_degrees == 0
    assert len({r.id for r in regions}) == 2


def test_detect_regions_clamps_padding_to_image(backend):
    image = blank_rgba(500, 300)
    draw_signature(image, origin=(-15, -50))
    regions = analysis.detect_regions(backend, image, 15)
    assert regions
    for region in regions:
        assert region.x >= 0 and region.y >= 0
        assert region.x + region.width <= 500
        assert region.y + region.height <= 300


def test_detect_regions_ignores_specks_and_blank_pages(backend):
    image = blank_rgba(800, 600)
    for x, y in [(100, 100), (500, 300), (700, 550)]:
        cv2.circle(image, (x, y), 2, (0, 0, 0, 255), -1)
    assert analysis.detect_regions(backend, image, 15) == []
    assert analysis.detect_regions(backend, blank_rgba(300, 200), 15) == []
