import numpy as np
import pytest


def test_scope_releases_on_error(backend):
    with pytest.raises(RuntimeError):
        with backend.scope("failing") as scope:
            scope.track(np.zeros((10, 10), dtype=np.uint8))
            scope.track(np.zeros((10, 10), dtype=np.uint8))
            assert backend.live_buffers == 2
            raise RuntimeError("stage failed")
    assert backend.live_buffers == 0


def test_nested_scopes(backend):
    with backend.scope("outer") as outer:
        outer.track(np.zeros(4, dtype=np.uint8))
        with backend.scope("inner") as inner:
            inner.track(np.zeros(4, dtype=np.uint8))
            assert backend.live_buffers == 2
        assert backend.live_buffers == 1
        assert inner.size == 0
    assert backend.live_buffers == 0


def test_backends_do_not_share_state(backend):
    from sig_extract.backend import ImageBackend

    other = ImageBackend.create()
    with backend.scope() as scope:
        scope.track(np.zeros(4, dtype=np.uint8))
        assert other.live_buffers == 0


@pytest.mark.parametrize("shape", [(8, 6), (8, 6, 1), (8, 6, 3), (8, 6, 4)])
def test_channel_conversions(backend, shape):
    image = np.full(shape, 100, dtype=np.uint8)
    gray = backend.grayscale(image)
    rgba = backend.to_rgba(image)
    assert gray.shape == (8, 6)
    assert (gray == 100).all()
    assert rgba.shape == (8, 6, 4)
    assert (rgba[:, :, :3] == 100).all()


def test_conversions_copy(backend):
    image = np.zeros((4, 4, 4), dtype=np.uint8)
    backend.to_rgba(image)[0, 0, 0] = 9
    backend.grayscale(image[:, :, 0])[0, 0] = 9
    assert not image.any()


def test_unsupported_channels(backend):
    with pytest.raises(ValueError):
        backend.grayscale(np.zeros((4, 4, 2), dtype=np.uint8))


def test_kernels(backend):
    assert backend.kernel('ones', 5).sum() == 25
    assert backend.kernel('rect', 3).sum() == 9
    ellipse = backend.kernel('ellipse', 3)
    assert ellipse.shape == (3, 3)
    assert ellipse[1, 1] == 1


def test_rotated_crop_fills_gray_with_white(backend):
    image = np.zeros((20, 20), dtype=np.uint8)
    crop = backend.rotated_crop(image, (2.0, 2.0), (10, 10), 45)
    assert crop.shape == (10, 10)
    assert crop[0, 0] == 255
    assert crop[9, 9] == 0


def test_resize(backend):
    image = np.zeros((10, 20, 4), dtype=np.uint8)
    assert backend.resize(image, (40, 20), upscale=True).shape == (20, 40, 4)
    assert backend.resize(image, (5, 3), upscale=False).shape == (3, 5, 4)
