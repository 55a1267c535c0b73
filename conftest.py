from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from smart_compress.logger import configure_logging


def pytest_configure():
    configure_logging()


@pytest.fixture
def encode_png():
    """Encode an (h, w[, c]) uint8 array as PNG bytes."""
    def _encode(array: np.ndarray) -> bytes:
        out = BytesIO()
        Image.fromarray(np.ascontiguousarray(array, dtype=np.uint8)).save(out, format='PNG')
        return out.getvalue()
    return _encode


@pytest.fixture
def solid_image():
    img = np.empty((10, 10, 3), dtype=np.uint8)
    img[...] = (200, 120, 40)
    return img


@pytest.fixture
def noise_image():
    rng = np.random.default_rng(0)
    return rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8)


@pytest.fixture
def stripes_image():
    """512x512 vertical stripes, two black columns then two white ones."""
    row = np.where((np.arange(512) // 2) % 2 == 0, 0, 255).astype(np.uint8)
    gray = np.tile(row, (512, 1))
    return np.stack([gray] * 3, axis=-1)


@pytest.fixture
def transparent_image():
    """16x16 RGBA: opaque red left half, fully transparent right half."""
    img = np.zeros((16, 16, 4), dtype=np.uint8)
    img[:, :8] = (255, 0, 0, 255)
    return img
