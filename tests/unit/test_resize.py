import numpy as np
import pytest

from smart_compress.models import ChannelLayout, Constraints, RasterBuffer, ResizeSpec
from smart_compress.resize import (
    apply_resize,
    calculate_max_dimensions,
    calculate_resize_dimensions,
)


@pytest.mark.parametrize('spec, expected', [
    (ResizeSpec(100, 100, 'fill'), (100, 100)),
    (ResizeSpec(100, 100, 'contain'), (100, 50)),
    (ResizeSpec(100, 100, 'inside'), (100, 50)),
    (ResizeSpec(100, 100, 'cover'), (200, 100)),
    (ResizeSpec(100, 100, 'outside'), (200, 100)),
    (ResizeSpec(width=100), (100, 50)),
    (ResizeSpec(height=50), (100, 50)),
    (ResizeSpec(), (400, 200)),
])
def test_calculate_resize_dimensions(spec, expected):
    assert calculate_resize_dimensions(400, 200, spec) == expected


def test_max_dimensions_shrink_only():
    assert calculate_max_dimensions(4000, 2000, 1000, 1000) == (1000, 500)
    assert calculate_max_dimensions(100, 100, 200, None) == (100, 100)
    assert calculate_max_dimensions(100, 100, None, None) == (100, 100)
    assert calculate_max_dimensions(1000, 1, 10, None) == (10, 1)


def test_apply_resize(noise_image):
    raster = RasterBuffer(noise_image.reshape(-1), 64, 64, ChannelLayout.RGB)

    assert apply_resize(raster, None) is raster

    resized = apply_resize(raster, Constraints(max_width=16))
    assert resized.size == (16, 16)
    assert resized.layout is ChannelLayout.RGB

    spec = Constraints(resize_spec=ResizeSpec(width=32, height=8, fit='fill'), max_height=4)
    assert apply_resize(raster, spec).size == (16, 4)
