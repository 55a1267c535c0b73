from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from smart_compress.codecs import PillowDecoder, PillowEncoder
from smart_compress.errors import DecodeError, EncodeError
from smart_compress.models import (
    ChannelLayout,
    CompressionPlan,
    ImageFormat,
    OptimizeFlags,
    RasterBuffer,
)


@pytest.fixture
def decoder():
    return PillowDecoder()


@pytest.fixture
def encoder():
    return PillowEncoder(background=(255, 255, 255))


def _raster(array, layout):
    array = np.ascontiguousarray(array, dtype=np.uint8)
    return RasterBuffer(array.reshape(-1), array.shape[1], array.shape[0], layout)


def test_decode_png(decoder, encode_png, solid_image):
    raster = decoder.decode(encode_png(solid_image))
    assert raster.layout is ChannelLayout.RGB
    assert raster.size == (10, 10)
    assert np.array_equal(raster.pixels(), solid_image)


def test_decode_rejects_garbage(decoder):
    with pytest.raises(DecodeError) as excinfo:
        decoder.decode(b'definitely not an image')
    assert excinfo.value.stage == 'decode'
    assert excinfo.value.input_size == 23


def test_decode_rejects_empty(decoder):
    with pytest.raises(DecodeError):
        decoder.decode(b'')


def test_decode_rejects_truncated(decoder, encode_png, noise_image):
    data = encode_png(noise_image)
    with pytest.raises(DecodeError):
        decoder.decode(data[: len(data) // 2])


def test_probe_format(decoder, encode_png, solid_image):
    assert decoder.probe_format(encode_png(solid_image)) == 'png'
    assert decoder.probe_format(b'junk') is None


def test_png_palette_keeps_transparency(decoder, encoder, transparent_image):
    raster = _raster(transparent_image, ChannelLayout.RGBA)
    plan = CompressionPlan(ImageFormat.PNG, 100, OptimizeFlags(reduce_colors=True, lossless=True))
    data = encoder.encode(raster, ImageFormat.PNG, plan)

    with Image.open(BytesIO(data)) as img:
        assert img.mode == 'P'

    restored = decoder.decode(data)
    assert restored.layout is ChannelLayout.RGBA
    assert np.array_equal(restored.pixels(), transparent_image)


def test_png_without_color_reduction_is_exact(decoder, encoder, noise_image):
    raster = _raster(noise_image, ChannelLayout.RGB)
    data = encoder.encode(raster, ImageFormat.PNG, CompressionPlan(ImageFormat.PNG, 100))
    assert np.array_equal(decoder.decode(data).pixels(), noise_image)


def test_jpeg_flattens_alpha(decoder, encoder, transparent_image):
    raster = _raster(transparent_image, ChannelLayout.RGBA)
    plan = CompressionPlan(ImageFormat.JPEG, 90, OptimizeFlags(progressive=True))
    data = encoder.encode(raster, ImageFormat.JPEG, plan)

    restored = decoder.decode(data)
    assert restored.layout is ChannelLayout.RGB
    # transparent half comes back close to the white background
    assert restored.pixels()[8, 14].min() > 150


def test_jpeg_color_reduction_on_large_images(decoder, encoder):
    rng = np.random.default_rng(2)
    img = rng.integers(0, 256, size=(400, 300, 3), dtype=np.uint8)
    plan = CompressionPlan(ImageFormat.JPEG, 80, OptimizeFlags(reduce_colors=True))
    data = encoder.encode(_raster(img, ChannelLayout.RGB), ImageFormat.JPEG, plan)
    assert decoder.decode(data).size == (300, 400)


def test_webp_lossless_and_lossy(decoder, encoder, noise_image):
    raster = _raster(noise_image, ChannelLayout.RGB)
    lossless = encoder.encode(raster, ImageFormat.WEBP,
                              CompressionPlan(ImageFormat.WEBP, 100, OptimizeFlags(lossless=True)))
    lossy = encoder.encode(raster, ImageFormat.WEBP, CompressionPlan(ImageFormat.WEBP, 40))

    assert np.array_equal(decoder.decode(lossless).pixels(), noise_image)
    assert len(lossy) < len(lossless)


def test_webp_accepts_grayscale(decoder, encoder):
    gray = _raster(np.full((8, 8), 90), ChannelLayout.GRAYSCALE)
    data = encoder.encode(gray, ImageFormat.WEBP, CompressionPlan(ImageFormat.WEBP, 80))
    assert decoder.decode(data).size == (8, 8)


def test_avif_encodes_or_reports_missing_support(encoder, noise_image):
    raster = _raster(noise_image, ChannelLayout.RGB)
    try:
        data = encoder.encode(raster, ImageFormat.AVIF, CompressionPlan(ImageFormat.AVIF, 60))
    except EncodeError as e:
        assert e.stage == 'encode'
    else:
        assert len(data) > 0
