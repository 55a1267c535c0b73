from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from smart_compress.codecs import PillowDecoder
from smart_compress.errors import DecodeError, EncodeError
from smart_compress.models import ChannelLayout, Constraints, ImageFormat
from smart_compress.orchestrator import CompressionOrchestrator


class ShrinkingEncoder:
    """Fake encoder whose output is ``quality`` bytes long."""

    def __init__(self):
        self.qualities = []

    def encode(self, raster, fmt, plan):
        self.qualities.append(plan.quality)
        return bytes(plan.quality)


class BrokenEncoder:
    def encode(self, raster, fmt, plan):
        raise EncodeError(f"{fmt.pil_format} format not supported in this build")


@pytest.fixture
def orchestrator():
    return CompressionOrchestrator()


def test_uniform_image_becomes_lossless_png(orchestrator, encode_png, solid_image):
    outcome = orchestrator.compress(encode_png(solid_image))

    assert outcome.format is ImageFormat.PNG
    assert outcome.quality == 100
    assert (outcome.width, outcome.height) == (10, 10)
    assert outcome.size_bytes == len(outcome.data)
    restored = PillowDecoder().decode(outcome.data)
    assert np.array_equal(restored.pixels(), solid_image)


def test_transparency_survives(orchestrator, encode_png, transparent_image):
    outcome = orchestrator.compress(encode_png(transparent_image))

    assert outcome.format.supports_alpha
    restored = PillowDecoder().decode(outcome.data)
    assert restored.layout is ChannelLayout.RGBA
    assert restored.pixels()[0, 15, 3] == 0
    assert restored.pixels()[0, 0, 3] == 255


def test_garbage_reports_decode_stage(orchestrator):
    data = b'\x00' * 64
    with pytest.raises(DecodeError) as excinfo:
        orchestrator.compress(data)

    assert excinfo.value.stage == 'decode'
    assert excinfo.value.input_size == 64
    assert 'decode' in str(excinfo.value)
    assert '64 bytes' in str(excinfo.value)


def test_encode_failure_reports_encode_stage(encode_png, solid_image):
    orchestrator = CompressionOrchestrator(encoder=BrokenEncoder())
    data = encode_png(solid_image)
    with pytest.raises(EncodeError) as excinfo:
        orchestrator.compress(data)

    assert excinfo.value.stage == 'encode'
    assert excinfo.value.input_size == len(data)
    assert isinstance(excinfo.value.__cause__, EncodeError)


class NoAvifEncoder(ShrinkingEncoder):
    def encode(self, raster, fmt, plan):
        if fmt is ImageFormat.AVIF:
            raise EncodeError('AVIF format not supported in this build')
        return super().encode(raster, fmt, plan)


def test_unsupported_format_falls_back(encode_png, noise_image):
    orchestrator = CompressionOrchestrator(encoder=NoAvifEncoder())
    constraints = Constraints(preferred_formats=('avif',))

    outcome = orchestrator.compress(encode_png(noise_image), constraints)

    assert outcome.format is ImageFormat.WEBP


def test_target_size_runs_search(encode_png, noise_image):
    encoder = ShrinkingEncoder()
    orchestrator = CompressionOrchestrator(encoder=encoder)
    constraints = Constraints(target_size_bytes=60, preferred_formats=('webp',))

    outcome = orchestrator.compress(encode_png(noise_image), constraints)

    assert outcome.format is ImageFormat.WEBP
    assert outcome.size_bytes <= 60
    assert encoder.qualities[0] == 95
    assert outcome.quality == encoder.qualities[-1]


def test_target_size_with_real_encoder(orchestrator, encode_png, noise_image):
    data = encode_png(noise_image)
    constraints = Constraints.from_options(target_size='8kb', preferred_formats=['jpeg'])

    outcome = orchestrator.compress(data, constraints)

    assert outcome.format is ImageFormat.JPEG
    assert outcome.quality <= 95
    assert outcome.size_bytes > 0


def test_max_width_resizes_before_encoding(orchestrator, encode_png, noise_image):
    outcome = orchestrator.compress(encode_png(noise_image), Constraints(max_width=16))

    assert (outcome.width, outcome.height) == (16, 16)
    with Image.open(BytesIO(outcome.data)) as img:
        assert img.size == (16, 16)


def test_analyze_reports_plan(orchestrator, encode_png, solid_image):
    report = orchestrator.analyze(encode_png(solid_image))

    assert report.source_format == 'png'
    assert (report.width, report.height) == (10, 10)
    assert report.layout is ChannelLayout.RGB
    assert not report.has_alpha
    assert report.plan.format is ImageFormat.PNG
    assert report.complexity == pytest.approx(0.0)
    assert report.estimated_savings == pytest.approx(0.75)


def test_analyze_rejects_garbage(orchestrator):
    with pytest.raises(DecodeError):
        orchestrator.analyze(b'nope')


def test_compress_batch_isolates_failures(orchestrator, encode_png, solid_image, noise_image):
    inputs = [encode_png(solid_image), b'garbage', encode_png(noise_image)]
    results = orchestrator.compress_batch(inputs, max_workers=2)

    assert [r.ok for r in results] == [True, False, True]
    assert isinstance(results[1].error, DecodeError)
    assert results[0].value.format is ImageFormat.PNG
    assert (results[2].value.width, results[2].value.height) == (64, 64)
