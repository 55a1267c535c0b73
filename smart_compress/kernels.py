"""
Pixel kernels over flat uint8 sample arrays.

Every kernel splits its input into independent contiguous blocks (or row
bands) that run on the shared worker pool. Blocks never overlap, so the
assembled output is identical to a single-threaded run whatever the block
size or worker count.
"""

from typing import Callable, Union

import numpy as np

from smart_compress.errors import ResourceError
from smart_compress.models import ChannelLayout, RasterBuffer
from smart_compress.pool import run_parallel, scratch_pool

# Pixels per color-conversion block
BLOCK_PIXELS = 4096
# Samples per quantization chunk
QUANTIZE_CHUNK = 16384
# Pixels per alpha-blend chunk
BLEND_PIXELS = 4096
# Minimum rows per Sobel band
SOBEL_BAND_ROWS = 64

Samples = Union[np.ndarray, bytes, bytearray, memoryview]


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ResourceError(message)


def _as_samples(data: Samples) -> np.ndarray:
    """Read-only flat uint8 view of ``data``."""
    if isinstance(data, np.ndarray):
        _require(data.dtype == np.uint8, f"Expected uint8 samples, got {data.dtype}")
        return data.reshape(-1)
    return np.frombuffer(data, dtype=np.uint8)


def _as_mutable_samples(data: Samples) -> np.ndarray:
    """Writable flat uint8 view of ``data``; the caller's buffer is updated in place."""
    if isinstance(data, np.ndarray):
        _require(data.dtype == np.uint8, f"Expected uint8 samples, got {data.dtype}")
        _require(data.flags.writeable and data.flags.c_contiguous,
                 'In-place kernels need a writable, contiguous array')
        return data.reshape(-1)
    _require(not isinstance(data, bytes), 'In-place kernels need a mutable buffer')
    view = np.frombuffer(data, dtype=np.uint8)
    _require(view.flags.writeable, 'In-place kernels need a mutable buffer')
    return view


def _to_samples(values: np.ndarray) -> np.ndarray:
    # clamp first, then round to the nearest sample value
    return np.rint(np.clip(values, 0.0, 255.0)).astype(np.uint8).reshape(-1)


def _rgb_to_yuv_block(block: np.ndarray, work: np.ndarray) -> None:
    px = block.reshape(-1, 3)
    r, g, b = px[:, 0], px[:, 1], px[:, 2]
    out = work.reshape(-1, 3)

    y, u, v = out[:, 0], out[:, 1], out[:, 2]
    np.multiply(r, 0.299, out=y)
    y += 0.587 * g
    y += 0.114 * b
    np.multiply(r, -0.169, out=u)
    u -= 0.331 * g
    u += 0.5 * b
    u += 128.0
    np.multiply(r, 0.5, out=v)
    v -= 0.419 * g
    v -= 0.081 * b
    v += 128.0


def _yuv_to_rgb_block(block: np.ndarray, work: np.ndarray) -> None:
    px = block.reshape(-1, 3)
    y = px[:, 0].astype(np.float64)
    u = px[:, 1] - 128.0
    v = px[:, 2] - 128.0
    out = work.reshape(-1, 3)

    r, g, b = out[:, 0], out[:, 1], out[:, 2]
    np.multiply(v, 1.402, out=r)
    r += y
    np.multiply(u, -0.344, out=g)
    g += y
    g -= 0.714 * v
    np.multiply(u, 1.772, out=b)
    b += y


def _convert_blocks(samples: np.ndarray,
                    convert: Callable[[np.ndarray, np.ndarray], None],
                    block_pixels: int) -> np.ndarray:
    pixels = samples.size // 3
    out = np.empty(samples.size, dtype=np.uint8)
    if pixels == 0:
        return out

    block_pixels = max(1, int(block_pixels))
    # float64 working area for one block, carved out of a pooled byte buffer
    pool = scratch_pool(block_pixels * 3 * np.dtype(np.float64).itemsize)

    def run(start: int) -> None:
        lo = start * 3
        hi = min(start + block_pixels, pixels) * 3
        scratch = pool.get_buffer()
        try:
            work = scratch.view(np.float64)[:hi - lo]
            convert(samples[lo:hi], work)
            np.clip(work, 0.0, 255.0, out=work)
            np.rint(work, out=work)
            out[lo:hi] = work
        finally:
            pool.return_buffer(scratch)

    run_parallel(run, range(0, pixels, block_pixels))
    return out


def rgb_to_yuv(rgb: Samples, block_pixels: int = BLOCK_PIXELS) -> np.ndarray:
    """
    Convert interleaved RGB samples to YUV (BT.601, chroma offset by 128).

    Args:
        rgb: Interleaved R,G,B samples; length must be a multiple of 3.
        block_pixels: Pixels per independent work block.

    Returns:
        New uint8 array of interleaved Y,U,V samples.
    """
    samples = _as_samples(rgb)
    _require(samples.size % 3 == 0, 'RGB data length must be multiple of 3')
    return _convert_blocks(samples, _rgb_to_yuv_block, block_pixels)


def yuv_to_rgb(yuv: Samples, block_pixels: int = BLOCK_PIXELS) -> np.ndarray:
    """Inverse of :func:`rgb_to_yuv`; reproduces the input within +/-2 per channel."""
    samples = _as_samples(yuv)
    _require(samples.size % 3 == 0, 'YUV data length must be multiple of 3')
    return _convert_blocks(samples, _yuv_to_rgb_block, block_pixels)


def quantize(pixels: Samples, levels: int, chunk_size: int = QUANTIZE_CHUNK) -> None:
    """
    Snap every sample in place to the nearest of ``levels`` evenly spaced values.

    Applying it twice with the same ``levels`` changes nothing.
    """
    _require(int(levels) >= 2, f"Quantization needs at least 2 levels, got {levels}")
    samples = _as_mutable_samples(pixels)
    steps = float(int(levels) - 1)
    chunk_size = max(1, int(chunk_size))

    def run(start: int) -> None:
        chunk = samples[start:start + chunk_size]
        normalized = np.rint(chunk.astype(np.float64) * (steps / 255.0))
        chunk[:] = _to_samples(normalized * (255.0 / steps))

    run_parallel(run, range(0, samples.size, chunk_size))


def alpha_blend(base: Samples, overlay: Samples, out: Samples,
                chunk_pixels: int = BLEND_PIXELS) -> None:
    """
    Composite ``overlay`` over ``base`` ("over" operator) into ``out``.

    All three buffers hold interleaved R,G,B,A samples of equal length. Pixels
    whose composite alpha is zero are written as four zero bytes.
    """
    base_s = _as_samples(base)
    overlay_s = _as_samples(overlay)
    out_s = _as_mutable_samples(out)
    _require(base_s.size == overlay_s.size == out_s.size,
             'alpha_blend buffers must have equal length')
    _require(base_s.size % 4 == 0, 'alpha_blend expects RGBA data (length multiple of 4)')

    step = max(1, int(chunk_pixels)) * 4

    def run(start: int) -> None:
        b = base_s[start:start + step].reshape(-1, 4).astype(np.float64)
        o = overlay_s[start:start + step].reshape(-1, 4).astype(np.float64)

        base_a = b[:, 3:4] / 255.0
        overlay_a = o[:, 3:4] / 255.0
        base_weight = base_a * (1.0 - overlay_a)
        alpha = overlay_a + base_weight

        color = np.zeros((b.shape[0], 3), dtype=np.float64)
        np.divide(o[:, :3] * overlay_a + b[:, :3] * base_weight, alpha,
                  out=color, where=alpha > 0.0)

        result = np.empty_like(b)
        result[:, :3] = color
        result[:, 3:4] = alpha * 255.0
        result[alpha[:, 0] <= 0.0] = 0.0
        out_s[start:start + step] = _to_samples(result)

    run_parallel(run, range(0, base_s.size, step))


def _sobel_band(src: np.ndarray, y0: int, y1: int) -> np.ndarray:
    """Sobel magnitudes for interior rows ``y0..y1`` (exclusive), interior columns only."""
    top = src[y0 - 1:y1 - 1]
    mid = src[y0:y1]
    bot = src[y0 + 1:y1 + 1]

    gx = ((top[:, 2:] + 2 * mid[:, 2:] + bot[:, 2:])
          - (top[:, :-2] + 2 * mid[:, :-2] + bot[:, :-2]))
    gy = ((bot[:, :-2] + 2 * bot[:, 1:-1] + bot[:, 2:])
          - (top[:, :-2] + 2 * top[:, 1:-1] + top[:, 2:]))

    magnitude = np.sqrt((gx * gx + gy * gy).astype(np.float64))
    return np.minimum(magnitude, 255.0).astype(np.uint8)


def sobel_edges(gray: RasterBuffer, band_rows: int = SOBEL_BAND_ROWS) -> RasterBuffer:
    """
    Sobel gradient magnitude of a grayscale raster.

    Border pixels are 0. Rasters narrower or shorter than 3 pixels come back
    all zero with the same dimensions.
    """
    _require(gray.layout is ChannelLayout.GRAYSCALE, 'sobel_edges expects a grayscale raster')
    width, height = gray.width, gray.height
    out = np.zeros((height, width), dtype=np.uint8)

    if width >= 3 and height >= 3:
        src = gray.pixels()[..., 0].astype(np.int32)
        band_rows = max(1, int(band_rows))
        bands = [(y0, min(y0 + band_rows, height - 1)) for y0 in range(1, height - 1, band_rows)]

        def run(band):
            y0, y1 = band
            out[y0:y1, 1:-1] = _sobel_band(src, y0, y1)

        run_parallel(run, bands)

    return RasterBuffer(out.reshape(-1), width, height, ChannelLayout.GRAYSCALE)


def grayscale(raster: RasterBuffer) -> RasterBuffer:
    """Luma (the Y plane of :func:`rgb_to_yuv`) of any raster; alpha is ignored."""
    if raster.layout is ChannelLayout.GRAYSCALE:
        return raster.copy()
    rgb = np.ascontiguousarray(raster.pixels()[..., :3]).reshape(-1)
    luma = rgb_to_yuv(rgb)[0::3]
    return RasterBuffer(luma.copy(), raster.width, raster.height, ChannelLayout.GRAYSCALE)
