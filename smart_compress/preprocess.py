"""
Pixel preparation applied right before encoding.
"""

from typing import Optional, Tuple

import numpy as np
from PIL import Image, ImageColor

from smart_compress.features import pack_rgba, unpack_rgb
from smart_compress.kernels import alpha_blend, quantize
from smart_compress.models import RGB, ChannelLayout, RasterBuffer

# Samples per channel kept by the lossy color reduction
REDUCED_LEVELS = 64
PALETTE_SIZE = 256


def parse_background(color: str) -> RGB:
    """'#rrggbb', 'white', 'rgb(...)' -> (r, g, b)."""
    return ImageColor.getrgb(color)[:3]


def flatten_alpha(raster: RasterBuffer, background: RGB = (255, 255, 255)) -> RasterBuffer:
    """
    Composite an RGBA raster over an opaque background color.

    Args:
        raster: Source raster; anything but RGBA is returned unchanged.
        background: Opaque fill shown through transparent pixels.

    Returns:
        RGB raster of the same dimensions.
    """
    if raster.layout is not ChannelLayout.RGBA:
        return raster

    base = np.empty((raster.pixel_count, 4), dtype=np.uint8)
    base[:, :3] = background
    base[:, 3] = 255

    out = np.empty(raster.data.size, dtype=np.uint8)
    alpha_blend(base.reshape(-1), raster.data, out)

    rgb = np.ascontiguousarray(out.reshape(-1, 4)[:, :3]).reshape(-1)
    return RasterBuffer(rgb, raster.width, raster.height, ChannelLayout.RGB)


def reduce_color_depth(raster: RasterBuffer, levels: int = REDUCED_LEVELS) -> RasterBuffer:
    """Copy of ``raster`` with every sample snapped to ``levels`` values."""
    reduced = raster.copy()
    quantize(reduced.data, levels)
    return reduced


def to_palette(raster: RasterBuffer) -> Optional[Tuple[Image.Image, Optional[bytes]]]:
    """
    Exact palette ("P" mode) version of ``raster``.

    Returns:
        (image, transparency) where ``transparency`` holds one alpha byte per
        palette entry (None for opaque images), or None if the raster has more
        than 256 distinct colors.
    """
    if raster.pixel_count == 0:
        return None

    rgba = raster.to_rgba_pixels().reshape(-1, 4)
    keys = pack_rgba(rgba)
    colors, inverse = np.unique(keys, return_inverse=True)
    if colors.size > PALETTE_SIZE:
        return None

    indices = inverse.reshape(-1).astype(np.uint8)
    img = Image.frombytes('P', raster.size, indices.tobytes())

    palette = bytearray()
    for key in colors.tolist():
        palette.extend(unpack_rgb(key))
    img.putpalette(bytes(palette))

    transparency = None
    if raster.has_transparency():
        transparency = bytes(key & 0xFF for key in colors.tolist())
    return img, transparency
