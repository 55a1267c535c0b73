"""
Geometry changes applied before analysis and encoding.
"""

from typing import Optional, Tuple

from PIL import Image

from smart_compress.models import Constraints, RasterBuffer, ResizeSpec


def calculate_resize_dimensions(width: int, height: int, spec: ResizeSpec) -> Tuple[int, int]:
    """
    Output size for ``spec`` applied to a ``width`` x ``height`` image.

    ``fill`` stretches to the exact box, ``contain``/``inside`` fit inside it,
    ``cover``/``outside`` fill it completely. With only one side given the
    aspect ratio is kept.
    """
    if spec.width and spec.height:
        if spec.fit == 'fill':
            return spec.width, spec.height
        ratio_w = spec.width / width
        ratio_h = spec.height / height
        if spec.fit in ('contain', 'inside'):
            ratio = min(ratio_w, ratio_h)
        else:
            ratio = max(ratio_w, ratio_h)
        return max(1, int(width * ratio)), max(1, int(height * ratio))

    if spec.width:
        return spec.width, max(1, int(height * (spec.width / width)))
    if spec.height:
        return max(1, int(width * (spec.height / height))), spec.height
    return width, height


def calculate_max_dimensions(width: int, height: int, max_width: Optional[int],
                             max_height: Optional[int]) -> Tuple[int, int]:
    """Shrink to fit ``max_width`` x ``max_height``; never enlarges."""
    if max_width and max_height:
        ratio = min(max_width / width, max_height / height)
    elif max_width:
        ratio = max_width / width
    elif max_height:
        ratio = max_height / height
    else:
        return width, height

    # Only resize if making smaller
    if ratio < 1:
        return max(1, int(width * ratio)), max(1, int(height * ratio))
    return width, height


def _resample(raster: RasterBuffer, size: Tuple[int, int], resample) -> RasterBuffer:
    if size == raster.size:
        return raster
    return RasterBuffer.from_image(raster.to_image().resize(size, resample))


def apply_resize(raster: RasterBuffer, constraints: Optional[Constraints]) -> RasterBuffer:
    """Apply the resize spec, then the max width/height limits."""
    if constraints is None or raster.pixel_count == 0:
        return raster

    spec = constraints.resize_spec
    if spec is not None:
        size = calculate_resize_dimensions(raster.width, raster.height, spec)
        resample = (Image.Resampling.LANCZOS if spec.fit in ('cover', 'fill')
                    else Image.Resampling.BILINEAR)
        raster = _resample(raster, size, resample)

    size = calculate_max_dimensions(raster.width, raster.height,
                                    constraints.max_width, constraints.max_height)
    return _resample(raster, size, Image.Resampling.LANCZOS)
