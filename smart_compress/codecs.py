"""
Decoder/Encoder contracts and their Pillow implementations.
"""

import logging
from io import BytesIO
from typing import Callable, Dict, Optional, Protocol

from PIL import Image, UnidentifiedImageError

from smart_compress.config import get_config
from smart_compress.errors import DecodeError, EncodeError
from smart_compress.logger import get_logger
from smart_compress.models import RGB, ChannelLayout, CompressionPlan, ImageFormat, RasterBuffer
from smart_compress.preprocess import (
    flatten_alpha,
    parse_background,
    reduce_color_depth,
    to_palette,
)

# JPEG color reduction only pays off on reasonably large images
REDUCE_COLORS_MIN_PIXELS = 100_000
WEBP_METHOD = 4


class Decoder(Protocol):
    def decode(self, data: bytes) -> RasterBuffer:
        ...


class Encoder(Protocol):
    def encode(self, raster: RasterBuffer, fmt: ImageFormat, plan: CompressionPlan) -> bytes:
        ...


class PillowDecoder:
    """Decode any container Pillow can read into a grayscale, RGB or RGBA raster."""

    def decode(self, data: bytes) -> RasterBuffer:
        if not data:
            raise DecodeError('Empty input', input_size=0)

        try:
            with Image.open(BytesIO(data)) as img:
                img.load()
                return RasterBuffer.from_image(img)
        except UnidentifiedImageError as e:
            raise DecodeError('Unrecognized image data', input_size=len(data)) from e
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
            raise DecodeError(f"Corrupt image data: {e}", input_size=len(data)) from e

    @staticmethod
    def probe_format(data: bytes) -> Optional[str]:
        """Container format of ``data`` ('png', 'jpeg', ...) without decoding pixels."""
        try:
            with Image.open(BytesIO(data)) as img:
                return img.format.lower() if img.format else None
        except (UnidentifiedImageError, OSError, ValueError):
            return None


Writer = Callable[[RasterBuffer, CompressionPlan, BytesIO], None]


class PillowEncoder:
    """Encode rasters with Pillow, honoring the plan's quality and flags."""

    def __init__(self, background: Optional[RGB] = None,
                 logger: Optional[logging.Logger] = None):
        self.background = background or parse_background(get_config().background)
        self.logger = logger or get_logger(__name__)
        self._writers: Dict[ImageFormat, Writer] = {
            ImageFormat.JPEG: self._write_jpeg,
            ImageFormat.PNG: self._write_png,
            ImageFormat.WEBP: self._write_webp,
            ImageFormat.AVIF: self._write_avif,
        }

    def encode(self, raster: RasterBuffer, fmt: ImageFormat, plan: CompressionPlan) -> bytes:
        """
        Encode ``raster`` as ``fmt``.

        Args:
            raster: Pixels to encode.
            fmt: Output format.
            plan: Quality and optimization flags.

        Returns:
            Encoded file contents.

        Raises:
            EncodeError: The format is missing from this Pillow build or the
                encoder rejected the image.
        """
        if not fmt.supports_alpha:
            raster = flatten_alpha(raster, self.background)

        output = BytesIO()
        try:
            self._writers[fmt](raster, plan, output)
        except (KeyError, ImportError) as e:
            raise EncodeError(f"{fmt.pil_format} format not supported in this build") from e
        except (OSError, ValueError) as e:
            raise EncodeError(f"{fmt.pil_format} encoding failed: {e}") from e

        data = output.getvalue()
        self.logger.debug(
            f"Encoded {raster.width}x{raster.height} as {fmt.value} "
            f"q={plan.quality}: {len(data)} bytes"
        )
        return data

    def _write_jpeg(self, raster: RasterBuffer, plan: CompressionPlan, output: BytesIO) -> None:
        if plan.optimize_flags.reduce_colors and raster.pixel_count >= REDUCE_COLORS_MIN_PIXELS:
            raster = reduce_color_depth(raster)

        raster.to_image().save(
            output,
            format='JPEG',
            quality=plan.quality,
            optimize=True,
            progressive=plan.optimize_flags.progressive,
        )

    def _write_png(self, raster: RasterBuffer, plan: CompressionPlan, output: BytesIO) -> None:
        save_params = {
            'format': 'PNG',
            'optimize': True,
            'compress_level': 9,
        }

        palette = to_palette(raster) if plan.optimize_flags.reduce_colors else None
        if palette is not None:
            img, transparency = palette
            if transparency is not None:
                save_params['transparency'] = transparency
        else:
            img = raster.to_image()

        img.save(output, **save_params)

    def _write_webp(self, raster: RasterBuffer, plan: CompressionPlan, output: BytesIO) -> None:
        self._color_image(raster).save(
            output,
            format='WEBP',
            quality=plan.quality,
            lossless=plan.optimize_flags.lossless,
            method=WEBP_METHOD,
        )

    def _write_avif(self, raster: RasterBuffer, plan: CompressionPlan, output: BytesIO) -> None:
        self._color_image(raster).save(output, format='AVIF', quality=plan.quality)

    @staticmethod
    def _color_image(raster: RasterBuffer) -> Image.Image:
        img = raster.to_image()
        if raster.layout is ChannelLayout.GRAYSCALE:
            img = img.convert('RGB')
        return img
