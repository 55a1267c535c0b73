"""
Data model shared by the analysis, decision and encoding stages.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from smart_compress.errors import ConstraintError, ResourceError
from smart_compress.sizes import parse_target_size

# Largest unique-color count ever reported
COLOR_CAP = 65_536

# Quality the target-size search starts from
MAX_SEARCH_QUALITY = 95

RGB = Tuple[int, int, int]


class ImageFormat(Enum):
    """Output formats the decision policy can choose from."""

    PNG = 'png'
    JPEG = 'jpeg'
    WEBP = 'webp'
    AVIF = 'avif'

    @property
    def pil_format(self) -> str:
        return self.value.upper()

    @property
    def extension(self) -> str:
        return 'jpg' if self is ImageFormat.JPEG else self.value

    @property
    def supports_alpha(self) -> bool:
        return self is not ImageFormat.JPEG

    @property
    def is_lossless(self) -> bool:
        return self is ImageFormat.PNG

    @classmethod
    def parse(cls, tag: Union[str, 'ImageFormat']) -> 'ImageFormat':
        """Resolve a case-insensitive format tag (``jpg`` is accepted for JPEG)."""
        if isinstance(tag, ImageFormat):
            return tag
        name = str(tag).strip().lower()
        if name == 'jpg':
            name = 'jpeg'
        try:
            return cls(name)
        except ValueError:
            raise ConstraintError(f"Unknown image format: {tag!r}") from None


class ChannelLayout(Enum):
    """Sample layout of a raster; the value is the channel count."""

    GRAYSCALE = 1
    RGB = 3
    RGBA = 4

    @property
    def channels(self) -> int:
        return self.value

    @property
    def pil_mode(self) -> str:
        return {1: 'L', 3: 'RGB', 4: 'RGBA'}[self.value]


@dataclass(eq=False)
class RasterBuffer:
    """
    Decoded 8-bit pixel grid.

    ``data`` is a flat, C-contiguous uint8 array holding
    ``width * height * channels`` interleaved samples.
    """

    data: np.ndarray
    width: int
    height: int
    layout: ChannelLayout

    def __post_init__(self):
        if not isinstance(self.data, np.ndarray):
            self.data = np.frombuffer(bytes(self.data), dtype=np.uint8).copy()
        self.data = np.ascontiguousarray(self.data, dtype=np.uint8).reshape(-1)
        if self.width < 0 or self.height < 0:
            raise ResourceError(f"Invalid raster size {self.width}x{self.height}")
        expected = self.width * self.height * self.layout.channels
        if self.data.size != expected:
            raise ResourceError(
                f"Data size mismatch: expected {expected}, got {self.data.size}"
            )

    @property
    def channels(self) -> int:
        return self.layout.channels

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def pixels(self) -> np.ndarray:
        """(height, width, channels) view of the samples."""
        return self.data.reshape(self.height, self.width, self.channels)

    def has_transparency(self) -> bool:
        """True when the raster carries alpha and at least one pixel is not opaque."""
        if self.layout is not ChannelLayout.RGBA or self.pixel_count == 0:
            return False
        return bool(self.pixels()[..., 3].min() < 255)

    def to_rgba_pixels(self) -> np.ndarray:
        """(height, width, 4) copy with an opaque alpha channel added if missing."""
        px = self.pixels()
        if self.layout is ChannelLayout.RGBA:
            return px.copy()
        out = np.empty((self.height, self.width, 4), dtype=np.uint8)
        if self.layout is ChannelLayout.GRAYSCALE:
            out[..., :3] = px
        else:
            out[..., :3] = px[..., :3]
        out[..., 3] = 255
        return out

    def copy(self) -> 'RasterBuffer':
        return RasterBuffer(self.data.copy(), self.width, self.height, self.layout)

    @classmethod
    def from_image(cls, img: Image.Image) -> 'RasterBuffer':
        """Build a raster from a PIL image, normalizing exotic modes."""
        if img.mode in ('RGBA', 'LA', 'PA', 'RGBa', 'La') or (
            img.mode == 'P' and 'transparency' in img.info
        ):
            img = img.convert('RGBA')
            layout = ChannelLayout.RGBA
        elif img.mode in ('L', '1') or img.mode.startswith(('I', 'F')):
            img = img.convert('L')
            layout = ChannelLayout.GRAYSCALE
        else:
            img = img.convert('RGB')
            layout = ChannelLayout.RGB

        width, height = img.size
        data = np.array(img, dtype=np.uint8).reshape(-1)
        return cls(data, width, height, layout)

    def to_image(self) -> Image.Image:
        px = self.pixels()
        if self.layout is ChannelLayout.GRAYSCALE:
            px = px[..., 0]
        return Image.fromarray(np.ascontiguousarray(px))


@dataclass(frozen=True)
class FeatureVector:
    """Per-image measurements. Ratios are clamped to [0, 1] on construction."""

    edge_density: float
    texture_complexity: float
    color_variance: float
    unique_color_estimate: int
    dominant_colors: Tuple[RGB, ...]
    high_frequency_ratio: float
    perceptual_quality_score: float

    def __post_init__(self):
        for name in ('edge_density', 'texture_complexity', 'color_variance',
                     'high_frequency_ratio', 'perceptual_quality_score'):
            value = float(getattr(self, name))
            object.__setattr__(self, name, min(max(value, 0.0), 1.0))
        unique = min(max(int(self.unique_color_estimate), 0), COLOR_CAP)
        object.__setattr__(self, 'unique_color_estimate', unique)
        colors = tuple(tuple(int(c) for c in color) for color in self.dominant_colors[:5])
        object.__setattr__(self, 'dominant_colors', colors)


@dataclass(frozen=True)
class OptimizeFlags:
    reduce_colors: bool = False
    progressive: bool = False
    lossless: bool = False


@dataclass(frozen=True)
class CompressionPlan:
    """Format, quality and encoder flags for a single encode attempt."""

    format: ImageFormat
    quality: int
    optimize_flags: OptimizeFlags = field(default_factory=OptimizeFlags)

    def __post_init__(self):
        if not 1 <= int(self.quality) <= 100:
            raise ConstraintError(f"Quality must be within 1..100, got {self.quality}")
        object.__setattr__(self, 'quality', int(self.quality))

    def with_quality(self, quality: int, lossless: Optional[bool] = None) -> 'CompressionPlan':
        """Return a revised plan; the original is left untouched."""
        flags = self.optimize_flags
        if lossless is not None:
            flags = replace(flags, lossless=lossless)
        return replace(self, quality=quality, optimize_flags=flags)


RESIZE_FITS = ('fill', 'contain', 'cover', 'inside', 'outside')


@dataclass(frozen=True)
class ResizeSpec:
    """Requested output geometry. A missing side keeps the aspect ratio."""

    width: Optional[int] = None
    height: Optional[int] = None
    fit: str = 'contain'

    def __post_init__(self):
        fit = str(self.fit).lower()
        if fit not in RESIZE_FITS:
            raise ConstraintError(f"Unknown resize fit {self.fit!r}; expected one of {RESIZE_FITS}")
        object.__setattr__(self, 'fit', fit)
        for name in ('width', 'height'):
            value = getattr(self, name)
            if value is not None and int(value) <= 0:
                raise ConstraintError(f"Resize {name} must be positive, got {value}")


@dataclass(frozen=True)
class Constraints:
    """Caller-supplied limits. Validated on construction, read-only afterwards."""

    target_size_bytes: Optional[int] = None
    min_quality: Optional[int] = None
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    preferred_formats: Optional[Tuple[ImageFormat, ...]] = None
    resize_spec: Optional[ResizeSpec] = None

    def __post_init__(self):
        if self.target_size_bytes is not None and int(self.target_size_bytes) <= 0:
            raise ConstraintError(
                f"Target size must be positive, got {self.target_size_bytes}"
            )
        if self.min_quality is not None and not 1 <= int(self.min_quality) <= 100:
            raise ConstraintError(f"min_quality must be within 1..100, got {self.min_quality}")
        if (self.target_size_bytes is not None and self.min_quality is not None
                and int(self.min_quality) > MAX_SEARCH_QUALITY):
            raise ConstraintError(
                f"min_quality {self.min_quality} cannot be combined with a target size; "
                f"the size search starts at quality {MAX_SEARCH_QUALITY}"
            )
        for name in ('max_width', 'max_height'):
            value = getattr(self, name)
            if value is not None and int(value) <= 0:
                raise ConstraintError(f"{name} must be positive, got {value}")

        if self.preferred_formats is not None:
            formats = tuple(ImageFormat.parse(tag) for tag in self.preferred_formats)
            object.__setattr__(self, 'preferred_formats', formats or None)

    @classmethod
    def from_options(cls, target_size: Optional[str] = None,
                     min_quality: Optional[int] = None,
                     max_width: Optional[int] = None,
                     max_height: Optional[int] = None,
                     preferred_formats: Optional[Sequence[str]] = None,
                     resize_spec: Optional[ResizeSpec] = None) -> 'Constraints':
        """Build constraints from user-facing values (size strings, format tags)."""
        target_bytes = parse_target_size(target_size) if target_size is not None else None
        return cls(
            target_size_bytes=target_bytes,
            min_quality=min_quality,
            max_width=max_width,
            max_height=max_height,
            preferred_formats=tuple(preferred_formats) if preferred_formats else None,
            resize_spec=resize_spec,
        )


@dataclass(frozen=True)
class CompressionOutcome:
    """One successful encode attempt."""

    data: bytes
    format: ImageFormat
    size_bytes: int
    compression_ratio: float
    elapsed: float
    quality: int
    width: int
    height: int

    @property
    def size_kb(self) -> float:
        return self.size_bytes / 1024.0
