"""
Image feature extraction.

Produces a FeatureVector describing how compressible an image is: edge
density, texture entropy, color distribution, high-frequency energy and a
resolution-based perceptual score.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from smart_compress.kernels import grayscale, sobel_edges
from smart_compress.logger import get_logger
from smart_compress.models import COLOR_CAP, RGB, FeatureVector, RasterBuffer
from smart_compress.pool import available_parallelism, run_parallel

EDGE_THRESHOLD = 50
HIGH_FREQUENCY_THRESHOLD = 20.0

# Above this many pixels color statistics are sampled and sharded
LARGE_IMAGE_PIXELS = 1_000_000
COLOR_SAMPLE_TARGET = 50_000
MIN_SHARD_SIZE = 1024
SHARD_STEP = 4096

# (dy, dx), clockwise from the top-left neighbor
LBP_OFFSETS = ((-1, -1), (-1, 0), (-1, 1), (0, 1), (1, 1), (1, 0), (1, -1), (0, -1))


class BoundedColorAccumulator:
    """
    Color -> count table that never holds more than ``cap`` colors.

    Once full, unseen colors are ignored and inserting stops early.
    """

    def __init__(self, cap: int = COLOR_CAP):
        self.cap = cap
        self.counts: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self.counts)

    @property
    def full(self) -> bool:
        return len(self.counts) >= self.cap

    def add(self, keys: np.ndarray) -> None:
        """Count packed RGBA keys."""
        if keys.size == 0:
            return
        colors, counts = np.unique(keys, return_counts=True)
        self._insert(zip(colors.tolist(), counts.tolist()))

    def merge(self, other: 'BoundedColorAccumulator') -> None:
        self._insert(other.counts.items())

    def _insert(self, pairs: Iterable[Tuple[int, int]]) -> None:
        counts = self.counts
        for color, n in pairs:
            if color in counts:
                counts[color] += n
            else:
                counts[color] = n
                if len(counts) >= self.cap:
                    break

    def most_common(self) -> List[Tuple[int, int]]:
        """All (color, count) pairs by descending count, ties by color value."""
        return sorted(self.counts.items(), key=lambda item: (-item[1], item[0]))


@dataclass(frozen=True)
class ColorAnalysis:
    unique_colors: int
    color_variance: float
    dominant_colors: Tuple[RGB, ...]


def pack_rgba(rgba: np.ndarray) -> np.ndarray:
    """(N, 4) uint8 -> N big-endian uint32 keys (R in the top byte)."""
    return np.ascontiguousarray(rgba).view('>u4').reshape(-1)


def unpack_rgb(key: int) -> RGB:
    return (key >> 24) & 0xFF, (key >> 16) & 0xFF, (key >> 8) & 0xFF


def _dominant_colors(accumulator: BoundedColorAccumulator, limit: int = 5) -> Tuple[RGB, ...]:
    colors: List[RGB] = []
    for key, _ in accumulator.most_common():
        rgb = unpack_rgb(key)
        if rgb not in colors:
            colors.append(rgb)
            if len(colors) == limit:
                break
    return tuple(colors)


def _accumulate_shard(keys: np.ndarray) -> BoundedColorAccumulator:
    local = BoundedColorAccumulator()
    for start in range(0, keys.size, SHARD_STEP):
        local.add(keys[start:start + SHARD_STEP])
        if local.full:
            break
    return local


class FeatureExtractor:
    """Compute a FeatureVector for a decoded raster."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger(__name__)

    def extract(self, raster: RasterBuffer) -> FeatureVector:
        """
        Full feature analysis.

        Args:
            raster: Decoded image (any channel layout).

        Returns:
            Immutable FeatureVector; degenerate geometry yields zero metrics.
        """
        gray = grayscale(raster)
        colors = self.analyze_color_distribution(raster)

        features = FeatureVector(
            edge_density=self.calculate_edge_density(gray),
            texture_complexity=self.calculate_texture_complexity(gray),
            color_variance=colors.color_variance,
            unique_color_estimate=colors.unique_colors,
            dominant_colors=colors.dominant_colors,
            high_frequency_ratio=self.calculate_high_frequency_ratio(gray),
            perceptual_quality_score=self.calculate_perceptual_quality_score(raster),
        )

        self.logger.debug(
            f"Features for {raster.width}x{raster.height}: edges={features.edge_density:.3f}, "
            f"texture={features.texture_complexity:.3f}, variance={features.color_variance:.3f}, "
            f"colors={features.unique_color_estimate}, "
            f"high_freq={features.high_frequency_ratio:.3f}, "
            f"perceptual={features.perceptual_quality_score:.2f}"
        )
        return features

    # ---------- Color distribution ----------
    def analyze_color_distribution(self, raster: RasterBuffer) -> ColorAnalysis:
        """Channel variance over every pixel plus a bounded color histogram."""
        if raster.pixel_count == 0:
            return ColorAnalysis(0, 0.0, ())

        rgba = raster.to_rgba_pixels().reshape(-1, 4)

        variances = [float(np.var(rgba[:, c], dtype=np.float64)) for c in range(3)]
        color_variance = (sum(variances) / 3.0) / (255.0 * 255.0)

        if raster.pixel_count > LARGE_IMAGE_PIXELS:
            histogram = self._sampled_histogram(rgba)
        else:
            histogram = BoundedColorAccumulator()
            histogram.add(pack_rgba(rgba))

        return ColorAnalysis(
            unique_colors=len(histogram),
            color_variance=min(color_variance, 1.0),
            dominant_colors=_dominant_colors(histogram),
        )

    def _sampled_histogram(self, rgba: np.ndarray) -> BoundedColorAccumulator:
        step = max(1, rgba.shape[0] // COLOR_SAMPLE_TARGET)
        keys = pack_rgba(rgba[::step])

        shard_size = max(MIN_SHARD_SIZE, keys.size // (available_parallelism() * 2))
        shards = [keys[i:i + shard_size] for i in range(0, keys.size, shard_size)]
        partials = run_parallel(_accumulate_shard, shards)

        # Sequential merge avoids any shared set between workers
        merged = BoundedColorAccumulator()
        for partial in partials:
            if merged.full:
                break
            merged.merge(partial)

        self.logger.debug(
            f"Sampled {keys.size} of {rgba.shape[0]} pixels in {len(shards)} shards, "
            f"{len(merged)} colors"
        )
        return merged

    # ---------- Edges ----------
    def calculate_edge_density(self, gray: RasterBuffer) -> float:
        """Share of interior pixels whose Sobel magnitude exceeds the edge threshold."""
        width, height = gray.width, gray.height
        if width < 3 or height < 3:
            return 0.0

        edges = sobel_edges(gray).pixels()[1:-1, 1:-1, 0]
        edge_count = int(np.count_nonzero(edges > EDGE_THRESHOLD))
        return min(edge_count / float((width - 2) * (height - 2)), 1.0)

    # ---------- Texture ----------
    def calculate_texture_complexity(self, gray: RasterBuffer) -> float:
        """Normalized Shannon entropy of the 8-neighbor Local Binary Pattern histogram."""
        width, height = gray.width, gray.height
        if width < 3 or height < 3:
            return 0.0

        g = gray.pixels()[..., 0]
        center = g[1:-1, 1:-1]
        codes = np.zeros(center.shape, dtype=np.uint8)

        for bit, (dy, dx) in enumerate(LBP_OFFSETS):
            neighbor = g[1 + dy:height - 1 + dy, 1 + dx:width - 1 + dx]
            codes |= (neighbor >= center).astype(np.uint8) << np.uint8(bit)

        histogram = np.bincount(codes.reshape(-1), minlength=256)
        probabilities = histogram[histogram > 0] / float(codes.size)
        entropy = float(-(probabilities * np.log2(probabilities)).sum())

        # 8 bits is the maximum entropy of an 8-bit code
        return min(max(entropy / 8.0, 0.0), 1.0)

    # ---------- Frequency ----------
    def calculate_high_frequency_ratio(self, gray: RasterBuffer) -> float:
        """Fraction of gradient energy carried by pixels with a strong local gradient."""
        width, height = gray.width, gray.height
        if width < 3 or height < 3:
            return 0.0

        g = gray.pixels()[..., 0].astype(np.float64)
        horizontal = np.abs(g[1:-1, 2:] - g[1:-1, :-2])
        vertical = np.abs(g[2:, 1:-1] - g[:-2, 1:-1])
        magnitude = (horizontal + vertical) / 2.0

        total_energy = float(magnitude.sum())
        if total_energy <= 0.0:
            return 0.0
        high_energy = float(magnitude[magnitude > HIGH_FREQUENCY_THRESHOLD].sum())
        return min(high_energy / total_energy, 1.0)

    # ---------- Perceptual ----------
    @staticmethod
    def calculate_perceptual_quality_score(raster: RasterBuffer) -> float:
        """Resolution-based quality requirement, relaxed for extreme aspect ratios."""
        pixel_count = raster.pixel_count

        if pixel_count > 2_000_000:
            score = 1.0
        elif pixel_count > 1_000_000:
            score = 0.9
        elif pixel_count > 500_000:
            score = 0.8
        else:
            score = 0.7

        if raster.height > 0:
            aspect_ratio = raster.width / raster.height
            if aspect_ratio > 3.0 or aspect_ratio < 0.33:
                score *= 0.9

        return score


def recommendation_quality_score(features: FeatureVector) -> float:
    """Perceptual score scaled by color complexity, as used for quality selection."""
    color_factor = 0.8 + 0.2 * (features.unique_color_estimate / float(COLOR_CAP))
    return min(features.perceptual_quality_score * color_factor, 1.0)
