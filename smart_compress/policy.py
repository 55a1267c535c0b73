"""
Format and quality decisions.

Format selection walks an ordered table of (predicate, format) rows, one
table for images with transparency and one for opaque images; the first
matching row wins. Quality comes from a per-format table of complexity bands,
scaled by the perceptual score.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from smart_compress.features import recommendation_quality_score
from smart_compress.logger import get_logger
from smart_compress.models import (
    COLOR_CAP,
    CompressionPlan,
    Constraints,
    FeatureVector,
    ImageFormat,
    OptimizeFlags,
)

# edge density, texture, color variance, high-frequency ratio
COMPLEXITY_WEIGHTS = (0.3, 0.25, 0.25, 0.2)

LOSSLESS_QUALITY = 100


def overall_complexity(features: FeatureVector) -> float:
    """Weighted blend of the individual complexity measures, capped at 1.0."""
    values = (
        features.edge_density,
        features.texture_complexity,
        features.color_variance,
        features.high_frequency_ratio,
    )
    return min(sum(w * v for w, v in zip(COMPLEXITY_WEIGHTS, values)), 1.0)


@dataclass(frozen=True)
class DecisionInputs:
    """Everything a rule may look at."""

    features: FeatureVector
    has_alpha: bool
    pixel_count: int
    complexity: float

    @property
    def texture(self) -> float:
        return self.features.texture_complexity

    @property
    def colors(self) -> int:
        return self.features.unique_color_estimate


Predicate = Callable[[DecisionInputs], bool]


@dataclass(frozen=True)
class FormatRule:
    description: str
    applies: Predicate
    format: ImageFormat


@dataclass(frozen=True)
class QualityStep:
    applies: Predicate
    quality: int


def _always(_: DecisionInputs) -> bool:
    return True


ALPHA_RULES: Tuple[FormatRule, ...] = (
    FormatRule('very complex, textured and large',
               lambda d: d.complexity > 0.7 and d.texture > 0.6 and d.pixel_count > 1_000_000,
               ImageFormat.AVIF),
    FormatRule('moderately complex and large',
               lambda d: d.complexity > 0.4 and d.pixel_count > 500_000,
               ImageFormat.WEBP),
    FormatRule('few colors', lambda d: d.colors < 256, ImageFormat.PNG),
    FormatRule('textured', lambda d: d.texture > 0.5, ImageFormat.WEBP),
    FormatRule('simple', _always, ImageFormat.PNG),
)

OPAQUE_RULES: Tuple[FormatRule, ...] = (
    FormatRule('very complex and very large',
               lambda d: d.complexity > 0.8 and d.pixel_count > 2_000_000,
               ImageFormat.AVIF),
    FormatRule('textured photographic content',
               lambda d: d.texture > 0.7 and d.complexity > 0.6,
               ImageFormat.JPEG),
    FormatRule('few colors and simple',
               lambda d: d.colors < 256 and d.complexity < 0.3,
               ImageFormat.PNG),
    FormatRule('complex and large',
               lambda d: d.complexity > 0.5 and d.pixel_count > 1_000_000,
               ImageFormat.AVIF),
    FormatRule('moderately complex', lambda d: d.complexity > 0.4, ImageFormat.WEBP),
    FormatRule('very large', lambda d: d.pixel_count > 1_500_000, ImageFormat.AVIF),
    FormatRule('default', _always, ImageFormat.WEBP),
)

QUALITY_TABLES: Dict[ImageFormat, Tuple[QualityStep, ...]] = {
    ImageFormat.JPEG: (
        QualityStep(lambda d: d.texture > 0.8, 88),
        QualityStep(lambda d: d.complexity > 0.7, 85),
        QualityStep(lambda d: d.complexity > 0.4, 80),
        QualityStep(_always, 75),
    ),
    ImageFormat.WEBP: (
        QualityStep(lambda d: d.complexity > 0.7 and d.texture > 0.6, 87),
        QualityStep(lambda d: d.complexity > 0.6, 82),
        QualityStep(lambda d: d.complexity > 0.3, 78),
        QualityStep(_always, 75),
    ),
    ImageFormat.AVIF: (
        QualityStep(lambda d: d.complexity > 0.8, 92),
        QualityStep(lambda d: d.complexity > 0.6, 88),
        QualityStep(lambda d: d.complexity > 0.4, 85),
        QualityStep(_always, 82),
    ),
}

# Whether a caller-preferred format is acceptable for this image
SUITABILITY: Dict[ImageFormat, Predicate] = {
    ImageFormat.PNG: lambda d: d.colors < COLOR_CAP or d.features.edge_density > 0.3,
    ImageFormat.JPEG: lambda d: not d.has_alpha and d.features.high_frequency_ratio > 0.3,
    ImageFormat.WEBP: _always,
    ImageFormat.AVIF: lambda d: d.complexity > 0.4 or d.pixel_count > 500_000,
}

# Expected compressed/uncompressed ratio for quality >= 90, >= 80, >= 70, below
_SIZE_RATIOS: Dict[ImageFormat, Tuple[float, float, float, float]] = {
    ImageFormat.JPEG: (0.15, 0.10, 0.08, 0.06),
    ImageFormat.WEBP: (0.12, 0.08, 0.06, 0.04),
    ImageFormat.AVIF: (0.08, 0.05, 0.04, 0.03),
}
_PNG_RATIO = 0.25


class DecisionPolicy:
    """Stateless mapping from image features and constraints to a CompressionPlan."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger(__name__)

    @staticmethod
    def inputs(features: FeatureVector, has_alpha: bool, pixel_count: int) -> DecisionInputs:
        return DecisionInputs(
            features=features,
            has_alpha=has_alpha,
            pixel_count=pixel_count,
            complexity=overall_complexity(features),
        )

    @staticmethod
    def is_format_suitable(fmt: ImageFormat, inputs: DecisionInputs) -> bool:
        return SUITABILITY[fmt](inputs)

    def select_format(self, features: FeatureVector, has_alpha: bool, pixel_count: int,
                      constraints: Optional[Constraints] = None) -> ImageFormat:
        """
        Pick the output format.

        The first caller-preferred format that suits the image wins; otherwise
        the alpha or opaque rule table decides.
        """
        inputs = self.inputs(features, has_alpha, pixel_count)

        preferred = constraints.preferred_formats if constraints else None
        for fmt in preferred or ():
            if self.is_format_suitable(fmt, inputs):
                self.logger.debug(f"Using preferred format '{fmt.value}'")
                return fmt

        rules = ALPHA_RULES if has_alpha else OPAQUE_RULES
        for rule in rules:
            if rule.applies(inputs):
                self.logger.info(
                    f"Selected format '{rule.format.value}' ({rule.description}): "
                    f"complexity={inputs.complexity:.3f}, edges={features.edge_density:.3f}, "
                    f"texture={features.texture_complexity:.3f}, "
                    f"colors={features.unique_color_estimate}"
                )
                return rule.format

        # the last row of each table always matches
        raise AssertionError('format rule tables must end with a catch-all row')

    @staticmethod
    def base_quality(fmt: ImageFormat, inputs: DecisionInputs) -> int:
        if fmt.is_lossless:
            return LOSSLESS_QUALITY
        for step in QUALITY_TABLES[fmt]:
            if step.applies(inputs):
                return step.quality
        return 80

    def select_quality(self, fmt: ImageFormat, features: FeatureVector, has_alpha: bool,
                       pixel_count: int, constraints: Optional[Constraints] = None) -> int:
        """
        Quality for ``fmt``: base quality scaled by the perceptual score.

        Clamped to 50..100 and raised to the caller's ``min_quality``.
        Lossless formats always get 100.
        """
        if fmt.is_lossless:
            return LOSSLESS_QUALITY

        inputs = self.inputs(features, has_alpha, pixel_count)
        base = self.base_quality(fmt, inputs)
        adjustment = 0.85 + recommendation_quality_score(features) * 0.15
        quality = int(base * adjustment)

        quality = min(max(quality, 50), 100)

        if constraints is not None and constraints.min_quality is not None:
            quality = max(quality, constraints.min_quality)
        return quality

    @staticmethod
    def optimize_flags(fmt: ImageFormat, features: FeatureVector,
                       lossless: bool = False) -> OptimizeFlags:
        return OptimizeFlags(
            reduce_colors=features.unique_color_estimate < COLOR_CAP,
            progressive=overall_complexity(features) > 0.5,
            lossless=fmt.is_lossless or lossless,
        )

    def plan(self, features: FeatureVector, has_alpha: bool, pixel_count: int,
             constraints: Optional[Constraints] = None) -> CompressionPlan:
        """Single deterministic plan for one image."""
        fmt = self.select_format(features, has_alpha, pixel_count, constraints)
        return self.plan_for_format(fmt, features, has_alpha, pixel_count, constraints)

    def plan_for_format(self, fmt: ImageFormat, features: FeatureVector, has_alpha: bool,
                        pixel_count: int,
                        constraints: Optional[Constraints] = None) -> CompressionPlan:
        """Quality and flags for an already chosen format."""
        quality = self.select_quality(fmt, features, has_alpha, pixel_count, constraints)
        min_quality = constraints.min_quality if constraints and constraints.min_quality else 0

        plan = CompressionPlan(
            format=fmt,
            quality=quality,
            optimize_flags=self.optimize_flags(fmt, features, lossless=min_quality >= 95),
        )
        self.logger.debug(f"Plan: {plan}")
        return plan

    @staticmethod
    def plan_for_quality(plan: CompressionPlan, quality: int) -> CompressionPlan:
        """``plan`` revised for one size-search step; very high qualities switch to lossless."""
        quality = min(max(int(quality), 1), 100)
        return plan.with_quality(quality, lossless=plan.format.is_lossless or quality >= 95)

    @staticmethod
    def estimate_savings(fmt: ImageFormat, quality: int) -> float:
        """Rough fraction of the uncompressed size saved by ``fmt`` at ``quality``."""
        if fmt.is_lossless:
            return 1.0 - _PNG_RATIO

        high, good, fair, low = _SIZE_RATIOS[fmt]
        if quality >= 90:
            ratio = high
        elif quality >= 80:
            ratio = good
        elif quality >= 70:
            ratio = fair
        else:
            ratio = low
        return 1.0 - ratio
