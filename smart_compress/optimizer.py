"""
Target-size search: re-encode at decreasing quality until the output fits.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from smart_compress.codecs import Encoder
from smart_compress.errors import ConstraintError, EncodeError
from smart_compress.logger import get_logger
from smart_compress.models import (
    MAX_SEARCH_QUALITY,
    CompressionOutcome,
    Constraints,
    FeatureVector,
    ImageFormat,
    RasterBuffer,
)
from smart_compress.policy import DecisionPolicy

MAX_ITERATIONS = 10
QUALITY_STEP = 0.85
START_QUALITY = MAX_SEARCH_QUALITY
DEFAULT_QUALITY_FLOOR = 30


class SearchState(Enum):
    SEARCHING = 'searching'
    FOUND = 'found'
    EXHAUSTED = 'exhausted'


@dataclass
class SearchResult:
    """Where the search ended, the outcome it returns and what it tried."""

    state: SearchState
    outcome: Optional[CompressionOutcome] = None
    attempts: int = 0
    qualities: List[int] = field(default_factory=list)


class IterativeSizeOptimizer:
    """
    Bounded linear search over quality for a fixed format.

    Starts at ``min(min_quality or 95, 95)`` and multiplies the quality by
    0.85 after each oversized attempt. The first attempt that fits the target
    wins. Stops below the quality floor (``min_quality``, default 30) or after
    10 attempts, returning the last oversized outcome.
    """

    def __init__(self, encoder: Encoder, policy: Optional[DecisionPolicy] = None,
                 logger: Optional[logging.Logger] = None,
                 max_iterations: int = MAX_ITERATIONS):
        self.encoder = encoder
        self.policy = policy or DecisionPolicy()
        self.logger = logger or get_logger(__name__)
        self.max_iterations = max_iterations

    def search(self, raster: RasterBuffer, fmt: ImageFormat, features: FeatureVector,
               constraints: Optional[Constraints], target_bytes: int,
               original_size: int = 0) -> SearchResult:
        """
        Find an encoding of ``raster`` no larger than ``target_bytes``.

        Args:
            raster: Pixels to encode (already resized).
            fmt: Output format; never changed by the search.
            features: Features of ``raster``, used for the optimize flags.
            constraints: Caller limits; only ``min_quality`` is used here.
            target_bytes: Size budget for the encoded output.
            original_size: Input size in bytes, for the compression ratio.

        Returns:
            SearchResult in state FOUND or EXHAUSTED.

        Raises:
            EncodeError: Every attempt failed to encode.
            ConstraintError: ``min_quality`` is above the start quality.
        """
        min_quality = constraints.min_quality if constraints else None
        quality = min(min_quality or START_QUALITY, START_QUALITY)
        floor = min_quality or DEFAULT_QUALITY_FLOOR
        if floor > quality:
            raise ConstraintError(
                f"min_quality {min_quality} is above the size search start quality {quality}"
            )

        base_plan = self.policy.plan_for_format(fmt, features, raster.has_transparency(),
                                                raster.pixel_count, constraints)
        result = SearchResult(state=SearchState.SEARCHING)
        self.logger.info(f"Iterative compression target: {target_bytes} bytes ({fmt.value})")

        while quality >= floor and result.attempts < self.max_iterations:
            plan = self.policy.plan_for_quality(base_plan, quality)
            result.attempts += 1
            result.qualities.append(plan.quality)

            started = time.perf_counter()
            try:
                data = self.encoder.encode(raster, fmt, plan)
            except EncodeError as e:
                self.logger.warning(f"Compression failed at quality {quality}: {e}")
            else:
                outcome = CompressionOutcome(
                    data=data,
                    format=fmt,
                    size_bytes=len(data),
                    compression_ratio=len(data) / original_size if original_size else 0.0,
                    elapsed=time.perf_counter() - started,
                    quality=plan.quality,
                    width=raster.width,
                    height=raster.height,
                )
                self.logger.debug(
                    f"Iteration {result.attempts}: quality={quality}, "
                    f"size={outcome.size_bytes} bytes (target: {target_bytes})"
                )
                result.outcome = outcome
                if outcome.size_bytes <= target_bytes:
                    result.state = SearchState.FOUND
                    return result

            quality = int(quality * QUALITY_STEP)

        result.state = SearchState.EXHAUSTED
        if result.outcome is None:
            raise EncodeError('Could not compress to target size within quality constraints')

        self.logger.info(
            f"Target {target_bytes} bytes not reached after {result.attempts} attempts; "
            f"keeping {result.outcome.size_bytes} bytes at quality {result.outcome.quality}"
        )
        return result
