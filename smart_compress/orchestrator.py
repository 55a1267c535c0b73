"""
End-to-end pipeline: decode, resize, analyze, decide, encode.
"""

import logging
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from smart_compress.codecs import Decoder, Encoder, PillowDecoder, PillowEncoder
from smart_compress.errors import CompressionError, ConstraintError, EncodeError
from smart_compress.features import FeatureExtractor
from smart_compress.logger import get_logger
from smart_compress.models import (
    ChannelLayout,
    CompressionOutcome,
    CompressionPlan,
    Constraints,
    FeatureVector,
    ImageFormat,
    RasterBuffer,
)
from smart_compress.optimizer import IterativeSizeOptimizer
from smart_compress.policy import DecisionPolicy, overall_complexity
from smart_compress.pool import BatchScheduler, ItemResult
from smart_compress.resize import apply_resize

# Tried in order when the chosen format cannot be encoded at all
FALLBACK_FORMATS = (ImageFormat.WEBP, ImageFormat.PNG)


@dataclass(frozen=True)
class AnalysisReport:
    """What the pipeline would do with an image, without encoding it."""

    width: int
    height: int
    source_format: Optional[str]
    layout: ChannelLayout
    has_alpha: bool
    features: FeatureVector
    complexity: float
    plan: CompressionPlan
    estimated_savings: float


def _with_context(error: CompressionError, input_size: int) -> CompressionError:
    """Same error type and stage, tagged with the original input size."""
    return type(error)(error.message, stage=error.stage, input_size=input_size)


class CompressionOrchestrator:
    """
    Compress encoded images with automatically chosen format and quality.

    Collaborators are injectable; the defaults use Pillow for decoding and
    encoding.
    """

    def __init__(self, decoder: Optional[Decoder] = None, encoder: Optional[Encoder] = None,
                 extractor: Optional[FeatureExtractor] = None,
                 policy: Optional[DecisionPolicy] = None,
                 optimizer: Optional[IterativeSizeOptimizer] = None,
                 logger: Optional[logging.Logger] = None):
        self.decoder = decoder or PillowDecoder()
        self.encoder = encoder or PillowEncoder()
        self.extractor = extractor or FeatureExtractor()
        self.policy = policy or DecisionPolicy()
        self.optimizer = optimizer or IterativeSizeOptimizer(self.encoder, self.policy)
        self.logger = logger or get_logger(__name__)

    def _prepare(self, data: bytes, constraints: Optional[Constraints]):
        raster = self.decoder.decode(data)
        raster = apply_resize(raster, constraints)
        features = self.extractor.extract(raster)
        return raster, features

    def analyze(self, data: bytes, constraints: Optional[Constraints] = None) -> AnalysisReport:
        """
        Analyze an image and report the plan ``compress`` would use.

        Raises:
            DecodeError: ``data`` is not a readable image.
        """
        try:
            raster, features = self._prepare(data, constraints)
        except CompressionError as e:
            raise _with_context(e, len(data)) from e

        has_alpha = raster.has_transparency()
        plan = self.policy.plan(features, has_alpha, raster.pixel_count, constraints)
        # probing is optional for custom decoders
        probe = getattr(self.decoder, 'probe_format', None)
        source_format = probe(data) if probe is not None else None

        return AnalysisReport(
            width=raster.width,
            height=raster.height,
            source_format=source_format,
            layout=raster.layout,
            has_alpha=has_alpha,
            features=features,
            complexity=overall_complexity(features),
            plan=plan,
            estimated_savings=self.policy.estimate_savings(plan.format, plan.quality),
        )

    def compress(self, data: bytes, constraints: Optional[Constraints] = None) -> CompressionOutcome:
        """
        Compress one encoded image.

        Args:
            data: Encoded input image.
            constraints: Optional size, quality, geometry and format limits.

        Returns:
            CompressionOutcome of the chosen encoding.

        Raises:
            DecodeError: Input is not a readable image.
            EncodeError: No plan produced output.
            ConstraintError: Constraints could not be honored.
        """
        input_size = len(data)
        started = time.perf_counter()

        try:
            raster, features = self._prepare(data, constraints)
            has_alpha = raster.has_transparency()
            fmt = self.policy.select_format(features, has_alpha, raster.pixel_count, constraints)
            outcome = self._encode_with_fallback(raster, features, fmt, has_alpha,
                                                 constraints, input_size)
        except CompressionError as e:
            raise _with_context(e, input_size) from e

        elapsed = time.perf_counter() - started
        self.logger.info(
            f"Compressed {input_size} -> {outcome.size_bytes} bytes as {outcome.format.value} "
            f"q={outcome.quality} in {elapsed:.3f}s"
        )
        return outcome

    def _encode_with_fallback(self, raster: RasterBuffer, features: FeatureVector,
                              fmt: ImageFormat, has_alpha: bool,
                              constraints: Optional[Constraints],
                              input_size: int) -> CompressionOutcome:
        """Encode as ``fmt``; if that format fails entirely, try the fallback formats in order."""
        candidates = [fmt] + [f for f in FALLBACK_FORMATS if f is not fmt]
        last_error: Optional[EncodeError] = None

        for candidate in candidates:
            try:
                if constraints is not None and constraints.target_size_bytes is not None:
                    return self._search(raster, features, candidate, constraints, input_size)
                return self._encode_plan(raster, features, candidate, has_alpha,
                                         constraints, input_size)
            except EncodeError as e:
                last_error = e
                self.logger.warning(f"Encoding as {candidate.value} failed: {e}")

        raise last_error

    def _search(self, raster: RasterBuffer, features: FeatureVector, fmt: ImageFormat,
                constraints: Constraints, input_size: int) -> CompressionOutcome:
        search = self.optimizer.search(
            raster, fmt, features, constraints,
            target_bytes=constraints.target_size_bytes,
            original_size=input_size,
        )
        self.logger.info(
            f"Size search {search.state.value} after {search.attempts} attempts "
            f"(qualities {search.qualities})"
        )
        return search.outcome

    def _encode_plan(self, raster: RasterBuffer, features: FeatureVector, fmt: ImageFormat,
                     has_alpha: bool, constraints: Optional[Constraints],
                     input_size: int) -> CompressionOutcome:
        plan = self.policy.plan_for_format(fmt, features, has_alpha, raster.pixel_count,
                                           constraints)
        started = time.perf_counter()
        encoded = self.encoder.encode(raster, plan.format, plan)
        if not encoded:
            raise EncodeError(f"Encoder produced no data for {plan.format.value}")

        return CompressionOutcome(
            data=encoded,
            format=plan.format,
            size_bytes=len(encoded),
            compression_ratio=len(encoded) / input_size if input_size else 0.0,
            elapsed=time.perf_counter() - started,
            quality=plan.quality,
            width=raster.width,
            height=raster.height,
        )

    def compress_batch(self, inputs: Iterable[bytes], constraints: Optional[Constraints] = None,
                       max_workers: Optional[int] = None) -> List[ItemResult]:
        """
        Compress independent images concurrently.

        Returns:
            One ItemResult per input, in input order; failures do not stop the batch.
        """
        if constraints is not None and not isinstance(constraints, Constraints):
            raise ConstraintError(f"Expected Constraints, got {type(constraints).__name__}")

        scheduler = BatchScheduler(max_workers=max_workers, logger=self.logger)
        return scheduler.process_batch(inputs, lambda data: self.compress(data, constraints))
