"""Content-aware image compression: analyze an image, pick format and quality, encode."""

from smart_compress.codecs import PillowDecoder, PillowEncoder
from smart_compress.errors import (
    CompressionError,
    ConstraintError,
    DecodeError,
    EncodeError,
    ResourceError,
)
from smart_compress.features import FeatureExtractor
from smart_compress.models import (
    ChannelLayout,
    CompressionOutcome,
    CompressionPlan,
    Constraints,
    FeatureVector,
    ImageFormat,
    OptimizeFlags,
    RasterBuffer,
    ResizeSpec,
)
from smart_compress.optimizer import IterativeSizeOptimizer, SearchResult, SearchState
from smart_compress.orchestrator import AnalysisReport, CompressionOrchestrator
from smart_compress.policy import DecisionPolicy
from smart_compress.pool import BatchScheduler, BufferPool, ItemResult
from smart_compress.sizes import parse_target_size

__version__ = '0.1.0'

__all__ = [
    'AnalysisReport',
    'BatchScheduler',
    'BufferPool',
    'ChannelLayout',
    'CompressionError',
    'CompressionOrchestrator',
    'CompressionOutcome',
    'CompressionPlan',
    'ConstraintError',
    'Constraints',
    'DecisionPolicy',
    'DecodeError',
    'EncodeError',
    'FeatureExtractor',
    'FeatureVector',
    'ImageFormat',
    'ItemResult',
    'IterativeSizeOptimizer',
    'OptimizeFlags',
    'PillowDecoder',
    'PillowEncoder',
    'RasterBuffer',
    'ResizeSpec',
    'ResourceError',
    'SearchResult',
    'SearchState',
    'parse_target_size',
]
