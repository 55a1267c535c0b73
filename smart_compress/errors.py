"""Error types raised by the compression pipeline."""

from typing import Optional


class CompressionError(Exception):
    """Base error. Carries the failing stage and the original input size when known."""

    stage: str = 'compression'

    def __init__(self, message: str, stage: Optional[str] = None,
                 input_size: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage
        self.input_size = input_size

    def __str__(self) -> str:
        text = f"[{self.stage}] {self.message}"
        if self.input_size is not None:
            text += f" (input: {self.input_size} bytes)"
        return text


class DecodeError(CompressionError):
    """Input bytes are not a recognizable or intact image. Never retried."""

    stage = 'decode'


class EncodeError(CompressionError):
    """The encoder rejected a plan (unsupported format or internal failure)."""

    stage = 'encode'


class ConstraintError(CompressionError, ValueError):
    """Malformed or contradictory caller constraints."""

    stage = 'constraint'


class ResourceError(CompressionError, ValueError):
    """Buffer or shape mismatch passed to a kernel; a programming error."""

    stage = 'resource'
