"""
Typed failures raised by the matting pipeline.

Every error is reported synchronously to the immediate caller; nothing here is
retried internally.
"""


class MattingError(Exception):
    """Base class for all pipeline errors."""


class InvalidImageError(MattingError, ValueError):
    """Undecodable input or an image with a zero dimension."""


class UnsupportedFormatError(MattingError, ValueError):
    """Unexpected channel count or pixel format."""


class ModelNotFoundError(MattingError, FileNotFoundError):
    """The segmentation model file does not exist."""


class ModelContractError(MattingError, RuntimeError):
    """The model's tensor contract does not match what the pipeline sends or receives."""


class InvalidGridGeometryError(MattingError, ValueError):
    """Rows/cols/canvas size are inconsistent with each other."""
