"""
Error taxonomy for training and recognition sessions.

Every error aborts the session that raised it. Each class also derives from
the closest builtin exception so callers catching ``ValueError`` or
``OSError`` keep working. Structured context (paths, line numbers,
expected/actual shapes) is kept on the instance instead of being baked into
the message only.
"""

import numpy as np


class FisherfaceError(Exception):
    """Base class for all errors raised by the fisherface package."""

    def __init__(self, message, **context):
        super().__init__(message)
        self.message = message
        self.context = context
        for key, value in context.items():
            setattr(self, key, value)

    def __str__(self):
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value!r}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class ParseError(FisherfaceError, ValueError):
    """Malformed manifest line or malformed model record."""


class ResourceError(FisherfaceError, OSError):
    """Missing or unreadable file or image."""


class CorruptModelError(ResourceError, ParseError):
    """Malformed model record, or persisted counts disagree with the stored arrays."""


class DimensionMismatchError(FisherfaceError, ValueError):
    """Images of differing size, or a matrix shape mismatch."""


class SingularMatrixError(FisherfaceError, np.linalg.LinAlgError):
    """The within-class scatter matrix cannot be inverted."""


class InsufficientClassesError(FisherfaceError, ValueError):
    """Fewer classes than the Fisher projection needs."""


class InvalidArgumentError(FisherfaceError, IndexError):
    """Out-of-range face index or an operation called in the wrong state."""


class AllocationError(FisherfaceError, MemoryError):
    """Working buffers could not be created."""


class ImageSizeMismatchError(DimensionMismatchError, ResourceError):
    """A training image differs in size from the first image of the manifest."""
