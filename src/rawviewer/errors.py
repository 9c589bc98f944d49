"""Exception hierarchy for upload validation, decoding, and envelope handling."""

from __future__ import annotations


class RawViewerError(Exception):
    """Base class for all service errors."""


class ClientInputError(RawViewerError):
    """Raised when an upload request is oversized, unreadable, or malformed."""


class DecodeError(RawViewerError):
    """Raised when an uploaded file cannot be turned into a usable image."""


class EmptyInputError(DecodeError):
    """Raised when the decoder is handed zero bytes."""


class DecodeFailedError(DecodeError):
    """Raised when the RAW engine rejects the file or returns nothing usable."""


class UnsupportedChannelLayoutError(DecodeError):
    """Raised when the engine output is neither RGB nor RGBA."""


class EncodingError(RawViewerError):
    """Raised when a decode envelope cannot be built."""


class InvalidGeometryError(EncodingError):
    """Raised for non-positive dimensions or a channel count outside 1-4."""


class InvalidSampleFormatError(EncodingError):
    """Raised for a bits-per-sample value other than 8 or 16."""


class MalformedEnvelopeError(RawViewerError):
    """Raised when a byte buffer is not a well-formed decode envelope."""
