"""
Custom exceptions for picamera-live.
"""


class StreamError(Exception):
    """Base exception for all picamera-live errors."""
    pass


class ConfigurationError(StreamError):
    """Raised when configuration is invalid or missing."""
    pass


class StorageError(StreamError):
    """Raised when segment directory or file operations fail."""
    pass


class SegmentIntegrityError(StorageError):
    """Raised when a copied segment does not match its source size."""

    def __init__(self, message: str, expected: int, copied: int):
        super().__init__(message)
        self.expected = expected
        self.copied = copied


class SegmentNameError(StreamError):
    """Raised when a file name does not follow the segment naming scheme."""
    pass


class CaptureError(StreamError):
    """Raised when capture or conversion operations fail."""
    pass


class ConversionError(CaptureError):
    """Raised when remuxing a raw chunk with FFmpeg fails."""
    pass


class CaptureProcessError(CaptureError):
    """Raised when the capture process fails to launch or exits unexpectedly."""

    def __init__(self, message: str, exit_code=None):
        super().__init__(message)
        self.exit_code = exit_code


class CertificateError(StreamError):
    """Raised when TLS key or certificate provisioning fails."""
    pass
