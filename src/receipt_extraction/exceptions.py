"""
Pipeline Exceptions
===================
Fatal errors raised by the receipt extraction stages.

Only OCR and sanitization failures stop a request. Low-confidence template
detection, incomplete extraction and reconciliation mismatches are not
exceptions: they travel as warning strings in the response.
"""

from typing import Optional


class ReceiptPipelineError(Exception):
    """Base exception for the receipt extraction pipeline."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.component = component
        self.original_error = original_error
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.component:
            msg += f" (Component: {self.component})"
        if self.original_error:
            msg += f" [Original: {type(self.original_error).__name__}: {self.original_error}]"
        return msg


class OcrServiceError(ReceiptPipelineError):
    """
    The OCR provider failed.

    ``transient`` marks failures worth retrying (timeouts, unavailable
    service). Permanent failures (bad image, quota, credentials) are
    surfaced on the first attempt.
    """

    def __init__(
        self,
        message: str,
        transient: bool = False,
        component: Optional[str] = "VisionAdapter",
        original_error: Optional[Exception] = None,
    ):
        self.transient = transient
        super().__init__(message, component, original_error)


class SanitizationError(ReceiptPipelineError):
    """Input text could not be decoded."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message, "Sanitizer", original_error)


class TemplateRegistryError(ReceiptPipelineError):
    """A template definition is invalid (duplicate id, empty anchors, bad weight)."""

    def __init__(self, message: str):
        super().__init__(message, "TemplateRegistry")


class ConfigurationError(ReceiptPipelineError):
    """The configuration file exists but cannot be read."""
