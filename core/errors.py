"""
core/errors.py — Exception taxonomy for the calibration service.

Fatal conditions only. Per-candidate problems (rejected candidates, spans
that cannot be located) are recorded as data on the pipeline state and never
raised.
"""

from __future__ import annotations


class SmartMatchError(Exception):
    """Base class for every error raised by this project."""


class DataUnavailable(SmartMatchError):
    """The reference dataset could not be loaded (unreachable, malformed or empty)."""


class IndexNotReady(DataUnavailable):
    """A lookup was attempted before the reference index finished loading."""


class NotConfigured(SmartMatchError):
    """No text-generation credentials are configured."""


class MalformedGenerationOutput(SmartMatchError):
    """The generation service returned text that does not parse as JSON."""

    def __init__(self, message: str, raw_output: str = "") -> None:
        super().__init__(message)
        self.raw_output = raw_output


class GenerationError(SmartMatchError):
    """The text-generation call failed."""


class GenerationTimeout(GenerationError):
    """The text-generation call did not complete within its timeout."""


class GenerationNetworkError(GenerationError):
    """The text-generation endpoint could not be reached."""


class GenerationAuthError(GenerationError):
    """The text-generation endpoint rejected the credentials."""
