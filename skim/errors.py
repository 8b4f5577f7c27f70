"""
Error taxonomy.

SkimError subclasses are surfaced to callers; the HTTP layer renders them via
status_code/code. MetadataUnavailable and UnresolvableIdentifier are internal
conditions the pipeline always converts into a decision (fall back or fail).
"""

from __future__ import annotations

from typing import Optional


class SkimError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage


# Input errors
class BadRequest(SkimError):
    status_code = 400
    code = "bad_request"


class BadIdentifier(SkimError):
    status_code = 400
    code = "bad_identifier"


class NoPdfFound(SkimError):
    status_code = 400
    code = "no_pdf_found"


class BadUpload(SkimError):
    status_code = 400
    code = "bad_upload"

    def __init__(self, message: str, stage: Optional[str] = None, too_large: bool = False):
        super().__init__(message, stage)
        if too_large:
            self.status_code = 413


class NotFound(SkimError):
    status_code = 404
    code = "not_found"


class NoContent(SkimError):
    status_code = 400
    code = "no_content"


class AlreadyExists(SkimError):
    status_code = 409
    code = "already_exists"

    def __init__(self, paper_id: str):
        super().__init__("Paper already added", stage="saving")
        self.paper_id = paper_id


# Upstream unavailable
class AcquisitionFailed(SkimError):
    status_code = 502
    code = "acquisition_failed"


class UpstreamError(SkimError):
    status_code = 502
    code = "upstream_error"


# Content quality
class ExtractionFailed(SkimError):
    status_code = 422
    code = "extraction_failed"


class InsufficientText(SkimError):
    status_code = 422
    code = "insufficient_text"


class MetadataUnavailable(Exception):
    """A metadata provider could not produce a record (network, HTTP, parse or not found)."""


class UnresolvableIdentifier(Exception):
    """The URL belongs to a known provider but no identifier pattern matched."""

    def __init__(self, message: str, kind=None):
        super().__init__(message)
        self.kind = kind
