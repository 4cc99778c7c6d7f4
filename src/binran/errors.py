"""
Failure taxonomy for handbook materialization.

Only terminal failures reach callers: an unknown key, or a document that could
not be produced at all (`DocumentUnavailableError` and its subclasses).
Page-level and store-level failures are absorbed by the components that raise
them and only show up in the logs.
"""
from __future__ import annotations


class HandbookError(Exception):
    """Base class for every error raised by this package."""


class CatalogConfigError(HandbookError, ValueError):
    """The catalog table or file contains an invalid entry."""


class UnknownKeyError(HandbookError, LookupError):
    """A handbook or department key has no catalog entry."""

    def __init__(self, key: str, kind: str = "handbook"):
        self.key = key
        self.kind = kind
        super().__init__(f"unknown {kind} key: {key!r}")


class DocumentUnavailableError(HandbookError):
    """The handbook text could not be produced for this request."""


class SourceNotFoundError(DocumentUnavailableError):
    def __init__(self, path):
        self.path = path
        super().__init__(f"source document not found: {path}")


class ExtractionError(DocumentUnavailableError):
    """External extraction tooling failed."""


class MetadataUnavailableError(ExtractionError):
    """The page count could not be obtained, or it was zero."""


class ToolNotInstalledError(MetadataUnavailableError):
    """An extraction tool is not installed or cannot be launched (distinct from a failing page)."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"extraction tool is not available: {tool}")


class PageExtractionError(ExtractionError):
    """A single page could not be extracted."""

    def __init__(self, page: int, detail: str = ""):
        self.page = page
        self.detail = detail
        message = f"text extraction failed for page {page}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class StoreError(HandbookError):
    """Durable text storage failed."""


class StoreReadError(StoreError):
    pass


class StoreWriteError(StoreError):
    pass
