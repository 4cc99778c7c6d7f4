# /binran/service.py
"""
Handbook materialization service.

Resolves a key through the catalog, then serves the text from the in-memory
cache; on a miss it reads the durable store, and only when that has nothing
it extracts and labels the PDF and writes the result back to the store.
"""
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from .cache import DocumentCache, EntryState
from .catalog import CatalogEntry, CatalogRegistry, load_catalog
from .config import CONVERT_MAX_WORKERS
from .document_store import DocumentStore, LocalDocumentStore
from .errors import (
    HandbookError,
    SourceNotFoundError,
    StoreReadError,
    StoreWriteError,
)
from .extractor import ExtractionResult, PageExtractor
from .labeler import PageBlock, find_logical_page, label
from .observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConversionReport:
    key: str
    status: str  # cached | stored | materialized | failed
    characters: int = 0
    error: str | None = None


class HandbookService:
    def __init__(
        self,
        catalog: CatalogRegistry,
        *,
        store: DocumentStore | None = None,
        extractor: PageExtractor | None = None,
        cache: DocumentCache | None = None,
    ):
        self.catalog = catalog
        self.store: DocumentStore = store if store is not None else LocalDocumentStore()
        self.extractor = extractor if extractor is not None else PageExtractor()
        self.cache = cache if cache is not None else DocumentCache()

    # --- Read path ---

    def get_text(self, key: str) -> str:
        """Returns the labeled handbook text for key, materializing it at most once."""
        entry = self.catalog.lookup(key)
        return self.cache.get_or_load(entry.key, lambda: self._load(entry))

    def get_page(self, key: str, logical_page: int) -> PageBlock | None:
        return find_logical_page(self.get_text(key), logical_page)

    def _load(self, entry: CatalogEntry) -> str:
        stored = self._read_stored(entry)
        if stored is not None:
            logger.info(
                "handbook_loaded_from_store",
                key=entry.key,
                name=entry.name,
                characters=len(stored),
            )
            return stored

        text, result = self.build_text(entry)
        self._persist(entry, text)
        logger.info(
            "handbook_materialized",
            key=entry.key,
            name=entry.name,
            pages=result.total_pages,
            failed_pages=result.failed_pages,
            characters=len(text),
        )
        return text

    def _read_stored(self, entry: CatalogEntry) -> str | None:
        try:
            return self.store.read(entry.key)
        except StoreReadError as exc:
            # An unreadable copy is treated as missing and re-derived.
            logger.warning("store_read_failed", key=entry.key, error=str(exc))
            return None

    def _persist(self, entry: CatalogEntry, text: str) -> bool:
        try:
            self.store.write(entry.key, text)
        except StoreWriteError as exc:
            logger.warning("store_write_failed", key=entry.key, error=str(exc))
            return False
        return True

    # --- Materialization ---

    def build_text(self, entry: CatalogEntry) -> tuple[str, ExtractionResult]:
        """Extracts and labels the source PDF of entry; does not touch store or cache."""
        if not entry.source_path.is_file():
            raise SourceNotFoundError(entry.source_path)

        start = time.perf_counter()
        logger.info(
            "pdf_extraction_started",
            key=entry.key,
            source=str(entry.source_path),
            page_offset=entry.page_offset,
        )
        result = self.extractor.extract(entry.source_path)
        text = label(result.pages, entry.page_offset)
        logger.info(
            "pdf_extraction_finished",
            key=entry.key,
            pages=result.total_pages,
            elapsed_ms=round((time.perf_counter() - start) * 1000.0, 1),
        )
        return text, result

    def _convert_one(self, entry: CatalogEntry) -> ConversionReport:
        if self.cache.state(entry.key) == EntryState.PRESENT:
            return ConversionReport(entry.key, "cached", len(self.cache.peek(entry.key) or ""))
        # Read-only existence check outside the load lock; a stored copy is
        # left for get_text, which re-reads it under the key's load lock.
        if self.store.has(entry.key):
            return ConversionReport(entry.key, "stored")
        text = self.get_text(entry.key)
        return ConversionReport(entry.key, "materialized", len(text))

    def materialize_all(self, *, max_workers: int = CONVERT_MAX_WORKERS) -> list[ConversionReport]:
        """
        Materializes every catalog entry concurrently and returns one report
        per entry in catalog order. Entries already in memory or on disk are
        skipped.
        """
        entries = list(self.catalog)
        if not entries:
            return []

        reports: dict[str, ConversionReport] = {}
        workers = min(max(1, int(max_workers)), len(entries))
        logger.info("bulk_conversion_started", entries=len(entries), workers=workers)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            future_map = {pool.submit(self._convert_one, entry): entry for entry in entries}
            for future in as_completed(future_map):
                entry = future_map[future]
                try:
                    reports[entry.key] = future.result()
                except HandbookError as exc:
                    logger.error("bulk_conversion_failed", key=entry.key, error=str(exc))
                    reports[entry.key] = ConversionReport(entry.key, "failed", error=str(exc))
                except Exception as exc:
                    # Unexpected errors are still reported per entry.
                    logger.exception("bulk_conversion_crashed", key=entry.key, error_type=type(exc).__name__)
                    reports[entry.key] = ConversionReport(entry.key, "failed", error=f"{type(exc).__name__}: {exc}")

        ordered = [reports[entry.key] for entry in entries]
        logger.info(
            "bulk_conversion_finished",
            materialized=sum(1 for r in ordered if r.status == "materialized"),
            failed=sum(1 for r in ordered if r.status == "failed"),
        )
        return ordered

    # --- Introspection ---

    def describe(self) -> list[dict[str, Any]]:
        rows = []
        for entry in self.catalog:
            rows.append(
                {
                    "key": entry.key,
                    "name": entry.name,
                    "page_offset": entry.page_offset,
                    "source": str(entry.source_path),
                    "departments": {dept.key: dept.name for dept in entry.departments},
                    "state": self.cache.state(entry.key).value,
                    "stored": self.store.has(entry.key),
                }
            )
        return rows


def build_service(catalog: CatalogRegistry | None = None) -> HandbookService:
    """Builds the service from configuration."""
    return HandbookService(catalog if catalog is not None else load_catalog())
