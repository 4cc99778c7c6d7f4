"""
Page-by-page text extraction from handbook PDFs.

Extraction goes through a small `PdfTools` capability so the subprocess-based
Poppler backend, the in-process PyMuPDF backend and test fakes are
interchangeable.
"""
from __future__ import annotations

import re
import subprocess
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

try:
    import fitz
except ImportError:
    fitz = None

from .config import (
    EXTRACT_PAGE_WORKERS,
    EXTRACTION_BACKEND,
    PDFINFO_BIN,
    PDFTOTEXT_BIN,
    PDFTOTEXT_LAYOUT,
)
from .errors import (
    MetadataUnavailableError,
    PageExtractionError,
    ToolNotInstalledError,
)
from .observability import get_logger

PAGES_FIELD_RE = re.compile(r"^Pages:\s*(\d+)\s*$", re.MULTILINE)
logger = get_logger(__name__)


class PdfTools(Protocol):
    def get_page_count(self, source_path: Path) -> int:
        ...

    def extract_page_range(self, source_path: Path, first_page: int, last_page: int) -> str:
        ...


def parse_page_count(report: str) -> int:
    """Reads the `Pages:` field of a pdfinfo report; 0 when absent."""
    match = PAGES_FIELD_RE.search(str(report or ""))
    if not match:
        return 0
    return int(match.group(1))


class PopplerTools:
    """Runs `pdfinfo` / `pdftotext` as one subprocess per call."""

    def __init__(
        self,
        pdfinfo_bin: str = PDFINFO_BIN,
        pdftotext_bin: str = PDFTOTEXT_BIN,
        layout: bool = PDFTOTEXT_LAYOUT,
    ):
        self.pdfinfo_bin = str(pdfinfo_bin)
        self.pdftotext_bin = str(pdftotext_bin)
        self.layout = bool(layout)

    @staticmethod
    def _run(args: list[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(args, capture_output=True, check=False)
        except OSError as exc:
            # Missing, non-executable or otherwise unlaunchable binaries.
            raise ToolNotInstalledError(args[0]) from exc

    @staticmethod
    def _decode(raw: bytes) -> str:
        return (raw or b"").decode("utf-8", errors="replace")

    def get_page_count(self, source_path: Path) -> int:
        completed = self._run([self.pdfinfo_bin, str(source_path)])
        if completed.returncode != 0:
            raise MetadataUnavailableError(
                f"{self.pdfinfo_bin} exited with {completed.returncode}: "
                f"{self._decode(completed.stderr).strip()}"
            )
        return parse_page_count(self._decode(completed.stdout))

    def extract_page_range(self, source_path: Path, first_page: int, last_page: int) -> str:
        args = [self.pdftotext_bin, "-f", str(int(first_page)), "-l", str(int(last_page))]
        if self.layout:
            args.append("-layout")
        # "-" writes the text to stdout.
        args.extend([str(source_path), "-"])
        completed = self._run(args)
        if completed.returncode != 0:
            raise PageExtractionError(
                int(first_page),
                f"{self.pdftotext_bin} exited with {completed.returncode}: "
                f"{self._decode(completed.stderr).strip()}",
            )
        return self._decode(completed.stdout)


class PyMuPDFTools:
    """In-process backend built on PyMuPDF."""

    def get_page_count(self, source_path: Path) -> int:
        if fitz is None:
            raise ToolNotInstalledError("PyMuPDF")
        try:
            with closing(fitz.open(str(source_path))) as pdf_doc:
                return int(pdf_doc.page_count)
        except Exception as exc:
            raise MetadataUnavailableError(f"cannot open {source_path}: {exc}") from exc

    def extract_page_range(self, source_path: Path, first_page: int, last_page: int) -> str:
        if fitz is None:
            raise ToolNotInstalledError("PyMuPDF")
        try:
            with closing(fitz.open(str(source_path))) as pdf_doc:
                # PyMuPDF pages are 0-indexed.
                return "".join(
                    pdf_doc[index].get_text("text")
                    for index in range(int(first_page) - 1, int(last_page))
                )
        except Exception as exc:
            raise PageExtractionError(int(first_page), str(exc)) from exc


def build_pdf_tools(backend: str = EXTRACTION_BACKEND) -> PdfTools:
    mode = str(backend or "poppler").strip().lower()
    if mode == "pymupdf":
        return PyMuPDFTools()
    return PopplerTools()


@dataclass(frozen=True)
class PageText:
    number: int
    text: str
    ok: bool = True


@dataclass(frozen=True)
class ExtractionResult:
    pages: tuple[PageText, ...]
    total_pages: int

    @property
    def failed_pages(self) -> list[int]:
        return [page.number for page in self.pages if not page.ok]


class PageExtractor:
    """Extracts every physical page of one document, in physical order."""

    def __init__(self, tools: PdfTools | None = None, *, max_workers: int = EXTRACT_PAGE_WORKERS):
        self.tools: PdfTools = tools if tools is not None else build_pdf_tools()
        self.max_workers = max(1, int(max_workers))

    def page_count(self, source_path: Path) -> int:
        total = int(self.tools.get_page_count(Path(source_path)) or 0)
        if total <= 0:
            raise MetadataUnavailableError(f"no page count reported for {source_path}")
        return total

    def _extract_page(self, source_path: Path, page_number: int) -> PageText:
        try:
            text = self.tools.extract_page_range(source_path, page_number, page_number)
        except ToolNotInstalledError:
            raise
        except PageExtractionError as exc:
            # One broken page must not block the rest of the handbook.
            logger.warning(
                "page_extraction_failed",
                source=str(source_path),
                page=page_number,
                error=str(exc),
            )
            return PageText(number=page_number, text="", ok=False)
        return PageText(number=page_number, text=str(text or ""))

    def extract(self, source_path: str | Path) -> ExtractionResult:
        path = Path(source_path)
        total = self.page_count(path)
        numbers = range(1, total + 1)

        workers = min(self.max_workers, total)
        if workers == 1:
            pages = [self._extract_page(path, number) for number in numbers]
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                # map() yields in submission order, so physical order is preserved.
                pages = list(pool.map(lambda number: self._extract_page(path, number), numbers))

        result = ExtractionResult(pages=tuple(pages), total_pages=total)
        logger.info(
            "pdf_extracted",
            source=str(path),
            total_pages=total,
            failed_pages=len(result.failed_pages),
            workers=workers,
        )
        return result
