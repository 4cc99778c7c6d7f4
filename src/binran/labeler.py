"""
Physical -> logical page numbering and page-marker rendering.

A materialized handbook is a sequence of blocks::

    --- PAGE <n> ---                      content page, logical number
    --- PAGE <n> (表紙/目次など) ---        front matter, physical number

each followed by the raw page text and a blank line.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator

from .extractor import PageText

FRONT_MATTER_LABEL = "表紙/目次など"
PAGE_MARKER_RE = re.compile(r"^--- PAGE (\d+)(?: \((.+?)\))? ---$", re.MULTILINE)


def _first_content_page(page_offset: int) -> int:
    # Offsets 0 and 1 both mean "no front matter".
    return max(1, int(page_offset))


def logical_page_number(physical_page: int, page_offset: int) -> int | None:
    """Returns the logical number of a physical page, or None for front matter."""
    start = _first_content_page(page_offset)
    if physical_page >= start:
        return physical_page - start + 1
    return None


def render_page_marker(physical_page: int, page_offset: int) -> str:
    logical = logical_page_number(physical_page, page_offset)
    if logical is None:
        return f"--- PAGE {physical_page} ({FRONT_MATTER_LABEL}) ---"
    return f"--- PAGE {logical} ---"


def label(pages: Iterable[PageText | tuple[int, str]], page_offset: int) -> str:
    """Renders extracted pages into one labeled text blob, in physical order."""
    normalized = []
    for page in pages:
        if isinstance(page, PageText):
            normalized.append((int(page.number), page.text))
        else:
            number, text = page
            normalized.append((int(number), str(text or "")))
    normalized.sort(key=lambda item: item[0])

    parts = []
    for number, text in normalized:
        parts.append(f"{render_page_marker(number, page_offset)}\n{text}\n\n")
    return "".join(parts)


@dataclass(frozen=True)
class PageBlock:
    # Logical number for content pages, physical number for front matter.
    number: int
    front_matter: bool
    body: str


def iter_page_blocks(text: str) -> Iterator[PageBlock]:
    """Parses a labeled text blob back into its page blocks."""
    source = str(text or "")
    matches = list(PAGE_MARKER_RE.finditer(source))
    for idx, match in enumerate(matches):
        body_start = match.end() + 1
        body_end = matches[idx + 1].start() if idx + 1 < len(matches) else len(source)
        body = source[body_start:body_end]
        if body.endswith("\n\n"):
            body = body[:-2]
        yield PageBlock(
            number=int(match.group(1)),
            front_matter=match.group(2) is not None,
            body=body,
        )


def find_logical_page(text: str, logical_page: int) -> PageBlock | None:
    for block in iter_page_blocks(text):
        if not block.front_matter and block.number == int(logical_page):
            return block
    return None
