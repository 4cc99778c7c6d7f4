"""
Static catalog of handbooks: key, display name, source PDF, page offset and
departments. Built once at startup and read-only afterwards.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

from .config import CATALOG_FILE, HANDBOOK_PDF_DIR
from .errors import CatalogConfigError, UnknownKeyError
from .observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Department:
    key: str
    name: str


@dataclass(frozen=True)
class CatalogEntry:
    key: str
    name: str
    source_path: Path
    # Physical page on which logical page 1 starts.
    page_offset: int
    departments: tuple[Department, ...] = ()

    @property
    def store_name(self) -> str:
        return f"handbook_{self.key}"

    def get_department(self, department_key: str) -> Department | None:
        for department in self.departments:
            if department.key == department_key:
                return department
        return None


# Kobe University faculty handbooks (2024 editions).
_DEFAULT_RECORDS: tuple[dict[str, Any], ...] = (
    {
        "key": "engineering",
        "name": "工学部",
        "source": "kougaku_2024.pdf",
        "page_offset": 6,
        "departments": {
            "mechanical": "機械工学科",
            "electrical": "電気電子工学科",
            "computer_science": "情報知能工学科",
            "applied_chemistry": "応用化学科",
            "civil_engineering": "市民工学科",
            "architecture": "建築学科",
        },
    },
    {
        "key": "letters",
        "name": "文学部",
        "source": "bungaku_2024.pdf",
        "page_offset": 17,
        "departments": {
            "philosophy": "哲学・倫理学専修",
            "history": "歴史学専修",
            "literature": "文学専修",
            "cultural_studies": "文化学専修",
        },
    },
    {
        "key": "science",
        "name": "理学部",
        "source": "rigaku_2024.pdf",
        "page_offset": 1,
        "departments": {
            "mathematics": "数学科",
            "physics": "物理学科",
            "chemistry": "化学科",
            "biology": "生物学科",
            "planetology": "惑星学科",
        },
    },
    {
        "key": "medicine",
        "name": "医学部",
        "source": "hoken_2024.pdf",
        "page_offset": 8,
        "departments": {
            "nursing": "看護学専攻",
            "medical_technology": "検査技術科学専攻",
            "physical_therapy": "理学療法学専攻",
            "occupational_therapy": "作業療法学専攻",
        },
    },
    {
        "key": "business_administration",
        "name": "経営学部",
        "source": "keiei_2024.pdf",
        "page_offset": 9,
        "departments": {
            "business_administration": "経営学科",
        },
    },
    {
        "key": "global_human_sciences",
        "name": "国際人間科学部",
        "source": "kokusainingen_2024.pdf",
        "page_offset": 9,
        "departments": {
            "global_cultures": "グローバル文化学科",
            "developed_community": "発達コミュニティ学科",
            "environment_and_sustainability": "環境共生学科",
            "child_education": "子ども教育学科",
        },
    },
    {
        "key": "agriculture",
        "name": "農学部",
        "source": "nougaku_2024.pdf",
        "page_offset": 1,
        "departments": {
            "agro-environmental_science": "食料環境システム学科",
            "bioresource_science": "資源生命科学科",
            "agrobioscience": "生命機能科学科",
        },
    },
    {
        "key": "maritime_sciences",
        "name": "海洋政策科学部",
        "source": "kaiyo_2024.pdf",
        "page_offset": 9,
        "departments": {
            "maritime_sciences": "海洋政策科学科",
        },
    },
)


def is_valid_key(key: str) -> bool:
    """Keys name store files, so each must be a single plain path segment."""
    text = str(key or "").strip()
    if not text or text in {".", ".."}:
        return False
    return not any(ch in text for ch in ("/", "\\", "\x00"))


def _parse_offset(key: str, raw: Any) -> int:
    if isinstance(raw, bool):
        raise CatalogConfigError(f"catalog entry {key!r}: page_offset must be an integer")
    try:
        offset = int(raw)
    except (TypeError, ValueError) as exc:
        raise CatalogConfigError(f"catalog entry {key!r}: page_offset must be an integer") from exc
    if offset < 0:
        raise CatalogConfigError(f"catalog entry {key!r}: page_offset must be >= 0, got {offset}")
    return offset


def entry_from_record(record: Mapping[str, Any], *, pdf_dir: Path = HANDBOOK_PDF_DIR) -> CatalogEntry:
    """Builds a validated CatalogEntry; relative sources resolve against pdf_dir."""
    key = str(record.get("key") or "").strip()
    if not key:
        raise CatalogConfigError("catalog entry without a key")
    if not is_valid_key(key):
        raise CatalogConfigError(f"catalog entry {key!r}: not a valid document key")
    name = str(record.get("name") or "").strip() or key
    raw_source = str(record.get("source") or record.get("path") or "").strip()
    if not raw_source:
        raise CatalogConfigError(f"catalog entry {key!r}: missing source path")
    source_path = Path(raw_source).expanduser()
    if not source_path.is_absolute():
        source_path = Path(pdf_dir) / source_path

    raw_departments = record.get("departments") or {}
    if not isinstance(raw_departments, Mapping):
        raise CatalogConfigError(f"catalog entry {key!r}: departments must be a mapping")
    departments = tuple(
        Department(key=str(dept_key), name=str(dept_name))
        for dept_key, dept_name in raw_departments.items()
    )
    return CatalogEntry(
        key=key,
        name=name,
        source_path=source_path,
        page_offset=_parse_offset(key, record.get("page_offset", 1)),
        departments=departments,
    )


class CatalogRegistry:
    """Immutable key -> CatalogEntry mapping; the single validation gate for keys."""

    def __init__(self, entries: Iterable[CatalogEntry]):
        table: dict[str, CatalogEntry] = {}
        for entry in entries:
            if entry.key in table:
                raise CatalogConfigError(f"duplicate catalog key: {entry.key!r}")
            if not is_valid_key(entry.key):
                raise CatalogConfigError(f"catalog entry {entry.key!r}: not a valid document key")
            if entry.page_offset < 0:
                raise CatalogConfigError(
                    f"catalog entry {entry.key!r}: page_offset must be >= 0, got {entry.page_offset}"
                )
            table[entry.key] = entry
        self._entries: Mapping[str, CatalogEntry] = MappingProxyType(table)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]], *, pdf_dir: Path = HANDBOOK_PDF_DIR):
        return cls(entry_from_record(record, pdf_dir=pdf_dir) for record in records)

    @classmethod
    def from_json(cls, path: str | Path, *, pdf_dir: Path = HANDBOOK_PDF_DIR):
        """
        Loads a catalog file: either a list of records or an object keyed by
        handbook key whose values hold the remaining fields.
        """
        try:
            with open(path, "r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise CatalogConfigError(f"cannot read catalog file {path}: {exc}") from exc

        if isinstance(raw, Mapping):
            records = [{"key": key, **(value or {})} for key, value in raw.items()]
        elif isinstance(raw, list):
            records = raw
        else:
            raise CatalogConfigError(f"catalog file {path} must hold a list or an object")
        return cls.from_records(records, pdf_dir=pdf_dir)

    def lookup(self, key: str) -> CatalogEntry:
        entry = self._entries.get(str(key or ""))
        if entry is None:
            raise UnknownKeyError(str(key))
        return entry

    def lookup_department(self, key: str, department_key: str) -> tuple[CatalogEntry, Department]:
        entry = self.lookup(key)
        department = entry.get_department(str(department_key or ""))
        if department is None:
            raise UnknownKeyError(str(department_key), kind="department")
        return entry, department

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


def default_catalog(pdf_dir: Path = HANDBOOK_PDF_DIR) -> CatalogRegistry:
    return CatalogRegistry.from_records(_DEFAULT_RECORDS, pdf_dir=pdf_dir)


def load_catalog(catalog_file: str | Path | None = CATALOG_FILE, *, pdf_dir: Path = HANDBOOK_PDF_DIR) -> CatalogRegistry:
    """Returns the configured catalog: the JSON file when set, the built-in table otherwise."""
    if catalog_file:
        registry = CatalogRegistry.from_json(catalog_file, pdf_dir=pdf_dir)
        logger.info("catalog_loaded", source=str(catalog_file), entries=len(registry))
        return registry
    registry = default_catalog(pdf_dir=pdf_dir)
    logger.info("catalog_loaded", source="builtin", entries=len(registry))
    return registry
