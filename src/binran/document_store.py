"""
Durable storage for materialized handbook text.
Default implementation keeps one UTF-8 file per key on the local filesystem;
the interface allows other backends later.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol

from .catalog import is_valid_key
from .config import HANDBOOK_TEXT_DIR
from .errors import StoreReadError, StoreWriteError
from .observability import get_logger

logger = get_logger(__name__)


class DocumentStore(Protocol):
    @property
    def root(self) -> Path:
        ...

    def has(self, key: str) -> bool:
        ...

    def read(self, key: str) -> str | None:
        ...

    def write(self, key: str, text: str) -> Path:
        ...


class LocalDocumentStore:
    """
    Stores each handbook as `handbook_<key>.txt` under `root`.
    Reads return None when the file does not exist and raise StoreReadError
    for any other failure; writes are atomic (temp file + rename).
    """

    FILE_TEMPLATE = "handbook_{key}.txt"

    def __init__(self, root: Path = HANDBOOK_TEXT_DIR):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def ensure_ready(self):
        self._root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        safe_key = str(key or "").strip()
        if not is_valid_key(safe_key):
            raise ValueError(f"invalid document key: {key!r}")
        return self._root / self.FILE_TEMPLATE.format(key=safe_key)

    def has(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def read(self, key: str) -> str | None:
        path = self.path_for(key)
        try:
            # newline="" keeps the stored bytes exactly as written.
            with open(path, "r", encoding="utf-8", newline="") as handle:
                return handle.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise StoreReadError(f"cannot read {path}: {exc}") from exc

    def write(self, key: str, text: str) -> Path:
        path = self.path_for(key)
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        try:
            self.ensure_ready()
            with open(tmp_path, "w", encoding="utf-8", newline="") as handle:
                handle.write(text)
            os.replace(tmp_path, path)
        except OSError as exc:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise StoreWriteError(f"cannot write {path}: {exc}") from exc
        logger.info("handbook_text_saved", key=str(key), path=str(path), characters=len(text))
        return path
