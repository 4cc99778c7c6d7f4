# /binran/config.py
"""
Centralized configuration for the handbook service.
Includes storage paths, external tool names and extraction/cache tuning.
"""
import logging
import os
from pathlib import Path
from dotenv import load_dotenv
from rich.console import Console
from .observability import configure_logging

# ==============================================================================
# CONSOLE & ENVIRONMENT
# ==============================================================================
console = Console()
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        value = int(raw)
    except ValueError:
        return int(default)
    return max(minimum, value)


def _env_choice(name: str, default: str, choices: set[str]) -> str:
    raw = str(os.getenv(name, default) or "").strip().lower()
    return raw if raw in choices else default


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


# ==============================================================================
# GLOBAL CONFIGURATION
# ==============================================================================
# --- Path Configuration ---
# Data directory is at ../../data relative to this file (src/binran/config.py)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent
_DATA_DIR = _BASE_DIR / "data"

HANDBOOK_TEXT_DIR = Path(os.getenv("HANDBOOK_TEXT_DIR", str(_DATA_DIR / "binran_all_text")))
HANDBOOK_PDF_DIR = Path(os.getenv("HANDBOOK_PDF_DIR", str(_DATA_DIR / "binran_all_pdf")))
CATALOG_FILE = os.getenv("CATALOG_FILE") or None
CACHE_DIR = Path(os.getenv("CACHE_DIR", str(_DATA_DIR / "runtime_cache")))
METRICS_DIR = Path(os.getenv("METRICS_DIR", str(CACHE_DIR / "metrics")))

# --- Extraction Tooling ---
EXTRACTION_BACKEND = _env_choice("EXTRACTION_BACKEND", "poppler", {"poppler", "pymupdf"})
PDFINFO_BIN = os.getenv("PDFINFO_BIN", "pdfinfo")
PDFTOTEXT_BIN = os.getenv("PDFTOTEXT_BIN", "pdftotext")
PDFTOTEXT_LAYOUT = _env_bool("PDFTOTEXT_LAYOUT", True)

# --- Concurrency Tuning ---
EXTRACT_PAGE_WORKERS = _env_int("EXTRACT_PAGE_WORKERS", 1, minimum=1)
CONVERT_MAX_WORKERS = _env_int("CONVERT_MAX_WORKERS", 4, minimum=1)
API_MAX_WORKERS = _env_int("API_MAX_WORKERS", 8, minimum=1)
# "per_key" loads different handbooks in parallel; "global" serializes every first load.
CACHE_LOCK_MODE = _env_choice("CACHE_LOCK_MODE", "per_key", {"per_key", "global"})

# --- API ---
CORS_ALLOW_ORIGINS = _env_list("CORS_ALLOW_ORIGINS", "http://localhost:3000")

# --- Create necessary directories ---
CACHE_DIR.mkdir(parents=True, exist_ok=True)
LOG_PATH = Path(os.getenv("LOG_PATH", str(CACHE_DIR / "app.log")))
LOG_LEVEL = getattr(logging, str(os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO)
configure_logging(LOG_PATH, level=LOG_LEVEL)

# --- Dependency Availability Flags ---
try:
    import fitz
    PYMUPDF_AVAILABLE = True
except ImportError:
    PYMUPDF_AVAILABLE = False
