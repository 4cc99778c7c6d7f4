import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import patch

from binran.cache import DocumentCache, EntryState
from binran.catalog import CatalogRegistry
from binran.document_store import LocalDocumentStore
from binran.errors import (
    MetadataUnavailableError,
    PageExtractionError,
    SourceNotFoundError,
    StoreReadError,
    StoreWriteError,
    UnknownKeyError,
)
from binran.extractor import PageExtractor
from binran.labeler import iter_page_blocks
from binran.service import HandbookService


class _FakeTools:
    def __init__(self, page_count=8, failing_pages=(), delay_s=0.0):
        self.page_count = page_count
        self.failing_pages = set(failing_pages)
        self.delay_s = float(delay_s)
        self.count_calls = 0
        self.page_calls = 0
        self._lock = threading.Lock()

    def get_page_count(self, source_path):
        with self._lock:
            self.count_calls += 1
        if self.delay_s:
            time.sleep(self.delay_s)
        return self.page_count

    def extract_page_range(self, source_path, first_page, last_page):
        with self._lock:
            self.page_calls += 1
        if first_page in self.failing_pages:
            raise PageExtractionError(first_page, "broken page")
        return f"{Path(source_path).stem} page {first_page}"


class TestHandbookService(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        pdf_dir = self.root / "pdfs"
        pdf_dir.mkdir()
        for name in ("kougaku.pdf", "bungaku.pdf"):
            (pdf_dir / name).write_bytes(b"%PDF-1.4\n")
        self.catalog = CatalogRegistry.from_records(
            [
                {
                    "key": "engineering",
                    "name": "工学部",
                    "source": "kougaku.pdf",
                    "page_offset": 6,
                    "departments": {"mechanical": "機械工学科"},
                },
                {"key": "letters", "name": "文学部", "source": "bungaku.pdf", "page_offset": 1},
                {"key": "missing", "name": "欠損", "source": "nowhere.pdf", "page_offset": 1},
            ],
            pdf_dir=pdf_dir,
        )
        self.store = LocalDocumentStore(self.root / "texts")

    def tearDown(self):
        self._tmp.cleanup()

    def _service(self, tools, store=None):
        return HandbookService(
            self.catalog,
            store=store if store is not None else self.store,
            extractor=PageExtractor(tools, max_workers=1),
            cache=DocumentCache(),
        )

    def test_first_request_extracts_labels_and_stores(self):
        tools = _FakeTools(page_count=8)
        service = self._service(tools)
        text = service.get_text("engineering")

        self.assertTrue(text.startswith("--- PAGE 1 (表紙/目次など) ---\nkougaku page 1\n\n"))
        self.assertIn("--- PAGE 1 ---\nkougaku page 6\n\n", text)
        self.assertTrue(text.endswith("--- PAGE 3 ---\nkougaku page 8\n\n"))
        self.assertEqual(self.store.read("engineering"), text)
        self.assertEqual(service.cache.state("engineering"), EntryState.PRESENT)

        self.assertEqual(service.get_text("engineering"), text)
        self.assertEqual(tools.count_calls, 1)
        self.assertEqual(tools.page_calls, 8)

    def test_stored_text_is_served_without_extraction(self):
        first = self._service(_FakeTools(page_count=4))
        text = first.get_text("letters")

        tools = _FakeTools(page_count=4)
        restarted = self._service(tools)
        self.assertEqual(restarted.get_text("letters"), text)
        self.assertEqual(tools.count_calls, 0)
        self.assertEqual(tools.page_calls, 0)

    def test_unknown_key_never_reaches_extractor(self):
        tools = _FakeTools()
        service = self._service(tools)
        with self.assertRaises(UnknownKeyError):
            service.get_text("law")
        self.assertEqual(tools.count_calls, 0)
        self.assertEqual(len(service.cache), 0)

    def test_zero_pages_fails_and_is_not_cached(self):
        tools = _FakeTools(page_count=0)
        service = self._service(tools)
        with self.assertRaises(MetadataUnavailableError):
            service.get_text("engineering")
        self.assertEqual(service.cache.state("engineering"), EntryState.ABSENT)
        self.assertFalse(self.store.has("engineering"))

        with self.assertRaises(MetadataUnavailableError):
            service.get_text("engineering")
        self.assertEqual(tools.count_calls, 2)

        tools.page_count = 2
        self.assertIn("--- PAGE 1 (表紙/目次など) ---", service.get_text("engineering"))

    def test_failed_page_keeps_its_marker(self):
        service = self._service(_FakeTools(page_count=10, failing_pages={5}))
        blocks = list(iter_page_blocks(service.get_text("letters")))
        self.assertEqual([b.number for b in blocks], list(range(1, 11)))
        self.assertEqual(blocks[4].body, "")
        self.assertEqual(blocks[5].body, "bungaku page 6")

    def test_missing_source_is_reported(self):
        tools = _FakeTools()
        service = self._service(tools)
        with self.assertRaises(SourceNotFoundError):
            service.get_text("missing")
        self.assertEqual(tools.count_calls, 0)
        self.assertEqual(service.cache.state("missing"), EntryState.ABSENT)

    def test_store_write_failure_still_serves_text(self):
        tools = _FakeTools(page_count=3)
        service = self._service(tools)
        with patch.object(self.store, "write", side_effect=StoreWriteError("read-only filesystem")):
            text = service.get_text("letters")
        self.assertIn("--- PAGE 3 ---", text)
        self.assertEqual(service.cache.peek("letters"), text)
        self.assertFalse(self.store.has("letters"))
        self.assertEqual(service.get_text("letters"), text)
        self.assertEqual(tools.count_calls, 1)

    def test_store_read_failure_falls_back_to_extraction(self):
        tools = _FakeTools(page_count=2)
        service = self._service(tools)
        with patch.object(self.store, "read", side_effect=StoreReadError("permission denied")):
            text = service.get_text("letters")
        self.assertEqual(text, "--- PAGE 1 ---\nbungaku page 1\n\n--- PAGE 2 ---\nbungaku page 2\n\n")
        self.assertEqual(tools.count_calls, 1)

    def test_concurrent_first_requests_extract_once(self):
        tools = _FakeTools(page_count=5, delay_s=0.1)
        service = self._service(tools)
        results = []
        results_lock = threading.Lock()

        def _worker():
            text = service.get_text("engineering")
            with results_lock:
                results.append(text)

        threads = [threading.Thread(target=_worker) for _ in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        self.assertEqual(len(results), 12)
        self.assertEqual(len(set(results)), 1)
        self.assertEqual(tools.count_calls, 1)
        self.assertEqual(tools.page_calls, 5)

    def test_get_page_uses_logical_numbers(self):
        service = self._service(_FakeTools(page_count=8))
        block = service.get_page("engineering", 2)
        self.assertIsNotNone(block)
        self.assertEqual(block.body, "kougaku page 7")
        self.assertIsNone(service.get_page("engineering", 9))

    def test_materialize_all_reports_each_entry_in_catalog_order(self):
        tools = _FakeTools(page_count=3)
        service = self._service(tools)
        self.store.write("letters", "--- PAGE 1 ---\nstored\n\n")

        reports = service.materialize_all(max_workers=3)
        self.assertEqual([r.key for r in reports], ["engineering", "letters", "missing"])
        self.assertEqual([r.status for r in reports], ["materialized", "stored", "failed"])
        self.assertGreater(reports[0].characters, 0)
        self.assertIn("nowhere.pdf", reports[2].error)

        again = service.materialize_all(max_workers=1)
        self.assertEqual(again[0].status, "cached")
        self.assertEqual(tools.count_calls, 1)

    def test_materialize_all_leaves_stored_copy_for_lazy_load(self):
        tools = _FakeTools(page_count=3)
        service = self._service(tools)
        self.store.write("letters", "--- PAGE 1 ---\nstored\n\n")

        reports = {r.key: r for r in service.materialize_all(max_workers=1)}
        self.assertEqual(reports["letters"].status, "stored")
        self.assertEqual(service.cache.state("letters"), EntryState.ABSENT)
        self.assertEqual(service.get_text("letters"), "--- PAGE 1 ---\nstored\n\n")
        self.assertEqual(tools.count_calls, 1)

    def test_materialize_all_reports_unexpected_errors_per_entry(self):
        tools = _FakeTools(page_count=3)
        service = self._service(tools)
        real_has = self.store.has

        def _has(key):
            if key == "engineering":
                raise RuntimeError("filesystem went away")
            return real_has(key)

        with patch.object(self.store, "has", side_effect=_has):
            reports = service.materialize_all(max_workers=2)

        self.assertEqual([r.key for r in reports], ["engineering", "letters", "missing"])
        self.assertEqual([r.status for r in reports], ["failed", "materialized", "failed"])
        self.assertIn("RuntimeError", reports[0].error)
        self.assertEqual(service.cache.state("letters"), EntryState.PRESENT)

    def test_describe_reflects_cache_and_store(self):
        service = self._service(_FakeTools(page_count=3))
        service.get_text("letters")
        rows = {row["key"]: row for row in service.describe()}
        self.assertEqual(rows["letters"]["state"], "present")
        self.assertTrue(rows["letters"]["stored"])
        self.assertEqual(rows["engineering"]["state"], "absent")
        self.assertFalse(rows["engineering"]["stored"])
        self.assertEqual(rows["engineering"]["departments"], {"mechanical": "機械工学科"})
        self.assertEqual(rows["engineering"]["page_offset"], 6)


if __name__ == "__main__":
    unittest.main()
