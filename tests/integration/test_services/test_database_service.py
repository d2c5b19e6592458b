"""Tests for the thread-safe DatabaseService wrapper."""

import threading

import pytest

from memoriad.errors import ConflictError, StoreError
from memoriad.services.database_service import CAPTURE_INSERTED, CAPTURE_TOUCHED, DatabaseService
from fixtures.database import artifact_service, db_service, db_service_no_dedupe


def _capture(service: DatabaseService, text: str, dedupe: bool = True, now: int = 100):
    data = text.encode()
    return service.record_capture("text/plain", data, service.calculate_hash(data), dedupe, now)


class TestRecordCapture:
    """Test capture recording with and without dedup."""

    def test_first_capture_inserts(self, db_service: DatabaseService):
        action, item_id = _capture(db_service, "hello")

        assert action == CAPTURE_INSERTED
        assert db_service.get_item(item_id)["body"] == "hello"

    def test_repeat_capture_touches(self, db_service: DatabaseService):
        """Repeats keep one row and strictly increase last_used."""
        _, first_id = _capture(db_service, "hello", now=100)
        action, second_id = _capture(db_service, "hello", now=101)

        assert action == CAPTURE_TOUCHED
        assert second_id == first_id
        assert db_service.get_total_count() == 1
        item = db_service.get_item(first_id)
        assert item["last_used"] == 101
        assert item["created_at"] == 100

    def test_dedupe_off_allows_duplicates(self, db_service_no_dedupe: DatabaseService):
        _capture(db_service_no_dedupe, "hello", dedupe=False)
        _capture(db_service_no_dedupe, "hello", dedupe=False)

        assert db_service_no_dedupe.get_total_count() == 2

    def test_invalid_utf8_replaced(self, db_service: DatabaseService):
        """Undecodable bytes become replacement characters."""
        data = b"caf\xe9"
        _, item_id = db_service.record_capture("text/plain", data, db_service.calculate_hash(data), True, 1)

        assert db_service.get_item(item_id)["body"] == "caf\ufffd"

    def test_image_capture_calls_before_commit(self, db_service: DatabaseService):
        seen = []
        data = b"\x89PNG fake"
        action, item_id = db_service.record_capture(
            "image/png", data, db_service.calculate_hash(data), True, 1, before_commit=seen.append
        )

        assert action == CAPTURE_INSERTED
        assert seen == [item_id]
        assert db_service.get_image(item_id)["mime"] == "image/png"

    def test_concurrent_captures_settle_to_one_row(self, db_service: DatabaseService):
        """Threads capturing the same content race on one locked operation."""
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(_capture(db_service, "same text"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert db_service.get_total_count() == 1
        assert [action for action, _ in results].count(CAPTURE_INSERTED) == 1
        assert len({item_id for _, item_id in results}) == 1


class TestErrors:
    """Test error translation."""

    def test_conflict_passes_through(self, db_service: DatabaseService):
        db_service.insert_text("x", "hash-x")

        with pytest.raises(ConflictError):
            db_service.insert_text("x", "hash-x")

    def test_sqlite_error_becomes_store_error(self, db_service: DatabaseService):
        """Using a closed connection surfaces as StoreError."""
        db_service.db.close()

        with pytest.raises(StoreError):
            db_service.list_items()

    def test_open_failure_is_store_error(self, tmp_path):
        with pytest.raises(StoreError):
            DatabaseService(str(tmp_path / "missing" / "dir" / "memoria.db"))


class TestReleaseArtifacts:
    """Test post-delete file cleanup against the current references."""

    def test_unreferenced_hash_removed(self, db_service: DatabaseService):
        removed = []

        assert db_service.release_artifacts(["gone"], removed.append) == 1
        assert removed == ["gone"]

    def test_referenced_hash_kept(self, db_service: DatabaseService):
        """A hash captured again after its delete keeps its files."""
        _, item_id = _capture(db_service, "back again")
        data_hash = db_service.calculate_hash(b"back again")
        removed = []

        assert db_service.release_artifacts([data_hash, "gone"], removed.append) == 1
        assert removed == ["gone"]
        assert db_service.get_item(item_id) is not None

    def test_remove_runs_under_lock(self, db_service: DatabaseService):
        held = []

        db_service.release_artifacts(["a", "b"], lambda data_hash: held.append(db_service.lock.locked()))

        assert held == [True, True]
