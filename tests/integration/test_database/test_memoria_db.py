"""Tests for MemoriaDB storage, ordering and deletion."""

import pytest
from pathlib import Path

from memoriad.database import MemoriaDB
from memoriad.errors import ConflictError
from fixtures.database import temp_db, temp_db_no_dedupe, temp_db_file, populated_db


def _h(text: str) -> str:
    return MemoriaDB.calculate_hash(text.encode())


class TestInsert:
    """Test text and image inserts."""

    def test_insert_text_sets_fields(self, temp_db: MemoriaDB):
        """Timestamps start equal and the title is the first line."""
        item_id = temp_db.insert_text("first line\nsecond line", _h("a"), now=500)

        item = temp_db.get_item(item_id)
        assert item["title"] == "first line"
        assert item["body"] == "first line\nsecond line"
        assert item["created_at"] == item["updated_at"] == item["last_used"] == 500
        assert item["starred"] is False
        assert item["has_image"] is False
        assert "thumbnail_path" not in item

    def test_title_truncated_to_100_chars(self, temp_db: MemoriaDB):
        """Long first lines are cut to 100 characters."""
        body = "x" * 250
        item_id = temp_db.insert_text(body, _h(body))

        assert temp_db.get_item(item_id)["title"] == "x" * 100

    def test_title_counts_characters_not_bytes(self, temp_db: MemoriaDB):
        """Multi-byte characters are never split."""
        body = "é" * 150
        item_id = temp_db.insert_text(body, _h(body))

        assert temp_db.get_item(item_id)["title"] == "é" * 100

    @pytest.mark.parametrize("body, title", [
        ("a\x0bb\nc", "a\x0bb"),
        ("a\x0cb\nc", "a\x0cb"),
        ("a\u2028b\nc", "a\u2028b"),
        ("line\r\nnext", "line"),
        ("\nsecond", ""),
    ])
    def test_title_splits_on_newline_only(self, temp_db: MemoriaDB, body, title):
        """Other line separators stay in the title; a CR before the newline is dropped."""
        item_id = temp_db.insert_text(body, _h(body))

        assert temp_db.get_item(item_id)["title"] == title

    def test_duplicate_hash_rejected_when_unique(self, temp_db: MemoriaDB):
        """Enforced uniqueness raises ConflictError."""
        temp_db.insert_text("same", _h("same"))

        with pytest.raises(ConflictError):
            temp_db.insert_text("same", _h("same"))
        assert temp_db.get_total_count() == 1

    def test_duplicate_hash_allowed_without_uniqueness(self, temp_db_no_dedupe: MemoriaDB):
        """Without uniqueness, repeats are separate rows."""
        first = temp_db_no_dedupe.insert_text("same", _h("same"))
        second = temp_db_no_dedupe.insert_text("same", _h("same"))

        assert first != second
        assert temp_db_no_dedupe.get_total_count() == 2
        assert temp_db_no_dedupe.find_by_hash(_h("same")) == second

    def test_insert_image_creates_item_and_image_row(self, temp_db: MemoriaDB):
        """An image insert writes both rows with an empty body."""
        data_hash = MemoriaDB.calculate_hash(b"png-bytes")
        item_id = temp_db.insert_image("image/png", b"png-bytes", data_hash, now=42)

        item = temp_db.get_item(item_id)
        assert item["title"] == f"Image: {data_hash}"
        assert item["body"] == ""
        assert item["has_image"] is True
        assert temp_db.get_image(item_id) == {"mime": "image/png", "bytes": b"png-bytes"}
        assert temp_db.get_image_count() == 1

    def test_before_commit_failure_rolls_back(self, temp_db: MemoriaDB):
        """An exception from before_commit leaves no rows behind."""
        calls = []

        def fail(item_id):
            calls.append(item_id)
            raise OSError("disk full")

        with pytest.raises(OSError):
            temp_db.insert_image("image/png", b"data", _h("img"), before_commit=fail)

        assert len(calls) == 1
        assert temp_db.get_total_count() == 0
        assert temp_db.get_image_count() == 0
        assert temp_db.find_by_hash(_h("img")) is None

    def test_thumbnail_path_reported_for_images(self, tmp_path: Path):
        """Image summaries point at <thumbs_dir>/<hash>.png."""
        db = MemoriaDB(":memory:", thumbs_dir=tmp_path / "thumbs")
        try:
            data_hash = _h("img")
            item_id = db.insert_image("image/png", b"data", data_hash)

            assert db.get_item(item_id)["thumbnail_path"] == str(tmp_path / "thumbs" / f"{data_hash}.png")
        finally:
            db.close()

    def test_file_database_persists(self, temp_db_file: MemoriaDB):
        """A file-backed database reopens with its rows."""
        temp_db_file.insert_text("kept", _h("kept"))
        path = temp_db_file.db_path

        reopened = MemoriaDB(path)
        try:
            assert reopened.get_total_count() == 1
            assert reopened.find_by_hash(_h("kept")) is not None
        finally:
            reopened.close()


class TestListing:
    """Test list ordering and filters."""

    def test_list_most_recent_first(self, populated_db: MemoriaDB):
        """Unstarred items are ordered by last_used descending."""
        ids = [item["id"] for item in populated_db.list_items()]

        assert ids == [4, 3, 2, 1]

    def test_starred_items_first(self, populated_db: MemoriaDB):
        """Starred items sort ahead of newer unstarred ones."""
        populated_db.set_starred(1, True)

        ids = [item["id"] for item in populated_db.list_items()]

        assert ids == [1, 4, 3, 2]

    def test_touch_moves_item_up(self, populated_db: MemoriaDB):
        """Refreshing last_used reorders the list."""
        assert populated_db.touch_last_used(2, now=5000) is True

        ids = [item["id"] for item in populated_db.list_items()]

        assert ids[0] == 2
        assert populated_db.get_item(2)["last_used"] == 5000

    def test_starred_only(self, populated_db: MemoriaDB):
        """starred_only returns just the starred items."""
        populated_db.set_starred(2, True)
        populated_db.set_starred(3, True)

        items = populated_db.list_items(starred_only=True)

        assert [item["id"] for item in items] == [3, 2]
        assert all(item["starred"] for item in items)

    def test_limit(self, populated_db: MemoriaDB):
        assert len(populated_db.list_items(limit=2)) == 2
        assert populated_db.list_items(limit=0) == []

    def test_gallery_only_images(self, populated_db: MemoriaDB):
        """Gallery skips text items."""
        image_id = populated_db.insert_image("image/png", b"img", _h("img"), now=10)

        gallery = populated_db.gallery()

        assert [item["id"] for item in gallery] == [image_id]

    def test_set_starred_unknown_id(self, temp_db: MemoriaDB):
        """Unknown ids update nothing."""
        assert temp_db.set_starred(999, True) == 0

    def test_get_missing_item(self, temp_db: MemoriaDB):
        assert temp_db.get_item(999) is None
        assert temp_db.get_image(999) is None


class TestDeletion:
    """Test delete paths and their orphaned-hash reporting."""

    def test_delete_ids_skips_starred(self, populated_db: MemoriaDB):
        """Starred items survive delete_ids."""
        populated_db.set_starred(2, True)

        deleted, hashes = populated_db.delete_ids([1, 2, 3])

        assert deleted == 2
        assert populated_db.get_item(2) is not None
        assert populated_db.get_item(1) is None
        assert populated_db.get_item(3) is None
        assert len(hashes) == 2

    def test_delete_ids_empty(self, populated_db: MemoriaDB):
        assert populated_db.delete_ids([]) == (0, [])

    def test_delete_keeps_hash_still_in_use(self, temp_db_no_dedupe: MemoriaDB):
        """A hash shared with a remaining row is not reported for cleanup."""
        first = temp_db_no_dedupe.insert_image("image/png", b"img", _h("img"))
        temp_db_no_dedupe.insert_image("image/png", b"img", _h("img"))

        deleted, hashes = temp_db_no_dedupe.delete_ids([first])

        assert deleted == 1
        assert hashes == []

    def test_delete_items_ignores_starred(self, populated_db: MemoriaDB):
        """delete_items removes starred rows too; unknown ids are not counted."""
        populated_db.set_starred(1, True)

        deleted, hashes = populated_db.delete_items([1, 2, 999])

        assert deleted == 2
        assert populated_db.get_total_count() == 2
        assert len(hashes) == 2

    def test_delete_all_except_starred(self, populated_db: MemoriaDB):
        """Counts both item and image rows removed."""
        populated_db.insert_image("image/png", b"a", _h("a"))
        starred_image = populated_db.insert_image("image/png", b"b", _h("b"))
        populated_db.set_starred(starred_image, True)
        populated_db.set_starred(1, True)

        items, images, hashes = populated_db.delete_all_except_starred()

        assert items == 4
        assert images == 1
        assert _h("a") in hashes
        assert _h("b") not in hashes
        assert {item["id"] for item in populated_db.list_items()} == {1, starred_image}
        assert populated_db.get_image_count() == 1

    def test_delete_item_cascades_image(self, temp_db: MemoriaDB):
        """Deleting an item removes its image row."""
        item_id = temp_db.insert_image("image/png", b"img", _h("img"))

        deleted, orphaned = temp_db.delete_item(item_id)

        assert deleted is True
        assert orphaned == _h("img")
        assert temp_db.get_image_count() == 0

    def test_delete_item_missing(self, temp_db: MemoriaDB):
        assert temp_db.delete_item(12345) == (False, None)

    def test_expired_item_ids(self, populated_db: MemoriaDB):
        """Only items created before the cutoff qualify; starred optional."""
        populated_db.set_starred(1, True)

        assert populated_db.expired_item_ids(1002) == [2]
        assert populated_db.expired_item_ids(1002, unstarred_only=False) == [1, 2]
