#!/usr/bin/env python3
"""
Database Service - Wrapper for database operations
"""
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from memoriad.database import MemoriaDB
from memoriad.errors import StoreError

logger = logging.getLogger(__name__)

CAPTURE_INSERTED = "inserted"
CAPTURE_TOUCHED = "touched"


class DatabaseService:
    """
    Service for managing database operations with thread-safety

    Every public method holds the lock for exactly one database operation.
    sqlite3 errors surface as StoreError.
    """

    def __init__(self, db_path: Optional[str] = None, thumbs_dir: Optional[Path] = None,
                 enforce_unique_hash: bool = True):
        """
        Initialize database service

        Args:
            db_path: Optional path to database file
            thumbs_dir: Thumbnail directory reported on item summaries
            enforce_unique_hash: Reject duplicate hashes on insert (dedup on)
        """
        logger.info(f"[DatabaseService.__init__] Connecting to database: {db_path or 'default path'}")
        try:
            self.db = MemoriaDB(db_path, thumbs_dir=thumbs_dir, enforce_unique_hash=enforce_unique_hash)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open database {db_path}: {e}") from e
        self.lock = threading.Lock()
        logger.info("[DatabaseService.__init__] Initialization complete")

    def _run(self, operation: Callable, *args, **kwargs):
        with self.lock:
            try:
                return operation(*args, **kwargs)
            except sqlite3.Error as e:
                raise StoreError(f"{operation.__name__} failed: {e}") from e

    def insert_text(self, body: str, data_hash: str, now: Optional[int] = None) -> int:
        """Thread-safe insert of a text item"""
        return self._run(self.db.insert_text, body, data_hash, now)

    def insert_image(self, mime: str, data: bytes, data_hash: str, now: Optional[int] = None,
                     before_commit: Optional[Callable[[int], None]] = None) -> int:
        """Thread-safe insert of an image item and its image row"""
        return self._run(self.db.insert_image, mime, data, data_hash, now, before_commit)

    def find_by_hash(self, data_hash: str) -> Optional[int]:
        """Thread-safe check if item with hash exists"""
        return self._run(self.db.find_by_hash, data_hash)

    def touch_last_used(self, item_id: int, now: Optional[int] = None) -> bool:
        """Thread-safe update of last_used"""
        return self._run(self.db.touch_last_used, item_id, now)

    def record_capture(self, mime: str, data: bytes, data_hash: str, dedupe: bool,
                       now: Optional[int] = None,
                       before_commit: Optional[Callable[[int], None]] = None) -> Tuple[str, int]:
        """
        Store one clipboard capture as a single locked operation

        With dedupe, an existing row for the hash has its last_used
        refreshed instead of a new row being inserted. Concurrent captures
        of the same content therefore settle to one row.

        Args:
            mime: MIME type of the capture; image/* goes to the image path
            data: Raw clipboard bytes
            data_hash: Hash of data
            dedupe: Whether to coalesce onto an existing row
            now: Unix seconds
            before_commit: Image path only, see MemoriaDB.insert_image

        Returns:
            (CAPTURE_INSERTED or CAPTURE_TOUCHED, item id)
        """
        def capture():
            if dedupe:
                existing_id = self.db.find_by_hash(data_hash)
                if existing_id is not None:
                    self.db.touch_last_used(existing_id, now)
                    return CAPTURE_TOUCHED, existing_id

            if mime.startswith("image/"):
                item_id = self.db.insert_image(mime, data, data_hash, now, before_commit)
            else:
                body = data.decode("utf-8", errors="replace")
                item_id = self.db.insert_text(body, data_hash, now)
            return CAPTURE_INSERTED, item_id

        capture.__name__ = "record_capture"
        return self._run(capture)

    def get_item(self, item_id: int) -> Optional[Dict]:
        """Thread-safe get item summary"""
        return self._run(self.db.get_item, item_id)

    def get_image(self, item_id: int) -> Optional[Dict]:
        """Thread-safe get image payload"""
        return self._run(self.db.get_image, item_id)

    def get_total_count(self) -> int:
        return self._run(self.db.get_total_count)

    def get_image_count(self) -> int:
        return self._run(self.db.get_image_count)

    def list_items(self, limit: int = 50, starred_only: bool = False) -> List[Dict]:
        """Thread-safe list items"""
        return self._run(self.db.list_items, limit, starred_only)

    def search(self, query: str, limit: int = 50) -> List[Dict]:
        """Thread-safe full-text search"""
        return self._run(self.db.search, query, limit)

    def gallery(self, limit: int = 50) -> List[Dict]:
        """Thread-safe image gallery"""
        return self._run(self.db.gallery, limit)

    def set_starred(self, item_id: int, value: bool) -> int:
        """Thread-safe star/unstar"""
        return self._run(self.db.set_starred, item_id, value)

    def delete_ids(self, ids: List[int]) -> Tuple[int, List[str]]:
        """Thread-safe delete of non-starred items"""
        return self._run(self.db.delete_ids, ids)

    def delete_items(self, ids: List[int]) -> Tuple[int, List[str]]:
        """Thread-safe delete of items regardless of starred flag"""
        return self._run(self.db.delete_items, ids)

    def delete_all_except_starred(self) -> Tuple[int, int, List[str]]:
        """Thread-safe delete of all non-starred items"""
        return self._run(self.db.delete_all_except_starred)

    def expired_item_ids(self, cutoff: int, unstarred_only: bool = True) -> List[int]:
        """Thread-safe lookup of items past retention"""
        return self._run(self.db.expired_item_ids, cutoff, unstarred_only)

    def delete_item(self, item_id: int) -> Tuple[bool, Optional[str]]:
        """Thread-safe delete of one item"""
        return self._run(self.db.delete_item, item_id)

    def release_artifacts(self, hashes: List[str], remove: Callable[[str], None]) -> int:
        """
        Call remove(hash) for each hash no item references any more

        The reference check and the removal share one lock hold.

        Returns:
            Number of hashes removed
        """
        def release():
            released = 0
            for data_hash in hashes:
                if self.db.find_by_hash(data_hash) is None:
                    remove(data_hash)
                    released += 1
            return released

        release.__name__ = "release_artifacts"
        return self._run(release)

    def close(self):
        with self.lock:
            self.db.close()

    @staticmethod
    def calculate_hash(data: bytes) -> str:
        """Calculate hash for deduplication"""
        return MemoriaDB.calculate_hash(data)
