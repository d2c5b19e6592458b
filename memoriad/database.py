#!/usr/bin/env python3
"""
Database layer for Memoria
Handles SQLite storage of clipboard items, image payloads and the FTS index
"""

import hashlib
import logging
import sqlite3
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from memoriad.errors import ConflictError

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 100
MAX_QUERY_TOKENS = 12

SUMMARY_COLUMNS = """
    items.id, items.title, items.body, items.created_at, items.updated_at,
    items.last_used, items.starred, items.hash,
    EXISTS (SELECT 1 FROM images WHERE images.item_id = items.id) AS has_image
"""


def tokenize_query(text: str) -> List[str]:
    """
    Split user input into FTS5 prefix terms

    Only ASCII letters, digits, '_' and '-' are kept (lower-cased); every
    other character ends the current token. At most MAX_QUERY_TOKENS terms
    are returned.

    Example: "Hel, wor!!" -> ["hel*", "wor*"]
    """
    tokens = []
    current = []
    for ch in text or "":
        if (ch.isascii() and ch.isalnum()) or ch in "_-":
            current.append(ch.lower())
        elif current:
            tokens.append("".join(current))
            current = []
    if current:
        tokens.append("".join(current))

    return [f"{token}*" for token in tokens[:MAX_QUERY_TOKENS]]


def build_fts_query(text: str) -> str:
    """
    Build the MATCH expression for a search string

    Terms are quoted so '-' cannot be read as an FTS5 operator. Terms with
    no letter or digit would produce an empty phrase and are dropped.
    Returns "" when nothing searchable remains.
    """
    parts = []
    for term in tokenize_query(text):
        token = term[:-1]
        if not any(ch.isalnum() for ch in token):
            continue
        parts.append(f'"{token}"*')
    return " ".join(parts)


class MemoriaDB:
    """SQLite database for clipboard items"""

    def __init__(
        self,
        db_path: Optional[str] = None,
        thumbs_dir: Optional[Path] = None,
        enforce_unique_hash: bool = True,
    ):
        """
        Args:
            db_path: Database file, or ":memory:". Defaults to
                ~/.local/share/memoria/memoria.db
            thumbs_dir: Directory holding <hash>.png thumbnails, used to
                fill in thumbnail_path on summaries
            enforce_unique_hash: Reject inserts of a hash that already exists
        """
        if db_path is None:
            db_dir = Path.home() / ".local" / "share" / "memoria"
            db_dir.mkdir(parents=True, exist_ok=True)
            db_path = db_dir / "memoria.db"

        self.db_path = str(db_path)
        self.thumbs_dir = Path(thumbs_dir) if thumbs_dir is not None else None
        self.enforce_unique_hash = enforce_unique_hash
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self):
        """Initialize database schema"""
        cursor = self.conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        if self.db_path != ":memory:":
            cursor.execute("PRAGMA journal_mode = WAL")

        cursor.executescript(
            """
            CREATE TABLE IF NOT EXISTS items (
                id          INTEGER PRIMARY KEY,
                created_at  INTEGER NOT NULL,
                updated_at  INTEGER NOT NULL,
                last_used   INTEGER,
                starred     INTEGER NOT NULL DEFAULT 0,
                title       TEXT,
                body        TEXT,
                hash        TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_items_hash ON items(hash);
            CREATE INDEX IF NOT EXISTS idx_items_last_used ON items(last_used DESC);
            CREATE INDEX IF NOT EXISTS idx_items_created_at ON items(created_at);

            CREATE TABLE IF NOT EXISTS images (
                id          INTEGER PRIMARY KEY,
                item_id     INTEGER NOT NULL,
                created_at  INTEGER NOT NULL,
                mime        TEXT,
                bytes       BLOB,
                FOREIGN KEY(item_id) REFERENCES items(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_images_item_id ON images(item_id);

            CREATE VIRTUAL TABLE IF NOT EXISTS items_fts USING fts5(
                title,
                body,
                content='items',
                content_rowid='id'
            );

            CREATE TRIGGER IF NOT EXISTS items_ai AFTER INSERT ON items BEGIN
                INSERT INTO items_fts(rowid, title, body)
                VALUES (new.id, new.title, new.body);
            END;

            CREATE TRIGGER IF NOT EXISTS items_ad AFTER DELETE ON items BEGIN
                INSERT INTO items_fts(items_fts, rowid, title, body)
                VALUES ('delete', old.id, old.title, old.body);
            END;

            CREATE TRIGGER IF NOT EXISTS items_au AFTER UPDATE OF title, body ON items BEGIN
                INSERT INTO items_fts(items_fts, rowid, title, body)
                VALUES ('delete', old.id, old.title, old.body);
                INSERT INTO items_fts(rowid, title, body)
                VALUES (new.id, new.title, new.body);
            END;
            """
        )
        self.conn.commit()
        logger.info(f"Database initialized or already exists at: {self.db_path}")

    @staticmethod
    def calculate_hash(data: bytes) -> str:
        """SHA-256 hex digest of the raw content bytes"""
        return hashlib.sha256(data).hexdigest()

    @staticmethod
    def extract_title(body: str) -> str:
        """Text up to the first newline without a trailing CR, truncated to TITLE_MAX_CHARS characters"""
        return body.split("\n", 1)[0].rstrip("\r")[:TITLE_MAX_CHARS]

    @staticmethod
    def _now(now: Optional[int]) -> int:
        return int(time.time()) if now is None else int(now)

    def _check_unique(self, cursor: sqlite3.Cursor, data_hash: str):
        if not self.enforce_unique_hash:
            return
        cursor.execute("SELECT id FROM items WHERE hash = ? LIMIT 1", (data_hash,))
        row = cursor.fetchone()
        if row:
            raise ConflictError(f"hash {data_hash} already stored as item {row['id']}")

    # ========== Inserts ==========

    def insert_text(self, body: str, data_hash: str, now: Optional[int] = None) -> int:
        """
        Insert a text item

        Args:
            body: Full text content
            data_hash: Hash of the raw clipboard bytes
            now: Unix seconds used for all three timestamps

        Returns:
            The ID of the inserted item

        Raises:
            ConflictError: hash already present and uniqueness is enforced
        """
        now = self._now(now)
        title = self.extract_title(body)

        with self.conn:
            cursor = self.conn.cursor()
            self._check_unique(cursor, data_hash)
            cursor.execute(
                """
                INSERT INTO items (created_at, updated_at, last_used, title, body, hash)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (now, now, now, title, body, data_hash),
            )
            item_id = cursor.lastrowid

        logger.info(f"Added text item to DB: ID={item_id}, Hash={data_hash[:16]}...")
        return item_id

    def insert_image(
        self,
        mime: str,
        data: bytes,
        data_hash: str,
        now: Optional[int] = None,
        before_commit: Optional[Callable[[int], None]] = None,
    ) -> int:
        """
        Insert an image item and its image row in one transaction

        Args:
            mime: Image MIME type, e.g. image/png
            data: Raw image bytes
            data_hash: Hash of data
            now: Unix seconds used for all timestamps
            before_commit: Called with the new item id after both rows are
                written and before commit. Raising from it rolls back.

        Returns:
            The ID of the inserted item
        """
        now = self._now(now)

        with self.conn:
            cursor = self.conn.cursor()
            self._check_unique(cursor, data_hash)
            cursor.execute(
                """
                INSERT INTO items (created_at, updated_at, last_used, title, body, hash)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (now, now, now, f"Image: {data_hash}", "", data_hash),
            )
            item_id = cursor.lastrowid
            cursor.execute(
                "INSERT INTO images (item_id, created_at, mime, bytes) VALUES (?, ?, ?, ?)",
                (item_id, now, mime, data),
            )
            if before_commit is not None:
                before_commit(item_id)

        logger.info(f"Added image item to DB: ID={item_id}, Mime={mime}, Hash={data_hash[:16]}...")
        return item_id

    # ========== Lookups ==========

    def find_by_hash(self, data_hash: str) -> Optional[int]:
        """Item ID for a hash, or None"""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT id FROM items WHERE hash = ? ORDER BY id DESC LIMIT 1",
            (data_hash,),
        )
        row = cursor.fetchone()
        return row["id"] if row else None

    def touch_last_used(self, item_id: int, now: Optional[int] = None) -> bool:
        """Refresh last_used of an existing item"""
        cursor = self.conn.cursor()
        cursor.execute(
            "UPDATE items SET last_used = ? WHERE id = ?",
            (self._now(now), item_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def get_item(self, item_id: int) -> Optional[Dict]:
        """Get a single item summary by ID"""
        cursor = self.conn.cursor()
        cursor.execute(f"SELECT {SUMMARY_COLUMNS} FROM items WHERE id = ?", (item_id,))
        row = cursor.fetchone()
        return self._row_to_summary(row) if row else None

    def get_image(self, item_id: int) -> Optional[Dict]:
        """Image row (mime, bytes) owned by an item, or None"""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT mime, bytes FROM images WHERE item_id = ? ORDER BY id LIMIT 1",
            (item_id,),
        )
        row = cursor.fetchone()
        if row:
            return {"mime": row["mime"], "bytes": row["bytes"]}
        return None

    def get_total_count(self) -> int:
        cursor = self.conn.cursor()
        cursor.execute("SELECT COUNT(*) AS count FROM items")
        return cursor.fetchone()["count"]

    def get_image_count(self) -> int:
        cursor = self.conn.cursor()
        cursor.execute("SELECT COUNT(*) AS count FROM images")
        return cursor.fetchone()["count"]

    def _row_to_summary(self, row: sqlite3.Row) -> Dict:
        has_image = bool(row["has_image"])
        summary = {
            "id": row["id"],
            "title": row["title"],
            "body": row["body"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "last_used": row["last_used"],
            "starred": bool(row["starred"]),
            "hash": row["hash"],
            "has_image": has_image,
        }
        if has_image and row["hash"] and self.thumbs_dir is not None:
            summary["thumbnail_path"] = str(self.thumbs_dir / f"{row['hash']}.png")
        return summary

    # ========== Queries ==========

    def list_items(self, limit: int = 50, starred_only: bool = False) -> List[Dict]:
        """
        List items

        Unfiltered results put starred items first, then most recently used.
        With starred_only, only starred items ordered by last_used.
        """
        if limit <= 0:
            return []

        if starred_only:
            sql = f"""
                SELECT {SUMMARY_COLUMNS} FROM items
                WHERE starred = 1
                ORDER BY last_used DESC, id DESC
                LIMIT ?
            """
        else:
            sql = f"""
                SELECT {SUMMARY_COLUMNS} FROM items
                ORDER BY starred DESC, last_used DESC, id DESC
                LIMIT ?
            """
        cursor = self.conn.cursor()
        cursor.execute(sql, (limit,))
        return [self._row_to_summary(row) for row in cursor.fetchall()]

    def search(self, query: str, limit: int = 50) -> List[Dict]:
        """
        Ranked prefix search over title and body

        Returns an empty list when the query has no searchable tokens.
        """
        fts_query = build_fts_query(query)
        if not fts_query or limit <= 0:
            return []

        logger.debug(f"[SEARCH DB] Query: '{query}' -> MATCH '{fts_query}'")

        cursor = self.conn.cursor()
        cursor.execute(
            f"""
            SELECT {SUMMARY_COLUMNS}
            FROM items_fts
            JOIN items ON items_fts.rowid = items.id
            WHERE items_fts MATCH ?
            ORDER BY rank
            LIMIT ?
            """,
            (fts_query, limit),
        )
        return [self._row_to_summary(row) for row in cursor.fetchall()]

    def gallery(self, limit: int = 50) -> List[Dict]:
        """Items that own an image row, most recently used first"""
        if limit <= 0:
            return []

        cursor = self.conn.cursor()
        cursor.execute(
            f"""
            SELECT {SUMMARY_COLUMNS} FROM items
            WHERE EXISTS (SELECT 1 FROM images WHERE images.item_id = items.id)
            ORDER BY last_used DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [self._row_to_summary(row) for row in cursor.fetchall()]

    # ========== Mutations ==========

    def set_starred(self, item_id: int, value: bool) -> int:
        """Set the starred flag. Returns the number of rows updated."""
        cursor = self.conn.cursor()
        cursor.execute(
            "UPDATE items SET starred = ? WHERE id = ?",
            (1 if value else 0, item_id),
        )
        self.conn.commit()
        return cursor.rowcount

    def _unreferenced(self, cursor: sqlite3.Cursor, hashes: List[str]) -> List[str]:
        """Subset of hashes no remaining item refers to"""
        if not hashes:
            return []
        unique = sorted(set(hashes))
        placeholders = ",".join("?" * len(unique))
        cursor.execute(
            f"SELECT DISTINCT hash FROM items WHERE hash IN ({placeholders})",
            unique,
        )
        still_used = {row["hash"] for row in cursor.fetchall()}
        return [h for h in unique if h not in still_used]

    def delete_ids(self, ids: List[int]) -> Tuple[int, List[str]]:
        """
        Delete non-starred items by id

        Starred ids are skipped without error.

        Returns:
            (deleted count, hashes whose artifacts can be removed)
        """
        if not ids:
            return 0, []

        placeholders = ",".join("?" * len(ids))
        with self.conn:
            cursor = self.conn.cursor()
            cursor.execute(
                f"SELECT hash FROM items WHERE id IN ({placeholders}) AND starred = 0 AND hash IS NOT NULL",
                list(ids),
            )
            hashes = [row["hash"] for row in cursor.fetchall()]
            cursor.execute(
                f"DELETE FROM items WHERE id IN ({placeholders}) AND starred = 0",
                list(ids),
            )
            deleted = cursor.rowcount
            orphaned = self._unreferenced(cursor, hashes)

        logger.info(f"Deleted {deleted} of {len(ids)} requested items (starred skipped)")
        return deleted, orphaned

    def delete_items(self, ids: List[int]) -> Tuple[int, List[str]]:
        """
        Delete items by id regardless of the starred flag

        Returns:
            (deleted count, hashes whose artifacts can be removed)
        """
        if not ids:
            return 0, []

        placeholders = ",".join("?" * len(ids))
        with self.conn:
            cursor = self.conn.cursor()
            cursor.execute(
                f"SELECT hash FROM items WHERE id IN ({placeholders}) AND hash IS NOT NULL",
                list(ids),
            )
            hashes = [row["hash"] for row in cursor.fetchall()]
            cursor.execute(f"DELETE FROM items WHERE id IN ({placeholders})", list(ids))
            deleted = cursor.rowcount
            orphaned = self._unreferenced(cursor, hashes)

        logger.info(f"Deleted {deleted} items by explicit request")
        return deleted, orphaned

    def delete_all_except_starred(self) -> Tuple[int, int, List[str]]:
        """
        Delete every non-starred item and its image rows

        Returns:
            (deleted items, deleted images, hashes whose artifacts can be removed)
        """
        with self.conn:
            cursor = self.conn.cursor()
            cursor.execute("SELECT hash FROM items WHERE starred = 0 AND hash IS NOT NULL")
            hashes = [row["hash"] for row in cursor.fetchall()]
            cursor.execute(
                "DELETE FROM images WHERE item_id IN (SELECT id FROM items WHERE starred = 0)"
            )
            deleted_images = cursor.rowcount
            cursor.execute("DELETE FROM items WHERE starred = 0")
            deleted_items = cursor.rowcount
            orphaned = self._unreferenced(cursor, hashes)

        logger.info(f"Deleted all non-starred: {deleted_items} items, {deleted_images} images")
        return deleted_items, deleted_images, orphaned

    def expired_item_ids(self, cutoff: int, unstarred_only: bool = True) -> List[int]:
        """IDs of items created before cutoff"""
        cursor = self.conn.cursor()
        if unstarred_only:
            cursor.execute(
                "SELECT id FROM items WHERE created_at < ? AND starred = 0 ORDER BY id",
                (cutoff,),
            )
        else:
            cursor.execute(
                "SELECT id FROM items WHERE created_at < ? ORDER BY id",
                (cutoff,),
            )
        return [row["id"] for row in cursor.fetchall()]

    def delete_item(self, item_id: int) -> Tuple[bool, Optional[str]]:
        """
        Delete one item (image row cascades)

        Returns:
            (deleted, hash whose artifacts can be removed or None)
        """
        with self.conn:
            cursor = self.conn.cursor()
            cursor.execute("SELECT hash FROM items WHERE id = ?", (item_id,))
            row = cursor.fetchone()
            if row is None:
                return False, None
            cursor.execute("DELETE FROM items WHERE id = ?", (item_id,))
            orphaned = self._unreferenced(cursor, [row["hash"]] if row["hash"] else [])

        return True, orphaned[0] if orphaned else None

    def close(self):
        """Close database connection"""
        self.conn.close()
