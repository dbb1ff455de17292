import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from clipdeck.config import DB_PATH, MAX_CLIPBOARD_ITEMS
from clipdeck.errors import InvalidState, NotFound, ValidationError
from clipdeck.models import Category, FieldType, Flag, Item, StructuredField
from clipdeck.utils import compute_hash, fields_text, short_id

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    title         TEXT NOT NULL DEFAULT '',
    content       TEXT NOT NULL DEFAULT '',
    category      TEXT NOT NULL CHECK(category IN ('clipboard', 'notes', 'snippets', 'prompts')),
    is_structured INTEGER NOT NULL DEFAULT 0,
    pinned        INTEGER NOT NULL DEFAULT 0,
    starred       INTEGER NOT NULL DEFAULT 0,
    deleted       INTEGER NOT NULL DEFAULT 0,
    content_hash  TEXT NOT NULL DEFAULT '',
    source_app    TEXT,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS item_tags (
    item_id INTEGER NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    tag     TEXT NOT NULL,
    PRIMARY KEY (item_id, tag)
);

CREATE TABLE IF NOT EXISTS item_fields (
    item_id  INTEGER NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    field_id TEXT NOT NULL,
    label    TEXT NOT NULL,
    value    TEXT NOT NULL DEFAULT '',
    type     TEXT NOT NULL CHECK(type IN ('text', 'password', 'url', 'email', 'phone', 'date', 'api_key')),
    PRIMARY KEY (item_id, position)
);

CREATE INDEX IF NOT EXISTS idx_items_deleted ON items(deleted);
CREATE INDEX IF NOT EXISTS idx_item_tags_tag ON item_tags(tag);
"""

_UNSET = object()


def default_title(category: Category, is_structured: bool) -> str:
    if category == Category.PROMPTS:
        return "New Prompt"
    if is_structured:
        return "New Structured Note"
    if category == Category.SNIPPETS:
        return "New Snippet"
    return "Untitled Note"


class ItemStore:
    """Owns every item and its fields.

    All mutations on one item id serialize on a re-entrant per-item lock.
    SQL access is additionally guarded by a connection lock so reads always
    see a committed, point-in-time state.
    """

    def __init__(self, db_path: str | Path | None = None, clock: Callable[[], datetime] | None = None):
        self._db_path = str(db_path) if db_path else str(DB_PATH)
        self._clock = clock or datetime.now
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._db_lock = threading.RLock()
        self._locks: dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self.init_db()

    def init_db(self) -> None:
        with self._db_lock:
            self._conn.executescript(SCHEMA)
            self._migrate_schema()
            self._conn.commit()

    def _migrate_schema(self) -> None:
        """Add columns introduced after the first release."""
        cursor = self._conn.execute("PRAGMA table_info(items)")
        columns = {row[1] for row in cursor.fetchall()}
        if "content_hash" not in columns:
            self._conn.execute("ALTER TABLE items ADD COLUMN content_hash TEXT NOT NULL DEFAULT ''")
        if "source_app" not in columns:
            self._conn.execute("ALTER TABLE items ADD COLUMN source_app TEXT")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_items_content_hash ON items(content_hash)")

    @contextmanager
    def item_lock(self, item_id: int) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(item_id, threading.RLock())
        with lock:
            yield

    def _now(self) -> str:
        return self._clock().isoformat()

    # -- reads ---------------------------------------------------------------

    def get(self, item_id: int) -> Item:
        with self._db_lock:
            row = self._conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
            if row is None:
                raise NotFound("item", item_id)
            return self._load_item(row)

    def snapshot(self) -> list[Item]:
        """Return a point-in-time copy of every stored item in insertion order."""
        with self._db_lock:
            rows = self._conn.execute("SELECT * FROM items ORDER BY id").fetchall()
            tags: dict[int, set[str]] = {}
            for row in self._conn.execute("SELECT item_id, tag FROM item_tags"):
                tags.setdefault(row["item_id"], set()).add(row["tag"])
            fields: dict[int, list[StructuredField]] = {}
            for row in self._conn.execute("SELECT * FROM item_fields ORDER BY item_id, position"):
                fields.setdefault(row["item_id"], []).append(self._row_to_field(row))
        return [self._row_to_item(r, tags.get(r["id"], set()), fields.get(r["id"], [])) for r in rows]

    def find_by_hash(self, content_hash: str, category: Category | None = None) -> Item | None:
        sql = "SELECT * FROM items WHERE content_hash = ? AND deleted = 0"
        params: list = [content_hash]
        if category is not None:
            sql += " AND category = ?"
            params.append(Category(category).value)
        sql += " ORDER BY updated_at DESC, id DESC LIMIT 1"
        with self._db_lock:
            row = self._conn.execute(sql, params).fetchone()
            return self._load_item(row) if row else None

    def count(self, deleted: bool | None = None) -> int:
        with self._db_lock:
            if deleted is None:
                row = self._conn.execute("SELECT COUNT(*) AS cnt FROM items").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) AS cnt FROM items WHERE deleted = ?", (int(deleted),)
                ).fetchone()
        return row["cnt"]

    # -- mutations -----------------------------------------------------------

    def create(
        self,
        category: Category | str,
        is_structured: bool = False,
        title: str | None = None,
        source_app: str | None = None,
    ) -> Item:
        category = Category(category)
        now = self._now()
        with self._db_lock:
            cursor = self._conn.execute(
                """INSERT INTO items (title, content, category, is_structured, content_hash, source_app, created_at, updated_at)
                   VALUES (?, '', ?, ?, ?, ?, ?, ?)""",
                (
                    title if title is not None else default_title(category, is_structured),
                    category.value,
                    int(is_structured),
                    compute_hash(""),
                    source_app,
                    now,
                    now,
                ),
            )
            self._conn.commit()
            item_id = cursor.lastrowid
        logger.debug("Created item %d in %s", item_id, category.value)
        return self.get(item_id)

    def update(self, item_id: int, title=_UNSET, content=_UNSET, fields=_UNSET) -> Item:
        with self.item_lock(item_id):
            item = self.get(item_id)
            if fields is not _UNSET:
                if not item.is_structured:
                    raise ValidationError(f"item {item_id} is not structured and has no fields")
                fields = self._prepare_fields(fields)
                if not fields:
                    raise ValidationError(f"structured item {item_id} needs at least one field")
            new_title = item.title if title is _UNSET else title
            new_content = item.content if content is _UNSET else content
            new_fields = item.fields if fields is _UNSET else fields
            flat = fields_text(new_fields) if item.is_structured else new_content

            with self._db_lock:
                self._conn.execute(
                    "UPDATE items SET title = ?, content = ?, content_hash = ?, updated_at = ? WHERE id = ?",
                    (new_title, new_content, compute_hash(flat), self._now(), item_id),
                )
                if fields is not _UNSET:
                    self._conn.execute("DELETE FROM item_fields WHERE item_id = ?", (item_id,))
                    self._conn.executemany(
                        """INSERT INTO item_fields (item_id, position, field_id, label, value, type)
                           VALUES (?, ?, ?, ?, ?, ?)""",
                        [(item_id, pos, f.id, f.label, f.value, f.type.value) for pos, f in enumerate(fields)],
                    )
                self._conn.commit()
            return self.get(item_id)

    def set_flag(self, item_id: int, flag: Flag | str, value: bool) -> Item:
        flag = Flag(flag)
        with self.item_lock(item_id):
            self.get(item_id)
            with self._db_lock:
                # Column name comes from the Flag enum, never from caller text.
                self._conn.execute(f"UPDATE items SET {flag.value} = ? WHERE id = ?", (int(value), item_id))
                self._conn.commit()
            return self.get(item_id)

    def soft_delete(self, item_id: int) -> Item:
        with self.item_lock(item_id):
            item = self.get(item_id)
            if item.deleted:
                return item
            with self._db_lock:
                self._conn.execute("UPDATE items SET deleted = 1 WHERE id = ?", (item_id,))
                self._conn.commit()
            logger.info("Moved item %d to recycle bin", item_id)
            return self.get(item_id)

    def restore(self, item_id: int) -> Item:
        with self.item_lock(item_id):
            item = self.get(item_id)
            if not item.deleted:
                raise InvalidState(f"item {item_id} is not in the recycle bin")
            with self._db_lock:
                self._conn.execute("UPDATE items SET deleted = 0 WHERE id = ?", (item_id,))
                self._conn.commit()
            logger.info("Restored item %d", item_id)
            return self.get(item_id)

    def purge(self, item_id: int) -> None:
        with self.item_lock(item_id):
            item = self.get(item_id)
            if not item.deleted:
                raise InvalidState(f"item {item_id} must be in the recycle bin before it can be purged")
            with self._db_lock:
                self._conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
                self._conn.commit()
        with self._locks_guard:
            self._locks.pop(item_id, None)
        logger.info("Purged item %d", item_id)

    def add_tag(self, item_id: int, tag: str) -> Item:
        tag = self._clean_tag(tag)
        with self.item_lock(item_id):
            item = self.get(item_id)
            if tag in item.tags:
                return item
            with self._db_lock:
                self._conn.execute("INSERT INTO item_tags (item_id, tag) VALUES (?, ?)", (item_id, tag))
                self._conn.execute("UPDATE items SET updated_at = ? WHERE id = ?", (self._now(), item_id))
                self._conn.commit()
            return self.get(item_id)

    def remove_tag(self, item_id: int, tag: str) -> Item:
        tag = self._clean_tag(tag)
        with self.item_lock(item_id):
            item = self.get(item_id)
            if tag not in item.tags:
                return item
            with self._db_lock:
                self._conn.execute("DELETE FROM item_tags WHERE item_id = ? AND tag = ?", (item_id, tag))
                self._conn.execute("UPDATE items SET updated_at = ? WHERE id = ?", (self._now(), item_id))
                self._conn.commit()
            return self.get(item_id)

    def recategorize(self, item_id: int, category: Category | str) -> Item:
        category = Category(category)
        with self.item_lock(item_id):
            item = self.get(item_id)
            if item.category == category:
                return item
            with self._db_lock:
                self._conn.execute(
                    "UPDATE items SET category = ?, updated_at = ? WHERE id = ?",
                    (category.value, self._now(), item_id),
                )
                self._conn.commit()
            return self.get(item_id)

    def touch(self, item_id: int) -> Item:
        with self.item_lock(item_id):
            self.get(item_id)
            with self._db_lock:
                self._conn.execute("UPDATE items SET updated_at = ? WHERE id = ?", (self._now(), item_id))
                self._conn.commit()
            return self.get(item_id)

    def prune_clipboard(self, keep_count: int | None = None) -> int:
        """Move clipboard history beyond ``keep_count`` to the recycle bin.

        Pinned and starred clips are never pruned.
        """
        keep = keep_count if keep_count is not None else MAX_CLIPBOARD_ITEMS
        with self._db_lock:
            rows = self._conn.execute(
                """SELECT id FROM items
                   WHERE category = 'clipboard' AND deleted = 0 AND pinned = 0 AND starred = 0
                   ORDER BY updated_at DESC, id DESC
                   LIMIT -1 OFFSET ?""",
                (keep,),
            ).fetchall()
        for row in rows:
            self.soft_delete(row["id"])
        return len(rows)

    def empty_recycle_bin(self) -> int:
        with self._db_lock:
            rows = self._conn.execute("SELECT id FROM items WHERE deleted = 1").fetchall()
        purged = 0
        for row in rows:
            try:
                self.purge(row["id"])
            except (NotFound, InvalidState):
                # Restored or purged by someone else in the meantime.
                continue
            purged += 1
        return purged

    def close(self) -> None:
        with self._db_lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def _clean_tag(tag: str) -> str:
        tag = tag.strip()
        if not tag:
            raise ValidationError("tag must not be empty")
        return tag

    @staticmethod
    def _prepare_fields(fields: list[StructuredField]) -> list[StructuredField]:
        prepared: list[StructuredField] = []
        seen: set[str] = set()
        for f in fields:
            field_id = f.id or short_id()
            if field_id in seen:
                raise ValidationError(f"duplicate field id: {field_id}")
            seen.add(field_id)
            prepared.append(StructuredField(id=field_id, label=f.label, value=f.value, type=FieldType(f.type)))
        return prepared

    def _load_item(self, row: sqlite3.Row) -> Item:
        item_id = row["id"]
        tags = {r["tag"] for r in self._conn.execute("SELECT tag FROM item_tags WHERE item_id = ?", (item_id,))}
        fields = [
            self._row_to_field(r)
            for r in self._conn.execute("SELECT * FROM item_fields WHERE item_id = ? ORDER BY position", (item_id,))
        ]
        return self._row_to_item(row, tags, fields)

    @staticmethod
    def _row_to_field(row: sqlite3.Row) -> StructuredField:
        return StructuredField(
            id=row["field_id"],
            label=row["label"],
            value=row["value"],
            type=FieldType(row["type"]),
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row, tags: set[str], fields: list[StructuredField]) -> Item:
        return Item(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            category=Category(row["category"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            tags=set(tags),
            pinned=bool(row["pinned"]),
            starred=bool(row["starred"]),
            deleted=bool(row["deleted"]),
            is_structured=bool(row["is_structured"]),
            fields=list(fields),
            content_hash=row["content_hash"],
            source_app=row["source_app"],
        )
