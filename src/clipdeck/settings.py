import json
import sqlite3
from pathlib import Path
from typing import Any

from clipdeck.automation import AutomationEngine
from clipdeck.config import DB_PATH
from clipdeck.connections import ConnectionManager
from clipdeck.hotkeys import HotkeyRegistry

SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now', 'localtime'))
);
"""

WORKFLOWS_KEY = "workflows"
HOTKEYS_KEY = "hotkeys"
CONNECTIONS_KEY = "connections"
IGNORED_APPS_KEY = "ignored_apps"

DEFAULT_IGNORED_APPS = ["KeePass", "1Password"]


class SettingsStore:
    """JSON documents for workflows, hotkeys, connections and ignored apps.

    Kept in the same SQLite file as the items, one row per document.
    """

    def __init__(self, db_path: str | Path | None = None):
        self._db_path = str(db_path) if db_path else str(DB_PATH)
        self._conn = sqlite3.connect(self._db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        row = self._conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return json.loads(row["value"]) if row else default

    def put(self, key: str, value: Any) -> None:
        self._conn.execute(
            """INSERT INTO settings (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value,
               updated_at = strftime('%Y-%m-%dT%H:%M:%S', 'now', 'localtime')""",
            (key, json.dumps(value)),
        )
        self._conn.commit()

    def load_into(self, engine: AutomationEngine, hotkeys: HotkeyRegistry, connections: ConnectionManager) -> None:
        workflows = self.get(WORKFLOWS_KEY)
        if workflows is not None:
            engine.load(workflows)
        saved_hotkeys = self.get(HOTKEYS_KEY)
        if saved_hotkeys is not None:
            hotkeys.load(saved_hotkeys)
        saved_connections = self.get(CONNECTIONS_KEY)
        if saved_connections is not None:
            connections.load(saved_connections)

    def save_from(self, engine: AutomationEngine, hotkeys: HotkeyRegistry, connections: ConnectionManager) -> None:
        self.put(WORKFLOWS_KEY, engine.dump())
        self.put(HOTKEYS_KEY, hotkeys.dump())
        self.put(CONNECTIONS_KEY, connections.dump())

    def ignored_apps(self) -> list[str]:
        return list(self.get(IGNORED_APPS_KEY, DEFAULT_IGNORED_APPS))

    def set_ignored_apps(self, apps: list[str]) -> None:
        self.put(IGNORED_APPS_KEY, sorted({a.strip() for a in apps if a.strip()}))

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
