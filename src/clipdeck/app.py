import logging
from pathlib import Path

from clipdeck.automation import AutomationEngine, default_workflows
from clipdeck.capture import ClipboardCapture
from clipdeck.commands import CommandMatcher
from clipdeck.config import DB_PATH
from clipdeck.connections import ConnectionManager
from clipdeck.hotkeys import HotkeyRegistry
from clipdeck.query import QueryEngine
from clipdeck.settings import SettingsStore
from clipdeck.storage import ItemStore

logger = logging.getLogger(__name__)


class ClipdeckApp:
    """Wires the item store, engines and registries around one database file."""

    def __init__(self, db_path: str | Path | None = None):
        self._db_path = db_path or DB_PATH
        self.store = ItemStore(self._db_path)
        self.queries = QueryEngine(self.store)
        self.engine = AutomationEngine(self.store, default_workflows())
        self.hotkeys = HotkeyRegistry()
        self.connections = ConnectionManager()
        self.matcher = CommandMatcher()
        self.settings = SettingsStore(self._db_path)
        self.settings.load_into(self.engine, self.hotkeys, self.connections)
        self.capture = ClipboardCapture(self.store, self.engine, self.settings.ignored_apps())

    def reload_ignored_apps(self) -> None:
        self.capture = ClipboardCapture(self.store, self.engine, self.settings.ignored_apps())

    def save(self) -> None:
        self.settings.save_from(self.engine, self.hotkeys, self.connections)
        logger.debug("Saved settings to %s", self._db_path)

    def close(self) -> None:
        self.settings.close()
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
