import logging
from collections.abc import Iterable
from dataclasses import dataclass

from clipdeck.automation import AutomationEngine, FiringResult
from clipdeck.config import MAX_CLIPBOARD_ITEMS, MAX_TEXT_SIZE, PREVIEW_LENGTH
from clipdeck.models import Category, Item, TriggerKind
from clipdeck.storage import ItemStore
from clipdeck.utils import compute_hash, truncate_text

logger = logging.getLogger(__name__)


@dataclass
class CaptureResult:
    item: Item
    created: bool
    firing: FiringResult


class ClipboardCapture:
    """Turns copied text into clipboard items and fires ``on_copy``.

    Reading the OS pasteboard is the caller's job; this class receives the
    text and the name of the application it came from.
    """

    def __init__(
        self,
        store: ItemStore,
        engine: AutomationEngine,
        ignored_apps: Iterable[str] = (),
        max_items: int = MAX_CLIPBOARD_ITEMS,
    ):
        self._store = store
        self._engine = engine
        self._ignored = {a.lower() for a in ignored_apps}
        self._max_items = max_items

    def is_ignored(self, source_app: str | None) -> bool:
        return source_app is not None and source_app.lower() in self._ignored

    def record(self, text: str, source_app: str | None = None) -> CaptureResult | None:
        if not text or not text.strip():
            return None
        if len(text.encode("utf-8")) > MAX_TEXT_SIZE:
            logger.warning("Clipboard text too large (%d bytes), skipping", len(text.encode("utf-8")))
            return None
        if self.is_ignored(source_app):
            logger.debug("Ignoring clipboard change from %s", source_app)
            return None

        existing = self._store.find_by_hash(compute_hash(text), Category.CLIPBOARD)
        if existing:
            item = self._store.touch(existing.id)
            created = False
        else:
            item = self._store.create(
                Category.CLIPBOARD, title=truncate_text(text, PREVIEW_LENGTH), source_app=source_app
            )
            item = self._store.update(item.id, content=text)
            created = True

        firing = self._engine.fire(TriggerKind.ON_COPY, item.id, source_app)
        pruned = self._store.prune_clipboard(self._max_items)
        if pruned:
            logger.info("Moved %d old clipboard items to the recycle bin", pruned)
        return CaptureResult(self._store.get(item.id), created, firing)
