from datetime import datetime, timedelta

import pytest

from clipdeck.automation import AutomationEngine
from clipdeck.models import Category
from clipdeck.storage import ItemStore


class TickingClock:
    """Returns a strictly increasing time on every call."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 9, 12, 0, 0)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(clock):
    mgr = ItemStore(db_path=":memory:", clock=clock)
    yield mgr
    mgr.close()


@pytest.fixture
def engine(store):
    return AutomationEngine(store)


@pytest.fixture
def make_item(store):
    """Factory fixture creating stored items with content and tags."""

    def _make_item(
        content: str = "hello world",
        category: Category = Category.NOTES,
        title: str | None = None,
        tags: tuple[str, ...] = (),
        pinned: bool = False,
        starred: bool = False,
    ):
        item = store.create(category, title=title)
        item = store.update(item.id, content=content)
        for tag in tags:
            store.add_tag(item.id, tag)
        if pinned:
            store.set_flag(item.id, "pinned", True)
        if starred:
            store.set_flag(item.id, "starred", True)
        return store.get(item.id)

    return _make_item
