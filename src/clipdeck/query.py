"""Facet and free-text filtering over an item snapshot.

Every list view (category, tag, starred, untagged, recycle bin) goes through
:func:`query`; there are no per-view predicates elsewhere.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from clipdeck.errors import ValidationError
from clipdeck.models import Category, Item
from clipdeck.storage import ItemStore
from clipdeck.utils import item_text


class FacetKind(str, Enum):
    ALL = "all"
    CATEGORY = "category"
    STARRED = "starred"
    UNTAGGED = "untagged"
    TAG = "tag"
    RECYCLE = "recycle"


@dataclass(frozen=True)
class Facet:
    kind: FacetKind
    value: str | None = None

    @classmethod
    def parse(cls, raw: "str | Facet") -> "Facet":
        """Parse ``all``, ``starred``, ``untagged``, ``recycle``,
        ``category:<name>`` (or a bare category name) and ``tag:<name>``."""
        if isinstance(raw, Facet):
            return raw
        text = raw.strip()
        lowered = text.lower()
        if lowered in (FacetKind.ALL.value, FacetKind.STARRED.value, FacetKind.UNTAGGED.value, FacetKind.RECYCLE.value):
            return cls(FacetKind(lowered))
        if lowered.startswith("tag:"):
            tag = text[4:].strip()
            if not tag:
                raise ValidationError("tag facet needs a tag name")
            return cls(FacetKind.TAG, tag)
        name = lowered[len("category:"):] if lowered.startswith("category:") else lowered
        try:
            return cls(FacetKind.CATEGORY, Category(name.strip()).value)
        except ValueError:
            raise ValidationError(f"unknown facet: {raw}") from None

    def matches(self, item: Item) -> bool:
        if self.kind == FacetKind.RECYCLE:
            return item.deleted
        if item.deleted:
            return False
        if self.kind == FacetKind.ALL:
            return True
        if self.kind == FacetKind.STARRED:
            return item.starred
        if self.kind == FacetKind.UNTAGGED:
            return not item.tags
        if self.kind == FacetKind.TAG:
            return self.value in item.tags
        return item.category.value == self.value

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}" if self.value is not None else self.kind.value


def matches_text(item: Item, search_text: str) -> bool:
    if not search_text:
        return True
    needle = search_text.lower()
    return needle in item.title.lower() or needle in item_text(item).lower()


def sort_items(items: Iterable[Item]) -> list[Item]:
    # Two stable passes: most recent first, then pinned ahead of unpinned.
    ordered = sorted(items, key=lambda i: i.updated_at, reverse=True)
    return sorted(ordered, key=lambda i: not i.pinned)


def query(items: Iterable[Item], facet: "Facet | str", search_text: str = "") -> list[Item]:
    """Return the items matching both ``facet`` and ``search_text``.

    Pinned items come first, then most recently updated; ties keep the
    snapshot's insertion order.
    """
    facet = Facet.parse(facet)
    return sort_items(i for i in items if facet.matches(i) and matches_text(i, search_text))


def facet_counts(items: Iterable[Item]) -> dict[str, int]:
    items = list(items)
    facets = [Facet(FacetKind.ALL), Facet(FacetKind.STARRED), Facet(FacetKind.UNTAGGED), Facet(FacetKind.RECYCLE)]
    facets += [Facet(FacetKind.CATEGORY, c.value) for c in Category]
    return {str(f): sum(1 for i in items if f.matches(i)) for f in facets}


def all_tags(items: Iterable[Item]) -> list[str]:
    return sorted({tag for i in items if not i.deleted for tag in i.tags})


class QueryEngine:
    def __init__(self, store: ItemStore):
        self._store = store

    def query(self, facet: "Facet | str", search_text: str = "") -> list[Item]:
        return query(self._store.snapshot(), facet, search_text)

    def counts(self) -> dict[str, int]:
        return facet_counts(self._store.snapshot())

    def tags(self) -> list[str]:
        return all_tags(self._store.snapshot())
