from datetime import datetime

import pytest

from clipdeck.errors import ValidationError
from clipdeck.models import Category, Item, StructuredField
from clipdeck.query import Facet, FacetKind, QueryEngine, all_tags, facet_counts, matches_text, query


def _item(item_id, updated_minute=0, **kwargs) -> Item:
    stamp = datetime(2024, 1, 9, 12, updated_minute)
    defaults = dict(
        id=item_id,
        title=f"Item {item_id}",
        content="",
        category=Category.NOTES,
        created_at=stamp,
        updated_at=stamp,
    )
    defaults.update(kwargs)
    return Item(**defaults)


class TestFacetParse:
    @pytest.mark.parametrize("raw,kind", [
        ("all", FacetKind.ALL),
        ("Starred", FacetKind.STARRED),
        ("untagged", FacetKind.UNTAGGED),
        ("recycle", FacetKind.RECYCLE),
    ])
    def test_simple_facets(self, raw, kind):
        assert Facet.parse(raw) == Facet(kind)

    def test_category_facet(self):
        assert Facet.parse("category:snippets") == Facet(FacetKind.CATEGORY, "snippets")
        assert Facet.parse("notes") == Facet(FacetKind.CATEGORY, "notes")

    def test_tag_facet_keeps_case(self):
        assert Facet.parse("tag:Work") == Facet(FacetKind.TAG, "Work")

    def test_empty_tag_rejected(self):
        with pytest.raises(ValidationError):
            Facet.parse("tag:")

    def test_unknown_facet_rejected(self):
        with pytest.raises(ValidationError):
            Facet.parse("bookmarks")

    def test_str(self):
        assert str(Facet.parse("category:notes")) == "category:notes"
        assert str(Facet.parse("all")) == "all"

    def test_parse_passes_facet_through(self):
        facet = Facet(FacetKind.STARRED)
        assert Facet.parse(facet) is facet


class TestFacetMatching:
    def test_deleted_only_in_recycle(self):
        deleted = _item(1, deleted=True, starred=True, tags={"work"})
        for raw in ("all", "starred", "tag:work", "notes"):
            assert not Facet.parse(raw).matches(deleted)
        assert Facet.parse("untagged").matches(_item(2, deleted=True)) is False
        assert Facet.parse("recycle").matches(deleted)

    def test_recycle_excludes_live_items(self):
        assert not Facet.parse("recycle").matches(_item(1))

    def test_untagged(self):
        assert Facet.parse("untagged").matches(_item(1))
        assert not Facet.parse("untagged").matches(_item(2, tags={"x"}))

    def test_tag_is_exact(self):
        item = _item(1, tags={"work"})
        assert Facet.parse("tag:work").matches(item)
        assert not Facet.parse("tag:Work").matches(item)


class TestMatchesText:
    def test_empty_search_matches(self):
        assert matches_text(_item(1), "")

    def test_case_insensitive_title_and_content(self):
        item = _item(1, title="Docker Commands", content="docker compose up -d")
        assert matches_text(item, "DOCKER")
        assert matches_text(item, "compose")
        assert not matches_text(item, "kubectl")

    def test_structured_fields_are_searched(self):
        item = _item(1, is_structured=True, fields=[StructuredField("f1", "Host", "192.168.1.100")])
        assert matches_text(item, "192.168")
        assert matches_text(item, "host")


class TestQuery:
    def test_pinned_first_then_most_recent(self):
        c = _item(1, updated_minute=1, pinned=True)
        a = _item(2, updated_minute=3, pinned=True)
        b = _item(3, updated_minute=5)
        for _ in range(3):
            assert [i.id for i in query([c, a, b], "all")] == [a.id, c.id, b.id]

    def test_ties_keep_insertion_order(self):
        items = [_item(i) for i in range(1, 5)]
        assert [i.id for i in query(items, "all")] == [1, 2, 3, 4]

    def test_facet_and_search_combined(self):
        items = [
            _item(1, content="api key", tags={"work"}),
            _item(2, content="api docs"),
            _item(3, content="grocery list", tags={"work"}),
        ]
        assert [i.id for i in query(items, "tag:work", "API")] == [1]

    def test_category_facet(self):
        items = [_item(1), _item(2, category=Category.SNIPPETS)]
        assert [i.id for i in query(items, "category:snippets")] == [2]


class TestCountsAndTags:
    def test_facet_counts(self):
        items = [
            _item(1, starred=True, tags={"work"}),
            _item(2, category=Category.CLIPBOARD),
            _item(3, deleted=True),
        ]
        counts = facet_counts(items)
        assert counts["all"] == 2
        assert counts["starred"] == 1
        assert counts["untagged"] == 1
        assert counts["recycle"] == 1
        assert counts["category:notes"] == 1
        assert counts["category:clipboard"] == 1
        assert counts["category:prompts"] == 0

    def test_all_tags_skips_deleted(self):
        items = [_item(1, tags={"work", "api"}), _item(2, tags={"old"}, deleted=True)]
        assert all_tags(items) == ["api", "work"]


class TestQueryEngine:
    def test_end_to_end_lifecycle(self, store):
        queries = QueryEngine(store)
        item = store.create(Category.NOTES)
        store.add_tag(item.id, "work")
        assert item.id in [i.id for i in queries.query("all")]

        store.soft_delete(item.id)
        assert item.id not in [i.id for i in queries.query("all")]
        assert item.id in [i.id for i in queries.query("recycle")]

        store.purge(item.id)
        assert item.id not in [i.id for i in queries.query("recycle")]

    def test_counts_and_tags_read_the_store(self, store, make_item):
        make_item("one", tags=("work",))
        make_item("two", category=Category.SNIPPETS)
        queries = QueryEngine(store)
        assert queries.counts()["all"] == 2
        assert queries.tags() == ["work"]

    def test_query_sees_updates(self, store, make_item):
        queries = QueryEngine(store)
        first = make_item("first")
        second = make_item("second")
        assert [i.id for i in queries.query("all")] == [second.id, first.id]
        store.update(first.id, content="first, edited")
        assert [i.id for i in queries.query("all")] == [first.id, second.id]
