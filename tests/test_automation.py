import threading

import pytest

from clipdeck.automation import (
    AutomationEngine,
    coerce_step,
    default_workflows,
    workflow_from_dict,
    workflow_to_dict,
)
from clipdeck.errors import InvalidState, NotFound, ValidationError
from clipdeck.models import (
    ActivityKind,
    ActivityStep,
    Category,
    EffectKind,
    Scope,
    StructuredField,
    TriggerKind,
)


def _tags(*tags):
    return ActivityStep(ActivityKind.ADD_TAGS, {"tags": list(tags)})


class TestDefaults:
    def test_default_workflow_ships_disabled(self):
        (workflow,) = default_workflows()
        assert workflow.name == "Auto-format code snippets"
        assert workflow.triggers == {TriggerKind.ON_COPY}
        assert [s.kind for s in workflow.activities] == [
            ActivityKind.FORMAT_AS_CODE,
            ActivityKind.ADD_SYNTAX_HIGHLIGHTING,
        ]
        assert not workflow.enabled

    def test_coerce_step(self):
        assert coerce_step("add_tags").kind == ActivityKind.ADD_TAGS
        assert coerce_step(ActivityKind.RUN_SCRIPT).params == {}


class TestRegistry:
    def test_create_and_get(self, engine):
        wf = engine.create("Tag copies", ["on_copy"], [_tags("copied")])
        assert engine.get(wf.id) is wf
        assert wf.triggers == {TriggerKind.ON_COPY}
        assert engine.workflows() == [wf]

    def test_name_required(self, engine):
        with pytest.raises(ValidationError):
            engine.create("   ", ["on_copy"], [])

    def test_specific_scope_needs_applications(self, engine):
        with pytest.raises(ValidationError):
            engine.create("Scoped", ["on_copy"], [], scope=Scope.SPECIFIC)

    def test_invalid_pattern_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.create("Bad regex", ["on_text_match"], [], pattern="(unclosed")

    def test_add_tags_needs_tags(self, engine):
        with pytest.raises(ValidationError):
            engine.create("No tags", ["on_copy"], [ActivityStep(ActivityKind.ADD_TAGS, {"tags": []})])

    def test_run_script_needs_script(self, engine):
        with pytest.raises(ValidationError):
            engine.create("No script", ["on_hotkey"], ["run_script"])

    def test_unknown_trigger_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.create("Bad trigger", ["on_reboot"], [])

    def test_get_missing(self, engine):
        with pytest.raises(NotFound):
            engine.get("nope")

    def test_update_keeps_unspecified_parts(self, engine):
        wf = engine.create("Tagger", ["on_copy"], [_tags("a")])
        updated = engine.update(wf.id, name="Renamed")
        assert updated.name == "Renamed"
        assert updated.triggers == {TriggerKind.ON_COPY}
        assert updated.activities == [_tags("a")]

    def test_invalid_update_leaves_workflow_unchanged(self, engine):
        wf = engine.create("Tagger", ["on_copy"], [_tags("a")])
        with pytest.raises(ValidationError):
            engine.update(wf.id, name="")
        assert engine.get(wf.id).name == "Tagger"

    def test_toggle_and_remove(self, engine):
        wf = engine.create("Tagger", ["on_copy"], [_tags("a")])
        assert not engine.toggle(wf.id).enabled
        assert engine.toggle(wf.id).enabled
        engine.remove(wf.id)
        with pytest.raises(NotFound):
            engine.get(wf.id)

    def test_dump_and_load(self, store):
        engine = AutomationEngine(store, default_workflows())
        engine.create("Watch keys", ["on_text_match"], [_tags("secret")], pattern=r"api[_ ]key")
        dumped = engine.dump()

        other = AutomationEngine(store)
        other.load(dumped)
        assert [workflow_to_dict(w) for w in other.workflows()] == dumped

    def test_from_dict_defaults(self):
        wf = workflow_from_dict({"id": "x", "name": "Bare"})
        assert wf.enabled
        assert wf.scope == Scope.ALL
        assert wf.triggers == set()


class TestFire:
    def test_only_enabled_matching_workflows_run(self, engine, make_item):
        item = make_item("hello")
        on_copy = engine.create("Copy tagger", ["on_copy"], [_tags("copied")])
        engine.create("Paste tagger", ["on_paste"], [_tags("pasted")])
        engine.create("Disabled", ["on_copy"], [_tags("never")], enabled=False)

        result = engine.fire("on_copy", item.id)
        assert result.workflow_ids == [on_copy.id]
        assert result.ok
        assert engine._store.get(item.id).tags == {"copied"}

    def test_failure_is_isolated_to_its_workflow(self, engine, store):
        item = store.create(Category.NOTES, is_structured=True)
        store.update(item.id, fields=[StructuredField("f1", "Host", "nas")])
        failing = engine.create("Format", ["on_copy"], ["format_as_code", _tags("never")])
        healthy = engine.create(
            "Tag and notify", ["on_copy"], [_tags("ok"), ActivityStep(ActivityKind.SEND_NOTIFICATION)]
        )

        result = engine.fire(TriggerKind.ON_COPY, item.id)

        assert result.workflow_ids == [failing.id, healthy.id]
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.workflow_id == failing.id
        assert failure.index == 0
        assert isinstance(failure.error, InvalidState)
        assert store.get(item.id).tags == {"ok"}
        assert [e.kind for e in result.effects] == [EffectKind.SEND_NOTIFICATION]
        assert not result.ok

    def test_missing_item_recorded_as_failure(self, engine):
        engine.create("Tagger", ["on_copy"], [_tags("a")])
        result = engine.fire("on_copy", 12345)
        assert isinstance(result.failures[0].error, NotFound)

    def test_item_activities_skipped_without_item(self, engine):
        wf = engine.create(
            "Hotkey script",
            ["on_hotkey"],
            [_tags("a"), ActivityStep(ActivityKind.RUN_SCRIPT, {"script": "backup.sh"})],
        )
        result = engine.fire("on_hotkey")
        assert [(s.workflow_id, s.index, s.activity) for s in result.skipped] == [(wf.id, 0, ActivityKind.ADD_TAGS)]
        (effect,) = result.effects
        assert effect.kind == EffectKind.RUN_SCRIPT
        assert effect.payload == {"trigger": "on_hotkey", "item_id": None, "script": "backup.sh"}

    def test_application_scope(self, engine, make_item):
        item = make_item("hello")
        engine.create("Terminal only", ["on_copy"], [_tags("term")], scope="specific", applications=["Terminal"])
        assert engine.fire("on_copy", item.id, application="Safari").workflow_ids == []
        assert len(engine.fire("on_copy", item.id, application="Terminal").workflow_ids) == 1

    def test_text_match(self, engine, make_item):
        engine.create("Secrets", ["on_text_match"], [_tags("secret")], pattern=r"api[_ ]key")
        hit = make_item("my api_key is 123")
        miss = make_item("shopping list")
        assert engine.fire("on_text_match", hit.id).workflow_ids
        assert not engine.fire("on_text_match", miss.id).workflow_ids
        assert not engine.fire("on_text_match").workflow_ids

    def test_format_and_highlight(self, store, make_item):
        engine = AutomationEngine(store, default_workflows())
        engine.set_enabled("wf1", True)
        item = make_item("def greet():\n    print('hi')", category=Category.CLIPBOARD)

        result = engine.fire("on_copy", item.id)

        assert result.ok
        updated = store.get(item.id)
        assert updated.category == Category.SNIPPETS
        assert updated.content == "```python\ndef greet():\n    print('hi')\n```"

    def test_copy_effect_payload(self, engine, make_item):
        item = make_item("payload text", title="Greeting")
        engine.create("Copy", ["on_hotkey"], [ActivityStep(ActivityKind.COPY_TO_CLIPBOARD, {"format": "plain"})])
        (effect,) = engine.fire("on_hotkey", item.id).effects
        assert effect.to_dict()["payload"] == {
            "trigger": "on_hotkey",
            "item_id": item.id,
            "title": "Greeting",
            "text": "payload text",
            "format": "plain",
        }

    def test_notification_defaults(self, engine):
        wf = engine.create("Nightly", ["on_timer"], ["send_notification"])
        (effect,) = engine.fire("on_timer").effects
        assert effect.workflow_id == wf.id
        assert effect.payload["message"] == "Nightly ran"

    def test_result_to_dict(self, engine):
        engine.create("Tagger", ["on_copy"], [_tags("a")])
        data = engine.fire("on_copy", 999).to_dict()
        assert set(data) == {"workflows", "effects", "failures", "skipped"}
        assert data["failures"][0]["activity"] == "add_tags"

    def test_concurrent_firings_do_not_lose_tags(self, engine, make_item):
        item = make_item("shared")
        for n in range(4):
            engine.create(f"Tagger {n}", ["on_copy"], [_tags(f"t{n}")])

        threads = [threading.Thread(target=engine.fire, args=("on_copy", item.id)) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert engine._store.get(item.id).tags == {"t0", "t1", "t2", "t3"}


class TestLoadAndConcurrency:
    def test_invalid_entry_leaves_registry_unchanged(self, store):
        engine = AutomationEngine(store, default_workflows())
        with pytest.raises(ValidationError):
            engine.load([
                {"id": "ok", "name": "Fine", "triggers": ["on_copy"]},
                {"id": "bad", "name": "Scoped", "scope": "specific", "applications": []},
            ])
        assert [w.id for w in engine.workflows()] == ["wf1"]

    def test_fire_while_registry_changes(self, engine, make_item):
        item = make_item("busy")
        engine.create("Tagger", ["on_copy"], [_tags("seen")])
        errors = []
        stop = threading.Event()

        def churn():
            while not stop.is_set():
                wf = engine.create("Temp", ["on_copy"], [ActivityStep(ActivityKind.SEND_NOTIFICATION)])
                engine.remove(wf.id)

        def fire_many():
            try:
                for _ in range(50):
                    engine.fire("on_copy", item.id)
            except RuntimeError as exc:
                errors.append(exc)
            finally:
                stop.set()

        workers = [threading.Thread(target=churn), threading.Thread(target=fire_many)]
        for t in workers:
            t.start()
        for t in workers:
            t.join()

        assert errors == []
        assert engine._store.get(item.id).tags == {"seen"}
