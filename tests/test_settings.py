from clipdeck.automation import AutomationEngine, default_workflows
from clipdeck.connections import ConnectionManager
from clipdeck.hotkeys import HotkeyRegistry
from clipdeck.models import ConnectionStatus
from clipdeck.settings import DEFAULT_IGNORED_APPS, SettingsStore


class TestSettingsStore:
    def test_get_missing_returns_default(self):
        with SettingsStore(":memory:") as settings:
            assert settings.get("nope") is None
            assert settings.get("nope", []) == []

    def test_put_overwrites(self):
        with SettingsStore(":memory:") as settings:
            settings.put("theme", {"dark": True})
            settings.put("theme", {"dark": False})
            assert settings.get("theme") == {"dark": False}

    def test_ignored_apps_default(self):
        with SettingsStore(":memory:") as settings:
            assert settings.ignored_apps() == DEFAULT_IGNORED_APPS

    def test_set_ignored_apps_dedupes_and_sorts(self):
        with SettingsStore(":memory:") as settings:
            settings.set_ignored_apps(["Terminal", " KeePass ", "Terminal", ""])
            assert settings.ignored_apps() == ["KeePass", "Terminal"]


class TestSaveAndLoad:
    def test_round_trip_through_file(self, store, tmp_path):
        db_file = tmp_path / "clipdeck.db"
        engine = AutomationEngine(store, default_workflows())
        engine.set_enabled("wf1", True)
        hotkeys = HotkeyRegistry()
        hotkeys.bind("Paste to current application", "ctrl+shift+enter")
        connections = ConnectionManager()
        connections.connect("c1")
        connections.on_connected("c1", "me@example.com")

        with SettingsStore(db_file) as settings:
            settings.save_from(engine, hotkeys, connections)

        engine2, hotkeys2, connections2 = AutomationEngine(store), HotkeyRegistry(), ConnectionManager()
        with SettingsStore(db_file) as settings:
            settings.load_into(engine2, hotkeys2, connections2)

        assert engine2.get("wf1").enabled
        assert hotkeys2.get("Paste to current application").keys == ("Ctrl", "Shift", "Enter")
        assert connections2.get("c1").status == ConnectionStatus.CONNECTED
        assert connections2.get("c1").account_id == "me@example.com"

    def test_load_without_saved_state_keeps_defaults(self, store):
        engine = AutomationEngine(store, default_workflows())
        hotkeys = HotkeyRegistry()
        connections = ConnectionManager()
        with SettingsStore(":memory:") as settings:
            settings.load_into(engine, hotkeys, connections)
        assert [w.id for w in engine.workflows()] == ["wf1"]
        assert len(hotkeys.bindings()) == 10
        assert [c.id for c in connections.connections()] == ["c1"]
