import logging
from collections.abc import Iterable, Sequence
from typing import Any

from clipdeck.errors import Conflict, NotFound, ValidationError
from clipdeck.models import HotkeyBinding, HotkeyCategory

logger = logging.getLogger(__name__)

MODIFIERS = ("Ctrl", "Shift", "Alt")

KEY_ALIASES = {
    "ctrl": "Ctrl",
    "control": "Ctrl",
    "ctl": "Ctrl",
    "shift": "Shift",
    "alt": "Alt",
    "option": "Alt",
    "opt": "Alt",
    "del": "Del",
    "delete": "Del",
    "esc": "Esc",
    "escape": "Esc",
    "enter": "Enter",
    "return": "Enter",
    "space": "Space",
    "tab": "Tab",
    "backspace": "Backspace",
    "up": "Up",
    "arrowup": "Up",
    "down": "Down",
    "arrowdown": "Down",
    "left": "Left",
    "arrowleft": "Left",
    "right": "Right",
    "arrowright": "Right",
    "home": "Home",
    "end": "End",
    "pageup": "PageUp",
    "pagedown": "PageDown",
    "insert": "Insert",
    "ins": "Insert",
    "capslock": "CapsLock",
    "numlock": "NumLock",
    "scrolllock": "ScrollLock",
    "printscreen": "PrintScreen",
    "prtsc": "PrintScreen",
    "pause": "Pause",
    "contextmenu": "ContextMenu",
}

DEFAULT_BINDINGS: tuple[HotkeyBinding, ...] = (
    HotkeyBinding("h1", "Application hotkey", HotkeyCategory.GLOBAL, ("Ctrl", "Shift", "V"),
                  "Set the hotkey used to activate the application"),
    HotkeyBinding("h2", "Paste to current application", HotkeyCategory.PASTE, (),
                  "Set the hotkey used to paste selected item to the current application"),
    HotkeyBinding("h3", "Paste as text to current application", HotkeyCategory.PASTE, (),
                  "Set the hotkey used to paste selected item as text to the current application"),
    HotkeyBinding("h4", "Copy to system clipboard", HotkeyCategory.PASTE, ("Ctrl", "C"),
                  "Set the hotkey used for copy selected item to the system clipboard"),
    HotkeyBinding("h5", "Copy to system clipboard as text", HotkeyCategory.PASTE, (),
                  "Set the hotkey used for copy selected item as text to the system clipboard"),
    HotkeyBinding("h6", "Next item", HotkeyCategory.NAVIGATION, ("Down",), "Navigate to the next clipboard item"),
    HotkeyBinding("h7", "Previous item", HotkeyCategory.NAVIGATION, ("Up",), "Navigate to the previous clipboard item"),
    HotkeyBinding("h8", "Delete item", HotkeyCategory.EDITING, ("Del",), "Delete the selected clipboard item"),
    HotkeyBinding("h9", "Pin item", HotkeyCategory.EDITING, ("Ctrl", "P"), "Pin/unpin the selected item"),
    HotkeyBinding("h10", "Search", HotkeyCategory.NAVIGATION, ("Ctrl", "F"), "Focus the search input"),
)


def _normalize_token(token: str) -> str:
    token = token.strip()
    if not token:
        raise ValidationError("empty key in hotkey")
    alias = KEY_ALIASES.get(token.lower())
    if alias:
        return alias
    if len(token) == 1:
        return token.upper()
    if token[0].lower() == "f" and token[1:].isdigit():
        return "F" + token[1:]
    # Unknown names compare case-insensitively.
    return token.capitalize()


def normalize_keys(keys: "str | Sequence[str]") -> tuple[str, ...]:
    """Normalize a key combination to ``Ctrl, Shift, Alt, <key>`` order.

    Accepts either a sequence of tokens or a ``"ctrl+shift+v"`` string.
    An empty input yields ``()`` (unset). A combination must contain exactly
    one non-modifier key.
    """
    if isinstance(keys, str):
        tokens = [] if not keys.strip() else keys.split("+")
    else:
        tokens = list(keys)
    if not tokens:
        return ()

    normalized = [_normalize_token(t) for t in tokens]
    modifiers = {k for k in normalized if k in MODIFIERS}
    main = [k for k in normalized if k not in MODIFIERS]
    if len(main) != 1:
        raise ValidationError(f"hotkey needs exactly one non-modifier key: {'+'.join(normalized)}")
    return tuple(m for m in MODIFIERS if m in modifiers) + (main[0],)


def format_keys(keys: Sequence[str]) -> str:
    return "+".join(keys) if keys else "(unset)"


def binding_to_dict(binding: HotkeyBinding) -> dict[str, Any]:
    return {
        "id": binding.id,
        "action": binding.action,
        "category": binding.category.value,
        "keys": list(binding.keys),
        "description": binding.description,
        "enabled": binding.enabled,
    }


def binding_from_dict(data: dict[str, Any]) -> HotkeyBinding:
    return HotkeyBinding(
        id=data["id"],
        action=data["action"],
        category=HotkeyCategory(data["category"]),
        keys=tuple(data.get("keys", ())),
        description=data.get("description", ""),
        enabled=bool(data.get("enabled", True)),
    )


class HotkeyRegistry:
    """One key combination per configurable action.

    No two enabled bindings may share a non-empty combination. Reading raw
    key presses is left to the caller; only the final combination arrives here.
    """

    def __init__(self, bindings: Iterable[HotkeyBinding] = DEFAULT_BINDINGS):
        self._bindings: dict[str, HotkeyBinding] = {}
        self._install(bindings)

    def _install(self, bindings: Iterable[HotkeyBinding]) -> None:
        """Replace the registry, disabling any later binding whose keys are already owned."""
        merged: dict[str, HotkeyBinding] = {}
        for binding in bindings:
            merged[binding.action] = HotkeyBinding(
                binding.id, binding.action, binding.category, normalize_keys(binding.keys),
                binding.description, binding.enabled,
            )
        owners: dict[tuple[str, ...], str] = {}
        for binding in merged.values():
            if not binding.enabled or not binding.keys:
                continue
            owner = owners.setdefault(binding.keys, binding.action)
            if owner != binding.action:
                binding.enabled = False
                logger.warning(
                    "Disabled %s: %s is already bound to %r", binding.action, format_keys(binding.keys), owner
                )
        self._bindings = merged

    def get(self, action: str) -> HotkeyBinding:
        try:
            return self._bindings[action]
        except KeyError:
            raise NotFound("hotkey action", action) from None

    def bindings(self) -> list[HotkeyBinding]:
        return list(self._bindings.values())

    def find(self, keys: "str | Sequence[str]") -> HotkeyBinding | None:
        """Return the enabled binding that owns ``keys``, if any."""
        normalized = normalize_keys(keys)
        if not normalized:
            return None
        for binding in self._bindings.values():
            if binding.enabled and binding.keys == normalized:
                return binding
        return None

    def bind(self, action: str, keys: "str | Sequence[str]") -> HotkeyBinding:
        binding = self.get(action)
        normalized = normalize_keys(keys)
        if binding.enabled and normalized:
            holder = self.find(normalized)
            if holder is not None and holder.action != action:
                raise Conflict(f"{format_keys(normalized)} is already bound to {holder.action!r}", holder)
        binding.keys = normalized
        logger.info("Bound %s to %s", action, format_keys(normalized))
        return binding

    def clear(self, action: str) -> HotkeyBinding:
        binding = self.get(action)
        binding.keys = ()
        return binding

    def set_enabled(self, action: str, enabled: bool) -> HotkeyBinding:
        binding = self.get(action)
        if enabled and not binding.enabled and binding.keys:
            holder = self.find(binding.keys)
            if holder is not None:
                raise Conflict(f"{format_keys(binding.keys)} is already bound to {holder.action!r}", holder)
        binding.enabled = enabled
        return binding

    def grouped(self) -> dict[HotkeyCategory, list[HotkeyBinding]]:
        groups: dict[HotkeyCategory, list[HotkeyBinding]] = {c: [] for c in HotkeyCategory}
        for binding in self._bindings.values():
            groups[binding.category].append(binding)
        return groups

    def dump(self) -> list[dict[str, Any]]:
        return [binding_to_dict(b) for b in self._bindings.values()]

    def load(self, data: Iterable[dict[str, Any]]) -> None:
        """Overlay saved bindings; actions missing from ``data`` keep their defaults.

        Nothing changes if any entry is malformed. A binding whose keys clash with
        an earlier enabled binding is loaded disabled.
        """
        loaded = [binding_from_dict(entry) for entry in data]
        self._install([*self._bindings.values(), *loaded])
