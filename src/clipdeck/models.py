from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Category(str, Enum):
    CLIPBOARD = "clipboard"
    NOTES = "notes"
    SNIPPETS = "snippets"
    PROMPTS = "prompts"


class FieldType(str, Enum):
    TEXT = "text"
    PASSWORD = "password"
    URL = "url"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    API_KEY = "api_key"


class Flag(str, Enum):
    PINNED = "pinned"
    STARRED = "starred"


@dataclass
class StructuredField:
    id: str
    label: str
    value: str = ""
    type: FieldType = FieldType.TEXT


@dataclass
class Item:
    id: int
    title: str
    content: str
    category: Category
    created_at: datetime
    updated_at: datetime
    tags: set[str] = field(default_factory=set)
    pinned: bool = False
    starred: bool = False
    deleted: bool = False
    is_structured: bool = False
    fields: list[StructuredField] = field(default_factory=list)
    content_hash: str = ""
    source_app: str | None = None


class TriggerKind(str, Enum):
    ON_COPY = "on_copy"
    ON_PASTE = "on_paste"
    ON_APP_ACTIVATE = "on_app_activate"
    ON_HOTKEY = "on_hotkey"
    ON_TIMER = "on_timer"
    ON_TEXT_MATCH = "on_text_match"


class ActivityKind(str, Enum):
    COPY_TO_CLIPBOARD = "copy_to_clipboard"
    PASTE_CONTENT = "paste_content"
    FORMAT_AS_CODE = "format_as_code"
    ADD_SYNTAX_HIGHLIGHTING = "add_syntax_highlighting"
    RUN_SCRIPT = "run_script"
    SEND_NOTIFICATION = "send_notification"
    SYNC_TO_CLOUD = "sync_to_cloud"
    ADD_TAGS = "add_tags"


class Scope(str, Enum):
    ALL = "all"
    SPECIFIC = "specific"


@dataclass
class ActivityStep:
    kind: ActivityKind
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Workflow:
    id: str
    name: str
    triggers: set[TriggerKind]
    activities: list[ActivityStep]
    enabled: bool = True
    scope: Scope = Scope.ALL
    applications: list[str] = field(default_factory=list)
    pattern: str | None = None


class EffectKind(str, Enum):
    COPY_TO_CLIPBOARD = "copy_to_clipboard"
    PASTE_CONTENT = "paste_content"
    RUN_SCRIPT = "run_script"
    SEND_NOTIFICATION = "send_notification"
    SYNC_TO_CLOUD = "sync_to_cloud"


@dataclass
class EffectCommand:
    """A side effect for an external integration to carry out."""

    kind: EffectKind
    payload: dict[str, Any]
    workflow_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "workflow_id": self.workflow_id, "payload": dict(self.payload)}


class HotkeyCategory(str, Enum):
    GLOBAL = "global"
    PASTE = "paste"
    NAVIGATION = "navigation"
    EDITING = "editing"


@dataclass
class HotkeyBinding:
    id: str
    action: str
    category: HotkeyCategory
    keys: tuple[str, ...] = ()
    description: str = ""
    enabled: bool = True


class ConnectionType(str, Enum):
    GOOGLE_DRIVE = "google_drive"
    DROPBOX = "dropbox"
    ONEDRIVE = "onedrive"
    SYNOLOGY = "synology"
    CLOUDFLARE = "cloudflare"
    CUSTOM_API = "custom_api"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class Connection:
    id: str
    name: str
    type: ConnectionType
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    account_id: str | None = None


@dataclass
class AssistantWorkflow:
    id: str
    command: str
    name: str
    prompt: str
