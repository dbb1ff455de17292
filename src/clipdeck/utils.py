import hashlib
import uuid

from clipdeck.config import DATA_DIR
from clipdeck.models import Item, StructuredField


def compute_hash(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def truncate_text(text: str, max_len: int) -> str:
    single_line = " ".join(text.split())
    if len(single_line) <= max_len:
        return single_line
    return single_line[: max_len - 3] + "..."


def ensure_dirs() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)


def short_id() -> str:
    return uuid.uuid4().hex[:12]


def fields_text(fields: list[StructuredField]) -> str:
    return "\n".join(f"{f.label}: {f.value}" for f in fields)


def item_text(item: Item) -> str:
    """Flatten an item to the text that is searched, copied and hashed.

    Structured items render as one ``label: value`` line per field; their
    ``content`` column is ignored.
    """
    if item.is_structured:
        return fields_text(item.fields)
    return item.content
