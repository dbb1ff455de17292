import os
from pathlib import Path

DATA_DIR = Path(os.environ.get("CLIPDECK_DATA_DIR", Path.home() / ".local" / "share" / "clipdeck"))
DB_PATH = DATA_DIR / "clipdeck.db"
LOG_PATH = DATA_DIR / "clipdeck.log"

PREVIEW_LENGTH = 60  # characters shown per row in listings
MAX_TEXT_SIZE = 1_000_000  # 1MB capture limit
MAX_CLIPBOARD_ITEMS = 500  # clipboard history kept out of the recycle bin
SHORTCUT_MARKER = "/"


def _parse_list_display_count() -> int:
    raw = os.environ.get("CLIPDECK_LIST_DISPLAY_COUNT")
    if raw is None:
        return 25
    try:
        value = int(raw)
    except ValueError:
        return 25
    return max(5, min(200, value))


LIST_DISPLAY_COUNT = _parse_list_display_count()
