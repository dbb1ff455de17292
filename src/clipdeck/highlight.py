"""Code fencing and language detection for snippet items."""

import re

FENCE = "```"

# Checked in order; the language with the most matching patterns wins and
# earlier entries win ties.
PATTERNS: dict[str, list[re.Pattern]] = {
    "python": [
        re.compile(r"^\s*def \w+\(.*\):", re.MULTILINE),
        re.compile(r"^\s*(?:from \w[\w.]* )?import \w+", re.MULTILINE),
        re.compile(r"^\s*class \w+(?:\(.*\))?:", re.MULTILINE),
        re.compile(r"\bself\.\w+"),
        re.compile(r"\bprint\("),
    ],
    "javascript": [
        re.compile(r"\b(?:const|let|var) \w+ ="),
        re.compile(r"=>"),
        re.compile(r"\bfunction \w*\("),
        re.compile(r"\bconsole\.log\("),
        re.compile(r"\brequire\(['\"]"),
    ],
    "sql": [
        re.compile(r"^\s*SELECT\b.+\bFROM\b", re.IGNORECASE | re.MULTILINE | re.DOTALL),
        re.compile(r"^\s*(?:INSERT INTO|UPDATE \w+ SET|DELETE FROM)\b", re.IGNORECASE | re.MULTILINE),
        re.compile(r"\b(?:WHERE|ORDER BY|GROUP BY|LIMIT)\b", re.IGNORECASE),
        re.compile(r"^\s*CREATE (?:TABLE|INDEX)\b", re.IGNORECASE | re.MULTILINE),
    ],
    "bash": [
        re.compile(r"^#!/bin/(?:ba)?sh", re.MULTILINE),
        re.compile(r"^\s*(?:npm|yarn|pip|apt|brew|git|cd|ls|sudo|curl) ", re.MULTILINE),
        re.compile(r"\$\{?\w+\}?"),
        re.compile(r"\s--?\w[\w-]*"),
    ],
    "json": [
        re.compile(r"^\s*[\[{]\s*$", re.MULTILINE),
        re.compile(r"^\s*\"[^\"]+\"\s*:", re.MULTILINE),
    ],
    "html": [
        re.compile(r"<(?:html|div|span|body|head|p|a)\b[^>]*>", re.IGNORECASE),
        re.compile(r"</\w+>"),
    ],
}

_FENCE_RE = re.compile(r"\A```([\w+-]*)\n(.*?)\n?```\s*\Z", re.DOTALL)


def detect_language(code: str) -> str | None:
    best: str | None = None
    best_score = 0
    for language, patterns in PATTERNS.items():
        score = sum(1 for p in patterns if p.search(code))
        if score > best_score:
            best, best_score = language, score
    return best


def split_fence(text: str) -> tuple[str | None, str] | None:
    """Return ``(language, body)`` for a fenced block, or None if unfenced."""
    match = _FENCE_RE.match(text.strip())
    if match is None:
        return None
    return (match.group(1) or None, match.group(2))


def fence(text: str, language: str | None = None) -> str:
    return f"{FENCE}{language or ''}\n{text.rstrip()}\n{FENCE}"


def format_as_code(text: str) -> str:
    """Wrap ``text`` in a fenced block unless it already is one."""
    if split_fence(text) is not None:
        return text
    return fence(text)


def add_language(text: str) -> str:
    """Fence ``text`` if needed and label the fence with its detected language.

    An existing language label is left alone.
    """
    parts = split_fence(text)
    language, body = parts if parts is not None else (None, text)
    if language:
        return text
    return fence(body, detect_language(body))
