"""File merge strategies.

Every write the blueprint engine performs goes through one of the
strategies below.  Each one is safe to apply repeatedly against the same
tree: plain writes are idempotent, the line/append strategies are
monotonic, and the structured merge resolves conflicts in favour of the
incoming content.

Strategy selection is a single lookup table from well-known file names to a
``MergeStrategy`` (see ``strategy_for_path``); actions may override it
explicitly.
"""

from __future__ import annotations

import fnmatch
import json
from enum import Enum
from pathlib import Path
from typing import Any


class MergeError(Exception):
    """Raised when content cannot be merged into its target file."""

    def __init__(self, path: str | Path, message: str) -> None:
        self.path = str(path)
        super().__init__(f"{path}: {message}")


class MergeStrategy(str, Enum):
    """How rendered content is combined with a file's existing content."""

    STRUCTURED = "structured"
    LINE_APPEND_DEDUP = "line-append-dedup"
    REPLACE = "replace"
    WRITE = "write"
    CREATE_IF_ABSENT = "create-if-absent"
    APPEND = "append"
    PREPEND = "prepend"


# ---------------------------------------------------------------------------
# Filename -> strategy table
# ---------------------------------------------------------------------------

# First matching pattern wins; patterns are matched against the file name.
_WELL_KNOWN_FILES: list[tuple[str, MergeStrategy]] = [
    ("package.json", MergeStrategy.STRUCTURED),
    ("tsconfig.json", MergeStrategy.STRUCTURED),
    ("tsconfig.*.json", MergeStrategy.STRUCTURED),
    ("jsconfig.json", MergeStrategy.STRUCTURED),
    (".env", MergeStrategy.LINE_APPEND_DEDUP),
    (".env.*", MergeStrategy.LINE_APPEND_DEDUP),
]


def strategy_for_path(path: str | Path, default: MergeStrategy = MergeStrategy.WRITE) -> MergeStrategy:
    """Return the merge strategy implied by *path*'s file name."""
    name = Path(path).name
    for pattern, strategy in _WELL_KNOWN_FILES:
        if fnmatch.fnmatchcase(name, pattern):
            return strategy
    return default


def is_env_file(path: str | Path) -> bool:
    """``True`` when *path* names an environment-variable file."""
    return strategy_for_path(path) is MergeStrategy.LINE_APPEND_DEDUP


# ---------------------------------------------------------------------------
# Pure merge helpers
# ---------------------------------------------------------------------------


def deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *source* into a copy of *target*.

    Object-valued keys are merged; every other value from *source*
    (including lists) replaces the target's value wholesale.
    """
    result = dict(target)
    for key, value in source.items():
        if isinstance(value, dict):
            existing = result.get(key)
            result[key] = deep_merge(existing if isinstance(existing, dict) else {}, value)
        else:
            result[key] = value
    return result


def dump_structured(data: dict[str, Any]) -> str:
    """Serialise structured data with stable 2-space indentation."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def parse_structured(text: str, source: str | Path) -> dict[str, Any]:
    """Parse *text* as a JSON object, raising ``MergeError`` otherwise."""
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MergeError(source, f"not valid JSON ({exc.msg} at line {exc.lineno})") from exc
    if not isinstance(data, dict):
        raise MergeError(source, "top-level JSON value must be an object")
    return data


def _env_key(line: str) -> str:
    return line.split("=", 1)[0].strip()


def _is_env_entry(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith("#")


def contains_block(existing: str, block: str) -> bool:
    """``True`` when *block* already occurs in *existing* as whole lines."""
    needle = block.strip("\n")
    if not needle.strip():
        return False
    haystack = "\n" + existing if existing.endswith("\n") else "\n" + existing + "\n"
    return f"\n{needle}\n" in haystack


def merge_env_lines(existing: str, incoming: str) -> str | None:
    """Append *incoming* env lines whose key is not already defined.

    Comment lines directly above a new entry travel with it; comments above
    a skipped entry are dropped.  Returns the new file content, or ``None``
    when nothing needs to be appended.
    """
    keys = {_env_key(line) for line in existing.splitlines() if _is_env_entry(line)}

    appended: list[str] = []
    pending_comments: list[str] = []
    for raw in incoming.splitlines():
        line = raw.rstrip()
        if not line.strip():
            pending_comments = []
            continue
        if line.strip().startswith("#"):
            pending_comments.append(line)
            continue
        key = _env_key(line)
        if key not in keys:
            keys.add(key)
            appended.extend(pending_comments)
            appended.append(line)
        pending_comments = []

    if not appended:
        return None

    prefix = existing
    if prefix and not prefix.endswith("\n"):
        prefix += "\n"
    return prefix + "\n".join(appended) + "\n"


# ---------------------------------------------------------------------------
# Strategy application
# ---------------------------------------------------------------------------


def apply_merge(strategy: MergeStrategy, target: str | Path, content: str) -> bool:
    """Apply *strategy* to write *content* into *target*.

    Parent directories are created as needed.

    Returns:
        ``True`` if the file on disk changed, ``False`` if it was left as is.

    Raises:
        MergeError: If existing or incoming content cannot be merged.
    """
    path = Path(target)
    existing = path.read_text(encoding="utf-8") if path.is_file() else None

    if strategy is MergeStrategy.STRUCTURED:
        current = parse_structured(existing or "", path)
        incoming = parse_structured(content, f"{path} (rendered content)")
        new_text = dump_structured(deep_merge(current, incoming))
    elif strategy is MergeStrategy.LINE_APPEND_DEDUP:
        merged = merge_env_lines(existing or "", content)
        if merged is None:
            return False
        new_text = merged
    elif strategy is MergeStrategy.CREATE_IF_ABSENT:
        if existing is not None:
            return False
        new_text = content
    elif strategy is MergeStrategy.APPEND:
        if existing is None:
            new_text = content
        elif contains_block(existing, content):
            return False
        else:
            separator = "" if not existing or existing.endswith("\n") else "\n"
            new_text = existing + separator + content
    elif strategy is MergeStrategy.PREPEND:
        if existing is None:
            new_text = content
        elif contains_block(existing, content):
            return False
        else:
            separator = "" if content.endswith("\n") else "\n"
            new_text = content + separator + existing
    elif strategy in (MergeStrategy.REPLACE, MergeStrategy.WRITE):
        new_text = content
    else:
        raise MergeError(path, f"unsupported merge strategy {strategy!r}")

    if existing == new_text:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(new_text, encoding="utf-8")
    return True


def merge_structured_data(target: str | Path, data: dict[str, Any], mode: str = "deep-merge") -> bool:
    """Merge a mapping into the JSON file at *target*.

    *mode* is one of ``deep-merge``, ``shallow-merge`` or ``replace``.
    """
    path = Path(target)
    existing = path.read_text(encoding="utf-8") if path.is_file() else None
    current = parse_structured(existing or "", path)

    if mode == "deep-merge":
        merged = deep_merge(current, data)
    elif mode == "shallow-merge":
        merged = {**current, **data}
    elif mode == "replace":
        merged = dict(data)
    else:
        raise MergeError(path, f"unknown merge mode {mode!r}")

    new_text = dump_structured(merged)
    if existing == new_text:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(new_text, encoding="utf-8")
    return True
