"""Content modifiers for ``ENHANCE_FILE`` actions.

A modifier is a pure function ``(content, params) -> content`` registered
under a name in ``MODIFIERS``.  Every modifier is idempotent: running it on
its own output returns the same text.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any, Callable

from .merge import MergeError, deep_merge, dump_structured, parse_structured

Modifier = Callable[[str, Mapping[str, Any]], str]


class ModifierError(Exception):
    """Raised when a modifier is unknown or cannot transform its input."""


def _param(params: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in params:
            return params[name]
    return default


# ---------------------------------------------------------------------------
# json-object-merger
# ---------------------------------------------------------------------------

def json_object_merger(content: str, params: Mapping[str, Any]) -> str:
    """Merge ``properties`` into the object found at ``target_path``.

    Missing objects along the path are created.  ``strategy`` is ``deep``
    (default), ``shallow`` or ``replace``.
    """
    target_path = _param(params, "target_path", "targetPath", default=[])
    properties = _param(params, "properties", "propertiesToMerge")
    strategy = _param(params, "strategy", "mergeStrategy", default="deep")

    if isinstance(target_path, str):
        target_path = [p for p in target_path.split(".") if p]
    if not isinstance(target_path, list) or not all(isinstance(p, str) and p for p in target_path):
        raise ModifierError("json-object-merger: 'target_path' must be a list of keys")
    if not isinstance(properties, Mapping):
        raise ModifierError("json-object-merger: 'properties' must be a mapping")
    if strategy not in ("deep", "shallow", "replace"):
        raise ModifierError(f"json-object-merger: unknown strategy {strategy!r}")

    try:
        data = parse_structured(content, "json-object-merger input")
    except MergeError as exc:
        raise ModifierError(str(exc)) from exc

    parent: dict[str, Any] = data
    for i, key in enumerate(target_path):
        child = parent.get(key)
        if child is None:
            child = parent[key] = {}
        elif not isinstance(child, dict):
            location = ".".join(target_path[: i + 1])
            raise ModifierError(f"json-object-merger: '{location}' is not an object")
        parent = child

    if strategy == "deep":
        merged = deep_merge(parent, dict(properties))
    elif strategy == "shallow":
        merged = {**parent, **properties}
    else:
        merged = dict(properties)
    parent.clear()
    parent.update(merged)

    return dump_structured(data)


# ---------------------------------------------------------------------------
# ts-import-adder
# ---------------------------------------------------------------------------

_FROM_CLAUSE = re.compile(r"""\bfrom\s+['"][^'"]+['"]\s*;?\s*$""")
_SIDE_EFFECT_IMPORT = re.compile(r"""^import\s+['"][^'"]+['"]\s*;?\s*$""")
_DIRECTIVE = re.compile(r"""^\s*['"]use (client|server)['"]\s*;?\s*$""")


def import_insert_index(lines: list[str]) -> int:
    """Line index just after the last import statement."""
    index = 0
    if lines and _DIRECTIVE.match(lines[0]):
        index = 1
    in_import = False
    for i, line in enumerate(lines):
        stripped = line.strip()
        if in_import:
            if _FROM_CLAUSE.search(stripped):
                in_import = False
                index = i + 1
            continue
        if stripped.startswith("import ") or stripped.startswith("import{"):
            if _FROM_CLAUSE.search(stripped) or _SIDE_EFFECT_IMPORT.match(stripped):
                index = i + 1
            else:
                in_import = True
    return index


def _named_import_pattern(module: str) -> re.Pattern[str]:
    return re.compile(
        r"^(\s*import\s+(?:type\s+)?(?:[\w$]+\s*,\s*)?)\{([^}]*)\}(\s*from\s+(['\"])"
        + re.escape(module)
        + r"\4\s*;?\s*)$"
    )


def _import_statements(content: str, entry: Mapping[str, Any]) -> tuple[str, list[str]]:
    """Return updated content plus new import lines required for *entry*."""
    module = _param(entry, "module", "from")
    if not isinstance(module, str) or not module:
        raise ModifierError("ts-import-adder: every import needs a 'module'")
    quoted = rf"""['"]{re.escape(module)}['"]"""
    new_lines: list[str] = []

    default = entry.get("default")
    if default and not re.search(rf"^\s*import\s+{re.escape(default)}\b[^;\n]*from\s+{quoted}", content, re.M):
        new_lines.append(f"import {default} from '{module}';")

    namespace = entry.get("namespace")
    if namespace and not re.search(
        rf"^\s*import\s+\*\s+as\s+{re.escape(namespace)}\s+from\s+{quoted}", content, re.M
    ):
        new_lines.append(f"import * as {namespace} from '{module}';")

    named = entry.get("named") or []
    if isinstance(named, str):
        named = [named]
    if named:
        pattern = _named_import_pattern(module)
        lines = content.splitlines(keepends=True)
        for i, line in enumerate(lines):
            match = pattern.match(line.rstrip("\r\n"))
            if not match:
                continue
            present = [n.strip() for n in match.group(2).split(",") if n.strip()]
            missing = [n for n in named if n not in present]
            if missing:
                names = ", ".join(present + missing)
                ending = line[len(line.rstrip("\r\n")):]
                lines[i] = f"{match.group(1)}{{ {names} }}{match.group(3)}{ending}"
                content = "".join(lines)
            break
        else:
            new_lines.append(f"import {{ {', '.join(named)} }} from '{module}';")

    if not (default or namespace or named):
        if not re.search(rf"^\s*import\s+{quoted}", content, re.M) and not re.search(
            rf"from\s+{quoted}", content
        ):
            new_lines.append(f"import '{module}';")

    return content, new_lines


def ts_import_adder(content: str, params: Mapping[str, Any]) -> str:
    """Add missing import statements after the last existing import."""
    imports = _param(params, "imports", "importsToAdd", default=[])
    if not isinstance(imports, list):
        raise ModifierError("ts-import-adder: 'imports' must be a list")

    pending: list[str] = []
    for entry in imports:
        if not isinstance(entry, Mapping):
            raise ModifierError("ts-import-adder: each import must be a mapping")
        content, new_lines = _import_statements(content, entry)
        pending.extend(line for line in new_lines if line not in pending)

    return insert_import_lines(content, pending)


def insert_import_lines(content: str, new_lines: list[str]) -> str:
    """Insert *new_lines* after the last import statement in *content*."""
    if not new_lines:
        return content
    lines = content.splitlines(keepends=True)
    index = import_insert_index([line.rstrip("\r\n") for line in lines])
    if index > 0 and not lines[index - 1].endswith("\n"):
        lines[index - 1] += "\n"
    block = "".join(line + "\n" for line in new_lines)
    if index == 0 and lines and lines[0].strip():
        block += "\n"
    lines.insert(index, block)
    return "".join(lines)


# ---------------------------------------------------------------------------
# export-wrapper
# ---------------------------------------------------------------------------

_DEFAULT_EXPORT = re.compile(
    r"^export\s+default\s+(?!function\b|class\b|async\b)(?P<expr>.+?)[ \t]*;?[ \t]*$", re.M
)


def export_wrapper(content: str, params: Mapping[str, Any]) -> str:
    """Rewrite ``export default X;`` as ``export default wrapper(X);``.

    ``options`` (a mapping) is passed as a second argument and
    ``import_from`` adds the named import for the wrapper.
    """
    wrapper = _param(params, "wrapper", "name")
    if not isinstance(wrapper, str) or not wrapper.strip():
        raise ModifierError("export-wrapper: 'wrapper' must be a non-empty string")
    options = params.get("options")
    import_from = _param(params, "import_from", "importFrom")

    match = _DEFAULT_EXPORT.search(content)
    if match is None:
        raise ModifierError("export-wrapper: no default export expression found")

    expr = match.group("expr")
    if not expr.startswith(f"{wrapper}("):
        args = expr
        if options:
            args += ", " + json.dumps(options, ensure_ascii=False)
        content = content[: match.start()] + f"export default {wrapper}({args});" + content[match.end():]

    if import_from:
        content = ts_import_adder(content, {"imports": [{"module": import_from, "named": [wrapper]}]})
    return content


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

MODIFIERS: dict[str, Modifier] = {
    "json-object-merger": json_object_merger,
    "ts-import-adder": ts_import_adder,
    "export-wrapper": export_wrapper,
}


def get_modifier(name: str) -> Modifier:
    try:
        return MODIFIERS[name]
    except KeyError:
        raise ModifierError(
            f"Unknown modifier '{name}' (available: {', '.join(sorted(MODIFIERS))})"
        ) from None
