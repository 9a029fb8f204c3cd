"""Template processor for blueprint content.

Blueprint strings use a deliberately small language::

    {{project.name}}                      variable reference
    {{#if module.parameters.x}}...{{/if}} conditional block

Templates are parsed into a flat node list (``Text``, ``Variable``,
``Conditional``) and rendered against a ``ProjectContext``.  Conditionals
do not nest: inside an open block a second ``{{#if ...}}`` is plain text and
the first ``{{/if}}`` closes the open block.  Unterminated tags and stray
closing markers are kept as literal text.

Variables that the context cannot resolve are left in the output
verbatim, and substituted values are never scanned again for tokens.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from pathlib import PurePosixPath
from typing import Any, Iterator, Optional, Union

from .actions import ActionType
from .context import ProjectContext

SOURCE_EXTENSIONS = frozenset({".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs"})

_REFERENCE = re.compile(r"[A-Za-z_][\w-]*(?:\.[\w-]+)*")
_IF_TAG = re.compile(r"#if\s+(.+)", re.DOTALL)
_WRAPPED_IF = re.compile(r"\{\{\s*#if\s+(.+?)\s*\}\}", re.DOTALL)
_WRAPPED_REF = re.compile(r"\{\{\s*(.+?)\s*\}\}", re.DOTALL)
_PARAMETER_PREFIX = "module.parameters."


class TemplateError(Exception):
    """Raised when a template cannot be rendered."""


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Variable:
    reference: str
    raw: str


@dataclass(frozen=True)
class Conditional:
    condition: str
    body: tuple[Union[Text, Variable], ...]
    raw_open: str


Node = Union[Text, Variable, Conditional]


# ---------------------------------------------------------------------------
# Tokenizer / parser
# ---------------------------------------------------------------------------

def _tokenize(template: str) -> Iterator[tuple[str, str, str]]:
    """Yield ``(kind, payload, raw)`` tuples.

    *kind* is one of ``text``, ``open``, ``close``, ``var`` or ``unterminated``.
    """
    pos = 0
    length = len(template)
    while pos < length:
        start = template.find("{{", pos)
        if start == -1:
            yield "text", template[pos:], template[pos:]
            return
        if start > pos:
            yield "text", template[pos:start], template[pos:start]
        end = template.find("}}", start + 2)
        if end == -1:
            rest = template[start:]
            yield "unterminated", rest, rest
            return
        raw = template[start:end + 2]
        inner = template[start + 2:end].strip()
        if_match = _IF_TAG.fullmatch(inner)
        if if_match:
            yield "open", if_match.group(1).strip(), raw
        elif inner == "/if":
            yield "close", "", raw
        elif _REFERENCE.fullmatch(inner):
            yield "var", inner, raw
        else:
            yield "text", raw, raw
        pos = end + 2


@lru_cache(maxsize=512)
def parse_template(template: str) -> tuple[Node, ...]:
    """Parse *template* into a tuple of nodes."""
    nodes: list[Node] = []
    open_block: Optional[tuple[str, str]] = None
    body: list[Union[Text, Variable]] = []

    for kind, payload, raw in _tokenize(template):
        target = body if open_block is not None else nodes
        if kind == "var":
            target.append(Variable(payload, raw))
        elif kind == "open" and open_block is None:
            open_block = (payload, raw)
            body = []
        elif kind == "close" and open_block is not None:
            nodes.append(Conditional(open_block[0], tuple(body), open_block[1]))
            open_block = None
            body = []
        else:
            target.append(Text(raw))

    if open_block is not None:
        nodes.append(Text(open_block[1]))
        nodes.extend(body)

    return tuple(nodes)


# ---------------------------------------------------------------------------
# Conditions and formatting
# ---------------------------------------------------------------------------

def is_truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0")
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def _unwrap_condition(condition: str) -> str:
    expr = condition.strip()
    match = _WRAPPED_IF.fullmatch(expr) or _WRAPPED_REF.fullmatch(expr)
    if match:
        expr = match.group(1).strip()
    return expr


def evaluate_condition(condition: str, context: ProjectContext) -> bool:
    """Evaluate a condition against *context*.

    Two forms are understood: the literals ``true`` / ``false`` and a
    ``module.parameters.<name>`` reference, which is cast to a boolean.
    Anything else evaluates to ``False``.  The condition may be wrapped as
    ``{{#if ...}}``.
    """
    expr = _unwrap_condition(condition)
    if expr == "true":
        return True
    if expr == "false":
        return False
    if expr.startswith(_PARAMETER_PREFIX) and _REFERENCE.fullmatch(expr):
        found, value = context.lookup(expr)
        return found and is_truthy(value)
    return False


def _scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Mapping):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


def format_value(
    value: Any,
    output_path_hint: str = "",
    action_kind: Optional[ActionType] = None,
) -> str:
    """Format *value* for substitution into a template.

    Sequences become a quoted literal list (``['a', 'b']``) when the output
    is a JavaScript/TypeScript source file, and a space-joined token list
    for commands and every other target.
    """
    if isinstance(value, (list, tuple)):
        if action_kind is ActionType.RUN_COMMAND:
            return " ".join(_scalar(v) for v in value)
        if PurePosixPath(output_path_hint).suffix in SOURCE_EXTENSIONS:
            return "[" + ", ".join(f"'{_scalar(v)}'" for v in value) + "]"
        return " ".join(_scalar(v) for v in value)
    return _scalar(value)


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------

class TemplateProcessor:
    """Renders blueprint strings against a ``ProjectContext``."""

    def render(
        self,
        template: str,
        context: ProjectContext,
        output_path_hint: str = "",
        action_kind: Optional[ActionType] = None,
    ) -> str:
        """Render *template*.

        Raises:
            TemplateError: If the template references a required module
                parameter that has no value.
        """
        if "{{" not in template:
            return template
        parts: list[str] = []
        for node in parse_template(template):
            if isinstance(node, Conditional):
                if evaluate_condition(node.condition, context):
                    for inner in node.body:
                        parts.append(self._render_leaf(inner, context, output_path_hint, action_kind))
            else:
                parts.append(self._render_leaf(node, context, output_path_hint, action_kind))
        return "".join(parts)

    def render_data(
        self,
        data: Any,
        context: ProjectContext,
        output_path_hint: str = "",
        action_kind: Optional[ActionType] = None,
    ) -> Any:
        """Render every string leaf of a nested mapping/list payload."""
        if isinstance(data, str):
            return self.render(data, context, output_path_hint, action_kind)
        if isinstance(data, Mapping):
            return {
                k: self.render_data(v, context, output_path_hint, action_kind)
                for k, v in data.items()
            }
        if isinstance(data, (list, tuple)):
            return [self.render_data(v, context, output_path_hint, action_kind) for v in data]
        return data

    def _render_leaf(
        self,
        node: Union[Text, Variable],
        context: ProjectContext,
        output_path_hint: str,
        action_kind: Optional[ActionType],
    ) -> str:
        if isinstance(node, Text):
            return node.value
        found, value = context.lookup(node.reference)
        if node.reference.startswith(_PARAMETER_PREFIX) and value is None:
            _check_required(node.reference[len(_PARAMETER_PREFIX):], context)
        if not found:
            return node.raw
        return format_value(value, output_path_hint, action_kind)


def _check_required(name: str, context: ProjectContext) -> None:
    module = context.module
    if module is None:
        return
    spec = module.parameter(name.split(".", 1)[0])
    if spec is not None and spec.required and not spec.has_default:
        raise TemplateError(
            f"Required parameter '{spec.name}' of module '{module.id}' has no value"
        )


# ---------------------------------------------------------------------------
# Static helpers
# ---------------------------------------------------------------------------

def validate_template(template: str) -> list[str]:
    """Report structural problems in *template* without rendering it."""
    problems: list[str] = []
    open_raw: Optional[str] = None
    for kind, payload, raw in _tokenize(template):
        if kind == "unterminated":
            problems.append(f"Unterminated tag: {raw[:40]!r}")
        elif kind == "open":
            if open_raw is not None:
                problems.append(f"Nested conditional is not supported: {raw!r}")
            else:
                open_raw = raw
        elif kind == "close":
            if open_raw is None:
                problems.append("Unmatched {{/if}}")
            else:
                open_raw = None
    if open_raw is not None:
        problems.append(f"Unclosed conditional: {open_raw!r}")
    return problems


def extract_variables(template: str) -> list[str]:
    """List every reference used in *template*, in first-seen order.

    Condition expressions that are plain references are included.
    """
    seen: dict[str, None] = {}
    for kind, payload, _raw in _tokenize(template):
        if kind == "var":
            seen.setdefault(payload, None)
        elif kind == "open" and payload not in ("true", "false") and _REFERENCE.fullmatch(payload):
            seen.setdefault(payload, None)
    return list(seen)
