"""Placeholder rendering and guard/until condition evaluation.

Templates substitute ``{{ dotted.path }}`` placeholders from a flattened view
of the run context. Conditions are rendered first, then parsed into a tiny
expression: either one operand (truthiness) or two operands joined by ``==``
or ``!=``. Quoted operands are opaque to the operator search, so ``'a==b' == x``
compares the literal ``a==b`` against ``x``. Empty operand text is a path
lookup that never resolves.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from .contracts import RunContext

_PLACEHOLDER = re.compile(r"{{\s*([\w.]+)\s*}}")
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")
_QUOTES = ("'", '"')


class _Undefined:
    """Marker for a path that does not resolve."""

    _instance: Optional["_Undefined"] = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return "UNDEFINED"


UNDEFINED = _Undefined()


def template_data(ctx: RunContext) -> Dict[str, Any]:
    """Flatten the run context into the namespace seen by templates."""
    return {
        **ctx.vars,
        "slug": ctx.project_name,
        "project": ctx.project_name,
        "idea": ctx.idea,
        "project_dir": ctx.project_dir,
        "round": ctx.round,
        "last_exit_code": ctx.last_exit_code,
        "verify": ctx.verify.model_dump(),
    }


def get_by_path(data: Any, dotted: str) -> Any:
    """Resolve ``a.b.c`` against nested mappings, or return ``UNDEFINED``."""
    current = data
    for segment in dotted.split("."):
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return UNDEFINED
    return current


def _to_text(value: Any) -> str:
    if value is UNDEFINED or value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), default=str)


def render_template(text: str, data: Mapping[str, Any]) -> str:
    """Replace every placeholder in ``text``; unknown paths become ''."""
    return _PLACEHOLDER.sub(lambda m: _to_text(get_by_path(data, m.group(1))), text)


@dataclass(frozen=True)
class Constant:
    value: Any

    def resolve(self, data: Mapping[str, Any]) -> Any:
        return self.value


@dataclass(frozen=True)
class PathRef:
    path: str

    def resolve(self, data: Mapping[str, Any]) -> Any:
        return get_by_path(data, self.path)


Operand = Union[Constant, PathRef]


@dataclass(frozen=True)
class Condition:
    """``left`` alone (truthiness) or ``left <op> right``."""

    left: Operand
    op: Optional[str] = None
    right: Optional[Operand] = None

    def evaluate(self, data: Mapping[str, Any]) -> bool:
        left = self.left.resolve(data)
        if self.op is None or self.right is None:
            return is_truthy(left)
        right = self.right.resolve(data)
        if self.op == "==":
            return values_equal(left, right)
        return not values_equal(left, right)


def parse_operand(token: str) -> Operand:
    t = token.strip()
    if len(t) >= 2 and t[0] in _QUOTES and t[-1] == t[0]:
        return Constant(t[1:-1])
    if t == "true":
        return Constant(True)
    if t == "false":
        return Constant(False)
    if t == "null":
        return Constant(None)
    if _NUMBER.match(t):
        return Constant(float(t) if "." in t else int(t))
    return PathRef(t)


def _skip_quoted(text: str, i: int) -> int:
    """Return the index after a quoted operand starting at ``i``, else ``i``."""
    if i < len(text) and text[i] in _QUOTES:
        close = text.find(text[i], i + 1)
        if close != -1:
            return close + 1
    return i


def _find_operator(text: str) -> Optional[tuple[int, str]]:
    """Locate the first ``==`` (else ``!=``) outside quoted operands.

    A quote only opens a string where an operand starts: at the beginning
    of the text or right after an operator. Apostrophes inside rendered
    values are plain characters.
    """
    first_ne: Optional[int] = None
    i = _skip_quoted(text, 0)
    while i < len(text):
        if text.startswith("==", i):
            return i, "=="
        if text.startswith("!=", i):
            if first_ne is None:
                first_ne = i
            j = i + 2
            while j < len(text) and text[j].isspace():
                j += 1
            i = _skip_quoted(text, j)
            continue
        i += 1
    if first_ne is not None:
        return first_ne, "!="
    return None


def parse_condition(text: str) -> Condition:
    """Parse an already rendered condition string."""
    stripped = text.strip()
    found = _find_operator(stripped)
    if found is None:
        return Condition(parse_operand(stripped))
    index, op = found
    return Condition(
        parse_operand(stripped[:index]),
        op,
        parse_operand(stripped[index + len(op):]),
    )


def is_truthy(value: Any) -> bool:
    if value is UNDEFINED or value is None or value is False:
        return False
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


def values_equal(left: Any, right: Any) -> bool:
    """Strict equality: no coercion between strings, numbers and booleans."""
    if left is UNDEFINED or right is UNDEFINED:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def evaluate_condition(expr: str, data: Mapping[str, Any]) -> bool:
    """Render ``expr`` against ``data`` and evaluate the result."""
    return parse_condition(render_template(expr, data)).evaluate(data)
