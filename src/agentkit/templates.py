"""Sandboxed Jinja rendering for generated code and prompt text."""

from __future__ import annotations

from typing import Any

from jinja2 import StrictUndefined, Undefined, meta
from jinja2.sandbox import ImmutableSandboxedEnvironment

_ALLOWED_FILTERS = {
    "default",
    "lower",
    "upper",
    "title",
    "trim",
    "replace",
    "indent",
    "join",
    "length",
    "tojson",
}


class _LockedSandbox(ImmutableSandboxedEnvironment):
    def is_safe_attribute(self, obj, attr, value) -> bool:
        return False

    def is_safe_callable(self, obj) -> bool:
        return False


def _env(strict: bool) -> _LockedSandbox:
    env = _LockedSandbox(
        autoescape=False,
        undefined=StrictUndefined if strict else Undefined,
        keep_trailing_newline=False,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.globals = {}
    env.filters = {key: val for key, val in env.filters.items() if key in _ALLOWED_FILTERS}
    return env


def _plain(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(key): _plain(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(val) for val in value]
    return str(value)


def undeclared_variables(text: str | None) -> set[str]:
    if not text:
        return set()
    return set(meta.find_undeclared_variables(_env(strict=False).parse(text)))


def render_template(text: str | None, context: dict[str, Any] | None, strict: bool = True) -> str:
    tmpl = _env(strict=strict).from_string(text or "")
    return tmpl.render(_plain(context or {}))
