from __future__ import annotations

import copy
import json
import math
from typing import Any, List

from jinja2 import TemplateError

from agentkit.templates import render_template, undeclared_variables
from module_errors import ModuleError

DEFAULT_CONFIG = {
    "templates": {},
    "variables": {},
    "context_settings": {"max_tokens": 4000, "include_history": False, "history_length": 5},
}

REQUEST_SCHEMA = {
    "type": "object",
    "properties": {
        "template_id": {"type": "string"},
        "prompt": {"type": "string"},
        "variables": {"type": "object"},
        "context": {"type": "array"},
    },
}


class PromptError(ModuleError):
    pass


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def _encode(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, sort_keys=True)


class PromptModule:
    """Renders prompt templates with variables and optional conversation history."""

    module_id = "prompt"

    def __init__(self, config: dict | None = None) -> None:
        merged = copy.deepcopy(DEFAULT_CONFIG)
        for key, value in (config or {}).items():
            if key == "context_settings" and isinstance(value, dict):
                merged["context_settings"].update(value)
            else:
                merged[key] = copy.deepcopy(value)
        self.config = merged

    def get_schema(self) -> dict:
        return copy.deepcopy(REQUEST_SCHEMA)

    def _history(self, context: List[Any]) -> str:
        length = int(self.config["context_settings"].get("history_length") or 0)
        recent = context[-length:] if length else []
        return "\n".join(
            f"Context {idx}: {json.dumps(item, sort_keys=True, default=str)}" for idx, item in enumerate(recent, start=1)
        )

    def invoke(self, request: dict) -> dict:
        request = request or {}
        template_id = request.get("template_id")
        templates = self.config.get("templates") or {}
        if template_id and template_id in templates:
            text = templates[template_id]
        elif template_id and not request.get("prompt"):
            raise PromptError("TEMPLATE_NOT_FOUND", f"Template '{template_id}' not found", "template_id")
        else:
            text = request.get("prompt") or ""

        variables = {**(self.config.get("variables") or {}), **(request.get("variables") or {})}
        try:
            missing = sorted(undeclared_variables(text) - set(variables))
            rendered = render_template(text, {key: _encode(val) for key, val in variables.items()}, strict=False)
        except TemplateError as exc:
            raise PromptError("PROMPT_TEMPLATE_INVALID", str(exc), "prompt") from exc

        settings = self.config["context_settings"]
        context = request.get("context") or []
        include_history = bool(settings.get("include_history")) and bool(context)
        final = f"{self._history(context)}\n\n{rendered}" if include_history else rendered

        tokens = estimate_tokens(final)
        if tokens > int(settings.get("max_tokens") or 0):
            raise PromptError("PROMPT_TOO_LONG", "Processed prompt exceeds maximum token limit", "prompt")
        return {
            "processed_prompt": final,
            "metadata": {
                "template_used": template_id if template_id in templates else None,
                "variables_replaced": len(variables),
                "missing_variables": missing,
                "estimated_tokens": tokens,
                "context_included": include_history,
            },
        }
