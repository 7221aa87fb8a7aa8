"""Template-based code generation for a handful of languages."""

from __future__ import annotations

import copy
import re
import time
from typing import Any, Dict, List

import code_templates as tpl
from agentkit.templates import render_template
from module_errors import ModuleError

DEFAULT_CONFIG = {
    "supported_languages": ["javascript", "typescript", "python", "java", "sql"],
    "max_output_length": 20000,
    "include_comments": True,
    "include_tests": True,
    "code_style": {"indentation": "spaces", "indent_size": 2, "max_line_length": 100},
}

STYLES = ("functional", "object-oriented", "procedural")

_BRANCH_RE = re.compile(r"\b(if|for|while|switch|catch|except|case)\b")


class CodeGenerationError(ModuleError):
    pass


def pascal_case(text: str) -> str:
    words = re.findall(r"[A-Za-z0-9]+", text)[:2]
    name = "".join(word[:1].upper() + word[1:] for word in words)
    if not name or not name[0].isalpha():
        return "Implementation"
    return name


def estimate_complexity(code: str) -> str:
    lines = [line for line in code.split("\n") if line.strip()]
    branches = len(_BRANCH_RE.findall(code))
    if len(lines) < 50 and branches < 5:
        return "low"
    if len(lines) < 200 and branches < 15:
        return "medium"
    return "high"


def usage_example(code: str) -> str:
    lines = [
        line
        for line in code.split("\n")[:8]
        if line.strip() and not line.strip().startswith(("//", "/*", "*", "#", "--", '"""'))
    ]
    return "\n".join(lines[:3]) or "See generated code for usage"


class CodeGeneratorModule:
    module_id = "code-generator"

    def __init__(self, config: dict | None = None) -> None:
        merged = copy.deepcopy(DEFAULT_CONFIG)
        for key, value in (config or {}).items():
            if key == "code_style" and isinstance(value, dict):
                merged["code_style"].update(value)
            else:
                merged[key] = copy.deepcopy(value)
        self.config = merged

    def get_schema(self) -> dict:
        return {
            "type": "object",
            "required": ["language", "description"],
            "properties": {
                "language": {"type": "string", "enum": list(self.config["supported_languages"])},
                "description": {"type": "string", "minLength": 1},
                "requirements": {"type": "array", "items": {"type": "string"}},
                "framework": {"type": "string"},
                "style": {"type": "string", "enum": list(STYLES)},
                "include_documentation": {"type": "boolean"},
            },
        }

    def _indent(self, language: str) -> str:
        if language == "python":
            return "    "
        style = self.config["code_style"]
        if style.get("indentation") == "tabs":
            return "\t"
        return " " * int(style.get("indent_size") or 2)

    def _pick(self, language: str, framework: str | None, style: str) -> str:
        if language in ("javascript", "typescript"):
            if framework == "express":
                return tpl.JS_EXPRESS
            if style == "functional":
                return tpl.TS_FUNCTIONAL if language == "typescript" else tpl.JS_FUNCTIONAL
            return tpl.JS_CLASS
        if language == "python":
            if framework == "fastapi":
                return tpl.PY_FASTAPI
            if style == "functional":
                return tpl.PY_FUNCTIONAL
            return tpl.PY_CLASS
        if language == "java":
            return tpl.JAVA_CLASS
        if language == "sql":
            return tpl.SQL_SCRIPT
        raise CodeGenerationError("LANGUAGE_NOT_IMPLEMENTED", f"Code generation for {language} not implemented", "language")

    def _tests(self, language: str, ctx: dict) -> str:
        if language in ("javascript", "typescript"):
            return render_template(tpl.JS_TESTS, ctx)
        if language == "python":
            return render_template(tpl.PY_TESTS, ctx)
        if language == "java":
            return render_template(tpl.JAVA_TESTS, ctx)
        marker = "--" if language == "sql" else "//"
        return f"{marker} Tests for {language} are not generated\n"

    def invoke(self, request: dict) -> dict:
        started = time.perf_counter()
        request = request or {}
        language = str(request.get("language") or "").lower()
        description = request.get("description")
        if language not in [lang.lower() for lang in self.config["supported_languages"]]:
            raise CodeGenerationError("LANGUAGE_UNSUPPORTED", f"Language {language} is not supported", "language")
        if not isinstance(description, str) or not description.strip():
            raise CodeGenerationError("DESCRIPTION_REQUIRED", "description is required", "description")

        requirements: List[str] = [str(req) for req in request.get("requirements") or []]
        framework = request.get("framework")
        style = request.get("style") or "functional"
        ctx: Dict[str, Any] = {
            "description": description.strip(),
            "requirements": requirements,
            "i": self._indent(language),
            "comments": bool(self.config.get("include_comments")),
            "class_name": pascal_case(description),
            "language": language,
            "framework": framework,
            "style": request.get("style"),
        }

        code = render_template(self._pick(language, framework, style), ctx)
        if len(code) > int(self.config.get("max_output_length") or 0):
            raise CodeGenerationError(
                "OUTPUT_TOO_LONG",
                f"Generated code is {len(code)} characters, above the {self.config['max_output_length']} limit",
                "max_output_length",
            )

        tests = self._tests(language, ctx) if self.config.get("include_tests") else None
        documentation = None
        if request.get("include_documentation"):
            documentation = render_template(tpl.DOCUMENTATION, {**ctx, "usage": usage_example(code)})

        max_line = int(self.config["code_style"].get("max_line_length") or 0)
        return {
            "code": code,
            "tests": tests,
            "documentation": documentation,
            "metadata": {
                "language": language,
                "framework": framework,
                "style": request.get("style"),
                "lines_of_code": len(code.split("\n")),
                "estimated_complexity": estimate_complexity(code),
                "processing_time_ms": round((time.perf_counter() - started) * 1000, 3),
                "long_lines": sum(1 for line in code.split("\n") if max_line and len(line) > max_line),
            },
        }
