"""Documents assembled from titled sections and rendered as markdown, html,
confluence wiki markup, plain text or a JSON envelope."""

from __future__ import annotations

import copy
import html
import json
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

from jinja2 import TemplateError

from agentkit.templates import render_template
from module_errors import ModuleError

FORMATS = ("markdown", "html", "confluence", "json", "text")
SECTION_TYPES = ("text", "list", "table", "code", "image")

DEFAULT_CONFIG = {
    "supported_formats": list(FORMATS),
    "templates": {},
    "max_document_length": 100000,
    "include_metadata": True,
}

REQUEST_SCHEMA = {
    "type": "object",
    "required": ["format", "title", "content"],
    "properties": {
        "template_id": {"type": "string"},
        "format": {"type": "string", "enum": list(FORMATS)},
        "title": {"type": "string"},
        "content": {"type": "object"},
        "variables": {"type": "object"},
        "sections": {"type": "array", "items": {"type": "string"}},
    },
}

_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")


class DocumentError(ModuleError):
    pass


def title_case(key: str) -> str:
    text = _CAMEL_RE.sub(r"\1 \2", str(key)).replace("_", " ").strip()
    return text[:1].upper() + text[1:]


def _empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, sort_keys=True, default=str)


class _Writer:
    """Format-specific markup for headings and section bodies."""

    def __init__(self, fmt: str) -> None:
        self.fmt = fmt

    def _esc(self, value: Any) -> str:
        text = _text(value)
        return html.escape(text) if self.fmt == "html" else text

    def heading(self, text: str, level: int) -> str:
        if self.fmt == "markdown":
            return f"{'#' * level} {text}"
        if self.fmt == "html":
            return f"<h{level}>{html.escape(text)}</h{level}>"
        if self.fmt == "confluence":
            return f"h{level}. {text}"
        return text

    def text(self, value: str) -> str:
        return f"<p>{html.escape(value)}</p>" if self.fmt == "html" else value

    def listing(self, data: Any) -> str:
        if isinstance(data, dict):
            items = [(str(key), val) for key, val in data.items()]
        elif isinstance(data, list):
            items = [(None, val) for val in data]
        else:
            items = [(None, data)]
        if self.fmt == "html":
            rows = [
                f"<li><strong>{html.escape(key)}</strong>: {self._esc(val)}</li>" if key else f"<li>{self._esc(val)}</li>"
                for key, val in items
            ]
            return "<ul>\n" + "\n".join(rows) + "\n</ul>"
        bullet, strong = ("*", "*") if self.fmt == "confluence" else ("-", "**")
        return "\n".join(
            f"{bullet} {strong}{key}{strong}: {_text(val)}" if key else f"{bullet} {_text(val)}" for key, val in items
        )

    def table(self, data: Any) -> str:
        if not isinstance(data, list) or not data:
            return self.text("No data available")
        if isinstance(data[0], dict):
            headers = [str(key) for key in data[0]]
            rows = [[_text(row.get(key)) if isinstance(row, dict) else "" for key in data[0]] for row in data]
        else:
            headers = ["Item"]
            rows = [[_text(item)] for item in data]
        if self.fmt == "html":
            head = "".join(f"<th>{html.escape(h)}</th>" for h in headers)
            body = "\n".join("<tr>" + "".join(f"<td>{html.escape(c)}</td>" for c in row) + "</tr>" for row in rows)
            return f"<table>\n<tr>{head}</tr>\n{body}\n</table>"
        if self.fmt == "confluence":
            lines = ["||" + "||".join(headers) + "||"]
            lines.extend("|" + "|".join(row) + "|" for row in rows)
            return "\n".join(lines)
        lines = ["| " + " | ".join(headers) + " |", "|" + "|".join("------" for _ in headers) + "|"]
        lines.extend("| " + " | ".join(row) + " |" for row in rows)
        return "\n".join(lines)

    def code(self, data: Any) -> str:
        source = json.dumps(data, indent=2, sort_keys=True, default=str) if isinstance(data, (dict, list)) else _text(data)
        if self.fmt == "html":
            return f"<pre><code>{html.escape(source)}</code></pre>"
        if self.fmt == "confluence":
            return "{code}\n" + source + "\n{code}"
        if self.fmt == "text":
            return source
        return f"```\n{source}\n```"

    def image(self, data: Any, alt: str) -> str:
        url = data.get("url") if isinstance(data, dict) else _text(data)
        if self.fmt == "markdown":
            return f"![{alt}]({url})"
        if self.fmt == "html":
            return f'<img src="{html.escape(url or "", quote=True)}" alt="{html.escape(alt, quote=True)}">'
        if self.fmt == "confluence":
            return f"!{url}!"
        return url or ""

    def wrap(self, title: str, body: str) -> str:
        if self.fmt == "html":
            return f"<!DOCTYPE html>\n<html>\n<head>\n<title>{html.escape(title)}</title>\n</head>\n<body>\n{body}\n</body>\n</html>"
        return body


class DocumentGenerationModule:
    module_id = "document-generation"

    def __init__(self, config: dict | None = None) -> None:
        merged = copy.deepcopy(DEFAULT_CONFIG)
        merged.update(copy.deepcopy(config or {}))
        for template_id, template in (merged.get("templates") or {}).items():
            for idx, section in enumerate(template.get("sections") or []):
                if not isinstance(section.get("id"), str) or not section["id"]:
                    raise DocumentError("DOCUMENT_CONFIG_INVALID", "section id is required", f"templates.{template_id}.sections[{idx}].id")
                section.setdefault("title", title_case(section["id"]))
                if section.get("type", "text") not in SECTION_TYPES:
                    raise DocumentError(
                        "DOCUMENT_CONFIG_INVALID",
                        f"unknown section type: {section.get('type')}",
                        f"templates.{template_id}.sections[{idx}].type",
                    )
        self.config = merged

    def get_schema(self) -> dict:
        schema = copy.deepcopy(REQUEST_SCHEMA)
        schema["properties"]["format"]["enum"] = list(self.config["supported_formats"])
        return schema

    def _render(self, text: str, variables: dict, where: str) -> str:
        try:
            return render_template(text, variables, strict=False)
        except TemplateError as exc:
            raise DocumentError("DOCUMENT_TEMPLATE_INVALID", str(exc), where) from exc

    def _section_body(self, writer: _Writer, section: dict, data: Any, variables: dict) -> str:
        kind = section.get("type") or "text"
        if kind == "list":
            return writer.listing(data)
        if kind == "table":
            return writer.table(data)
        if kind == "code":
            return writer.code(data)
        if kind == "image":
            return writer.image(data, section.get("title") or "")
        if section.get("template"):
            text = self._render(section["template"], {**variables, "content": data}, f"sections.{section['id']}.template")
        else:
            text = self._render(_text(data), variables, f"content.{section['id']}")
        return writer.text(text)

    def _sections(self, request: dict, template: dict | None) -> List[dict]:
        if template is None:
            return [{"id": key, "title": title_case(key), "type": "text"} for key in request["content"]]
        wanted = request.get("sections")
        return [
            section
            for section in template.get("sections") or []
            if wanted is None or section["id"] in wanted or section.get("required")
        ]

    def invoke(self, request: dict) -> dict:
        started = time.perf_counter()
        request = request or {}
        fmt = request.get("format")
        if fmt not in self.config["supported_formats"] or fmt not in FORMATS:
            raise DocumentError("FORMAT_UNSUPPORTED", f"Format {fmt} is not supported", "format")
        title = request.get("title")
        if not isinstance(title, str) or not title.strip():
            raise DocumentError("TITLE_REQUIRED", "title is required", "title")
        content = request.get("content")
        if not isinstance(content, dict):
            raise DocumentError("MODULE_INPUT_INVALID", "content must be object", "content")

        templates = self.config.get("templates") or {}
        template_id = request.get("template_id")
        template = templates.get(template_id) if template_id else None
        variables: Dict[str, Any] = {**((template or {}).get("variables") or {}), **(request.get("variables") or {})}

        writer = _Writer("text" if fmt == "json" else fmt)
        title = self._render(title, variables, "title")
        parts = [writer.heading(title, 1)]
        headings = [title]
        for section in self._sections(request, template):
            data = content.get(section["id"])
            if _empty(data):
                if section.get("required"):
                    raise DocumentError("SECTION_REQUIRED", f"Required section {section['id']} is missing", f"content.{section['id']}")
                body = writer.text(section.get("placeholder") or f"[{section['title']} content will be added here]")
            else:
                body = self._section_body(writer, section, data, variables)
            parts.append(f"{writer.heading(section['title'], 2)}\n\n{body}")
            headings.append(section["title"])
        document = writer.wrap(title, "\n\n".join(parts))
        if fmt == "json":
            document = json.dumps(
                {
                    "title": title,
                    "content": document,
                    "metadata": {"format": fmt, "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")},
                },
                indent=2,
            )

        limit = int(self.config.get("max_document_length") or 0)
        if limit and len(document) > limit:
            raise DocumentError("DOCUMENT_TOO_LONG", f"Document exceeds maximum length of {limit} characters", "content")
        metadata: Dict[str, Any] = {"format": fmt, "template_used": template_id if template is not None else None}
        if self.config.get("include_metadata"):
            metadata.update(
                {
                    "word_count": len(document.split()),
                    "character_count": len(document),
                    "sections": headings,
                    "processing_time_ms": round((time.perf_counter() - started) * 1000, 3),
                }
            )
        return {"document": document, "metadata": metadata}
