"""Serialize transform results to the configured output formats."""

from __future__ import annotations

import csv
import io
import json
import re
import xml.etree.ElementTree as ET
from typing import Any, List

import yaml

from module_errors import ModuleError

FORMATS = ("json", "csv", "xml", "yaml")

_TAG_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")


class OutputFormatError(ModuleError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("OUTPUT_FORMAT_INVALID", message, path)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def to_csv(data: Any) -> str:
    records = data if isinstance(data, list) else [data]
    rows = [row if isinstance(row, dict) else {"value": row} for row in records]
    header: List[str] = []
    for row in rows:
        for key in row:
            if key not in header:
                header.append(key)
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    if header:
        writer.writerow(header)
    for row in rows:
        writer.writerow([_cell(row.get(key)) for key in header])
    return buf.getvalue()


def _xml_value(parent: ET.Element, value: Any) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            name = str(key)
            if _TAG_RE.match(name) and not name.lower().startswith("xml"):
                node = ET.SubElement(parent, name)
            else:
                node = ET.SubElement(parent, "field", {"name": name})
            _xml_value(node, child)
    elif isinstance(value, list):
        for child in value:
            _xml_value(ET.SubElement(parent, "item"), child)
    elif value is not None:
        parent.text = _cell(value)


def to_xml(data: Any) -> str:
    root = ET.Element("data")
    _xml_value(root, data)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")


def to_yaml(data: Any) -> str:
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)


def format_output(data: Any, fmt: str) -> Any:
    if fmt == "json":
        return data
    if fmt == "csv":
        return to_csv(data)
    if fmt == "xml":
        return to_xml(data)
    if fmt == "yaml":
        return to_yaml(data)
    raise OutputFormatError(f"Unsupported output format: {fmt}", "output_format")
