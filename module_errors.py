"""Error types and issue helpers shared by the module family."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

Issue = Dict[str, Any]


def issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


@dataclass
class ModuleError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base

    def to_issue(self) -> Issue:
        return issue(self.code, self.message, self.path)


class ModuleConfigError(ModuleError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("MODULE_CONFIG_INVALID", message, path)


class ModuleInputError(ModuleError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("MODULE_INPUT_INVALID", message, path)
