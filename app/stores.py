"""In-memory stores for agents and credentials."""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List

from app.secrets import decrypt_secret, encrypt_secret, mask_secret, rotate_secret


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


_AGENT_DEFAULTS = {
    "goal": "",
    "role": "assistant",
    "guardrails": [],
    "model": "gpt-4o-mini",
    "modules": [],
    "connectors": [],
    "status": "draft",
}


class MemoryAgentStore:
    def __init__(self) -> None:
        self._items: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def create(self, record: dict) -> dict:
        item = copy.deepcopy(_AGENT_DEFAULTS)
        item.update(copy.deepcopy(record))
        item["id"] = str(uuid.uuid4())
        item["created_at"] = _now()
        item["updated_at"] = item["created_at"]
        with self._lock:
            self._items[item["id"]] = item
        return copy.deepcopy(item)

    def get(self, agent_id: str) -> dict | None:
        item = self._items.get(agent_id)
        return copy.deepcopy(item) if item else None

    def list(self, status: str | None = None) -> list[dict]:
        items = list(self._items.values())
        if status:
            items = [i for i in items if i.get("status") == status]
        items.sort(key=lambda i: i.get("created_at", ""), reverse=True)
        return [copy.deepcopy(i) for i in items]

    def update(self, agent_id: str, updates: dict) -> dict | None:
        with self._lock:
            item = self._items.get(agent_id)
            if not item:
                return None
            next_updates = copy.deepcopy(updates or {})
            for key in ("id", "created_at", "modules", "connectors"):
                next_updates.pop(key, None)
            item.update(next_updates)
            item["updated_at"] = _now()
            return copy.deepcopy(item)

    def delete(self, agent_id: str) -> dict | None:
        with self._lock:
            return self._items.pop(agent_id, None)

    def add_module(self, agent_id: str, module_id: str, instance_id: str) -> dict | None:
        with self._lock:
            item = self._items.get(agent_id)
            if not item:
                return None
            item["modules"] = [m for m in item["modules"] if m.get("module_id") != module_id]
            item["modules"].append({"module_id": module_id, "instance_id": instance_id})
            item["updated_at"] = _now()
            return copy.deepcopy(item)

    def remove_module(self, agent_id: str, module_id: str) -> str | None:
        """Detach ``module_id``; returns the instance id it was bound to."""
        with self._lock:
            item = self._items.get(agent_id)
            if not item:
                return None
            for ref in item["modules"]:
                if ref.get("module_id") == module_id:
                    item["modules"].remove(ref)
                    item["updated_at"] = _now()
                    return ref.get("instance_id")
            return None

    def set_connector(self, agent_id: str, connector_id: str, connected: bool) -> dict | None:
        with self._lock:
            item = self._items.get(agent_id)
            if not item:
                return None
            current = [cid for cid in item["connectors"] if cid != connector_id]
            if connected:
                current.append(connector_id)
            item["connectors"] = current
            item["updated_at"] = _now()
            return copy.deepcopy(item)


class MemoryCredentialStore:
    def __init__(self) -> None:
        self._items: Dict[str, dict] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _public(item: dict) -> dict:
        out = {key: val for key, val in item.items() if key != "secret_enc"}
        out["configured"] = bool(item.get("secret_enc"))
        return copy.deepcopy(out)

    def create(self, name: str, provider: str, value: str) -> dict:
        item = {
            "id": str(uuid.uuid4()),
            "name": name,
            "provider": provider,
            "secret_enc": encrypt_secret(value) if value else None,
            "hint": mask_secret(value),
            "created_at": _now(),
        }
        with self._lock:
            self._items[item["id"]] = item
        return self._public(item)

    def get(self, credential_id: str) -> dict | None:
        item = self._items.get(credential_id)
        return self._public(item) if item else None

    def get_plaintext(self, credential_id: str) -> str | None:
        item = self._items.get(credential_id)
        if not item or not item.get("secret_enc"):
            return None
        return decrypt_secret(item["secret_enc"])

    def find_by_provider(self, provider: str) -> dict | None:
        for item in self._items.values():
            if item.get("provider") == provider and item.get("secret_enc"):
                return self._public(item)
        return None

    def list(self, provider: str | None = None) -> list[dict]:
        items = [i for i in self._items.values() if provider is None or i.get("provider") == provider]
        items.sort(key=lambda i: i.get("created_at", ""), reverse=True)
        return [self._public(i) for i in items]

    def rotate_all(self) -> int:
        """Re-encrypt every stored secret under the primary key; returns the count."""
        with self._lock:
            items = [i for i in self._items.values() if i.get("secret_enc")]
            for item in items:
                item["secret_enc"] = rotate_secret(item["secret_enc"])
        return len(items)

    def delete(self, credential_id: str) -> bool:
        with self._lock:
            return self._items.pop(credential_id, None) is not None

    def stats(self) -> dict:
        by_provider: Dict[str, int] = {}
        configured = 0
        for item in self._items.values():
            by_provider[item["provider"]] = by_provider.get(item["provider"], 0) + 1
            if item.get("secret_enc"):
                configured += 1
        return {"total": len(self._items), "configured": configured, "by_provider": by_provider}
