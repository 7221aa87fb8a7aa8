from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Set

from app.connectors import BUILTIN_CONNECTORS, BaseConnector, ConnectorError

logger = logging.getLogger("agentkit.connectors")


class ConnectorManager:
    """Catalog of connectors plus the agent -> connector connection table."""

    def __init__(self, connectors: Iterable[BaseConnector] | None = None) -> None:
        self._connectors: Dict[str, BaseConnector] = {}
        self._connections: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()
        if connectors is None:
            connectors = [factory() for factory in BUILTIN_CONNECTORS]
        for connector in connectors:
            self.register(connector)
        logger.info("connectors_initialized count=%s", len(self._connectors))

    def register(self, connector: BaseConnector) -> None:
        self._connectors[connector.connector_id] = connector

    def get(self, connector_id: str) -> BaseConnector:
        connector = self._connectors.get(connector_id)
        if connector is None:
            raise ConnectorError("CONNECTOR_NOT_FOUND", f"Connector {connector_id} not found", "connector_id")
        return connector

    def list(self, category: str | None = None) -> List[dict]:
        return [
            c.info()
            for c in self._connectors.values()
            if category is None or c.category == category
        ]

    def connect_agent(self, agent_id: str, connector_id: str) -> None:
        connector = self.get(connector_id)
        with self._lock:
            self._connections.setdefault(agent_id, set()).add(connector_id)
        connector.on_connect(agent_id)

    def disconnect_agent(self, agent_id: str, connector_id: str) -> None:
        connector = self._connectors.get(connector_id)
        if connector is not None:
            connector.on_disconnect(agent_id)
        with self._lock:
            current = self._connections.get(agent_id)
            if current is None:
                return
            current.discard(connector_id)
            if not current:
                del self._connections[agent_id]

    def agent_connections(self, agent_id: str) -> List[str]:
        return sorted(self._connections.get(agent_id) or ())

    def process_message(self, connector_id: str, message: dict) -> Any:
        connector = self.get(connector_id)
        action = message.get("action") if isinstance(message, dict) else None
        try:
            result = connector.process_message(message)
        except ConnectorError as exc:
            logger.warning("connector_action_failed connector=%s action=%s code=%s", connector_id, action, exc.code)
            raise
        logger.info("connector_action connector=%s action=%s", connector_id, action)
        return result

    def execute(self, connector_id: str, action: str, params: dict | None = None) -> Any:
        return self.process_message(connector_id, {"action": action, "params": params or {}})

    def health_check(self, connector_id: str | None = None) -> Any:
        if connector_id is not None:
            return self.get(connector_id).health_check()
        results = []
        for cid, connector in self._connectors.items():
            results.append({"id": cid, **connector.health_check()})
        return results

    def endpoints(self, connector_id: str | None = None) -> List[dict]:
        if connector_id is not None:
            return self.get(connector_id).endpoints()
        out: List[dict] = []
        for cid, connector in self._connectors.items():
            for endpoint in connector.endpoints():
                out.append({
                    **endpoint,
                    "connector_id": cid,
                    "connector_name": connector.name,
                    "full_path": f"/api/mcp/{cid}{endpoint['path']}",
                })
        return out

    def capabilities(self, connector_id: str) -> List[str]:
        return self.get(connector_id).capabilities()

    def stats(self) -> dict:
        by_category: Dict[str, int] = {}
        by_status: Dict[str, int] = {}
        for connector in self._connectors.values():
            by_category[connector.category] = by_category.get(connector.category, 0) + 1
            by_status[connector.status] = by_status.get(connector.status, 0) + 1
        return {
            "total_connectors": len(self._connectors),
            "active_connections": len(self._connections),
            "by_category": by_category,
            "by_status": by_status,
            "available_endpoints": len(self.endpoints()),
        }
