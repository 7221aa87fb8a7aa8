import os
import sys
import unittest
from unittest import mock


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

os.environ["AGENTKIT_DISABLE_AUTH"] = "1"
os.environ["AGENTKIT_CONNECTOR_MOCKS"] = "1"
os.environ["SERPAPI_API_KEY"] = ""
os.environ["OPENWEATHERMAP_API_KEY"] = ""

from fastapi.testclient import TestClient

from app import main

TRANSFORM_CONFIG = {
    "transformations": {
        "upper": {
            "type": "mapping",
            "rules": [{"operation": "map", "source_field": "name", "parameters": {"transform": "uppercase"}}],
        }
    }
}


class TestApi(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(main.app)

    def _create_agent(self, **extra) -> dict:
        res = self.client.post("/agents", json={"name": "Planner", **extra})
        self.assertEqual(res.status_code, 201)
        return res.json()["agent"]

    def test_health(self) -> None:
        res = self.client.get("/health")
        self.assertEqual(res.json(), {"ok": True})

    def test_modules_catalog(self) -> None:
        res = self.client.get("/modules", params={"category": "data"})
        body = res.json()
        self.assertTrue(body["ok"])
        self.assertEqual([m["id"] for m in body["modules"]], ["data-transform"])
        self.assertEqual(self.client.get("/modules/nope").status_code, 404)
        schema = self.client.get("/modules/code-generator/schema").json()["schema"]
        self.assertIn("language", schema["properties"])

    def test_invoke_default_module(self) -> None:
        res = self.client.post(
            "/modules/code-generator/invoke",
            json={"input": {"language": "python", "description": "parse csv rows"}},
        )
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertIn("def ", body["result"]["code"])
        self.assertTrue(body["audit_id"])
        history = self.client.get("/modules/code-generator/history").json()["history"]
        self.assertEqual(history[0]["audit_id"], body["audit_id"])

    def test_invoke_error_is_issue_list(self) -> None:
        res = self.client.post("/modules/recommendation/invoke", json={"input": {}})
        self.assertEqual(res.status_code, 400)
        body = res.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["errors"][0]["code"], "CONTEXT_REQUIRED")

    def test_instance_config_validation(self) -> None:
        res = self.client.post("/modules/recommendation/instances", json={"config": {"max_recommendations": 0}})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["path"], "config.max_recommendations")

    def test_module_failure_codes_map_to_status(self) -> None:
        res = self.client.post("/modules/api-connector/invoke", json={"input": {"endpoint": "nope"}})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "API_ENDPOINT_NOT_FOUND")
        res = self.client.post(
            "/modules/document-generation/invoke",
            json={"input": {"format": "markdown", "title": "Plan", "content": {"goal": "ship"}}},
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["result"]["document"], "# Plan\n\n## Goal\n\nship")

    def test_disable_then_invoke_conflicts(self) -> None:
        self.client.post("/modules/prompt/disable", json={"reason": "test"})
        try:
            res = self.client.post("/modules/prompt/invoke", json={"input": {"prompt": "hi"}})
            self.assertEqual(res.status_code, 409)
            self.assertEqual(res.json()["errors"][0]["code"], "MODULE_DISABLED")
        finally:
            self.client.post("/modules/prompt/enable", json={})

    def test_agent_lifecycle(self) -> None:
        agent = self._create_agent(goal="summarize")
        self.assertEqual(agent["status"], "draft")
        res = self.client.put(f"/agents/{agent['id']}", json={"status": "active"})
        self.assertEqual(res.json()["agent"]["status"], "active")
        self.assertEqual(self.client.get(f"/agents/{agent['id']}").json()["agent"]["connections"], [])
        self.assertEqual(self.client.delete(f"/agents/{agent['id']}").status_code, 200)
        res = self.client.get(f"/agents/{agent['id']}")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "AGENT_NOT_FOUND")

    def test_agent_validation(self) -> None:
        res = self.client.post("/agents", json={"goal": 1})
        self.assertEqual(res.status_code, 400)
        codes = {e["code"] for e in res.json()["errors"]}
        self.assertEqual(codes, {"REQUIRED_FIELD", "INVALID_TYPE"})

    def test_agent_module_attach_and_invoke(self) -> None:
        agent = self._create_agent()
        res = self.client.post(
            f"/agents/{agent['id']}/modules",
            json={"module_id": "data-transform", "config": TRANSFORM_CONFIG},
        )
        self.assertEqual(res.status_code, 201)
        instance = res.json()["instance"]
        self.assertEqual(instance["agent_id"], agent["id"])
        res = self.client.post(
            f"/agents/{agent['id']}/modules/data-transform/invoke",
            json={"input": {"data": [{"name": "ada"}], "transformation": "upper"}},
        )
        self.assertEqual(res.json()["result"]["data"], [{"name": "ADA"}])

        res = self.client.post(f"/agents/{agent['id']}/modules/prompt/invoke", json={"input": {}})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "MODULE_NOT_ATTACHED")

        self.client.delete(f"/agents/{agent['id']}")
        self.assertIsNone(main.registry.get_instance(instance["instance_id"]))

    def test_agent_connectors(self) -> None:
        agent = self._create_agent()
        res = self.client.post(f"/agents/{agent['id']}/connectors/weather")
        self.assertEqual(res.json()["connections"], ["weather"])
        self.assertEqual(res.json()["agent"]["connectors"], ["weather"])
        self.assertEqual(self.client.post(f"/agents/{agent['id']}/connectors/nope").status_code, 404)
        res = self.client.delete(f"/agents/{agent['id']}/connectors/weather")
        self.assertEqual(res.json()["connections"], [])

    def test_connector_views(self) -> None:
        connectors = self.client.get("/connectors").json()["connectors"]
        self.assertEqual(len(connectors), 5)
        stats = self.client.get("/connectors/stats").json()["stats"]
        self.assertEqual(stats["total_connectors"], 5)
        endpoints = self.client.get("/connectors/endpoints").json()["endpoints"]
        self.assertTrue(all(e["full_path"].startswith("/api/mcp/") for e in endpoints))
        health = self.client.get("/connectors/geospatial/health").json()["health"]
        self.assertEqual(health["status"], "healthy")
        self.assertEqual(self.client.get("/connectors/nope").status_code, 404)

    def test_connector_action_mocked(self) -> None:
        res = self.client.post("/connectors/weather/actions/current_weather", json={"params": {"location": "Rome"}})
        self.assertEqual(res.status_code, 200)
        result = res.json()["result"]
        self.assertTrue(result["mocked"])
        self.assertEqual(result["location"]["name"], "Rome")

    def test_connector_action_errors(self) -> None:
        res = self.client.post("/connectors/weather/actions/teleport", json={"params": {}})
        self.assertEqual(res.json()["errors"][0]["code"], "CONNECTOR_UNKNOWN_ACTION")
        res = self.client.post("/connectors/serpapi/actions/search", json={"params": {}})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "CONNECTOR_PARAMS_INVALID")

    def test_credentials_configure_connector(self) -> None:
        weather = main.connectors.get("weather")
        previous = weather.api_key
        try:
            res = self.client.post("/credentials", json={"name": "owm", "provider": "weather", "value": "owm-key"})
            self.assertEqual(res.status_code, 201)
            body = res.json()
            self.assertTrue(body["connector_configured"])
            self.assertNotIn("secret_enc", body["credential"])
            self.assertEqual(weather.api_key, "owm-key")
            self.assertEqual(weather.status, "active")
            stats = self.client.get("/credentials/stats").json()["stats"]
            self.assertGreaterEqual(stats["by_provider"]["weather"], 1)
            cred_id = body["credential"]["id"]
            self.assertEqual(self.client.delete(f"/credentials/{cred_id}").status_code, 200)
            self.assertEqual(self.client.delete(f"/credentials/{cred_id}").status_code, 404)
        finally:
            weather.api_key = previous

    def test_deleting_credential_releases_connector_key(self) -> None:
        weather = main.connectors.get("weather")
        previous = weather.api_key
        try:
            first = self.client.post("/credentials", json={"name": "owm-a", "provider": "weather", "value": "key-a"}).json()
            second = self.client.post("/credentials", json={"name": "owm-b", "provider": "weather", "value": "key-b"}).json()
            self.assertEqual(weather.api_key, "key-b")

            res = self.client.delete(f"/credentials/{second['credential']['id']}")
            self.assertTrue(res.json()["connector_configured"])
            self.assertEqual(weather.api_key, "key-a")

            res = self.client.delete(f"/credentials/{first['credential']['id']}")
            self.assertFalse(res.json()["connector_configured"])
            self.assertIsNone(weather.api_key)
            status = self.client.get("/connectors/weather").json()["connector"]["status"]
            self.assertEqual(status, "inactive")
        finally:
            weather.api_key = previous

    def test_credentials_rotate(self) -> None:
        res = self.client.post("/credentials", json={"name": "serp", "provider": "serpapi-archive", "value": "k-9876"})
        cred = res.json()["credential"]
        self.assertEqual(cred["hint"], "****9876")
        res = self.client.post("/credentials/rotate")
        self.assertEqual(res.status_code, 200)
        self.assertGreaterEqual(res.json()["rotated"], 1)
        self.assertEqual(main.credentials.get_plaintext(cred["id"]), "k-9876")
        self.client.delete(f"/credentials/{cred['id']}")

    def test_credentials_required_fields(self) -> None:
        res = self.client.post("/credentials", json={"name": "x"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual({e["path"] for e in res.json()["errors"]}, {"provider", "value"})

    def test_auth_enforced_when_enabled(self) -> None:
        with mock.patch.dict(os.environ, {"AGENTKIT_DISABLE_AUTH": ""}):
            res = self.client.get("/modules")
            self.assertEqual(res.status_code, 401)
            self.assertEqual(self.client.get("/health").status_code, 200)


if __name__ == "__main__":
    unittest.main()
