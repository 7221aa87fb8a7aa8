import json
import os
import sys
import unittest
from unittest import mock

import httpx


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.connectors import (
    ApiTriggerConnector,
    ConnectorError,
    GeospatialConnector,
    GoogleTrendsConnector,
    SerpAPIConnector,
    WeatherConnector,
    haversine_m,
)

NO_KEYS = {"SERPAPI_API_KEY": "", "OPENWEATHERMAP_API_KEY": ""}


def _json_transport(payload, status: int = 200, seen: list | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=payload)

    return httpx.MockTransport(handler)


class TestConnectorDispatch(unittest.TestCase):
    def test_unknown_action(self) -> None:
        with self.assertRaises(ConnectorError) as ctx:
            ApiTriggerConnector().process_message({"action": "explode", "params": {}})
        self.assertEqual(ctx.exception.code, "CONNECTOR_UNKNOWN_ACTION")

    def test_params_checked_against_action_schema(self) -> None:
        with self.assertRaises(ConnectorError) as ctx:
            GeospatialConnector().process_message({"action": "reverse_geocode", "params": {"lat": 1.0}})
        self.assertEqual(ctx.exception.code, "CONNECTOR_PARAMS_INVALID")
        self.assertIn("lon", ctx.exception.message)

    def test_wrong_param_type_has_path(self) -> None:
        with self.assertRaises(ConnectorError) as ctx:
            GeospatialConnector().process_message({"action": "find_nearby", "params": {"lat": "x", "lon": 1}})
        self.assertEqual(ctx.exception.path, "params.lat")

    @mock.patch.dict(os.environ, NO_KEYS)
    def test_status_inactive_without_key(self) -> None:
        weather = WeatherConnector()
        self.assertEqual(weather.status, "inactive")
        health = weather.health_check()
        self.assertEqual(health["status"], "unhealthy")
        self.assertIn("OPENWEATHERMAP_API_KEY", health["message"])
        self.assertEqual(GeospatialConnector().health_check()["status"], "healthy")

    def test_config_key_wins(self) -> None:
        connector = SerpAPIConnector({"api_key": "cfg"})
        self.assertEqual(connector.api_key, "cfg")
        self.assertEqual(connector.status, "active")


class TestMockFallback(unittest.TestCase):
    @mock.patch.dict(os.environ, {**NO_KEYS, "AGENTKIT_CONNECTOR_MOCKS": "1"})
    def test_mocked_payload_is_deterministic(self) -> None:
        weather = WeatherConnector()
        first = weather.process_message({"action": "current_weather", "params": {"location": "Paris"}})
        second = weather.process_message({"action": "current_weather", "params": {"location": "Paris"}})
        self.assertTrue(first["mocked"])
        self.assertEqual(first, second)
        self.assertEqual(first["location"]["name"], "Paris")

    @mock.patch.dict(os.environ, {**NO_KEYS, "AGENTKIT_CONNECTOR_MOCKS": "0"})
    def test_not_configured_when_mocks_off(self) -> None:
        with self.assertRaises(ConnectorError) as ctx:
            SerpAPIConnector().process_message({"action": "search", "params": {"q": "hotels"}})
        self.assertEqual(ctx.exception.code, "CONNECTOR_NOT_CONFIGURED")

    @mock.patch.dict(os.environ, {**NO_KEYS, "AGENTKIT_CONNECTOR_MOCKS": "", "APP_ENV": "prod"})
    def test_mocks_default_off_outside_dev(self) -> None:
        with self.assertRaises(ConnectorError):
            GoogleTrendsConnector().process_message({"action": "get_trends", "params": {"keyword": "ski"}})

    @mock.patch.dict(os.environ, {**NO_KEYS, "AGENTKIT_CONNECTOR_MOCKS": "1"})
    def test_params_still_validated_when_mocked(self) -> None:
        with self.assertRaises(ConnectorError) as ctx:
            WeatherConnector().process_message({"action": "current_weather", "params": {}})
        self.assertEqual(ctx.exception.code, "CONNECTOR_PARAMS_INVALID")

    @mock.patch.dict(os.environ, {**NO_KEYS, "AGENTKIT_CONNECTOR_MOCKS": "1"})
    def test_mocked_compare_has_entry_per_keyword(self) -> None:
        result = GoogleTrendsConnector().process_message(
            {"action": "compare_keywords", "params": {"keywords": ["ski", "beach"]}}
        )
        self.assertEqual([c["keyword"] for c in result["comparison"]], ["ski", "beach"])
        self.assertEqual(len(result["comparison"][0]["interest_over_time"]), 12)


class TestWeatherConnector(unittest.TestCase):
    def test_current_weather_maps_fields(self) -> None:
        payload = {
            "name": "Paris",
            "main": {"temp": 21.5, "feels_like": 20.0, "humidity": 60, "pressure": 1012},
            "visibility": 10000,
            "wind": {"speed": 4.1, "deg": 180},
            "weather": [{"id": 800, "description": "clear sky", "icon": "01d"}],
            "sys": {"country": "FR"},
            "coord": {"lat": 48.85, "lon": 2.35},
            "timezone": 3600,
        }
        seen: list = []
        weather = WeatherConnector({"api_key": "k"}, transport=_json_transport(payload, seen=seen))
        result = weather.process_message({"action": "current_weather", "params": {"location": "Paris"}})
        self.assertEqual(result["current"]["temperature"], 21.5)
        self.assertEqual(result["current"]["weather_description"], "clear sky")
        self.assertEqual(result["location"]["country"], "FR")
        self.assertEqual(result["location"]["timezone"], "3600")
        self.assertEqual(seen[0].url.path, "/data/2.5/weather")
        self.assertEqual(seen[0].url.params["q"], "Paris")
        self.assertEqual(seen[0].url.params["units"], "metric")

    def test_forecast_groups_by_day(self) -> None:
        day = 1700006400  # 2023-11-15T00:00:00Z
        items = [
            {"dt": day, "main": {"temp_min": 5, "temp_max": 9}, "weather": [{"id": 500, "description": "rain"}], "pop": 0.4},
            {"dt": day + 10800, "main": {"temp_min": 3, "temp_max": 12}, "weather": [{"id": 800, "description": "clear"}], "pop": 0.1},
            {"dt": day + 86400, "main": {"temp_min": 6, "temp_max": 8}, "weather": [{"id": 801, "description": "clouds"}], "pop": 0},
        ]
        payload = {"list": items, "city": {"name": "Oslo", "country": "NO", "coord": {"lat": 59.9, "lon": 10.7}, "timezone": 3600}}
        weather = WeatherConnector({"api_key": "k"}, transport=_json_transport(payload))
        result = weather.process_message({"action": "forecast", "params": {"lat": 59.9, "lon": 10.7}})
        forecast = result["forecast"]
        self.assertEqual([f["date"] for f in forecast], ["2023-11-15", "2023-11-16"])
        self.assertEqual(forecast[0]["temperature_min"], 3)
        self.assertEqual(forecast[0]["temperature_max"], 12)
        self.assertEqual(forecast[0]["weather_description"], "rain")
        self.assertAlmostEqual(forecast[0]["precipitation_probability"], 40.0)

        limited = weather.process_message({"action": "forecast", "params": {"location": "Oslo", "days": 1}})
        self.assertEqual(len(limited["forecast"]), 1)

    def test_malformed_forecast_payload(self) -> None:
        day = 1700006400
        for items in (
            [{"main": {"temp_min": 5, "temp_max": 9}}],
            [{"dt": day, "main": {"temp_min": 5, "temp_max": 9}}, {"dt": day + 3600, "main": {"temp_min": "cold", "temp_max": 9}}],
        ):
            with self.subTest(items=items):
                weather = WeatherConnector({"api_key": "k"}, transport=_json_transport({"list": items, "city": {}}))
                with self.assertRaises(ConnectorError) as ctx:
                    weather.process_message({"action": "forecast", "params": {"location": "Oslo"}})
                self.assertEqual(ctx.exception.code, "CONNECTOR_UPSTREAM_FAILED")

    def test_alerts_placeholder(self) -> None:
        result = WeatherConnector({"api_key": "k"}).process_message({"action": "weather_alerts", "params": {}})
        self.assertEqual(result["alerts"], [])

    def test_upstream_error(self) -> None:
        weather = WeatherConnector({"api_key": "k"}, transport=_json_transport({"cod": 401}, status=401))
        with self.assertRaises(ConnectorError) as ctx:
            weather.process_message({"action": "current_weather", "params": {"location": "Paris"}})
        self.assertEqual(ctx.exception.code, "CONNECTOR_UPSTREAM_FAILED")


class TestSearchConnectors(unittest.TestCase):
    def test_news_uses_news_engine(self) -> None:
        seen: list = []
        serp = SerpAPIConnector({"api_key": "k"}, transport=_json_transport({"organic_results": [{"position": 1}]}, seen=seen))
        result = serp.process_message({"action": "search_news", "params": {"q": "rome"}})
        self.assertEqual(result["organic_results"], [{"position": 1}])
        self.assertEqual(result["related_questions"], [])
        self.assertEqual(seen[0].url.params["engine"], "google_news")
        self.assertEqual(seen[0].url.params["q"], "rome")

    def test_flights_need_airports(self) -> None:
        serp = SerpAPIConnector({"api_key": "k"})
        with self.assertRaises(ConnectorError) as ctx:
            serp.process_message({"action": "search_flights", "params": {"departure_id": "CDG"}})
        self.assertEqual(ctx.exception.code, "CONNECTOR_PARAMS_INVALID")

    def test_trends_reshapes_serpapi_payload(self) -> None:
        payload = {
            "interest_over_time": {"timeline_data": [{"date": "Jan", "value": 10}]},
            "related_queries": {"rising": [{"query": "ski deals"}]},
        }
        trends = GoogleTrendsConnector({"api_key": "k"}, transport=_json_transport(payload))
        result = trends.process_message({"action": "get_trends", "params": {"keyword": "ski"}})
        self.assertEqual(result["interest_over_time"], [{"date": "Jan", "value": 10}])
        self.assertEqual(result["related_queries"], [{"query": "ski deals"}])
        self.assertEqual(result["related_topics"], [])


class TestGeospatialConnector(unittest.TestCase):
    def test_haversine_one_degree(self) -> None:
        self.assertEqual(round(haversine_m(0, 0, 0, 1)), 111195)
        self.assertEqual(haversine_m(10, 10, 10, 10), 0)

    def test_geocode(self) -> None:
        payload = [
            {
                "lat": "48.8584",
                "lon": "2.2945",
                "display_name": "Tour Eiffel",
                "address": {"town": "Paris", "country": "France"},
                "boundingbox": ["48.85", "48.86", "2.29", "2.30"],
            }
        ]
        seen: list = []
        geo = GeospatialConnector(transport=_json_transport(payload, seen=seen))
        result = geo.process_message({"action": "geocode", "params": {"address": "Eiffel Tower"}})
        self.assertEqual(result[0]["lat"], 48.8584)
        self.assertEqual(result[0]["address"]["city"], "Paris")
        self.assertEqual(result[0]["boundingbox"], [48.85, 48.86, 2.29, 2.30])
        self.assertEqual(seen[0].headers["User-Agent"], "AgentPlatform/1.0")

    def test_find_nearby_computes_distance(self) -> None:
        payload = {
            "elements": [
                {"lat": 0.0, "lon": 0.01, "tags": {"name": "Cafe", "amenity": "cafe", "addr:street": "Main St"}},
                {"center": {"lat": 0.0, "lon": 0.02}, "tags": {"amenity": "bank"}},
                {"tags": {"name": "No coords"}},
            ]
        }
        seen: list = []
        geo = GeospatialConnector(transport=_json_transport(payload, seen=seen))
        result = geo.process_message({"action": "find_nearby", "params": {"lat": 0.0, "lon": 0.0, "radius": 5000}})
        places = result["places"]
        self.assertEqual(len(places), 2)
        self.assertEqual(places[0]["name"], "Cafe")
        self.assertEqual(places[0]["type"], "cafe")
        self.assertEqual(places[0]["address"], "Main St")
        self.assertEqual(places[0]["distance"], round(haversine_m(0, 0, 0, 0.01)))
        self.assertEqual(places[1]["name"], "Unnamed")
        self.assertEqual(places[1]["address"], "Address not available")
        self.assertEqual(seen[0].method, "POST")
        self.assertIn("around:5000,0.0,0.0", seen[0].content.decode("utf-8"))


class TestApiTriggerConnector(unittest.TestCase):
    def setUp(self) -> None:
        self.triggers = ApiTriggerConnector()

    def _create(self, **extra) -> dict:
        params = {"name": "hook", "method": "POST", "path": "/hook", **extra}
        return self.triggers.process_message({"action": "create_trigger", "params": params})

    def test_create_and_handle(self) -> None:
        trigger = self._create()
        self.assertTrue(trigger["active"])
        self.assertEqual(trigger["authentication"], "none")
        result = self.triggers.process_message(
            {"action": "handle_request", "params": {"trigger_id": trigger["id"], "method": "post", "body": {"a": 1}}}
        )
        self.assertTrue(result["success"])
        self.assertEqual(result["data"], {"a": 1})
        events = self.triggers.process_message({"action": "get_events", "params": {"trigger_id": trigger["id"]}})
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["method"], "POST")

    def test_method_and_active_checks(self) -> None:
        trigger = self._create()
        with self.assertRaises(ConnectorError) as ctx:
            self.triggers.process_message({"action": "handle_request", "params": {"trigger_id": trigger["id"], "method": "GET"}})
        self.assertEqual(ctx.exception.code, "TRIGGER_METHOD_NOT_ALLOWED")
        self.triggers.process_message({"action": "update_trigger", "params": {"id": trigger["id"], "updates": {"active": False}}})
        with self.assertRaises(ConnectorError) as ctx:
            self.triggers.process_message({"action": "handle_request", "params": {"trigger_id": trigger["id"], "method": "POST"}})
        self.assertEqual(ctx.exception.code, "TRIGGER_INACTIVE")

    def test_api_key_authentication(self) -> None:
        trigger = self._create(authentication="api_key", api_key="s3cret")
        base = {"trigger_id": trigger["id"], "method": "POST"}
        with self.assertRaises(ConnectorError) as ctx:
            self.triggers.process_message({"action": "handle_request", "params": {**base, "headers": {"X-API-Key": "nope"}}})
        self.assertEqual(ctx.exception.code, "TRIGGER_AUTH_FAILED")
        ok = self.triggers.process_message({"action": "handle_request", "params": {**base, "headers": {"X-API-Key": "s3cret"}}})
        self.assertTrue(ok["success"])
        via_query = self.triggers.process_message({"action": "handle_request", "params": {**base, "query": {"api_key": "s3cret"}}})
        self.assertTrue(via_query["success"])

    def test_bearer_authentication(self) -> None:
        trigger = self._create(authentication="bearer")
        with self.assertRaises(ConnectorError):
            self.triggers.process_message({"action": "handle_request", "params": {"trigger_id": trigger["id"], "method": "POST"}})
        ok = self.triggers.process_message(
            {
                "action": "handle_request",
                "params": {"trigger_id": trigger["id"], "method": "POST", "headers": {"Authorization": "Bearer x"}},
            }
        )
        self.assertTrue(ok["success"])

    def test_event_log_is_bounded_newest_first(self) -> None:
        triggers = ApiTriggerConnector({"max_events": 3})
        trigger = triggers.process_message({"action": "create_trigger", "params": {"name": "h", "method": "POST", "path": "/h"}})
        for idx in range(5):
            triggers.process_message(
                {"action": "handle_request", "params": {"trigger_id": trigger["id"], "method": "POST", "body": idx}}
            )
        events = triggers.process_message({"action": "get_events", "params": {}})
        self.assertEqual([e["body"] for e in events], [4, 3, 2])

    def test_delete_and_get(self) -> None:
        trigger = self._create()
        self.assertEqual(self.triggers.process_message({"action": "delete_trigger", "params": {"id": trigger["id"]}}), {"success": True})
        self.assertIsNone(self.triggers.process_message({"action": "get_trigger", "params": {"id": trigger["id"]}}))
        self.assertEqual(self.triggers.process_message({"action": "list_triggers", "params": {}}), [])
        with self.assertRaises(ConnectorError) as ctx:
            self.triggers.process_message({"action": "delete_trigger", "params": {"id": trigger["id"]}})
        self.assertEqual(ctx.exception.code, "TRIGGER_NOT_FOUND")

    def test_endpoints_and_capabilities(self) -> None:
        paths = [(e["method"], e["path"]) for e in self.triggers.endpoints()]
        self.assertIn(("POST", "/triggers"), paths)
        self.assertIn("webhook_creation", self.triggers.capabilities())
        json.dumps(self.triggers.endpoints())


if __name__ == "__main__":
    unittest.main()
