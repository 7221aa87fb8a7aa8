"""MCP connectors: thin adapters over external HTTP APIs with an action dispatch."""

from __future__ import annotations

import copy
import hashlib
import logging
import math
import os
import threading
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
import jsonschema

logger = logging.getLogger("agentkit.connectors")

USER_AGENT = "AgentPlatform/1.0"
MAX_TRIGGER_EVENTS = 1000


@dataclass
class ConnectorError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.code}: {self.message}"

    def to_issue(self) -> dict:
        return {"code": self.code, "message": self.message, "path": self.path, "detail": None}


def _get_env() -> str:
    return os.getenv("APP_ENV", os.getenv("ENV", "dev")).strip().lower() or "dev"


def mocks_enabled() -> bool:
    raw = os.getenv("AGENTKIT_CONNECTOR_MOCKS", "").strip().lower()
    if raw:
        return raw in ("1", "true", "yes", "on")
    return _get_env() == "dev"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _seed(*parts: Any) -> int:
    digest = hashlib.sha256("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return int(digest[:8], 16)


def _endpoint(path: str, method: str, description: str, properties: dict, required: List[str] | None = None) -> dict:
    schema: dict = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return {"path": path, "method": method, "description": description, "schema": schema}


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    radius_km = 6371
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return radius_km * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a)) * 1000


class BaseConnector:
    connector_id = ""
    name = ""
    description = ""
    category = ""
    type = ""
    version = "1.0.0"
    env_key: Optional[str] = None
    # action -> JSON Schema for its params
    action_schemas: Dict[str, dict] = {}

    def __init__(
        self,
        config: dict | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = copy.deepcopy(config or {})
        self.api_key: Optional[str] = self.default_api_key()
        self._transport = transport
        self._timeout = float(os.getenv("AGENTKIT_HTTP_TIMEOUT", "10"))

    def default_api_key(self) -> Optional[str]:
        """Key from connector config, else from the env var."""
        api_key = self.config.get("api_key")
        if not api_key and self.env_key:
            api_key = os.getenv(self.env_key, "").strip() or None
        return api_key

    @property
    def status(self) -> str:
        if self.env_key and not self.api_key:
            return "inactive"
        return "active"

    def info(self) -> dict:
        return {
            "id": self.connector_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "type": self.type,
            "version": self.version,
            "status": self.status,
            "requires_key": bool(self.env_key),
            "capabilities": self.capabilities(),
        }

    def validate(self) -> bool:
        return self.status == "active"

    def health_check(self) -> dict:
        try:
            valid = self.validate()
        except (ConnectorError, httpx.HTTPError) as exc:
            return {"status": "unhealthy", "message": str(exc)}
        if valid:
            return {"status": "healthy", "message": "Connector is operational"}
        message = f"{self.env_key} is not configured" if self.env_key else "Validation failed"
        return {"status": "unhealthy", "message": message}

    def endpoints(self) -> List[dict]:
        return []

    def capabilities(self) -> List[str]:
        return []

    def on_connect(self, agent_id: str) -> None:
        logger.info("connector_connected connector=%s agent=%s", self.connector_id, agent_id)

    def on_disconnect(self, agent_id: str) -> None:
        logger.info("connector_disconnected connector=%s agent=%s", self.connector_id, agent_id)

    def _check_params(self, action: str, params: dict) -> None:
        schema = self.action_schemas.get(action)
        if not schema:
            return
        validator = jsonschema.Draft7Validator(schema)
        for err in sorted(validator.iter_errors(params), key=lambda e: [str(p) for p in e.path]):
            path = ".".join(["params", *[str(p) for p in err.path]])
            raise ConnectorError("CONNECTOR_PARAMS_INVALID", err.message, path)

    def process_message(self, message: dict) -> Any:
        if not isinstance(message, dict):
            raise ConnectorError("CONNECTOR_PARAMS_INVALID", "message must be an object")
        action = message.get("action")
        params = message.get("params") or {}
        if not isinstance(params, dict):
            raise ConnectorError("CONNECTOR_PARAMS_INVALID", "params must be an object", "params")
        handler = getattr(self, f"action_{action}", None) if isinstance(action, str) else None
        if handler is None:
            raise ConnectorError("CONNECTOR_UNKNOWN_ACTION", f"Unknown action: {action}", "action")
        self._check_params(action, params)
        return handler(params)

    def _mock_or_fail(self, action: str, params: dict) -> Any:
        if not mocks_enabled():
            raise ConnectorError(
                "CONNECTOR_NOT_CONFIGURED",
                f"{self.env_key} is required for the {self.name} connector",
            )
        logger.info("connector_mocked connector=%s action=%s", self.connector_id, action)
        payload = self.mock_response(action, params)
        payload["mocked"] = True
        return payload

    def mock_response(self, action: str, params: dict) -> dict:
        return {}

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout, transport=self._transport)

    def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            with self._client() as client:
                res = client.request(method, url, **kwargs)
            if res.status_code >= 400:
                raise ConnectorError(
                    "CONNECTOR_UPSTREAM_FAILED",
                    f"{self.name} request failed: HTTP {res.status_code}",
                )
            return res.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("connector_upstream_failed connector=%s url=%s error=%s", self.connector_id, url, exc)
            raise ConnectorError("CONNECTOR_UPSTREAM_FAILED", f"{self.name} request failed: {exc}") from exc


_LOCATION_PROPS = {
    "location": {"type": "string", "description": "City name or address"},
    "lat": {"type": "number", "description": "Latitude"},
    "lon": {"type": "number", "description": "Longitude"},
    "units": {"type": "string", "enum": ["metric", "imperial", "kelvin"], "default": "metric"},
}


def _bound(pick, current, value):
    if current is None:
        return value
    if value is None:
        return current
    return pick(current, value)


def _daily_forecast(items: List[dict]) -> Dict[str, dict]:
    """Group 3-hour forecast slots by UTC day."""
    daily: Dict[str, dict] = {}
    for item in items:
        day = datetime.fromtimestamp(item["dt"], tz=timezone.utc).date().isoformat()
        main = item.get("main") or {}
        existing = daily.get(day)
        if existing is None:
            weather = (item.get("weather") or [{}])[0]
            daily[day] = {
                "date": day,
                "temperature_min": main.get("temp_min"),
                "temperature_max": main.get("temp_max"),
                "weather_code": weather.get("id"),
                "weather_description": weather.get("description"),
                "precipitation_probability": (item.get("pop") or 0) * 100,
                "wind_speed": (item.get("wind") or {}).get("speed") or 0,
            }
            continue
        existing["temperature_min"] = _bound(min, existing["temperature_min"], main.get("temp_min"))
        existing["temperature_max"] = _bound(max, existing["temperature_max"], main.get("temp_max"))
    return daily


class WeatherConnector(BaseConnector):
    connector_id = "weather"
    name = "Weather API"
    description = "Real-time weather data and forecasts via OpenWeatherMap"
    category = "environment"
    type = "weather"
    env_key = "OPENWEATHERMAP_API_KEY"
    base_url = "https://api.openweathermap.org/data/2.5"
    action_schemas = {
        "current_weather": {"type": "object", "properties": _LOCATION_PROPS},
        "forecast": {
            "type": "object",
            "properties": {**_LOCATION_PROPS, "days": {"type": "integer", "minimum": 1, "maximum": 5}},
        },
    }

    def _query(self, params: dict) -> dict:
        query = {"appid": self.api_key, "units": params.get("units") or "metric"}
        if params.get("lat") is not None and params.get("lon") is not None:
            query.update({"lat": params["lat"], "lon": params["lon"]})
        elif params.get("location"):
            query["q"] = params["location"]
        else:
            raise ConnectorError(
                "CONNECTOR_PARAMS_INVALID",
                "Either location or lat/lon coordinates are required",
                "params.location",
            )
        return query

    def action_current_weather(self, params: dict) -> dict:
        query = self._query(params)
        if not self.api_key:
            return self._mock_or_fail("current_weather", params)
        data = self._request("GET", f"{self.base_url}/weather", params=query)
        weather = (data.get("weather") or [{}])[0]
        wind = data.get("wind") or {}
        main = data.get("main") or {}
        coord = data.get("coord") or {}
        return {
            "current": {
                "temperature": main.get("temp"),
                "feels_like": main.get("feels_like"),
                "humidity": main.get("humidity"),
                "pressure": main.get("pressure"),
                "visibility": data.get("visibility"),
                "wind_speed": wind.get("speed") or 0,
                "wind_direction": wind.get("deg") or 0,
                "weather_code": weather.get("id"),
                "weather_description": weather.get("description"),
                "icon": weather.get("icon"),
            },
            "location": {
                "name": data.get("name"),
                "country": (data.get("sys") or {}).get("country"),
                "lat": coord.get("lat"),
                "lon": coord.get("lon"),
                "timezone": str(data.get("timezone", "")),
            },
        }

    def action_forecast(self, params: dict) -> dict:
        query = self._query(params)
        days = params.get("days") or 5
        if not self.api_key:
            return self._mock_or_fail("forecast", params)
        data = self._request("GET", f"{self.base_url}/forecast", params=query)
        try:
            daily = _daily_forecast(data.get("list") or [])
        except (KeyError, TypeError, ValueError, OverflowError, OSError, AttributeError) as exc:
            logger.warning("connector_bad_payload connector=%s action=forecast error=%s", self.connector_id, exc)
            raise ConnectorError("CONNECTOR_UPSTREAM_FAILED", f"Malformed forecast payload: {exc}") from exc
        city = data.get("city") or {}
        coord = city.get("coord") or {}
        return {
            "forecast": list(daily.values())[:days],
            "location": {
                "name": city.get("name"),
                "country": city.get("country"),
                "lat": coord.get("lat"),
                "lon": coord.get("lon"),
                "timezone": str(city.get("timezone", "")),
            },
        }

    def action_weather_alerts(self, params: dict) -> dict:
        return {"alerts": [], "message": "Weather alerts require premium API access"}

    def mock_response(self, action: str, params: dict) -> dict:
        name = params.get("location") or f"{params.get('lat')},{params.get('lon')}"
        seed = _seed("weather", name)
        location = {"name": name, "country": None, "lat": params.get("lat"), "lon": params.get("lon"), "timezone": "0"}
        if action == "forecast":
            start = date.today()
            forecast = []
            for offset in range(params.get("days") or 5):
                low = 10 + (seed >> offset) % 10
                forecast.append({
                    "date": (start + timedelta(days=offset)).isoformat(),
                    "temperature_min": float(low),
                    "temperature_max": float(low + 8),
                    "weather_code": 800,
                    "weather_description": "clear sky",
                    "precipitation_probability": float((seed >> (offset + 3)) % 100),
                    "wind_speed": 3.2,
                })
            return {"forecast": forecast, "location": location}
        return {
            "current": {
                "temperature": 15 + seed % 15 + 0.5,
                "feels_like": 15 + seed % 15,
                "humidity": 40 + seed % 50,
                "pressure": 1013,
                "visibility": 10000,
                "wind_speed": 3.2,
                "wind_direction": seed % 360,
                "weather_code": 800,
                "weather_description": "clear sky",
                "icon": "01d",
            },
            "location": location,
        }

    def endpoints(self) -> List[dict]:
        return [
            _endpoint("/current", "GET", "Get current weather conditions", _LOCATION_PROPS),
            _endpoint(
                "/forecast",
                "GET",
                "Get weather forecast",
                {**_LOCATION_PROPS, "days": {"type": "number", "default": 5, "maximum": 5}},
            ),
        ]

    def capabilities(self) -> List[str]:
        return [
            "current_weather",
            "weather_forecast",
            "temperature_monitoring",
            "precipitation_data",
            "wind_data",
            "humidity_tracking",
        ]


SERPAPI_URL = "https://serpapi.com/search"

_TRENDS_PROPS = {
    "keyword": {"type": "string", "minLength": 1, "description": "Search keyword"},
    "geo": {"type": "string", "default": "US"},
    "time": {"type": "string", "default": "today 12-m"},
    "category": {"type": "integer", "default": 0},
}


class GoogleTrendsConnector(BaseConnector):
    connector_id = "google-trends"
    name = "Google Trends"
    description = "Access Google Trends data for keyword research and market analysis"
    category = "analytics"
    type = "trends"
    env_key = "SERPAPI_API_KEY"
    action_schemas = {
        "get_trends": {"type": "object", "required": ["keyword"], "properties": _TRENDS_PROPS},
        "get_trending_searches": {"type": "object", "properties": {"geo": {"type": "string"}}},
        "compare_keywords": {
            "type": "object",
            "required": ["keywords"],
            "properties": {
                "keywords": {"type": "array", "minItems": 1, "items": {"type": "string", "minLength": 1}},
                "geo": {"type": "string"},
                "time": {"type": "string"},
            },
        },
    }

    def _trends(self, params: dict) -> dict:
        query = {
            "api_key": self.api_key,
            "engine": "google_trends",
            "q": params["keyword"],
            "geo": params.get("geo") or "US",
            "time": params.get("time") or "today 12-m",
            "category": str(params.get("category") or 0),
            "output": "json",
        }
        data = self._request("GET", SERPAPI_URL, params=query)
        return {
            "keyword": params["keyword"],
            "interest_over_time": (data.get("interest_over_time") or {}).get("timeline_data") or [],
            "interest_by_region": data.get("interest_by_region") or [],
            "related_topics": (data.get("related_topics") or {}).get("rising") or [],
            "related_queries": (data.get("related_queries") or {}).get("rising") or [],
        }

    def action_get_trends(self, params: dict) -> dict:
        if not self.api_key:
            return self._mock_or_fail("get_trends", params)
        return self._trends(params)

    def action_get_trending_searches(self, params: dict) -> dict:
        if not self.api_key:
            return self._mock_or_fail("get_trending_searches", params)
        query = {
            "api_key": self.api_key,
            "engine": "google_trends_trending_now",
            "geo": params.get("geo") or "US",
            "output": "json",
        }
        data = self._request("GET", SERPAPI_URL, params=query)
        return {"trending_searches": data.get("trending_searches") or []}

    def action_compare_keywords(self, params: dict) -> dict:
        if not self.api_key:
            return self._mock_or_fail("compare_keywords", params)
        return {"comparison": [self._trends({**params, "keyword": kw}) for kw in params["keywords"]]}

    def _mock_trends(self, keyword: str) -> dict:
        seed = _seed("trends", keyword)
        timeline = [
            {"date": f"2024-{month:02d}-01", "value": 40 + (seed >> month) % 60}
            for month in range(1, 13)
        ]
        return {
            "keyword": keyword,
            "interest_over_time": timeline,
            "interest_by_region": [],
            "related_topics": [],
            "related_queries": [{"query": f"{keyword} deals", "value": 100, "extracted_value": 100}],
        }

    def mock_response(self, action: str, params: dict) -> dict:
        if action == "compare_keywords":
            return {"comparison": [self._mock_trends(kw) for kw in params["keywords"]]}
        if action == "get_trending_searches":
            geo = params.get("geo") or "US"
            return {"trending_searches": [{"query": f"trending in {geo}", "formattedTraffic": "100K+"}]}
        return self._mock_trends(params["keyword"])

    def endpoints(self) -> List[dict]:
        return [
            _endpoint("/trends", "POST", "Get Google Trends data for a keyword", _TRENDS_PROPS, ["keyword"]),
            _endpoint("/trending", "GET", "Get current trending searches", {"geo": {"type": "string", "default": "US"}}),
            _endpoint(
                "/compare",
                "POST",
                "Compare multiple keywords trends",
                self.action_schemas["compare_keywords"]["properties"],
                ["keywords"],
            ),
        ]

    def capabilities(self) -> List[str]:
        return [
            "trend_analysis",
            "keyword_research",
            "market_analysis",
            "trending_topics",
            "geographic_trends",
            "temporal_analysis",
        ]


_SEARCH_PROPS = {
    "q": {"type": "string", "minLength": 1, "description": "Search query"},
    "engine": {"type": "string", "default": "google"},
    "location": {"type": "string"},
    "hl": {"type": "string", "default": "en"},
    "gl": {"type": "string", "default": "us"},
    "num": {"type": "integer", "minimum": 1, "default": 10},
    "start": {"type": "integer", "minimum": 0, "default": 0},
}

_TRAVEL_PROPS = {
    **_SEARCH_PROPS,
    "checkin_date": {"type": "string"},
    "checkout_date": {"type": "string"},
    "adults": {"type": "integer", "minimum": 1},
    "children": {"type": "integer", "minimum": 0},
    "travel_class": {"type": "string"},
    "departure_id": {"type": "string"},
    "arrival_id": {"type": "string"},
}

_QUERY_REQUIRED = {"type": "object", "required": ["q"], "properties": _TRAVEL_PROPS}

# action -> engine for the plain web search variants
SEARCH_ENGINES = {
    "search": None,
    "search_news": "google_news",
    "search_images": "google_images",
    "search_videos": "google_videos",
    "search_trends": "google_trends_autocomplete",
}


class SerpAPIConnector(BaseConnector):
    connector_id = "serpapi"
    name = "SerpAPI Search"
    description = "Search Google and other search engines via SerpAPI with travel-focused categories"
    category = "search"
    type = "search"
    env_key = "SERPAPI_API_KEY"
    action_schemas = {
        "search": _QUERY_REQUIRED,
        "search_news": _QUERY_REQUIRED,
        "search_images": _QUERY_REQUIRED,
        "search_videos": _QUERY_REQUIRED,
        "search_trends": _QUERY_REQUIRED,
        "search_hotels": _QUERY_REQUIRED,
        "search_events": _QUERY_REQUIRED,
        "search_local": _QUERY_REQUIRED,
        "search_destinations": _QUERY_REQUIRED,
        "search_flights": {
            "type": "object",
            "required": ["departure_id", "arrival_id"],
            "properties": _TRAVEL_PROPS,
        },
    }

    def _base_query(self, engine: str, params: dict) -> dict:
        return {
            "api_key": self.api_key,
            "engine": engine,
            "gl": params.get("gl") or "us",
            "hl": params.get("hl") or "en",
            "output": "json",
        }

    def _web_search(self, action: str, params: dict) -> dict:
        if not self.api_key:
            return self._mock_or_fail(action, params)
        engine = SEARCH_ENGINES[action] or params.get("engine") or "google"
        query = self._base_query(engine, params)
        query.update({
            "q": params["q"],
            "location": params.get("location") or "",
            "num": str(params.get("num") or 10),
            "start": str(params.get("start") or 0),
        })
        data = self._request("GET", SERPAPI_URL, params=query)
        return {
            "organic_results": data.get("organic_results") or [],
            "answer_box": data.get("answer_box"),
            "knowledge_graph": data.get("knowledge_graph"),
            "related_questions": data.get("related_questions") or [],
        }

    def _vertical(self, action: str, engine: str, params: dict, extra: dict) -> dict:
        if not self.api_key:
            return self._mock_or_fail(action, params)
        query = self._base_query(engine, params)
        query.update(extra)
        return self._request("GET", SERPAPI_URL, params=query)

    def action_search(self, params: dict) -> dict:
        return self._web_search("search", params)

    def action_search_news(self, params: dict) -> dict:
        return self._web_search("search_news", params)

    def action_search_images(self, params: dict) -> dict:
        return self._web_search("search_images", params)

    def action_search_videos(self, params: dict) -> dict:
        return self._web_search("search_videos", params)

    def action_search_trends(self, params: dict) -> dict:
        return self._web_search("search_trends", params)

    def action_search_hotels(self, params: dict) -> dict:
        return self._vertical("search_hotels", "google_hotels", params, {
            "q": params["q"],
            "location": params.get("location") or "",
            "check_in_date": params.get("checkin_date") or "",
            "check_out_date": params.get("checkout_date") or "",
            "adults": str(params.get("adults") or 1),
            "children": str(params.get("children") or 0),
        })

    def action_search_flights(self, params: dict) -> dict:
        return self._vertical("search_flights", "google_flights", params, {
            "departure_id": params["departure_id"],
            "arrival_id": params["arrival_id"],
            "outbound_date": params.get("checkin_date") or "",
            "return_date": params.get("checkout_date") or "",
            "adults": str(params.get("adults") or 1),
            "children": str(params.get("children") or 0),
            "travel_class": params.get("travel_class") or "Economy",
        })

    def action_search_events(self, params: dict) -> dict:
        return self._vertical("search_events", "google_events", params, {
            "q": params["q"],
            "location": params.get("location") or "",
        })

    def action_search_local(self, params: dict) -> dict:
        return self._vertical("search_local", "google_local", params, {
            "q": params["q"],
            "location": params.get("location") or "",
        })

    def action_search_destinations(self, params: dict) -> dict:
        return self.action_search_local(params)

    def mock_response(self, action: str, params: dict) -> dict:
        q = params.get("q") or f"{params.get('departure_id')} to {params.get('arrival_id')}"
        engine = SEARCH_ENGINES.get(action) or params.get("engine") or "google"
        return {
            "search_metadata": {"status": "Success", "query": q, "engine": engine},
            "organic_results": [
                {
                    "position": 1,
                    "title": f"Result for: {q}",
                    "link": "https://example.com",
                    "snippet": "Sample search result",
                    "displayed_link": "example.com",
                }
            ],
            "related_questions": [],
        }

    def endpoints(self) -> List[dict]:
        return [
            _endpoint("/search", "POST", "General web search via SerpAPI", _SEARCH_PROPS, ["q"]),
            _endpoint("/search/hotels", "POST", "Search hotels with booking details", _TRAVEL_PROPS, ["q"]),
            _endpoint(
                "/search/flights",
                "POST",
                "Search flights with travel details",
                _TRAVEL_PROPS,
                ["departure_id", "arrival_id"],
            ),
            _endpoint("/search/events", "POST", "Search events, festivals and activities", _TRAVEL_PROPS, ["q"]),
            _endpoint(
                "/search/destinations",
                "POST",
                "Search travel destinations and local attractions",
                _SEARCH_PROPS,
                ["q"],
            ),
            _endpoint("/search/news", "POST", "Search travel news and updates", _SEARCH_PROPS, ["q"]),
            _endpoint("/search/images", "POST", "Search destination and travel images", _SEARCH_PROPS, ["q"]),
        ]

    def capabilities(self) -> List[str]:
        return [
            "web_search",
            "news_search",
            "image_search",
            "video_search",
            "hotel_search",
            "flight_search",
            "event_search",
            "local_search",
        ]


_COORD_PROPS = {"lat": {"type": "number"}, "lon": {"type": "number"}}


class GeospatialConnector(BaseConnector):
    connector_id = "geospatial"
    name = "Geospatial Services"
    description = "Location services including geocoding, reverse geocoding and places search"
    category = "location"
    type = "geospatial"
    nominatim_url = "https://nominatim.openstreetmap.org"
    overpass_url = "https://overpass-api.de/api/interpreter"
    max_places = 20
    action_schemas = {
        "geocode": {
            "type": "object",
            "required": ["address"],
            "properties": {"address": {"type": "string", "minLength": 1}},
        },
        "reverse_geocode": {"type": "object", "required": ["lat", "lon"], "properties": _COORD_PROPS},
        "find_nearby": {
            "type": "object",
            "required": ["lat", "lon"],
            "properties": {
                **_COORD_PROPS,
                "type": {"type": "string", "pattern": "^[a-z_:]+$", "default": "amenity"},
                "radius": {"type": "number", "exclusiveMinimum": 0, "default": 1000},
            },
        },
    }

    @staticmethod
    def _city(address: dict) -> Optional[str]:
        return address.get("city") or address.get("town") or address.get("village")

    def action_geocode(self, params: dict) -> List[dict]:
        data = self._request(
            "GET",
            f"{self.nominatim_url}/search",
            params={"q": params["address"], "format": "json", "addressdetails": 1, "limit": 5},
            headers={"User-Agent": USER_AGENT},
        )
        results = []
        for item in data or []:
            address = item.get("address") or {}
            results.append({
                "lat": float(item["lat"]),
                "lon": float(item["lon"]),
                "display_name": item.get("display_name"),
                "address": {
                    "road": address.get("road"),
                    "city": self._city(address),
                    "state": address.get("state"),
                    "country": address.get("country"),
                    "postcode": address.get("postcode"),
                },
                "boundingbox": [float(c) for c in item.get("boundingbox") or []],
            })
        return results

    def action_reverse_geocode(self, params: dict) -> dict:
        data = self._request(
            "GET",
            f"{self.nominatim_url}/reverse",
            params={"lat": params["lat"], "lon": params["lon"], "format": "json", "addressdetails": 1},
            headers={"User-Agent": USER_AGENT},
        )
        address = data.get("address") or {}
        return {
            "lat": float(data["lat"]),
            "lon": float(data["lon"]),
            "display_name": data.get("display_name"),
            "address": {
                "house_number": address.get("house_number"),
                "road": address.get("road"),
                "neighbourhood": address.get("neighbourhood"),
                "city": self._city(address),
                "state": address.get("state"),
                "country": address.get("country"),
                "postcode": address.get("postcode"),
            },
        }

    @staticmethod
    def _format_address(tags: dict) -> str:
        parts = [tags[key] for key in ("addr:housenumber", "addr:street", "addr:city") if tags.get(key)]
        return ", ".join(parts) or "Address not available"

    def action_find_nearby(self, params: dict) -> dict:
        lat, lon = params["lat"], params["lon"]
        kind = params.get("type") or "amenity"
        radius = params.get("radius") or 1000
        around = f"(around:{radius},{lat},{lon})"
        query = (
            "[out:json][timeout:25];("
            f'node["{kind}"]{around};way["{kind}"]{around};relation["{kind}"]{around};'
            ");out center meta;"
        )
        data = self._request("POST", self.overpass_url, content=query, headers={"Content-Type": "text/plain"})
        places = []
        for element in data.get("elements") or []:
            center = element.get("center") or {}
            el_lat = element.get("lat", center.get("lat"))
            el_lon = element.get("lon", center.get("lon"))
            if el_lat is None or el_lon is None:
                continue
            tags = element.get("tags") or {}
            places.append({
                "name": tags.get("name") or "Unnamed",
                "type": tags.get(kind) or kind,
                "lat": el_lat,
                "lon": el_lon,
                "distance": round(haversine_m(lat, lon, el_lat, el_lon)),
                "address": self._format_address(tags),
            })
        return {"places": places[: self.max_places]}

    def endpoints(self) -> List[dict]:
        return [
            _endpoint("/geocode", "POST", "Convert address to coordinates", {"address": {"type": "string"}}, ["address"]),
            _endpoint("/reverse-geocode", "POST", "Convert coordinates to address", _COORD_PROPS, ["lat", "lon"]),
            _endpoint(
                "/nearby",
                "POST",
                "Find nearby places",
                self.action_schemas["find_nearby"]["properties"],
                ["lat", "lon"],
            ),
        ]

    def capabilities(self) -> List[str]:
        return ["geocoding", "reverse_geocoding", "places_search", "distance_calculation", "location_services"]


_TRIGGER_PROPS = {
    "name": {"type": "string", "minLength": 1},
    "description": {"type": "string"},
    "method": {"type": "string", "enum": ["GET", "POST", "PUT", "DELETE"]},
    "path": {"type": "string"},
    "schema": {"type": "object"},
    "authentication": {"type": "string", "enum": ["none", "api_key", "bearer"]},
    "api_key": {"type": "string"},
    "active": {"type": "boolean"},
}

_ID_REQUIRED = {"type": "object", "required": ["id"], "properties": {"id": {"type": "string"}}}


class ApiTriggerConnector(BaseConnector):
    connector_id = "api-trigger"
    name = "API Trigger"
    description = "Auto-generated API endpoints for webhook triggers and external integrations"
    category = "integration"
    type = "trigger"
    action_schemas = {
        "create_trigger": {
            "type": "object",
            "required": ["name", "method", "path"],
            "properties": _TRIGGER_PROPS,
        },
        "update_trigger": {
            "type": "object",
            "required": ["id", "updates"],
            "properties": {"id": {"type": "string"}, "updates": {"type": "object", "properties": _TRIGGER_PROPS}},
        },
        "delete_trigger": _ID_REQUIRED,
        "get_trigger": _ID_REQUIRED,
        "get_events": {
            "type": "object",
            "properties": {"trigger_id": {"type": "string"}, "limit": {"type": "integer", "minimum": 1}},
        },
        "handle_request": {
            "type": "object",
            "required": ["trigger_id", "method"],
            "properties": {
                "trigger_id": {"type": "string"},
                "method": {"type": "string"},
                "headers": {"type": "object"},
                "query": {"type": "object"},
                "ip": {"type": "string"},
            },
        },
    }

    def __init__(self, config: dict | None = None, transport: httpx.BaseTransport | None = None) -> None:
        super().__init__(config, transport)
        self._triggers: Dict[str, dict] = {}
        self._events: List[dict] = []
        self._lock = threading.Lock()
        self.max_events = int(self.config.get("max_events") or MAX_TRIGGER_EVENTS)

    def _get(self, trigger_id: str) -> dict:
        trigger = self._triggers.get(trigger_id)
        if trigger is None:
            raise ConnectorError("TRIGGER_NOT_FOUND", f"Trigger {trigger_id} not found", "params.id")
        return trigger

    def action_create_trigger(self, params: dict) -> dict:
        trigger = {
            "description": "",
            "authentication": "none",
            "active": True,
            **copy.deepcopy(params),
            "id": uuid.uuid4().hex,
            "created_at": _now(),
        }
        with self._lock:
            self._triggers[trigger["id"]] = trigger
        logger.info("trigger_created id=%s method=%s path=%s", trigger["id"], trigger["method"], trigger["path"])
        return copy.deepcopy(trigger)

    def action_update_trigger(self, params: dict) -> dict:
        with self._lock:
            trigger = self._get(params["id"])
            updates = {k: v for k, v in params["updates"].items() if k not in ("id", "created_at")}
            trigger.update(copy.deepcopy(updates))
            return copy.deepcopy(trigger)

    def action_delete_trigger(self, params: dict) -> dict:
        with self._lock:
            self._get(params["id"])
            del self._triggers[params["id"]]
        return {"success": True}

    def action_get_trigger(self, params: dict) -> Optional[dict]:
        trigger = self._triggers.get(params["id"])
        return copy.deepcopy(trigger) if trigger else None

    def action_list_triggers(self, params: dict) -> List[dict]:
        return [copy.deepcopy(t) for t in self._triggers.values()]

    def action_get_events(self, params: dict) -> List[dict]:
        events = self._events
        trigger_id = params.get("trigger_id")
        if trigger_id:
            events = [e for e in events if e["trigger_id"] == trigger_id]
        return copy.deepcopy(events[: params.get("limit") or 100])

    def _authenticate(self, trigger: dict, headers: dict, query: dict) -> None:
        scheme = trigger.get("authentication") or "none"
        if scheme == "api_key":
            supplied = headers.get("x-api-key") or query.get("api_key")
            if not supplied or supplied != trigger.get("api_key"):
                raise ConnectorError("TRIGGER_AUTH_FAILED", "Invalid API key", "params.headers.x-api-key")
        elif scheme == "bearer":
            if not str(headers.get("authorization") or "").startswith("Bearer "):
                raise ConnectorError("TRIGGER_AUTH_FAILED", "Bearer token required", "params.headers.authorization")

    def action_handle_request(self, params: dict) -> dict:
        trigger_id = params["trigger_id"]
        trigger = self._triggers.get(trigger_id)
        if trigger is None:
            raise ConnectorError("TRIGGER_NOT_FOUND", f"Trigger {trigger_id} not found", "params.trigger_id")
        if not trigger.get("active"):
            raise ConnectorError("TRIGGER_INACTIVE", f"Trigger {trigger_id} is inactive", "params.trigger_id")
        method = params["method"].upper()
        if trigger.get("method") != method:
            raise ConnectorError(
                "TRIGGER_METHOD_NOT_ALLOWED",
                f"Method {method} not allowed for trigger {trigger_id}",
                "params.method",
            )
        headers = {str(k).lower(): v for k, v in (params.get("headers") or {}).items()}
        query = params.get("query") or {}
        self._authenticate(trigger, headers, query)

        event = {
            "trigger_id": trigger_id,
            "timestamp": _now(),
            "method": method,
            "headers": headers,
            "body": copy.deepcopy(params.get("body")),
            "query": copy.deepcopy(query),
            "ip": params.get("ip"),
        }
        with self._lock:
            self._events.insert(0, event)
            del self._events[self.max_events:]
        return {"success": True, "trigger_id": trigger_id, "timestamp": event["timestamp"], "data": event["body"]}

    def endpoints(self) -> List[dict]:
        return [
            _endpoint("/triggers", "GET", "List all triggers", {}),
            _endpoint("/triggers", "POST", "Create a new trigger", _TRIGGER_PROPS, ["name", "method", "path"]),
            _endpoint("/triggers/:id", "PUT", "Update a trigger", _TRIGGER_PROPS),
            _endpoint("/triggers/:id", "DELETE", "Delete a trigger", {}),
            _endpoint("/triggers/:id/events", "GET", "Get trigger events", {"limit": {"type": "number", "default": 100}}),
        ]

    def capabilities(self) -> List[str]:
        return [
            "webhook_creation",
            "api_endpoint_generation",
            "request_logging",
            "authentication",
            "event_tracking",
            "dynamic_routing",
        ]


BUILTIN_CONNECTORS: List[Callable[..., BaseConnector]] = [
    SerpAPIConnector,
    GoogleTrendsConnector,
    WeatherConnector,
    GeospatialConnector,
    ApiTriggerConnector,
]
