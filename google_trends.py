"""Search-trend analysis cross-checked against hotel supplier inventory."""

from __future__ import annotations

import copy
import hashlib
import logging
import os
import random
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List

import httpx

from module_errors import issue
from result_cache import ResultCache

logger = logging.getLogger("agentkit.trends")

SUPPLIERS = ("booking", "expedia", "hotels")

DEFAULT_CONFIG = {
    "api_key": None,
    "region": "US",
    "language": "en",
    "timeframe": "today 12-m",
    "category": 0,
    "hotel_supplier_apis": {},
    "cache_timeout": 3600,
    "base_url": "https://trends.googleapis.com/trends/api/explore",
}

SEASONAL_KEYWORDS = {
    "winter": ["christmas", "holiday", "ski", "snow", "winter"],
    "summer": ["beach", "vacation", "festival", "outdoor"],
    "spring": ["easter", "cherry blossom", "mild weather"],
    "autumn": ["fall", "thanksgiving", "harvest"],
}

DESTINATIONS = {
    "paris": {"popularity": 0.9, "season": "all", "peak": "summer"},
    "tokyo": {"popularity": 0.8, "season": "spring", "peak": "cherry_blossom"},
    "new york": {"popularity": 0.85, "season": "all", "peak": "winter_holidays"},
    "london": {"popularity": 0.8, "season": "summer", "peak": "summer"},
}

EVENT_KEYWORDS = {
    "olympics": {"impact": 0.95, "duration": "short", "type": "sports"},
    "festival": {"impact": 0.7, "duration": "medium", "type": "cultural"},
    "conference": {"impact": 0.6, "duration": "short", "type": "business"},
    "fashion week": {"impact": 0.8, "duration": "short", "type": "fashion"},
}

CONTEXTUAL_QUERIES = [
    "luxury accommodation",
    "family friendly",
    "business travel",
    "weekend getaway",
    "last minute deals",
]

REQUEST_SCHEMA = {
    "type": "object",
    "required": ["keyword"],
    "properties": {
        "keyword": {"type": "string", "minLength": 1, "examples": ["paris hotels"]},
        "location": {"type": "string", "examples": ["Paris"]},
        "time_range": {"type": "string", "enum": ["1d", "7d", "30d", "90d", "12m"], "default": "30d"},
        "category": {"type": "string"},
        "compare_with": {"type": "array", "items": {"type": "string"}},
    },
}


class TrendsUnavailable(Exception):
    pass


def seasonal_factors(keyword: str) -> dict:
    for season, words in SEASONAL_KEYWORDS.items():
        if any(word in keyword for word in words):
            return {"season": season, "strength": 0.8}
    return {"season": "neutral", "strength": 0.5}


def location_factors(location: str) -> dict:
    return dict(DESTINATIONS.get(location, {"popularity": 0.6, "season": "all", "peak": "summer"}))


def event_factors(keyword: str) -> dict:
    for event, factors in EVENT_KEYWORDS.items():
        if event in keyword:
            return dict(factors)
    return {"impact": 0.5, "duration": "medium", "type": "general"}


def _rng(*parts: str) -> random.Random:
    seed = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return random.Random(int(seed[:16], 16))


def keyword_analysis(keyword: str, location: str | None, year: int) -> dict:
    """Offline trend estimate, stable for a given keyword, location and year."""
    key = keyword.lower()
    place = (location or "global").lower()
    seasonal = seasonal_factors(key)
    geo = location_factors(place)
    event = event_factors(key)
    rng = _rng(key, place, str(year))

    timeline: List[dict] = []
    for month in range(1, 13):
        value = round(50 + rng.random() * 30 * seasonal["strength"])
        if not timeline:
            trend = "stable"
        else:
            trend = "up" if value > timeline[-1]["value"] else "down"
        timeline.append({"month": f"{year}-{month:02d}", "value": value, "trend": trend})

    rising = [f"{key} {year}", f"{key} packages", f"best {key} deals"]
    if seasonal["season"] == "winter":
        rising += [f"{key} christmas", f"{key} new year"]

    return {
        "keyword": keyword,
        "source": "keyword_analysis",
        "timeline": timeline,
        "related_queries": [f"{key} {suffix}" for suffix in ("hotels", "packages", "deals", "booking", "reviews")]
        + list(CONTEXTUAL_QUERIES),
        "rising_terms": rising,
        "geo_data": {
            "primary_region": place,
            "popularity": geo["popularity"],
            "related_regions": [
                {"name": "Similar destination 1", "correlation": 0.7},
                {"name": "Similar destination 2", "correlation": 0.6},
            ],
        },
        "factors": {"seasonal": seasonal, "location": geo, "event": event},
        "confidence": (seasonal["strength"] + geo["popularity"] + event["impact"]) / 3,
    }


def sample_hotels(location: str | None, supplier: str) -> List[dict]:
    place = location or "City"
    return [
        {"name": f"{place} Grand Hotel", "rating": 4.5, "price": 280, "availability": True, "supplier": supplier},
        {"name": f"Modern {place} Resort", "rating": 4.2, "price": 320, "availability": True, "supplier": supplier},
    ]


def supplier_alignment(trends: dict, suppliers: Dict[str, dict]) -> dict:
    terms = trends.get("rising_terms") or []
    names = [hotel.get("name") or "" for data in suppliers.values() for hotel in data.get("hotels") or []]
    matches = [term for term in terms if any(term.lower() in name.lower() for name in names)]
    return {
        "match_rate": len(matches) / len(terms) if terms else 0,
        "missing_from_suppliers": [term for term in terms if term not in matches],
        "exclusive_to_suppliers": [
            name for name in names if not any(term.lower() in name.lower() for term in terms)
        ][:5],
    }


def recommendation(keyword: str, alignment: dict) -> dict:
    rate = alignment["match_rate"]
    reasoning = f"Based on trend analysis, {round(rate * 100)}% alignment with supplier inventory."
    if rate > 0.7:
        reasoning += " Strong correlation between trending searches and available hotels."
    elif rate > 0.4:
        reasoning += " Moderate alignment, consider expanding supplier partnerships."
    else:
        reasoning += " Low alignment detected, recommend updating inventory or supplier network."
    return {"keyword": keyword, "confidence": min(0.9, rate + 0.3), "reasoning": reasoning}


class GoogleTrendsModule:
    module_id = "google-trends"

    def __init__(
        self,
        config: dict | None = None,
        transport: httpx.BaseTransport | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        merged = copy.deepcopy(DEFAULT_CONFIG)
        merged.update(copy.deepcopy(config or {}))
        if not merged.get("api_key"):
            merged["api_key"] = os.getenv("GOOGLE_TRENDS_API_KEY") or None
        self.config = merged
        self.cache = ResultCache(ttl_seconds=merged.get("cache_timeout") or 3600)
        self._transport = transport
        self._today = today or date.today
        self._timeout = float(os.getenv("AGENTKIT_HTTP_TIMEOUT", "10"))

    def get_schema(self) -> dict:
        return copy.deepcopy(REQUEST_SCHEMA)

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout, transport=self._transport)

    def fetch_trends(self, request: dict) -> dict:
        keyword = request["keyword"]
        location = request.get("location")
        time_range = request.get("time_range")
        cache_key = f"trends:{keyword}:{location}:{time_range}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        api_key = self.config.get("api_key")
        if not api_key:
            raise TrendsUnavailable(
                "Google Trends API key is required. Please provide your Google Trends API credentials."
            )
        params = {
            "keyword": keyword,
            "geo": location or self.config["region"],
            "time": time_range or self.config["timeframe"],
            "hl": self.config["language"],
        }
        try:
            with self._client() as client:
                resp = client.get(
                    self.config["base_url"],
                    params=params,
                    headers={"Authorization": f"Bearer {api_key}"},
                )
            if resp.status_code >= 400:
                raise httpx.HTTPStatusError(f"trends_http_{resp.status_code}", request=resp.request, response=resp)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("trends_fetch_failed keyword=%s error=%s", keyword, exc)
            return keyword_analysis(keyword, location, self._today().year)
        if not isinstance(data, dict):
            data = {"raw": data}
        data.setdefault("keyword", keyword)
        data.setdefault("source", "api")
        self.cache.set(cache_key, data)
        return data

    def fetch_supplier(self, supplier: str, request: dict) -> dict:
        supplier_cfg = (self.config.get("hotel_supplier_apis") or {}).get(supplier)
        if not supplier_cfg or not supplier_cfg.get("endpoint"):
            return {"hotels": [], "available": False}
        headers = {"Authorization": f"Bearer {supplier_cfg['api_key']}"} if supplier_cfg.get("api_key") else {}
        try:
            with self._client() as client:
                resp = client.get(
                    f"{supplier_cfg['endpoint'].rstrip('/')}/search",
                    params={"destination": request.get("location") or "", "keyword": request["keyword"]},
                    headers=headers,
                )
            if resp.status_code >= 400:
                raise httpx.HTTPStatusError(f"{supplier} API error: {resp.status_code}", request=resp.request, response=resp)
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("supplier_fetch_failed supplier=%s error=%s", supplier, exc)
            return {"hotels": sample_hotels(request.get("location"), supplier), "available": False, "error": str(exc)}
        hotels = body.get("hotels") if isinstance(body, dict) else None
        return {"hotels": hotels or [], "available": True}

    def trending_hotels(self, keyword: str, suppliers: Dict[str, dict]) -> List[dict]:
        rng = _rng(keyword.lower(), "ranking")
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        flat = [
            dict(hotel, supplier=name)
            for name, data in suppliers.items()
            for hotel in data.get("hotels") or []
        ]
        out = []
        for rank, hotel in enumerate(flat[:10], start=1):
            supplier = hotel["supplier"]
            out.append(
                {
                    "name": hotel.get("name"),
                    "location": hotel.get("location") or "Unknown",
                    "trending_score": round(0.8 + rng.random() * 0.2, 4),
                    "google_ranking": rank,
                    "supplier_availability": {name: name == supplier for name in SUPPLIERS},
                    "price_comparison": {"google": hotel.get("price") or 0, "suppliers": {supplier: hotel.get("price") or 0}},
                    "reviews": {
                        "google_rating": hotel.get("rating") or 4.0,
                        "supplier_ratings": {supplier: hotel.get("rating") or 4.0},
                    },
                    "last_updated": stamp,
                }
            )
        return out

    def _failure(self, keyword: Any, code: str, message: str, path: str | None = None) -> dict:
        return {
            "ok": False,
            "errors": [issue(code, message, path)],
            "success": False,
            "trending_hotels": [],
            "keyword_trends": {},
            "supplier_alignment": {"match_rate": 0, "missing_from_suppliers": [], "exclusive_to_suppliers": []},
            "recommendations": {
                "keyword": keyword,
                "confidence": 0,
                "reasoning": f"Failed to fetch trends data: {message}",
            },
            "comparisons": [],
        }

    def invoke(self, request: dict) -> dict:
        request = request or {}
        keyword = request.get("keyword")
        if not isinstance(keyword, str) or not keyword.strip():
            return self._failure(keyword, "MODULE_INPUT_INVALID", "keyword is required", "keyword")
        try:
            trends = self.fetch_trends(request)
        except TrendsUnavailable as exc:
            return self._failure(keyword, "TRENDS_NOT_CONFIGURED", str(exc), "api_key")

        suppliers = {name: self.fetch_supplier(name, request) for name in SUPPLIERS}
        alignment = supplier_alignment(trends, suppliers)
        year = self._today().year
        comparisons = [
            {"keyword": other, "confidence": keyword_analysis(other, request.get("location"), year)["confidence"]}
            for other in request.get("compare_with") or []
        ]
        logger.info("trends_done keyword=%s source=%s match_rate=%s", keyword, trends.get("source"), alignment["match_rate"])
        return {
            "ok": True,
            "success": True,
            "trending_hotels": self.trending_hotels(keyword, suppliers),
            "keyword_trends": trends,
            "supplier_alignment": alignment,
            "recommendations": recommendation(keyword, alignment),
            "comparisons": comparisons,
        }
