"""
HTTP client for the weather fetcher service.

The service answers GET /weather/{city} with
{"success": bool, "data": {city, temperature, description, timestamp}, "message": str}
and GET /health with 200 while it is alive. Lookups never raise: any failure
is logged and reported as None so the caller can skip the city.
"""

from urllib.parse import quote

import httpx
from cachetools import TTLCache
from pydantic import ValidationError

from models.notification import WeatherSnapshot
from scheduler.grouping import city_cache_key
from shared.logger import setup_logger

logger = setup_logger("WEATHER")


class WeatherFetcherClient:
    def __init__(
        self,
        base_url: str,
        request_timeout: float = 5.0,
        health_timeout: float = 3.0,
        cache_ttl_seconds: int = 0,
        client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._request_timeout = request_timeout
        self._health_timeout = health_timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"Content-Type": "application/json"}
        )
        # Cache-aside for repeated lookups across runs; disabled when TTL is 0
        self._cache: TTLCache | None = (
            TTLCache(maxsize=1024, ttl=cache_ttl_seconds) if cache_ttl_seconds > 0 else None
        )

    async def check_health(self) -> bool:
        """Cheap liveness probe, used before every scheduler run."""
        try:
            response = await self._client.get(
                f"{self._base_url}/health", timeout=self._health_timeout
            )
        except httpx.HTTPError as e:
            logger.error("Weather Fetcher service is not available: %s", e)
            return False

        if response.status_code != 200:
            logger.error("Weather Fetcher health check returned %s", response.status_code)
            return False
        return True

    async def get_weather(self, city: str) -> WeatherSnapshot | None:
        """
        Get current weather for a city.

        Args:
            city: City name as it should be passed to the service

        Returns:
            WeatherSnapshot, or None if the lookup failed for any reason
        """
        key = city_cache_key(city)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        try:
            response = await self._client.get(
                f"{self._base_url}/weather/{quote(city, safe='')}",
                timeout=self._request_timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("HTTP error fetching weather for %s: %s", city, e)
            return None
        except ValueError as e:
            logger.error("Invalid JSON from weather service for %s: %s", city, e)
            return None

        if not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else body
            logger.error("Weather fetch failed for %s: %s", city, message)
            return None

        try:
            snapshot = WeatherSnapshot.model_validate(body.get("data") or {})
        except ValidationError as e:
            logger.error("Malformed weather data for %s: %s", city, e)
            return None

        if self._cache is not None:
            self._cache[key] = snapshot
        return snapshot

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
