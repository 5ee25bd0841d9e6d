"""
Weather scheduler (notification producer).

This package handles:
- Loading due subscriptions for a tier
- Grouping them by city so the weather is looked up once per city
- Publishing one notification message per subscriber and channel
- Running the hourly and daily cron jobs
"""

from .grouping import city_cache_key, group_by_city, normalize_city
from .processor import WeatherProcessor

__all__ = [
    "city_cache_key",
    "group_by_city",
    "normalize_city",
    "WeatherProcessor",
]
