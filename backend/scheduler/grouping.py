"""
Group subscriptions by city so each run looks up the weather once per city.
"""

from collections.abc import Iterable

from models.subscription import Subscription


def normalize_city(city: str) -> str:
    """Case-fold, trim and collapse internal whitespace ("  New  York " -> "new york")."""
    return " ".join(city.split()).casefold()


def city_cache_key(city: str) -> str:
    """Cache key for a city's weather ("New York" -> "weather:city:new_york")."""
    return "weather:city:" + normalize_city(city).replace(" ", "_")


def group_by_city(subscriptions: Iterable[Subscription]) -> dict[str, list[Subscription]]:
    """
    Group subscriptions by normalized city.

    Every input subscription lands in exactly one group; groups and their
    members keep input order.

    Args:
        subscriptions: Eligible subscriptions for one run

    Returns:
        Dictionary of normalized city -> subscriptions for that city
    """
    groups: dict[str, list[Subscription]] = {}
    for subscription in subscriptions:
        groups.setdefault(normalize_city(subscription.city), []).append(subscription)
    return groups
