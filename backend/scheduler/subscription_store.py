"""
Read side of the subscriptions table.

Subscriptions are created and confirmed elsewhere; the scheduler only reads
the rows that are due for a tier.
"""

import asyncio
from typing import Any

from pydantic import ValidationError
from supabase import Client

from models.subscription import Subscription
from models.types import Frequency
from shared.logger import setup_logger

logger = setup_logger("SUBSCRIPTIONS")

SUBSCRIPTIONS_TABLE = "subscriptions"
SUBSCRIPTION_COLUMNS = "id, email, telegram_id, whatsapp_phone, city, frequency, active, confirmed"


class SubscriptionStore:
    def __init__(self, supabase: Client):
        self._supabase = supabase

    async def get_subscriptions_to_process(self, frequency: Frequency) -> list[Subscription]:
        """
        Get active, confirmed subscriptions for a tier.

        The Supabase client is synchronous, so the query runs in a worker thread.

        Args:
            frequency: Tier being processed

        Returns:
            Eligible subscriptions; malformed rows are skipped with a warning
        """
        rows = await asyncio.to_thread(self._fetch_rows, frequency)

        subscriptions = []
        for row in rows:
            try:
                subscription = Subscription.model_validate(row)
            except ValidationError as e:
                logger.warning("Skipping malformed subscription %s: %s", row.get("id"), e)
                continue

            if subscription.is_eligible and subscription.frequency == frequency:
                subscriptions.append(subscription)

        return subscriptions

    def _fetch_rows(self, frequency: Frequency) -> list[dict[str, Any]]:
        response = (
            self._supabase.table(SUBSCRIPTIONS_TABLE)
            .select(SUBSCRIPTION_COLUMNS)
            .eq("active", True)
            .eq("confirmed", True)
            .eq("frequency", frequency.value)
            .execute()
        )
        return response.data or []
