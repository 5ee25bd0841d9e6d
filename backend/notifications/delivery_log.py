import asyncio
from typing import Any

from models.delivery import DeliveryLogEntry

DELIVERY_LOG_TABLE = "notification_delivery_logs"


class DeliveryLogRepository:
    """Append-only store of send attempts (one row per attempt)."""

    def __init__(self, supabase: Any):
        self._supabase = supabase

    async def save(self, entry: DeliveryLogEntry) -> None:
        """
        Insert one delivery log row.

        Raises:
            Exception: Whatever the Supabase client raises; callers decide
                whether a lost audit row is fatal.
        """
        row = entry.model_dump(mode="json", exclude_none=True)
        await asyncio.to_thread(self._insert, row)

    def _insert(self, row: dict[str, Any]) -> None:
        self._supabase.table(DELIVERY_LOG_TABLE).insert(row).execute()
