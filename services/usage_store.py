"""
Supabase persistence for API key usage logs.

Handles:
- Bulk inserts into api_key_usage_logs
- Per-key statistics via the get_api_key_usage_stats RPC
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from supabase import Client

from config import get_supabase, USAGE_LOGS_TABLE, USAGE_STATS_RPC
from models.usage import UsageStats


class SupabaseUsageStore:
    """
    Thin async wrapper over the sync Supabase client.
    Calls run in a worker thread so the event loop never blocks on HTTP.
    Errors propagate; the batcher decides what to do with them.
    """

    def __init__(self, client: Optional[Client] = None, table: str = USAGE_LOGS_TABLE):
        self._client = client
        self.table = table

    @property
    def client(self) -> Client:
        # Lazy-load Supabase client
        if self._client is None:
            self._client = get_supabase()
        return self._client

    async def insert_many(self, rows: List[Dict[str, Any]]) -> int:
        """Insert rows in one request. Returns the number of rows sent."""
        if not rows:
            return 0
        await asyncio.to_thread(
            lambda: self.client.table(self.table).insert(rows).execute()
        )
        return len(rows)

    async def get_usage_stats(self, key_id: str, days: int = 30) -> UsageStats:
        """Aggregation happens server-side; this only shapes the JSON."""
        resp = await asyncio.to_thread(
            lambda: self.client.rpc(
                USAGE_STATS_RPC, {"p_api_key_id": key_id, "p_days": days}
            ).execute()
        )
        data = resp.data or {}
        if isinstance(data, list):
            data = data[0] if data else {}
        return UsageStats.model_validate(data)
