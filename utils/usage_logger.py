"""
UsageLogBatcher - Buffered API key usage logging to Supabase.

Recording an API call must never slow down or break the request that made
it, so entries go into an in-memory buffer and are written in batches:
- immediately once the buffer reaches batch_size (unless the store is failing)
- otherwise after flush_interval seconds (one pending timer at a time)

A failed write puts the batch back into the buffer, up to a ceiling of
batch_size * buffer_multiplier; anything beyond that is dropped and logged.

Usage:
    batcher = create_usage_batcher()
    batcher.log_usage(ApiKeyUsageEntry(key_id=..., tenant_id=..., endpoint="/v1/calls",
                                       method="GET", status_code=200, response_time_ms=42))
    ...
    await batcher.shutdown()   # from the host's graceful-shutdown path
"""

from __future__ import annotations

import os
import json
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Protocol, Set

from config import (
    logger,
    ENVIRONMENT,
    SERVICE_NAME,
    USAGE_LOGGING_ENABLED,
    USAGE_LOG_BATCH_SIZE,
    USAGE_LOG_FLUSH_INTERVAL,
    USAGE_LOG_BUFFER_MULTIPLIER,
)
from models.usage import ApiKeyUsageEntry, UsageStats


# =============================================================================
# STRUCTURED JSON LOGGER
# =============================================================================

class StructuredLogger:
    """
    Google Cloud Logging compatible structured JSON logger.
    All lines include service, environment and timestamp.
    """

    def __init__(self, name: str = "usage_logger"):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(logging.INFO)
        # Bare JSON lines: keep them out of the timestamped app handler
        self._logger.propagate = False

        # Avoid duplicate handlers
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)

    def log(self, level: str, message: str, **extra):
        """Emit a structured JSON log entry."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": level.upper(),
            "message": message,
            "service": SERVICE_NAME,
            "environment": ENVIRONMENT,
            "job_execution_id": os.getenv("CLOUD_RUN_EXECUTION", "local"),
        }
        log_entry.update({k: v for k, v in extra.items() if v is not None})

        log_line = json.dumps(log_entry, default=str)

        if level.upper() == "ERROR":
            self._logger.error(log_line)
        elif level.upper() == "WARNING":
            self._logger.warning(log_line)
        elif level.upper() == "DEBUG":
            self._logger.debug(log_line)
        else:
            self._logger.info(log_line)


_structured_logger = StructuredLogger()


# =============================================================================
# STORE INTERFACE
# =============================================================================

class UsageStore(Protocol):
    async def insert_many(self, rows: List[Dict[str, Any]]) -> int: ...

    async def get_usage_stats(self, key_id: str, days: int = 30) -> UsageStats: ...


class BatcherState(str, Enum):
    ACCEPTING = "accepting"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


# =============================================================================
# USAGE LOG BATCHER
# =============================================================================

class UsageLogBatcher:
    """
    In-memory buffer of ApiKeyUsageEntry flushed to a UsageStore in batches.

    States: accepting -> shutting_down -> stopped. Only `accepting` takes
    new entries; later calls to log_usage() are silent no-ops.

    Single event loop, no locks: flush_logs() swaps the buffer out before
    awaiting the write, so entries logged during a write land in the new
    buffer and concurrent flushes never send the same entry twice.
    """

    def __init__(
        self,
        store: Optional[UsageStore] = None,
        batch_size: int = 100,
        flush_interval: float = 5.0,
        buffer_multiplier: int = 10,
        enabled: bool = True,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_buffer_size = batch_size * buffer_multiplier
        self.enabled = enabled

        # Store (lazy-loaded if not provided)
        self._store = store

        self._buffer: List[ApiKeyUsageEntry] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flush_tasks: Set[asyncio.Task] = set()
        self._state = BatcherState.ACCEPTING
        self._last_flush_failed = False

        # Counters for /internal/stats
        self.flushed_count = 0
        self.dropped_count = 0
        self.failed_flushes = 0

    @property
    def store(self) -> UsageStore:
        if self._store is None:
            from services.usage_store import SupabaseUsageStore
            self._store = SupabaseUsageStore()
        return self._store

    @property
    def state(self) -> BatcherState:
        return self._state

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)

    @property
    def flush_scheduled(self) -> bool:
        return self._timer is not None

    # =========================================================================
    # LOGGING
    # =========================================================================

    def log_usage(self, entry: ApiKeyUsageEntry):
        """
        Buffer one usage entry. Fire-and-forget: never raises, never waits.
        """
        if self._state is not BatcherState.ACCEPTING or not self.enabled:
            return

        if len(self._buffer) >= self.max_buffer_size:
            self.dropped_count += 1
            logger.debug(f"[USAGE] Buffer at ceiling ({self.max_buffer_size}), dropping entry for key {entry.key_id}")
            return

        self._buffer.append(entry)

        # Auto-flush if buffer is full. While a write is in flight or the
        # store is failing, the timer owns retries.
        if (
            len(self._buffer) >= self.batch_size
            and not self._last_flush_failed
            and not self._flush_in_flight()
        ):
            self._cancel_timer()
            self._start_flush()
        elif self._timer is None:
            self._schedule_flush()

    def _flush_in_flight(self) -> bool:
        return any(not t.done() for t in self._flush_tasks)

    def _start_flush(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller): entries wait for the next flush
            return
        task = loop.create_task(self.flush_logs())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    def _schedule_flush(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer = loop.call_later(self.flush_interval, self._on_timer)

    def _on_timer(self):
        self._timer = None
        self._start_flush()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # =========================================================================
    # FLUSH
    # =========================================================================

    async def flush_logs(self) -> bool:
        """
        Write everything currently buffered in one insert.

        Returns False when the write failed (the batch is re-buffered within
        the ceiling). Never raises.
        """
        self._cancel_timer()

        if not self._buffer:
            return True

        batch = self._buffer
        self._buffer = []

        try:
            await self.store.insert_many([entry.to_row() for entry in batch])
        except Exception as e:
            self.failed_flushes += 1
            self._last_flush_failed = True
            requeued = self._requeue(batch)
            _structured_logger.log(
                level="ERROR",
                message=f"Failed to flush usage logs to Supabase: {e}",
                error=str(e),
                event_count=len(batch),
                requeued=requeued,
                dropped=len(batch) - requeued,
            )
            # Retry later even if no new traffic arrives
            if self._state is BatcherState.ACCEPTING and self._buffer and self._timer is None:
                self._schedule_flush()
            return False

        self._last_flush_failed = False
        self.flushed_count += len(batch)
        logger.debug(f"[USAGE] Flushed {len(batch)} usage logs")
        return True

    def _requeue(self, batch: List[ApiKeyUsageEntry]) -> int:
        """Put a failed batch back at the front of the buffer, up to the ceiling."""
        room = max(0, self.max_buffer_size - len(self._buffer))
        keep = batch[:room]
        self._buffer[:0] = keep
        self.dropped_count += len(batch) - len(keep)
        return len(keep)

    async def wait_for_flushes(self):
        """Wait until no flush task is in flight."""
        while True:
            pending = [t for t in self._flush_tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # =========================================================================
    # STATS
    # =========================================================================

    async def get_usage_stats(self, key_id: str, days: int = 30) -> Optional[UsageStats]:
        """Per-key aggregates from the store. None when the query fails."""
        try:
            return await self.store.get_usage_stats(key_id, days)
        except Exception as e:
            _structured_logger.log(
                level="ERROR",
                message=f"Failed to fetch usage stats: {e}",
                key_id=key_id,
                days=days,
            )
            return None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "buffer_size": len(self._buffer),
            "batch_size": self.batch_size,
            "max_buffer_size": self.max_buffer_size,
            "flushed": self.flushed_count,
            "dropped": self.dropped_count,
            "failed_flushes": self.failed_flushes,
        }

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    async def shutdown(self):
        """
        Stop accepting entries and drain the buffer with one final flush.
        Call from the host's graceful-shutdown path; safe to call twice.
        """
        if self._state is not BatcherState.ACCEPTING:
            return

        self._state = BatcherState.SHUTTING_DOWN
        self._cancel_timer()
        await self.wait_for_flushes()

        pending = len(self._buffer)
        await self.flush_logs()

        if self._buffer:
            lost = len(self._buffer)
            self.dropped_count += lost
            self._buffer = []
            _structured_logger.log(
                level="ERROR",
                message=f"Final flush failed, {lost} usage logs lost on shutdown",
                event_count=lost,
            )
        else:
            logger.info(f"[USAGE] Shutdown complete, drained {pending} usage logs")

        self._state = BatcherState.STOPPED

    # =========================================================================
    # CONTEXT MANAGER SUPPORT
    # =========================================================================

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def create_usage_batcher(
    store: Optional[UsageStore] = None,
    batch_size: Optional[int] = None,
    flush_interval: Optional[float] = None,
) -> UsageLogBatcher:
    """
    Factory for a UsageLogBatcher configured from the environment.

    Usage:
        batcher = create_usage_batcher()
        batcher.log_usage(entry)
    """
    return UsageLogBatcher(
        store=store,
        batch_size=batch_size if batch_size is not None else USAGE_LOG_BATCH_SIZE,
        flush_interval=flush_interval if flush_interval is not None else USAGE_LOG_FLUSH_INTERVAL,
        buffer_multiplier=USAGE_LOG_BUFFER_MULTIPLIER,
        enabled=USAGE_LOGGING_ENABLED,
    )
