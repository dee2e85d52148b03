"""
Configuration and constants for the voice agent usage utilities.

Contains environment variables, Supabase access, and tuning parameters
for the token counter and the API key usage log batcher.
"""

from __future__ import annotations

import os
import logging
from typing import Optional
from dotenv import load_dotenv
from supabase import create_client, Client

# =============================================================================
# Load Environment
# =============================================================================

load_dotenv(".env.local")

# =============================================================================
# TOKEN COUNTER TUNING
# =============================================================================

# Cache bounds: oldest ~10% is evicted once the cache is full
TOKEN_CACHE_MAX_SIZE = int(os.getenv("TOKEN_CACHE_MAX_SIZE", "10000"))
TOKEN_CACHE_TTL = float(os.getenv("TOKEN_CACHE_TTL", "300"))  # 5 minutes

# Set TOKEN_COUNTER_EXACT=0 to skip tiktoken and always estimate
TOKEN_COUNTER_EXACT = os.getenv("TOKEN_COUNTER_EXACT", "1") == "1"

# =============================================================================
# USAGE LOG BATCHING
# =============================================================================

USAGE_LOGGING_ENABLED = os.getenv("USAGE_LOGGING", "1") == "1"
USAGE_LOG_BATCH_SIZE = int(os.getenv("USAGE_LOG_BATCH_SIZE", "100"))  # entries before auto-flush
USAGE_LOG_FLUSH_INTERVAL = float(os.getenv("USAGE_LOG_FLUSH_INTERVAL", "5.0"))  # seconds
# Buffer ceiling under storage outage = batch size * multiplier
USAGE_LOG_BUFFER_MULTIPLIER = int(os.getenv("USAGE_LOG_BUFFER_MULTIPLIER", "10"))

USAGE_LOGS_TABLE = "api_key_usage_logs"
USAGE_STATS_RPC = "get_api_key_usage_stats"

# Mute noisy transport debug logs (reduces log-bloat in production)
logging.getLogger("hpack").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

# =============================================================================
# STRUCTURED LOGGER
# =============================================================================

logger = logging.getLogger("voice_agent_usage")
logger.setLevel(logging.DEBUG)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(handler)

# =============================================================================
# ENVIRONMENT & APPLICATION CONFIG
# =============================================================================

ENVIRONMENT = (os.getenv("ENVIRONMENT") or "development").strip().lower()
SERVICE_NAME = os.getenv("SERVICE_NAME", "voice-agent-usage")
PORT = int(os.getenv("PORT", "8080"))

# =============================================================================
# SUPABASE CONFIGURATION
# =============================================================================

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

_supabase: Optional[Client] = None


def get_supabase() -> Client:
    """
    Return the shared Supabase client, creating it on first use.
    Credentials are only required once something actually writes or queries.
    """
    global _supabase
    if _supabase is None:
        if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
            raise RuntimeError("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY")
        _supabase = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
    return _supabase
