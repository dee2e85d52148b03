"""
Service modules package.

This package contains persistence services for:
- API key usage logs (Supabase)
"""

from .usage_store import SupabaseUsageStore

__all__ = [
    "SupabaseUsageStore",
]
