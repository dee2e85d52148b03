"""
Pydantic models for API key usage records and aggregated statistics.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALLOWED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}

# Long free-text columns are clipped before they reach the buffer
MAX_TEXT_LENGTH = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiKeyUsageEntry(BaseModel):
    """
    One API call made with an API key.
    Immutable once built; maps 1:1 onto a row of api_key_usage_logs.
    """

    model_config = ConfigDict(frozen=True)

    key_id: str
    tenant_id: str
    endpoint: str
    method: str
    status_code: int
    response_time_ms: int = 0
    scope_used: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    request_path: Optional[str] = None
    origin: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("method")
    @classmethod
    def _normalize_method(cls, value: str) -> str:
        method = value.strip().upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(f"unsupported HTTP method: {value}")
        return method

    @field_validator("user_agent", "error_message")
    @classmethod
    def _clip_text(cls, value: Optional[str]) -> Optional[str]:
        if value and len(value) > MAX_TEXT_LENGTH:
            return value[:MAX_TEXT_LENGTH]
        return value

    def to_row(self) -> Dict[str, Any]:
        """Column mapping for api_key_usage_logs. Unset optional columns are omitted."""
        row = {
            "api_key_id": self.key_id,
            "tenant_id": self.tenant_id,
            "endpoint": self.endpoint,
            "method": self.method,
            "status_code": self.status_code,
            "response_time_ms": self.response_time_ms,
            "scope_used": self.scope_used,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "request_path": self.request_path,
            "origin": self.origin,
            "created_at": self.created_at.isoformat(),
        }
        return {k: v for k, v in row.items() if v is not None}


class EndpointUsage(BaseModel):
    endpoint: str
    count: int = 0


class StatusGroupUsage(BaseModel):
    status_group: str
    count: int = 0


class UsageStats(BaseModel):
    """Aggregates returned by the get_api_key_usage_stats RPC (last N days, one key)."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    avg_response_time_ms: float = 0
    min_response_time_ms: float = 0
    max_response_time_ms: float = 0
    unique_ips: int = 0
    requests_by_endpoint: List[EndpointUsage] = Field(default_factory=list)
    requests_by_status: List[StatusGroupUsage] = Field(default_factory=list)
    requests_by_day: List[Dict[str, Any]] = Field(default_factory=list)
    recent_errors: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def error_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.failed_requests / self.total_requests
