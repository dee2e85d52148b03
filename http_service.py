"""
HTTP service hosting the token counter and the API key usage batcher.

The app owns both components for the process lifetime:
- lifespan startup creates them
- lifespan shutdown drains the batcher (uvicorn turns SIGTERM/SIGINT into
  a lifespan shutdown, so the components never install signal handlers)

Route handlers behind API key auth get one usage entry per request through
the middleware below. Auth itself runs upstream and leaves
request.state.api_key_id / request.state.tenant_id behind.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from config import logger, PORT
from models.usage import ApiKeyUsageEntry
from utils.token_counter import TokenCounter, create_token_counter
from utils.usage_logger import UsageLogBatcher, create_usage_batcher


def create_app(
    token_counter: Optional[TokenCounter] = None,
    batcher: Optional[UsageLogBatcher] = None,
) -> FastAPI:
    """Build the app. Tests inject components; production uses the env-configured ones."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.token_counter = token_counter or create_token_counter()
        app.state.usage_batcher = batcher or create_usage_batcher()
        logger.info("[HTTP] Usage service started")
        try:
            yield
        finally:
            logger.info("[HTTP] Shutting down, draining usage logs...")
            await app.state.usage_batcher.shutdown()
            app.state.token_counter.dispose()

    # No docs endpoint (reduces attack surface)
    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)

    @app.middleware("http")
    async def record_api_key_usage(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)

        key_id = getattr(request.state, "api_key_id", None)
        tenant_id = getattr(request.state, "tenant_id", None)
        if key_id and tenant_id:
            try:
                entry = ApiKeyUsageEntry(
                    key_id=key_id,
                    tenant_id=tenant_id,
                    endpoint=request.url.path,
                    method=request.method,
                    scope_used=getattr(request.state, "scope_used", None),
                    status_code=response.status_code,
                    response_time_ms=int((time.perf_counter() - start) * 1000),
                    ip_address=request.client.host if request.client else None,
                    user_agent=request.headers.get("user-agent"),
                    origin=request.headers.get("origin"),
                    request_path=str(request.url),
                )
            except ValueError as e:
                # e.g. HEAD/OPTIONS, which the usage table doesn't accept
                logger.debug(f"[HTTP] Usage entry skipped: {e}")
            else:
                request.app.state.usage_batcher.log_usage(entry)

        return response

    @app.get("/healthz")
    def health_check():
        """Health check endpoint for external monitoring."""
        return {"status": "ok"}

    @app.get("/internal/stats")
    def internal_stats(request: Request):
        """Token cache and usage buffer counters for operators."""
        return {
            "token_counter": request.app.state.token_counter.get_stats(),
            "usage_batcher": request.app.state.usage_batcher.get_stats(),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PORT)
