"""Redis connection helpers shared by the worker and the admin tools."""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis

from linkmeta.main.config import Settings, get_settings


def build_redis_pool_kwargs(
    settings: Settings | None = None,
    *,
    decode_responses: bool,
) -> dict[str, Any]:
    """Build keyword arguments for redis.asyncio connection pools."""
    resolved_settings = settings or get_settings()
    kwargs: dict[str, Any] = {
        "decode_responses": decode_responses,
        "socket_connect_timeout": resolved_settings.redis_conn_timeout,
        "retry_on_timeout": resolved_settings.redis_retry_on_timeout,
        "socket_keepalive": resolved_settings.redis_socket_keepalive,
        "health_check_interval": resolved_settings.redis_health_check_interval,
    }

    if resolved_settings.redis_max_connections is not None:
        kwargs["max_connections"] = resolved_settings.redis_max_connections

    if resolved_settings.redis_db is not None:
        kwargs["db"] = resolved_settings.redis_db

    return kwargs


def create_redis_client(settings: Settings | None = None) -> aioredis.Redis:
    """Create a Redis client backed by its own connection pool.

    Responses are raw bytes so that queue payloads can be matched exactly
    when they are removed with LREM.
    """
    resolved_settings = settings or get_settings()
    redis_kwargs = build_redis_pool_kwargs(resolved_settings, decode_responses=False)
    pool = aioredis.ConnectionPool.from_url(resolved_settings.redis_url, **redis_kwargs)
    return aioredis.Redis(connection_pool=pool)
