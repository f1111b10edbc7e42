import time

import aiohttp

from linkmeta.main.logging import get_logger

logger = get_logger(__name__)


class AioHttpClient:
    session: aiohttp.ClientSession | None = None

    def _create_trace_config(self) -> aiohttp.TraceConfig:
        """Create TraceConfig for DNS and connection timing observability."""
        trace = aiohttp.TraceConfig()

        async def on_dns_start(session, trace_config_ctx, params):
            trace_config_ctx._dns_start_time = time.perf_counter()

        async def on_dns_end(session, trace_config_ctx, params):
            if hasattr(trace_config_ctx, "_dns_start_time"):
                dns_duration_ms = (time.perf_counter() - trace_config_ctx._dns_start_time) * 1000

                # Slow third-party DNS is the usual cause of fetch timeouts
                if dns_duration_ms > 2000:
                    logger.warning(
                        f"SLOW DNS resolution detected for {params.host}",
                        extra={
                            "event": "dns_slow",
                            "host": params.host,
                            "duration_ms": int(dns_duration_ms),
                            "threshold_ms": 2000,
                        },
                    )
                else:
                    logger.debug(
                        f"DNS resolution completed for {params.host}",
                        extra={
                            "event": "dns_resolution",
                            "host": params.host,
                            "duration_ms": int(dns_duration_ms),
                        },
                    )

        async def on_conn_start(session, trace_config_ctx, params):
            trace_config_ctx._conn_start_time = time.perf_counter()

        async def on_conn_end(session, trace_config_ctx, params):
            if hasattr(trace_config_ctx, "_conn_start_time"):
                conn_duration_ms = (time.perf_counter() - trace_config_ctx._conn_start_time) * 1000
                logger.debug(
                    "TCP connection established",
                    extra={
                        "event": "tcp_connection",
                        "duration_ms": int(conn_duration_ms),
                    },
                )

        trace.on_dns_resolvehost_start.append(on_dns_start)
        trace.on_dns_resolvehost_end.append(on_dns_end)
        trace.on_connection_create_start.append(on_conn_start)
        trace.on_connection_create_end.append(on_conn_end)

        return trace

    def start(self, *, total_timeout: float = 30.0, user_agent: str | None = None):
        # Per-request timeouts can override these
        timeout = aiohttp.ClientTimeout(
            total=total_timeout,
            connect=min(10.0, total_timeout),
        )

        connector = aiohttp.TCPConnector(
            limit=100,
            limit_per_host=10,
            enable_cleanup_closed=True,
            use_dns_cache=True,
            ttl_dns_cache=300,
        )

        headers = {"User-Agent": user_agent} if user_agent else None

        self.session = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            trace_configs=[self._create_trace_config()],
            headers=headers,
        )

    async def stop(self):
        if self.session is not None:
            await self.session.close()
        self.session = None

    def __call__(self) -> aiohttp.ClientSession:
        assert self.session is not None
        return self.session


aiohttp_client = AioHttpClient()
