"""
OpenClaw Admin - Gateway Health
=================================
Single health probes and the fixed-budget readiness poll used by install.
"""

import asyncio

import httpx


DEFAULT_TIMEOUT = 3.0


class HealthChecker:
    """
    Probes the gateway's /health endpoint.

    Attributes:
        url:       Health endpoint URL.
        timeout:   Per-request timeout in seconds.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def check(self) -> bool:
        """
        One GET; True only for a 2xx response.

        The whole request is bounded by `timeout`, and the status is decided
        from the response headers without reading the body.
        """
        try:
            return await asyncio.wait_for(self._probe(), self.timeout)
        except (httpx.HTTPError, asyncio.TimeoutError):
            return False

    async def _probe(self) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            async with client.stream("GET", self.url) as response:
                return response.is_success

    async def wait_until_healthy(self, attempts: int, interval: float, on_retry=None) -> bool:
        """
        Poll until healthy or the attempt budget runs out.

        Each attempt sleeps `interval` seconds first, then probes once.
        `on_retry` (async, optional) is awaited after every failed attempt.

        Returns:
            True on the first 2xx response, False when all attempts failed.
        """
        for _ in range(attempts):
            await asyncio.sleep(interval)
            if await self.check():
                return True
            if on_retry is not None:
                await on_retry()
        return False


def resolve_health_url(
    configured: str | None,
    running_in_docker: bool,
    gateway_port: str,
    gateway_service: str = "openclaw-gateway",
) -> str:
    """
    Pick the health URL.

    Order: an explicit URL (HEALTH_URL / panel config), then the gateway
    container on the compose network, then the published localhost port.
    """
    if configured:
        return configured
    if running_in_docker:
        return f"http://{gateway_service}:18789/health"
    return f"http://127.0.0.1:{gateway_port}/health"
