"""Factory for the `httpx.AsyncClient` shared by the remote fetcher."""

from httpx import AsyncBaseTransport, AsyncClient, Limits, Timeout

from mediagrab.configs import settings


def create_http_client(
    base_url: str = "",
    max_connections: int = settings.http.max_connections,
    connect_timeout: float = settings.http.connect_timeout_sec,
    request_timeout: float = settings.http.request_timeout_sec,
    pool_timeout: float = 1.0,
    proxy: str | None = None,
    transport: AsyncBaseTransport | None = None,
) -> AsyncClient:
    """Create an async HTTP client that follows redirects.

    Args:
      - `base_url` {str}: Prefix for relative request URLs, empty for none.
      - `max_connections` {int}: Size of the connection pool.
      - `connect_timeout` {float}: Seconds allowed to open a connection.
      - `request_timeout` {float}: Seconds allowed for a whole request.
      - `pool_timeout` {float}: Seconds to wait for a free pooled connection.
      - `proxy` {str | None}: Proxy URL such as "http://proxy.local:3128".
      - `transport` {AsyncBaseTransport | None}: Replacement transport, e.g.
        `httpx.MockTransport` in tests.
    Returns:
      - {AsyncClient}: The configured client. The caller owns it and must close it.
    """
    return AsyncClient(
        base_url=base_url,
        limits=Limits(max_connections=max_connections),
        timeout=Timeout(request_timeout, connect=connect_timeout, pool=pool_timeout),
        proxy=proxy,
        transport=transport,
        follow_redirects=True,
    )
