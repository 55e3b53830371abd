"""HTTP client construction for the REST counter store."""

import httpx

from quotaguard.app.core.config import settings


def create_http_client(**kwargs) -> httpx.AsyncClient:
    """Create a new HTTP client with default settings.

    The returned client should be closed when done:
        async with create_http_client() as client:
            ...

    Args:
        **kwargs: Override default settings. Can include:
            - timeout: Single timeout value
            - connect_timeout: Connection timeout
            - max_connections: Maximum connections
            - max_keepalive_connections: Maximum keepalive connections
            - transport: Custom transport (used by tests)

    Returns:
        A new httpx.AsyncClient instance.
    """
    timeout = httpx.Timeout(
        kwargs.get("timeout", settings.httpx_timeout),
        connect=kwargs.get("connect_timeout", settings.httpx_connect_timeout),
    )
    limits = httpx.Limits(
        max_connections=kwargs.get("max_connections", settings.httpx_max_connections),
        max_keepalive_connections=kwargs.get(
            "max_keepalive_connections", settings.httpx_max_keepalive_connections
        ),
    )
    config = {"timeout": timeout, "limits": limits}
    if kwargs.get("transport") is not None:
        config["transport"] = kwargs["transport"]
    return httpx.AsyncClient(**config)
