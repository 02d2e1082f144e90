"""Redis client factory for the Redis-backed compare-exchange store.

Example:
    >>> factory = RedisFactory.from_url("redis://localhost:6379/0")
    >>> client = factory.get_client()
    >>> client.ping()
    True
"""

from __future__ import annotations

from typing import Any


class RedisFactory:
    """Factory for a lazily created synchronous Redis client.

    Attributes:
        _url: Redis connection URL.
        _client: Lazily created Redis client instance.
    """

    def __init__(
        self,
        url: str,
        *,
        cert_file_path: str | None = None,
        cert_password: str | None = None,
        socket_timeout: float = 5.0,
    ) -> None:
        """Initialize factory.

        Args:
            url: Redis connection URL (``redis://`` or ``rediss://``).
            cert_file_path: Optional client certificate for TLS connections.
            cert_password: Optional password for the certificate key.
            socket_timeout: Socket timeout in seconds.
        """
        self._url = url
        self._cert_file_path = cert_file_path
        self._cert_password = cert_password
        self._socket_timeout = socket_timeout
        self._client: Any = None

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> RedisFactory:
        return cls(url, **kwargs)

    @property
    def url(self) -> str:
        return self._url

    def get_client(self) -> Any:
        """Get the Redis client, creating it on first access."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self) -> Any:
        import redis

        kwargs: dict[str, Any] = {
            "socket_timeout": self._socket_timeout,
            "socket_connect_timeout": self._socket_timeout,
            "decode_responses": True,
        }
        if self._cert_file_path and self._url.startswith("rediss://"):
            kwargs["ssl_certfile"] = self._cert_file_path
            if self._cert_password:
                kwargs["ssl_password"] = self._cert_password
        return redis.Redis.from_url(self._url, **kwargs)

    def close(self) -> None:
        """Close the Redis client and release its connections."""
        if self._client is not None:
            self._client.close()
            self._client = None
