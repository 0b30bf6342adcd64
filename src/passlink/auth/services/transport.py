"""HTTP transports used for provider calls, with a DNS-resilient retry policy.

Two ``HttpTransport`` implementations share one request description:

- ``HttpxTransport`` sends through a regular ``httpx.AsyncClient``.
- ``PinnedAddressTransport`` resolves the host itself and connects to the
  resulting IP address, preserving the original ``Host`` header and TLS
  server name. It exists for environments whose default resolver is broken
  or slow.

``RetryingSender`` applies a ``RetryPolicy``: linear backoff between
attempts, and a switch to the pinned transport for the final attempt when
every earlier attempt failed on name resolution.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from types import TracebackType
from typing import Self

import httpx

from passlink.auth.models.errors import NameResolutionError

logger = logging.getLogger(__name__)

Resolver = Callable[[str, int], Awaitable[list[str]]]
Sleep = Callable[[float], Awaitable[None]]

NAME_RESOLUTION_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated with hostname",
    "name resolution",
)


@dataclass(frozen=True)
class HttpRequest:
    """Transport-independent description of one outbound request."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    data: Mapping[str, str] | None = field(default=None, repr=False)


def is_name_resolution_failure(exc: BaseException) -> bool:
    """Walk the exception chain looking for a DNS lookup failure."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (NameResolutionError, socket.gaierror)):
            return True
        message = str(current).lower()
        if any(marker in message for marker in NAME_RESOLUTION_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


async def resolve_host(host: str, port: int) -> list[str]:
    """Resolve a host name to its addresses, IPv4 first."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)

    ipv4: list[str] = []
    ipv6: list[str] = []
    for family, _, _, _, sockaddr in infos:
        address = sockaddr[0]
        bucket = ipv4 if family == socket.AF_INET else ipv6
        if address not in bucket:
            bucket.append(address)
    return ipv4 + ipv6


class HttpTransport(ABC):
    """Sends an ``HttpRequest`` and returns the raw ``httpx.Response``.

    Transports never interpret status codes. They raise
    ``NameResolutionError`` when the host cannot be resolved and let any
    other ``httpx.TransportError`` propagate.
    """

    @abstractmethod
    async def send(self, request: HttpRequest) -> httpx.Response:
        """Send a request.

        Raises:
            NameResolutionError: If the host name cannot be resolved
            httpx.TransportError: On any other network failure
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection pool."""

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
        return None


class HttpxTransport(HttpTransport):
    """Standard transport backed by ``httpx.AsyncClient``."""

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def send(self, request: HttpRequest) -> httpx.Response:
        try:
            return await self._http_client.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                data=dict(request.data) if request.data is not None else None,
            )
        except httpx.ConnectError as e:
            if is_name_resolution_failure(e):
                raise NameResolutionError(
                    "Could not resolve provider host",
                    detail=f"{httpx.URL(request.url).host}: {e}",
                ) from e
            raise

    async def close(self) -> None:
        await self._http_client.aclose()


class PinnedAddressTransport(HttpTransport):
    """Transport that resolves the host itself and connects to the IP.

    The request keeps its method, headers and body. The original host name is
    carried in the ``Host`` header and used as the TLS server name, so
    certificate verification still applies to the real host.
    """

    def __init__(
        self,
        resolver: Resolver = resolve_host,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._resolver = resolver
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def send(self, request: HttpRequest) -> httpx.Response:
        url = httpx.URL(request.url)
        host = url.host
        port = url.port or (443 if url.scheme == "https" else 80)

        try:
            addresses = await self._resolver(host, port)
        except OSError as e:
            raise NameResolutionError(
                "Could not resolve provider host", detail=f"{host}: {e}"
            ) from e
        if not addresses:
            raise NameResolutionError(
                "Could not resolve provider host", detail=f"{host}: no addresses"
            )

        address = addresses[0]
        logger.info(f"Sending {request.method} to {host} via pinned address {address}")

        headers = dict(request.headers)
        headers["Host"] = host if url.port is None else f"{host}:{url.port}"
        extensions = {"sni_hostname": host} if url.scheme == "https" else None

        pinned_request = self._http_client.build_request(
            request.method,
            url.copy_with(host=address),
            headers=headers,
            data=dict(request.data) if request.data is not None else None,
            extensions=extensions,
        )
        return await self._http_client.send(pinned_request)

    async def close(self) -> None:
        await self._http_client.aclose()


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget, linear backoff and fallback selection.

    Only transport failures are retried. An HTTP response of any status is
    returned to the caller as-is, because an authorization code may already
    have been consumed by the provider.
    """

    max_attempts: int = 3
    backoff_seconds: float = 0.2

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return self.backoff_seconds * attempt

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, (NameResolutionError, httpx.TransportError))

    def use_fallback(self, attempt: int, failures: list[BaseException]) -> bool:
        """True for the final attempt when all earlier ones failed on DNS."""
        return (
            attempt == self.max_attempts
            and len(failures) > 1
            and all(is_name_resolution_failure(f) for f in failures)
        )


class RetryingSender:
    """Sends requests through the primary transport under a ``RetryPolicy``."""

    def __init__(
        self,
        primary: HttpTransport,
        fallback: HttpTransport | None = None,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.primary = primary
        self.fallback = fallback
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def send(self, request: HttpRequest) -> httpx.Response:
        """Send with retries.

        Raises:
            The last transport failure once the attempt budget is exhausted
        """
        failures: list[BaseException] = []

        for attempt in range(1, self.policy.max_attempts + 1):
            transport = self.primary
            if self.fallback is not None and self.policy.use_fallback(
                attempt, failures
            ):
                logger.warning(
                    "Repeated name resolution failures, "
                    "issuing final attempt against a pinned address"
                )
                transport = self.fallback

            try:
                return await transport.send(request)
            except Exception as e:
                if not self.policy.is_retryable(e):
                    raise
                failures.append(e)
                logger.warning(
                    f"Attempt {attempt}/{self.policy.max_attempts} "
                    f"for {request.method} {request.url} failed: "
                    f"{type(e).__name__}: {e}"
                )
                if attempt == self.policy.max_attempts:
                    raise
                await self._sleep(self.policy.delay_for(attempt))

        raise RuntimeError("unreachable")  # pragma: no cover

    async def close(self) -> None:
        await self.primary.close()
        if self.fallback is not None:
            await self.fallback.close()
