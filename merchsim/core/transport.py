from __future__ import annotations

from typing import Mapping, Protocol

import httpx

from merchsim.core.models import Request, Response
from merchsim.exceptions import InvariantError, TransportError


class Transport(Protocol):
    async def get(self, url: str, headers: Mapping[str, str]) -> Response: ...

    async def post(self, url: str, body: bytes, headers: Mapping[str, str]) -> Response: ...


class HTTPXTransport:
    """Transport backed by one shared, connection-pooled httpx.AsyncClient.

    Network failures surface as TransportError; HTTP error statuses are
    returned as ordinary responses.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 60.0,
        max_connections: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._http = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=None),
            headers={"User-Agent": "merchsim/0.1"},
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def get(self, url: str, headers: Mapping[str, str]) -> Response:
        return await self._send("GET", url, headers=headers)

    async def post(self, url: str, body: bytes, headers: Mapping[str, str]) -> Response:
        return await self._send("POST", url, headers=headers, content=body)

    async def _send(self, method: str, url: str, **kwargs) -> Response:
        try:
            resp = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(
                _classify_exception(exc),
                str(exc) or type(exc).__name__,
                {"method": method, "url": url},
            ) from exc
        return Response(status=resp.status_code, headers=dict(resp.headers), body=resp.content)


async def send_request(transport: Transport, request: Request) -> Response:
    if request.method == "GET":
        return await transport.get(request.url, request.headers)
    if request.method == "POST":
        return await transport.post(request.url, request.body or b"", request.headers)
    raise InvariantError("UNSUPPORTED_METHOD", f"unsupported method: {request.method}")


def _classify_exception(exc: Exception) -> str:
    """Map a network-level exception to a canonical error_type."""
    if isinstance(exc, httpx.TimeoutException):
        return "network_timeout"
    if isinstance(exc, httpx.ConnectError):
        return "network_connect"
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.LocalProtocolError)):
        return "network_protocol"
    if isinstance(exc, httpx.HTTPError):
        return "network_error"
    return type(exc).__name__
