"""HTTP transport built as a request middleware chain.

The record client talks to the network only through the Transport protocol: it hands over
a ChainRequest and gets back a ChainResponse carrying the status and the raw body bytes.
ChainMiddlewareClient is the production Transport. It passes each request through a list
of middleware (metrics, debug logging) before an aiohttp ClientSession sends it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import json
import logging
from time import time
from types import TracebackType
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    Sequence,
)
from aiohttp import ClientResponse, ClientSession, ClientTimeout
from aiohttp.typedefs import StrOrURL
from multidict import CIMultiDict, CIMultiDictProxy
import sentry_sdk

from app.dropanchor.anchorkit.config import Settings
from app.dropanchor.anchorkit.metrics import MetricsClient

logger = logging.getLogger(__name__)


@dataclass
class ChainRequest:
    method: str
    url: StrOrURL
    headers: dict[str, Any] | None = None
    trace_request_ctx: dict[str, Any] | None = None
    kwargs: dict[str, Any] | None = None


@dataclass
class ChainResponse:
    status: int
    headers: CIMultiDictProxy[str]
    body: bytes = b""

    @staticmethod
    async def from_aiohttp_response(response: ClientResponse) -> "ChainResponse":
        return ChainResponse(
            status=response.status,
            headers=response.headers,
            body=await response.read(),
        )

    @staticmethod
    def from_json(
        status: int, body: Any, headers: Optional[dict[str, str]] = None
    ) -> "ChainResponse":
        """Build a JSON response, mostly useful for fake transports."""
        return ChainResponse(
            status=status,
            headers=CIMultiDictProxy(
                CIMultiDict(headers or {"Content-Type": "application/json"})
            ),
            body=json.dumps(body).encode("utf-8"),
        )

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299


class Transport(Protocol):
    """Capability the record client depends on: send a request, get status and bytes."""

    async def send(self, request: ChainRequest) -> ChainResponse: ...


NextChainCallbackType = Callable[[ChainRequest], Awaitable[ChainResponse]]


class RequestMiddlewareBase(ABC):
    @abstractmethod
    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> ChainResponse:
        pass

    def handle_gen(self, next: NextChainCallbackType) -> NextChainCallbackType:
        async def next_invoke(request: ChainRequest) -> ChainResponse:
            return await self.handle(next, request)

        return next_invoke


class StatsdMiddleware(RequestMiddlewareBase):
    def __init__(self, metrics_client: MetricsClient, prefix: str = "anchorkit") -> None:
        super().__init__()
        self._metrics_client = metrics_client
        self._prefix = prefix

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> ChainResponse:
        tags = {"method": request.method.lower()}
        start_time = time()
        try:
            return await next(request)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            raise
        finally:
            self._metrics_client.timer(
                f"{self._prefix}.client.request.time", time() - start_time, tag_dict=tags
            )
            self._metrics_client.increment(
                f"{self._prefix}.client.request.count", 1, tag_dict=tags
            )


class DebugMiddleware(RequestMiddlewareBase):
    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> ChainResponse:
        # Authorization values are never logged.
        headers = {
            k: ("<redacted>" if k.lower() == "authorization" else v)
            for k, v in (request.headers or {}).items()
        }
        logger.debug(f"Request: {request.method} {request.url} {headers}")
        response = await next(request)
        logger.debug(f"Response: {response.status} {response.body[:1024]!r}")
        return response


class EndOfLineChainMiddleware:
    def __init__(self, client_session: ClientSession) -> None:
        self._client_session = client_session

    async def handle(self, request: ChainRequest) -> ChainResponse:
        async with self._client_session.request(
            request.method,
            request.url,
            headers=request.headers,
            trace_request_ctx={**(request.trace_request_ctx or {})},
            **(request.kwargs or {}),
        ) as response:
            return await ChainResponse.from_aiohttp_response(response)


class ChainMiddlewareClient:
    """Transport that runs each request through middleware and an aiohttp session.

    When no session is passed in, the client owns one and closes it in ``close``.
    There is no retry: a request goes through the chain exactly once.
    """

    def __init__(
        self,
        client_session: ClientSession | None = None,
        middleware: Sequence[RequestMiddlewareBase] | None = None,
        *args: Any,
        **kwargs: Any,
    ) -> None:
        if client_session is not None:
            client = client_session
            closed = None
        else:
            client = ClientSession(*args, **kwargs)
            closed = False

        self._middleware = list(middleware or [])
        self._client = client
        self._closed = closed

    @staticmethod
    def from_settings(
        settings: Settings,
        metrics_client: MetricsClient,
        client_session: ClientSession | None = None,
    ) -> "ChainMiddlewareClient":
        middleware: list[RequestMiddlewareBase] = [
            StatsdMiddleware(metrics_client, settings.statsd_prefix)
        ]
        if settings.debug:
            middleware.append(DebugMiddleware())

        if client_session is not None:
            return ChainMiddlewareClient(client_session, middleware)
        return ChainMiddlewareClient(
            None, middleware, timeout=ClientTimeout(total=settings.request_timeout)
        )

    async def send(self, request: ChainRequest) -> ChainResponse:
        end_of_line = EndOfLineChainMiddleware(self._client)

        chain_callback: NextChainCallbackType = end_of_line.handle
        for mw in reversed(self._middleware):
            chain_callback = mw.handle_gen(chain_callback)

        return await chain_callback(request)

    async def close(self) -> None:
        if self._closed is False:
            await self._client.close()
            self._closed = True

    async def __aenter__(self) -> "ChainMiddlewareClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def __del__(self) -> None:
        if getattr(self, "_closed", None) is None:
            # Borrowed session, or __init__ raised before assigning.
            return

        if not self._closed:
            logger.warning("ChainMiddlewareClient was not closed")
