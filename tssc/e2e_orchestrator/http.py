"""Provider HTTP client with an explicit interceptor chain."""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field

import aiohttp

from tssc.e2e_orchestrator.errors import (
    ErrorKind,
    RateLimitedError,
    TransientError,
    error_from_status,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_WARNING_RATIO = 0.1
MAX_THROTTLE_RETRIES = 3


@dataclass(frozen=True)
class HttpRequest:
    """An outgoing request."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, str] | None = None
    json_body: object | None = None
    data: object | None = None
    auth: aiohttp.BasicAuth | None = None


@dataclass(frozen=True)
class HttpResponse:
    """A fully read response; header names are lower-cased."""

    status: int
    headers: Mapping[str, str]
    text: str
    request: HttpRequest

    @property
    def ok(self) -> bool:
        """Whether the status is 2xx."""
        return 200 <= self.status < 300

    def json(self) -> object:
        """Decode the body as JSON, ``None`` for an empty body."""
        if not self.text:
            return None
        return json.loads(self.text)

    def header(self, name: str) -> str | None:
        """Return a header value by case-insensitive name."""
        return self.headers.get(name.lower())


Handler = Callable[[HttpRequest], Awaitable[HttpResponse]]
Middleware = Callable[[HttpRequest, Handler], Awaitable[HttpResponse]]


async def send(request: HttpRequest) -> HttpResponse:
    """Perform the request with aiohttp and read the whole body."""
    try:
        async with aiohttp.ClientSession() as session:
            async with session.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                params=request.params,
                json=request.json_body,
                data=request.data,
                auth=request.auth,
            ) as response:
                text = await response.text()
                headers = {k.lower(): v for k, v in response.headers.items()}
                return HttpResponse(response.status, headers, text, request)
    except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
        raise TransientError(
            f"{request.method} {request.url} failed: {e}",
            kind=ErrorKind.TRANSIENT_NETWORK,
        ) from e


def _quota(response: HttpResponse) -> tuple[int, int] | None:
    for prefix in ("x-ratelimit-", "ratelimit-"):
        remaining = response.header(f"{prefix}remaining")
        limit = response.header(f"{prefix}limit")
        if remaining is not None and limit is not None:
            try:
                return int(remaining), int(limit)
            except ValueError:
                return None
    return None


class RateLimitTracker:
    """Remember remaining quota from response headers and warn when it runs low."""

    def __init__(self, name: str) -> None:
        """Initialize tracker for the named provider."""
        self.name = name
        self.remaining: int | None = None
        self.limit: int | None = None

    async def __call__(self, request: HttpRequest, call_next: Handler) -> HttpResponse:
        """Record quota headers of the response."""
        response = await call_next(request)
        quota = _quota(response)
        if quota is not None:
            self.remaining, self.limit = quota
            if self.limit > 0 and self.remaining < self.limit * RATE_LIMIT_WARNING_RATIO:
                logger.warning(
                    f"{self.name} API rate limit low: {self.remaining}/{self.limit} "
                    "requests remaining"
                )
        return response


def retry_after_seconds(response: HttpResponse) -> float | None:
    """Seconds to wait before retrying a throttled response."""
    retry_after = response.header("retry-after")
    if retry_after is not None:
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            return None

    reset = response.header("x-ratelimit-reset")
    if reset is not None:
        try:
            return max(0.0, float(reset) - time.time())
        except ValueError:
            return None
    return None


def _is_throttled(response: HttpResponse) -> bool:
    if response.status == 429:
        return True
    if response.status == 403:
        quota = _quota(response)
        return quota is not None and quota[0] == 0
    return False


async def throttle_middleware(request: HttpRequest, call_next: Handler) -> HttpResponse:
    """Wait for the provider's ``Retry-After`` and resend throttled requests."""
    response = await call_next(request)
    for attempt in range(1, MAX_THROTTLE_RETRIES + 1):
        if not _is_throttled(response):
            return response
        delay = retry_after_seconds(response) or float(2**attempt)
        logger.warning(
            f"Throttled on {request.method} {request.url}, retrying in {delay:.0f}s "
            f"(attempt {attempt}/{MAX_THROTTLE_RETRIES})"
        )
        await asyncio.sleep(delay)
        response = await call_next(request)
    return response


def _provider_error_code(response: HttpResponse) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("code", "errorCode", "error"):
            value = body.get(key)
            if isinstance(value, (str, int)):
                return str(value)
    return None


async def raise_for_status_middleware(
    request: HttpRequest, call_next: Handler
) -> HttpResponse:
    """Turn non-2xx responses into typed errors."""
    response = await call_next(request)
    if response.ok or 300 <= response.status < 400:
        return response

    message = (
        f"{request.method} {request.url} failed: {response.status} {response.text}"
    )
    code = _provider_error_code(response)
    if _is_throttled(response):
        raise RateLimitedError(
            message,
            retry_after=retry_after_seconds(response),
            status_code=response.status,
            provider_error_code=code,
        )
    raise error_from_status(response.status, message, code)


def build_chain(middlewares: Sequence[Middleware], terminal: Handler) -> Handler:
    """Compose middlewares so the first one sees the request first."""
    handler = terminal
    for middleware in reversed(middlewares):

        def _bind(mw: Middleware, nxt: Handler) -> Handler:
            async def _handler(request: HttpRequest) -> HttpResponse:
                return await mw(request, nxt)

            return _handler

        handler = _bind(middleware, handler)
    return handler


class HttpClient:
    """JSON HTTP client for one provider endpoint."""

    def __init__(
        self,
        base_url: str,
        name: str,
        headers: Mapping[str, str] | None = None,
        auth: aiohttp.BasicAuth | None = None,
        middlewares: Sequence[Middleware] | None = None,
        transport: Handler = send,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Prefix for relative paths
            name: Provider name used in log messages
            headers: Headers sent with every request
            auth: Basic auth credentials
            middlewares: Interceptors; defaults to status checking, rate limit
                tracking and throttling, in that order
            transport: Terminal handler performing the request

        """
        self.base_url = base_url.rstrip("/")
        self.name = name
        self.headers = dict(headers or {})
        self.auth = auth
        self.rate_limit = RateLimitTracker(name)
        if middlewares is None:
            middlewares = [raise_for_status_middleware, self.rate_limit, throttle_middleware]
        self._handler = build_chain(middlewares, transport)

    def url(self, path: str) -> str:
        """Resolve ``path`` against the base URL unless it is absolute."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: object | None = None,
        data: object | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        """Send a request through the middleware chain."""
        request = HttpRequest(
            method=method,
            url=self.url(path),
            headers={**self.headers, **(headers or {})},
            params=params,
            json_body=json_body,
            data=data,
            auth=self.auth,
        )
        return await self._handler(request)

    async def get_json(self, path: str, params: Mapping[str, str] | None = None) -> object:
        """GET and decode JSON."""
        response = await self.request("GET", path, params=params)
        return response.json()

    async def post_json(self, path: str, body: object | None = None) -> object:
        """POST a JSON body and decode the JSON response."""
        response = await self.request("POST", path, json_body=body)
        return response.json()

    async def put_json(self, path: str, body: object | None = None) -> object:
        """PUT a JSON body and decode the JSON response."""
        response = await self.request("PUT", path, json_body=body)
        return response.json()

    async def patch_json(self, path: str, body: object | None = None) -> object:
        """PATCH a JSON body and decode the JSON response."""
        response = await self.request("PATCH", path, json_body=body)
        return response.json()

    async def get_text(self, path: str, params: Mapping[str, str] | None = None) -> str:
        """GET and return the raw body."""
        response = await self.request("GET", path, params=params)
        return response.text
