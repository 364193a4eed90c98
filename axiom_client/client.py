"""Authenticated HTTP transport with retry and error classification."""

from __future__ import annotations

import asyncio
import collections.abc as cabc
import functools
import re
import types
import typing as typ

import httpx
import msgspec
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_before_delay,
    wait_exponential,
)

from axiom_client.config import ClientConfig
from axiom_client.errors import (
    AlreadyExistsError,
    HTTPError,
    NotFoundError,
    RateLimitedError,
    ResponseDecodeError,
    RetriesExhaustedError,
    TransportError,
    UnauthenticatedError,
    UnauthorizedError,
    UndecodableContentTypeError,
    UnprivilegedTokenError,
)
from axiom_client.ingest.service import DatasetsService
from axiom_client.observability import ClientEventLogger
from axiom_client.response import (
    HTTP_STATUS_LIMIT_EXCEEDED,
    Limit,
    LimitType,
    Response,
    parse_limit,
)

HEADER_AUTHORIZATION = "Authorization"
HEADER_ORGANIZATION_ID = "X-Axiom-Org-Id"
HEADER_ACCEPT = "Accept"
HEADER_CONTENT_TYPE = "Content-Type"
HEADER_USER_AGENT = "User-Agent"

MEDIA_TYPE_JSON = "application/json"
MEDIA_TYPE_OCTET_STREAM = "application/octet-stream"

_HTTP_ERROR_STATUS_THRESHOLD = 400
_HTTP_SERVER_ERROR_THRESHOLD = 500
_HTTP_TOO_MANY_REQUESTS = 429
_RATE_LIMITED_STATUSES = frozenset({_HTTP_TOO_MANY_REQUESTS, HTTP_STATUS_LIMIT_EXCEEDED})
_FILE_CHUNK_SIZE = 64 * 1024

# Paths an API token is allowed to reach.
_VALID_API_TOKEN_PATHS = re.compile(
    r"^/api/v1/(datasets/([^/]+/(ingest|query)|_apl)|tokens/ingest/validate)$"
)

type StreamBody = bytes | bytearray | typ.BinaryIO | cabc.AsyncIterable[bytes]


class _SupportsWrite(typ.Protocol):
    def write(self, data: bytes, /) -> object: ...


class _ErrorBody(msgspec.Struct):
    """JSON error payload returned by the API."""

    message: str = ""


class _RetryableStatusError(Exception):
    """Internal signal that a response status warrants another attempt."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"got status code {response.status_code}")


def is_allowed_for_api_token(path: str) -> bool:
    """Return True when an API token may call ``path``."""
    return _VALID_API_TOKEN_PATHS.match(path) is not None


def _is_stream_body(body: object) -> bool:
    return (
        isinstance(body, bytes | bytearray | cabc.AsyncIterable)
        or callable(getattr(body, "read", None))
    )


async def _iter_file(reader: typ.BinaryIO) -> cabc.AsyncIterator[bytes]:
    while chunk := await asyncio.to_thread(reader.read, _FILE_CHUNK_SIZE):
        yield chunk


def _as_content(body: StreamBody) -> bytes | cabc.AsyncIterable[bytes]:
    if isinstance(body, bytes | bytearray):
        return bytes(body)
    if isinstance(body, cabc.AsyncIterable):
        return body
    return _iter_file(body)


def _is_json(response: httpx.Response) -> bool:
    return response.headers.get(HEADER_CONTENT_TYPE, "").startswith(MEDIA_TYPE_JSON)


@functools.cache
def _strict_variant(struct_type: type[msgspec.Struct]) -> type[msgspec.Struct]:
    """Return a subclass of ``struct_type`` that rejects unknown fields."""
    return types.new_class(
        struct_type.__name__,
        (struct_type,),
        {"forbid_unknown_fields": True},
    )


class AxiomClient:
    """Client for the Axiom HTTP API.

    The client owns one ``httpx.AsyncClient`` (and its connection pool),
    which is shared by every call and safe for concurrent use.

    Parameters
    ----------
    config
        Connection settings. Read from ``AXIOM_*`` environment variables
        when omitted.
    http_client
        Optional httpx client, typically one with a mock transport in
        tests. When not provided the instance creates and owns its own.

    Examples
    --------
    >>> import asyncio
    >>> from axiom_client import AxiomClient, ClientConfig
    >>> async def main() -> None:
    ...     async with AxiomClient(ClientConfig(access_token="xaat-...")) as client:
    ...         await client.datasets.ingest_events("logs", [{"message": "hi"}])
    >>> # asyncio.run(main())

    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client and its services."""
        self._config = config if config is not None else ClientConfig.from_env()
        self._base_url = httpx.URL(self._config.url)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=self._config.timeout_s,
            follow_redirects=True,
        )
        self._events = ClientEventLogger()
        self.datasets = DatasetsService(self)

    @property
    def config(self) -> ClientConfig:
        """Read-only access to the client configuration."""
        return self._config

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> typ.Self:
        """Return the client for use as an async context manager."""
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Close owned resources when leaving the context."""
        await self.aclose()

    def new_request(
        self,
        method: str,
        path: str,
        body: object | None = None,
        *,
        params: cabc.Mapping[str, str] | None = None,
        headers: cabc.Mapping[str, str] | None = None,
    ) -> httpx.Request:
        """Build an authenticated request for ``path``.

        Parameters
        ----------
        method
            HTTP method.
        path
            API path, resolved against the configured base URL.
        body
            Raw payload (bytes, binary file object or async byte iterator)
            sent as-is, or any other value, which is JSON encoded.
        params
            Query parameters; empty values are omitted.
        headers
            Extra headers applied after the defaults.

        Returns
        -------
        httpx.Request
            The request, ready for :meth:`do`.

        Raises
        ------
        UnprivilegedTokenError
            If an API token is used for a path outside the allow-list. No
            network call is made.

        """
        url = self._base_url.join(path)
        if self._config.is_api_token and not is_allowed_for_api_token(url.path):
            raise UnprivilegedTokenError(url.path)

        request_headers: dict[str, str] = {
            HEADER_ACCEPT: MEDIA_TYPE_JSON,
            HEADER_USER_AGENT: self._config.user_agent,
            HEADER_AUTHORIZATION: f"Bearer {self._config.access_token}",
        }
        if self._config.is_personal_token and self._config.org_id:
            request_headers[HEADER_ORGANIZATION_ID] = self._config.org_id

        content: bytes | cabc.AsyncIterable[bytes] | None = None
        if body is not None:
            if _is_stream_body(body):
                content = _as_content(typ.cast("StreamBody", body))
                request_headers[HEADER_CONTENT_TYPE] = MEDIA_TYPE_OCTET_STREAM
            else:
                content = msgspec.json.encode(body)
                request_headers[HEADER_CONTENT_TYPE] = MEDIA_TYPE_JSON

        if headers:
            request_headers.update(headers)

        query = {key: value for key, value in (params or {}).items() if value}
        return self._http.build_request(
            method,
            url,
            params=query or None,
            content=content,
            headers=request_headers,
        )

    async def call[T](
        self,
        method: str,
        path: str,
        body: object | None = None,
        *,
        params: cabc.Mapping[str, str] | None = None,
        result_type: type[T] | None = None,
    ) -> T | None:
        """Build a request, execute it and return the decoded value."""
        request = self.new_request(method, path, body, params=params)
        response = await self.do(request, result_type=result_type)
        return response.value

    async def do[T](
        self,
        request: httpx.Request,
        *,
        result_type: type[T] | None = None,
        sink: _SupportsWrite | None = None,
    ) -> Response[T]:
        """Execute ``request`` with retries and decode the response.

        Transport failures and ``5xx`` responses are retried with
        exponential backoff until the configured budget runs out. Requests
        with a streaming body cannot be replayed and get a single attempt.

        Parameters
        ----------
        request
            Request built by :meth:`new_request`.
        result_type
            Type to decode a JSON response body into.
        sink
            Writable receiving the raw response body instead of decoding.

        Returns
        -------
        Response[T]
            The completed response; its body has been consumed and closed.

        Raises
        ------
        RetriesExhaustedError
            If every attempt within the budget got a ``5xx`` response.
        TransportError
            If every attempt within the budget failed on the network.
        HTTPError
            For ``4xx`` responses; well-known codes map to subclasses.
        UndecodableContentTypeError
            If ``result_type`` is given but the response is not JSON.
        ResponseDecodeError
            If a JSON body does not match the expected shape.

        """
        raw = await self._send_with_retry(request)
        try:
            if raw.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
                await raw.aread()
                error = self._error_from_response(raw)
                self._events.log_request_failed(
                    method=request.method,
                    url=str(request.url),
                    status_code=raw.status_code,
                    error=str(error),
                )
                raise error

            if sink is not None:
                async for chunk in raw.aiter_bytes():
                    sink.write(chunk)
                return Response.wrap(raw)

            body = await raw.aread()
            if result_type is None:
                return Response.wrap(raw)
            if not _is_json(raw):
                raise UndecodableContentTypeError(
                    raw.headers.get(HEADER_CONTENT_TYPE, "")
                )
            return Response.wrap(raw, self._decode(body, result_type))
        finally:
            await raw.aclose()

    def _decode[T](self, body: bytes, result_type: type[T]) -> T:
        target: type[typ.Any] = result_type
        if (
            self._config.strict_decoding
            and isinstance(result_type, type)
            and issubclass(result_type, msgspec.Struct)
        ):
            target = _strict_variant(result_type)
        try:
            return msgspec.json.decode(body, type=target)
        except msgspec.DecodeError as exc:
            raise ResponseDecodeError.result_body(str(exc)) from exc

    async def _send_with_retry(self, request: httpx.Request) -> httpx.Response:
        """Send ``request``, retrying transport failures and ``5xx``."""
        policy = self._config.retry
        replayable = isinstance(request.stream, httpx.ByteStream)
        retrying = AsyncRetrying(
            stop=(
                stop_before_delay(policy.max_elapsed_s)
                if replayable
                else stop_after_attempt(1)
            ),
            wait=wait_exponential(
                multiplier=policy.initial_interval_s, exp_base=policy.multiplier
            ),
            retry=retry_if_exception_type((httpx.TransportError, _RetryableStatusError)),
            before_sleep=functools.partial(self._log_retry, request),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send_once(request)
        except _RetryableStatusError as exc:
            raise RetriesExhaustedError(
                status_code=exc.response.status_code,
                attempts=retrying.statistics.get("attempt_number", 1),
                response=exc.response,
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError.network(
                exc, attempts=retrying.statistics.get("attempt_number", 1)
            ) from exc
        msg = "retry loop finished without an outcome"
        raise RuntimeError(msg)

    async def _send_once(self, request: httpx.Request) -> httpx.Response:
        response = await self._http.send(request, stream=True)
        if response.status_code >= _HTTP_SERVER_ERROR_THRESHOLD:
            # Drain so the connection can be reused before the next attempt.
            await response.aread()
            await response.aclose()
            raise _RetryableStatusError(response)
        return response

    def _log_retry(self, request: httpx.Request, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, _RetryableStatusError):
            reason = f"status {exc.response.status_code}"
        else:
            reason = repr(exc)
        next_action = retry_state.next_action
        self._events.log_retry(
            method=request.method,
            url=str(request.url),
            attempt=retry_state.attempt_number,
            wait_s=next_action.sleep if next_action is not None else 0.0,
            reason=reason,
        )

    def _error_from_response(self, response: httpx.Response) -> HTTPError:
        """Map an error response onto the client's exception types.

        Raises
        ------
        ResponseDecodeError
            If the body claims to be JSON but cannot be decoded.

        """
        status_code = response.status_code
        if status_code in _RATE_LIMITED_STATUSES:
            limit = parse_limit(response.headers) or Limit(limit_type=LimitType.RATE)
            return RateLimitedError(limit, status_code=status_code, response=response)

        match status_code:
            case 401:
                return UnauthenticatedError(response=response)
            case 403:
                return UnauthorizedError(response=response)
            case 404:
                return NotFoundError(response=response)
            case 409:
                return AlreadyExistsError(response=response)

        if not _is_json(response):
            return HTTPError.from_status(status_code, response=response)

        try:
            payload = msgspec.json.decode(response.content, type=_ErrorBody)
        except msgspec.DecodeError as exc:
            raise ResponseDecodeError.error_body(status_code, response.text) from exc

        message = payload.message or response.text.replace("\n", " ")
        return HTTPError(message, status_code=status_code, response=response)


__all__ = [
    "MEDIA_TYPE_JSON",
    "MEDIA_TYPE_OCTET_STREAM",
    "AxiomClient",
    "StreamBody",
    "is_allowed_for_api_token",
]
