"""Exceptions raised by the Axiom client.

Every error derives from :class:`AxiomError`, so callers can catch the
whole family at once. Errors raised before any network I/O (configuration,
token capability, content type validation) are distinct types from the
errors decoded out of server responses.
"""

from __future__ import annotations

import http
import typing as typ

if typ.TYPE_CHECKING:
    import httpx

    from axiom_client.response import Limit

_BODY_PREVIEW_LIMIT = 200


def _reason_phrase(status_code: int) -> str:
    try:
        return http.HTTPStatus(status_code).phrase
    except ValueError:
        return f"HTTP {status_code}"


class AxiomError(Exception):
    """Base exception for all client errors."""


class ConfigError(AxiomError):
    """Raised when the client configuration is incomplete or invalid."""

    @classmethod
    def missing_access_token(cls) -> ConfigError:
        """Return an error when no access token is configured."""
        return cls("missing access token: set AXIOM_TOKEN or pass access_token")

    @classmethod
    def invalid_access_token(cls) -> ConfigError:
        """Return an error when the token has no recognised prefix."""
        return cls(
            "invalid access token: expected an API token (xaat-) "
            "or a personal token (xapt-)"
        )

    @classmethod
    def missing_organization_id(cls) -> ConfigError:
        """Return an error for a personal token without an organization."""
        return cls(
            "missing organization id: personal tokens require AXIOM_ORG_ID "
            "when talking to Axiom Cloud"
        )

    @classmethod
    def invalid_url(cls, url: str) -> ConfigError:
        """Return an error for a deployment URL that cannot be used."""
        return cls(f"invalid deployment url {url!r}: expected http(s)://host")

    @classmethod
    def invalid_parameter(cls, name: str, value: str, constraint: str) -> ConfigError:
        """Return an error for an out-of-range configuration value."""
        return cls(f"invalid {name} {value!r}: {constraint}")


class UnprivilegedTokenError(AxiomError):
    """Raised locally when an API token targets a path it cannot reach.

    This is a capability check to fail early; the server remains the
    authority on what a token may access.
    """

    def __init__(self, path: str) -> None:
        """Record the rejected request path."""
        self.path = path
        super().__init__(
            f"using API token for non-ingest or non-query operation: {path}"
        )


class UnknownContentTypeError(AxiomError, ValueError):
    """Raised when an ingest call names an unsupported content type."""

    def __init__(self, value: object) -> None:
        """Record the rejected value."""
        self.value = value
        super().__init__(f"unknown content type: {value!r}")


class UnknownContentEncodingError(AxiomError, ValueError):
    """Raised when an ingest call names an unsupported content encoding."""

    def __init__(self, value: object) -> None:
        """Record the rejected value."""
        self.value = value
        super().__init__(f"unknown content encoding: {value!r}")


class ContentTypeDetectionError(AxiomError):
    """Raised when a byte stream cannot be classified for ingestion."""

    @classmethod
    def empty_input(cls) -> ContentTypeDetectionError:
        """Return an error for input that holds only whitespace."""
        return cls("couldn't find beginning of supported ingestion format")

    @classmethod
    def unknown_format(cls) -> ContentTypeDetectionError:
        """Return an error for input starting with an unsupported character."""
        return cls("cannot determine content type")


class EventEncodingError(AxiomError):
    """Raised when events cannot be serialized or compressed for sending."""

    @classmethod
    def serialization(cls, index: int, exc: BaseException) -> EventEncodingError:
        """Return an error for an event that failed to encode."""
        error = cls(f"failed to encode event {index}: {exc}")
        error.__cause__ = exc
        return error

    @classmethod
    def source(cls, exc: BaseException) -> EventEncodingError:
        """Return an error for an event source that raised while iterating."""
        error = cls(f"event source failed: {exc}")
        error.__cause__ = exc
        return error

    @classmethod
    def compression(cls, exc: BaseException) -> EventEncodingError:
        """Return an error for a compressor that failed to finish its frame."""
        error = cls(f"failed to close compressor: {exc}")
        error.__cause__ = exc
        return error

    @classmethod
    def unexpected(cls, exc: BaseException) -> EventEncodingError:
        """Return an error for any other failure of the encoding task."""
        error = cls(f"event encoding failed: {exc}")
        error.__cause__ = exc
        return error

    @classmethod
    def interrupted(cls) -> EventEncodingError:
        """Return an error for an encoding task stopped before it finished."""
        return cls("event encoding was interrupted")


class TransportError(AxiomError):
    """Raised when the request never produced a response."""

    def __init__(self, message: str, *, attempts: int = 1) -> None:
        """Record how many attempts were made before giving up."""
        self.attempts = attempts
        super().__init__(message)

    @classmethod
    def network(cls, exc: BaseException, *, attempts: int) -> TransportError:
        """Return an error wrapping the last network failure."""
        return cls(
            f"request failed after {attempts} attempt(s): {exc}", attempts=attempts
        )


class HTTPError(AxiomError):
    """Raised for responses with a status code of 400 or above.

    Attributes
    ----------
    status_code
        HTTP status code of the response.
    message
        Message decoded from the error body, or the status reason phrase.
    response
        The wrapped response, when one is available.

    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        response: httpx.Response | None = None,
    ) -> None:
        """Initialise the error with its message and status code."""
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(f"API error {status_code}: {message}")

    @classmethod
    def from_status(
        cls, status_code: int, *, response: httpx.Response | None = None
    ) -> HTTPError:
        """Return an error using the reason phrase as the message."""
        return cls(
            _reason_phrase(status_code), status_code=status_code, response=response
        )


class UnauthenticatedError(HTTPError):
    """Raised for ``401 Unauthorized``: the credentials were rejected."""

    def __init__(self, *, response: httpx.Response | None = None) -> None:
        """Initialise with the fixed authentication message."""
        super().__init__(
            "invalid authentication credentials", status_code=401, response=response
        )


class UnauthorizedError(HTTPError):
    """Raised for ``403 Forbidden``: the credentials lack permission."""

    def __init__(self, *, response: httpx.Response | None = None) -> None:
        """Initialise with the fixed authorization message."""
        super().__init__(
            "not authorized to access the resource", status_code=403, response=response
        )


class NotFoundError(HTTPError):
    """Raised for ``404 Not Found``."""

    def __init__(self, *, response: httpx.Response | None = None) -> None:
        """Initialise with the fixed not-found message."""
        super().__init__("not found", status_code=404, response=response)


class AlreadyExistsError(HTTPError):
    """Raised for ``409 Conflict``: the entity already exists."""

    def __init__(self, *, response: httpx.Response | None = None) -> None:
        """Initialise with the fixed conflict message."""
        super().__init__("entity exists", status_code=409, response=response)


class RateLimitedError(HTTPError):
    """Raised when a rate, query or ingest limit has been exceeded.

    Attributes
    ----------
    limit
        Limit metadata parsed from the response headers.

    """

    def __init__(
        self,
        limit: Limit,
        *,
        status_code: int,
        response: httpx.Response | None = None,
    ) -> None:
        """Initialise the error from the parsed limit headers."""
        self.limit = limit
        reset = limit.reset.isoformat() if limit.reset is not None else "unknown"
        super().__init__(
            f"{limit.limit_type} limit exceeded, resets at {reset}",
            status_code=status_code,
            response=response,
        )


class RetriesExhaustedError(HTTPError):
    """Raised when server errors persisted for the whole backoff budget."""

    def __init__(
        self,
        *,
        status_code: int,
        attempts: int,
        response: httpx.Response | None = None,
    ) -> None:
        """Record the last status code and the number of attempts."""
        self.attempts = attempts
        super().__init__(
            f"got status code {status_code} after {attempts} attempt(s)",
            status_code=status_code,
            response=response,
        )


class ResponseDecodeError(AxiomError):
    """Raised when a JSON response body cannot be decoded."""

    @classmethod
    def error_body(cls, status_code: int, body: str) -> ResponseDecodeError:
        """Return an error for a JSON error body that failed to decode."""
        return cls(
            f"error decoding {status_code} error response: "
            f"{body[:_BODY_PREVIEW_LIMIT]}"
        )

    @classmethod
    def result_body(cls, detail: str) -> ResponseDecodeError:
        """Return an error for a success body that failed to decode."""
        return cls(f"error decoding response: {detail}")


class UndecodableContentTypeError(AxiomError):
    """Raised when a result is expected but the response is not JSON."""

    def __init__(self, content_type: str) -> None:
        """Record the content type that could not be decoded."""
        self.content_type = content_type
        super().__init__(
            f"cannot decode response with unknown content type {content_type!r}"
        )


__all__ = [
    "AlreadyExistsError",
    "AxiomError",
    "ConfigError",
    "ContentTypeDetectionError",
    "EventEncodingError",
    "HTTPError",
    "NotFoundError",
    "RateLimitedError",
    "ResponseDecodeError",
    "RetriesExhaustedError",
    "TransportError",
    "UnauthenticatedError",
    "UnauthorizedError",
    "UndecodableContentTypeError",
    "UnknownContentEncodingError",
    "UnknownContentTypeError",
    "UnprivilegedTokenError",
]
