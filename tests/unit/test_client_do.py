"""Unit tests for sending requests: retries, error mapping and decoding."""

from __future__ import annotations

import io
import typing as typ

import httpx
import msgspec
import pytest

from axiom_client.config import ClientConfig, RetryPolicy
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
)
from axiom_client.ingest.models import IngestFailure, IngestStatus
from axiom_client.response import LimitScope, LimitType
from tests.helpers.mock_api import (
    API_TOKEN,
    TEST_URL,
    MockAPI,
    respond,
    respond_json,
)

if typ.TYPE_CHECKING:
    from tests.conftest import ClientFactory

INGEST_PATH = "/api/v1/datasets/test/ingest"


class _Status(msgspec.Struct):
    ingested: int = 0


@pytest.mark.asyncio
async def test_server_errors_are_retried_until_success(
    make_client: ClientFactory,
) -> None:
    """5xx responses are retried with the same body."""
    api = MockAPI(respond(500), respond(503), respond_json(200, {"ingested": 2}))
    client = make_client(api)

    status = await client.call("POST", INGEST_PATH, b"{}\n{}\n", result_type=_Status)

    assert status == _Status(ingested=2)
    assert len(api.requests) == 3
    assert {request.content for request in api.requests} == {b"{}\n{}\n"}


@pytest.mark.asyncio
async def test_persistent_server_errors_exhaust_the_budget(
    make_client: ClientFactory,
) -> None:
    """The last status is reported once the backoff budget is spent."""
    api = MockAPI(respond(502))
    client = make_client(api)

    with pytest.raises(RetriesExhaustedError) as excinfo:
        await client.call("POST", INGEST_PATH, b"{}\n")

    error = excinfo.value
    assert error.status_code == 502
    assert len(api.requests) >= 2, "Expected at least one retry."
    assert error.attempts == len(api.requests)


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_surface(
    make_client: ClientFactory,
) -> None:
    """Network failures retry and finally raise TransportError."""
    api = MockAPI(httpx.ConnectError("connection refused"))
    client = make_client(api)

    with pytest.raises(TransportError, match="connection refused") as excinfo:
        await client.call("POST", INGEST_PATH, b"{}\n")

    assert excinfo.value.attempts == len(api.requests) >= 2
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_zero_budget_makes_a_single_attempt(make_client: ClientFactory) -> None:
    """With no elapsed budget the first failure is final."""
    config = ClientConfig(
        access_token=API_TOKEN, url=TEST_URL, retry=RetryPolicy(max_elapsed_s=0.0)
    )
    api = MockAPI(respond(500))
    client = make_client(api, config)

    with pytest.raises(RetriesExhaustedError, match="after 1 attempt"):
        await client.call("POST", INGEST_PATH, b"{}\n")

    assert len(api.requests) == 1


@pytest.mark.asyncio
async def test_streaming_bodies_are_not_replayed(make_client: ClientFactory) -> None:
    """A body that can only be read once gets exactly one attempt."""
    api = MockAPI(respond(500))
    client = make_client(api)

    async def body() -> typ.AsyncIterator[bytes]:
        yield b"{}\n"

    with pytest.raises(RetriesExhaustedError):
        await client.call("POST", INGEST_PATH, body())

    assert len(api.requests) == 1


@pytest.mark.asyncio
async def test_rate_limit_fails_immediately_with_limit(
    make_client: ClientFactory,
) -> None:
    """429 is not retried and carries the parsed limit headers."""
    api = MockAPI(
        respond(
            429,
            headers={
                "X-RateLimit-Scope": "user",
                "X-RateLimit-Limit": "1000",
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": "1700000000",
            },
        )
    )
    client = make_client(api)

    with pytest.raises(RateLimitedError) as excinfo:
        await client.call("POST", INGEST_PATH, b"{}\n")

    limit = excinfo.value.limit
    assert len(api.requests) == 1
    assert excinfo.value.status_code == 429
    assert limit.limit_type is LimitType.RATE
    assert limit.scope is LimitScope.USER
    assert (limit.limit, limit.remaining) == (1000, 0)
    assert limit.reset is not None
    assert int(limit.reset.timestamp()) == 1700000000


@pytest.mark.asyncio
async def test_ingest_quota_maps_to_rate_limited(make_client: ClientFactory) -> None:
    """430 reports the ingest quota that was exceeded."""
    api = MockAPI(
        respond(430, headers={"X-IngestLimit-Limit": "10", "X-IngestLimit-Remaining": "0"})
    )
    client = make_client(api)

    with pytest.raises(RateLimitedError) as excinfo:
        await client.call("POST", INGEST_PATH, b"{}\n")

    assert excinfo.value.limit.limit_type is LimitType.INGEST
    assert excinfo.value.limit.reset is None


@pytest.mark.parametrize(
    ("status_code", "error_type", "message"),
    [
        (401, UnauthenticatedError, "invalid authentication credentials"),
        (403, UnauthorizedError, "not authorized to access the resource"),
        (404, NotFoundError, "not found"),
        (409, AlreadyExistsError, "entity exists"),
    ],
)
@pytest.mark.asyncio
async def test_well_known_statuses_map_to_error_types(
    make_client: ClientFactory,
    status_code: int,
    error_type: type[HTTPError],
    message: str,
) -> None:
    """Well-known statuses use fixed messages whatever the body says."""
    api = MockAPI(respond_json(status_code, {"message": "ignored"}))
    client = make_client(api)

    with pytest.raises(error_type) as excinfo:
        await client.call("POST", INGEST_PATH, b"{}\n")

    assert excinfo.value.status_code == status_code
    assert excinfo.value.message == message
    assert str(excinfo.value) == f"API error {status_code}: {message}"


@pytest.mark.asyncio
async def test_json_error_message_is_used(make_client: ClientFactory) -> None:
    """Other 4xx responses surface the server's message."""
    client = make_client(MockAPI(respond_json(400, {"message": "bad field name"})))

    with pytest.raises(HTTPError) as excinfo:
        await client.call("POST", INGEST_PATH, b"{}\n")

    assert type(excinfo.value) is HTTPError
    assert excinfo.value.message == "bad field name"


@pytest.mark.asyncio
async def test_json_error_without_message_falls_back_to_body(
    make_client: ClientFactory,
) -> None:
    """A JSON body without a message is used verbatim, on one line."""
    body = b'{\n"code": 422\n}'
    client = make_client(
        MockAPI(respond(422, body, {"Content-Type": "application/json"}))
    )

    with pytest.raises(HTTPError) as excinfo:
        await client.call("POST", INGEST_PATH, b"{}\n")

    assert excinfo.value.message == '{ "code": 422 }'


@pytest.mark.asyncio
async def test_non_json_error_uses_reason_phrase(make_client: ClientFactory) -> None:
    """Plain-text error bodies are replaced by the status text."""
    client = make_client(
        MockAPI(respond(400, b"<html>nope</html>", {"Content-Type": "text/html"}))
    )

    with pytest.raises(HTTPError, match="API error 400: Bad Request"):
        await client.call("POST", INGEST_PATH, b"{}\n")


@pytest.mark.asyncio
async def test_undecodable_json_error_raises_decode_error(
    make_client: ClientFactory,
) -> None:
    """A body that claims to be JSON but is not cannot be classified."""
    client = make_client(
        MockAPI(respond(400, b"{not json", {"Content-Type": "application/json"}))
    )

    with pytest.raises(ResponseDecodeError, match="400"):
        await client.call("POST", INGEST_PATH, b"{}\n")


@pytest.mark.asyncio
async def test_sink_receives_raw_body(make_client: ClientFactory) -> None:
    """A sink gets the body verbatim instead of it being decoded."""
    client = make_client(
        MockAPI(respond(200, b"raw,csv\n", {"Content-Type": "text/csv"}))
    )
    sink = io.BytesIO()

    request = client.new_request("POST", "/api/v1/datasets/_apl", {"apl": "x"})
    response = await client.do(request, sink=sink)

    assert sink.getvalue() == b"raw,csv\n"
    assert response.value is None
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_result_from_non_json_response_is_rejected(
    make_client: ClientFactory,
) -> None:
    """Asking for a result from a non-JSON response fails."""
    client = make_client(MockAPI(respond(200, b"ok", {"Content-Type": "text/plain"})))

    with pytest.raises(UndecodableContentTypeError, match="text/plain"):
        await client.call("POST", INGEST_PATH, b"{}\n", result_type=_Status)


@pytest.mark.asyncio
async def test_strict_decoding_rejects_unknown_fields(
    make_client: ClientFactory,
) -> None:
    """Unknown fields are ignored unless strict decoding is enabled."""
    reply = respond_json(200, {"ingested": 1, "surprise": True})
    lenient = make_client(MockAPI(reply))
    strict = make_client(
        MockAPI(reply),
        ClientConfig(access_token=API_TOKEN, url=TEST_URL, strict_decoding=True),
    )

    assert await lenient.call("POST", INGEST_PATH, b"", result_type=_Status) == (
        _Status(ingested=1)
    )
    with pytest.raises(ResponseDecodeError, match="surprise"):
        await strict.call("POST", INGEST_PATH, b"", result_type=_Status)


@pytest.mark.asyncio
async def test_strict_decoding_checks_top_level_fields_only(
    make_client: ClientFactory,
) -> None:
    """Nested objects keep ignoring unknown fields in strict mode."""
    client = make_client(
        MockAPI(
            respond_json(
                200,
                {
                    "ingested": 0,
                    "failed": 1,
                    "failures": [{"error": "bad timestamp", "surprise": True}],
                },
            )
        ),
        ClientConfig(access_token=API_TOKEN, url=TEST_URL, strict_decoding=True),
    )

    status = await client.call("POST", INGEST_PATH, b"", result_type=IngestStatus)

    assert status is not None
    assert status.failures == (IngestFailure(error="bad timestamp"),)


@pytest.mark.asyncio
async def test_response_exposes_limit_and_history_headers(
    make_client: ClientFactory,
) -> None:
    """Successful responses carry rate-limit and saved-query metadata."""
    client = make_client(
        MockAPI(
            respond_json(
                200,
                {},
                {
                    "X-QueryLimit-Limit": "50",
                    "X-QueryLimit-Remaining": "49",
                    "X-Axiom-History-Query-Id": "q-1",
                },
            )
        )
    )

    request = client.new_request("POST", "/api/v1/datasets/_apl", {"apl": "x"})
    response = await client.do(request)

    assert response.history_query_id == "q-1"
    assert response.limit is not None
    assert response.limit.limit_type is LimitType.QUERY
    assert response.limit.remaining == 49
