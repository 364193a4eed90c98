"""Scripted httpx transport standing in for the Axiom API."""

from __future__ import annotations

import typing as typ

import httpx
import msgspec

from axiom_client.config import RetryPolicy

if typ.TYPE_CHECKING:
    import collections.abc as cabc

type Reply = cabc.Callable[[httpx.Request], httpx.Response] | Exception

TEST_URL = "https://axiom.test"
API_TOKEN = "xaat-00000000-0000-0000-0000-000000000000"
PERSONAL_TOKEN = "xapt-00000000-0000-0000-0000-000000000000"

# Short enough to keep retry tests fast, long enough for several attempts.
FAST_RETRY = RetryPolicy(initial_interval_s=0.001, multiplier=1.0, max_elapsed_s=0.05)


def respond(
    status_code: int,
    content: bytes = b"",
    headers: cabc.Mapping[str, str] | None = None,
) -> Reply:
    """Reply with a raw body."""

    def reply(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code, content=content, headers=headers, request=request
        )

    return reply


def respond_json(
    status_code: int,
    payload: object,
    headers: cabc.Mapping[str, str] | None = None,
) -> Reply:
    """Reply with ``payload`` encoded as JSON."""
    merged = {"Content-Type": "application/json", **(headers or {})}
    return respond(status_code, msgspec.json.encode(payload), merged)


class MockAPI:
    """Answer requests from a script of replies.

    Replies are used in order; the last one repeats for any further
    requests. An exception in the script is raised as the transport's
    failure. Every request is recorded with its body already read.
    """

    def __init__(self, *replies: Reply) -> None:
        """Store the reply script."""
        self.requests: list[httpx.Request] = []
        self._replies = list(replies)

    @property
    def request(self) -> httpx.Request:
        """The only request received."""
        assert len(self.requests) == 1, f"expected 1 request, got {len(self.requests)}"
        return self.requests[0]

    def transport(self) -> httpx.MockTransport:
        """Return an httpx transport backed by this script."""
        return httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert self._replies, f"unexpected request {request.method} {request.url}"
        reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply(request)
