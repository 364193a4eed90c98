"""Shared fixtures for the client tests."""

from __future__ import annotations

import typing as typ

import httpx
import pytest
import pytest_asyncio

from axiom_client import AxiomClient, ClientConfig
from tests.helpers.mock_api import (
    API_TOKEN,
    FAST_RETRY,
    PERSONAL_TOKEN,
    TEST_URL,
    MockAPI,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc


@pytest.fixture
def api_config() -> ClientConfig:
    """Configuration using an API token against a test deployment."""
    return ClientConfig(access_token=API_TOKEN, url=TEST_URL, retry=FAST_RETRY)


@pytest.fixture
def personal_config() -> ClientConfig:
    """Configuration using a personal token with an organization."""
    return ClientConfig(
        access_token=PERSONAL_TOKEN, org_id="acme", url=TEST_URL, retry=FAST_RETRY
    )


type ClientFactory = cabc.Callable[..., AxiomClient]


@pytest_asyncio.fixture
async def make_client(
    api_config: ClientConfig,
) -> cabc.AsyncIterator[ClientFactory]:
    """Build clients wired to a :class:`MockAPI`; closes them afterwards."""
    opened: list[httpx.AsyncClient] = []

    def factory(api: MockAPI, config: ClientConfig | None = None) -> AxiomClient:
        http_client = httpx.AsyncClient(transport=api.transport())
        opened.append(http_client)
        return AxiomClient(config or api_config, http_client=http_client)

    yield factory

    for http_client in opened:
        await http_client.aclose()
