"""Configuration for the Axiom client."""

from __future__ import annotations

import dataclasses
import os
import urllib.parse

from axiom_client._version import __version__
from axiom_client.errors import ConfigError

CLOUD_URL = "https://api.axiom.co"

_API_TOKEN_PREFIXES = ("xaat-", "xait-")
_PERSONAL_TOKEN_PREFIX = "xapt-"

_DEFAULT_USER_AGENT = f"axiom-client/{__version__}"
_DEFAULT_TIMEOUT_S = 30.0

_DEFAULT_INITIAL_INTERVAL_S = 0.2
_DEFAULT_MULTIPLIER = 2.0
_DEFAULT_MAX_ELAPSED_S = 10.0


def is_api_token(token: str) -> bool:
    """Return True for capability-scoped API (or legacy ingest) tokens."""
    return token.startswith(_API_TOKEN_PREFIXES)


def is_personal_token(token: str) -> bool:
    """Return True for personal tokens, which act on behalf of a user."""
    return token.startswith(_PERSONAL_TOKEN_PREFIX)


def is_valid_token(token: str) -> bool:
    """Return True when ``token`` carries a recognised prefix."""
    return is_api_token(token) or is_personal_token(token)


@dataclasses.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff applied to retryable requests.

    Attributes
    ----------
    initial_interval_s
        Wait before the first retry.
    multiplier
        Growth factor applied to the wait after every retry.
    max_elapsed_s
        Total budget after which the last failure is surfaced.

    """

    initial_interval_s: float = _DEFAULT_INITIAL_INTERVAL_S
    multiplier: float = _DEFAULT_MULTIPLIER
    max_elapsed_s: float = _DEFAULT_MAX_ELAPSED_S

    def __post_init__(self) -> None:
        """Reject values that would make the backoff meaningless."""
        if self.initial_interval_s < 0:
            raise ConfigError.invalid_parameter(
                "initial_interval_s", str(self.initial_interval_s), "must be >= 0"
            )
        if self.multiplier < 1:
            raise ConfigError.invalid_parameter(
                "multiplier", str(self.multiplier), "must be >= 1"
            )
        if self.max_elapsed_s < 0:
            raise ConfigError.invalid_parameter(
                "max_elapsed_s", str(self.max_elapsed_s), "must be >= 0"
            )


@dataclasses.dataclass(frozen=True, slots=True)
class ClientConfig:
    """Connection settings for an :class:`~axiom_client.client.AxiomClient`.

    Attributes
    ----------
    access_token
        API token (``xaat-``) or personal token (``xapt-``).
    org_id
        Organization ID; only sent alongside personal tokens.
    url
        Base URL of the deployment.
    user_agent
        Value of the ``User-Agent`` header.
    timeout_s
        Per-request timeout handed to httpx.
    strict_decoding
        Reject unknown top-level fields when decoding responses. Only the
        outermost object is checked: nested structures such as
        ``IngestFailure`` or ``QueryStatus`` still ignore fields they do not
        declare.
    retry
        Backoff applied to transport failures and 5xx responses.

    """

    access_token: str
    org_id: str = ""
    url: str = CLOUD_URL
    user_agent: str = _DEFAULT_USER_AGENT
    timeout_s: float = _DEFAULT_TIMEOUT_S
    strict_decoding: bool = False
    retry: RetryPolicy = dataclasses.field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """Validate the combination of token, organization and URL."""
        self.validate()

    @property
    def is_api_token(self) -> bool:
        """Whether the configured token is capability scoped."""
        return is_api_token(self.access_token)

    @property
    def is_personal_token(self) -> bool:
        """Whether the configured token is a personal token."""
        return is_personal_token(self.access_token)

    def validate(self) -> None:
        """Raise :class:`ConfigError` when the configuration is unusable.

        Raises
        ------
        ConfigError
            If the token is missing or malformed, the URL is not an absolute
            http(s) URL, or a personal token is used against Axiom Cloud
            without an organization ID.

        """
        if not self.access_token.strip():
            raise ConfigError.missing_access_token()
        if not is_valid_token(self.access_token):
            raise ConfigError.invalid_access_token()

        parsed = urllib.parse.urlsplit(self.url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ConfigError.invalid_url(self.url)

        if (
            self.is_personal_token
            and not self.org_id
            and self.url.rstrip("/") == CLOUD_URL
        ):
            raise ConfigError.missing_organization_id()

    @classmethod
    def from_env(cls, **overrides: object) -> ClientConfig:
        """Build configuration from ``AXIOM_*`` environment variables.

        Reads the following environment variables:

        - ``AXIOM_TOKEN``: access token (required unless overridden)
        - ``AXIOM_ORG_ID``: organization ID for personal tokens
        - ``AXIOM_URL``: deployment URL, defaults to Axiom Cloud

        Keyword ``overrides`` take precedence over the environment.

        Raises
        ------
        ConfigError
            If the resulting configuration is invalid.

        """
        values: dict[str, object] = {
            "access_token": os.environ.get("AXIOM_TOKEN", "").strip(),
            "org_id": os.environ.get("AXIOM_ORG_ID", "").strip(),
            "url": os.environ.get("AXIOM_URL", "").strip() or CLOUD_URL,
        }
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]
