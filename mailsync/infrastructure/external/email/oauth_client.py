"""
OAuth 2.0 token endpoint client for mailbox providers.

Handles authorization URLs, code exchange, refresh and revocation for every
provider in OAUTH_PROVIDERS. Token refresh is deliberately kept off the
per-account message quota: token endpoints have their own quota class.

Usage:
    client = OAuthTokenClient.from_settings(settings)
    url, state = client.get_authorization_url("gmail")
    credential = credential_from_token_response(await client.exchange_code("gmail", code))
    token = await client.refresh_token("gmail", credential.refresh_token)
"""

from datetime import timedelta
from typing import Any

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from mailsync.domain.exceptions import (MailSyncException, TokenError,
                                        TokenRefreshError, TokenRevokedError,
                                        TransientNetworkError)
from mailsync.domain.value_objects.credential import Credential
from mailsync.infrastructure.config.settings import Settings
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import from_timestamp_utc, utc_now

logger = get_logger(__name__)

DEFAULT_EXPIRES_IN = 3600

# OAuth error codes that mean the grant is gone for good
REVOKED_GRANT_ERRORS = frozenset({"invalid_grant", "unauthorized_client", "access_denied"})


class OAuthProvider:
    """OAuth provider configuration"""

    def __init__(
        self,
        name: str,
        authorization_endpoint: str,
        token_endpoint: str,
        scopes: list[str],
        revocation_endpoint: str | None = None,
        extra_authorize_params: dict | None = None,
    ):
        self.name = name
        self.authorization_endpoint = authorization_endpoint
        self.token_endpoint = token_endpoint
        self.revocation_endpoint = revocation_endpoint
        self.scopes = scopes
        self.extra_authorize_params = extra_authorize_params or {}


# Provider configurations
OAUTH_PROVIDERS = {
    "gmail": OAuthProvider(
        name="Gmail",
        authorization_endpoint="https://accounts.google.com/o/oauth2/v2/auth",
        token_endpoint="https://oauth2.googleapis.com/token",
        revocation_endpoint="https://oauth2.googleapis.com/revoke",
        scopes=[
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/gmail.modify",
        ],
        extra_authorize_params={
            "access_type": "offline",  # Required to receive a refresh token
            "prompt": "consent",  # Force consent so a new refresh token is issued
            "include_granted_scopes": "true",
        },
    ),
    "outlook": OAuthProvider(
        name="Outlook/Office 365",
        authorization_endpoint="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        token_endpoint="https://login.microsoftonline.com/common/oauth2/v2.0/token",
        scopes=[
            "https://graph.microsoft.com/Mail.Read",
            "https://graph.microsoft.com/Mail.ReadWrite",
            "offline_access",  # Required for refresh token
        ],
        extra_authorize_params={"response_mode": "query"},
    ),
}


def credential_from_token_response(
    token: dict[str, Any], previous: Credential | None = None
) -> Credential:
    """
    Build a Credential from a token endpoint response.

    Providers that do not rotate refresh tokens omit them from refresh
    responses, in which case the previous refresh token is kept.
    """
    if not token.get("access_token"):
        raise ValueError("Token response missing access_token")

    if token.get("expires_at"):
        expires_at = from_timestamp_utc(float(token["expires_at"]))
    elif token.get("expires_in") is not None:
        expires_at = utc_now() + timedelta(seconds=int(token["expires_in"]))
    else:
        expires_at = None

    refresh_token = token.get("refresh_token") or (previous.refresh_token if previous else None)
    scope = token.get("scope")
    if isinstance(scope, list):
        scope = " ".join(scope)

    return Credential(
        access_token=token["access_token"],
        refresh_token=refresh_token,
        expires_at=expires_at,
        token_type=token.get("token_type") or "Bearer",
        scope=scope or (previous.scope if previous else None),
    )


def classify_refresh_error(account_id: str, error: Exception) -> MailSyncException:
    """
    Map a refresh failure onto the token error taxonomy.

    - invalid/revoked grant -> TokenRevokedError (re-authorization required)
    - transport failures, timeouts, 5xx and 429 -> TransientNetworkError
    - anything else -> TokenRefreshError
    """
    if isinstance(error, (TokenError, TransientNetworkError)):
        return error

    if isinstance(error, OAuthError):
        code = (error.error or "").lower()
        description = error.description or code or str(error)
        if code in REVOKED_GRANT_ERRORS or "revoked" in description.lower():
            return TokenRevokedError(account_id, description)
        return TokenRefreshError(account_id, description)

    if isinstance(error, httpx.TransportError):
        return TransientNetworkError(
            f"Token endpoint unreachable: {error}", {"account_id": account_id}
        )

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status >= 500 or status == 429:
            return TransientNetworkError(
                f"Token endpoint returned HTTP {status}",
                {"account_id": account_id, "status": status},
            )
        return TokenRefreshError(account_id, f"HTTP {status}")

    return TokenRefreshError(account_id, str(error) or error.__class__.__name__)


class OAuthTokenClient:
    """
    Talks to provider token endpoints with authlib's async httpx client.

    Ensures tokens are obtained with the settings that make refresh possible:
    - Gmail: access_type='offline', prompt='consent'
    - Outlook: offline_access scope
    """

    def __init__(
        self,
        client_credentials: dict[str, tuple[str, str]],
        redirect_uri: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            client_credentials: provider_type -> (client_id, client_secret)
            redirect_uri: OAuth redirect URI (must match console configuration)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self._client_credentials = client_credentials
        self._redirect_uri = redirect_uri
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "OAuthTokenClient":
        credentials: dict[str, tuple[str, str]] = {}
        if settings.google_client_id and settings.google_client_secret:
            credentials["gmail"] = (settings.google_client_id, settings.google_client_secret)
        if settings.microsoft_client_id and settings.microsoft_client_secret:
            credentials["outlook"] = (
                settings.microsoft_client_id,
                settings.microsoft_client_secret,
            )
        return cls(credentials, settings.oauth_redirect_uri, settings.oauth_timeout_seconds)

    def _provider(self, provider_type: str) -> OAuthProvider:
        provider = OAUTH_PROVIDERS.get(provider_type)
        if provider is None:
            raise ValueError(
                f"Unsupported provider: {provider_type}. "
                f"Supported providers: {', '.join(OAUTH_PROVIDERS.keys())}"
            )
        return provider

    def _client(self, provider_type: str) -> AsyncOAuth2Client:
        provider = self._provider(provider_type)
        if provider_type not in self._client_credentials:
            raise ValueError(f"No OAuth client configured for {provider.name}")
        client_id, client_secret = self._client_credentials[provider_type]

        kwargs: dict[str, Any] = {"timeout": self._timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return AsyncOAuth2Client(
            client_id=client_id,
            client_secret=client_secret,
            scope=" ".join(provider.scopes),
            redirect_uri=self._redirect_uri,
            **kwargs,
        )

    def get_authorization_url(self, provider_type: str) -> tuple[str, str]:
        """
        Generate the consent URL.

        Returns:
            Tuple of (authorization_url, state); store state and validate it on callback
        """
        provider = self._provider(provider_type)
        client = self._client(provider_type)
        url, state = client.create_authorization_url(
            provider.authorization_endpoint, **provider.extra_authorize_params
        )
        logger.info(
            "Generated authorization URL for %s with scopes: %s",
            provider.name,
            ", ".join(provider.scopes),
        )
        return url, state

    async def exchange_code(self, provider_type: str, code: str) -> dict[str, Any]:
        """Exchange an authorization code for the initial token set"""
        provider = self._provider(provider_type)
        async with self._client(provider_type) as client:
            token = await client.fetch_token(
                provider.token_endpoint, code=code, grant_type="authorization_code"
            )

        if not token.get("refresh_token"):
            logger.warning(
                "No refresh_token returned by %s; the user will have to re-authenticate "
                "when the access token expires",
                provider.name,
            )
        return dict(token)

    async def refresh_token(self, provider_type: str, refresh_token: str) -> dict[str, Any]:
        """
        Exchange a refresh token for a new access token.

        Raises the underlying authlib/httpx error; callers classify it with
        classify_refresh_error().
        """
        if not refresh_token:
            raise ValueError("Refresh token is required")

        provider = self._provider(provider_type)
        async with self._client(provider_type) as client:
            token = await client.refresh_token(
                provider.token_endpoint, refresh_token=refresh_token
            )
        logger.info("Refreshed access token for %s", provider.name)
        return dict(token)

    async def revoke_token(self, provider_type: str, token: str) -> None:
        """Revoke a token at the provider; providers without an endpoint are skipped"""
        provider = self._provider(provider_type)
        if not provider.revocation_endpoint:
            logger.info("%s has no revocation endpoint, skipping", provider.name)
            return

        async with self._client(provider_type) as client:
            response = await client.revoke_token(provider.revocation_endpoint, token=token)
        response.raise_for_status()
        logger.info("Revoked token at %s", provider.name)
