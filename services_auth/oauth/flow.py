"""Services authorization code flow with PKCE.

This module holds the stateless pieces of the flow:
1. Build the authorization URL for a started session
2. Parse the redirect callback (code, state or server error)
3. Exchange the code for a token over HTTP
4. Parse and validate the token endpoint response
5. Turn the response into a ServiceToken

The session bookkeeping and the collaborators are driven by
ServicesAuthManager in manager.py.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, quote_plus, urlparse

import httpx

from .errors import (
    DeserializationError,
    InvalidServerResponseError,
    InvalidURLError,
    ServerReportedError,
    TransportReadError,
    TransportWriteError,
)
from .pkce import CODE_CHALLENGE_METHOD
from .session import AuthSession
from .tokens import ServiceToken

logger = logging.getLogger(__name__)

# Fixed protocol values, not configurable per call
AUTH_RESPONSE_TYPE = "code"
AUTH_GRANT_TYPE = "authorization_code"
AUTH_REDIRECT = "berty://services-auth/"
AUTH_CLIENT_ID = "berty"

AUTH_HTTP_PATH_AUTHORIZE = "/authorize"
AUTH_HTTP_PATH_TOKEN_EXCHANGE = "/oauth/token"

DEFAULT_HTTP_TIMEOUT = 30.0


@dataclass
class CallbackParams:
    """Query parameters of a successful authorization redirect."""

    code: str
    state: str


@dataclass
class TokenExchangeResponse:
    """Parsed body of the token endpoint response.

    Attributes:
        access_token: The bearer credential (empty when missing)
        services: Mapping of service type to service endpoint
        error: Server error code (empty when none)
        error_description: Optional server error description
    """

    access_token: str = ""
    services: dict[str, str] = field(default_factory=dict)
    error: str = ""
    error_description: str = ""


def build_authorization_url(session: AuthSession, code_challenge: str) -> str:
    """Build the URL the user agent must visit to authorize the client.

    Args:
        session: The started authorization session
        code_challenge: PKCE challenge matching session.code_verifier

    Returns:
        Complete authorization URL
    """
    return (
        f"{session.base_url}{AUTH_HTTP_PATH_AUTHORIZE}"
        f"?response_type={AUTH_RESPONSE_TYPE}"
        f"&client_id={AUTH_CLIENT_ID}"
        f"&redirect_uri={quote_plus(AUTH_REDIRECT)}"
        f"&state={session.state}"
        f"&code_challenge={code_challenge}"
        f"&code_challenge_method={CODE_CHALLENGE_METHOD}"
    )


def is_secure_url(url: str) -> bool:
    """Check whether a URL uses HTTPS."""
    return url.startswith("https://")


def parse_callback_url(callback_url: str) -> CallbackParams:
    """Extract code and state from the authorization redirect.

    Args:
        callback_url: The full redirect URL received by the client

    Returns:
        CallbackParams with code and state (empty strings when absent)

    Raises:
        InvalidURLError: If the URL cannot be parsed
        ServerReportedError: If the redirect carries an error parameter
    """
    try:
        query = parse_qs(urlparse(callback_url).query)
    except ValueError as e:
        raise InvalidURLError(f"Invalid callback URL: {e}") from e

    def first(name: str) -> str:
        values = query.get(name)
        return values[0] if values else ""

    error = first("error")
    if error:
        raise ServerReportedError(error, first("error_description"))

    return CallbackParams(code=first("code"), state=first("state"))


async def exchange_code_for_token(
    session: AuthSession,
    code: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float | None = DEFAULT_HTTP_TIMEOUT,
) -> bytes:
    """POST the authorization code and verifier to the token endpoint.

    Args:
        session: The session the code was issued for
        code: Authorization code from the callback
        http_client: Optional HTTP client (owned by the caller)
        timeout: Request timeout in seconds

    Returns:
        The raw response body

    Raises:
        TransportWriteError: If the request cannot be sent or times out
        InvalidServerResponseError: If the status code is 300 or above
        TransportReadError: If the response body cannot be read
    """
    endpoint = f"{session.base_url}{AUTH_HTTP_PATH_TOKEN_EXCHANGE}"
    form = {
        "grant_type": AUTH_GRANT_TYPE,
        "code": code,
        "client_id": AUTH_CLIENT_ID,
        "code_verifier": session.code_verifier,
    }

    http = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    try:
        request = http.build_request(
            "POST",
            endpoint,
            data=form,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        try:
            response = await http.send(request, stream=True)
        except httpx.RequestError as e:
            raise TransportWriteError(f"Network error during token exchange: {e}") from e

        try:
            if response.status_code >= 300:
                try:
                    await response.aread()
                except (httpx.RequestError, httpx.StreamError) as e:
                    logger.debug(f"Could not drain error response body: {e}")
                raise InvalidServerResponseError(
                    f"Token exchange failed: invalid status code {response.status_code}",
                    status_code=response.status_code,
                )

            try:
                return await response.aread()
            except (httpx.RequestError, httpx.StreamError) as e:
                raise TransportReadError(f"Could not read token exchange response: {e}") from e
        finally:
            await response.aclose()
    finally:
        if should_close:
            await http.aclose()


def _optional_str(data: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise DeserializationError(f"Field {key!r} must be a string")
        return value
    return ""


def parse_token_response(body: bytes) -> TokenExchangeResponse:
    """Deserialize the token endpoint response body.

    Accepts both `access_token` and `accessToken` for the credential.

    Raises:
        DeserializationError: If the body is not the expected JSON object
    """
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DeserializationError(f"Token exchange response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise DeserializationError("Token exchange response must be a JSON object")

    services = data.get("services")
    if services is None:
        services = {}
    if not isinstance(services, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in services.items()
    ):
        raise DeserializationError("Field 'services' must map service types to endpoints")

    return TokenExchangeResponse(
        access_token=_optional_str(data, "access_token", "accessToken"),
        services=services,
        error=_optional_str(data, "error"),
        error_description=_optional_str(data, "error_description", "errorDescription"),
    )


def validate_token_response(response: TokenExchangeResponse) -> None:
    """Reject responses that cannot produce a service token.

    Checks run in order: server error, missing token, missing services.

    Raises:
        ServerReportedError: If the response carries an error
        InvalidServerResponseError: If the token or the services are missing
    """
    if response.error:
        raise ServerReportedError(response.error, response.error_description)

    if not response.access_token:
        raise InvalidServerResponseError("Invalid response: missing access token in response")

    if not response.services:
        raise InvalidServerResponseError("Invalid response: no services returned along token")


def service_token_from_response(
    response: TokenExchangeResponse,
    authentication_url: str,
) -> ServiceToken:
    """Create a non-expiring ServiceToken from a validated response."""
    validate_token_response(response)
    return ServiceToken.from_services(
        token=response.access_token,
        authentication_url=authentication_url,
        services=response.services,
    )
