"""Shared fixtures and utilities for services-auth tests."""

from collections.abc import Generator
from typing import Any
from unittest.mock import patch
from urllib.parse import parse_qs

import httpx
import pytest

from services_auth.oauth.pkce import NONCE_SIZE
from services_auth.oauth.push import PushServer, PushServerInfo
from services_auth.oauth.tokens import ServiceToken


# ============================================================================
# Collaborator doubles
# ============================================================================


class SequentialNonces:
    """Deterministic nonce source: 0x01 * 24, 0x02 * 24, ..."""

    def __init__(self) -> None:
        self.count = 0

    def __call__(self) -> bytes:
        self.count += 1
        return bytes([self.count]) * NONCE_SIZE


class RecordingMetadataStore:
    """In-memory metadata store recording appended tokens."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.tokens: list[ServiceToken] = []
        self.fail_with = fail_with

    async def append_service_token_added(self, token: ServiceToken) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.tokens.append(token)
        return f"{len(self.tokens) - 1}:{token.token_id}"

    def list_service_tokens(self) -> list[ServiceToken]:
        return list(self.tokens)


class FakePushCollaborator:
    """Push subsystem double recording server_info / set_push_server calls."""

    def __init__(
        self,
        public_key: bytes = b"push-public-key",
        info_error: Exception | None = None,
        set_error: Exception | None = None,
    ) -> None:
        self.public_key = public_key
        self.info_error = info_error
        self.set_error = set_error
        self.info_calls: list[tuple[str, str]] = []
        self.registered: list[PushServer] = []

    async def server_info(self, endpoint: str, token: str) -> PushServerInfo:
        self.info_calls.append((endpoint, token))
        if self.info_error is not None:
            raise self.info_error
        return PushServerInfo(public_key=self.public_key)

    async def set_push_server(self, server: PushServer) -> None:
        if self.set_error is not None:
            raise self.set_error
        self.registered.append(server)


class TokenEndpoint:
    """httpx.MockTransport handler for the token exchange endpoint."""

    def __init__(self, status_code: int = 200, body: Any = None) -> None:
        self.status_code = status_code
        self.body = body if body is not None else {
            "accessToken": "tok1",
            "services": {"psh": "https://push.example"},
        }
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.body, (bytes, str)):
            return httpx.Response(self.status_code, content=self.body)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def form(self, index: int = -1) -> dict[str, str]:
        """Decode the form body of a recorded request."""
        parsed = parse_qs(self.requests[index].content.decode())
        return {k: v[0] for k, v in parsed.items()}

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def nonces() -> SequentialNonces:
    """Deterministic nonce source."""
    return SequentialNonces()


@pytest.fixture
def metadata_store() -> RecordingMetadataStore:
    """Recording metadata store."""
    return RecordingMetadataStore()


@pytest.fixture
def push_collaborator() -> FakePushCollaborator:
    """Push collaborator double."""
    return FakePushCollaborator()


@pytest.fixture
def token_endpoint() -> TokenEndpoint:
    """Token endpoint answering with one push service."""
    return TokenEndpoint()


@pytest.fixture(autouse=True)
def no_keyring() -> Generator[None, None, None]:
    """Keep tests away from the real OS keyring."""
    with patch(
        "services_auth.oauth.store.keyring.get_password",
        side_effect=RuntimeError("No keyring in tests"),
    ):
        yield
