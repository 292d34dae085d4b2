"""High-level coordinator for the services authorization flow.

ServicesAuthManager owns the single in-flight session and drives the
three phases of the handshake:
1. init_flow: start a session and build the authorization URL
2. complete_flow: validate the callback and exchange the code
3. store the resulting ServiceToken and trigger push registration

The session is kept after a successful completion, until the next
init_flow replaces it.
"""

import asyncio
import hmac
import logging
import threading
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from .errors import NotInitializedError, TransportWriteError, WrongStateError
from .flow import (
    DEFAULT_HTTP_TIMEOUT,
    build_authorization_url,
    exchange_code_for_token,
    is_secure_url,
    parse_callback_url,
    parse_token_response,
    service_token_from_response,
)
from .pkce import NonceSource, generate_nonce
from .push import DEFAULT_PUSH_TIMEOUT, PushCollaborator, PushRegistrar
from .session import AuthSessionHolder
from .store import MetadataStore, ServiceTokenLog
from .tokens import SERVICE_PUSH_ID, ServiceToken

logger = logging.getLogger(__name__)


@dataclass
class InitFlowResult:
    """Authorization URL to open in a user agent.

    Attributes:
        url: The authorization URL
        secure_url: Whether the URL uses HTTPS
    """

    url: str
    secure_url: bool


class ServicesAuthManager:
    """Coordinates the services authorization flow.

    Only one flow can be in flight at a time: each init_flow discards the
    previous session, and a callback for a discarded session fails with
    WrongStateError.

    Usage:
        manager = ServicesAuthManager(metadata_store)
        result = manager.init_flow("https://services.example.com")
        # ... user agent visits result.url and is redirected ...
        token_id = await manager.complete_flow(callback_url)
    """

    def __init__(
        self,
        metadata_store: MetadataStore,
        push_collaborator: PushCollaborator | None = None,
        http_client: httpx.AsyncClient | None = None,
        http_timeout: float | None = DEFAULT_HTTP_TIMEOUT,
        push_timeout: float | None = DEFAULT_PUSH_TIMEOUT,
        nonce_source: NonceSource = generate_nonce,
    ):
        """Initialize the manager.

        Args:
            metadata_store: Receives every issued ServiceToken
            push_collaborator: Optional push subsystem to register push services with
            http_client: Optional HTTP client for the token exchange
            http_timeout: Default token exchange timeout in seconds
            push_timeout: Timeout of each push registration call in seconds
            nonce_source: Random source for states and verifiers
        """
        self.metadata_store = metadata_store
        self.http_client = http_client
        self.http_timeout = http_timeout
        self.sessions = AuthSessionHolder(nonce_source)
        self.push_registrar = (
            PushRegistrar(push_collaborator, timeout=push_timeout)
            if push_collaborator is not None
            else None
        )

    def init_flow(self, auth_url: str) -> InitFlowResult:
        """Start a new authorization flow.

        Args:
            auth_url: Base URL of the services authorization server

        Returns:
            InitFlowResult with the URL to open

        Raises:
            InvalidURLError: If auth_url is not a usable http(s) URL
        """
        session, challenge = self.sessions.start_session(auth_url)
        url = build_authorization_url(session, challenge)
        return InitFlowResult(url=url, secure_url=is_secure_url(url))

    async def complete_flow(self, callback_url: str, timeout: float | None = None) -> str:
        """Complete the flow from the authorization redirect.

        Args:
            callback_url: The redirect URL received by the client
            timeout: Deadline for the token exchange in seconds
                (defaults to the manager's http_timeout)

        Returns:
            The token ID of the stored ServiceToken

        Raises:
            ServerReportedError: If the callback or the response carries an error
            NotInitializedError: If no flow was started
            WrongStateError: If the callback state does not match the session
            TransportWriteError: If the exchange request fails or times out
            TransportReadError: If the exchange response cannot be read
            InvalidServerResponseError: On bad status, missing token or services
            DeserializationError: If the response is not the expected JSON
            CollaboratorPersistError: If the metadata store fails
        """
        params = parse_callback_url(callback_url)

        session = self.sessions.load()
        if session is None:
            raise NotInitializedError()

        # Constant-time comparison to prevent timing attacks
        if not hmac.compare_digest(params.state.encode(), session.state.encode()):
            raise WrongStateError()

        if timeout is None:
            timeout = self.http_timeout

        try:
            body = await asyncio.wait_for(
                exchange_code_for_token(
                    session, params.code, http_client=self.http_client, timeout=timeout
                ),
                timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportWriteError(f"Token exchange timed out after {timeout}s") from e

        response = parse_token_response(body)
        token = service_token_from_response(response, session.base_url)

        await self.metadata_store.append_service_token_added(token)
        logger.info(f"Stored service token {token.token_id} from {session.base_url}")

        self._register_push_services(token)

        return token.token_id

    def _register_push_services(self, token: ServiceToken) -> None:
        if self.push_registrar is None:
            if token.services_of_type(SERVICE_PUSH_ID):
                logger.debug("No push collaborator configured, skipping push registration")
            return

        self.push_registrar.schedule(token)

    async def list_tokens(self, cancel_event: asyncio.Event | None = None) -> AsyncIterator[ServiceToken]:
        """Stream the stored service tokens.

        Args:
            cancel_event: Stops the stream early, without error, once set
        """
        for token in self.metadata_store.list_service_tokens():
            if cancel_event is not None and cancel_event.is_set():
                break
            yield token

    async def wait_push_registrations(self) -> None:
        """Wait for detached push registrations to finish."""
        if self.push_registrar is not None:
            await self.push_registrar.wait_closed()


# Global singleton for convenient access (thread-safe)
_manager: ServicesAuthManager | None = None
_manager_lock = threading.Lock()


def get_services_auth_manager() -> ServicesAuthManager:
    """Get the process-wide manager backed by the default token log.

    Uses double-checked locking for thread-safe initialization.
    """
    global _manager
    if _manager is None:
        with _manager_lock:
            if _manager is None:
                _manager = ServicesAuthManager(ServiceTokenLog())
    return _manager
