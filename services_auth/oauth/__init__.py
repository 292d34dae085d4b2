"""Services authorization flow for obtaining service tokens.

This package implements a PKCE authorization code flow against a
services authorization server and turns the issued bearer token into a
ServiceToken bound to the services it grants (e.g. push notifications).

Main Components:
    ServicesAuthManager: Drives init_flow / complete_flow / list_tokens
    AuthSessionHolder: Single-slot store of the in-flight session
    ServiceToken: Issued credential and its supported services
    ServiceTokenLog: Encrypted append-only token log

Quick Start:
    from services_auth.oauth import get_services_auth_manager

    manager = get_services_auth_manager()
    result = manager.init_flow("https://services.example.com")
    # open result.url, then with the redirect URL:
    token_id = await manager.complete_flow(callback_url)

Debug-only helpers live in services_auth.oauth.debug and are not
exported here.
"""

from .errors import (
    CollaboratorPersistError,
    DeserializationError,
    InvalidServerResponseError,
    InvalidURLError,
    NotInitializedError,
    ServerReportedError,
    ServicesAuthError,
    TransportReadError,
    TransportWriteError,
    WrongStateError,
)
from .flow import (
    AUTH_CLIENT_ID,
    AUTH_REDIRECT,
    CallbackParams,
    TokenExchangeResponse,
    build_authorization_url,
    exchange_code_for_token,
    parse_callback_url,
    parse_token_response,
)
from .manager import InitFlowResult, ServicesAuthManager, get_services_auth_manager
from .pkce import PKCEPair, generate_code_challenge, generate_code_verifier, generate_verifier_and_challenge
from .push import PushCollaborator, PushRegistrar, PushServer, PushServerInfo
from .session import AuthSession, AuthSessionHolder
from .store import MetadataStore, ServiceTokenLog, TokenDecryptionError
from .tokens import (
    NEVER_EXPIRES,
    SERVICE_PUSH_ID,
    InvalidServiceTokenError,
    ServiceToken,
    ServiceTokenSupportedService,
)

__all__ = [
    # Manager (main entry point)
    "ServicesAuthManager",
    "InitFlowResult",
    "get_services_auth_manager",
    # Session
    "AuthSession",
    "AuthSessionHolder",
    # PKCE
    "PKCEPair",
    "generate_code_verifier",
    "generate_code_challenge",
    "generate_verifier_and_challenge",
    # Flow
    "AUTH_CLIENT_ID",
    "AUTH_REDIRECT",
    "CallbackParams",
    "TokenExchangeResponse",
    "build_authorization_url",
    "exchange_code_for_token",
    "parse_callback_url",
    "parse_token_response",
    # Tokens
    "ServiceToken",
    "ServiceTokenSupportedService",
    "InvalidServiceTokenError",
    "NEVER_EXPIRES",
    "SERVICE_PUSH_ID",
    # Collaborators
    "MetadataStore",
    "ServiceTokenLog",
    "TokenDecryptionError",
    "PushCollaborator",
    "PushRegistrar",
    "PushServer",
    "PushServerInfo",
    # Errors
    "ServicesAuthError",
    "InvalidURLError",
    "NotInitializedError",
    "WrongStateError",
    "ServerReportedError",
    "TransportWriteError",
    "TransportReadError",
    "InvalidServerResponseError",
    "DeserializationError",
    "CollaboratorPersistError",
]
