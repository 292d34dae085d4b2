"""Debug helpers that bypass the authorization flow.

Only meant for test and debug harnesses: tokens are stored as given,
without any exchange with an authorization server.
"""

import logging
from typing import Any, Mapping

from .store import MetadataStore
from .tokens import ServiceToken

logger = logging.getLogger(__name__)


async def debug_set_token(
    store: MetadataStore,
    authentication_url: str,
    payload: Mapping[str, Any],
) -> str:
    """Store a ServiceToken built directly from a token payload.

    Args:
        store: Metadata store receiving the token
        authentication_url: Authorization server the token claims to come from
        payload: {"access_token": str, "services": {type: endpoint}}

    Returns:
        The token ID of the stored token

    Raises:
        InvalidServiceTokenError: If the token or the services are empty
    """
    token = ServiceToken.from_services(
        token=payload.get("access_token") or payload.get("accessToken") or "",
        authentication_url=authentication_url,
        services=payload.get("services") or {},
    )

    await store.append_service_token_added(token)
    logger.warning(f"Debug: stored service token {token.token_id} without authorization flow")
    return token.token_id
