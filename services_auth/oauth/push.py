"""Best-effort push server registration for freshly issued service tokens.

For every push service granted by a token, the registrar fetches the push
server info and registers it as the active push server. Each registration
runs as a detached asyncio task: failures are logged and dropped, and the
flow that scheduled them never waits for them.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from .tokens import SERVICE_PUSH_ID, ServiceToken, ServiceTokenSupportedService

logger = logging.getLogger(__name__)

DEFAULT_PUSH_TIMEOUT = 10.0


@dataclass(frozen=True)
class PushServerInfo:
    """Information returned by a push server."""

    public_key: bytes


@dataclass(frozen=True)
class PushServer:
    """A push server to register as active."""

    server_key: bytes
    service_addr: str


class PushCollaborator(Protocol):
    """Downstream push-notification subsystem."""

    async def server_info(self, endpoint: str, token: str) -> PushServerInfo:
        """Fetch the info of the push server at endpoint, authenticated with token."""
        ...

    async def set_push_server(self, server: PushServer) -> None:
        """Register server as the active push server."""
        ...


class PushRegistrar:
    """Schedules push registrations as independent background tasks."""

    def __init__(self, collaborator: PushCollaborator, timeout: float | None = DEFAULT_PUSH_TIMEOUT):
        self.collaborator = collaborator
        self.timeout = timeout
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of registrations still running."""
        return len(self._tasks)

    def schedule(self, token: ServiceToken) -> list[asyncio.Task[None]]:
        """Start one registration task per push service of token.

        Must be called from a running event loop.

        Returns:
            The created tasks (empty if the token grants no push service)
        """
        tasks = []
        for service in token.services_of_type(SERVICE_PUSH_ID):
            task = asyncio.create_task(self._register(service, token.token))
            # Keep a strong reference until the task is done
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        return tasks

    async def _register(self, service: ServiceTokenSupportedService, token: str) -> None:
        endpoint = service.service_endpoint
        try:
            info = await asyncio.wait_for(
                self.collaborator.server_info(endpoint, token), self.timeout
            )
        except Exception as e:
            logger.warning(f"Unable to get server info from push server {endpoint}: {e!r}")
            return

        try:
            await asyncio.wait_for(
                self.collaborator.set_push_server(
                    PushServer(server_key=info.public_key, service_addr=endpoint)
                ),
                self.timeout,
            )
        except Exception as e:
            logger.warning(f"Unable to set push server {endpoint}: {e!r}")
            return

        logger.info(f"Registered push server {endpoint}")

    async def wait_closed(self) -> None:
        """Wait for all outstanding registrations to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
