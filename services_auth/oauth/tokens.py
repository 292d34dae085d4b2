"""Service token data structures.

A ServiceToken bundles a bearer credential issued by a services
authorization server with the set of services it grants access to.
Tokens issued by the flow never expire.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

logger = logging.getLogger(__name__)

# Expiration sentinel meaning "never expires"
NEVER_EXPIRES = -1

# Well-known service types
SERVICE_PUSH_ID = "psh"


class InvalidServiceTokenError(ValueError):
    """A ServiceToken is missing its credential or its services."""

    pass


@dataclass(frozen=True)
class ServiceTokenSupportedService:
    """A service reachable with a service token."""

    service_type: str
    service_endpoint: str

    def to_dict(self) -> dict[str, str]:
        """Serialize to dictionary."""
        return {"service_type": self.service_type, "service_endpoint": self.service_endpoint}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServiceTokenSupportedService":
        """Deserialize from dictionary."""
        return cls(
            service_type=data["service_type"],
            service_endpoint=data["service_endpoint"],
        )


def services_from_mapping(services: Mapping[str, str]) -> tuple[ServiceTokenSupportedService, ...]:
    """Convert a {type: endpoint} mapping into supported services.

    Ordering follows the mapping and carries no meaning.
    """
    return tuple(
        ServiceTokenSupportedService(service_type=service_type, service_endpoint=endpoint)
        for service_type, endpoint in services.items()
    )


def _unique_by_type(
    services: Iterable[ServiceTokenSupportedService],
) -> tuple[ServiceTokenSupportedService, ...]:
    # Last definition of a type wins, like a mapping would
    by_type: dict[str, ServiceTokenSupportedService] = {}
    for service in services:
        by_type[service.service_type] = service
    return tuple(by_type.values())


@dataclass(frozen=True)
class ServiceToken:
    """Credential record produced by the services authorization flow.

    Attributes:
        token: Opaque bearer credential
        authentication_url: Base URL of the issuing authorization server
        supported_services: Services granted by the token, unique by type
        expiration: NEVER_EXPIRES for every token issued by the flow
    """

    token: str
    authentication_url: str
    supported_services: tuple[ServiceTokenSupportedService, ...] = field(default_factory=tuple)
    expiration: int = NEVER_EXPIRES

    def __post_init__(self) -> None:
        if not self.token:
            raise InvalidServiceTokenError("Service token is missing its bearer credential")

        services = _unique_by_type(self.supported_services)
        if not services:
            raise InvalidServiceTokenError("Service token has no supported services")

        object.__setattr__(self, "supported_services", services)

    def __repr__(self) -> str:
        return (
            f"ServiceToken(token_id={self.token_id!r}, "
            f"authentication_url={self.authentication_url!r}, "
            f"supported_services={self.supported_services!r}, "
            f"expiration={self.expiration!r})"
        )

    @property
    def token_id(self) -> str:
        """Stable identifier derived from the bearer credential."""
        return hashlib.sha256(self.token.encode("utf-8")).hexdigest()

    def services_of_type(self, service_type: str) -> list[ServiceTokenSupportedService]:
        """Return the supported services of a given type."""
        return [s for s in self.supported_services if s.service_type == service_type]

    def to_dict(self) -> dict[str, Any]:
        """Serialize token to dictionary for storage."""
        return {
            "token": self.token,
            "authentication_url": self.authentication_url,
            "supported_services": [s.to_dict() for s in self.supported_services],
            "expiration": self.expiration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServiceToken":
        """Deserialize token from dictionary (via to_dict)."""
        return cls(
            token=data["token"],
            authentication_url=data.get("authentication_url", ""),
            supported_services=tuple(
                ServiceTokenSupportedService.from_dict(s)
                for s in data.get("supported_services", [])
            ),
            expiration=int(data.get("expiration", NEVER_EXPIRES)),
        )

    @classmethod
    def from_services(
        cls,
        token: str,
        authentication_url: str,
        services: Mapping[str, str],
    ) -> "ServiceToken":
        """Create a non-expiring token from a {type: endpoint} mapping.

        Raises:
            InvalidServiceTokenError: If token or services are empty
        """
        return cls(
            token=token,
            authentication_url=authentication_url,
            supported_services=services_from_mapping(services),
            expiration=NEVER_EXPIRES,
        )
