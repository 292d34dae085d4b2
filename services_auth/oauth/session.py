"""Single-slot holder for the in-flight authorization session.

Only one authorization flow can be in flight per holder. Starting a new
flow replaces the held session unconditionally, so a callback carrying
the state of a superseded session fails validation. Concurrent flows are
not supported; a state-keyed mapping would be needed for that.
"""

import logging
import threading
from dataclasses import dataclass
from urllib.parse import urlparse

from .errors import InvalidURLError
from .pkce import NonceSource, generate_nonce, generate_state, generate_verifier_and_challenge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthSession:
    """Ephemeral state of one authorization flow.

    Attributes:
        state: base64url anti-forgery token round-tripped through the redirect
        code_verifier: base64url PKCE secret, only sent in the token exchange
        base_url: Authorization server origin, without trailing slash
    """

    state: str
    code_verifier: str
    base_url: str

    def __repr__(self) -> str:
        # Keep the verifier out of logs and tracebacks
        return f"AuthSession(state={self.state!r}, base_url={self.base_url!r})"


def validate_base_url(base_url: str) -> str:
    """Validate an authorization server URL and strip its trailing slash.

    Args:
        base_url: URL provided by the caller

    Returns:
        The normalized base URL

    Raises:
        InvalidURLError: If the URL is not http(s) or has no host
    """
    try:
        parsed = urlparse(base_url)
    except ValueError as e:
        raise InvalidURLError(f"Invalid authorization URL: {base_url!r}") from e

    if parsed.scheme not in ("http", "https"):
        raise InvalidURLError(
            f"Invalid authorization URL: scheme must be http or https, got {parsed.scheme!r}"
        )

    if not parsed.hostname:
        raise InvalidURLError(f"Invalid authorization URL: missing host in {base_url!r}")

    return base_url.removesuffix("/")


def new_auth_session(base_url: str, nonce_source: NonceSource = generate_nonce) -> tuple[AuthSession, str]:
    """Create a session and its code challenge for an already validated URL."""
    state = generate_state(nonce_source)
    pkce = generate_verifier_and_challenge(nonce_source)

    session = AuthSession(state=state, code_verifier=pkce.verifier, base_url=base_url)
    return session, pkce.challenge


class AuthSessionHolder:
    """Owned mutable cell holding at most one AuthSession.

    Access is limited to an atomic load and an atomic store. Nothing couples
    a load to later use of the session, so a flow completing while another
    one starts may observe either session.
    """

    def __init__(self, nonce_source: NonceSource = generate_nonce):
        self._nonce_source = nonce_source
        self._session: AuthSession | None = None
        self._lock = threading.Lock()

    def load(self) -> AuthSession | None:
        """Return the held session, or None if no flow was ever started."""
        with self._lock:
            return self._session

    def store(self, session: AuthSession) -> None:
        """Replace the held session."""
        with self._lock:
            self._session = session

    def current_session(self) -> AuthSession | None:
        """Return the live session, if any."""
        return self.load()

    def start_session(self, base_url: str) -> tuple[AuthSession, str]:
        """Start a new flow, discarding any previous session.

        Args:
            base_url: Authorization server origin

        Returns:
            Tuple of (new session, code challenge)

        Raises:
            InvalidURLError: If base_url is not a usable http(s) URL
        """
        normalized = validate_base_url(base_url)
        session, challenge = new_auth_session(normalized, self._nonce_source)

        previous = self.load()
        if previous is not None:
            logger.debug(f"Replacing pending authorization session for {previous.base_url}")

        self.store(session)
        logger.debug(f"Started authorization session for {normalized}")
        return session, challenge
