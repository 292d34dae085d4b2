"""PKCE (Proof Key for Code Exchange) primitives for the services flow.

The verifier is the unpadded base64url encoding of a random nonce. The
challenge is the unpadded base64url encoding of SHA-256 over the ASCII
bytes of that *encoded* verifier string, which is exactly what the
authorization server recomputes from the `code_verifier` it receives.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass
from typing import Callable

# Size in bytes of every nonce (state and verifier)
NONCE_SIZE = 24

CODE_CHALLENGE_METHOD = "S256"

NonceSource = Callable[[], bytes]


@dataclass(frozen=True)
class PKCEPair:
    """PKCE code verifier and challenge pair."""

    verifier: str
    challenge: str
    method: str = CODE_CHALLENGE_METHOD


def generate_nonce() -> bytes:
    """Return NONCE_SIZE cryptographically secure random bytes.

    Entropy failures are not transient: any error from the random source
    propagates unchanged.
    """
    return secrets.token_bytes(NONCE_SIZE)


def encode_nonce(raw: bytes) -> str:
    """Encode bytes as base64url without padding."""
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_code_verifier(nonce_source: NonceSource = generate_nonce) -> str:
    """Generate a fresh code verifier from the nonce source."""
    return encode_nonce(nonce_source())


def generate_code_challenge(verifier: str) -> str:
    """Generate the S256 challenge for an encoded verifier.

    Args:
        verifier: The base64url encoded verifier, as it will be sent later

    Returns:
        BASE64URL(SHA256(ascii(verifier))) without padding
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return encode_nonce(digest)


def generate_verifier_and_challenge(nonce_source: NonceSource = generate_nonce) -> PKCEPair:
    """Generate a complete PKCE pair."""
    verifier = generate_code_verifier(nonce_source)
    return PKCEPair(verifier=verifier, challenge=generate_code_challenge(verifier))


def generate_state(nonce_source: NonceSource = generate_nonce) -> str:
    """Generate a base64url anti-forgery state parameter."""
    return encode_nonce(nonce_source())
