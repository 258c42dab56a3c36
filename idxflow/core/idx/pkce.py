"""PKCE (Proof Key for Code Exchange) support.

Generates the code verifier sent with the token request and the code
challenge sent with the initial interact request.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass

from idxflow.core.idx.errors import PlatformUnsupported

CODE_CHALLENGE_METHOD = "S256"


def generate_code_verifier(length: int = 64) -> str:
    """Generate a PKCE code verifier.

    The code verifier is a high-entropy cryptographic random string
    between 43 and 128 characters, using unreserved URI characters.

    Args:
        length: Length of the verifier (43-128, default 64).

    Returns:
        URL-safe base64-encoded random string.
    """
    length = max(43, min(128, length))
    num_bytes = (length * 3) // 4 + 1
    random_bytes = secrets.token_bytes(num_bytes)
    verifier = base64.urlsafe_b64encode(random_bytes).decode("ascii")
    return verifier.rstrip("=")[:length]


def generate_code_challenge(code_verifier: str, method: str = CODE_CHALLENGE_METHOD) -> str:
    """Generate a PKCE code challenge from a code verifier.

    Args:
        code_verifier: The code verifier string.
        method: Challenge method. Only "S256" is supported.

    Returns:
        The code challenge string.

    Raises:
        ValueError: If method is not supported.
    """
    if method != CODE_CHALLENGE_METHOD:
        raise ValueError(f"Unsupported code_challenge_method: {method}")
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class PKCE:
    """A code verifier and the challenge derived from it."""

    verifier: str
    challenge: str
    method: str = CODE_CHALLENGE_METHOD

    @classmethod
    def generate(cls) -> PKCE:
        """Create a new verifier/challenge pair.

        Raises:
            PlatformUnsupported: If no secure random source is available.
        """
        try:
            verifier = generate_code_verifier()
        except NotImplementedError as e:
            raise PlatformUnsupported(str(e) or "Secure random source unavailable") from e
        return cls(verifier=verifier, challenge=generate_code_challenge(verifier))

    def matches(self, challenge: str) -> bool:
        """Check whether ``challenge`` was derived from this verifier."""
        return secrets.compare_digest(generate_code_challenge(self.verifier, self.method), challenge)
