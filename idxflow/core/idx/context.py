"""Authentication session context.

The context identifies one authentication attempt. Callers may persist it
(for example in a keychain or session store) and restore it later to resume
the attempt or complete the token exchange.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from idxflow.core.idx.errors import InvalidContext
from idxflow.core.idx.pkce import CODE_CHALLENGE_METHOD, PKCE

REQUIRED_FIELDS = ("interaction_handle", "state", "code_verifier", "code_challenge")


@dataclass(frozen=True)
class Context:
    """Maintains state for an in-progress interaction code flow."""

    interaction_handle: str
    state: str
    pkce: PKCE

    def to_dict(self) -> dict[str, str]:
        """Convert to a flat dictionary for storage."""
        return {
            "interaction_handle": self.interaction_handle,
            "state": self.state,
            "code_verifier": self.pkce.verifier,
            "code_challenge": self.pkce.challenge,
            "code_challenge_method": self.pkce.method,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Context:
        """Reconstruct from dictionary.

        Raises:
            InvalidContext: If a required field is missing or empty.
        """
        missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise InvalidContext(f"Stored context is missing: {', '.join(missing)}")

        return cls(
            interaction_handle=data["interaction_handle"],
            state=data["state"],
            pkce=PKCE(
                verifier=data["code_verifier"],
                challenge=data["code_challenge"],
                method=data.get("code_challenge_method") or CODE_CHALLENGE_METHOD,
            ),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, text: str) -> Context:
        try:
            data = json.loads(text)
        except ValueError as e:
            raise InvalidContext(f"Stored context is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidContext("Stored context must be a JSON object")
        return cls.from_dict(data)
