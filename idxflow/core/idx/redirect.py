"""Redirect URL evaluation.

Classifies a redirect received from the authorization server (typically after
the user authenticated with an external identity provider) against the
flow's context and registered redirect URI.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import parse_qs, urlparse

from idxflow.core.idx.context import Context

INTERACTION_CODE_PARAM = "interaction_code"
INTERACTION_REQUIRED_ERROR = "interaction_required"


class RedirectResult(StrEnum):
    """Result of evaluating a redirect URL."""

    AUTHENTICATED = "authenticated"
    REMEDIATION_REQUIRED = "remediation_required"
    INVALID_CONTEXT = "invalid_context"
    INVALID_REDIRECT_URL = "invalid_redirect_url"


@dataclass(frozen=True)
class Redirect:
    """Parsed components of a redirect URL."""

    url: str
    scheme: str
    path: str
    state: str | None = None
    interaction_code: str | None = None
    error: str | None = None
    error_description: str | None = None

    @property
    def interaction_required(self) -> bool:
        return self.error == INTERACTION_REQUIRED_ERROR

    @classmethod
    def parse(cls, url: str) -> Redirect | None:
        """Parse a redirect URL, returning None if it is not a usable URL."""
        if not url:
            return None
        try:
            parsed = urlparse(url)
        except ValueError:
            return None
        if not parsed.scheme:
            return None

        params = parse_qs(parsed.query)

        def first(name: str) -> str | None:
            values = params.get(name)
            return values[0] if values else None

        return cls(
            url=url,
            scheme=parsed.scheme.lower(),
            path=parsed.path,
            state=first("state"),
            interaction_code=first(INTERACTION_CODE_PARAM),
            error=first("error"),
            error_description=first("error_description"),
        )


def evaluate(
    context: Context | None,
    registered_redirect_uri: str,
    incoming_url: str,
) -> RedirectResult:
    """Determine what the caller should do with an incoming redirect URL.

    Args:
        context: Context of the current authentication attempt, if any.
        registered_redirect_uri: The redirect URI registered for the client.
        incoming_url: The URL the application was redirected to.

    Returns:
        The RedirectResult classification.
    """
    if context is None:
        return RedirectResult.INVALID_CONTEXT

    redirect = Redirect.parse(incoming_url)
    original = Redirect.parse(registered_redirect_uri)
    if redirect is None or original is None:
        return RedirectResult.INVALID_REDIRECT_URL

    if redirect.scheme != original.scheme or redirect.path != original.path:
        return RedirectResult.INVALID_REDIRECT_URL

    # A code on a URL with the wrong state is never trusted
    if redirect.state is None or redirect.state != context.state:
        return RedirectResult.INVALID_CONTEXT

    if redirect.interaction_code is not None:
        return RedirectResult.AUTHENTICATED

    if redirect.interaction_required:
        return RedirectResult.REMEDIATION_REQUIRED

    return RedirectResult.INVALID_CONTEXT
