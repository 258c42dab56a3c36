"""Identity Engine client.

Builds the interact, introspect, remediation and token requests used by the
interaction code flow and sends them through a ``Transport``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from idxflow.core.idx.errors import ApiError, InternalError, StatusClass
from idxflow.core.idx.models import RemediationOption
from idxflow.core.idx.pkce import PKCE
from idxflow.core.idx.transport import (
    ION_JSON,
    JSON,
    APIRequest,
    BodyEncoding,
    HTTPTransport,
    PayloadCompletion,
    Transport,
)

logger = logging.getLogger(__name__)

INTERACTION_CODE_GRANT = "interaction_code"
REFRESH_TOKEN_GRANT = "refresh_token"

# Options understood by the flow; anything else is passed through untouched
STATE_OPTION = "state"
RECOVERY_TOKEN_OPTION = "recovery_token"

HandleCompletion = Callable[[str | None, ApiError | InternalError | None], None]
TokenPayloadCompletion = Callable[[dict[str, Any] | None, ApiError | InternalError | None], None]
ConfigurationCompletion = Callable[[dict[str, Any] | None, InternalError | None], None]


@dataclass
class IDXClientConfig:
    """Configuration for an Identity Engine client."""

    issuer: str
    client_id: str
    redirect_uri: str
    scopes: list[str] = field(default_factory=lambda: ["openid", "profile", "offline_access"])
    client_secret: str | None = None
    additional_parameters: dict[str, str] = field(default_factory=dict)

    @property
    def issuer_url(self) -> str:
        return self.issuer.rstrip("/")

    @property
    def origin(self) -> str:
        parsed = urlparse(self.issuer_url)
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def interact_endpoint(self) -> str:
        return f"{self.issuer_url}/v1/interact"

    @property
    def introspect_endpoint(self) -> str:
        return f"{self.origin}/idp/idx/introspect"

    @property
    def discovery_endpoint(self) -> str:
        return f"{self.issuer_url}/.well-known/openid-configuration"

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)


class IDXClient:
    """Client for the Identity Engine interaction code endpoints.

    All methods are callback based: each invokes its completion exactly once,
    either synchronously or later, depending on the transport.
    """

    def __init__(self, config: IDXClientConfig, transport: Transport | None = None) -> None:
        """Initialize the client.

        Args:
            config: Client configuration with issuer and credentials.
            transport: Transport used to send requests. Defaults to HTTPTransport.
        """
        self.config = config
        self.transport: Transport = transport or HTTPTransport()
        self._openid_configuration: dict[str, Any] | None = None
        self._lock = threading.Lock()

    def interact(
        self,
        pkce: PKCE,
        options: Mapping[str, str],
        completion: HandleCompletion,
    ) -> None:
        """Begin an authentication attempt and obtain an interaction handle."""
        body: dict[str, Any] = {
            "client_id": self.config.client_id,
            "scope": self.config.scope,
            "redirect_uri": self.config.redirect_uri,
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
        }
        if self.config.client_secret:
            body["client_secret"] = self.config.client_secret
        body.update(self.config.additional_parameters)
        body.update(options)

        request = APIRequest(method="POST", url=self.config.interact_endpoint, body=body)

        def handle(payload: dict[str, Any] | None, error: ApiError | None) -> None:
            if error is not None:
                completion(None, error)
                return
            handle_value = (payload or {}).get("interaction_handle")
            if not handle_value:
                completion(
                    None,
                    ApiError(
                        "Interact response did not include an interaction handle",
                        status_class=StatusClass.INVALID_RESPONSE,
                    ),
                )
                return
            completion(handle_value, None)

        self._send(request, handle)

    def introspect(self, interaction_handle: str, completion: PayloadCompletion) -> None:
        """Fetch the current remediation state for an interaction handle."""
        request = APIRequest(
            method="POST",
            url=self.config.introspect_endpoint,
            body={"interactionHandle": interaction_handle},
            encoding=BodyEncoding.ION,
            accept=ION_JSON,
        )
        self._send(request, completion)

    def proceed(self, option: RemediationOption, body: dict[str, Any], completion: PayloadCompletion) -> None:
        """Submit a remediation form."""
        request = APIRequest(
            method=option.method.upper(),
            url=option.href,
            body=body,
            encoding=BodyEncoding.from_content_type(option.accepts),
            accept=ION_JSON,
        )
        self._send(request, completion)

    def success_token_body(self, option: RemediationOption, pkce: PKCE) -> dict[str, Any]:
        """Build the token request body for a successful login response.

        Required fields the server left for the client to fill in are
        populated from configuration and the PKCE verifier.
        """
        fills = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code_verifier": pkce.verifier,
        }
        values = {
            name: fills[name]
            for name, fld, required in option.iter_fields()
            if required and fld.value is None and fills.get(name) is not None
        }
        return option.build_body(values)

    def exchange_success(
        self,
        option: RemediationOption,
        pkce: PKCE,
        completion: PayloadCompletion,
    ) -> None:
        """Redeem the interaction code of a successful login response."""
        request = APIRequest(
            method=option.method.upper(),
            url=option.href,
            body=self.success_token_body(option, pkce),
            encoding=BodyEncoding.from_content_type(option.accepts or "application/x-www-form-urlencoded"),
        )
        self._send(request, completion)

    def openid_configuration(self, completion: ConfigurationCompletion) -> None:
        """Fetch (and cache) the issuer's OpenID Connect discovery document."""
        with self._lock:
            cached = self._openid_configuration
        if cached is not None:
            completion(cached, None)
            return

        request = APIRequest(method="GET", url=self.config.discovery_endpoint, accept=JSON)

        def handle(payload: dict[str, Any] | None, error: ApiError | None) -> None:
            if error is not None or payload is None:
                completion(None, InternalError(error or "Empty discovery document"))
                return
            if not payload.get("token_endpoint"):
                completion(None, InternalError("Discovery document has no token_endpoint"))
                return
            with self._lock:
                self._openid_configuration = payload
            completion(payload, None)

        self._send(request, handle)

    def exchange_interaction_code(
        self,
        interaction_code: str,
        pkce: PKCE,
        completion: TokenPayloadCompletion,
    ) -> None:
        """Redeem an interaction code received on a redirect."""
        body: dict[str, Any] = {
            "grant_type": INTERACTION_CODE_GRANT,
            "client_id": self.config.client_id,
            "interaction_code": interaction_code,
            "code_verifier": pkce.verifier,
            "redirect_uri": self.config.redirect_uri,
            "scope": self.config.scope,
        }
        if self.config.client_secret:
            body["client_secret"] = self.config.client_secret
        self._token_request(body, completion)

    def refresh(
        self,
        refresh_token: str,
        completion: TokenPayloadCompletion,
    ) -> None:
        """Exchange a refresh token for new tokens."""
        body: dict[str, Any] = {
            "grant_type": REFRESH_TOKEN_GRANT,
            "client_id": self.config.client_id,
            "refresh_token": refresh_token,
            "scope": self.config.scope,
        }
        if self.config.client_secret:
            body["client_secret"] = self.config.client_secret
        self._token_request(body, completion)

    def _token_request(
        self,
        body: dict[str, Any],
        completion: TokenPayloadCompletion,
    ) -> None:
        def with_configuration(configuration: dict[str, Any] | None, error: InternalError | None) -> None:
            if error is not None or configuration is None:
                completion(None, error)
                return
            request = APIRequest(method="POST", url=configuration["token_endpoint"], body=body)
            self._send(request, completion)

        self.openid_configuration(with_configuration)

    def _send(self, request: APIRequest, completion: PayloadCompletion) -> None:
        logger.debug(f"Sending {request.method} {request.url}")
        self.transport.send(request, completion)
