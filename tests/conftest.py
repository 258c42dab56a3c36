"""Pytest configuration and fixtures."""

from __future__ import annotations

import copy
import logging
from collections import defaultdict, deque
from typing import Any

import pytest

from idxflow.core.idx import (
    APIRequest,
    ApiError,
    IDXAuthenticationFlow,
    IDXClientConfig,
)
from idxflow.core.logging import ProtocolLogger

ISSUER = "https://example.okta.com/oauth2/default"
REDIRECT_URI = "com.example.app:/callback"
TOKEN_ENDPOINT = "https://example.okta.com/oauth2/default/v1/token"

INTERACT_SUFFIX = "/v1/interact"
INTROSPECT_SUFFIX = "/idp/idx/introspect"
IDENTIFY_SUFFIX = "/idp/idx/identify"
CHALLENGE_SUFFIX = "/idp/idx/challenge"
CHALLENGE_ANSWER_SUFFIX = "/idp/idx/challenge/answer"
CANCEL_SUFFIX = "/idp/idx/cancel"
DISCOVERY_SUFFIX = "/.well-known/openid-configuration"
TOKEN_SUFFIX = "/v1/token"


class StubTransport:
    """Transport that answers from queued payloads keyed by URL suffix.

    Requests are recorded in order. A request with nothing queued for it
    fails the test.
    """

    def __init__(self) -> None:
        self.requests: list[APIRequest] = []
        self._queues: dict[str, deque[Any]] = defaultdict(deque)

    def add(self, suffix: str, payload: dict[str, Any] | ApiError) -> StubTransport:
        self._queues[suffix].append(payload)
        return self

    def urls(self) -> list[str]:
        return [request.url for request in self.requests]

    def last(self, suffix: str) -> APIRequest:
        return [r for r in self.requests if r.url.endswith(suffix)][-1]

    def send(self, request, completion) -> None:
        self.requests.append(request)
        for suffix, queue in self._queues.items():
            if request.url.endswith(suffix) and queue:
                answer = queue.popleft()
                break
        else:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")

        if isinstance(answer, ApiError):
            completion(None, answer)
        else:
            completion(copy.deepcopy(answer), None)


class DeferredTransport:
    """Transport that holds completions until the test releases them."""

    def __init__(self) -> None:
        self.pending: list[tuple[APIRequest, Any]] = []

    def send(self, request, completion) -> None:
        self.pending.append((request, completion))

    def release(self, index: int, payload: dict[str, Any] | None = None, error: ApiError | None = None) -> None:
        _request, completion = self.pending[index]
        completion(payload, error)


class RecordingDelegate:
    """Delegate that records every notification it receives."""

    def __init__(self, name: str = "delegate", log: list[tuple[str, str]] | None = None) -> None:
        self.name = name
        self.log = log if log is not None else []
        self.errors: list[Exception] = []
        self.responses: list[Any] = []
        self.tokens: list[Any] = []

    def authentication_started(self, flow) -> None:
        self.log.append((self.name, "started"))

    def authentication_finished(self, flow) -> None:
        self.log.append((self.name, "finished"))

    def received_error(self, flow, error) -> None:
        self.log.append((self.name, "error"))
        self.errors.append(error)

    def received_response(self, flow, response) -> None:
        self.log.append((self.name, "response"))
        self.responses.append(response)

    def received_token(self, flow, token) -> None:
        self.log.append((self.name, "token"))
        self.tokens.append(token)


class Result:
    """Callable completion that stores what it was called with."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, Any]] = []

    def __call__(self, value: Any, error: Any) -> None:
        self.calls.append((value, error))

    @property
    def value(self) -> Any:
        assert len(self.calls) == 1, f"expected one call, got {len(self.calls)}"
        return self.calls[0][0]

    @property
    def error(self) -> Any:
        assert len(self.calls) == 1, f"expected one call, got {len(self.calls)}"
        return self.calls[0][1]


def identify_payload() -> dict[str, Any]:
    """Introspect response asking for a username, with a cancel option."""
    return {
        "version": "1.0.0",
        "stateHandle": "02state",
        "expiresAt": "2030-01-01T00:00:00.000Z",
        "intent": "LOGIN",
        "remediation": {
            "type": "array",
            "value": [
                {
                    "rel": ["create-form"],
                    "name": "identify",
                    "href": f"https://example.okta.com{IDENTIFY_SUFFIX}",
                    "method": "POST",
                    "accepts": "application/json; okta-version=1.0.0",
                    "value": [
                        {"name": "identifier", "label": "Username", "required": True},
                        {"name": "rememberMe", "type": "boolean", "label": "Remember this device"},
                        {"name": "stateHandle", "required": True, "value": "02state", "visible": False, "mutable": False},
                    ],
                },
                {
                    "rel": ["create-form"],
                    "name": "select-enroll-profile",
                    "href": "https://example.okta.com/idp/idx/enroll",
                    "method": "POST",
                    "accepts": "application/json; okta-version=1.0.0",
                    "value": [
                        {"name": "stateHandle", "required": True, "value": "02state", "visible": False, "mutable": False},
                    ],
                },
            ],
        },
        "cancel": {
            "rel": ["create-form"],
            "name": "cancel",
            "href": f"https://example.okta.com{CANCEL_SUFFIX}",
            "method": "POST",
            "accepts": "application/json; okta-version=1.0.0",
            "value": [
                {"name": "stateHandle", "required": True, "value": "02state", "visible": False, "mutable": False},
            ],
        },
        "app": {"type": "object", "value": {"name": "oidc_client", "label": "Example App", "id": "0oa1"}},
    }


def select_authenticator_payload() -> dict[str, Any]:
    """Remediation response asking the user to pick an authenticator."""
    return {
        "version": "1.0.0",
        "stateHandle": "02state",
        "remediation": {
            "type": "array",
            "value": [
                {
                    "rel": ["create-form"],
                    "name": "select-authenticator-authenticate",
                    "href": f"https://example.okta.com{CHALLENGE_SUFFIX}",
                    "method": "POST",
                    "accepts": "application/json; okta-version=1.0.0",
                    "value": [
                        {
                            "name": "authenticator",
                            "type": "object",
                            "required": True,
                            "options": [
                                {
                                    "label": "Password",
                                    "value": {
                                        "form": {
                                            "value": [
                                                {"name": "id", "required": True, "value": "aut-password", "mutable": False},
                                                {"name": "methodType", "required": False, "value": "password", "mutable": False},
                                            ]
                                        }
                                    },
                                    "relatesTo": "$.authenticatorEnrollments.value[0]",
                                },
                                {
                                    "label": "Email",
                                    "value": {
                                        "form": {
                                            "value": [
                                                {"name": "id", "required": True, "value": "aut-email", "mutable": False},
                                                {"name": "methodType", "required": False, "value": "email", "mutable": False},
                                            ]
                                        }
                                    },
                                    "relatesTo": "$.authenticatorEnrollments.value[1]",
                                },
                            ],
                        },
                        {"name": "stateHandle", "required": True, "value": "02state", "visible": False, "mutable": False},
                    ],
                },
            ],
        },
        "authenticatorEnrollments": {
            "type": "array",
            "value": [
                {"type": "password", "key": "okta_password", "id": "aut-password", "displayName": "Password",
                 "methods": [{"type": "password"}]},
                {"type": "email", "key": "okta_email", "id": "aut-email", "displayName": "Email",
                 "methods": [{"type": "email"}]},
            ],
        },
        "user": {"type": "object", "value": {"id": "00u1"}},
    }


def challenge_payload() -> dict[str, Any]:
    """Remediation response asking for a password, with nested credentials."""
    return {
        "version": "1.0.0",
        "stateHandle": "02state",
        "remediation": {
            "type": "array",
            "value": [
                {
                    "rel": ["create-form"],
                    "name": "challenge-authenticator",
                    "relatesTo": ["$.currentAuthenticatorEnrollment"],
                    "href": f"https://example.okta.com{CHALLENGE_ANSWER_SUFFIX}",
                    "method": "POST",
                    "accepts": "application/json; okta-version=1.0.0",
                    "value": [
                        {
                            "name": "credentials",
                            "type": "object",
                            "required": True,
                            "form": {
                                "value": [
                                    {"name": "passcode", "label": "Password", "secret": True},
                                ]
                            },
                        },
                        {"name": "stateHandle", "required": True, "value": "02state", "visible": False, "mutable": False},
                    ],
                },
            ],
        },
        "currentAuthenticatorEnrollment": {
            "type": "object",
            "value": {"type": "password", "key": "okta_password", "id": "aut-password", "displayName": "Password"},
        },
        "messages": {
            "type": "array",
            "value": [{"message": "Password is incorrect", "class": "ERROR", "i18n": {"key": "incorrectPassword"}}],
        },
    }


def phone_authenticator_payload() -> dict[str, Any]:
    """Remediation response offering a phone authenticator with a method choice."""
    return {
        "version": "1.0.0",
        "stateHandle": "02state",
        "remediation": {
            "type": "array",
            "value": [
                {
                    "rel": ["create-form"],
                    "name": "select-authenticator-authenticate",
                    "href": f"https://example.okta.com{CHALLENGE_SUFFIX}",
                    "method": "POST",
                    "accepts": "application/json; okta-version=1.0.0",
                    "value": [
                        {
                            "name": "authenticator",
                            "type": "object",
                            "required": True,
                            "options": [
                                {
                                    "label": "Phone",
                                    "value": {
                                        "form": {
                                            "value": [
                                                {"name": "id", "required": True, "value": "aut-phone", "mutable": False},
                                                {
                                                    "name": "methodType",
                                                    "type": "string",
                                                    "required": True,
                                                    "options": [
                                                        {"label": "SMS", "value": "sms"},
                                                        {"label": "Voice call", "value": "voice"},
                                                    ],
                                                },
                                            ]
                                        }
                                    },
                                    "relatesTo": "$.authenticatorEnrollments.value[0]",
                                },
                            ],
                        },
                        {"name": "stateHandle", "required": True, "value": "02state", "visible": False, "mutable": False},
                    ],
                },
            ],
        },
        "authenticatorEnrollments": {
            "type": "array",
            "value": [
                {"type": "phone", "key": "phone_number", "id": "aut-phone", "displayName": "Phone",
                 "methods": [{"type": "sms"}, {"type": "voice"}]},
            ],
        },
    }


def success_payload() -> dict[str, Any]:
    """Remediation response signalling a successful login."""
    return {
        "version": "1.0.0",
        "stateHandle": "02state",
        "remediation": {"type": "array", "value": []},
        "successWithInteractionCode": {
            "rel": ["create-form"],
            "name": "issue",
            "href": TOKEN_ENDPOINT,
            "method": "POST",
            "accepts": "application/x-www-form-urlencoded",
            "value": [
                {"name": "grant_type", "required": True, "value": "interaction_code"},
                {"name": "interaction_code", "required": True, "value": "ic-123"},
                {"name": "client_id", "required": True, "value": "test-client"},
                {"name": "client_secret", "required": False},
                {"name": "code_verifier", "required": True},
            ],
        },
    }


def token_payload(refresh_token: str | None = "refresh-abc") -> dict[str, Any]:
    payload = {
        "token_type": "Bearer",
        "expires_in": 3600,
        "access_token": "access-abc",
        "scope": "openid profile offline_access",
        "id_token": "header.payload.signature",
    }
    if refresh_token:
        payload["refresh_token"] = refresh_token
    return payload


def discovery_payload() -> dict[str, Any]:
    return {
        "issuer": ISSUER,
        "authorization_endpoint": f"{ISSUER}/v1/authorize",
        "token_endpoint": TOKEN_ENDPOINT,
    }


@pytest.fixture(autouse=True)
def reset_package_logging():
    """Drop handlers installed by configure_logging so they do not outlive a test."""
    yield
    logging.getLogger("idxflow").handlers.clear()


@pytest.fixture
def config() -> IDXClientConfig:
    return IDXClientConfig(
        issuer=ISSUER,
        client_id="test-client",
        redirect_uri=REDIRECT_URI,
    )


@pytest.fixture
def transport() -> StubTransport:
    return StubTransport()


@pytest.fixture
def flow(config: IDXClientConfig, transport: StubTransport) -> IDXAuthenticationFlow:
    """Flow wired to a stub transport and a private protocol logger."""
    return IDXAuthenticationFlow(config, transport=transport, protocol_logger=ProtocolLogger())


@pytest.fixture
def started(flow: IDXAuthenticationFlow, transport: StubTransport) -> IDXAuthenticationFlow:
    """Flow that has completed interact and introspect with the identify step."""
    transport.add(INTERACT_SUFFIX, {"interaction_handle": "ih-1"})
    transport.add(INTROSPECT_SUFFIX, identify_payload())
    flow.start()
    return flow
