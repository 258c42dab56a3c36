"""Interaction code (Identity Engine) authentication flow."""

from idxflow.core.idx.client import IDXClient, IDXClientConfig
from idxflow.core.idx.context import Context
from idxflow.core.idx.errors import (
    ApiError,
    IDXFlowError,
    InternalError,
    InvalidContext,
    InvalidParameter,
    InvalidRedirectUrl,
    MissingRefreshToken,
    MissingRemediationOption,
    MissingRequiredParameter,
    ParameterImmutable,
    PlatformUnsupported,
    StatusClass,
    SuccessResponseMissing,
    UnknownRemediationOption,
)
from idxflow.core.idx.flows import (
    FlowStatus,
    IDXAuthenticationFlow,
    IDXAuthenticationFlowDelegate,
)
from idxflow.core.idx.models import (
    Authenticator,
    AuthenticatorCollection,
    Field,
    FieldOption,
    Message,
    RemediationCollection,
    RemediationOption,
    Response,
    Token,
)
from idxflow.core.idx.pkce import PKCE, generate_code_challenge, generate_code_verifier
from idxflow.core.idx.redirect import Redirect, RedirectResult, evaluate
from idxflow.core.idx.transport import APIRequest, BodyEncoding, HTTPTransport, Transport

__all__ = [
    # Client
    "APIRequest",
    "BodyEncoding",
    "HTTPTransport",
    "IDXClient",
    "IDXClientConfig",
    "Transport",
    # Flow
    "Context",
    "FlowStatus",
    "IDXAuthenticationFlow",
    "IDXAuthenticationFlowDelegate",
    # Model
    "Authenticator",
    "AuthenticatorCollection",
    "Field",
    "FieldOption",
    "Message",
    "RemediationCollection",
    "RemediationOption",
    "Response",
    "Token",
    # PKCE
    "PKCE",
    "generate_code_challenge",
    "generate_code_verifier",
    # Redirects
    "Redirect",
    "RedirectResult",
    "evaluate",
    # Errors
    "ApiError",
    "IDXFlowError",
    "InternalError",
    "InvalidContext",
    "InvalidParameter",
    "InvalidRedirectUrl",
    "MissingRefreshToken",
    "MissingRemediationOption",
    "MissingRequiredParameter",
    "ParameterImmutable",
    "PlatformUnsupported",
    "StatusClass",
    "SuccessResponseMissing",
    "UnknownRemediationOption",
]
