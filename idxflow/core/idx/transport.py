"""Transport layer for Identity Engine requests.

The flow never talks to the network directly. It builds ``APIRequest``
objects and hands them to a ``Transport``, which calls back exactly once
with either the decoded JSON payload or an ``ApiError``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

import httpx

from idxflow.core.idx.errors import ApiError, StatusClass
from idxflow.core.logging import LoggingClient, ProtocolLogger, get_protocol_logger
from idxflow.core.version import user_agent

logger = logging.getLogger(__name__)

ION_JSON = "application/ion+json; okta-version=1.0.0"
JSON = "application/json"
FORM = "application/x-www-form-urlencoded"

PayloadCompletion = Callable[[dict[str, Any] | None, ApiError | None], None]


class BodyEncoding(StrEnum):
    """How a request body is encoded on the wire."""

    FORM = "form"
    JSON = "json"
    ION = "ion"

    @classmethod
    def from_content_type(cls, content_type: str | None) -> BodyEncoding:
        """Pick an encoding from a server-advertised ``accepts`` value."""
        if not content_type:
            return cls.ION
        lowered = content_type.lower()
        if "x-www-form-urlencoded" in lowered:
            return cls.FORM
        if "ion+json" in lowered:
            return cls.ION
        return cls.JSON


@dataclass(frozen=True)
class APIRequest:
    """A single request to the authorization server."""

    method: str
    url: str
    body: dict[str, Any] = field(default_factory=dict)
    encoding: BodyEncoding = BodyEncoding.FORM
    accept: str = JSON
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        if self.encoding == BodyEncoding.FORM:
            return FORM
        if self.encoding == BodyEncoding.ION:
            return ION_JSON
        return JSON


class Transport(Protocol):
    """Sends requests on behalf of the flow."""

    def send(self, request: APIRequest, completion: PayloadCompletion) -> None:
        """Send ``request`` and invoke ``completion`` exactly once.

        Remediation lists in the payload must keep the order they were
        received in.
        """
        ...


class HTTPTransport:
    """Transport backed by an httpx client with protocol logging."""

    def __init__(
        self,
        protocol_logger: ProtocolLogger | None = None,
        timeout: float = 30.0,
        verify: bool = True,
    ) -> None:
        """Initialize the transport.

        Args:
            protocol_logger: Optional protocol logger for HTTP traffic capture.
            timeout: Request timeout in seconds.
            verify: Whether to verify TLS certificates.
        """
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._timeout = timeout
        self._verify = verify
        self._http_client: LoggingClient | None = None

    @property
    def http_client(self) -> LoggingClient:
        """Get or create HTTP client with logging."""
        if self._http_client is None:
            self._http_client = LoggingClient(
                protocol_logger=self._protocol_logger,
                timeout=self._timeout,
                verify=self._verify,
            )
        return self._http_client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def __enter__(self) -> HTTPTransport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def send(self, request: APIRequest, completion: PayloadCompletion) -> None:
        try:
            payload = self.perform(request)
        except ApiError as e:
            completion(None, e)
            return
        completion(payload, None)

    def perform(self, request: APIRequest) -> dict[str, Any]:
        """Send a request and return its decoded JSON payload.

        Raises:
            ApiError: On transport failure, non-2xx status or undecodable body.
        """
        headers = {
            "Accept": request.accept,
            "Content-Type": request.content_type,
            "User-Agent": user_agent(),
            **request.headers,
        }
        kwargs: dict[str, Any] = {"headers": headers}
        if request.encoding == BodyEncoding.FORM:
            kwargs["data"] = {k: v for k, v in request.body.items() if v is not None}
        else:
            kwargs["content"] = json.dumps(request.body).encode("utf-8")

        try:
            response = self.http_client.request(request.method, request.url, **kwargs)
        except httpx.HTTPError as e:
            raise ApiError(
                f"HTTP error during {request.method} {request.url}: {e}",
                status_class=StatusClass.TRANSPORT,
                cause=e,
            ) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            logger.debug(f"Request to {request.url} failed with status {response.status_code}")
            raise ApiError.from_payload(response.status_code, data if isinstance(data, dict) else None)

        if not isinstance(data, dict):
            raise ApiError(
                f"Response from {request.url} is not a JSON object",
                status_class=StatusClass.INVALID_RESPONSE,
                status_code=response.status_code,
            )
        return data
