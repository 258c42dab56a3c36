"""Tests for the HTTP transport."""

import json

import httpx
import pytest

from idxflow.core.idx import APIRequest, ApiError, BodyEncoding, HTTPTransport, StatusClass
from idxflow.core.idx.transport import ION_JSON
from idxflow.core.logging import LoggingClient, ProtocolLogger
from idxflow.core.version import register_sdk_version


def make_transport(handler) -> tuple[HTTPTransport, ProtocolLogger]:
    protocol_logger = ProtocolLogger()
    transport = HTTPTransport(protocol_logger=protocol_logger)
    transport._http_client = LoggingClient(
        protocol_logger=protocol_logger,
        transport=httpx.MockTransport(handler),
    )
    return transport, protocol_logger


class TestBodyEncoding:
    """Tests for choosing a body encoding."""

    @pytest.mark.parametrize(
        ("accepts", "expected"),
        [
            (None, BodyEncoding.ION),
            ("application/ion+json; okta-version=1.0.0", BodyEncoding.ION),
            ("application/json; okta-version=1.0.0", BodyEncoding.JSON),
            ("application/x-www-form-urlencoded", BodyEncoding.FORM),
        ],
    )
    def test_from_content_type(self, accepts, expected):
        """Test advertised content types map to encodings."""
        assert BodyEncoding.from_content_type(accepts) == expected


class TestHTTPTransport:
    """Tests for HTTPTransport."""

    def test_form_request(self):
        """Test form bodies are URL-encoded and None values dropped."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content.decode()
            seen["user_agent"] = request.headers["user-agent"]
            return httpx.Response(200, json={"interaction_handle": "ih-1"})

        register_sdk_version()
        transport, _ = make_transport(handler)

        payload = transport.perform(
            APIRequest(method="POST", url="https://example.com/v1/interact", body={"client_id": "c", "skip": None})
        )

        assert payload == {"interaction_handle": "ih-1"}
        assert seen["content_type"] == "application/x-www-form-urlencoded"
        assert seen["body"] == "client_id=c"
        assert seen["user_agent"].startswith("idxflow/")

    def test_ion_request(self):
        """Test Ion bodies are JSON-encoded with the Ion content type."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["content_type"] = request.headers["content-type"]
            seen["accept"] = request.headers["accept"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"stateHandle": "s"})

        transport, _ = make_transport(handler)
        transport.perform(
            APIRequest(
                method="POST",
                url="https://example.com/idp/idx/introspect",
                body={"interactionHandle": "ih-1"},
                encoding=BodyEncoding.ION,
                accept=ION_JSON,
            )
        )

        assert seen["content_type"] == ION_JSON
        assert seen["accept"] == ION_JSON
        assert seen["body"] == {"interactionHandle": "ih-1"}

    def test_error_response(self):
        """Test error bodies become ApiError with their details."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Code expired"})

        transport, _ = make_transport(handler)
        with pytest.raises(ApiError) as exc_info:
            transport.perform(APIRequest(method="POST", url="https://example.com/v1/token"))

        error = exc_info.value
        assert error.status_class == StatusClass.CLIENT_ERROR
        assert error.status_code == 400
        assert error.error_code == "invalid_grant"
        assert str(error) == "Code expired (HTTP 400)"

    def test_ion_error_messages(self):
        """Test Ion message collections are summarized."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                503,
                json={"messages": {"type": "array", "value": [{"message": "Try again later", "class": "ERROR"}]}},
            )

        transport, _ = make_transport(handler)
        with pytest.raises(ApiError) as exc_info:
            transport.perform(APIRequest(method="POST", url="https://example.com/idp/idx/identify"))

        assert exc_info.value.status_class == StatusClass.SERVER_ERROR
        assert exc_info.value.error_summaries == ["Try again later"]

    def test_non_object_body(self):
        """Test responses that are not JSON objects are invalid."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html></html>")

        transport, _ = make_transport(handler)
        with pytest.raises(ApiError) as exc_info:
            transport.perform(APIRequest(method="GET", url="https://example.com/"))
        assert exc_info.value.status_class == StatusClass.INVALID_RESPONSE

    def test_network_failure(self):
        """Test connection failures are reported through the completion."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport, protocol_logger = make_transport(handler)
        protocol_logger.start_flow("flow_1", "idx_interaction_code")
        results = []

        transport.send(APIRequest(method="GET", url="https://example.com/"), lambda p, e: results.append((p, e)))

        payload, error = results[0]
        assert payload is None
        assert error.status_class == StatusClass.TRANSPORT
        assert isinstance(error.cause, httpx.ConnectError)
        assert protocol_logger.current_log.exchanges[0].error is not None

    def test_close(self):
        """Test closing releases the HTTP client."""
        transport = HTTPTransport()
        assert isinstance(transport.http_client, LoggingClient)
        transport.close()
        assert transport._http_client is None
