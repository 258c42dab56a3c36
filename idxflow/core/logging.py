"""Protocol logging for interaction code flows.

Provides HTTP-level logging for debugging authentication issues, with
configurable log levels and sensitive data protection.

Log levels:
- ERROR: Only log errors
- INFO: Log flow milestones (requests initiated, responses received)
- DEBUG: Log HTTP details (headers, status codes, timing)
- TRACE: Log full request/response bodies including sensitive data (requires explicit enable)
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

import httpx

# Custom log level for TRACE (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger("idxflow.protocol")


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR  # 40
    INFO = logging.INFO  # 20
    DEBUG = logging.DEBUG  # 10
    TRACE = TRACE  # 5


def _query_pattern(name: str) -> tuple[re.Pattern[str], str]:
    return re.compile(rf"(\b{name}=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]"


def _json_pattern(name: str) -> tuple[re.Pattern[str], str]:
    return re.compile(rf'"({name})"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"'


_QUERY_SECRETS = (
    "client_secret",
    "code",
    "interaction_code",
    "interaction_handle",
    "recovery_token",
    "access_token",
    "refresh_token",
    "id_token",
    "code_verifier",
)

_JSON_SECRETS = (
    "client_secret",
    "access_token",
    "refresh_token",
    "id_token",
    "password",
    "passcode",
    "interaction_code",
    "interaction_handle",
    "interactionHandle",
    "stateHandle",
    "code_verifier",
)

# Patterns for sensitive data redaction
SENSITIVE_PATTERNS = [
    *(_query_pattern(name) for name in _QUERY_SECRETS),
    # HTTP headers (with or without "Authorization:" prefix for header dict values)
    (re.compile(r"(Authorization:\s*Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Authorization:\s*Basic\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^(Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^(Basic\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    # Cookies
    (re.compile(r"(Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Set-Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    *(_json_pattern(name) for name in _JSON_SECRETS),
]


def redact_sensitive(text: str) -> str:
    """Redact sensitive information from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive data redacted.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


@dataclass
class HTTPExchange:
    """Represents a single HTTP request/response exchange."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    request_body: str | None = None
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    redirects: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        Args:
            include_sensitive: If True, include raw sensitive data.
                               If False, redact sensitive information.
        """

        def process(value: str | None) -> str | None:
            if value is None:
                return None
            return value if include_sensitive else redact_sensitive(value)

        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "url": process(self.url),
            "request_headers": {k: process(v) for k, v in self.request_headers.items()},
            "request_body": process(self.request_body),
            "response_status": self.response_status,
            "response_headers": {k: process(v) for k, v in self.response_headers.items()},
            "response_body": process(self.response_body),
            "duration_ms": self.duration_ms,
            "error": self.error,
            "redirects": [{"url": process(r["url"]), "status": r.get("status")} for r in self.redirects],
        }

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the exchange for logging.

        Args:
            level: Log level determines how much detail to include.
            include_sensitive: If True, include raw sensitive data.
        """

        def show(value: str) -> str:
            return value if include_sensitive else redact_sensitive(value)

        lines = []
        status = self.response_status or "ERROR"
        lines.append(f"HTTP {self.method} {show(self.url)} -> {status}")
        if self.duration_ms is not None:
            lines.append(f"  Duration: {self.duration_ms:.1f}ms")
        if self.error:
            lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            lines.append("  Request Headers:")
            for name, value in self.request_headers.items():
                lines.append(f"    {name}: {show(value)}")

            if self.response_headers:
                lines.append("  Response Headers:")
                for name, value in self.response_headers.items():
                    lines.append(f"    {name}: {show(value)}")

            if self.redirects:
                lines.append("  Redirects:")
                for redirect in self.redirects:
                    lines.append(f"    -> {redirect.get('status', '???')} {show(redirect['url'])}")

        if level <= LogLevel.TRACE:
            for title, body in (("Request Body", self.request_body), ("Response Body", self.response_body)):
                if body:
                    body = show(body)
                    lines.append(f"  {title}:")
                    lines.append(f"    {body[:2000]}{'...' if len(body) > 2000 else ''}")

        return "\n".join(lines)


@dataclass
class ProtocolLog:
    """Collects protocol exchanges for one authentication attempt."""

    flow_id: str
    flow_type: str
    exchanges: list[HTTPExchange] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def add_exchange(self, exchange: HTTPExchange) -> None:
        self.exchanges.append(exchange)

    def complete(self) -> None:
        self.completed_at = datetime.now(UTC)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "flow_id": self.flow_id,
            "flow_type": self.flow_type,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "exchanges": [e.to_dict(include_sensitive) for e in self.exchanges],
            "exchange_count": len(self.exchanges),
        }


class ProtocolLogger:
    """Configurable protocol logger for authentication flows.

    Manages log level settings and collects HTTP exchanges for the
    authentication attempt currently in progress.
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        trace_enabled: bool = False,
    ) -> None:
        """Initialize the protocol logger.

        Args:
            level: Minimum log level.
            trace_enabled: Whether TRACE level is enabled (for sensitive data).
        """
        self._level = level
        self._trace_enabled = trace_enabled
        self._current_log: ProtocolLog | None = None

    @property
    def level(self) -> LogLevel:
        return self._level

    @level.setter
    def level(self, value: LogLevel) -> None:
        self._level = value

    @property
    def trace_enabled(self) -> bool:
        return self._trace_enabled

    @trace_enabled.setter
    def trace_enabled(self, value: bool) -> None:
        self._trace_enabled = value

    @property
    def effective_level(self) -> LogLevel:
        """Get effective log level (TRACE only if explicitly enabled)."""
        if self._level == LogLevel.TRACE and not self._trace_enabled:
            return LogLevel.DEBUG
        return self._level

    @property
    def current_log(self) -> ProtocolLog | None:
        return self._current_log

    def start_flow(self, flow_id: str, flow_type: str) -> ProtocolLog:
        """Start logging a new authentication attempt.

        Args:
            flow_id: Unique identifier for the attempt.
            flow_type: Type of flow (e.g., "idx_interaction_code").

        Returns:
            ProtocolLog for the attempt.
        """
        self._current_log = ProtocolLog(flow_id=flow_id, flow_type=flow_type)
        logger.info(f"Started protocol logging for {flow_type} flow: {flow_id}")
        return self._current_log

    def end_flow(self) -> ProtocolLog | None:
        """End the current attempt and return its log, if one was active."""
        if self._current_log:
            self._current_log.complete()
            log = self._current_log
            logger.info(
                f"Completed protocol logging for {log.flow_type} flow: {log.flow_id} "
                f"({len(log.exchanges)} exchanges)"
            )
            self._current_log = None
            return log
        return None

    def log_exchange(self, exchange: HTTPExchange) -> None:
        """Record an HTTP exchange and emit it to the Python logger."""
        if self._current_log:
            self._current_log.add_exchange(exchange)

        effective = self.effective_level
        include_sensitive = self._trace_enabled and self._level <= LogLevel.TRACE

        if effective <= LogLevel.DEBUG:
            logger.debug(exchange.format_log(effective, include_sensitive))
        elif effective <= LogLevel.INFO:
            logger.info(exchange.format_log(effective, include_sensitive))

        if exchange.error:
            logger.error(f"HTTP error: {exchange.method} {redact_sensitive(exchange.url)}: {exchange.error}")


class LoggingClient(httpx.Client):
    """HTTPX client with protocol logging support."""

    def __init__(
        self,
        protocol_logger: ProtocolLogger | None = None,
        max_redirects: int = 10,
        **kwargs: Any,
    ) -> None:
        """Initialize the logging client.

        Args:
            protocol_logger: ProtocolLogger to use. Creates default if not provided.
            max_redirects: Maximum number of redirects followed per request.
            **kwargs: Additional arguments passed to httpx.Client.
        """
        self._protocol_logger = protocol_logger or ProtocolLogger()
        self._max_redirects = max_redirects

        # Redirects are followed manually so the chain can be recorded
        kwargs["follow_redirects"] = False

        super().__init__(**kwargs)

    @property
    def protocol_logger(self) -> ProtocolLogger:
        return self._protocol_logger

    def _log_exchange(
        self,
        request: httpx.Request,
        response: httpx.Response | None,
        start_time: float,
        redirects: list[dict[str, Any]],
        error: str | None = None,
    ) -> None:
        request_body = None
        if request.content:
            try:
                request_body = request.content.decode("utf-8")
            except UnicodeDecodeError:
                request_body = "<binary content>"

        exchange = HTTPExchange(
            id=f"http_{id(request):08x}",
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
            request_body=request_body,
            duration_ms=(time.perf_counter() - start_time) * 1000,
            redirects=redirects,
            error=error,
        )
        if response is not None:
            exchange.response_status = response.status_code
            exchange.response_headers = dict(response.headers)
            exchange.response_body = response.text

        self._protocol_logger.log_exchange(exchange)

    def request(self, method: str, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:
        """Make an HTTP request with logging.

        Handles redirect following manually to capture redirect chain.
        """
        start_time = time.perf_counter()
        redirects: list[dict[str, Any]] = []

        request = self.build_request(method, url, **kwargs)
        try:
            response = super().send(request)

            while response.is_redirect and len(redirects) < self._max_redirects:
                redirect_url = response.headers.get("location", "")
                redirects.append({"url": redirect_url, "status": response.status_code})
                if not redirect_url:
                    break
                request = self.build_request("GET", request.url.join(redirect_url))
                response = super().send(request)
        except httpx.HTTPError as e:
            self._log_exchange(request, None, start_time, redirects, error=str(e))
            raise

        self._log_exchange(request, response, start_time, redirects)
        return response


# Global protocol logger instance
_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the global protocol logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Set the global protocol logger instance."""
    global _global_logger
    _global_logger = logger_instance


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure protocol logging.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or string name.
        trace_enabled: Whether to enable TRACE level (includes sensitive data).
        log_file: Optional file path to write logs to.

    Returns:
        Configured ProtocolLogger.
    """
    if isinstance(level, str):
        level = LogLevel.__members__.get(level.upper(), LogLevel.INFO)

    package_logger = logging.getLogger("idxflow")
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        logger.warning("TRACE logging enabled - sensitive data (tokens, secrets) will be logged!")

    return protocol_logger
