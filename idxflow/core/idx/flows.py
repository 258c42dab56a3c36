"""Interaction code authentication flow.

Orchestrates the Identity Engine authentication sequence:

1. Interact: obtain an interaction handle bound to a PKCE challenge
2. Introspect: discover the remediation steps the server currently allows
3. Remediate: submit forms chosen by the caller until login succeeds
4. Exchange: redeem the interaction code for tokens

The set of steps is decided by server-side policy. The flow never assumes a
particular sequence; callers inspect each Response and choose what to do.

Every operation is callback based. Completions and delegate notifications
are delivered synchronously on the call (or transport callback) that
produced them. Delegates must not call back into the flow synchronously;
queue any follow-up work instead. The ``*_async`` methods are thin asyncio
adapters over the same callback core.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import threading
import uuid
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import Any

from idxflow.core.idx.client import STATE_OPTION, IDXClient, IDXClientConfig
from idxflow.core.idx.context import Context
from idxflow.core.idx.errors import (
    IDXFlowError,
    InvalidContext,
    InvalidRedirectUrl,
    MissingRefreshToken,
    SuccessResponseMissing,
    wrap_error,
)
from idxflow.core.idx.models import RemediationOption, Response, Token
from idxflow.core.idx.pkce import PKCE
from idxflow.core.idx.redirect import Redirect, RedirectResult, evaluate
from idxflow.core.idx.transport import Transport
from idxflow.core.logging import ProtocolLogger, get_protocol_logger
from idxflow.core.version import register_sdk_version

logger = logging.getLogger(__name__)

FLOW_TYPE = "idx_interaction_code"

Completion = Callable[[Any, IDXFlowError | None], None]


class FlowStatus(StrEnum):
    """Status of an interaction code flow."""

    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    AWAITING_REMEDIATION = "awaiting_remediation"
    FINISHED = "finished"


class IDXAuthenticationFlowDelegate:
    """Receives updates from an ``IDXAuthenticationFlow``.

    Subclass and override the methods of interest. Objects that do not
    subclass this are also accepted; missing methods are skipped.
    """

    def authentication_started(self, flow: IDXAuthenticationFlow) -> None:
        """Called before authentication begins."""

    def authentication_finished(self, flow: IDXAuthenticationFlow) -> None:
        """Called when authentication completes, is cancelled, or is reset."""

    def received_error(self, flow: IDXAuthenticationFlow, error: IDXFlowError) -> None:
        """Called when any operation fails."""

    def received_response(self, flow: IDXAuthenticationFlow, response: Response) -> None:
        """Called when a new Response is received from resume or proceed."""

    def received_token(self, flow: IDXAuthenticationFlow, token: Token) -> None:
        """Called when tokens are issued."""


class _Once:
    """Wraps a completion so it runs at most once."""

    def __init__(self, completion: Callable[[Any, Any], None]) -> None:
        self._completion = completion
        self.called = False

    def __call__(self, result: Any, error: Any) -> None:
        if self.called:
            return
        self.called = True
        self._completion(result, error)


class IDXAuthenticationFlow:
    """Drives a user through a server-defined authentication sequence.

    One instance represents one logical authentication attempt at a time.
    Callers must not overlap ``resume``/``proceed``/``exchange_code`` calls;
    when they do, the first response to arrive wins and later ones are
    rejected as stale.
    """

    def __init__(
        self,
        config: IDXClientConfig,
        transport: Transport | None = None,
        protocol_logger: ProtocolLogger | None = None,
    ) -> None:
        """Initialize the flow.

        Args:
            config: Client configuration (issuer, client ID, redirect URI, scopes).
            transport: Transport used for requests. Defaults to HTTPTransport.
            protocol_logger: Optional protocol logger for HTTP traffic capture.
        """
        register_sdk_version()

        self.config = config
        self.client = IDXClient(config, transport)
        self.protocol_logger = protocol_logger or get_protocol_logger()

        self._lock = threading.RLock()
        self._delegates: list[Any] = []
        self._context: Context | None = None
        self._response: Response | None = None
        self._status = FlowStatus.IDLE
        self._is_authenticating = False
        self._attempt = 0
        self._generation = 0

    # Read-only state

    @property
    def redirect_uri(self) -> str:
        return self.config.redirect_uri

    @property
    def context(self) -> Context | None:
        """The context of the current attempt, if any."""
        return self._context

    @property
    def response(self) -> Response | None:
        """The most recent Response of the current attempt."""
        return self._response

    @property
    def status(self) -> FlowStatus:
        return self._status

    @property
    def is_authenticating(self) -> bool:
        """Whether an authentication attempt is in progress."""
        return self._is_authenticating

    @property
    def generation(self) -> int:
        """Counter identifying the current Response; stale options carry an older value."""
        return self._generation

    def _set_authenticating(self, value: bool) -> None:
        if self._is_authenticating == value:
            return
        self._is_authenticating = value
        if value:
            self._notify("authentication_started", self)
        else:
            self._notify("authentication_finished", self)

    # Delegates

    def add_delegate(self, delegate: Any) -> None:
        """Register a delegate. Delegates are invoked in registration order."""
        with self._lock:
            self._delegates.append(delegate)

    @property
    def delegates(self) -> tuple[Any, ...]:
        return tuple(self._delegates)

    def _notify(self, method: str, *args: Any) -> None:
        for delegate in tuple(self._delegates):
            handler = getattr(delegate, method, None)
            if handler is not None:
                handler(*args)

    def report_error(self, error: IDXFlowError, completion: Completion | None = None) -> None:
        """Deliver ``error`` to delegates and to ``completion``."""
        logger.info(f"Authentication flow error: {type(error).__name__}: {error}")
        self._notify("received_error", self, error)
        if completion is not None:
            completion(None, error)

    def _report_response(self, response: Response, completion: Completion | None) -> None:
        logger.info(f"Received response with remediations: {', '.join(response.remediations.names) or '-'}")
        self._notify("received_response", self, response)
        if completion is not None:
            completion(response, None)

    def _report_token(self, token: Token, completion: Completion | None) -> None:
        self._notify("received_token", self, token)
        if completion is not None:
            completion(token, None)

    def _discard(self, completion: Completion | None) -> None:
        # Late result for a superseded attempt or Response: only its caller hears about it
        logger.debug("Discarding result for a superseded authentication attempt")
        if completion is not None:
            completion(None, InvalidContext("Authentication attempt was superseded"))

    def _dispatch(self, call: Callable[[_Once], None], handler: Callable[[Any, Any], None]) -> None:
        once = _Once(handler)
        try:
            call(once)
        except Exception as e:
            if once.called:
                raise
            once(None, wrap_error(e))

    # Lifecycle

    def start(
        self,
        options: Mapping[str, str] | None = None,
        completion: Completion | None = None,
    ) -> None:
        """Start a new authentication attempt.

        Any attempt already in progress is cancelled first. On success the
        context is assigned and the flow immediately resumes, so the
        completion receives the first Response.

        Args:
            options: ``state`` (caller CSRF value), ``recovery_token``, or any
                other parameter to pass through to the interact request.
            completion: Receives ``(Response, None)`` or ``(None, error)``.
        """
        with self._lock:
            if self._is_authenticating:
                self.cancel()

            request_options = dict(options or {})
            state = request_options.get(STATE_OPTION) or str(uuid.uuid4())
            request_options[STATE_OPTION] = state

            try:
                pkce = PKCE.generate()
            except IDXFlowError as e:
                self.report_error(e, completion)
                return

            self._attempt += 1
            attempt = self._attempt
            self._status = FlowStatus.AUTHENTICATING
            self.protocol_logger.start_flow(f"idx_flow_{secrets.token_hex(8)}", FLOW_TYPE)
            self._set_authenticating(True)

        def handle(interaction_handle: str | None, error: IDXFlowError | None) -> None:
            with self._lock:
                if attempt != self._attempt:
                    stale = True
                else:
                    stale = False
                    if error is None and interaction_handle:
                        self._context = Context(interaction_handle=interaction_handle, state=state, pkce=pkce)
                    else:
                        self.cancel()
            if stale:
                self._discard(completion)
            elif error is not None:
                self.report_error(error, completion)
            else:
                logger.info("Interaction handle received; resuming authentication")
                self.resume(completion)

        self._dispatch(lambda done: self.client.interact(pkce, request_options, done), handle)

    def restore(self, context: Context) -> None:
        """Adopt a previously persisted context, replacing any current attempt.

        Call ``resume`` afterwards to fetch the current Response.
        """
        with self._lock:
            self.reset()
            self._attempt += 1
            self._context = context
            self._status = FlowStatus.AUTHENTICATING
            self._set_authenticating(True)

    def resume(self, completion: Completion | None = None) -> None:
        """Fetch the remediation steps currently available to the user."""
        with self._lock:
            context = self._context
            if context is None:
                self.report_error(InvalidContext(), completion)
                return
            attempt = self._attempt
            previous = self._status
            self._status = FlowStatus.AUTHENTICATING

        self._dispatch(
            lambda done: self.client.introspect(context.interaction_handle, done),
            lambda payload, error: self._receive_payload(attempt, None, previous, payload, error, completion),
        )

    def proceed(
        self,
        option: RemediationOption,
        values: Mapping[str, Any] | None = None,
        completion: Completion | None = None,
    ) -> None:
        """Submit a remediation option from the current Response.

        Values are validated before anything is sent. Options belonging to an
        earlier Response are rejected with ``InvalidContext``.
        """
        with self._lock:
            if self._context is None or option.flow is not self or option.generation != self._generation:
                self.report_error(InvalidContext("Remediation option is not part of the current response"), completion)
                return
            try:
                body = option.build_body(values)
            except IDXFlowError as e:
                self.report_error(e, completion)
                return
            attempt = self._attempt
            generation = self._generation
            previous = self._status
            self._status = FlowStatus.AUTHENTICATING

        logger.info(f"Proceeding with remediation: {option.name}")
        self._dispatch(
            lambda done: self.client.proceed(option, body, done),
            lambda payload, error: self._receive_payload(attempt, generation, previous, payload, error, completion),
        )

    def _receive_payload(
        self,
        attempt: int,
        generation: int | None,
        previous: FlowStatus,
        payload: dict[str, Any] | None,
        error: IDXFlowError | None,
        completion: Completion | None,
    ) -> None:
        response: Response | None = None
        with self._lock:
            if attempt != self._attempt or (generation is not None and generation != self._generation):
                stale = True
            else:
                stale = False
                if error is None:
                    try:
                        response = Response.from_payload(payload or {}, flow=self, generation=self._generation + 1)
                    except Exception as e:
                        error = wrap_error(e)
                if response is not None:
                    self._generation = response.generation
                    self._response = response
                    self._status = FlowStatus.AWAITING_REMEDIATION
                else:
                    self._status = previous

        if stale:
            self._discard(completion)
        elif response is not None:
            self._report_response(response, completion)
        else:
            self.report_error(wrap_error(error), completion)

    # Redirects and token exchange

    def redirect_result(self, url: str) -> RedirectResult:
        """Classify a redirect URL against the current context."""
        return evaluate(self._context, self.redirect_uri, url)

    def exchange_code(self, redirect_url: str | None = None, completion: Completion | None = None) -> None:
        """Exchange an interaction code for tokens.

        Args:
            redirect_url: Redirect URL carrying the interaction code. When
                omitted, the current Response must indicate a successful login.
            completion: Receives ``(Token, None)`` or ``(None, error)``.
        """
        if redirect_url is None:
            with self._lock:
                response = self._response
            if response is None:
                with self._lock:
                    context = self._context
                error = InvalidContext() if context is None else SuccessResponseMissing()
                self.report_error(error, completion)
                return
            self.exchange_success(response, completion)
            return

        with self._lock:
            context = self._context
            if context is None:
                self.report_error(InvalidContext(), completion)
                return
            result = evaluate(context, self.redirect_uri, redirect_url)
            if result == RedirectResult.INVALID_REDIRECT_URL:
                self.report_error(InvalidRedirectUrl(), completion)
                return
            if result != RedirectResult.AUTHENTICATED:
                self.report_error(InvalidContext(f"Redirect cannot be exchanged: {result}"), completion)
                return
            redirect = Redirect.parse(redirect_url)
            interaction_code = redirect.interaction_code if redirect else None
            attempt = self._attempt

        logger.info("Exchanging interaction code from redirect")
        self._dispatch(
            lambda done: self.client.exchange_interaction_code(interaction_code, context.pkce, done),
            lambda payload, error: self._receive_token(attempt, payload, error, completion),
        )

    def exchange_success(self, response: Response, completion: Completion | None = None) -> None:
        """Exchange the interaction code carried by a successful Response."""
        with self._lock:
            context = self._context
            if context is None or response.flow is not self or response.generation != self._generation:
                self.report_error(InvalidContext("Response is not the current response"), completion)
                return
            option = response.success_remediation_option
            if option is None:
                self.report_error(SuccessResponseMissing(), completion)
                return
            attempt = self._attempt

        logger.info("Exchanging interaction code from successful response")
        self._dispatch(
            lambda done: self.client.exchange_success(option, context.pkce, done),
            lambda payload, error: self._receive_token(attempt, payload, error, completion),
        )

    def _receive_token(
        self,
        attempt: int,
        payload: dict[str, Any] | None,
        error: IDXFlowError | None,
        completion: Completion | None,
    ) -> None:
        token: Token | None = None
        with self._lock:
            stale = attempt != self._attempt
            if not stale and error is None:
                try:
                    token = Token.from_payload(payload or {})
                except Exception as e:
                    error = wrap_error(e)
            if token is not None:
                self._context = None
                self._response = None
                self._generation += 1
                self._status = FlowStatus.FINISHED
                self.protocol_logger.end_flow()

        if stale:
            self._discard(completion)
        elif token is None:
            self.report_error(wrap_error(error), completion)
        else:
            logger.info("Authentication finished; tokens issued")
            self._report_token(token, completion)
            with self._lock:
                self._set_authenticating(False)

    def refresh(self, token: Token, completion: Completion | None = None) -> None:
        """Obtain new tokens using ``token``'s refresh token."""
        if not token.refresh_token:
            self.report_error(MissingRefreshToken(), completion)
            return

        def handle(payload: dict[str, Any] | None, error: IDXFlowError | None) -> None:
            if error is None:
                try:
                    refreshed = Token.from_payload(payload or {})
                except Exception as e:
                    error = wrap_error(e)
                else:
                    self._report_token(refreshed, completion)
                    return
            self.report_error(wrap_error(error), completion)

        self._dispatch(lambda done: self.client.refresh(token.refresh_token, done), handle)

    def cancel(self) -> None:
        """Cancel the current authentication attempt."""
        self.reset()

    def reset(self) -> None:
        """Return the flow to its idle state, discarding any context.

        Results still in flight for the discarded attempt are ignored when
        they arrive. Safe to call repeatedly.
        """
        with self._lock:
            self._attempt += 1
            self._generation += 1
            if self._context is not None or self._is_authenticating:
                logger.info("Authentication attempt reset")
                self.protocol_logger.end_flow()
            self._context = None
            self._response = None
            self._status = FlowStatus.IDLE
            self._set_authenticating(False)

    # asyncio adapters

    async def run_async(self, call: Callable[[Completion], None]) -> Any:
        """Run a callback-style operation and await its single result."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()

        def settle(result: Any, error: IDXFlowError | None) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result)

        def done(result: Any, error: IDXFlowError | None) -> None:
            loop.call_soon_threadsafe(settle, result, error)

        call(done)
        return await future

    async def start_async(self, options: Mapping[str, str] | None = None) -> Response:
        return await self.run_async(lambda done: self.start(options, done))

    async def resume_async(self) -> Response:
        return await self.run_async(lambda done: self.resume(done))

    async def proceed_async(self, option: RemediationOption, values: Mapping[str, Any] | None = None) -> Response:
        return await self.run_async(lambda done: self.proceed(option, values, done))

    async def exchange_code_async(self, redirect_url: str | None = None) -> Token:
        return await self.run_async(lambda done: self.exchange_code(redirect_url, done))

    async def refresh_async(self, token: Token) -> Token:
        return await self.run_async(lambda done: self.refresh(token, done))
