"""Identity Engine response model.

A ``Response`` describes one server-issued step of the authentication
sequence. The remediation options it carries are not known ahead of time:
they are parsed from the Ion payload and looked up by name at runtime.

Responses, options and fields are immutable. Proceeding with an option asks
the owning flow for a new Response; it never changes the existing one.
"""

from __future__ import annotations

import copy
import weakref
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import jwt

from idxflow.core.idx.errors import (
    ApiError,
    IDXFlowError,
    InternalError,
    InvalidContext,
    InvalidParameter,
    MissingRemediationOption,
    MissingRequiredParameter,
    ParameterImmutable,
    StatusClass,
    SuccessResponseMissing,
    UnknownRemediationOption,
)

if TYPE_CHECKING:
    from idxflow.core.idx.flows import Completion, IDXAuthenticationFlow

CANCEL_KEY = "cancel"
SUCCESS_KEY = "successWithInteractionCode"

_AUTHENTICATOR_KEYS = (
    ("authenticators", False),
    ("authenticatorEnrollments", True),
)
_CURRENT_AUTHENTICATOR_KEYS = (
    "currentAuthenticatorEnrollment",
    "currentAuthenticator",
)


def _ion_value(node: Any) -> Any:
    """Unwrap an Ion ``{"type": ..., "value": ...}`` collection."""
    if isinstance(node, dict) and "value" in node and node.get("type") in ("array", "object"):
        return node["value"]
    return node


def _ion_list(node: Any) -> list[Any]:
    value = _ion_value(node)
    if value is None:
        return []
    if isinstance(value, dict) and "value" in value:
        value = value["value"]
    if not isinstance(value, list):
        raise ApiError(
            f"Expected a list in response payload, got {type(value).__name__}",
            status_class=StatusClass.INVALID_RESPONSE,
        )
    return value


def _deliver_orphan(error: IDXFlowError, completion: Completion | None) -> None:
    # The owning flow is gone, so only the caller can be told
    if completion is None:
        raise error
    completion(None, error)


@dataclass(frozen=True)
class Message:
    """A message attached to a response or a form field."""

    text: str
    message_class: str = "INFO"
    i18n_key: str | None = None

    @property
    def is_error(self) -> bool:
        return self.message_class.upper() == "ERROR"

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Message:
        i18n = data.get("i18n") or {}
        return cls(
            text=data.get("message", ""),
            message_class=data.get("class", "INFO"),
            i18n_key=i18n.get("key"),
        )


def _parse_messages(node: Any) -> tuple[Message, ...]:
    return tuple(Message.from_payload(m) for m in _ion_list(node) if isinstance(m, dict))


@dataclass(frozen=True)
class Authenticator:
    """An authenticator the user may use, or has enrolled."""

    type: str
    id: str | None = None
    key: str | None = None
    display_name: str | None = None
    methods: tuple[str, ...] = ()
    is_enrolled: bool = False

    @classmethod
    def from_payload(cls, data: dict[str, Any], is_enrolled: bool = False) -> Authenticator:
        methods = tuple(m.get("type", "") for m in data.get("methods") or [] if isinstance(m, dict))
        return cls(
            type=data.get("type", "unknown"),
            id=data.get("id"),
            key=data.get("key"),
            display_name=data.get("displayName"),
            methods=methods,
            is_enrolled=is_enrolled,
        )


@dataclass(frozen=True)
class AuthenticatorCollection:
    """Authenticators referenced by a response."""

    available: tuple[Authenticator, ...] = ()
    enrolled: tuple[Authenticator, ...] = ()
    current: Authenticator | None = None

    def get(self, authenticator_type: str) -> Authenticator | None:
        """Find an authenticator by type, preferring the current one."""
        if self.current is not None and self.current.type == authenticator_type:
            return self.current
        for authenticator in (*self.available, *self.enrolled):
            if authenticator.type == authenticator_type:
                return authenticator
        return None

    def __iter__(self) -> Iterator[Authenticator]:
        return iter(self.available)

    def __len__(self) -> int:
        return len(self.available)


@dataclass(frozen=True)
class FieldOption:
    """One choice of a selectable field."""

    label: str
    value: Any = None
    form: tuple[Field, ...] = ()
    authenticator: Authenticator | None = None


@dataclass(frozen=True)
class Field:
    """A single input of a remediation form."""

    name: str | None
    label: str | None = None
    type: str | None = None
    value: Any = None
    required: bool = False
    secret: bool = False
    mutable: bool = True
    visible: bool = True
    options: tuple[FieldOption, ...] = ()
    form: tuple[Field, ...] = ()
    messages: tuple[Message, ...] = ()

    def option(self, label: str) -> FieldOption | None:
        for option in self.options:
            if option.label == label:
                return option
        return None

    def selected(self, value: Any) -> FieldOption | None:
        """The option with a nested form that ``value`` names by label."""
        if self.options and isinstance(value, str):
            option = self.option(value)
            if option is not None and option.form:
                return option
        return None

    def resolve(self, value: Any) -> Any:
        """Map a caller-supplied value onto what the server expects.

        Choice fields accept an option label in place of the option's value.
        """
        if self.options and isinstance(value, str):
            option = self.option(value)
            if option is not None:
                return copy.deepcopy(option.value)
        return value


@dataclass(frozen=True)
class RemediationOption:
    """A server-defined step and the form that satisfies it."""

    name: str
    href: str
    method: str = "POST"
    accepts: str | None = None
    rel: tuple[str, ...] = ()
    form: tuple[Field, ...] = ()
    relates_to: Authenticator | None = None
    generation: int = 0
    flow_ref: weakref.ref[IDXAuthenticationFlow] | None = field(default=None, compare=False, repr=False)

    @property
    def flow(self) -> IDXAuthenticationFlow | None:
        return self.flow_ref() if self.flow_ref is not None else None

    def field(self, name: str) -> Field | None:
        """Look up a field by name; nested fields use dotted names."""
        fields = self.form
        found: Field | None = None
        for part in name.split("."):
            found = next((f for f in fields if f.name == part), None)
            if found is None:
                return None
            fields = found.form
        return found

    def iter_fields(self, supplied: Mapping[str, Any] | None = None) -> Iterator[tuple[str, Field, bool]]:
        """Yield ``(dotted_name, field, required)`` for every leaf field.

        A nested group only makes its leaves required when the group itself
        is required, or when the caller supplied a value inside it. A choice
        whose selected option carries a form contributes that form's fields
        under the choice's name.
        """
        for name, fld, required, is_leaf in _walk(self.form, "", True, supplied or {}):
            if is_leaf:
                yield name, fld, required

    def build_body(self, values: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Validate caller values and build the request body.

        Raises:
            InvalidParameter: A value names a field the form does not have.
            ParameterImmutable: A value targets a field the server marked immutable.
            MissingRequiredParameter: A required field or group has no value.
        """
        supplied = self._flatten(values or {}, "")
        leaves: dict[str, tuple[Field, bool]] = {}
        groups: dict[str, tuple[Field, bool]] = {}
        for name, fld, required, is_leaf in _walk(self.form, "", True, supplied):
            (leaves if is_leaf else groups)[name] = (fld, required)

        # Naming an option of a choice selects it; its form fields are the leaves
        choices = {
            name: groups[name]
            for name in supplied
            if name in groups and groups[name][0].selected(supplied[name]) is not None
        }
        for name in supplied:
            if name not in leaves and name not in choices:
                raise InvalidParameter(name)
        for name in supplied:
            fld, _required = leaves.get(name) or choices[name]
            if not fld.mutable:
                raise ParameterImmutable(name)

        body: dict[str, Any] = {}
        for name, (fld, required) in leaves.items():
            if name in supplied:
                value = fld.resolve(supplied[name])
            else:
                value = fld.value
            if value is None or value == "":
                if required:
                    raise MissingRequiredParameter(name)
                continue
            _assign(body, name, copy.deepcopy(value))

        for name, (_fld, required) in groups.items():
            if required and not _lookup(body, name):
                raise MissingRequiredParameter(name)
        return body

    def _flatten(self, values: Mapping[str, Any], prefix: str) -> dict[str, Any]:
        flat: dict[str, Any] = {}
        for key, value in values.items():
            name = f"{prefix}{key}"
            target = self.field(name)
            if target is not None and target.form and isinstance(value, Mapping):
                flat.update(self._flatten(value, f"{name}."))
            elif value is not None:
                flat[name] = value
        return flat

    def proceed(self, values: Mapping[str, Any] | None = None, completion: Completion | None = None) -> None:
        """Submit this option with ``values`` and receive the next Response."""
        flow = self.flow
        if flow is None:
            _deliver_orphan(InvalidContext("Authentication flow no longer exists"), completion)
            return
        flow.proceed(self, values, completion)

    async def proceed_async(self, values: Mapping[str, Any] | None = None) -> Response:
        flow = self.flow
        if flow is None:
            raise InvalidContext("Authentication flow no longer exists")
        return await flow.proceed_async(self, values)


def _walk(
    fields: tuple[Field, ...],
    prefix: str,
    active: bool,
    supplied: Mapping[str, Any],
) -> Iterator[tuple[str, Field, bool, bool]]:
    """Yield ``(path, field, required, is_leaf)`` for groups and their leaves."""
    for fld in fields:
        if not fld.name:
            continue
        path = f"{prefix}{fld.name}"
        chosen = fld.selected(supplied.get(path))
        children = chosen.form if chosen is not None else fld.form
        if children:
            required = active and fld.required
            nested = chosen is not None or any(k.startswith(f"{path}.") for k in supplied)
            yield path, fld, required, False
            yield from _walk(children, f"{path}.", required or nested, supplied)
        else:
            yield path, fld, active and fld.required, True


def _assign(body: dict[str, Any], dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    target = body
    for part in parents:
        target = target.setdefault(part, {})
    target[leaf] = value


def _lookup(body: Mapping[str, Any], dotted: str) -> Any:
    target: Any = body
    for part in dotted.split("."):
        if not isinstance(target, Mapping) or part not in target:
            return None
        target = target[part]
    return target


@dataclass(frozen=True)
class RemediationCollection:
    """Remediation options in the order the server listed them."""

    options: tuple[RemediationOption, ...] = ()

    def get(self, name: str) -> RemediationOption | None:
        for option in self.options:
            if option.name == name:
                return option
        return None

    def __getitem__(self, name: str) -> RemediationOption:
        option = self.get(name)
        if option is None:
            raise MissingRemediationOption(name)
        return option

    def __contains__(self, name: object) -> bool:
        return any(option.name == name for option in self.options)

    def __iter__(self) -> Iterator[RemediationOption]:
        return iter(self.options)

    def __len__(self) -> int:
        return len(self.options)

    @property
    def names(self) -> list[str]:
        return [option.name for option in self.options]

    @property
    def primary(self) -> RemediationOption | None:
        return self.options[0] if self.options else None


@dataclass(frozen=True)
class Response:
    """One step of the authentication sequence."""

    remediations: RemediationCollection = field(default_factory=RemediationCollection)
    authenticators: AuthenticatorCollection = field(default_factory=AuthenticatorCollection)
    messages: tuple[Message, ...] = ()
    cancel_remediation_option: RemediationOption | None = None
    success_remediation_option: RemediationOption | None = None
    state_handle: str | None = None
    intent: str | None = None
    app_label: str | None = None
    user_id: str | None = None
    expires_at: datetime | None = None
    generation: int = 0
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)
    flow_ref: weakref.ref[IDXAuthenticationFlow] | None = field(default=None, compare=False, repr=False)

    @property
    def is_login_successful(self) -> bool:
        return self.success_remediation_option is not None

    @property
    def can_cancel(self) -> bool:
        return self.cancel_remediation_option is not None

    @property
    def flow(self) -> IDXAuthenticationFlow | None:
        return self.flow_ref() if self.flow_ref is not None else None

    def cancel(self, completion: Completion | None = None) -> None:
        """Cancel the server-side transaction, receiving a fresh Response."""
        flow = self.flow
        option = self.cancel_remediation_option
        if option is None:
            error = UnknownRemediationOption(CANCEL_KEY)
            if flow is None:
                _deliver_orphan(error, completion)
            else:
                flow.report_error(error, completion)
            return
        option.proceed({}, completion)

    def exchange_code(self, completion: Completion | None = None) -> None:
        """Exchange the interaction code of a successful response for a token."""
        flow = self.flow
        if flow is None:
            error = SuccessResponseMissing() if not self.is_login_successful else InvalidContext()
            _deliver_orphan(error, completion)
            return
        flow.exchange_success(self, completion)

    async def cancel_async(self) -> Response:
        flow = self.flow
        if flow is None:
            raise InvalidContext("Authentication flow no longer exists")
        return await flow.run_async(lambda done: self.cancel(done))

    async def exchange_code_async(self) -> Token:
        flow = self.flow
        if flow is None:
            raise InvalidContext("Authentication flow no longer exists")
        return await flow.run_async(lambda done: self.exchange_code(done))

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        flow: IDXAuthenticationFlow | None = None,
        generation: int = 0,
    ) -> Response:
        """Build a Response from an introspect or remediation payload.

        Raises:
            ApiError: If the payload does not have the expected shape.
        """
        flow_ref = weakref.ref(flow) if flow is not None else None
        authenticators, index = _parse_authenticators(payload)

        def option(data: Any) -> RemediationOption:
            return _parse_option(data, index, generation, flow_ref)

        remediations = tuple(option(item) for item in _ion_list(payload.get("remediation")))
        cancel = payload.get(CANCEL_KEY)
        success = payload.get(SUCCESS_KEY)
        app = _ion_value(payload.get("app")) or {}
        user = _ion_value(payload.get("user")) or {}

        return cls(
            remediations=RemediationCollection(remediations),
            authenticators=authenticators,
            messages=_parse_messages(payload.get("messages")),
            cancel_remediation_option=option(cancel) if isinstance(cancel, dict) else None,
            success_remediation_option=option(success) if isinstance(success, dict) else None,
            state_handle=payload.get("stateHandle"),
            intent=payload.get("intent"),
            app_label=app.get("label") if isinstance(app, dict) else None,
            user_id=user.get("id") if isinstance(user, dict) else None,
            expires_at=_parse_datetime(payload.get("expiresAt")),
            generation=generation,
            raw=MappingProxyType(copy.deepcopy(dict(payload))),
            flow_ref=flow_ref,
        )


def _parse_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_authenticators(
    payload: Mapping[str, Any],
) -> tuple[AuthenticatorCollection, dict[str, Authenticator]]:
    # Options refer to authenticators with JSONPath-like "relatesTo" strings
    index: dict[str, Authenticator] = {}
    groups: dict[bool, list[Authenticator]] = {False: [], True: []}

    for key, enrolled in _AUTHENTICATOR_KEYS:
        for position, data in enumerate(_ion_list(payload.get(key))):
            if isinstance(data, dict):
                authenticator = Authenticator.from_payload(data, is_enrolled=enrolled)
                index[f"$.{key}.value[{position}]"] = authenticator
                groups[enrolled].append(authenticator)

    current = None
    for key in _CURRENT_AUTHENTICATOR_KEYS:
        data = _ion_value(payload.get(key))
        if isinstance(data, dict):
            authenticator = Authenticator.from_payload(data, is_enrolled=key.endswith("Enrollment"))
            index[f"$.{key}"] = authenticator
            current = current or authenticator

    collection = AuthenticatorCollection(
        available=tuple(groups[False]),
        enrolled=tuple(groups[True]),
        current=current,
    )
    return collection, index


def _parse_field(data: dict[str, Any], index: Mapping[str, Authenticator]) -> Field:
    form_node = data.get("form")
    form = tuple(_parse_field(f, index) for f in _ion_list(form_node) if isinstance(f, dict)) if form_node else ()

    options = []
    for item in _ion_list(data.get("options")):
        if not isinstance(item, dict):
            continue
        value = item.get("value")
        option_form: tuple[Field, ...] = ()
        if isinstance(value, dict) and "form" in value:
            option_form = tuple(_parse_field(f, index) for f in _ion_list(value["form"]) if isinstance(f, dict))
        options.append(
            FieldOption(
                label=item.get("label", ""),
                value=value,
                form=option_form,
                authenticator=index.get(item.get("relatesTo", "")),
            )
        )

    return Field(
        name=data.get("name"),
        label=data.get("label"),
        type=data.get("type"),
        value=data.get("value"),
        required=bool(data.get("required", False)),
        secret=bool(data.get("secret", False)),
        mutable=bool(data.get("mutable", True)),
        visible=bool(data.get("visible", True)),
        options=tuple(options),
        form=form,
        messages=_parse_messages(data.get("messages")),
    )


def _parse_option(
    data: Any,
    index: Mapping[str, Authenticator],
    generation: int,
    flow_ref: weakref.ref[IDXAuthenticationFlow] | None,
) -> RemediationOption:
    if not isinstance(data, dict) or not data.get("name") or not data.get("href"):
        raise ApiError(
            "Remediation option is missing its name or href",
            status_class=StatusClass.INVALID_RESPONSE,
        )
    relates_to = data.get("relatesTo")
    if isinstance(relates_to, list):
        relates_to = relates_to[0] if relates_to else None
    return RemediationOption(
        name=data["name"],
        href=data["href"],
        method=data.get("method", "POST"),
        accepts=data.get("accepts"),
        rel=tuple(data.get("rel") or ()),
        form=tuple(_parse_field(f, index) for f in _ion_list(data.get("value")) if isinstance(f, dict)),
        relates_to=index.get(relates_to) if isinstance(relates_to, str) else None,
        generation=generation,
        flow_ref=flow_ref,
    )


@dataclass(frozen=True)
class Token:
    """Tokens issued at the end of a successful authentication."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    issued_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def expires_at(self) -> datetime | None:
        if self.expires_in is None:
            return None
        return self.issued_at + timedelta(seconds=self.expires_in)

    @property
    def is_expired(self) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and datetime.now(UTC) >= expires_at

    @property
    def claims(self) -> dict[str, Any]:
        """Claims of the ID token, decoded without signature verification.

        Raises:
            InternalError: If the ID token is not a well-formed JWT.
        """
        if not self.id_token:
            return {}
        try:
            return jwt.decode(self.id_token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise InternalError(e) from e

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Token:
        """Build a token from a token endpoint response.

        Raises:
            ApiError: If the payload does not contain an access token.
        """
        access_token = payload.get("access_token")
        if not access_token:
            raise ApiError(
                "Token response did not include an access token",
                status_class=StatusClass.INVALID_RESPONSE,
                error_code=payload.get("error"),
            )
        expires_in = payload.get("expires_in")
        return cls(
            access_token=access_token,
            token_type=payload.get("token_type", "Bearer"),
            expires_in=int(expires_in) if expires_in is not None else None,
            scope=payload.get("scope"),
            refresh_token=payload.get("refresh_token"),
            id_token=payload.get("id_token"),
            raw=MappingProxyType(dict(payload)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "issued_at": self.issued_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Token:
        """Reconstruct from dictionary."""
        issued_at = _parse_datetime(data.get("issued_at")) or datetime.now(UTC)
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type", "Bearer"),
            expires_in=data.get("expires_in"),
            scope=data.get("scope"),
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            issued_at=issued_at,
        )
