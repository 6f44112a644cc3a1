"""Auth config evaluators, their grouping and the auth config that holds them."""

from __future__ import annotations

import enum
import json
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from authpipe.model import AuthResult

Condition = Callable[[Mapping[str, Any]], bool]
"""A predicate over the authorization data; it may raise to signal an error."""

CHALLENGE_HEADER = "WWW-Authenticate"


class Phase(str, enum.Enum):
    """Phases of the auth pipeline, named as in the authorization data."""

    IDENTITY = "identity"
    METADATA = "metadata"
    AUTHORIZATION = "authorization"
    RESPONSE = "response"
    CALLBACKS = "callbacks"


def _resolve(value: Any, auth_data: Mapping[str, Any]) -> Any:
    return value(auth_data) if callable(value) else value


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))


@dataclass(eq=False)
class Evaluator:
    """One rule of an auth config.

    ``handler`` receives the pipeline and returns the resulting object or
    raises to report failure. ``extend`` (identity only) receives the resolved
    object and the pipeline and returns the extended object. ``wrapper`` and
    ``wrapper_key`` tell where a response rule's object goes; ``wristband``
    is an issuer offering ``openid_config()`` and ``jwks()``.
    """

    name: str
    handler: Callable[[Any], Any]
    priority: int = 0
    conditions: list[Condition] = field(default_factory=list)
    extend: Callable[[Any, Any], Any] | None = None
    challenge: str | None = None
    wrapper: str = "httpHeader"
    wrapper_key: str = ""
    wristband: Any = None

    def call(self, pipeline: Any) -> Any:
        return self.handler(pipeline)

    def resolve_extended_properties(self, obj: Any, pipeline: Any) -> Any:
        if self.extend is None:
            return obj
        return self.extend(obj, pipeline)


@dataclass
class EvaluationResponse:
    """Object or error produced by one evaluator."""

    evaluator: Evaluator | None = None
    obj: Any = None
    error: BaseException | None = None

    def success(self) -> bool:
        return self.error is None

    def error_message(self) -> str:
        if self.error is None:
            raise ValueError("evaluation succeeded; there is no error message")
        return str(self.error)


@dataclass
class DenyWithHeader:
    """A header to set on a denied response; ``value`` is static or a callable of the auth data."""

    name: str
    value: Any


@dataclass
class DenyWithValues:
    """Custom status, message, body and headers for a denied response.

    ``message`` and ``body`` are static values or callables of the auth data;
    ``None`` leaves the result's own value.
    """

    code: int = 0
    message: Any = None
    body: Any = None
    headers: list[DenyWithHeader] = field(default_factory=list)

    def apply(self, result: AuthResult, auth_data: Mapping[str, Any]) -> AuthResult:
        """Return ``result`` customised with these values resolved for ``auth_data``."""
        changes: dict[str, Any] = {}
        if self.code:
            changes["status"] = self.code
        if self.message is not None:
            changes["message"] = _stringify(_resolve(self.message, auth_data))
        if self.body is not None:
            changes["body"] = _stringify(_resolve(self.body, auth_data))
        if self.headers:
            changes["headers"] = [
                {header.name: _stringify(_resolve(header.value, auth_data))} for header in self.headers
            ]
        return replace(result, **changes)


@dataclass(eq=False)
class AuthConfig:
    """The evaluators and settings that protect one host."""

    identity_configs: list[Evaluator] = field(default_factory=list)
    metadata_configs: list[Evaluator] = field(default_factory=list)
    authorization_configs: list[Evaluator] = field(default_factory=list)
    response_configs: list[Evaluator] = field(default_factory=list)
    callback_configs: list[Evaluator] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    unauthenticated: DenyWithValues | None = None
    unauthorized: DenyWithValues | None = None

    def evaluators_for(self, phase: Phase) -> list[Evaluator]:
        return {
            Phase.IDENTITY: self.identity_configs,
            Phase.METADATA: self.metadata_configs,
            Phase.AUTHORIZATION: self.authorization_configs,
            Phase.RESPONSE: self.response_configs,
            Phase.CALLBACKS: self.callback_configs,
        }[Phase(phase)]

    def challenge_headers(self) -> list[dict[str, str]]:
        """Return one challenge header for each identity evaluator that declares a challenge."""
        return [{CHALLENGE_HEADER: conf.challenge} for conf in self.identity_configs if conf.challenge]


def group_by_priority(evaluators: Iterable[Evaluator]) -> list[tuple[int, list[Evaluator]]]:
    """Group evaluators by priority, lowest first, keeping their order within a group."""
    groups: dict[int, list[Evaluator]] = {}
    for evaluator in evaluators:
        groups.setdefault(evaluator.priority, []).append(evaluator)
    return sorted(groups.items(), key=lambda item: item[0])