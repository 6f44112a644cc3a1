"""Request, result and response types exchanged by the authorization service."""

from __future__ import annotations

import base64
import enum
from dataclasses import dataclass, field
from typing import Any


class RpcCode(enum.IntEnum):
    """Canonical RPC status codes."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


class HttpStatus(enum.IntEnum):
    """HTTP status codes a check response can carry; ``EMPTY`` means unset."""

    EMPTY = 0
    CONTINUE = 100
    OK = 200
    CREATED = 201
    ACCEPTED = 202
    NON_AUTHORITATIVE_INFORMATION = 203
    NO_CONTENT = 204
    RESET_CONTENT = 205
    PARTIAL_CONTENT = 206
    MULTI_STATUS = 207
    ALREADY_REPORTED = 208
    IM_USED = 226
    MULTIPLE_CHOICES = 300
    MOVED_PERMANENTLY = 301
    FOUND = 302
    SEE_OTHER = 303
    NOT_MODIFIED = 304
    USE_PROXY = 305
    TEMPORARY_REDIRECT = 307
    PERMANENT_REDIRECT = 308
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    PAYMENT_REQUIRED = 402
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    NOT_ACCEPTABLE = 406
    PROXY_AUTHENTICATION_REQUIRED = 407
    REQUEST_TIMEOUT = 408
    CONFLICT = 409
    GONE = 410
    LENGTH_REQUIRED = 411
    PRECONDITION_FAILED = 412
    PAYLOAD_TOO_LARGE = 413
    URI_TOO_LONG = 414
    UNSUPPORTED_MEDIA_TYPE = 415
    RANGE_NOT_SATISFIABLE = 416
    EXPECTATION_FAILED = 417
    MISDIRECTED_REQUEST = 421
    UNPROCESSABLE_ENTITY = 422
    LOCKED = 423
    FAILED_DEPENDENCY = 424
    UPGRADE_REQUIRED = 426
    PRECONDITION_REQUIRED = 428
    TOO_MANY_REQUESTS = 429
    REQUEST_HEADER_FIELDS_TOO_LARGE = 431
    INTERNAL_SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503
    GATEWAY_TIMEOUT = 504
    HTTP_VERSION_NOT_SUPPORTED = 505
    VARIANT_ALSO_NEGOTIATES = 506
    INSUFFICIENT_STORAGE = 507
    LOOP_DETECTED = 508
    NOT_EXTENDED = 510
    NETWORK_AUTHENTICATION_REQUIRED = 511


_STATUS_FOR_CODE = {
    RpcCode.OK: HttpStatus.OK,
    RpcCode.FAILED_PRECONDITION: HttpStatus.BAD_REQUEST,
    RpcCode.NOT_FOUND: HttpStatus.NOT_FOUND,
    RpcCode.UNAUTHENTICATED: HttpStatus.UNAUTHORIZED,
    RpcCode.PERMISSION_DENIED: HttpStatus.FORBIDDEN,
}


def http_status_for(code: RpcCode) -> HttpStatus:
    """Return the HTTP status for an RPC code, or ``HttpStatus.EMPTY`` if it has none."""
    return _STATUS_FOR_CODE.get(RpcCode(code), HttpStatus.EMPTY)


def _without_empty(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value not in ("", 0, None, {}, b"")}


@dataclass
class Peer:
    """One end of the connection the authorization request came through."""

    address: dict[str, Any] = field(default_factory=dict)
    service: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    principal: str = ""
    certificate: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _without_empty(
            {
                "address": dict(self.address),
                "service": self.service,
                "labels": dict(self.labels),
                "principal": self.principal,
                "certificate": self.certificate,
            }
        )


@dataclass
class HttpRequestAttributes:
    """Attributes of the HTTP request being authorized."""

    id: str = ""
    method: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    path: str = ""
    host: str = ""
    scheme: str = ""
    query: str = ""
    fragment: str = ""
    size: int = 0
    protocol: str = ""
    body: str = ""
    raw_body: bytes = b""

    def to_dict(self) -> dict[str, Any]:
        data = _without_empty(
            {
                "id": self.id,
                "method": self.method,
                "headers": dict(self.headers),
                "path": self.path,
                "host": self.host,
                "scheme": self.scheme,
                "query": self.query,
                "fragment": self.fragment,
                "size": self.size,
                "protocol": self.protocol,
                "body": self.body,
            }
        )
        if self.raw_body:
            data["raw_body"] = base64.b64encode(self.raw_body).decode("ascii")
        return data


@dataclass
class CheckRequest:
    """An authorization check request."""

    http: HttpRequestAttributes = field(default_factory=HttpRequestAttributes)
    source: Peer | None = None
    destination: Peer | None = None
    context_extensions: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return the request's attribute context as JSON-ready data, omitting empty fields."""
        data: dict[str, Any] = {}
        if self.source is not None:
            data["source"] = self.source.to_dict()
        if self.destination is not None:
            data["destination"] = self.destination.to_dict()
        data["request"] = {"http": self.http.to_dict()}
        if self.context_extensions:
            data["context_extensions"] = dict(self.context_extensions)
        return data


@dataclass
class AuthResult:
    """Outcome of evaluating an auth config for a request."""

    code: RpcCode = RpcCode.OK
    status: int = 0
    message: str = ""
    headers: list[dict[str, str]] | None = None
    metadata: dict[str, Any] | None = None
    body: str = ""

    def success(self) -> bool:
        return self.code == RpcCode.OK


@dataclass
class CheckResponse:
    """Answer to a check request: allowed when ``code`` is OK, denied otherwise."""

    code: RpcCode
    headers: list[tuple[str, str]] = field(default_factory=list)
    http_status: int = 0
    body: str = ""
    dynamic_metadata: dict[str, Any] | None = None

    @property
    def allowed(self) -> bool:
        return self.code == RpcCode.OK

    def header(self, key: str) -> str:
        """Return the value of the first header named ``key``, or an empty string."""
        return next((value for name, value in self.headers if name == key), "")