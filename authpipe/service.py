"""Authorization service: host lookup, check responses and the raw HTTP endpoint."""

from __future__ import annotations

import abc
import json
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qsl, quote_plus, urlencode

from authpipe.evaluators import AuthConfig
from authpipe.model import (
    AuthResult,
    CheckRequest,
    CheckResponse,
    HttpRequestAttributes,
    Peer,
    RpcCode,
    http_status_for,
)
from authpipe.pipeline import AuthPipeline

logger = logging.getLogger(__name__)

HTTP_AUTHORIZATION_BASE_PATH = "/check"

REASON_HEADER = "X-Ext-Auth-Reason"
REQUEST_ID_HEADER = "X-Request-Id"

RESPONSE_MESSAGE_INVALID_REQUEST = "Invalid request"
RESPONSE_MESSAGE_SERVICE_NOT_FOUND = "Service not found"

HTTP_MESSAGE_400 = "bad request"
HTTP_MESSAGE_404 = "not found"
HTTP_MESSAGE_413 = "request body too large"
HTTP_MESSAGE_503 = "service unavailable"

LOOKUP_KEY_NAME = "host"

ADMISSION_REVIEW_KIND = "AdmissionReview"
ADMISSION_REVIEW_API_VERSION = "admission.k8s.io/v1"

DEFAULT_MAX_HTTP_REQUEST_BODY_SIZE = 8192

StartResponse = Callable[..., Any]


class _BodyTooLarge(Exception):
    """The request body exceeds the configured limit."""


class Index(abc.ABC):
    """Lookup of auth configs by host."""

    @abc.abstractmethod
    def get(self, host: str) -> AuthConfig | None:
        """Return the auth config for ``host``, or ``None``."""

    @abc.abstractmethod
    def set(self, host: str, config: AuthConfig) -> None:
        """Register ``config`` for ``host``."""

    @abc.abstractmethod
    def find_keys(self, realm: str) -> list[str]:
        """Return the hosts whose auth config belongs to ``realm`` (``namespace/name``)."""


def _realm_of(config: AuthConfig) -> str:
    return f"{config.labels.get('namespace', '')}/{config.labels.get('name', '')}"


class MemoryIndex(Index):
    """Thread-safe in-memory index of auth configs."""

    def __init__(self) -> None:
        self._configs: dict[str, AuthConfig] = {}
        self._lock = threading.Lock()

    def get(self, host: str) -> AuthConfig | None:
        with self._lock:
            return self._configs.get(host)

    def set(self, host: str, config: AuthConfig) -> None:
        with self._lock:
            self._configs[host] = config

    def find_keys(self, realm: str) -> list[str]:
        with self._lock:
            return [host for host, config in self._configs.items() if _realm_of(config) == realm]


def ensure_request_id(*args: str) -> str:
    """Return the first non-empty candidate, or a fresh random id."""
    return next((candidate for candidate in args if candidate), None) or str(uuid.uuid4())


def build_response_headers(headers: Iterable[Mapping[str, str]] | None) -> list[tuple[str, str]]:
    """Flatten a list of header maps into ``(name, value)`` pairs."""
    return [(key, value) for header_map in headers or () for key, value in header_map.items()]


def build_response_headers_with_reason(
    reason: str, extra_headers: Iterable[Mapping[str, str]] | None
) -> list[tuple[str, str]]:
    """Flatten ``extra_headers`` and append the reason header."""
    headers = list(extra_headers or ())
    headers.append({REASON_HEADER: reason})
    return build_response_headers(headers)


def build_dynamic_metadata(data: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return ``data`` as plain JSON data; raises ``TypeError`` for values JSON cannot hold."""
    return json.loads(json.dumps(data if data is not None else {}))


def admission_review_from_payload(payload: bytes | str) -> dict[str, Any] | None:
    """Return the payload as an admission review, or ``None`` if it is not one."""
    try:
        review = json.loads(payload)
    except ValueError:
        return None
    if (
        isinstance(review, dict)
        and review.get("kind") == ADMISSION_REVIEW_KIND
        and review.get("apiVersion") == ADMISSION_REVIEW_API_VERSION
        and isinstance(review.get("request"), dict)
    ):
        return review
    return None


def _status_line(status: int) -> str:
    try:
        phrase = HTTPStatus(status).phrase
    except ValueError:
        phrase = ""
    return f"{status} {phrase}".rstrip()


def _respond(
    start_response: StartResponse,
    status: int,
    headers: Iterable[tuple[str, str]] = (),
    body: bytes = b"",
) -> list[bytes]:
    header_list = list(headers)
    header_list.append(("Content-Length", str(len(body))))
    start_response(_status_line(status), header_list)
    return [body]


def _set_header(headers: dict[str, tuple[str, str]], key: str, value: str) -> None:
    headers[key.lower()] = (key, value)


@dataclass
class AuthService:
    """Authorizes requests against the auth config registered for their host."""

    index: Index
    timeout: float | None = None
    max_http_request_body_size: int = DEFAULT_MAX_HTTP_REQUEST_BODY_SIZE

    def _deadline(self) -> float | None:
        if self.timeout is None or self.timeout <= 0:
            return None
        return time.monotonic() + self.timeout

    @staticmethod
    def _expired(deadline: float | None) -> bool:
        return deadline is not None and time.monotonic() >= deadline

    # -- check ----------------------------------------------------------

    def check(self, request: CheckRequest) -> CheckResponse:
        """Authorize ``request`` and return an allowed or denied response."""
        http = request.http
        propagation_request_id = http.headers.get(REQUEST_ID_HEADER.lower(), "")
        request_id = ensure_request_id(propagation_request_id, http.id)
        http.id = request_id
        deadline = self._deadline()

        self._log_request(request)

        host = request.context_extensions.get(LOOKUP_KEY_NAME, http.host)
        config = self.index.get(host)
        if config is None and ":" in host:
            config = self.index.get(host.split(":")[0])

        if config is None:
            result = AuthResult(code=RpcCode.NOT_FOUND, message=RESPONSE_MESSAGE_SERVICE_NOT_FOUND)
            self._log_result(result, request_id)
            return self.denied_response(result)

        if self._expired(deadline):
            result = AuthResult(code=RpcCode.UNAVAILABLE)
            self._log_result(result, request_id)
            return self.denied_response(result)

        cancel = threading.Event()
        timer: threading.Timer | None = None
        if deadline is not None:
            timer = threading.Timer(max(0.0, deadline - time.monotonic()), cancel.set)
            timer.daemon = True
            timer.start()
        try:
            result = AuthPipeline(request, config, cancel_event=cancel).evaluate()
        finally:
            if timer is not None:
                timer.cancel()

        self._log_result(result, request_id)
        if result.success():
            return self.success_response(result)
        return self.denied_response(result)

    def success_response(self, result: AuthResult) -> CheckResponse:
        """Build an allowed response carrying the result's headers and metadata."""
        try:
            dynamic_metadata: dict[str, Any] | None = build_dynamic_metadata(result.metadata)
        except (TypeError, ValueError) as err:
            logger.debug("failed to create dynamic metadata: %s", err)
            dynamic_metadata = None
        return CheckResponse(
            code=RpcCode.OK,
            headers=build_response_headers(result.headers),
            dynamic_metadata=dynamic_metadata,
        )

    def denied_response(self, result: AuthResult) -> CheckResponse:
        """Build a denied response with the result's status, reason, headers and body."""
        http_status = result.status or int(http_status_for(result.code))
        return CheckResponse(
            code=RpcCode(result.code),
            headers=build_response_headers_with_reason(result.message, result.headers),
            http_status=int(http_status),
            body=result.body,
        )

    @staticmethod
    def _log_request(request: CheckRequest) -> None:
        http = request.http
        reduced = {
            "id": http.id,
            "method": http.method,
            "path": http.path.split("?")[0],
            "host": http.host,
            "scheme": http.scheme,
        }
        logger.info("incoming authorization request: %s", {k: v for k, v in reduced.items() if v})
        logger.debug("incoming authorization request: %s", request.to_dict())

    @staticmethod
    def _log_result(result: AuthResult, request_id: str) -> None:
        success = result.success()
        code_name = RpcCode(result.code).name
        if success:
            logger.info("outgoing authorization response [%s]: authorized=True response=%s", request_id, code_name)
        else:
            logger.info(
                "outgoing authorization response [%s]: authorized=False response=%s status=%s message=%s",
                request_id,
                code_name,
                result.status,
                result.message,
            )

    # -- raw HTTP -------------------------------------------------------

    def _read_body(self, environ: Mapping[str, Any]) -> bytes:
        limit = self.max_http_request_body_size
        stream = environ.get("wsgi.input")
        if stream is None:
            return b""
        raw_length = str(environ.get("CONTENT_LENGTH") or "").strip()
        if raw_length:
            length = int(raw_length)
            if length < 0:
                raise ValueError("negative content length")
            if length > limit:
                raise _BodyTooLarge
            data = stream.read(length)
        else:
            data = stream.read(limit + 1)
        if len(data) > limit:
            raise _BodyTooLarge
        return data

    @staticmethod
    def _check_request_from_environ(
        environ: Mapping[str, Any], path: str, payload: bytes, request_id: str
    ) -> CheckRequest:
        headers: dict[str, str] = {}
        for key, value in environ.items():
            if key.startswith("HTTP_") and key != "HTTP_HOST":
                headers[key[5:].replace("_", "-").lower()] = str(value)
        if environ.get("CONTENT_TYPE"):
            headers["content-type"] = str(environ["CONTENT_TYPE"])

        pairs = parse_qsl(str(environ.get("QUERY_STRING", "")), keep_blank_values=True)
        query = urlencode(sorted(pairs, key=lambda pair: pair[0]))

        request = CheckRequest(
            http=HttpRequestAttributes(
                id=request_id,
                method=str(environ.get("REQUEST_METHOD", "")),
                headers=headers,
                path=path,
                host=str(environ.get("HTTP_HOST") or environ.get("SERVER_NAME", "")),
                scheme=str(environ.get("wsgi.url_scheme", "")),
                query=query,
                protocol=str(environ.get("SERVER_PROTOCOL", "")),
                body=payload.decode("utf-8", errors="replace"),
            )
        )
        certificate = environ.get("SSL_CLIENT_CERT")
        if certificate:
            request.source = Peer(certificate=quote_plus(str(certificate)))
        return request

    def __call__(self, environ: Mapping[str, Any], start_response: StartResponse) -> list[bytes]:
        """Answer a raw HTTP authorization request (GET or POST on ``/check``)."""
        request_id = ensure_request_id(str(environ.get("HTTP_X_REQUEST_ID", "")))
        deadline = self._deadline()

        method = environ.get("REQUEST_METHOD", "")
        if method not in ("GET", "POST"):
            logger.debug("[%s] %s", request_id, HTTP_MESSAGE_404)
            return _respond(start_response, HTTPStatus.NOT_FOUND)

        path = str(environ.get("PATH_INFO", ""))
        if path.endswith("/"):
            path = path[:-1]
        if path != HTTP_AUTHORIZATION_BASE_PATH:
            logger.debug("[%s] %s", request_id, HTTP_MESSAGE_404)
            return _respond(start_response, HTTPStatus.NOT_FOUND)

        if self._expired(deadline):
            return _respond(start_response, HTTPStatus.SERVICE_UNAVAILABLE)

        try:
            payload = self._read_body(environ)
        except _BodyTooLarge:
            logger.debug("[%s] %s", request_id, HTTP_MESSAGE_413)
            return _respond(start_response, HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
        except (OSError, ValueError):
            logger.debug("[%s] %s", request_id, HTTP_MESSAGE_400)
            return _respond(start_response, HTTPStatus.BAD_REQUEST)

        check_request = self._check_request_from_environ(environ, path, payload, request_id)

        if self._expired(deadline):
            logger.debug("[%s] %s", request_id, HTTP_MESSAGE_503)
            return _respond(start_response, HTTPStatus.SERVICE_UNAVAILABLE)

        check_response = self.check(check_request)
        code = check_response.code
        response_headers: dict[str, tuple[str, str]] = {}

        review = admission_review_from_payload(payload)
        if review is not None:
            status = int(HTTPStatus.OK)
            allowed = code == RpcCode.OK
            admission_response: dict[str, Any] = {
                "uid": review["request"].get("uid", ""),
                "allowed": allowed,
            }
            if not allowed:
                status_object: dict[str, Any] = {"metadata": {}}
                message = check_response.header(REASON_HEADER)
                if message:
                    status_object["message"] = message
                mapped = int(http_status_for(code))
                if mapped:
                    status_object["code"] = mapped
                admission_response["status"] = status_object
            body = json.dumps(
                {"kind": review["kind"], "apiVersion": review["apiVersion"], "response": admission_response},
                separators=(",", ":"),
                ensure_ascii=False,
            ).encode("utf-8")
            _set_header(response_headers, "Content-Type", "application/json")
        else:
            status = int(http_status_for(code)) or check_response.http_status or int(HTTPStatus.INTERNAL_SERVER_ERROR)
            for key, value in check_response.headers:
                _set_header(response_headers, key, value)
            body = b"" if code == RpcCode.OK else check_response.body.encode("utf-8")

        return _respond(start_response, status, response_headers.values(), body)