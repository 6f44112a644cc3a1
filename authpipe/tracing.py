"""Tracing helpers: exporter settings, resource attributes and span attributes."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from urllib.parse import unquote, urlsplit

SERVICE_NAME = "authpipe"
SERVICE_NAME_KEY = "service.name"
SERVICE_VERSION_KEY = "service.version"

REQUEST_ID_ATTR = "authpipe.request_id"
PROPAGATION_REQUEST_ID_ATTR = "guid:x-request-id"

SUPPORTED_PROTOCOLS = ("rpc", "http")


@dataclass
class TraceConfig:
    """Where and how traces are exported."""

    endpoint: str
    insecure: bool = False
    tags: list[str] = field(default_factory=list)
    version: str = ""


@dataclass(frozen=True)
class ExporterSettings:
    """Resolved settings of an OTLP trace exporter."""

    protocol: str
    endpoint: str
    url_path: str | None = None
    headers: dict[str, str] | None = None
    insecure: bool = False


def exporter_settings(config: TraceConfig) -> ExporterSettings:
    """Work out the exporter settings from ``config.endpoint``.

    ``rpc://`` selects the gRPC exporter and ``http://`` the HTTP one; any
    other scheme raises ``ValueError``.
    """
    parts = urlsplit(config.endpoint)
    if parts.scheme not in SUPPORTED_PROTOCOLS:
        raise ValueError("unsupported protocol")
    host = parts.netloc.rpartition("@")[2]
    url_path = None
    if parts.scheme == "http" and parts.path:
        url_path = unquote(parts.path)
    return ExporterSettings(
        protocol=parts.scheme,
        endpoint=host,
        url_path=url_path,
        headers=build_auth_header(config.endpoint),
        insecure=config.insecure,
    )


def resource_attributes(version: str, tags: list[str]) -> dict[str, str]:
    """Build the trace resource attributes from the version and ``key=value`` tags.

    Tags without ``=`` are ignored.
    """
    attrs = {SERVICE_NAME_KEY: SERVICE_NAME, SERVICE_VERSION_KEY: version}
    for tag in tags:
        key, sep, value = tag.strip().partition("=")
        if not sep:
            continue
        attrs[key] = value
    return attrs


def build_auth_header(endpoint: str) -> dict[str, str] | None:
    """Derive the Authorization header from the credentials in an endpoint URL.

    Without user info there is no header. With a password, a user name gives
    Basic credentials and an empty user name gives a Bearer token; user info
    without a password yields an empty header value.
    """
    parts = urlsplit(endpoint)
    if parts.username is None:
        return None
    value = ""
    if parts.password is not None:
        user = unquote(parts.username)
        secret_value = unquote(parts.password)
        if user:
            value = f"Basic {encode_basic_auth_creds(user, secret_value)}"
        else:
            value = f"Bearer {secret_value}"
    return {"Authorization": value}


def encode_basic_auth_creds(username: str, password: str) -> str:
    """Return the base64 of ``username:password``."""
    return base64.b64encode(f"{username}:{password}".encode()).decode("ascii")


def authorization_request_attributes(request_id: str, propagation_request_id: str) -> dict[str, str]:
    """Return the span attributes of an authorization request."""
    attrs = {REQUEST_ID_ATTR: request_id}
    if propagation_request_id:
        attrs[PROPAGATION_REQUEST_ID_ATTR] = propagation_request_id
    return attrs


@dataclass
class ErrorHandler:
    """Logs errors raised by the tracing machinery."""

    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def handle(self, err: BaseException) -> None:
        self.logger.error("trace error", exc_info=err)