"""HTTP endpoint serving OpenID Connect discovery documents of wristband issuers."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

from authpipe.service import Index

logger = logging.getLogger(__name__)

OIDC_BASE_PATH = "/"
OPENID_CONFIGURATION_PATH = "/.well-known/openid-configuration"
JWKS_PATH = "/.well-known/openid-connect/certs"
NOT_FOUND_MESSAGE = "Not found"


def parse_oidc_path(path: str) -> tuple[str, str, str, str] | None:
    """Split ``/<namespace>/<name>/<wristband>/<suffix>`` into its parts.

    Returns ``None`` when the path has fewer than three sections. The suffix
    always starts with ``/``.
    """
    if not path.startswith(OIDC_BASE_PATH):
        return None
    trimmed = path[len(OIDC_BASE_PATH):]
    if trimmed.endswith("/"):
        trimmed = trimmed[:-1]
    sections = trimmed.split("/")
    if len(sections) < 3:
        return None
    namespace, name, wristband = sections[:3]
    return namespace, name, wristband, "/" + "/".join(sections[3:])


@dataclass
class OidcService:
    """Serves the discovery and key-set documents of wristband issuers."""

    index: Index

    def _find_wristband_issuer(self, realm: str, wristband_name: str) -> Any:
        hosts = self.index.find_keys(realm)
        if not hosts:
            return None
        config = self.index.get(hosts[0])
        if config is None:
            return None
        for conf in config.response_configs:
            if conf.name == wristband_name:
                return conf.wristband
        return None

    def handle(self, path: str) -> tuple[int, str]:
        """Return the HTTP status and body answering a request for ``path``."""
        parsed = parse_oidc_path(path)
        if parsed is None:
            logger.info("request received: %s", path)
            return int(HTTPStatus.NOT_FOUND), NOT_FOUND_MESSAGE

        namespace, name, wristband_name, suffix = parsed
        realm = f"{namespace}/{name}"
        logger.info("request received: realm=%s config=%s path=%s", realm, wristband_name, suffix)

        wristband = self._find_wristband_issuer(realm, wristband_name)
        if wristband is None:
            return int(HTTPStatus.NOT_FOUND), NOT_FOUND_MESSAGE

        documents = {
            OPENID_CONFIGURATION_PATH: wristband.openid_config,
            JWKS_PATH: wristband.jwks,
        }
        produce = documents.get(suffix)
        if produce is None:
            return int(HTTPStatus.NOT_FOUND), NOT_FOUND_MESSAGE
        try:
            return int(HTTPStatus.OK), produce()
        except Exception as err:
            return int(HTTPStatus.INTERNAL_SERVER_ERROR), str(err)

    def __call__(self, environ: Mapping[str, Any], start_response: Callable[..., Any]) -> list[bytes]:
        """Answer an OIDC discovery request as a WSGI application."""
        status, text = self.handle(str(environ.get("PATH_INFO", "")))
        body = text.encode("utf-8")
        headers = []
        if status == HTTPStatus.OK:
            headers.append(("Content-Type", "application/json"))
        headers.append(("Content-Length", str(len(body))))
        start_response(f"{status} {HTTPStatus(status).phrase}", headers)
        logger.info("response sent: status=%s", status)
        return [body]