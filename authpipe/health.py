"""Health-check service answering that the server is serving."""

from __future__ import annotations

import enum
import logging
from typing import Any

logger = logging.getLogger(__name__)

_UNIMPLEMENTED_CODE = 12


class ServingStatus(enum.IntEnum):
    """Serving status values of the health-check protocol."""

    UNKNOWN = 0
    SERVING = 1
    NOT_SERVING = 2
    SERVICE_UNKNOWN = 3


class UnimplementedError(NotImplementedError):
    """Raised for operations the health service does not offer."""

    def __init__(self, method: str, code: int = _UNIMPLEMENTED_CODE) -> None:
        super().__init__(f"{method} is not implemented")
        self.method = method
        self.code = code


class HealthService:
    """Health-check API: checks always report serving; watching is unsupported."""

    def check(self, request: Any = None) -> ServingStatus:
        logger.info("[HealthService] Check()")
        return ServingStatus.SERVING

    def watch(self, request: Any = None) -> None:
        error = UnimplementedError("Watch")
        logger.debug("[HealthService] Watch() rejected with code %d", error.code)
        raise error