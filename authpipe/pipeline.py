"""The auth pipeline: identity, metadata, authorization, response and callbacks."""

from __future__ import annotations

import enum
import json
import logging
import queue
import threading
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from authpipe.evaluators import (
    AuthConfig,
    Condition,
    DenyWithValues,
    EvaluationResponse,
    Evaluator,
    Phase,
    group_by_priority,
)
from authpipe.model import AuthResult, CheckRequest, HttpRequestAttributes, RpcCode

logger = logging.getLogger(__name__)

HTTP_HEADER_WRAPPER = "httpHeader"
DYNAMIC_METADATA_WRAPPER = "envoyDynamicMetadata"


class _Strategy(enum.Enum):
    ONE = "one"  # the first success cancels the rest of the group
    ALL = "all"  # the first failure cancels the rest of the group
    ANY = "any"  # nothing is cancelled


class _PipelineError(Exception):
    """Failure reported by a pipeline phase."""


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), sort_keys=True, default=_json_default)


class AuthPipeline:
    """Evaluates an auth config for one check request.

    Evaluators of the same priority run concurrently; groups of increasing
    priority run one after another. The objects each evaluator resolves are
    kept per phase and are visible to later evaluators through the
    authorization data.
    """

    def __init__(
        self,
        request: CheckRequest,
        auth_config: AuthConfig,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.request = request
        self.auth_config = auth_config
        self._cancel_event = cancel_event
        self._lock = threading.RLock()
        self._objects: dict[Phase, dict[Evaluator, Any]] = {phase: {} for phase in Phase}

    # -- stored objects -------------------------------------------------

    def _set_object(self, phase: Phase, conf: Evaluator, obj: Any) -> None:
        with self._lock:
            self._objects[phase][conf] = obj

    def _objects_of(self, phase: Phase) -> dict[Evaluator, Any]:
        with self._lock:
            return dict(self._objects[phase])

    # -- public views ---------------------------------------------------

    def get_http(self) -> HttpRequestAttributes:
        """Return the HTTP attributes of the request being authorized."""
        return self.request.http

    def get_resolved_identity(self) -> tuple[Evaluator | None, Any]:
        """Return the identity evaluator that resolved an identity and its object."""
        for conf, obj in self._objects_of(Phase.IDENTITY).items():
            if obj is not None:
                return conf, obj
        return None, None

    def _authorization_data(self) -> dict[str, Any]:
        auth: dict[str, Any] = {"identity": self.get_resolved_identity()[1]}
        for phase in (Phase.METADATA, Phase.AUTHORIZATION, Phase.RESPONSE):
            auth[phase.value] = {conf.name: obj for conf, obj in self._objects_of(phase).items()}
        callbacks = {conf.name: obj for conf, obj in self._objects_of(Phase.CALLBACKS).items()}
        if callbacks:
            auth[Phase.CALLBACKS.value] = callbacks
        return {"context": self.request.to_dict(), "auth": auth}

    def get_authorization_json(self) -> str:
        """Return the request context and the resolved auth data as a JSON document."""
        return json.dumps(self._authorization_data(), separators=(",", ":"), default=_json_default)

    # -- evaluation machinery -------------------------------------------

    def _conditions_hold(self, conditions: Iterable[Condition]) -> bool:
        conditions = list(conditions)
        if not conditions:
            return True
        data = self._authorization_data()
        try:
            return all(condition(data) for condition in conditions)
        except Exception as err:  # a failing condition counts as unmatched
            logger.debug("condition failed: %s", err)
            return False

    def _cancelled(self, group_cancel: threading.Event) -> bool:
        return group_cancel.is_set() or (self._cancel_event is not None and self._cancel_event.is_set())

    def _evaluate_one(
        self, conf: Evaluator, group_cancel: threading.Event, strategy: _Strategy
    ) -> EvaluationResponse | None:
        if self._cancelled(group_cancel):
            logger.debug("skipping config %s: cancelled", conf.name)
            return None
        if not self._conditions_hold(conf.conditions):
            logger.debug("ignoring config %s: unmatching conditions", conf.name)
            return None
        try:
            obj = conf.call(self)
        except Exception as err:
            if strategy is _Strategy.ALL:
                group_cancel.set()
            return EvaluationResponse(evaluator=conf, error=err)
        if strategy is _Strategy.ONE:
            group_cancel.set()
        return EvaluationResponse(evaluator=conf, obj=obj)

    def _run_group(self, configs: list[Evaluator], strategy: _Strategy) -> Iterator[EvaluationResponse]:
        """Run a priority group concurrently, yielding responses as they arrive."""
        group_cancel = threading.Event()
        results: queue.Queue[EvaluationResponse | None] = queue.Queue()

        def work(conf: Evaluator) -> None:
            try:
                results.put(self._evaluate_one(conf, group_cancel, strategy))
            except BaseException:
                results.put(None)
                raise

        for conf in configs:
            threading.Thread(target=work, args=(conf,), daemon=True).start()
        for _ in configs:
            response = results.get()
            if response is not None:
                yield response

    def _phase_responses(self, phase: Phase, strategy: _Strategy) -> Iterator[EvaluationResponse]:
        for _priority, configs in group_by_priority(self.auth_config.evaluators_for(phase)):
            yield from self._run_group(configs, strategy)

    # -- phases ---------------------------------------------------------

    def _evaluate_identity(self) -> EvaluationResponse:
        count = len(self.auth_config.identity_configs)
        errors: dict[str, str] = {}
        for resp in self._phase_responses(Phase.IDENTITY, _Strategy.ONE):
            conf = resp.evaluator
            assert conf is not None
            if resp.success():
                # Stored first so that the extension can see the resolved identity.
                self._set_object(Phase.IDENTITY, conf, resp.obj)
                try:
                    extended = conf.resolve_extended_properties(resp.obj, self)
                except Exception as err:
                    resp.error = err
                    logger.debug("failed to extend identity object of %s: %s", conf.name, err)
                    if count == 1:
                        return resp
                    errors[conf.name] = str(err)
                else:
                    self._set_object(Phase.IDENTITY, conf, extended)
                    logger.debug("identity validated by %s", conf.name)
                    return resp
            else:
                logger.debug("cannot validate identity with %s: %s", conf.name, resp.error)
                if count == 1:
                    return resp
                errors[conf.name] = str(resp.error)
        message = json.dumps(errors, separators=(",", ":"), sort_keys=True)
        return EvaluationResponse(error=_PipelineError(message))

    def _evaluate_metadata(self) -> None:
        for resp in self._phase_responses(Phase.METADATA, _Strategy.ANY):
            conf = resp.evaluator
            assert conf is not None
            if resp.success():
                self._set_object(Phase.METADATA, conf, resp.obj)
                logger.debug("fetched auth metadata from %s", conf.name)
            else:
                logger.debug("cannot fetch metadata from %s: %s", conf.name, resp.error)

    def _evaluate_authorization(self) -> EvaluationResponse:
        for resp in self._phase_responses(Phase.AUTHORIZATION, _Strategy.ALL):
            conf = resp.evaluator
            assert conf is not None
            if resp.success():
                self._set_object(Phase.AUTHORIZATION, conf, resp.obj)
                logger.debug("access granted by %s", conf.name)
            else:
                logger.debug("access denied by %s: %s", conf.name, resp.error)
                return resp
        return EvaluationResponse()

    def _evaluate_response(self) -> None:
        for resp in self._phase_responses(Phase.RESPONSE, _Strategy.ALL):
            conf = resp.evaluator
            assert conf is not None
            if resp.success():
                self._set_object(Phase.RESPONSE, conf, resp.obj)
                logger.debug("dynamic response built by %s", conf.name)
            else:
                logger.debug("cannot build dynamic response with %s: %s", conf.name, resp.error)

    def _execute_callbacks(self) -> None:
        for resp in self._phase_responses(Phase.CALLBACKS, _Strategy.ANY):
            conf = resp.evaluator
            assert conf is not None
            if resp.success():
                self._set_object(Phase.CALLBACKS, conf, resp.obj)
                logger.debug("callback %s executed", conf.name)
            else:
                logger.debug("cannot execute callback %s: %s", conf.name, resp.error)

    def _wrap_responses(self) -> tuple[dict[str, str], dict[str, Any]]:
        headers: dict[str, str] = {}
        metadata: dict[str, Any] = {}
        for conf, obj in self._objects_of(Phase.RESPONSE).items():
            key = conf.wrapper_key or conf.name
            if conf.wrapper == DYNAMIC_METADATA_WRAPPER:
                metadata[key] = obj
            else:
                headers[key] = _stringify(obj)
        return headers, metadata

    def _customize_deny_with(self, result: AuthResult, deny_with: DenyWithValues | None) -> AuthResult:
        if deny_with is None:
            return result
        return deny_with.apply(result, self._authorization_data())

    def evaluate(self) -> AuthResult:
        """Run all phases and return the outcome for the request."""
        result = AuthResult(code=RpcCode.OK)

        if not self._conditions_hold(self.auth_config.conditions):
            logger.debug("skipping auth config: unmatching conditions")
            return result

        identity = self._evaluate_identity()
        if not identity.success():
            result.code = RpcCode.UNAUTHENTICATED
            result.message = identity.error_message()
            result.headers = self.auth_config.challenge_headers()
            result = self._customize_deny_with(result, self.auth_config.unauthenticated)
        else:
            self._evaluate_metadata()
            authorization = self._evaluate_authorization()
            if not authorization.success():
                result.code = RpcCode.PERMISSION_DENIED
                result.message = authorization.error_message()
                result = self._customize_deny_with(result, self.auth_config.unauthorized)
            else:
                self._evaluate_response()
                headers, metadata = self._wrap_responses()
                result.headers = [headers]
                result.metadata = metadata

        self._execute_callbacks()
        return result