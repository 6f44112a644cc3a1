import json
import threading

import pytest

from authpipe.evaluators import AuthConfig, DenyWithHeader, DenyWithValues, Evaluator
from authpipe.model import CheckRequest, HttpRequestAttributes, RpcCode
from authpipe.pipeline import AuthPipeline


def _request():
    return CheckRequest(
        http=HttpRequestAttributes(
            id="req-1",
            method="GET",
            path="/hello",
            host="myapp.io",
            headers={"authorization": "Bearer token"},
        )
    )


def _anonymous(name="anonymous", **kwargs):
    return Evaluator(name=name, handler=lambda p: {"anonymous": True}, **kwargs)


def _failing(name, message, **kwargs):
    def handler(pipeline):
        raise ValueError(message)

    return Evaluator(name=name, handler=handler, **kwargs)


def test_anonymous_access_is_allowed():
    config = AuthConfig(identity_configs=[_anonymous()])
    pipeline = AuthPipeline(_request(), config)
    result = pipeline.evaluate()
    assert result.success()
    assert result.headers == [{}]
    assert result.metadata == {}
    conf, obj = pipeline.get_resolved_identity()
    assert conf is config.identity_configs[0]
    assert obj == {"anonymous": True}


def test_no_identity_configs_is_unauthenticated():
    result = AuthPipeline(_request(), AuthConfig()).evaluate()
    assert result.code == RpcCode.UNAUTHENTICATED
    assert result.message == "{}"


def test_single_failing_identity_reports_its_error():
    config = AuthConfig(identity_configs=[_failing("apikey", "credential not found")])
    result = AuthPipeline(_request(), config).evaluate()
    assert result.code == RpcCode.UNAUTHENTICATED
    assert result.message == "credential not found"


def test_many_failing_identities_report_all_errors():
    config = AuthConfig(identity_configs=[_failing("a", "bad a"), _failing("b", "bad b", priority=1)])
    result = AuthPipeline(_request(), config).evaluate()
    assert result.code == RpcCode.UNAUTHENTICATED
    assert json.loads(result.message) == {"a": "bad a", "b": "bad b"}


def test_lower_priority_success_skips_higher_priority():
    calls = []

    def later(pipeline):
        calls.append("later")
        return {"later": True}

    config = AuthConfig(
        identity_configs=[Evaluator(name="later", handler=later, priority=1), _anonymous(priority=0)]
    )
    pipeline = AuthPipeline(_request(), config)
    assert pipeline.evaluate().success()
    assert calls == []
    assert pipeline.get_resolved_identity()[1] == {"anonymous": True}


def test_failure_falls_back_to_next_priority():
    config = AuthConfig(identity_configs=[_failing("first", "no"), _anonymous(priority=1)])
    pipeline = AuthPipeline(_request(), config)
    assert pipeline.evaluate().success()
    assert pipeline.get_resolved_identity()[0].name == "anonymous"


def test_identity_is_extended():
    def extend(obj, pipeline):
        return {**obj, "extra": pipeline.get_http().host}

    config = AuthConfig(identity_configs=[_anonymous(extend=extend)])
    pipeline = AuthPipeline(_request(), config)
    assert pipeline.evaluate().success()
    assert pipeline.get_resolved_identity()[1] == {"anonymous": True, "extra": "myapp.io"}


def test_failed_extension_of_single_identity_is_unauthenticated():
    def extend(obj, pipeline):
        raise RuntimeError("cannot extend")

    config = AuthConfig(identity_configs=[_anonymous(extend=extend)])
    result = AuthPipeline(_request(), config).evaluate()
    assert result.code == RpcCode.UNAUTHENTICATED
    assert result.message == "cannot extend"


def test_challenge_headers_on_unauthenticated():
    config = AuthConfig(identity_configs=[_failing("jwt", "missing", challenge="Bearer")])
    result = AuthPipeline(_request(), config).evaluate()
    assert result.headers == [{"WWW-Authenticate": "Bearer"}]


def test_unauthenticated_deny_with():
    deny = DenyWithValues(
        code=302,
        message="Please login",
        headers=[DenyWithHeader(name="Location", value="http://my-app.io/login")],
    )
    config = AuthConfig(identity_configs=[_failing("jwt", "missing")], unauthenticated=deny)
    result = AuthPipeline(_request(), config).evaluate()
    assert result.code == RpcCode.UNAUTHENTICATED
    assert result.status == 302
    assert result.message == "Please login"
    assert result.headers == [{"Location": "http://my-app.io/login"}]


def test_authorization_denied():
    config = AuthConfig(
        identity_configs=[_anonymous()],
        authorization_configs=[_failing("always-deny", "Unauthorized")],
    )
    result = AuthPipeline(_request(), config).evaluate()
    assert result.code == RpcCode.PERMISSION_DENIED
    assert result.message == "Unauthorized"


def test_unauthorized_deny_with_resolves_from_auth_data():
    deny = DenyWithValues(code=403, body=lambda data: {"host": data["context"]["request"]["http"]["host"]})
    config = AuthConfig(
        identity_configs=[_anonymous()],
        authorization_configs=[_failing("deny", "no")],
        unauthorized=deny,
    )
    result = AuthPipeline(_request(), config).evaluate()
    assert result.status == 403
    assert json.loads(result.body) == {"host": "myapp.io"}


def test_metadata_visible_to_authorization():
    seen = {}

    def policy(pipeline):
        data = json.loads(pipeline.get_authorization_json())
        seen.update(data["auth"])
        return True

    config = AuthConfig(
        identity_configs=[_anonymous()],
        metadata_configs=[Evaluator(name="user-info", handler=lambda p: {"email": "john@example.com"})],
        authorization_configs=[Evaluator(name="policy", handler=policy)],
    )
    assert AuthPipeline(_request(), config).evaluate().success()
    assert seen["metadata"] == {"user-info": {"email": "john@example.com"}}
    assert seen["identity"] == {"anonymous": True}
    assert "callbacks" not in seen


def test_failed_metadata_does_not_deny():
    config = AuthConfig(identity_configs=[_anonymous()], metadata_configs=[_failing("m", "down")])
    pipeline = AuthPipeline(_request(), config)
    assert pipeline.evaluate().success()
    assert json.loads(pipeline.get_authorization_json())["auth"]["metadata"] == {}


def test_response_wrappers():
    header = Evaluator(
        name="x-auth-data",
        handler=lambda p: {"headers": p.get_http().headers},
        wrapper="httpHeader",
        wrapper_key="x-auth-data",
    )
    meta = Evaluator(name="ext", handler=lambda p: {"a": 1}, wrapper="envoyDynamicMetadata")
    config = AuthConfig(identity_configs=[_anonymous()], response_configs=[header, meta])
    result = AuthPipeline(_request(), config).evaluate()
    assert result.success()
    assert result.headers == [{"x-auth-data": '{"headers":{"authorization":"Bearer token"}}'}]
    assert result.metadata == {"ext": {"a": 1}}


def test_unmatched_top_conditions_skip_everything():
    called = []

    def identity(pipeline):
        called.append(True)
        return {}

    config = AuthConfig(
        identity_configs=[Evaluator(name="id", handler=identity)],
        conditions=[lambda data: data["context"]["request"]["http"]["method"] == "POST"],
    )
    result = AuthPipeline(_request(), config).evaluate()
    assert result.code == RpcCode.OK
    assert called == []


def test_unmatched_evaluator_conditions_ignore_it():
    config = AuthConfig(
        identity_configs=[_anonymous()],
        authorization_configs=[_failing("deny", "no", conditions=[lambda data: False])],
    )
    assert AuthPipeline(_request(), config).evaluate().success()


def test_raising_condition_counts_as_unmatched():
    def broken(data):
        raise KeyError("missing")

    config = AuthConfig(
        identity_configs=[_anonymous()],
        authorization_configs=[_failing("deny", "no", conditions=[broken])],
    )
    assert AuthPipeline(_request(), config).evaluate().success()


def test_callbacks_run_on_denial_and_are_recorded():
    ran = []

    def callback(pipeline):
        ran.append(True)
        return "done"

    config = AuthConfig(
        identity_configs=[_failing("id", "no")],
        callback_configs=[Evaluator(name="notify", handler=callback)],
    )
    pipeline = AuthPipeline(_request(), config)
    assert pipeline.evaluate().code == RpcCode.UNAUTHENTICATED
    assert ran == [True]
    assert json.loads(pipeline.get_authorization_json())["auth"]["callbacks"] == {"notify": "done"}


def test_cancelled_pipeline_skips_evaluators():
    cancel = threading.Event()
    cancel.set()
    config = AuthConfig(identity_configs=[_anonymous()])
    result = AuthPipeline(_request(), config, cancel_event=cancel).evaluate()
    assert result.code == RpcCode.UNAUTHENTICATED


def test_get_http_and_context_in_json():
    request = _request()
    pipeline = AuthPipeline(request, AuthConfig())
    assert pipeline.get_http() is request.http
    data = json.loads(pipeline.get_authorization_json())
    assert data["context"] == request.to_dict()
    assert pipeline.get_resolved_identity() == (None, None)


@pytest.mark.parametrize("count", [2, 5])
def test_all_authorizations_granted_are_recorded(count):
    policies = [Evaluator(name=f"p{i}", handler=lambda p, i=i: i) for i in range(count)]
    config = AuthConfig(identity_configs=[_anonymous()], authorization_configs=policies)
    pipeline = AuthPipeline(_request(), config)
    assert pipeline.evaluate().success()
    recorded = json.loads(pipeline.get_authorization_json())["auth"]["authorization"]
    assert recorded == {f"p{i}": i for i in range(count)}