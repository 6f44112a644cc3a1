# authpipe

An external authorization library. A request is matched to an `AuthConfig`
by host and run through a pipeline of evaluators:

1. identity verification – the first evaluator to succeed wins; if none does,
   the request is denied as unauthenticated (401),
2. metadata fetching – failures are only logged,
3. authorization – any failure denies the request (403),
4. dynamic response building – resolved objects become response headers or
   dynamic metadata,
5. callbacks – run whatever the outcome.

Within a phase, evaluators are grouped by `priority`; lower priorities run
first, and evaluators of the same priority run concurrently in threads.

## Modules

- `authpipe.evaluators` – `Evaluator` (a named rule with a `handler(pipeline)`
  that returns an object or raises, optional `priority`, `conditions`,
  `extend`, `challenge`, `wrapper` (`"httpHeader"` or
  `"envoyDynamicMetadata"`), `wrapper_key` and `wristband`), `AuthConfig`,
  `DenyWithValues` / `DenyWithHeader` for customising denials, and
  `group_by_priority`.
- `authpipe.pipeline` – `AuthPipeline(request, auth_config)`; `evaluate()`
  returns an `AuthResult`, `get_authorization_json()` gives the request
  context and resolved auth data as JSON.
- `authpipe.model` – `CheckRequest`, `HttpRequestAttributes`, `Peer`,
  `AuthResult`, `CheckResponse`, `RpcCode`, `HttpStatus` and `http_status_for`.
- `authpipe.service` – `AuthService.check(request)` looks up the auth config
  (`context_extensions["host"]` overrides the host; a `host:port` falls back
  to `host`) and returns a `CheckResponse`. Denied responses carry the reason
  in the `X-Ext-Auth-Reason` header. `AuthService` is also a WSGI application
  answering GET and POST on `/check`; a body over
  `max_http_request_body_size` (default 8192 bytes) gets 413. When the body is
  a Kubernetes `AdmissionReview` (`admission.k8s.io/v1`), the reply is an
  `AdmissionReview` response. `MemoryIndex` maps hosts to auth configs.
- `authpipe.oidc` – `OidcService`, a WSGI application serving a wristband
  issuer's `openid_config()` and `jwks()` at
  `/<namespace>/<name>/<evaluator>/.well-known/openid-configuration` and
  `/<namespace>/<name>/<evaluator>/.well-known/openid-connect/certs`. The
  realm `<namespace>/<name>` is matched against the `namespace` and `name`
  labels of the auth configs.
- `authpipe.health` – `HealthService.check()` returns
  `ServingStatus.SERVING`; `watch()` raises `UnimplementedError`.
- `authpipe.tracing` – computes OTLP exporter settings (`exporter_settings`
  for `rpc://` and `http://` endpoints, with Basic or Bearer credentials from
  the URL), resource attributes and request span attributes.
- `authpipe.workers` – `start_worker(interval, func)` calls `func` every
  `interval` seconds on a daemon thread until `Worker.stop()` or the optional
  `stop_event` is set.
- `authpipe.utils` – `env_var(key, default)` reads a `str`, `int` or `bool`
  setting from the environment, plus small sequence and mapping helpers.

## Example

```python
from wsgiref.simple_server import make_server

from authpipe.evaluators import AuthConfig, Evaluator
from authpipe.service import AuthService, MemoryIndex

anonymous = Evaluator(name="anonymous", handler=lambda pipeline: {"anonymous": True})

index = MemoryIndex()
index.set("myapp.io", AuthConfig(identity_configs=[anonymous]))

service = AuthService(index)
with make_server("", 5001, service) as server:
    server.serve_forever()
```

A request to `/check` with `Host: myapp.io` is then allowed (200); a host
with no registered auth config gets 404.

## What it does not do

- It ships no evaluator implementations (token validation, policy engines,
  HTTP metadata lookups and the like); evaluators are plain Python callables
  you supply.
- It has no gRPC server and no command-line program; the services are WSGI
  applications and plain classes to be hosted by your own server.
- The index is in memory only; nothing loads auth configs from a cluster or
  from files.
- It exports no traces and records no metrics; `authpipe.tracing` only works
  out settings and attributes.

## Tests

Install the `test` extra and run `pytest`.