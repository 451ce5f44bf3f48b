from fastapi import FastAPI
from fastapi.testclient import TestClient

from recipes_api.errors import (
    DependencyUnavailable,
    FieldProblem,
    FilterValidationError,
    RateLimitExceeded,
    install_exception_handlers,
)


def _app():
    app = FastAPI()
    install_exception_handlers(app)

    @app.get("/invalid")
    def invalid():
        raise FilterValidationError([FieldProblem(field="sugar_max", message="must be >= 0")])

    @app.get("/limited")
    def limited():
        raise RateLimitExceeded("slow down", retry_after=2.2)

    @app.get("/down")
    def down():
        raise DependencyUnavailable("recipe corpus")

    @app.get("/boom")
    def boom():
        raise RuntimeError("secret internals")

    return app


def test_problem_document_shape():
    resp = TestClient(_app()).get("/invalid?sugar_max=-1")
    assert resp.status_code == 400
    assert resp.headers["content-type"].startswith("application/problem+json")
    body = resp.json()
    assert body["type"] == "https://nutrition-app.com/problems/validation-error"
    assert body["title"] == "Validation Error"
    assert body["status"] == 400
    assert body["instance"] == "/invalid?sugar_max=-1"
    assert body["errors"] == [{"field": "sugar_max", "message": "must be >= 0"}]


def test_rate_limited_has_retry_after():
    resp = TestClient(_app()).get("/limited")
    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "3"
    assert resp.json()["retry_after"] == 2.2


def test_dependency_unavailable_is_retryable():
    body = TestClient(_app()).get("/down").json()
    assert body["status"] == 503
    assert body["retryable"] is True
    assert body["dependency"] == "recipe corpus"


def test_unhandled_error_does_not_leak_details():
    resp = TestClient(_app(), raise_server_exceptions=False).get("/boom")
    assert resp.status_code == 500
    assert "secret" not in resp.text
    assert resp.json()["title"] == "Internal Server Error"


def test_unknown_route_is_a_problem():
    resp = TestClient(_app()).get("/missing")
    assert resp.status_code == 404
    assert resp.json()["status"] == 404
