from __future__ import annotations

import json

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from fleetwatch.domain_errors import DomainError, NotFound, PermissionDenied, ValidationError
from fleetwatch.problem_details import build_problem_details_response


def test_problem_details_payload_contains_stable_code_and_rfc7807_fields() -> None:
    response = build_problem_details_response(
        DomainError(
            code="SAMPLE_ERROR",
            http_status=409,
            message="sample failed",
            details={"sample": True},
        )
    )

    assert response.status_code == 409
    assert response.media_type == "application/problem+json"

    body = response.body.decode("utf-8")
    assert '"type":"https://api.fleetwatch.local/problems/sample_error"' in body
    assert '"title":"Conflict"' in body
    assert '"status":409' in body
    assert '"detail":"sample failed"' in body
    assert '"code":"SAMPLE_ERROR"' in body
    assert '"details":{"sample":true}' in body


def test_error_subclasses_map_to_http_statuses() -> None:
    assert ValidationError(code="V", message="bad").http_status == 422
    assert NotFound(code="N", message="missing").http_status == 404

    denied = PermissionDenied(code="P", message="no", reason="not yours")
    response = build_problem_details_response(denied)
    body = response.body.decode("utf-8")
    assert response.status_code == 403
    assert '"title":"Forbidden"' in body
    assert '"details":{"reason":"not yours"}' in body
    assert json.loads(body)["reason"] == "not yours"

    no_reason = build_problem_details_response(PermissionDenied(code="P", message="no"))
    assert '"reason"' not in no_reason.body.decode("utf-8")


def test_problem_details_omits_details_when_none() -> None:
    response = build_problem_details_response(NotFound(code="NO_DETAILS", message="gone"))

    body = response.body.decode("utf-8")
    assert response.status_code == 404
    assert '"code":"NO_DETAILS"' in body
    assert '"details"' not in body


def test_fastapi_exception_handler_maps_domain_error_to_problem_details() -> None:
    app = FastAPI()

    async def _handle_domain_error(_: Request, exc: DomainError):
        return build_problem_details_response(exc)

    app.add_exception_handler(DomainError, _handle_domain_error)

    @app.get("/boom")
    def _boom():
        raise ValidationError(code="ROUTE_PROBLEM", message="route failed", details={"source": "test"})

    client = TestClient(app)
    response = client.get("/boom")

    assert response.status_code == 422
    assert response.headers["content-type"].startswith("application/problem+json")
    payload = response.json()
    assert payload["code"] == "ROUTE_PROBLEM"
    assert payload["detail"] == "route failed"
