from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi import HTTPException

from fleetwatch.auth import (
    ROLE_PERMISSIONS,
    Capability,
    Caller,
    Role,
    _parse_token_subject,
    check_permission,
    create_access_token,
    decode_token,
    require_capability,
    verify_detector_secret,
)
from fleetwatch.config import settings
from fleetwatch.domain_errors import DomainError


@pytest.mark.parametrize(
    ("role", "expected"),
    [
        (
            Role.OPERATOR,
            {capability: True for capability in Capability},
        ),
        (
            Role.TENANT_USER,
            {
                Capability.VIEW_GEOFENCES: True,
                Capability.CREATE_GEOFENCES: True,
                Capability.EDIT_OWN_GEOFENCES: True,
                Capability.EDIT_ANY_GEOFENCE: False,
                Capability.SHARE_GEOFENCES: False,
                Capability.VIEW_ANY_CLIENT: False,
                Capability.MANAGE_OWN_RECIPIENTS: True,
                Capability.MANAGE_ANY_RECIPIENTS: False,
                Capability.TEST_RECIPIENTS: False,
                Capability.VIEW_DELIVERIES: False,
                Capability.VIEW_AUDIT: False,
            },
        ),
    ],
)
def test_role_permission_matrix(role, expected) -> None:
    assert ROLE_PERMISSIONS[role] == expected


def test_every_role_defines_every_capability() -> None:
    for role in Role:
        assert set(ROLE_PERMISSIONS[role]) == set(Capability)


def test_require_capability_raises_permission_denied_with_reason() -> None:
    caller = Caller(user_id=uuid4(), name="t", role=Role.TENANT_USER, client_id=uuid4())

    assert check_permission(caller, Capability.VIEW_GEOFENCES) is True
    with pytest.raises(DomainError, match="canViewAudit") as exc_info:
        require_capability(caller, Capability.VIEW_AUDIT)

    assert exc_info.value.code == "PERMISSION_DENIED"
    assert exc_info.value.http_status == 403
    assert exc_info.value.reason == "Role 'tenant_user' lacks canViewAudit"


def test_access_token_round_trip_and_expiry() -> None:
    user_id = uuid4()

    payload = decode_token(create_access_token({"sub": str(user_id)}))
    assert payload["type"] == "access"
    assert _parse_token_subject(payload) == user_id

    expired = create_access_token({"sub": str(user_id)}, expires_delta=timedelta(minutes=-10))
    with pytest.raises(HTTPException) as exc_info:
        decode_token(expired)
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Token expired"


def test_malformed_token_subject_is_rejected() -> None:
    with pytest.raises(HTTPException):
        decode_token("not-a-jwt")
    with pytest.raises(HTTPException):
        _parse_token_subject({"sub": "not-a-uuid"})


@pytest.mark.parametrize("token", ["nope", "señal-secreta", "密钥"])
def test_detector_secret_mismatch_is_forbidden(token) -> None:
    with pytest.raises(HTTPException) as exc_info:
        verify_detector_secret(f"Bearer {token}")

    assert exc_info.value.status_code == 403


def test_detector_secret_accepts_configured_value_and_rejects_missing_header() -> None:
    assert verify_detector_secret(f"Bearer {settings.DETECTOR_SHARED_SECRET}") is None
    with pytest.raises(HTTPException) as exc_info:
        verify_detector_secret(None)
    assert exc_info.value.status_code == 401
