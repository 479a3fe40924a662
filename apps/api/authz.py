"""
Feature-flagged API authn/authz helpers.

Default behavior is permissive for local development. Set
`ACCESS_ENFORCEMENT=true` to require request identity headers and
patient-scoped access checks.
"""
from __future__ import annotations

import hmac
import logging
import os
from dataclasses import dataclass
from typing import Callable

from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)

# (actor_user_id, patient_user_id) -> allowed. Used for anyone other than the
# patient themselves, e.g. care-team delegates.
AccessAuthorizer = Callable[[str, str], bool]


def _env_true(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def access_enforcement_enabled() -> bool:
    return _env_true("ACCESS_ENFORCEMENT", False)


@dataclass(frozen=True)
class RequestIdentity:
    user_id: str


def get_request_identity(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_internal_token: str | None = Header(default=None, alias="X-Internal-Token"),
) -> RequestIdentity | None:
    """
    Resolve request identity from headers when access enforcement is enabled.
    Returns None when enforcement is disabled.
    """
    if not access_enforcement_enabled():
        return None

    expected_token = os.getenv("API_INTERNAL_TOKEN", "").strip()
    if len(expected_token) < 24:
        raise HTTPException(
            status_code=500,
            detail="API is misconfigured: API_INTERNAL_TOKEN must be at least 24 characters",
        )
    if not x_internal_token or not hmac.compare_digest(x_internal_token, expected_token):
        raise HTTPException(status_code=401, detail="Invalid internal token")
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing required identity header: X-User-Id")
    return RequestIdentity(user_id=x_user_id)


def deny_all(actor_user_id: str, patient_user_id: str) -> bool:
    return False


def get_access_authorizer() -> AccessAuthorizer:
    """Dependency hook; override in the app to plug in delegate access."""
    return deny_all


def assert_patient_access(
    identity: RequestIdentity | None,
    patient_user_id: str,
    authorize: AccessAuthorizer = deny_all,
) -> None:
    if identity is None:
        return
    if identity.user_id == patient_user_id:
        return
    if authorize(identity.user_id, patient_user_id):
        return
    logger.warning(f"Access denied: user {identity.user_id} -> patient {patient_user_id}")
    raise HTTPException(status_code=403, detail="Forbidden: no access to this patient's data")
