"""
API route: Daily dashboards
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from apps.api.authz import (
    AccessAuthorizer,
    RequestIdentity,
    assert_patient_access,
    get_access_authorizer,
    get_request_identity,
)
from apps.api.deps import get_summarization_service
from apps.api.schemas import ApiModel, DashboardResponse
from apps.worker.dashboard import current_utc_day, generate_daily_dashboard
from packages.db.database import get_db
from packages.db.read_model import latest_dashboard
from packages.shared.services import SummarizationService

router = APIRouter(tags=["dashboards"])


class GenerateDashboardRequest(ApiModel):
    day: Optional[date] = None
    force: bool = False


@router.post("/patients/{patient_user_id}/dashboards/generate", response_model=DashboardResponse)
def generate_dashboard(
    patient_user_id: str,
    req: GenerateDashboardRequest | None = None,
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
    summarizer: SummarizationService = Depends(get_summarization_service),
):
    """Return today's dashboard, generating it first if needed (or always, with force)."""
    assert_patient_access(identity, patient_user_id, authorize)
    req = req or GenerateDashboardRequest()
    row = generate_daily_dashboard(patient_user_id, summarizer, day=req.day, force=req.force)
    return DashboardResponse.from_row(row)


@router.get(
    "/patients/{patient_user_id}/dashboards/current",
    response_model=Optional[DashboardResponse],
)
def current_dashboard(
    patient_user_id: str,
    day: Optional[date] = None,
    db: Session = Depends(get_db),
    identity: RequestIdentity | None = Depends(get_request_identity),
    authorize: AccessAuthorizer = Depends(get_access_authorizer),
):
    """Latest revision for the day, or null when none was generated yet."""
    assert_patient_access(identity, patient_user_id, authorize)
    row = latest_dashboard(db, patient_user_id, day or current_utc_day())
    return DashboardResponse.from_row(row) if row else None
