"""
Daily dashboard generation.

One dashboard per patient per day. The day is the server's UTC calendar date
unless the caller passes one explicitly. Regeneration (force) appends a new
revision instead of rewriting the old row; the highest revision is current.
Failed summarizations write nothing. A non-forced generation holds a
short-lived claim on (patient, day) so concurrent callers do not summarize twice.
"""
from __future__ import annotations

import logging
import os
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from apps.worker.lib.deadline import call_with_deadline
from packages.db.database import get_session
from packages.db.models import (
    Condition,
    DailyDashboard,
    DashboardGenerationClaim,
    Lab,
    Medication,
    Vital,
    ensure_utc,
    utcnow,
)
from packages.db.read_model import get_profile, latest_dashboard
from packages.shared.errors import (
    GenerationFailed,
    GenerationInProgress,
    PersistenceConflict,
    UpstreamInvalid,
    UpstreamTimeout,
)
from packages.shared.models import (
    ClinicalSnapshot,
    ConditionRecord,
    DashboardContent,
    DashboardStatus,
    LabRecord,
    MedicationRecord,
    PatientProfileData,
    VitalRecord,
)
from packages.shared.schema_validator import validate_dashboard_payload
from packages.shared.services import SummarizationService

logger = logging.getLogger(__name__)

SUMMARIZATION_TIMEOUT_SECONDS = float(os.getenv("SUMMARIZATION_TIMEOUT_SECONDS", "90"))
GENERATION_CLAIM_TTL_SECONDS = float(os.getenv("GENERATION_CLAIM_TTL_SECONDS", "300"))
SNAPSHOT_VITALS_LIMIT = 10
SNAPSHOT_LABS_LIMIT = 25
SNAPSHOT_MEDICATIONS_LIMIT = 50
SNAPSHOT_CONDITIONS_LIMIT = 25


def current_utc_day() -> date:
    return datetime.now(timezone.utc).date()


def build_clinical_snapshot(session: Session, patient_user_id: str, day: date) -> ClinicalSnapshot:
    """Profile plus recent records up to the end of *day* (UTC)."""
    cutoff = datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)

    profile_row = get_profile(session, patient_user_id)
    profile = None
    if profile_row is not None:
        profile = PatientProfileData(
            age_years=profile_row.age_years,
            gender=profile_row.gender,
            history_of_present_illness=profile_row.history_of_present_illness,
            symptom_onset=profile_row.symptom_onset,
            symptom_duration=profile_row.symptom_duration,
            smoking_status=profile_row.smoking_status,
            alcohol_consumption=profile_row.alcohol_consumption,
            physical_activity_level=profile_row.physical_activity_level,
        )

    vitals = (
        session.query(Vital)
        .filter(Vital.patient_user_id == patient_user_id, Vital.measured_at < cutoff)
        .order_by(Vital.measured_at.desc())
        .limit(SNAPSHOT_VITALS_LIMIT)
        .all()
    )
    labs = (
        session.query(Lab)
        .filter(Lab.patient_user_id == patient_user_id, Lab.collected_at < cutoff)
        .order_by(Lab.collected_at.desc())
        .limit(SNAPSHOT_LABS_LIMIT)
        .all()
    )
    medications = (
        session.query(Medication)
        .filter(
            Medication.patient_user_id == patient_user_id,
            Medication.active.is_(True),
            Medication.noted_at < cutoff,
        )
        .order_by(Medication.noted_at.desc())
        .limit(SNAPSHOT_MEDICATIONS_LIMIT)
        .all()
    )
    conditions = (
        session.query(Condition)
        .filter(Condition.patient_user_id == patient_user_id, Condition.noted_at < cutoff)
        .order_by(Condition.noted_at.desc())
        .limit(SNAPSHOT_CONDITIONS_LIMIT)
        .all()
    )

    return ClinicalSnapshot(
        patient_user_id=patient_user_id,
        day=day,
        profile=profile,
        vitals=[
            VitalRecord(
                measured_at=ensure_utc(v.measured_at),
                systolic=v.systolic,
                diastolic=v.diastolic,
                heart_rate=v.heart_rate,
                temperature_c=v.temperature_c,
            )
            for v in vitals
        ],
        labs=[
            LabRecord(
                collected_at=ensure_utc(l.collected_at),
                test_name=l.test_name,
                value_text=l.value_text,
                unit=l.unit,
                reference_range=l.reference_range,
                flag=l.flag,
            )
            for l in labs
        ],
        medications=[
            MedicationRecord(
                medication_name=m.medication_name,
                dose=m.dose,
                frequency=m.frequency,
                active=m.active,
                noted_at=ensure_utc(m.noted_at),
            )
            for m in medications
        ],
        conditions=[
            ConditionRecord(
                condition_name=c.condition_name,
                status=c.status,
                noted_at=ensure_utc(c.noted_at),
            )
            for c in conditions
        ],
    )


def _summarize(
    summarizer: SummarizationService,
    snapshot: ClinicalSnapshot,
    tag: str,
    timeout_seconds: float,
) -> DashboardContent:
    try:
        raw = call_with_deadline(
            summarizer.summarize, snapshot,
            timeout=timeout_seconds,
            label=f"summarize-{snapshot.patient_user_id[:8]}",
        )
    except UpstreamTimeout as exc:
        logger.error(f"[{tag}] Summarization timed out")
        raise GenerationFailed("Summarization timed out") from exc
    except UpstreamInvalid as exc:
        logger.error(f"[{tag}] Summarization failed: {exc.message}")
        raise GenerationFailed(f"Summarization failed: {exc.message}") from exc

    is_valid, errors = validate_dashboard_payload(raw)
    if not is_valid:
        logger.error(f"[{tag}] Summarization payload failed schema check: {errors[:5]}")
        raise GenerationFailed(f"Summarization returned an invalid dashboard: {'; '.join(errors[:3])}")
    try:
        return DashboardContent.model_validate(raw)
    except ValidationError as exc:
        raise GenerationFailed(f"Summarization returned an invalid dashboard: {exc.error_count()} errors") from exc


def _insert_dashboard(
    patient_user_id: str,
    day: date,
    model: str,
    content: DashboardContent,
    force: bool,
) -> DailyDashboard:
    with get_session() as session:
        latest = latest_dashboard(session, patient_user_id, day)
        if latest is not None and not force:
            # Another writer produced today's dashboard while we were summarizing
            return latest

        created_at = utcnow()
        revision = 1
        if latest is not None:
            revision = latest.revision + 1
            previous = ensure_utc(latest.created_at)
            if previous is not None and created_at <= previous:
                created_at = previous + timedelta(microseconds=1)

        row = DailyDashboard(
            patient_user_id=patient_user_id,
            day=day,
            revision=revision,
            model=model,
            dashboard_json=content.model_dump(by_alias=True),
            status=DashboardStatus.GENERATED.value,
            created_at=created_at,
        )
        session.add(row)
        session.flush()
        return row


def claim_generation(patient_user_id: str, day: date) -> str:
    """
    Take the generation claim for (patient, day) and return its token.

    Raises GenerationInProgress while another caller holds a live claim.
    """
    token = uuid.uuid4().hex
    stale_cutoff = utcnow() - timedelta(seconds=GENERATION_CLAIM_TTL_SECONDS)
    with get_session() as session:
        rows_updated = (
            session.query(DashboardGenerationClaim)
            .filter(DashboardGenerationClaim.patient_user_id == patient_user_id)
            .filter(DashboardGenerationClaim.day == day)
            .filter(DashboardGenerationClaim.claimed_at < stale_cutoff)
            .update({"token": token, "claimed_at": utcnow()}, synchronize_session=False)
        )
    if rows_updated == 1:
        logger.warning(f"[{patient_user_id}:{day.isoformat()}] Reclaimed stale generation claim")
        return token

    try:
        with get_session() as session:
            session.add(DashboardGenerationClaim(
                patient_user_id=patient_user_id,
                day=day,
                token=token,
                claimed_at=utcnow(),
            ))
            session.flush()
    except IntegrityError as exc:
        raise GenerationInProgress(
            f"Dashboard for {patient_user_id} on {day.isoformat()} is already being generated"
        ) from exc
    return token


def release_generation(patient_user_id: str, day: date, token: str) -> None:
    with get_session() as session:
        (
            session.query(DashboardGenerationClaim)
            .filter_by(patient_user_id=patient_user_id, day=day, token=token)
            .delete(synchronize_session=False)
        )


def _existing_dashboard(patient_user_id: str, day: date, tag: str) -> Optional[DailyDashboard]:
    with get_session() as session:
        existing = latest_dashboard(session, patient_user_id, day)
    if existing is not None:
        logger.info(f"[{tag}] Returning existing dashboard {existing.id} (revision {existing.revision})")
    return existing


def generate_daily_dashboard(
    patient_user_id: str,
    summarizer: SummarizationService,
    day: Optional[date] = None,
    force: bool = False,
    timeout_seconds: Optional[float] = None,
) -> DailyDashboard:
    """
    Return the patient's dashboard for *day*, generating it if needed.

    Without force an existing dashboard is returned unchanged and the
    summarizer is not called; concurrent callers for the same day are
    serialized by a generation claim. With force a new revision is always
    written.

    Raises:
        GenerationFailed: summarizer timed out or returned an invalid payload.
        GenerationInProgress: another non-forced generation for the day is running.
        PersistenceConflict: lost the insert race twice.
    """
    day = day or current_utc_day()
    tag = f"{patient_user_id}:{day.isoformat()}"

    token = None
    if not force:
        existing = _existing_dashboard(patient_user_id, day, tag)
        if existing is not None:
            return existing
        token = claim_generation(patient_user_id, day)

    try:
        if token is not None:
            # The previous claim holder may have finished before we claimed
            existing = _existing_dashboard(patient_user_id, day, tag)
            if existing is not None:
                return existing

        with get_session() as session:
            snapshot = build_clinical_snapshot(session, patient_user_id, day)

        logger.info(
            f"[{tag}] Summarizing via {summarizer.model}: vitals={len(snapshot.vitals)} "
            f"labs={len(snapshot.labs)} medications={len(snapshot.medications)} "
            f"conditions={len(snapshot.conditions)} force={force}"
        )
        deadline = SUMMARIZATION_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        content = _summarize(summarizer, snapshot, tag, deadline)

        try:
            row = _insert_dashboard(patient_user_id, day, summarizer.model, content, force)
        except IntegrityError:
            logger.warning(f"[{tag}] Dashboard insert lost a race; retrying once")
            try:
                row = _insert_dashboard(patient_user_id, day, summarizer.model, content, force)
            except IntegrityError as exc:
                raise PersistenceConflict(f"Dashboard for {tag} is being written concurrently") from exc
    finally:
        if token is not None:
            release_generation(patient_user_id, day, token)

    logger.info(f"[{tag}] Dashboard {row.id} revision {row.revision} ready")
    return row
