"""
Integration tests: daily dashboard generation.
"""
from __future__ import annotations

import time
from datetime import date, datetime, timedelta, timezone

import pytest

from packages.db.database import engine, get_session
from packages.db.models import Base, DailyDashboard, DashboardGenerationClaim, Lab, Vital, ensure_utc, utcnow
from packages.db.records import add_lab, add_medication, add_vital, upsert_profile
from packages.shared.errors import GenerationFailed, GenerationInProgress, UpstreamInvalid
from packages.shared.models import LabRecord, MedicationRecord, PatientProfileData, VitalRecord
from apps.worker import dashboard as dashboard_module
from apps.worker.dashboard import build_clinical_snapshot, current_utc_day, generate_daily_dashboard

PATIENT = "patient-1"
DAY = date(2024, 3, 15)

SUMMARY = {
    "overview": "Blood pressure is elevated.",
    "insights": ["HbA1c above range"],
    "recommendations": ["Reduce salt"],
    "redFlags": [],
    "suggestedFollowUps": ["Recheck in 2 weeks"],
}


class FakeSummarizer:
    model = "fake-summarizer"

    def __init__(self, response=None, delay: float = 0.0, error: Exception | None = None, on_call=None):
        self.response = SUMMARY if response is None else response
        self.delay = delay
        self.error = error
        self.on_call = on_call
        self.snapshots = []

    def summarize(self, snapshot):
        self.snapshots.append(snapshot)
        if self.on_call is not None:
            self.on_call()
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def _dashboards() -> list[DailyDashboard]:
    with get_session() as session:
        return session.query(DailyDashboard).order_by(DailyDashboard.revision).all()


def test_generate_persists_normalized_dashboard():
    summarizer = FakeSummarizer(response={"overview": "All good.", "redFlags": ["Chest pain"]})

    row = generate_daily_dashboard(PATIENT, summarizer, day=DAY)

    assert row.status == "generated"
    assert row.revision == 1
    assert row.day == DAY
    assert row.model == "fake-summarizer"
    assert row.dashboard_json == {
        "overview": "All good.",
        "insights": [],
        "recommendations": [],
        "redFlags": ["Chest pain"],
        "suggestedFollowUps": [],
    }


def test_second_call_without_force_returns_existing():
    summarizer = FakeSummarizer()
    first = generate_daily_dashboard(PATIENT, summarizer, day=DAY)
    second = generate_daily_dashboard(PATIENT, summarizer, day=DAY)

    assert second.id == first.id
    assert len(summarizer.snapshots) == 1
    assert len(_dashboards()) == 1


def test_force_appends_new_revision():
    summarizer = FakeSummarizer()
    first = generate_daily_dashboard(PATIENT, summarizer, day=DAY)
    forced = generate_daily_dashboard(PATIENT, summarizer, day=DAY, force=True)

    assert forced.id != first.id
    assert forced.revision == 2
    assert ensure_utc(forced.created_at) > ensure_utc(first.created_at)
    assert len(summarizer.snapshots) == 2

    again = generate_daily_dashboard(PATIENT, summarizer, day=DAY)
    assert again.id == forced.id


def test_days_are_independent():
    summarizer = FakeSummarizer()
    a = generate_daily_dashboard(PATIENT, summarizer, day=DAY)
    b = generate_daily_dashboard(PATIENT, summarizer, day=DAY + timedelta(days=1))
    other = generate_daily_dashboard("patient-2", summarizer, day=DAY)
    assert len({a.id, b.id, other.id}) == 3


def test_default_day_is_utc_today():
    row = generate_daily_dashboard(PATIENT, FakeSummarizer())
    assert row.day == current_utc_day()


@pytest.mark.parametrize(
    "summarizer",
    [
        FakeSummarizer(response={"insights": ["missing overview"]}),
        FakeSummarizer(response={"overview": 42}),
        FakeSummarizer(error=UpstreamInvalid("malformed JSON")),
    ],
)
def test_failed_generation_persists_nothing(summarizer):
    with pytest.raises(GenerationFailed):
        generate_daily_dashboard(PATIENT, summarizer, day=DAY)
    assert _dashboards() == []


def test_summarization_timeout_is_generation_failed():
    with pytest.raises(GenerationFailed):
        generate_daily_dashboard(PATIENT, FakeSummarizer(delay=0.5), day=DAY, timeout_seconds=0.05)
    assert _dashboards() == []


def test_failure_keeps_previous_revision_current():
    generate_daily_dashboard(PATIENT, FakeSummarizer(), day=DAY)
    with pytest.raises(GenerationFailed):
        generate_daily_dashboard(PATIENT, FakeSummarizer(response={}), day=DAY, force=True)
    rows = _dashboards()
    assert [r.revision for r in rows] == [1]


def test_concurrent_writer_wins_without_force():
    competitor = {}

    def insert_competing_dashboard():
        with get_session() as session:
            row = DailyDashboard(
                patient_user_id=PATIENT,
                day=DAY,
                revision=1,
                model="other-instance",
                dashboard_json={"overview": "from elsewhere"},
                status="generated",
            )
            session.add(row)
            session.flush()
            competitor["id"] = row.id

    row = generate_daily_dashboard(PATIENT, FakeSummarizer(on_call=insert_competing_dashboard), day=DAY)

    assert row.id == competitor["id"]
    assert len(_dashboards()) == 1


def test_snapshot_limits_and_day_cutoff():
    base = datetime(2024, 3, 1, tzinfo=timezone.utc)
    with get_session() as session:
        for i in range(12):
            add_vital(session, PATIENT, VitalRecord(measured_at=base + timedelta(days=i), heart_rate=60 + i))
        add_vital(session, PATIENT, VitalRecord(measured_at=datetime(2024, 3, 16, 0, 0, tzinfo=timezone.utc), heart_rate=200))
        add_vital(session, "patient-2", VitalRecord(measured_at=base, heart_rate=99))
        add_lab(session, PATIENT, LabRecord(collected_at=base, test_name="LDL", value_text="162"))
        add_medication(session, PATIENT, MedicationRecord(medication_name="Old", active=False, noted_at=base))
        add_medication(session, PATIENT, MedicationRecord(medication_name="Lisinopril", noted_at=base))
        upsert_profile(session, PATIENT, PatientProfileData(ageYears=52, smokingStatus="former"))

    with get_session() as session:
        snapshot = build_clinical_snapshot(session, PATIENT, DAY)

    assert snapshot.day == DAY
    assert len(snapshot.vitals) == 10
    assert snapshot.vitals[0].heart_rate == 71
    assert all(v.heart_rate not in (200, 99) for v in snapshot.vitals)
    assert [l.test_name for l in snapshot.labs] == ["LDL"]
    assert [m.medication_name for m in snapshot.medications] == ["Lisinopril"]
    assert snapshot.profile.age_years == 52
    assert snapshot.profile.smoking_status == "former"


def test_generation_reads_patient_records():
    with get_session() as session:
        add_vital(session, PATIENT, VitalRecord(measured_at=datetime(2024, 3, 15, 9, tzinfo=timezone.utc), systolic=150))
    summarizer = FakeSummarizer()

    generate_daily_dashboard(PATIENT, summarizer, day=DAY)

    snapshot = summarizer.snapshots[0]
    assert snapshot.patient_user_id == PATIENT
    assert snapshot.vitals[0].systolic == 150
    with get_session() as session:
        assert session.query(Vital).count() == 1
        assert session.query(Lab).count() == 0


def test_unique_constraint_race_retries_once(monkeypatch: pytest.MonkeyPatch):

    real_latest = dashboard_module.latest_dashboard
    calls = {"n": 0}

    def stale_latest(session, patient_user_id, day):
        # The first three lookups miss the competitor, as a second instance would
        calls["n"] += 1
        if calls["n"] <= 3:
            return None
        return real_latest(session, patient_user_id, day)

    competitor = {}

    def insert_competing_dashboard():
        with get_session() as session:
            row = DailyDashboard(
                patient_user_id=PATIENT,
                day=DAY,
                revision=1,
                model="other-instance",
                dashboard_json={"overview": "from elsewhere"},
            )
            session.add(row)
            session.flush()
            competitor["id"] = row.id

    monkeypatch.setattr(dashboard_module, "latest_dashboard", stale_latest)

    row = generate_daily_dashboard(PATIENT, FakeSummarizer(on_call=insert_competing_dashboard), day=DAY)

    assert row.id == competitor["id"]
    assert calls["n"] == 4
    assert len(_dashboards()) == 1


def _claims() -> list[DashboardGenerationClaim]:
    with get_session() as session:
        return session.query(DashboardGenerationClaim).all()


def test_concurrent_generation_does_not_call_summarizer_twice():
    inner = FakeSummarizer()
    inner_errors: list[Exception] = []

    def generate_again():
        try:
            generate_daily_dashboard(PATIENT, inner, day=DAY)
        except Exception as exc:
            inner_errors.append(exc)

    row = generate_daily_dashboard(PATIENT, FakeSummarizer(on_call=generate_again), day=DAY)

    assert row.revision == 1
    assert len(inner_errors) == 1
    assert isinstance(inner_errors[0], GenerationInProgress)
    assert inner.snapshots == []
    assert len(_dashboards()) == 1
    assert _claims() == []


def test_failed_generation_releases_claim():
    with pytest.raises(GenerationFailed):
        generate_daily_dashboard(PATIENT, FakeSummarizer(response={}), day=DAY)
    assert _claims() == []

    row = generate_daily_dashboard(PATIENT, FakeSummarizer(), day=DAY)
    assert row.revision == 1


def test_stale_generation_claim_is_taken_over():
    with get_session() as session:
        session.add(DashboardGenerationClaim(
            patient_user_id=PATIENT,
            day=DAY,
            token="crashed-instance",
            claimed_at=utcnow() - timedelta(seconds=dashboard_module.GENERATION_CLAIM_TTL_SECONDS + 60),
        ))

    row = generate_daily_dashboard(PATIENT, FakeSummarizer(), day=DAY)

    assert row.revision == 1
    assert _claims() == []


def test_live_generation_claim_blocks_only_that_day():
    with get_session() as session:
        session.add(DashboardGenerationClaim(patient_user_id=PATIENT, day=DAY, token="other-instance", claimed_at=utcnow()))
    summarizer = FakeSummarizer()

    with pytest.raises(GenerationInProgress):
        generate_daily_dashboard(PATIENT, summarizer, day=DAY)
    assert summarizer.snapshots == []

    other_day = generate_daily_dashboard(PATIENT, summarizer, day=DAY + timedelta(days=1))
    assert other_day.revision == 1
    forced = generate_daily_dashboard(PATIENT, summarizer, day=DAY, force=True)
    assert forced.revision == 1
    assert [c.token for c in _claims()] == ["other-instance"]
