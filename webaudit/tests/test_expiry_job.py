"""
Tests for the plan expiry job.
"""
import json
import logging
from contextlib import contextmanager
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from webaudit.core.database import get_db_session, job_runs, payments
from webaudit.core.errors import DatabaseUnavailableError, LedgerWriteError, NoPlanAvailableError, UserNotFoundError
from webaudit.features.billing import expiry_job
from webaudit.features.billing.expiry_job import (
    JOB_NAME,
    check_user_plan_expiry,
    run_expiry_job,
    select_expired_users,
)
from webaudit.features.entitlements.cache import feature_cache
from webaudit.features.plans.service import get_user, resolve_plan
from webaudit.models.plan import PlanType


@pytest.fixture
def plans_configured(make_plan):
    make_plan("starter", "Starter", ["basic_audit"], max_projects=1)
    make_plan("growth", "Growth", ["basic_audit", "full_site_crawl"], max_projects=10)
    make_plan("scale", "Scale", ["basic_audit", "full_site_crawl", "seo_structure"], max_projects=-1)


def _ledger_rows(user_id=None):
    with get_db_session() as session:
        stmt = select(payments)
        if user_id:
            stmt = stmt.where(payments.c.user_id == user_id)
        return session.execute(stmt).all()


def test_expired_growth_user_is_downgraded(plans_configured, make_user, now):
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1), billing_cycle="monthly")

    result = run_expiry_job(now)

    assert result.processed_count == 1
    assert result.failed == []
    user = get_user("u1")
    assert user.plan_type == PlanType.STARTER
    assert user.plan_id == "starter"
    assert user.max_projects == 1
    assert user.can_use_features == ["basic_audit"]
    assert user.plan_expires_at is None
    assert user.billing_cycle is None

    rows = _ledger_rows("u1")
    assert len(rows) == 1
    assert rows[0].amount == 0
    assert rows[0].plan_type == "Starter"
    assert rows[0].payment_method == "cron_downgrade"
    assert rows[0].currency == "INR"
    assert rows[0].notes.endswith("(processed by cron)")


def test_second_run_is_a_no_op(plans_configured, make_user, now):
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))
    make_user("u2", plan_type="Scale", plan_id="scale", expires_at=now - timedelta(hours=1))

    assert run_expiry_job(now).processed_count == 2
    second = run_expiry_job(now)
    assert second.processed_count == 0
    assert second.failed_count == 0
    assert len(_ledger_rows()) == 2


def test_non_expired_users_untouched(plans_configured, make_user, now):
    make_user("future", plan_type="Growth", plan_id="growth", expires_at=now + timedelta(days=1))
    make_user("exact", plan_type="Growth", plan_id="growth", expires_at=now)
    make_user("open-ended", plan_type="Scale", plan_id="scale")
    make_user("starter", expires_at=now - timedelta(days=5))

    assert select_expired_users(now) == []
    result = run_expiry_job(now)
    assert result.processed_count == 0
    assert get_user("future").plan_type == PlanType.GROWTH
    assert get_user("exact").plan_type == PlanType.GROWTH
    assert get_user("open-ended").plan_type == PlanType.SCALE


def test_one_failure_does_not_abort_batch(plans_configured, make_user, now, monkeypatch):
    make_user("a", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=2))
    make_user("b", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))

    real_downgrade = expiry_job.downgrade_user

    def flaky(user, starter, at):
        if user.user_id == "a":
            raise RuntimeError("row locked")
        return real_downgrade(user, starter, at)

    monkeypatch.setattr(expiry_job, "downgrade_user", flaky)
    result = run_expiry_job(now)

    assert [p["user_id"] for p in result.processed] == ["b"]
    assert result.failed == [{"user_id": "a", "email": "a@example.com", "error": "row locked"}]
    assert get_user("a").plan_type == PlanType.GROWTH
    assert get_user("b").plan_type == PlanType.STARTER
    assert _ledger_rows("a") == []


def test_ledger_failure_keeps_downgrade(plans_configured, make_user, now, monkeypatch):
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))

    def broken_ledger(entry):
        raise LedgerWriteError("payments table unavailable")

    monkeypatch.setattr(expiry_job, "append_payment", broken_ledger)
    result = run_expiry_job(now)

    assert result.processed_count == 1
    assert result.processed[0]["ledger_written"] is False
    assert result.ledger_failures == [{"user_id": "u1", "error": "payments table unavailable"}]
    assert get_user("u1").plan_type == PlanType.STARTER


def test_missing_starter_plan_aborts_before_changes(make_plan, make_user, now):
    make_plan("growth", "Growth", ["basic_audit"], max_projects=10)
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))

    with pytest.raises(NoPlanAvailableError):
        run_expiry_job(now)
    assert get_user("u1").plan_type == PlanType.GROWTH


def test_job_run_recorded(plans_configured, make_user, now):
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))
    run_expiry_job(now)

    with get_db_session() as session:
        runs = session.execute(select(job_runs)).all()
    assert len(runs) == 1
    assert runs[0].job_name == JOB_NAME
    assert runs[0].status == "success"
    assert json.loads(runs[0].stats_json)["processed"] == 1


def test_run_summary_logged(plans_configured, make_user, now, caplog):
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))
    with caplog.at_level(logging.INFO, logger="webaudit"):
        run_expiry_job(now)

    summary = [r for r in caplog.records if getattr(r, "event_type", None) == JOB_NAME]
    assert summary
    assert summary[-1].status == "success"
    assert summary[-1].ledger_failures == "0"


def test_cached_decisions_dropped_after_downgrade(plans_configured, make_user, now):
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))
    feature_cache.set("full_site_crawl", "u1", True)
    feature_cache.set("full_site_crawl", "u2", True)

    run_expiry_job(now)

    assert feature_cache.get("full_site_crawl", "u1") is None
    assert feature_cache.get("full_site_crawl", "u2") is True


def test_result_dict_shape(plans_configured, make_user, now):
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))
    data = run_expiry_job(now).to_dict()
    assert data["processed_count"] == 1
    assert data["error_count"] == 0
    assert data["processed"][0]["previous_plan"] == "Growth"
    assert data["processed"][0]["new_plan"] == "Starter"


# ---------------------------------------------------------------------------
# Single-user expiry check
# ---------------------------------------------------------------------------

def test_status_for_active_plan(plans_configured, make_user, now):
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now + timedelta(days=1, hours=12), billing_cycle="monthly")
    status = check_user_plan_expiry("u1", now=now)
    assert status.is_expired is False
    assert status.days_until_expiry == 2
    assert status.billing_cycle == "monthly"


def test_status_for_starter(plans_configured, make_user, now):
    make_user("u1")
    status = check_user_plan_expiry("u1", now=now, apply=True)
    assert status.is_expired is False
    assert status.downgraded is False


def test_status_without_apply_does_not_write(plans_configured, make_user, now):
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))
    status = check_user_plan_expiry("u1", now=now)
    assert status.is_expired is True
    assert status.downgraded is False
    assert get_user("u1").plan_type == PlanType.GROWTH


def test_apply_downgrades_single_user(plans_configured, make_user, now):
    make_user("u1", plan_type="Scale", plan_id="scale", expires_at=now - timedelta(days=1))
    status = check_user_plan_expiry("u1", now=now, apply=True)

    assert status.downgraded is True
    assert status.previous_plan == "Scale"
    assert status.plan_type == "Starter"
    assert get_user("u1").plan_type == PlanType.STARTER
    rows = _ledger_rows("u1")
    assert rows[0].payment_method == "system_downgrade"


def test_unknown_user_raises():
    with pytest.raises(UserNotFoundError):
        check_user_plan_expiry("ghost")


def test_legacy_tier_downgraded_alongside_valid_users(plans_configured, make_user, now):
    make_user("legacy", plan_type="Pro", expires_at=now - timedelta(days=3))
    make_user("ok", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))

    result = run_expiry_job(now)

    assert result.failed == []
    assert {p["user_id"]: p["previous_plan"] for p in result.processed} == {"legacy": "Pro", "ok": "Growth"}
    assert get_user("legacy").plan_type == PlanType.STARTER
    assert get_user("ok").plan_type == PlanType.STARTER


def test_unreadable_row_lands_in_failed(plans_configured, make_user, now, monkeypatch):
    make_user("bad", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=2))
    make_user("ok", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))

    real_user_from_row = expiry_job._user_from_row

    def picky(row):
        if row.user_id == "bad":
            raise ValueError("created_at is not a datetime")
        return real_user_from_row(row)

    monkeypatch.setattr(expiry_job, "_user_from_row", picky)
    result = run_expiry_job(now)

    assert [p["user_id"] for p in result.processed] == ["ok"]
    assert result.failed == [{"user_id": "bad", "email": "bad@example.com", "error": "created_at is not a datetime"}]
    assert get_user("bad").plan_type == PlanType.GROWTH


def test_downgrade_lands_on_starter_limits(make_plan, make_user, now):
    make_plan("growth", "Growth", ["basic_audit", "full_site_crawl"], max_projects=10, created_at=now - timedelta(days=30))
    make_plan("starter", "Starter", ["basic_audit"], max_projects=1, created_at=now)
    make_plan("scale", "Scale", ["basic_audit", "full_site_crawl"], max_projects=-1)
    make_user("u1", plan_type="Scale", plan_id="scale", expires_at=now - timedelta(days=1))

    run_expiry_job(now)

    user = get_user("u1")
    assert (user.plan_type, user.plan_id, user.max_projects) == ("Starter", "starter", 1)
    assert resolve_plan("u1").plan_id == "starter"
    assert _ledger_rows("u1")[0].plan_name == "Starter"


def test_database_outage_while_selecting(plans_configured, make_user, now, monkeypatch):
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))
    real_session = expiry_job.get_db_session
    calls = []

    @contextmanager
    def first_call_fails():
        calls.append(1)
        if len(calls) == 1:
            raise OperationalError("SELECT", {}, Exception("connection refused"))
        with real_session() as session:
            yield session

    monkeypatch.setattr(expiry_job, "get_db_session", first_call_fails)
    with pytest.raises(DatabaseUnavailableError):
        run_expiry_job(now)

    with get_db_session() as session:
        runs = session.execute(select(job_runs)).all()
    assert [r.status for r in runs] == ["failed"]
    assert json.loads(runs[0].stats_json)["error"] == "database_unavailable"
    assert get_user("u1").plan_type == PlanType.GROWTH
