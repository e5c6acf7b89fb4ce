"""Tests for the expiry endpoints, cron trigger and payment history."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from webaudit.core.config import settings
from webaudit.main import app

CRON = {"x-cron-secret": "test-cron-secret"}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "test-cron-secret")
    return TestClient(app)


@pytest.fixture
def expired_user(make_plan, make_user):
    make_plan("starter", "Starter", ["basic_audit"], max_projects=1)
    make_plan("growth", "Growth", ["basic_audit", "full_site_crawl"], max_projects=10)
    yesterday = datetime.now(timezone.utc) - timedelta(days=1)
    return make_user("expired", plan_type="Growth", plan_id="growth", expires_at=yesterday, billing_cycle="monthly")


def test_cron_requires_secret(client, expired_user):
    resp = client.post("/api/cron/check-expired-plans")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"

    resp = client.get("/api/cron/check-expired-plans", headers={"x-cron-secret": "nope"})
    assert resp.status_code == 401


def test_cron_open_without_secret(client, expired_user, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", None)
    resp = client.get("/api/cron/check-expired-plans")
    assert resp.status_code == 200
    assert resp.json()["processed_count"] == 1


def test_cron_runs_job(client, expired_user):
    resp = client.post("/api/cron/check-expired-plans", headers=CRON)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["processed_count"] == 1
    assert body["message"] == "Processed 1 users with expired plans"

    again = client.get("/api/cron/check-expired-plans", headers=CRON).json()
    assert again["processed_count"] == 0


def test_cron_without_starter_plan_is_a_server_error(client, make_plan, make_user):
    make_plan("growth", "Growth", ["basic_audit"])
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=datetime.now(timezone.utc) - timedelta(days=1))
    resp = client.post("/api/cron/check-expired-plans", headers=CRON)
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "no_plan_available"


def test_check_plan_expiry_status(client, expired_user):
    resp = client.get("/api/check-plan-expiry", headers={"X-User-Id": "expired"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["isExpired"] is True
    assert body["downgraded"] is False
    assert body["planType"] == "Growth"


def test_check_plan_expiry_downgrades(client, expired_user):
    resp = client.post("/api/check-plan-expiry", headers={"X-User-Id": "expired"})
    body = resp.json()
    assert body["downgraded"] is True
    assert body["previousPlan"] == "Growth"
    assert body["planType"] == "Starter"

    history = client.get("/api/payment-history", headers={"X-User-Id": "expired"}).json()
    assert history["count"] == 1
    entry = history["payments"][0]
    assert entry["paymentMethod"] == "system_downgrade"
    assert entry["planType"] == "Starter"
    assert float(entry["amount"]) == 0


def test_check_plan_expiry_unknown_user(client):
    resp = client.get("/api/check-plan-expiry", headers={"X-User-Id": "ghost"})
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "user_not_found"


def test_payment_history_empty(client, expired_user):
    resp = client.get("/api/payment-history", headers={"X-User-Id": "expired"})
    assert resp.json() == {"payments": [], "count": 0}
