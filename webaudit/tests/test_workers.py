"""Tests for the expiry worker CLI and the seed script."""

import json
import logging
from datetime import timedelta

from webaudit.features.billing.expiry_job import JOB_NAME
from webaudit.features.plans.service import get_user, list_active_plans
from webaudit.models.plan import PlanType
from webaudit.scripts import seed_plans as seed_script
from webaudit.workers.expire_plans import expire_plans, main


def _setup(make_plan, make_user, now):
    make_plan("starter", "Starter", ["basic_audit"])
    make_plan("growth", "Growth", ["basic_audit", "full_site_crawl"], max_projects=10)
    make_user("u1", plan_type="Growth", plan_id="growth", expires_at=now - timedelta(days=1))


def test_dry_run_lists_without_writing(make_plan, make_user, now):
    _setup(make_plan, make_user, now)
    report = expire_plans(dry_run=True, now=now)
    assert report["count"] == 1
    assert report["candidates"][0]["user_id"] == "u1"
    assert get_user("u1").plan_type == PlanType.GROWTH


def test_cli_applies_with_explicit_now(make_plan, make_user, now, capsys):
    _setup(make_plan, make_user, now)
    exit_code = main(["--now", now.isoformat()])
    assert exit_code == 0
    report = json.loads(capsys.readouterr().out)
    assert report["processed_count"] == 1
    assert get_user("u1").plan_type == PlanType.STARTER


def test_cli_now_before_expiry_does_nothing(make_plan, make_user, now, capsys):
    _setup(make_plan, make_user, now)
    main(["--now", (now - timedelta(days=2)).replace(tzinfo=None).isoformat()])
    report = json.loads(capsys.readouterr().out)
    assert report["processed_count"] == 0
    assert get_user("u1").plan_type == PlanType.GROWTH


def test_seed_script(capsys):
    assert seed_script.main() == 0
    assert "Seeded plans" in capsys.readouterr().out
    seed_script.main()
    assert "already present" in capsys.readouterr().out
    assert len(list_active_plans()) == 3


def test_cli_run_logs_under_one_job_id(make_plan, make_user, now, capsys, caplog):
    _setup(make_plan, make_user, now)
    with caplog.at_level(logging.INFO, logger="webaudit"):
        main(["--now", now.isoformat()])
    report = json.loads(capsys.readouterr().out)

    assert report["run_id"].startswith("job-")
    summary = [r for r in caplog.records if getattr(r, "event_type", None) == JOB_NAME]
    assert summary
    assert summary[-1].request_id == report["run_id"]
