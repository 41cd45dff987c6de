from datetime import datetime, timedelta

from merit_app.models_db import Alert, AnalyticsSnapshot, LevelBIntervention, LevelCCase, ReentryProtocol, Staff

from conftest import ADMIN, CRON, TEACHER, add_event, utc_today


def test_cron_requires_secret(client):
    assert client.get("/api/cron/daily-analytics").status_code == 401
    assert client.get("/api/cron/daily-analytics", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/api/cron/intervention-monitoring", headers=CRON).status_code == 200


def test_daily_analytics_saves_snapshot_and_raises_alerts_once(client, db, admin, teacher, student):
    add_event(db, 10, utc_today(), student=student)

    body = client.post("/api/cron/daily-analytics", headers=CRON).json()
    assert body["success"] is True
    assert body["errors"] == []
    assert body["results"]["daily"]["success"] is True
    assert body["results"]["daily"]["snapshot_date"] == utc_today().isoformat()
    # only one of two staff gave points, and every point went to one house and one category
    assert body["results"]["alerts"]["created"] == 3
    assert ("weekly" in body["results"]) == (utc_today().weekday() == 6)
    assert ("monthly" in body["results"]) == (utc_today().day == 1)

    snapshot = db.query(AnalyticsSnapshot).filter_by(snapshot_type="daily").one()
    assert snapshot.staff_participation_rate == 50

    again = client.post("/api/cron/daily-analytics", headers=CRON).json()
    assert again["results"]["alerts"]["created"] == 0
    assert db.query(AnalyticsSnapshot).filter_by(snapshot_type="daily").count() == 1

    alerts = client.get("/api/alerts", headers=TEACHER).json()
    assert {a["alert_type"] for a in alerts} == {"LOW_PARTICIPATION", "CATEGORY_DRIFT", "HOUSE_IMBALANCE"}
    low = next(a for a in alerts if a["alert_type"] == "LOW_PARTICIPATION")
    assert low["severity"] == "AMBER"
    assert low["metric_value"] == 50


def test_alert_workflow(client, admin, teacher):
    created = client.post("/api/alerts/check", headers=ADMIN).json()
    [low] = [a for a in created if a["alert_type"] == "LOW_PARTICIPATION"]
    assert low["severity"] == "RED"
    base = f"/api/alerts/{low['id']}"

    assert client.post(f"{base}/acknowledge", headers=TEACHER).status_code == 403
    acked = client.post(f"{base}/acknowledge", headers=ADMIN).json()
    assert acked["status"] == "ACKNOWLEDGED"
    assert acked["acknowledged_by"] == "admin@school.test"
    assert client.post(f"{base}/acknowledge", headers=ADMIN).status_code == 409

    # no ACTIVE alert of this type remains, so the next check raises a fresh one
    fresh = client.post("/api/alerts/check", headers=ADMIN).json()
    assert [a["alert_type"] for a in fresh] == ["LOW_PARTICIPATION"]

    resolved = client.post(f"{base}/resolve", headers=ADMIN, json={"notes": "Reminder sent"}).json()
    assert resolved["status"] == "RESOLVED"
    assert resolved["resolution_notes"] == "Reminder sent"
    assert client.post(f"{base}/dismiss", headers=ADMIN).status_code == 409

    dismissed = client.post(f"/api/alerts/{fresh[0]['id']}/dismiss", headers=ADMIN).json()
    assert dismissed["status"] == "DISMISSED"
    assert client.get("/api/alerts", headers=TEACHER).json() == []
    assert len(client.get("/api/alerts", headers=TEACHER, params={"status": "resolved"}).json()) == 1
    assert client.post("/api/alerts/999/resolve", headers=ADMIN, json={}).status_code == 404


def test_stale_alerts_are_auto_resolved(client, db, admin):
    db.add(Alert(alert_type="HOUSE_IMBALANCE", severity="AMBER", status="ACTIVE",
                 created_at=datetime.utcnow() - timedelta(days=45)))
    db.commit()

    body = client.post("/api/cron/daily-analytics", headers=CRON).json()
    assert body["results"]["stale_alerts"]["resolved"] == 1
    db.expire_all()
    stale = db.query(Alert).filter_by(alert_type="HOUSE_IMBALANCE", severity="AMBER", metric_value=None).one()
    assert stale.status == "RESOLVED"
    assert stale.resolution_notes.startswith("Auto-resolved")


def test_intervention_monitoring_closes_expired_periods(client, db, teacher, student):
    today = utc_today()
    expired = LevelBIntervention(student_id=student.id, staff_name="Yusuf Khan", escalation_trigger="peer_impact",
                                 status="monitoring", monitoring_start_date=today - timedelta(days=4),
                                 monitoring_end_date=today - timedelta(days=1),
                                 daily_success_rates={"d1": 90, "d2": 100})
    running = LevelBIntervention(student_id=student.id, staff_name="Yusuf Khan", escalation_trigger="peer_impact",
                                 status="monitoring", monitoring_start_date=today,
                                 monitoring_end_date=today + timedelta(days=3),
                                 daily_success_rates={"d1": 10})
    last_day = LevelBIntervention(student_id=student.id, staff_name="Yusuf Khan", escalation_trigger="peer_impact",
                                  status="monitoring", monitoring_start_date=today - timedelta(days=2),
                                  monitoring_end_date=today, daily_success_rates={"d1": 50})
    db.add_all([expired, running, last_day])
    db.commit()

    body = client.get("/api/cron/intervention-monitoring", headers=CRON).json()
    assert (body["results"]["due"], body["results"]["completed"], body["results"]["escalated"]) == (1, 1, 0)

    db.expire_all()
    assert db.get(LevelBIntervention, expired.id).status == "completed_success"
    assert db.get(LevelBIntervention, running.id).status == "monitoring"
    # today is still a monitoring day, so the period is not averaged yet
    assert db.get(LevelBIntervention, last_day.id).status == "monitoring"


def test_intervention_monitoring_reports_overdue_cases_and_reentries(client, db, student):
    today = utc_today()
    stale = LevelCCase(student_id=student.id, trigger_type="safety_incident", status="admin_response",
                       updated_at=datetime.utcnow() - timedelta(days=5))
    fresh = LevelCCase(student_id=student.id, trigger_type="safety_incident", status="active")
    overrun = LevelCCase(student_id=student.id, trigger_type="sis_20_points", status="monitoring",
                         reentry_date=today - timedelta(days=20), monitoring_duration_days=14)
    within = LevelCCase(student_id=student.id, trigger_type="sis_20_points", status="monitoring",
                        reentry_date=today - timedelta(days=3), monitoring_duration_days=14)
    ended = ReentryProtocol(student_id=student.id, source_type="iss", status="active",
                            reentry_date=today - timedelta(days=6), monitoring_end_date=today - timedelta(days=1))
    not_started = ReentryProtocol(student_id=student.id, source_type="detention", status="ready",
                                  reentry_date=today - timedelta(days=1))
    on_time = ReentryProtocol(student_id=student.id, source_type="detention", status="pending", reentry_date=today)
    db.add_all([stale, fresh, overrun, within, ended, not_started, on_time])
    db.commit()

    results = client.post("/api/cron/intervention-monitoring", headers=CRON).json()["results"]
    assert [(c["id"], c["reason"]) for c in results["level_c_overdue"]] == [
        (stale.id, "No update in 3 days"),
        (overrun.id, "Monitoring period exceeded (14 days)"),
    ]
    assert [(r["id"], r["reason"]) for r in results["reentry_overdue"]] == [
        (ended.id, "Monitoring period ended, awaiting completion"),
        (not_started.id, "Re-entry date passed but not started"),
    ]


def test_staff_analytics_step_flags_outliers(client, db, admin, student):
    today = utc_today()
    names = ["Staff One", "Staff Two", "Staff Three", "Staff Four", "Staff Five", "Busy Teacher"]
    for i, name in enumerate(names):
        db.add(Staff(staff_name=name, email=f"staff{i}@school.test"))
        add_event(db, 100 if name == "Busy Teacher" else 10, today - timedelta(days=1), staff_name=name,
                  student=student)
    db.commit()

    body = client.post("/api/cron/daily-analytics", headers=CRON).json()
    assert body["results"]["staff_analytics"]["staff_count"] == 6
    assert body["results"]["staff_analytics"]["outliers"] == 1

    alerts = client.get("/api/alerts", headers=ADMIN).json()
    [outlier] = [a for a in alerts if a["alert_type"] == "OUTLIER_BEHAVIOR"]
    assert outlier["related_staff_email"] == "staff5@school.test"
    assert outlier["severity"] == "AMBER"
    assert outlier["message"] == "Giving 300% more points than average (100 vs 25.0)"

    again = client.post("/api/cron/daily-analytics", headers=CRON).json()
    assert again["results"]["alerts"]["created"] == 0

    [saved] = client.get("/api/analytics/staff-analytics/outliers", headers=ADMIN).json()
    assert saved["staff_name"] == "Busy Teacher"
    assert saved["z_score"] == 2.24
    assert saved["analysis_date"] == today.isoformat()
    assert len(client.get("/api/analytics/staff-analytics/bias", headers=ADMIN,
                          params={"threshold": 0}).json()) == 6

    live = client.get("/api/analytics/staff-analytics", headers=ADMIN).json()
    assert {r["staff_name"] for r in live} == set(names)
    assert client.get("/api/analytics/staff-analytics", headers=ADMIN,
                      params={"period": "hourly"}).status_code == 400
