from datetime import timedelta

from merit_app.models_db import LevelAIntervention, LevelBIntervention

from conftest import ADMIN, TEACHER, add_event, utc_today


def prayer_space(client):
    return next(d for d in client.get("/api/interventions/domains").json() if d["domain_key"] == "prayer_space")


def level_a(client, student, domain, outcome="complied"):
    r = client.post("/api/interventions/level-a", headers=TEACHER, json={
        "student_id": student.id, "domain_id": domain["id"], "intervention_type": "quick_redirect",
        "location": "Prayer hall", "outcome": outcome,
    })
    assert r.status_code == 200
    return r.json()


def level_b(client, student, domain, **extra):
    r = client.post("/api/interventions/level-b", headers=TEACHER, json=dict({
        "student_id": student.id, "domain_id": domain["id"], "escalation_trigger": "demerit_assigned",
    }, **extra))
    assert r.status_code == 200
    return r.json()


def step(client, b_id, number, data):
    return client.patch(f"/api/interventions/level-b/{b_id}/step", headers=TEACHER,
                        json={"step": number, "data": data})


def test_reference_data(client):
    domains = client.get("/api/interventions/domains").json()
    assert [d["domain_key"] for d in domains] == ["prayer_space", "hallways", "lunch_recess", "respect"]
    thresholds = client.get("/api/interventions/thresholds").json()
    assert [t["demerit_points"] for t in thresholds] == [10, 20, 30, 35, 40]
    assert len(client.get("/api/interventions/reflection-prompts").json()) == 6
    assert len(client.get("/api/interventions/reset-goals/hallways").json()) == 3


def test_decision_tree_uses_level_a_history(client, teacher, student):
    domain = prayer_space(client)
    assessment = {"student_id": student.id, "domain_id": domain["id"]}

    r = client.post("/api/interventions/decision", headers=TEACHER, json=assessment).json()
    assert r["recommended_level"] == "A"
    assert r["summary"]["color"] == "green"

    r = client.post("/api/interventions/decision", headers=TEACHER, json=dict(assessment, demerit_assigned=True))
    assert r.json()["recommended_level"] == "B"

    r = client.post("/api/interventions/decision", headers=TEACHER, json=dict(assessment, is_safety_incident=True))
    assert r.json()["recommended_level"] == "C"

    for _ in range(3):
        level_a(client, student, domain)
    r = client.post("/api/interventions/decision", headers=TEACHER, json=assessment).json()
    assert r["recommended_level"] == "B"
    assert r["is_pattern_student"] is True
    assert "3rd incident in 10 days (same domain)" in r["reasons"]


def test_decision_escalates_to_c_after_two_completed_level_b(client, db, teacher, student):
    domain = prayer_space(client)
    for status in ("completed_success", "completed_escalated"):
        db.add(LevelBIntervention(student_id=student.id, staff_name="Yusuf Khan", domain_id=domain["id"],
                                  escalation_trigger="peer_impact", status=status))
    db.commit()
    r = client.post("/api/interventions/decision", headers=TEACHER,
                    json={"student_id": student.id, "domain_id": domain["id"], "affected_peers": True}).json()
    assert r["recommended_level"] == "C"
    assert r["prior_level_b_count"] == 2


def test_level_a_flags_and_stats(client, teacher, student):
    domain = prayer_space(client)
    guidance = client.get("/api/interventions/level-a/should-log", headers=TEACHER,
                          params={"student_id": student.id, "domain_id": domain["id"]}).json()
    assert guidance["should_log"] is False

    first = level_a(client, student, domain)
    second = level_a(client, student, domain, outcome="escalated")
    assert first["is_repeated_same_day"] is False
    assert second["is_repeated_same_day"] is True
    assert second["escalated_to_b"] is True
    assert first["staff_name"] == "Yusuf Khan"

    r = client.patch(f"/api/interventions/level-a/{first['id']}/outcome", headers=TEACHER,
                     json={"outcome": "partial"})
    assert r.json()["outcome"] == "partial"

    stats = client.get(f"/api/interventions/level-a/stats/{student.id}", headers=TEACHER).json()
    assert stats["total_count"] == 2
    assert stats["by_domain"] == {"prayer_space": 2}
    assert stats["by_outcome"] == {"complied": 0, "escalated": 1, "partial": 1}
    assert stats["escalation_rate"] == 50

    assert client.post("/api/interventions/level-a", headers=TEACHER, json={
        "student_id": student.id, "domain_id": 999, "intervention_type": "redo"}).status_code == 404
    assert client.post("/api/interventions/level-a", headers=TEACHER, json={
        "student_id": student.id, "domain_id": domain["id"], "intervention_type": "detention"}).status_code == 422


def test_level_b_conference_and_monitoring(client, db, teacher, student):
    domain = prayer_space(client)
    a = level_a(client, student, domain)
    b = level_b(client, student, domain, escalated_from_level_a_id=a["id"])
    assert b["status"] == "in_progress"
    assert b["completion_percentage"] == 0
    assert db.get(LevelAIntervention, a["id"]).escalated_to_b is True

    assert step(client, b["id"], 1, {"b1_regulate_notes": "Took a breath"}).status_code == 200
    assert step(client, b["id"], 3, {"b3_reflection_prompts_used": ["Who was affected by your actions?"]}).status_code == 200
    assert step(client, b["id"], 6, {"b6_reset_goal": "Enter quietly", "b6_reset_goal_timeline_days": 5}).status_code == 400
    assert step(client, b["id"], 6, {"b6_reset_goal": "Enter quietly", "b6_reset_goal_timeline_days": True}).status_code == 400
    assert step(client, b["id"], 2, {"b6_reset_goal": "wrong step"}).status_code == 400
    r = step(client, b["id"], 6, {"b6_reset_goal": "Enter quietly", "b6_reset_goal_timeline_days": 2})
    assert r.json()["b6_reset_goal_completed"] is True
    assert r.json()["completion_percentage"] == 43

    r = client.post(f"/api/interventions/level-b/{b['id']}/start-monitoring", headers=TEACHER,
                    json={"monitoring_method": "checklist"})
    assert r.status_code == 200
    started = r.json()
    assert started["status"] == "monitoring"
    assert started["b7_documentation_completed"] is True
    assert started["monitoring_end_date"] == (utc_today() + timedelta(days=2)).isoformat()
    assert step(client, b["id"], 4, {"b4_repair_action_selected": "Apologize"}).status_code == 409

    today = utc_today()
    for offset, rate in ((0, 60), (1, 70)):
        r = client.post(f"/api/interventions/level-b/{b['id']}/daily-rate", headers=TEACHER,
                        json={"date": (today + timedelta(days=offset)).isoformat(), "success_rate": rate})
        assert r.status_code == 200
    assert len(r.json()["daily_success_rates"]) == 2

    r = client.post(f"/api/interventions/level-b/{b['id']}/complete", headers=TEACHER)
    body = r.json()
    assert body["should_escalate"] is True
    assert body["intervention"]["status"] == "completed_escalated"
    assert body["intervention"]["final_success_rate"] == 65
    assert client.post(f"/api/interventions/level-b/{b['id']}/complete", headers=TEACHER).status_code == 409

    summary = client.get("/api/interventions/analytics", headers=TEACHER).json()
    assert (summary["level_a_count"], summary["level_b_count"], summary["level_c_count"]) == (1, 1, 0)
    assert summary["a_to_b_rate"] == 100
    assert summary["level_b_success_rate"] == 0


def test_student_threshold_status(client, db, teacher, student):
    today = utc_today()
    add_event(db, -8, today, student=student)
    add_event(db, -4, today, student=student)
    add_event(db, 20, today, student=student)
    body = client.get(f"/api/interventions/thresholds/student/{student.id}", headers=TEACHER).json()
    assert body["demerit_points"] == 12
    assert body["threshold"]["threshold_name"] == "10_point_threshold"
    assert body["threshold"]["intervention_level"] == "level_b"


def test_level_c_case_lifecycle(client, admin, teacher, student):
    domain = prayer_space(client)
    b = level_b(client, student, domain)
    payload = {"student_id": student.id, "trigger_type": "threshold_20_points",
               "escalated_from_level_b_ids": [b["id"]], "domain_focus_id": domain["id"]}
    assert client.post("/api/interventions/level-c", headers=TEACHER, json=payload).status_code == 403

    case = client.post("/api/interventions/level-c", headers=ADMIN, json=payload).json()
    assert (case["case_type"], case["monitoring_duration_days"], case["status"]) == ("lite", 14, "active")
    assert client.get(f"/api/interventions/level-b/{b['id']}", headers=TEACHER).json()["escalated_to_c"] is True
    base = f"/api/interventions/level-c/{case['id']}"

    assert client.post(f"{base}/admin-response", headers=ADMIN,
                       json={"admin_response_type": "detention"}).status_code == 409

    partial = client.patch(f"{base}/context-packet", headers=ADMIN,
                           json={"incident_summary": "Repeated disruption", "pattern_review": "Mornings"}).json()
    assert partial["status"] == "active"
    packet = client.patch(f"{base}/context-packet", headers=ADMIN, json={
        "environmental_factors": ["Seating near door"], "prior_interventions_summary": "Two Level B"}).json()
    assert packet["context_packet_completed"] is True
    assert packet["status"] == "admin_response"

    r = client.post(f"{base}/admin-response", headers=ADMIN,
                    json={"admin_response_type": "iss", "admin_response_details": "One day ISS"})
    assert r.json()["status"] == "pending_reentry"
    assert client.post(f"{base}/start-monitoring", headers=ADMIN).status_code == 409

    reentry_date = utc_today() + timedelta(days=1)
    plan = client.post(f"{base}/reentry-plan", headers=ADMIN, json={
        "support_plan_goal": "Calm mornings", "support_plan_strategies": ["Check-in at arrival"],
        "reentry_date": reentry_date.isoformat(),
    }).json()
    assert plan["reentry_planning_completed"] is True
    assert len(plan["reentry_checklist"]) == 4

    monitoring = client.post(f"{base}/start-monitoring", headers=ADMIN).json()
    assert monitoring["status"] == "monitoring"
    assert len(monitoring["review_dates"]) == 5
    assert monitoring["review_dates"][-1] == (reentry_date + timedelta(days=14)).isoformat()

    checked = client.post(f"{base}/check-in", headers=TEACHER,
                          json={"date": reentry_date.isoformat(), "rating": 90}).json()
    assert checked["daily_check_ins"][0]["recorded_by"] == "Yusuf Khan"

    closed = client.post(f"{base}/close", headers=ADMIN, json={"outcome_status": "closed_success"}).json()
    assert closed["status"] == "closed"
    assert closed["closure_date"] == utc_today().isoformat()
    assert client.post(f"{base}/close", headers=ADMIN, json={"outcome_status": "closed_success"}).status_code == 409


def test_reentry_protocol(client, admin, teacher, student):
    domain = prayer_space(client)
    b = level_b(client, student, domain)
    step(client, b["id"], 6, {"b6_reset_goal": "Enter quietly", "b6_reset_goal_timeline_days": 3})

    assert client.post("/api/interventions/reentry", headers=TEACHER, json={
        "student_id": student.id, "source_type": "level_b", "reentry_date": utc_today().isoformat(),
        "monitoring_type": "3_day"}).status_code == 400

    r = client.post("/api/interventions/reentry", headers=TEACHER, json={
        "student_id": student.id, "source_type": "level_b", "level_b_id": b["id"],
        "reentry_date": utc_today().isoformat(), "monitoring_type": "3_day",
    }).json()
    assert r["status"] == "pending"
    assert r["monitoring_method"] == "checklist"
    assert r["reset_goal_from_intervention"] == "Enter quietly"
    assert "Enter quietly" in r["teacher_script"]
    assert r["monitoring_end_date"] == (utc_today() + timedelta(days=3)).isoformat()
    base = f"/api/interventions/reentry/{r['id']}"

    assert client.post(f"{base}/start", headers=TEACHER).status_code == 409

    checklist = [dict(item, completed=True) for item in r["readiness_checklist"]]
    checklist[0]["completed"] = False
    assert client.patch(f"{base}/checklist", headers=TEACHER, json={"checklist": checklist}).json()["status"] == "pending"
    checklist[0]["completed"] = True
    ready = client.patch(f"{base}/checklist", headers=ADMIN, json={"checklist": checklist}).json()
    assert ready["status"] == "ready"
    assert ready["readiness_verified_by"] == "Amina Rahman"

    assert client.post(f"{base}/start", headers=TEACHER).json()["status"] == "active"
    assert client.post(f"{base}/first-rep", headers=TEACHER).json()["first_behavioral_rep_completed"] is True
    logged = client.post(f"{base}/daily-log", headers=TEACHER,
                         json={"date": utc_today().isoformat(), "met_goal": True}).json()
    assert logged["daily_logs"][0]["met_goal"] is True

    done = client.post(f"{base}/complete", headers=TEACHER, json={"outcome": "success"}).json()
    assert done["status"] == "completed"
    assert done["completed_at"] is not None
    assert client.get("/api/interventions/reentry", headers=TEACHER,
                      params={"status": "completed"}).json()[0]["id"] == r["id"]
