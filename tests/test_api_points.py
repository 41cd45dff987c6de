from datetime import timedelta

from conftest import ADMIN, TEACHER, add_event, utc_today


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_caller_identity_is_required(client, teacher):
    assert client.get("/api/students").status_code == 401
    assert client.get("/api/students", headers={"X-Staff-Email": "nobody@school.test"}).status_code == 403
    assert client.get("/api/students", headers=TEACHER).status_code == 200


def test_admin_creates_roster(client, admin, teacher):
    r = client.post("/api/students", headers=ADMIN,
                    json={"student_name": "Sara Noor", "grade": 6, "house": "khadijah"})
    assert r.status_code == 200
    assert r.json()["house"] == "House of Khadijah"

    assert client.post("/api/students", headers=TEACHER, json={"student_name": "X"}).status_code == 403
    assert client.post("/api/students", headers=ADMIN,
                       json={"student_name": "X", "house": "Slytherin"}).status_code == 400

    r = client.post("/api/staff", headers=ADMIN, json={"staff_name": "Hana Ali", "email": " Hana@School.test "})
    assert r.status_code == 200
    assert r.json()["email"] == "hana@school.test"
    dup = client.post("/api/staff", headers=ADMIN, json={"staff_name": "Hana Again", "email": "hana@school.test"})
    assert dup.status_code == 409
    assert client.post("/api/staff", headers=ADMIN, json={"staff_name": "Boss", "email": "boss@school.test",
                                                          "role": "super_admin"}).status_code == 403


def test_award_points_to_students(client, teacher, student):
    categories = client.get("/api/categories").json()
    leadership = next(c for c in categories if c["subcategory"] == "Leadership in group work")

    r = client.post("/api/points/award", headers=TEACHER, json={
        "mode": "students", "category_id": leadership["id"],
        "students": [{"name": "Omar Ali", "student_id": student.id}, {"name": "Guest Pupil", "house": "aishah"}],
    })
    assert r.status_code == 200
    assert r.json() == {"inserted": 2}

    events = client.get("/api/points", headers=TEACHER).json()
    assert len(events) == 2
    omar = next(e for e in events if e["student_name"] == "Omar Ali")
    assert omar["house"] == "House of Umar"
    assert omar["grade"] == 7
    assert omar["points"] == 10
    assert omar["r"] == "Responsibility"
    assert omar["staff_name"] == "Yusuf Khan"

    only_omar = client.get("/api/points", headers=TEACHER, params={"student_id": student.id}).json()
    assert [e["student_name"] for e in only_omar] == ["Omar Ali"]


def test_award_validation(client, teacher, student):
    assert client.post("/api/points/award", headers=TEACHER,
                       json={"mode": "students", "students": [{"name": "Omar Ali"}]}).status_code == 400
    assert client.post("/api/points/award", headers=TEACHER,
                       json={"mode": "students", "category_id": 1, "students": []}).status_code == 400
    assert client.post("/api/points/award", headers=TEACHER,
                       json={"mode": "students", "category_id": 999,
                             "students": [{"name": "Omar Ali"}]}).status_code == 404
    assert client.post("/api/points/award", headers=TEACHER,
                       json={"mode": "students", "category_id": 1,
                             "students": [{"name": "Ghost", "student_id": 999}]}).status_code == 404


def test_house_competition_is_admin_only(client, admin, teacher):
    payload = {"mode": "house_competition", "house": "House of Aishah", "points": 50, "notes": "Quiz bowl"}
    assert client.post("/api/points/award", headers=TEACHER, json=payload).status_code == 403
    assert client.post("/api/points/award", headers=ADMIN, json=dict(payload, points=-5)).status_code == 400
    assert client.post("/api/points/award", headers=ADMIN, json=dict(payload, house=None)).status_code == 400

    r = client.post("/api/points/award", headers=ADMIN, json=payload)
    assert r.status_code == 200
    [event] = client.get("/api/points", headers=ADMIN, params={"house": "aishah"}).json()
    assert event["student_name"] == ""
    assert event["subcategory"] == "House Competition"
    assert event["points"] == 50


def test_record_demerit(client, teacher, student):
    r = client.post("/api/points", headers=TEACHER, json={
        "student_name": "Omar Ali", "student_id": student.id, "r": "Respect", "subcategory": "Talking back",
        "points": -3,
    })
    assert r.status_code == 200
    assert r.json()["points"] == -3
    assert r.json()["date_of_event"] == utc_today().isoformat()
    assert client.post("/api/points", headers=TEACHER, json={
        "student_name": "Omar Ali", "r": "Respect", "subcategory": "Nothing", "points": 0,
    }).status_code == 400


def test_leaderboard(client, db, teacher, student):
    today = utc_today()
    add_event(db, 20, today, student=student)
    add_event(db, 5, today - timedelta(days=2), house="House of Aishah")
    add_event(db, 100, today - timedelta(days=90), house="House of Aishah")

    board = client.get("/api/leaderboard").json()
    assert board["standings"][0] == {"rank": 1, "house": "House of Umar", "points": 20.0, "percentage": 80.0}
    assert board["standings"][1]["house"] == "House of Aishah"
    assert board["mvps"]["House of Umar"] == [{"student_name": "Omar Ali", "points": 20.0}]
    assert board["mvps"]["House of Aishah"] == []

    all_time = client.get("/api/leaderboard", params={"start_date": (today - timedelta(days=365)).isoformat()}).json()
    assert all_time["standings"][0]["house"] == "House of Aishah"


def test_leaderboard_rejects_inverted_range(client):
    r = client.get("/api/leaderboard", params={"start_date": "2025-02-01", "end_date": "2025-01-01"})
    assert r.status_code == 400
    assert r.json()["detail"] == "start_date must be on or before end_date"
