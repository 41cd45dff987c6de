from merit_app.utils.alert_utils import DEFAULT_THRESHOLDS, check_threshold, evaluate_alerts

QUIET_PARTICIPATION = {"participation_rate": 90.0, "active_staff_count": 9, "total_staff_count": 10,
                       "inactive_staff": ["mr jones"]}
BALANCED_CATEGORIES = {"category_percentages": {"Respect": 34.0, "Responsibility": 33.0, "Righteousness": 33.0,
                                                "Other": 0.0},
                       "dominant_category": "Respect", "balance_score": 98.0}
EVEN_HOUSES = {"house_points": {"House of Umar": 100.0, "House of Aishah": 100.0}, "variance": 0.0}


def test_red_is_checked_before_amber():
    rule = DEFAULT_THRESHOLDS["participation_rate"]
    assert check_threshold(45, rule) == (True, "RED")
    assert check_threshold(65, rule) == (True, "AMBER")
    assert check_threshold(70, rule) == (False, None)

    variance = DEFAULT_THRESHOLDS["house_variance"]
    assert check_threshold(36, variance) == (True, "RED")
    assert check_threshold(30, variance) == (True, "AMBER")
    assert check_threshold(25, variance) == (False, None)


def test_no_alerts_for_healthy_metrics():
    assert evaluate_alerts(QUIET_PARTICIPATION, BALANCED_CATEGORIES, EVEN_HOUSES) == []


def test_low_participation_alert():
    participation = dict(QUIET_PARTICIPATION, participation_rate=40.0, active_staff_count=4,
                         inactive_staff=["a", "b", "c", "d", "e", "f"])
    [alert] = evaluate_alerts(participation, BALANCED_CATEGORIES, EVEN_HOUSES)
    assert alert["alert_type"] == "LOW_PARTICIPATION"
    assert alert["severity"] == "RED"
    assert alert["threshold_value"] == 50
    assert "6 staff members" in alert["message"]


def test_category_and_house_alerts():
    categories = dict(BALANCED_CATEGORIES, category_percentages={"Respect": 55.0, "Responsibility": 25.0,
                                                                 "Righteousness": 20.0, "Other": 0.0})
    houses = {"house_points": {"House of Umar": 150.0, "House of Aishah": 50.0}, "variance": 30.0}
    alerts = {a["alert_type"]: a for a in evaluate_alerts(QUIET_PARTICIPATION, categories, houses)}
    assert alerts["CATEGORY_DRIFT"]["severity"] == "AMBER"
    assert alerts["CATEGORY_DRIFT"]["metric_value"] == 55
    assert alerts["HOUSE_IMBALANCE"]["severity"] == "AMBER"
    assert "House of Umar has 150 points" in alerts["HOUSE_IMBALANCE"]["message"]


def test_disabled_rules_are_skipped():
    thresholds = {k: dict(v, is_enabled=False) for k, v in DEFAULT_THRESHOLDS.items()}
    participation = dict(QUIET_PARTICIPATION, participation_rate=10.0)
    assert evaluate_alerts(participation, BALANCED_CATEGORIES, EVEN_HOUSES, thresholds) == []


def staff_record(name, z, flagged=True):
    return {"staff_name": name, "staff_email": f"{name.lower().replace(' ', '.')}@school.test",
            "z_score": z, "outlier_flag": flagged, "outlier_reason": None,
            "points_given_period": 100.0, "school_avg_points": 25.0}


def test_outlier_alerts_per_staff_member():
    staff = [staff_record("Ms Smith", 2.24), staff_record("Mr Jones", -3.5), staff_record("Ms Lee", 2.0),
             staff_record("Mr Khan", 2.5, flagged=False)]
    alerts = evaluate_alerts(QUIET_PARTICIPATION, BALANCED_CATEGORIES, EVEN_HOUSES, staff=staff)
    by_staff = {a["related_staff_email"]: a for a in alerts}

    assert set(by_staff) == {"ms.smith@school.test", "mr.jones@school.test"}
    smith = by_staff["ms.smith@school.test"]
    assert smith["alert_type"] == "OUTLIER_BEHAVIOR"
    assert smith["severity"] == "AMBER"
    assert smith["title"] == "Staff Outlier: Ms Smith"
    assert smith["message"] == "Staff member has unusual point-giving pattern (z-score: 2.24)"
    assert by_staff["mr.jones@school.test"]["severity"] == "RED"
    assert by_staff["mr.jones@school.test"]["metric_value"] == 3.5
    assert by_staff["mr.jones@school.test"]["threshold_value"] == 3.0
