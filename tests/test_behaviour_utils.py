from datetime import date, timedelta

from merit_app.utils import behaviour_utils as bu

TODAY = date(2025, 3, 20)


def ev(days_ago, event_type="demerit", staff="Ms Smith", category="Violation", subcategory="Talking in class",
       points=2, student_id="1"):
    return {"student_id": student_id, "event_type": event_type, "event_date": TODAY - timedelta(days=days_ago),
            "staff_name": staff, "category": category, "subcategory": subcategory, "points": points}


def test_trend_direction():
    assert bu.classify_trend([5, 3, 1]) == "declining"
    assert bu.classify_trend([1, 3, 5]) == "improving"
    assert bu.classify_trend([2, 2, 1]) == "stable"
    assert bu.is_escalating([5, 3, 1]) is True
    assert bu.is_escalating([1, 3, 5]) is False


def test_week_buckets_are_half_open():
    events = [ev(1), ev(7), ev(8), ev(14), ev(20), ev(22), ev(2, event_type="merit")]
    # day 7 belongs to the latest week, day 22 falls outside all three
    assert bu.week_demerit_counts(events, TODAY) == [2, 2, 1]


def test_escalation_is_red_risk():
    events = [ev(1), ev(2), ev(3), ev(8), ev(9), ev(15)]
    insight = bu.window_insight(events, "30d", TODAY)
    assert insight["week_counts"] == [3, 2, 1]
    assert insight["trend"] == "declining"
    assert insight["risk_level"] == "red"
    assert insight["interpretation"] == bu.ESCALATION_TEXT


def test_spike_followed_by_quiet_weeks_reads_as_improving():
    events = [ev(9), ev(10), ev(15), ev(16), ev(17), ev(18), ev(19)]
    insight = bu.window_insight(events, "7d", TODAY)
    assert insight["week_counts"] == [0, 2, 5]
    assert insight["trend"] == "improving"
    assert insight["risk_level"] == "green"


def test_early_concern_only_in_seven_day_window():
    events = [ev(1, staff="A"), ev(2, staff="B"), ev(3, staff="C")]
    week = bu.window_insight(events, "7d", TODAY)
    month = bu.window_insight(events, "30d", TODAY)
    assert week["early_concern"] is True
    assert week["risk_level"] == "yellow"
    assert week["interpretation"] == bu.EARLY_CONCERN_TEXT
    assert month["early_concern"] is False
    assert month["risk_level"] == "green"


def test_window_totals_and_net_score():
    events = [ev(1, event_type="merit", points=5), ev(3, event_type="merit", points=3), ev(2, points=2), ev(12, points=4)]
    week = bu.window_insight(events, "7d", TODAY)
    month = bu.window_insight(events, "30d", TODAY)
    assert (week["total_merits"], week["total_demerits"], week["net_score"]) == (2, 1, 6)
    assert (month["total_merits"], month["total_demerits"], month["net_score"]) == (2, 2, 2)


def test_context_isolation_needs_sixty_percent_from_one_staff():
    isolated = bu.context_isolation([ev(1, staff="Ms Smith"), ev(2, staff="Ms Smith"), ev(3, staff="Mr Jones")])
    assert isolated["value"] == "Ms Smith"
    assert isolated["share"] == 2 / 3
    spread = bu.context_isolation([ev(1, staff="A"), ev(2, staff="B"), ev(3, staff="C"), ev(4, staff="A"),
                                   ev(5, staff="B")])
    assert spread is None
    assert bu.context_isolation([ev(1, event_type="merit")]) is None


def test_strength_mismatch_interpretation():
    events = [ev(1, event_type="merit", category="Responsibility", subcategory="Leadership in group work"),
              ev(2, category="Violation", subcategory="Classroom disruption")]
    insight = bu.window_insight(events, "30d", TODAY)
    assert insight["has_strength_mismatch"] is True
    assert insight["interpretation"] == "unchannelled_strength"
    assert insight["primary_issue_type"] == "contextual"


def test_analyze_events_groups_per_student():
    events = [ev(1, student_id="1"), ev(2, student_id="1"), ev(3, student_id="1"),
              ev(1, student_id="2", event_type="merit", points=5)]
    insights, patterns, students = bu.analyze_events(events, TODAY)
    assert sorted(students) == ["1", "2"]
    assert len(insights) == 4
    assert {(i["student_id"], i["time_window"]) for i in insights} == {("1", "7d"), ("1", "30d"),
                                                                       ("2", "7d"), ("2", "30d")}
    types = {p["pattern_type"] for p in patterns if p["student_id"] == "1"}
    assert types == {"early_concern", "context_isolation"}
    assert not [p for p in patterns if p["student_id"] == "2"]
