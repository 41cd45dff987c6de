"""
Stateless behaviour analysis.

Takes merit/demerit events for a batch of students, computes 7-day and 30-day
insights plus detected patterns, and hands back rows ready to upsert. Raw
events are never persisted by this module.
"""
import math
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

WINDOW_DAYS = {"7d": 7, "30d": 30}

ESCALATION_TEXT = "Demerits are increasing week-over-week for two consecutive weeks."
EARLY_CONCERN_TEXT = "Three or more demerits in the last 7 days."


def _in_range(d: date, start: date, end: date) -> bool:
    return start <= d < end


def _haystack(event: Dict) -> str:
    return f"{event.get('category') or ''} {event.get('subcategory') or ''}".lower()


def has_category_match(events: Sequence[Dict], terms: Sequence[str]) -> bool:
    lowered = [t.lower() for t in terms]
    return any(term in _haystack(e) for e in events for term in lowered)


def week_demerit_counts(events: Sequence[Dict], today: date) -> List[int]:
    """Demerits in [today-7, today), [today-14, today-7), [today-21, today-14)."""
    counts = [0, 0, 0]
    for event in events:
        if event["event_type"] != "demerit":
            continue
        d = event["event_date"]
        for i in range(3):
            if _in_range(d, today - timedelta(days=7 * (i + 1)), today - timedelta(days=7 * i)):
                counts[i] += 1
                break
    return counts


def classify_trend(week_counts: Sequence[int]) -> str:
    week0, week1, week2 = week_counts
    if week0 > week1 > week2:
        return "declining"
    if week0 < week1 < week2:
        return "improving"
    return "stable"


def is_escalating(week_counts: Sequence[int]) -> bool:
    return classify_trend(week_counts) == "declining"


def context_isolation(events: Sequence[Dict]) -> Optional[Dict]:
    demerits = [e for e in events if e["event_type"] == "demerit"]
    if not demerits:
        return None
    by_staff: Dict[str, int] = {}
    for e in demerits:
        staff = e.get("staff_name")
        if staff:
            by_staff[staff] = by_staff.get(staff, 0) + 1
    if not by_staff:
        return None
    top_staff, top_count = max(by_staff.items(), key=lambda kv: kv[1])
    if top_count >= math.ceil(len(demerits) * 0.6):
        return {"type": "staff", "value": top_staff, "share": top_count / len(demerits)}
    return None


def window_insight(events: Sequence[Dict], time_window: str, today: date) -> Dict:
    window_start = today - timedelta(days=WINDOW_DAYS[time_window])
    in_window = [e for e in events if e["event_date"] >= window_start]
    merits = [e for e in in_window if e["event_type"] == "merit"]
    demerits = [e for e in in_window if e["event_type"] == "demerit"]

    # trend always looks at the trailing three weeks, whatever the window
    week_counts = week_demerit_counts(events, today)
    trend = classify_trend(week_counts)
    escalation = is_escalating(week_counts)
    early_concern = time_window == "7d" and len(demerits) >= 3

    if escalation:
        risk_level = "red"
    elif early_concern:
        risk_level = "yellow"
    else:
        risk_level = "green"

    isolation = context_isolation(in_window)
    strength_mismatch = (has_category_match(merits, ["leadership", "responsibility"])
                         and has_category_match(demerits, ["disruption", "talking"]))

    if strength_mismatch:
        interpretation = "unchannelled_strength"
    elif escalation:
        interpretation = ESCALATION_TEXT
    elif early_concern:
        interpretation = EARLY_CONCERN_TEXT
    else:
        interpretation = None

    return {
        "time_window": time_window,
        "total_merits": len(merits),
        "total_demerits": len(demerits),
        "net_score": sum(e["points"] for e in merits) - sum(e["points"] for e in demerits),
        "demerit_frequency": len(demerits),
        "trend": trend,
        "risk_level": risk_level,
        "primary_issue_type": "contextual" if isolation else None,
        "interpretation": interpretation,
        "context_isolation": isolation,
        "has_strength_mismatch": strength_mismatch,
        "escalation": escalation,
        "early_concern": early_concern,
        "week_counts": week_counts,
    }


def detect_patterns(student_id: str, window7: Dict, window30: Dict) -> List[Dict]:
    patterns = []
    if window7["early_concern"]:
        patterns.append({
            "student_id": student_id,
            "pattern_type": "early_concern",
            "pattern_description": "Three or more demerits recorded within the last 7 days.",
            "confidence_score": 0.8,
        })
    if window30["escalation"]:
        patterns.append({
            "student_id": student_id,
            "pattern_type": "escalation",
            "pattern_description": ESCALATION_TEXT,
            "confidence_score": 0.9,
        })
    isolation = window30["context_isolation"]
    if isolation:
        patterns.append({
            "student_id": student_id,
            "pattern_type": "context_isolation",
            "pattern_description": (f"At least 60% of demerits come from the same staff member "
                                    f"({isolation['value']})."),
            "confidence_score": min(1.0, isolation["share"]),
        })
    if window30["has_strength_mismatch"]:
        patterns.append({
            "student_id": student_id,
            "pattern_type": "strength_struggle_mismatch",
            "pattern_description": "Leadership/responsibility merits paired with disruption/talking demerits.",
            "confidence_score": 0.7,
        })
    return patterns


INSIGHT_FIELDS = ("time_window", "total_merits", "total_demerits", "net_score", "demerit_frequency",
                  "trend", "risk_level", "primary_issue_type", "interpretation")


def analyze_events(events: Sequence[Dict], today: date) -> Tuple[List[Dict], List[Dict], List[str]]:
    """Group events per student and return (insight rows, pattern rows, student ids)."""
    by_student: Dict[str, List[Dict]] = {}
    for event in events:
        by_student.setdefault(str(event["student_id"]), []).append(event)

    insights, patterns = [], []
    for student_id, student_events in by_student.items():
        window7 = window_insight(student_events, "7d", today)
        window30 = window_insight(student_events, "30d", today)
        for window in (window7, window30):
            row = {k: window[k] for k in INSIGHT_FIELDS}
            row["student_id"] = student_id
            insights.append(row)
        patterns.extend(detect_patterns(student_id, window7, window30))
    return insights, patterns, list(by_student.keys())
