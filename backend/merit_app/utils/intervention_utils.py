"""
A/B/C intervention framework rules.

Level A is in-the-moment coaching, Level B a structured reset conference with
a short monitoring period, Level C case management. Everything here is pure;
the routers load rows, call these, and write the results back.
"""
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

LEVEL_A_TYPES = [
    "pre_correct", "positive_narration", "quick_redirect", "redo",
    "choice_consequence", "private_check", "micro_repair", "quick_reinforcement",
]
LEVEL_A_OUTCOMES = ["complied", "escalated", "partial"]

LEVEL_B_TRIGGERS = [
    "demerit_assigned", "3rd_incident_10days", "ignored_2plus_prompts", "peer_impact",
    "space_disruption", "safety_risk", "threshold_10_points",
]
LEVEL_B_STEPS = {
    1: ("b1_regulate_completed", "b1_regulate_notes"),
    2: ("b2_pattern_naming_completed", "b2_pattern_notes"),
    3: ("b3_reflection_completed", "b3_reflection_prompts_used"),
    4: ("b4_repair_completed", "b4_repair_action_selected"),
    5: ("b5_replacement_completed", "b5_replacement_skill_practiced"),
    6: ("b6_reset_goal_completed", "b6_reset_goal", "b6_reset_goal_timeline_days"),
    7: ("b7_documentation_completed", "monitoring_method"),
}
MONITORING_METHODS = ["checklist", "verbal_check", "written_log"]
SUCCESS_THRESHOLD = 80.0
DEFAULT_RESET_DAYS = 3

LEVEL_C_TRIGGERS = [
    "safety_incident", "no_improvement_2_level_b", "chronic_pattern", "post_oss_reentry",
    "threshold_20_points", "threshold_30_points", "threshold_35_points", "threshold_40_points",
    "admin_referral",
]
ADMIN_RESPONSE_TYPES = ["detention", "iss", "oss", "behavior_contract", "parent_conference", "other"]
CLOSED_OUTCOMES = ["closed_success", "closed_continued_support", "closed_escalated"]

REENTRY_SOURCES = ["level_b", "detention", "iss", "oss"]
REENTRY_MONITORING_DAYS = {"3_day": 3, "5_day": 5, "10_day": 10}
REENTRY_OUTCOMES = ["success", "partial", "escalated"]

PATTERN_WINDOW_DAYS = 10
PATTERN_INCIDENTS = 3


def default_readiness_checklist() -> List[Dict]:
    return [
        {"item": "Student can articulate what happened", "completed": False},
        {"item": "Student can name the expectation broken", "completed": False},
        {"item": "Student has identified repair action", "completed": False},
        {"item": "Student can state reset goal", "completed": False},
    ]


# ---------------- decision tree ----------------
def determine_level(is_safety_incident: bool, demerit_assigned: bool, ignored_prompts: int,
                    is_pattern_student: bool, affected_peers: bool, disrupted_space: bool,
                    is_safety_risk: bool, prior_level_b_count: int) -> Dict:
    if is_safety_incident:
        return {
            "recommended_level": "C",
            "reasons": ["Safety incident detected - requires Level C + Admin consequence"],
            "is_pattern_student": False,
            "prior_level_b_count": 0,
        }

    triggers = []
    if demerit_assigned:
        triggers.append("Demerit was assigned")
    if ignored_prompts >= 2:
        triggers.append(f"Ignored {ignored_prompts} prompts")
    if is_pattern_student:
        triggers.append("3rd incident in 10 days (same domain)")
    if affected_peers:
        triggers.append("Affected other students")
    if disrupted_space:
        triggers.append("Disrupted shared space")
    if is_safety_risk:
        triggers.append("Safety risk identified")

    if not triggers:
        return {
            "recommended_level": "A",
            "reasons": ["No escalation triggers present"],
            "is_pattern_student": is_pattern_student,
            "prior_level_b_count": 0,
        }

    if prior_level_b_count >= 2:
        triggers.append(f"{prior_level_b_count} Level B attempts already completed for this domain")
        level = "C"
    else:
        level = "B"
    return {
        "recommended_level": level,
        "reasons": triggers,
        "is_pattern_student": is_pattern_student,
        "prior_level_b_count": prior_level_b_count,
    }


def escalation_summary(level: str) -> Dict:
    summaries = {
        "A": ("green", "Level A: In-the-moment Coaching",
              "Quick redirect (30-90 seconds). Use universal script and positive closure."),
        "B": ("yellow", "Level B: Structured Reset Conference",
              "Pull student for 15-20 minute reset. Complete all 7 steps and set monitoring period."),
        "C": ("red", "Level C: Case Management",
              "Escalate to Case Manager (Tarbiyah Director/Counselor). 2-4 week intensive support required."),
    }
    color, title, description = summaries[level]
    return {"level": level, "color": color, "title": title, "description": description}


def should_log_level_a(affected_others: bool, is_pattern_student: bool, today_count: int) -> Dict:
    if affected_others:
        return {"should_log": True, "reason": "Affected other students"}
    if is_pattern_student:
        return {"should_log": True, "reason": "Known pattern student"}
    if today_count > 0:
        return {"should_log": True, "reason": "Repeated incident same day"}
    return {"should_log": False, "reason": "First minor incident of the day"}


def level_a_stats(rows: Sequence[Dict]) -> Dict:
    by_domain: Dict[str, int] = {}
    by_outcome = {o: 0 for o in LEVEL_A_OUTCOMES}
    escalated = 0
    for row in rows:
        key = row.get("domain_key") or "unknown"
        by_domain[key] = by_domain.get(key, 0) + 1
        by_outcome[row["outcome"]] = by_outcome.get(row["outcome"], 0) + 1
        if row.get("escalated_to_b"):
            escalated += 1
    return {
        "total_count": len(rows),
        "by_domain": by_domain,
        "by_outcome": by_outcome,
        "escalation_rate": (escalated / len(rows) * 100) if rows else 0.0,
    }


# ---------------- level B ----------------
def level_b_completion(record) -> int:
    done = sum(1 for fields in LEVEL_B_STEPS.values() if getattr(record, fields[0]))
    return round(done / len(LEVEL_B_STEPS) * 100)


def monitoring_window(start: date, timeline_days: Optional[int]) -> Dict:
    days = timeline_days or DEFAULT_RESET_DAYS
    return {"monitoring_start_date": start, "monitoring_end_date": start + timedelta(days=days)}


def evaluate_monitoring(daily_rates: Dict[str, float]) -> Dict:
    rates = list(daily_rates.values())
    avg = sum(rates) / len(rates) if rates else 0.0
    escalate = avg < SUCCESS_THRESHOLD
    return {
        "final_success_rate": avg,
        "status": "completed_escalated" if escalate else "completed_success",
        "escalated_to_c": escalate,
        "escalation_reason": (f"Success rate {avg:.1f}% below {SUCCESS_THRESHOLD:.0f}% threshold"
                              if escalate else None),
    }


def reflection_prompts() -> List[str]:
    return [
        "What happened just before this incident?",
        "How were you feeling at that moment?",
        "Who was affected by your actions?",
        "What expectation did you not meet?",
        "What could you have done differently?",
        "How would you handle this situation next time?",
    ]


def reset_goal_examples(domain_key: str) -> List[str]:
    examples = {
        "prayer_space": [
            "Enter the prayer hall with hands at sides and voice off for 3 days",
            "Complete wudu fully before entering prayer space for 3 days",
            "Maintain stillness during salah for 3 consecutive prayers",
        ],
        "hallways": [
            "Walk on the right side with hands to self for 3 days",
            "Use whisper voice during all transitions for 3 days",
            "Keep appropriate spacing from peers during all transitions",
        ],
        "lunch_recess": [
            "Invite at least one different peer to join activities daily",
            "Clean up my eating area completely before leaving for 3 days",
            "Use words instead of physical contact when frustrated",
        ],
        "respect": [
            "Respond to adult directions the first time for 3 days",
            'Use "I disagree because..." instead of arguing for 3 days',
            "Apologize sincerely when I make a mistake that affects others",
        ],
    }
    return examples.get(domain_key, examples["respect"])


# ---------------- level C ----------------
def case_type_for_trigger(trigger_type: str) -> str:
    if trigger_type == "threshold_20_points":
        return "lite"
    if trigger_type in ("threshold_35_points", "threshold_40_points", "safety_incident"):
        return "intensive"
    return "standard"


def monitoring_days_for_case(case_type: str) -> int:
    return 14 if case_type == "lite" else 10


def context_packet_complete(incident_summary, pattern_review, environmental_factors,
                            prior_interventions_summary) -> bool:
    return bool(incident_summary and pattern_review and environmental_factors and prior_interventions_summary)


def review_schedule(start: date, duration_days: int) -> List[Dict]:
    end = start + timedelta(days=duration_days)
    dates = []
    current = start + timedelta(days=3)
    while current < end:
        dates.append(current)
        current += timedelta(days=3)
    dates.append(end)
    return [{"date": d.isoformat(), "type": "final" if d == end else "check_in"} for d in dates]


# ---------------- re-entry ----------------
def reentry_monitoring_method(source_type: str) -> str:
    if source_type == "oss":
        return "intensive"
    if source_type == "iss":
        return "check_in_out"
    return "checklist"


def reentry_monitoring_end(reentry_date: date, monitoring_type: str) -> date:
    return reentry_date + timedelta(days=REENTRY_MONITORING_DAYS[monitoring_type])


def teacher_script(reset_goal: str) -> str:
    return f'Welcome back. Your reset goal is "{reset_goal}". Show me the first rep now.'


# ---------------- thresholds ----------------
def threshold_for_points(demerit_points: int, thresholds: Sequence[Dict]) -> Optional[Dict]:
    """Highest active SIS threshold reached by a student's demerit total."""
    reached = [t for t in thresholds if t.get("is_active", True) and demerit_points >= t["demerit_points"]]
    if not reached:
        return None
    return max(reached, key=lambda t: t["demerit_points"])


# ---------------- framework analytics ----------------
def intervention_summary(level_a: Sequence[Dict], level_b: Sequence[Dict], level_c: Sequence[Dict],
                         reentry_count: int) -> Dict:
    a, b, c = len(level_a), len(level_b), len(level_c)
    a_to_b = sum(1 for r in level_a if r.get("escalated_to_b"))
    b_to_c = sum(1 for r in level_b if r.get("escalated_to_c"))
    b_done = [r for r in level_b if r.get("status") in ("completed_success", "completed_escalated")]
    b_success = sum(1 for r in b_done if r["status"] == "completed_success")
    return {
        "level_a_count": a,
        "level_b_count": b,
        "level_c_count": c,
        "reentry_count": reentry_count,
        # many quick interventions, few intensive ones
        "distribution_healthy": a > b > c,
        "a_to_b_count": a_to_b,
        "a_to_b_rate": (a_to_b / a * 100) if a else 0.0,
        "b_to_c_count": b_to_c,
        "b_to_c_rate": (b_to_c / b * 100) if b else 0.0,
        "level_b_completed": len(b_done),
        "level_b_success_rate": (b_success / len(b_done) * 100) if b_done else 0.0,
    }
