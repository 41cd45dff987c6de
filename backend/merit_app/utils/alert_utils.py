from typing import Dict, List, Optional, Sequence, Tuple

DEFAULT_THRESHOLDS = {
    "participation_rate": {
        "display_name": "Staff Participation Rate",
        "amber_threshold": 70, "red_threshold": 50, "comparison_operator": "lt", "is_enabled": True,
    },
    "category_imbalance": {
        "display_name": "Category Imbalance",
        "amber_threshold": 50, "red_threshold": 60, "comparison_operator": "gt", "is_enabled": True,
    },
    "house_variance": {
        "display_name": "House Point Variance",
        "amber_threshold": 25, "red_threshold": 35, "comparison_operator": "gt", "is_enabled": True,
    },
    "staff_outlier_zscore": {
        "display_name": "Staff Outlier Z-Score",
        "amber_threshold": 2.0, "red_threshold": 3.0, "comparison_operator": "gt", "is_enabled": True,
    },
}

_COMPARE = {
    "lt": lambda v, t: v < t,
    "lte": lambda v, t: v <= t,
    "gt": lambda v, t: v > t,
    "gte": lambda v, t: v >= t,
    "eq": lambda v, t: v == t,
}


def check_threshold(value: float, threshold: Dict) -> Tuple[bool, Optional[str]]:
    compare = _COMPARE.get(threshold["comparison_operator"], lambda v, t: False)
    if compare(value, threshold["red_threshold"]):
        return True, "RED"
    if compare(value, threshold["amber_threshold"]):
        return True, "AMBER"
    return False, None


def _threshold_value(threshold: Dict, severity: str) -> float:
    return threshold["red_threshold"] if severity == "RED" else threshold["amber_threshold"]


def evaluate_alerts(participation: Dict, categories: Dict, houses: Dict,
                    thresholds: Dict = DEFAULT_THRESHOLDS, staff: Sequence[Dict] = ()) -> List[Dict]:
    """Turn computed analytics into alert rows; nothing is persisted here."""
    alerts = []

    rule = thresholds.get("participation_rate")
    rate = participation.get("participation_rate")
    if rule and rule["is_enabled"] and rate is not None:
        crossed, severity = check_threshold(rate, rule)
        if crossed:
            alerts.append({
                "alert_type": "LOW_PARTICIPATION",
                "severity": severity,
                "title": "Low Staff Participation",
                "message": (f"Staff participation has dropped to {rate:.1f}%. "
                            f"{len(participation['inactive_staff'])} staff members have not given any points."),
                "recommended_action": (
                    "Execute re-engagement playbook: Send reminder emails, schedule department meetings, "
                    "review training needs." if severity == "RED"
                    else "Monitor closely and send gentle participation reminder to inactive staff."),
                "triggered_by_data": {
                    "participation_rate": rate,
                    "active_staff": participation["active_staff_count"],
                    "total_staff": participation["total_staff_count"],
                    "inactive_staff": participation["inactive_staff"][:10],
                },
                "related_metric": "participation_rate",
                "metric_value": rate,
                "threshold_value": _threshold_value(rule, severity),
            })

    rule = thresholds.get("category_imbalance")
    pcts = categories["category_percentages"]
    top = max(pcts.get("Respect", 0), pcts.get("Responsibility", 0), pcts.get("Righteousness", 0))
    if rule and rule["is_enabled"] and top > 0:
        crossed, severity = check_threshold(top, rule)
        if crossed:
            alerts.append({
                "alert_type": "CATEGORY_DRIFT",
                "severity": severity,
                "title": "Category Imbalance Detected",
                "message": (f"{categories['dominant_category']} represents {top:.1f}% of all points. "
                            "Consider encouraging recognition in other categories."),
                "recommended_action": ("Send category balance reminder to staff. Share behavior examples for "
                                       "underused categories. Consider a mini calibration session."),
                "triggered_by_data": {
                    "category_percentages": pcts,
                    "dominant_category": categories["dominant_category"],
                    "balance_score": categories["balance_score"],
                },
                "related_metric": "category_imbalance",
                "metric_value": top,
                "threshold_value": _threshold_value(rule, severity),
            })

    rule = thresholds.get("house_variance")
    if rule and rule["is_enabled"] and houses["house_points"]:
        crossed, severity = check_threshold(houses["variance"], rule)
        if crossed:
            ordered = sorted(houses["house_points"].items(), key=lambda kv: kv[1], reverse=True)
            (high_name, high_pts), (low_name, low_pts) = ordered[0], ordered[-1]
            alerts.append({
                "alert_type": "HOUSE_IMBALANCE",
                "severity": severity,
                "title": "House Point Imbalance",
                "message": (f"House point variance is {houses['variance']:.1f}%. {high_name} has "
                            f"{high_pts:g} points while {low_name} has only {low_pts:g} points."),
                "recommended_action": ("Review house distribution by staff. Check for structural issues in "
                                       "class assignments. Discuss findings with house mentors."),
                "triggered_by_data": {"house_points": houses["house_points"], "variance": houses["variance"]},
                "related_metric": "house_variance",
                "metric_value": houses["variance"],
                "threshold_value": _threshold_value(rule, severity),
            })

    # one alert per flagged staff member, from staff_analytics records
    rule = thresholds.get("staff_outlier_zscore")
    if rule and rule["is_enabled"]:
        for s in staff:
            z = abs(s.get("z_score") or 0)
            if not s.get("outlier_flag") or z < rule["amber_threshold"]:
                continue
            crossed, severity = check_threshold(z, rule)
            if not crossed:
                continue
            alerts.append({
                "alert_type": "OUTLIER_BEHAVIOR",
                "severity": severity,
                "title": f"Staff Outlier: {s['staff_name']}",
                "message": (s.get("outlier_reason")
                            or f"Staff member has unusual point-giving pattern (z-score: {z:.2f})"),
                "recommended_action": ("Review individual staff metrics. Schedule a private conversation to "
                                       "understand context and provide guidance."),
                "triggered_by_data": {
                    "staff_name": s["staff_name"],
                    "points_given": s["points_given_period"],
                    "school_average": s["school_avg_points"],
                    "z_score": s["z_score"],
                },
                "related_staff_email": s["staff_email"],
                "related_metric": "staff_outlier_zscore",
                "metric_value": z,
                "threshold_value": _threshold_value(rule, severity),
            })

    return alerts
