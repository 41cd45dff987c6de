import math
import unicodedata
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

CATEGORIES = ["Respect", "Responsibility", "Righteousness", "Other"]
THREE_RS = ["Respect", "Responsibility", "Righteousness"]
EVENT_COLUMNS = ["staff_name", "student_name", "grade", "section", "house", "r",
                 "subcategory", "points", "date_of_event"]

# composite weights: participation, category balance, house balance, consistency
HEALTH_WEIGHTS = (0.4, 0.3, 0.2, 0.1)


# ---------------- helpers ----------------
def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def to_events_frame(records: Iterable[dict]) -> pd.DataFrame:
    """Build the event frame every calculator expects, whatever subset of columns came in."""
    df = pd.DataFrame(list(records))
    for col in EVENT_COLUMNS:
        if col not in df.columns:
            df[col] = None
    df["points"] = pd.to_numeric(df["points"], errors="coerce").fillna(0)
    df["date_of_event"] = df["date_of_event"].map(_as_date)
    return df


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return None if pd.isna(value) else value.date()
    if isinstance(value, date):
        return value
    parsed = pd.to_datetime(value, errors="coerce")
    return None if pd.isna(parsed) else parsed.date()


def three_r_category(value: Optional[str]) -> str:
    raw = (value or "").lower()
    if "respect" in raw:
        return "Respect"
    if "responsibility" in raw:
        return "Responsibility"
    if "righteousness" in raw:
        return "Righteousness"
    return "Other"


def _fold(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value or "")
    # drops combining accents and modifier letters such as the ayn in "ʿUmar"
    letters = "".join(c for c in decomposed
                      if (c.isalnum() and unicodedata.category(c) != "Lm") or c.isspace())
    return " ".join(letters.lower().split())


def canonical_house_name(value: Optional[str], houses: Sequence[str]) -> Optional[str]:
    """Map spellings like 'House of ʿUmar' or just 'umar' onto the configured house name."""
    folded = _fold(value or "")
    if not folded:
        return None
    for house in houses:
        if _fold(house) == folded:
            return house
    for house in houses:
        key = _fold(house).split(" ")[-1]
        if key and key in folded.split(" "):
            return house
    return None


def coefficient_of_variation(values: Sequence[float]) -> float:
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return 0.0
    mean = arr.mean()
    if mean == 0:
        return 0.0
    return float(arr.std() / mean * 100)


def health_status(score: float) -> str:
    if score >= 80:
        return "GREEN"
    if score >= 60:
        return "AMBER"
    return "RED"


def school_days(start: date, end: date, exclude_weekends: bool = True) -> List[date]:
    days = []
    cursor = start
    while cursor <= end:
        if not exclude_weekends or cursor.weekday() < 5:
            days.append(cursor)
        cursor += timedelta(days=1)
    return days


# ---------------- staff participation ----------------
def staff_participation(events: pd.DataFrame, staff_names: Sequence[Optional[str]]) -> Dict:
    roster = [str(n or "").strip().lower() for n in staff_names]
    metrics = {name: {"points": 0.0, "active_days": 0, "last_active": None} for name in roster if name}

    keyed = events.assign(staff_key=events["staff_name"].fillna("").astype(str).str.strip().str.lower())
    keyed = keyed[keyed["staff_key"] != ""]
    if not keyed.empty:
        grouped = keyed.groupby("staff_key").agg(
            points=("points", "sum"),
            active_days=("date_of_event", "nunique"),
            last_active=("date_of_event", lambda s: max((d for d in s if d is not None), default=None)),
        )
        for name, row in grouped.iterrows():
            metrics[name] = {
                "points": float(row["points"]),
                "active_days": int(row["active_days"]),
                "last_active": row["last_active"],
            }

    active = sorted(name for name, m in metrics.items() if m["points"] > 0)
    inactive = sorted(name for name, m in metrics.items() if m["points"] <= 0)
    total_staff = len(roster)
    total_points = sum(m["points"] for m in metrics.values())

    return {
        "participation_rate": (len(active) / total_staff * 100) if total_staff > 0 else None,
        "active_staff_count": len(active),
        "total_staff_count": total_staff,
        "active_staff": active,
        "inactive_staff": inactive,
        "avg_points_per_staff": (total_points / len(active)) if active else None,
        "staff_metrics": metrics,
    }


# ---------------- point economy ----------------
def _week_start_sunday(d: date) -> date:
    return d - timedelta(days=(d.weekday() + 1) % 7)


def _week_start_monday(d: date) -> date:
    return d - timedelta(days=d.weekday())


def point_economy(events: pd.DataFrame, student_count: int) -> Dict:
    total_points = float(events["points"].sum())
    transactions = int(len(events))
    active_staff = events["staff_name"].dropna().astype(str)
    active_staff = active_staff[active_staff.str.strip() != ""].nunique()

    dated = events[events["date_of_event"].notna()]
    weekly: Dict[date, float] = {}
    for d, pts in zip(dated["date_of_event"], dated["points"]):
        week = _week_start_sunday(d)
        weekly[week] = weekly.get(week, 0.0) + float(pts)

    return {
        "total_points": total_points,
        "total_transactions": transactions,
        "points_per_student": (total_points / student_count) if student_count > 0 else None,
        "points_per_staff": (total_points / active_staff) if active_staff > 0 else None,
        "avg_points_per_transaction": (total_points / transactions) if transactions > 0 else None,
        "weekly_trend": [{"week": w.isoformat(), "points": p} for w, p in sorted(weekly.items())],
    }


# ---------------- category balance ----------------
def category_balance(events: pd.DataFrame) -> Dict:
    distribution = {cat: 0.0 for cat in CATEGORIES}
    if not events.empty:
        sums = events.assign(category=events["r"].map(three_r_category)).groupby("category")["points"].sum()
        for cat, pts in sums.items():
            distribution[cat] += float(pts)

    total = sum(distribution.values())
    percentages = {cat: (distribution[cat] / total * 100) if total > 0 else 0.0 for cat in CATEGORIES}

    dominant = None
    best = 0.0
    for cat in THREE_RS:
        if percentages[cat] > best:
            best = percentages[cat]
            dominant = cat

    # balanced is judged on share of ALL points, Other included
    is_balanced = all(20 <= percentages[cat] <= 50 for cat in THREE_RS)

    ideal = 100 / 3
    three_r_total = sum(percentages[cat] for cat in THREE_RS)
    normalized = [(percentages[cat] / three_r_total * 100) if three_r_total > 0 else 0.0 for cat in THREE_RS]
    avg_deviation = sum(abs(pct - ideal) for pct in normalized) / 3
    score = round(clamp(100 - avg_deviation * 3), 2)

    return {
        "category_distribution": distribution,
        "category_percentages": percentages,
        "dominant_category": dominant,
        "is_balanced": is_balanced,
        "balance_score": score,
    }


# ---------------- house distribution ----------------
def points_by_house(events: pd.DataFrame, houses: Sequence[str]) -> Dict[str, float]:
    house_points = {house: 0.0 for house in houses}
    for raw, pts in zip(events["house"], events["points"]):
        house = canonical_house_name(raw, houses)
        if house is not None:
            house_points[house] += float(pts)
    return house_points


def house_distribution(events: pd.DataFrame, houses: Sequence[str]) -> Dict:
    house_points = points_by_house(events, houses)
    total = sum(house_points.values())
    percentages = {h: (p / total * 100) if total > 0 else 0.0 for h, p in house_points.items()}
    variance = coefficient_of_variation(list(house_points.values()))

    return {
        "house_points": house_points,
        "house_percentages": percentages,
        "variance": variance,
        "is_balanced": variance < 25,
        "balance_score": round(clamp(100 - variance * 2), 2),
    }


# ---------------- staff bias / outliers ----------------
# chi-square critical values at p = .05, .01, .001 keyed by degrees of freedom
CHI_SQUARE_CRITICAL = {
    1: (3.84, 6.63, 10.83),
    2: (5.99, 9.21, 13.82),
    3: (7.81, 11.34, 16.27),
    4: (9.49, 13.28, 18.47),
}
BIAS_FLAG_COEFFICIENT = 4.0
OUTLIER_Z = 2.0


def bias_coefficient(chi_square: float, dof: int) -> float:
    """Map a chi-square statistic onto 0-10: under 2 is noise, 4+ is significant at p < .01."""
    p05, p01, p001 = CHI_SQUARE_CRITICAL.get(dof, CHI_SQUARE_CRITICAL[3])
    if chi_square < p05:
        return chi_square / p05 * 2
    if chi_square < p01:
        return 2 + (chi_square - p05) / (p01 - p05) * 2
    if chi_square < p001:
        return 4 + (chi_square - p01) / (p001 - p01) * 2
    return min(10.0, 6 + (chi_square - p001) / p001 * 4)


def staff_house_bias(staff_events: pd.DataFrame, school_house_points: Dict[str, float],
                     houses: Sequence[str]) -> Dict:
    """Compare one staff member's house split with the school-wide split."""
    observed = points_by_house(staff_events, houses)
    total = sum(observed.values())
    if total == 0:
        return {"house_bias_coefficient": 0.0, "house_distribution": observed, "favored_house": None,
                "has_bias": False, "bias_description": None,
                "favorite_category": None, "category_distribution": {}}

    school_total = sum(school_house_points.values())
    expected = {h: total * (school_house_points.get(h, 0.0) / school_total if school_total > 0 else 1 / len(houses))
                for h in houses}
    chi_square = 0.0
    for h in houses:
        e = expected[h] or total / len(houses)
        if e > 0:
            chi_square += (observed[h] - e) ** 2 / e
    coefficient = bias_coefficient(chi_square, len(houses) - 1)

    favored, widest = None, 0.0
    for h in houses:
        diff = observed[h] - expected[h]
        if diff > widest:
            favored, widest = h, diff

    has_bias = coefficient > 2
    description = None
    if has_bias and favored:
        description = (f"Staff gives {observed[favored] / total * 100:.1f}% of points to {favored} "
                       f"(expected ~{expected[favored] / total * 100:.1f}%)")

    categories = {c: 0.0 for c in CATEGORIES}
    for r, pts in zip(staff_events["r"], staff_events["points"]):
        categories[three_r_category(r)] += float(pts)
    favorite, top = None, 0.0
    for c in THREE_RS:
        if categories[c] > top:
            favorite, top = c, categories[c]

    return {
        "house_bias_coefficient": round(coefficient, 2),
        "house_distribution": observed,
        "favored_house": favored,
        "has_bias": has_bias,
        "bias_description": description,
        "favorite_category": favorite,
        "category_distribution": categories,
    }


def detect_outlier_staff(points_by_staff: Dict[str, float], threshold: float = OUTLIER_Z) -> Dict[str, Dict]:
    if not points_by_staff:
        return {}
    values = np.asarray(list(points_by_staff.values()), dtype=float)
    mean = float(values.mean())
    std = float(values.std())

    out = {}
    for name, points in points_by_staff.items():
        z = (points - mean) / std if std > 0 else 0.0
        is_outlier = abs(z) >= threshold
        reason = None
        if is_outlier:
            direction = "more" if z > 0 else "fewer"
            if mean:
                pct = points / mean * 100 - 100 if z > 0 else (1 - points / mean) * 100
                reason = f"Giving {abs(pct):.0f}% {direction} points than average ({points:g} vs {mean:.1f})"
            else:
                reason = f"Giving {direction} points than average ({points:g} vs {mean:.1f})"
        out[name] = {"z_score": round(z, 2), "outlier_flag": is_outlier,
                     "outlier_type": ("high" if z > 0 else "low") if is_outlier else None,
                     "outlier_reason": reason, "school_average": mean}
    return out


def staff_analytics(events: pd.DataFrame, staff_rows: Sequence[Dict], houses: Sequence[str],
                    analysis_date: date, period: str = "weekly") -> List[Dict]:
    """Per-staff points, house bias and z-score outlier flags for everyone who gave points in range."""
    emails = {str(s.get("staff_name") or "").strip().lower(): str(s.get("email") or "").strip()
              for s in staff_rows}
    school_houses = points_by_house(events, houses)

    keyed = events.assign(staff_key=events["staff_name"].fillna("").astype(str).str.strip().str.lower())
    keyed = keyed[keyed["staff_key"] != ""]
    groups = {key: group for key, group in keyed.groupby("staff_key", sort=True)}
    totals = {key: float(group["points"].sum()) for key, group in groups.items()}
    outliers = detect_outlier_staff(totals)
    school_avg = sum(totals.values()) / len(totals) if totals else 0.0

    records = []
    for key, group in groups.items():
        bias = staff_house_bias(group, school_houses, houses)
        outlier = outliers[key]
        records.append({
            "staff_email": emails.get(key) or f"{key}@unknown.com",
            "staff_name": str(group["staff_name"].iloc[0]).strip(),
            "analysis_date": analysis_date,
            "analysis_period": period,
            "points_given_period": totals[key],
            "active_days_period": int(group["date_of_event"].dropna().nunique()),
            "favorite_category": bias["favorite_category"],
            "category_distribution": bias["category_distribution"],
            "house_bias_coefficient": bias["house_bias_coefficient"],
            "house_distribution": bias["house_distribution"],
            "favored_house": bias["favored_house"],
            "outlier_flag": outlier["outlier_flag"],
            "outlier_reason": outlier["outlier_reason"],
            "z_score": outlier["z_score"],
            "school_avg_points": school_avg,
        })
    return records


# ---------------- consistency ----------------
def consistency_score(events: pd.DataFrame, start: date, end: date) -> int:
    days = school_days(start, end)
    if not days:
        return 50
    daily = events["date_of_event"].dropna().value_counts()
    counts = [int(daily.get(d, 0)) for d in days]
    activity_rate = sum(1 for c in counts if c > 0) / len(days) * 100
    activity = min(100.0, activity_rate * 1.25)
    steadiness = max(0.0, 100 - coefficient_of_variation(counts))
    return round_half_up(activity * 0.6 + steadiness * 0.4)


# ---------------- composite ----------------
def participation_score(participation_rate: Optional[float]) -> float:
    if participation_rate is None:
        return 0.0
    return clamp(participation_rate * 1.25)


def composite_health_score(participation_rate: Optional[float], category_balance_score: float,
                           house_balance_score: float, consistency: float) -> Tuple[int, str]:
    subs = (
        participation_score(participation_rate),
        clamp(category_balance_score),
        clamp(house_balance_score),
        clamp(consistency),
    )
    score = round_half_up(sum(s * w for s, w in zip(subs, HEALTH_WEIGHTS)))
    return score, health_status(score)


def build_snapshot(events: pd.DataFrame, staff_names: Sequence[Optional[str]], student_count: int,
                   houses: Sequence[str], start: date, end: date, snapshot_type: str = "daily",
                   previous: Optional[Dict] = None) -> Dict:
    participation = staff_participation(events, staff_names)
    economy = point_economy(events, student_count)
    categories = category_balance(events)
    distribution = house_distribution(events, houses)
    consistency = consistency_score(events, start, end)
    score, status = composite_health_score(
        participation["participation_rate"], categories["balance_score"],
        distribution["balance_score"], consistency,
    )

    snapshot = {
        "snapshot_date": end,
        "snapshot_type": snapshot_type,
        "staff_participation_rate": participation["participation_rate"],
        "active_staff_count": participation["active_staff_count"],
        "total_staff_count": participation["total_staff_count"],
        "points_per_student_avg": economy["points_per_student"],
        "points_per_staff_avg": economy["points_per_staff"],
        "total_points_awarded": int(economy["total_points"]),
        "total_transactions": economy["total_transactions"],
        "category_respect_pct": categories["category_percentages"]["Respect"],
        "category_responsibility_pct": categories["category_percentages"]["Responsibility"],
        "category_righteousness_pct": categories["category_percentages"]["Righteousness"],
        "category_other_pct": categories["category_percentages"]["Other"],
        "house_balance_variance": distribution["variance"],
        "house_points": distribution["house_points"],
        "overall_health_score": score,
        "status": status,
        "participation_score": round_half_up(participation_score(participation["participation_rate"])),
        "category_balance_score": round_half_up(categories["balance_score"]),
        "house_balance_score": round_half_up(distribution["balance_score"]),
        "consistency_score": consistency,
        "participation_change": None,
        "points_change": None,
    }
    if previous:
        if previous.get("staff_participation_rate") is not None and snapshot["staff_participation_rate"] is not None:
            snapshot["participation_change"] = snapshot["staff_participation_rate"] - previous["staff_participation_rate"]
        if previous.get("total_points_awarded") is not None:
            snapshot["points_change"] = float(snapshot["total_points_awarded"] - previous["total_points_awarded"])
    return snapshot


# ---------------- staff engagement ----------------
def eligible_weeks(month_start: date, breaks: Sequence[Tuple[date, date]] = ()) -> List[date]:
    first = month_start.replace(day=1)
    next_month = (first + timedelta(days=32)).replace(day=1)
    last = next_month - timedelta(days=1)
    weeks = []
    cursor = _week_start_monday(first)
    end = _week_start_monday(last)
    while cursor <= end:
        if not any(lo <= cursor <= hi for lo, hi in breaks):
            weeks.append(cursor)
        cursor += timedelta(days=7)
    return weeks


def week_streak(weeks: Sequence[date], active_weeks: set) -> int:
    streak = 0
    for week in reversed(weeks):
        if week not in active_weeks:
            break
        streak += 1
    return streak


def staff_engagement(events: pd.DataFrame, staff_rows: Sequence[Dict], month_start: date,
                     breaks: Sequence[Tuple[date, date]] = ()) -> List[Dict]:
    weeks = eligible_weeks(month_start, breaks)
    keyed = events.assign(staff_key=events["staff_name"].fillna("").astype(str).str.strip().str.lower())

    out = []
    for staff in staff_rows:
        name = str(staff.get("staff_name") or "")
        mine = keyed[keyed["staff_key"] == name.strip().lower()]
        dates = [d for d in mine["date_of_event"] if d is not None]
        active = {_week_start_monday(d) for d in dates} & set(weeks)
        consistency = min(100, round_half_up(len(active) / len(weeks) * 100)) if weeks else 0
        if consistency >= 80:
            tier = "High"
        elif consistency >= 30:
            tier = "Medium"
        else:
            tier = "Low"
        students = mine["student_name"].dropna().astype(str)
        out.append({
            "rank": 0,
            "name": name,
            "email": staff.get("email") or "",
            "house": staff.get("house") or "",
            "tier": tier,
            "consistency": consistency,
            "streak": week_streak(weeks, active),
            "points": float(mine["points"].sum()),
            "awards": int(len(mine)),
            "students": int(students[students.str.strip() != ""].nunique()),
            "last_active": max(dates).isoformat() if dates else None,
        })

    out.sort(key=lambda s: s["points"], reverse=True)
    for i, row in enumerate(out):
        row["rank"] = i + 1
    return out


# ---------------- leaderboard ----------------
def house_standings(events: pd.DataFrame, houses: Sequence[str]) -> List[Dict]:
    distribution = house_distribution(events, houses)
    ordered = sorted(distribution["house_points"].items(), key=lambda kv: kv[1], reverse=True)
    return [
        {"rank": i + 1, "house": house, "points": points,
         "percentage": distribution["house_percentages"][house]}
        for i, (house, points) in enumerate(ordered)
    ]


def house_mvps(events: pd.DataFrame, houses: Sequence[str], top_n: int = 3) -> Dict[str, List[Dict]]:
    out = {house: [] for house in houses}
    named = events[events["student_name"].fillna("").astype(str).str.strip() != ""]
    if named.empty:
        return out
    named = named.assign(canonical=named["house"].map(lambda h: canonical_house_name(h, houses)))
    named = named[named["canonical"].notna()]
    totals = named.groupby(["canonical", "student_name"])["points"].sum().reset_index()
    for house, group in totals.groupby("canonical"):
        top = group.sort_values(["points", "student_name"], ascending=[False, True]).head(top_n)
        out[house] = [{"student_name": r.student_name, "points": float(r.points)} for r in top.itertuples()]
    return out
