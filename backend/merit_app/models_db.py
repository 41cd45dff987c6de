from sqlalchemy import (Column, Integer, String, Float, JSON, Date, DateTime, Boolean, Text,
                        ForeignKey, UniqueConstraint)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base


# ---------------- people ----------------
class Student(Base):
    __tablename__ = "students"
    id = Column(Integer, primary_key=True, index=True)
    student_name = Column(String, index=True, nullable=False)
    grade = Column(Integer)
    section = Column(String)
    house = Column(String)
    email = Column(String)
    parent_code = Column(String)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Staff(Base):
    __tablename__ = "staff"
    id = Column(Integer, primary_key=True, index=True)
    staff_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    house = Column(String)
    department = Column(String)
    role = Column(String, default="staff")   # staff | admin | super_admin


# ---------------- merit points ----------------
class MeritCategory(Base):
    __tablename__ = "merit_categories"
    id = Column(Integer, primary_key=True, index=True)
    r = Column(String, nullable=False)          # Respect | Responsibility | Righteousness | Other
    subcategory = Column(String, nullable=False)
    points = Column(Integer, nullable=False)


class MeritEvent(Base):
    __tablename__ = "merit_log"
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), index=True, nullable=True)
    student_name = Column(String, default="")
    staff_name = Column(String, index=True)
    staff_email = Column(String)
    grade = Column(Integer)
    section = Column(String)
    house = Column(String, index=True)
    r = Column(String)
    subcategory = Column(String)
    points = Column(Integer, nullable=False)   # negative => demerit
    notes = Column(Text)
    date_of_event = Column(Date, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ---------------- behaviour insights ----------------
class BehaviourUpload(Base):
    __tablename__ = "behaviour_uploads"
    id = Column(Integer, primary_key=True, index=True)
    uploaded_by = Column(String)
    source_system = Column(String, default="csv_upload")
    file_name = Column(String)
    rows_parsed = Column(Integer, default=0)
    rows_analyzed = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class StudentBehaviourInsight(Base):
    __tablename__ = "student_behaviour_insights"
    __table_args__ = (UniqueConstraint("student_id", "time_window"),)
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(String, index=True, nullable=False)
    time_window = Column(String, nullable=False)     # 7d | 30d
    total_merits = Column(Integer, default=0)
    total_demerits = Column(Integer, default=0)
    net_score = Column(Integer, default=0)
    demerit_frequency = Column(Integer, default=0)
    trend = Column(String)                           # improving | stable | declining
    risk_level = Column(String)                      # green | yellow | red
    primary_issue_type = Column(String)
    interpretation = Column(Text)
    last_computed = Column(DateTime(timezone=True))


class StudentBehaviourPattern(Base):
    __tablename__ = "student_behaviour_patterns"
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(String, index=True, nullable=False)
    pattern_type = Column(String, nullable=False)
    pattern_description = Column(Text)
    confidence_score = Column(Float)
    detected_at = Column(DateTime(timezone=True), server_default=func.now())


# ---------------- analytics + alerts ----------------
class AnalyticsSnapshot(Base):
    __tablename__ = "analytics_snapshots"
    __table_args__ = (UniqueConstraint("snapshot_date", "snapshot_type"),)
    id = Column(Integer, primary_key=True, index=True)
    snapshot_date = Column(Date, nullable=False)
    snapshot_type = Column(String, nullable=False)   # daily | weekly | monthly
    staff_participation_rate = Column(Float)
    active_staff_count = Column(Integer, default=0)
    total_staff_count = Column(Integer, default=0)
    points_per_student_avg = Column(Float)
    points_per_staff_avg = Column(Float)
    total_points_awarded = Column(Integer, default=0)
    total_transactions = Column(Integer, default=0)
    category_respect_pct = Column(Float)
    category_responsibility_pct = Column(Float)
    category_righteousness_pct = Column(Float)
    category_other_pct = Column(Float)
    house_balance_variance = Column(Float)
    house_points = Column(JSON)
    overall_health_score = Column(Integer)
    status = Column(String)                          # GREEN | AMBER | RED
    participation_score = Column(Integer)
    category_balance_score = Column(Integer)
    house_balance_score = Column(Integer)
    consistency_score = Column(Integer)
    participation_change = Column(Float)
    points_change = Column(Float)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class StaffAnalytics(Base):
    __tablename__ = "staff_analytics"
    __table_args__ = (UniqueConstraint("staff_email", "analysis_date", "analysis_period"),)
    id = Column(Integer, primary_key=True, index=True)
    staff_email = Column(String, index=True, nullable=False)
    staff_name = Column(String)
    analysis_date = Column(Date, index=True, nullable=False)
    analysis_period = Column(String, default="weekly")     # daily | weekly | monthly
    points_given_period = Column(Float, default=0)
    active_days_period = Column(Integer, default=0)
    favorite_category = Column(String)
    category_distribution = Column(JSON)
    house_bias_coefficient = Column(Float)                 # 0-10, chi-square based
    house_distribution = Column(JSON)
    favored_house = Column(String)
    outlier_flag = Column(Boolean, default=False, index=True)
    outlier_reason = Column(Text)
    z_score = Column(Float)
    school_avg_points = Column(Float)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Alert(Base):
    __tablename__ = "alerts"
    id = Column(Integer, primary_key=True, index=True)
    alert_type = Column(String, index=True, nullable=False)
    severity = Column(String, nullable=False)        # AMBER | RED
    title = Column(String)
    message = Column(Text)
    recommended_action = Column(Text)
    triggered_by_data = Column(JSON)
    related_staff_email = Column(String, index=True)
    related_metric = Column(String)
    metric_value = Column(Float)
    threshold_value = Column(Float)
    status = Column(String, default="ACTIVE")        # ACTIVE | ACKNOWLEDGED | RESOLVED | DISMISSED
    acknowledged_by = Column(String)
    resolution_notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    resolved_at = Column(DateTime(timezone=True))


# ---------------- A/B/C intervention framework ----------------
class BehavioralDomain(Base):
    __tablename__ = "behavioral_domains"
    id = Column(Integer, primary_key=True, index=True)
    domain_key = Column(String, unique=True, nullable=False)
    domain_name = Column(String, nullable=False)
    description = Column(Text)
    expectations = Column(JSON, default=list)
    repair_menu_immediate = Column(JSON, default=list)
    repair_menu_restorative = Column(JSON, default=list)
    is_active = Column(Boolean, default=True)


class InterventionThreshold(Base):
    __tablename__ = "student_intervention_thresholds"
    id = Column(Integer, primary_key=True, index=True)
    threshold_name = Column(String, unique=True, nullable=False)
    description = Column(Text)
    demerit_points = Column(Integer, nullable=False)
    intervention_level = Column(String, nullable=False)
    intervention_duration_days = Column(Integer)
    additional_supports = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True)


class LevelAIntervention(Base):
    __tablename__ = "level_a_interventions"
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), index=True, nullable=False)
    staff_name = Column(String, nullable=False)
    domain_id = Column(Integer, ForeignKey("behavioral_domains.id"))
    intervention_type = Column(String, nullable=False)
    behavior_description = Column(Text)
    location = Column(String)
    outcome = Column(String, default="complied")     # complied | escalated | partial
    escalated_to_b = Column(Boolean, default=False)
    is_repeated_same_day = Column(Boolean, default=False)
    affected_others = Column(Boolean, default=False)
    is_pattern_student = Column(Boolean, default=False)
    event_timestamp = Column(DateTime(timezone=True), server_default=func.now())

    domain = relationship("BehavioralDomain")


class LevelBIntervention(Base):
    __tablename__ = "level_b_interventions"
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), index=True, nullable=False)
    staff_name = Column(String, nullable=False)
    domain_id = Column(Integer, ForeignKey("behavioral_domains.id"))
    escalation_trigger = Column(String, nullable=False)

    b1_regulate_completed = Column(Boolean, default=False)
    b1_regulate_notes = Column(Text)
    b2_pattern_naming_completed = Column(Boolean, default=False)
    b2_pattern_notes = Column(Text)
    b3_reflection_completed = Column(Boolean, default=False)
    b3_reflection_prompts_used = Column(JSON, default=list)
    b4_repair_completed = Column(Boolean, default=False)
    b4_repair_action_selected = Column(String)
    b5_replacement_completed = Column(Boolean, default=False)
    b5_replacement_skill_practiced = Column(String)
    b6_reset_goal_completed = Column(Boolean, default=False)
    b6_reset_goal = Column(Text)
    b6_reset_goal_timeline_days = Column(Integer)
    b7_documentation_completed = Column(Boolean, default=False)

    monitoring_start_date = Column(Date)
    monitoring_end_date = Column(Date)
    monitoring_method = Column(String)               # checklist | verbal_check | written_log
    daily_success_rates = Column(JSON, default=dict)
    final_success_rate = Column(Float)

    status = Column(String, default="in_progress")
    escalated_to_c = Column(Boolean, default=False)
    escalation_reason = Column(Text)
    escalated_from_level_a_id = Column(Integer, ForeignKey("level_a_interventions.id"))
    conference_timestamp = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    domain = relationship("BehavioralDomain")


class LevelCCase(Base):
    __tablename__ = "level_c_cases"
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), index=True, nullable=False)
    case_manager_name = Column(String)
    trigger_type = Column(String, nullable=False)
    case_type = Column(String, default="standard")   # standard | lite | intensive
    domain_focus_id = Column(Integer, ForeignKey("behavioral_domains.id"))

    incident_summary = Column(Text)
    pattern_review = Column(Text)
    environmental_factors = Column(JSON, default=list)
    prior_interventions_summary = Column(Text)
    context_packet_completed = Column(Boolean, default=False)

    admin_response_type = Column(String)
    admin_response_details = Column(Text)
    consequence_start_date = Column(Date)
    consequence_end_date = Column(Date)
    admin_response_completed = Column(Boolean, default=False)

    support_plan_goal = Column(Text)
    support_plan_strategies = Column(JSON, default=list)
    adult_mentor_name = Column(String)
    repair_actions = Column(JSON, default=list)
    reentry_date = Column(Date)
    reentry_type = Column(String, default="standard")
    reentry_restrictions = Column(JSON, default=list)
    reentry_checklist = Column(JSON, default=list)
    reentry_planning_completed = Column(Boolean, default=False)

    monitoring_duration_days = Column(Integer, default=10)
    monitoring_schedule = Column(JSON, default=list)
    review_dates = Column(JSON, default=list)
    daily_check_ins = Column(JSON, default=list)

    closure_criteria = Column(Text)
    closure_date = Column(Date)
    outcome_status = Column(String)
    outcome_notes = Column(Text)
    escalated_from_level_b_ids = Column(JSON, default=list)
    sis_demerit_points_at_creation = Column(Integer)

    status = Column(String, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ReentryProtocol(Base):
    __tablename__ = "reentry_protocols"
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), index=True, nullable=False)
    source_type = Column(String, nullable=False)     # level_b | detention | iss | oss
    level_b_id = Column(Integer, ForeignKey("level_b_interventions.id"))
    level_c_id = Column(Integer, ForeignKey("level_c_cases.id"))

    reentry_date = Column(Date, nullable=False)
    reentry_time = Column(String)
    receiving_teacher_name = Column(String)

    readiness_checklist = Column(JSON, default=list)
    readiness_verified_by = Column(String)
    readiness_verified_at = Column(DateTime(timezone=True))

    teacher_script = Column(Text)
    reset_goal_from_intervention = Column(Text)
    first_behavioral_rep_completed = Column(Boolean, default=False)

    monitoring_start_date = Column(Date)
    monitoring_end_date = Column(Date)
    monitoring_type = Column(String)                 # 3_day | 5_day | 10_day
    monitoring_method = Column(String)               # checklist | check_in_out | intensive
    daily_logs = Column(JSON, default=list)

    outcome = Column(String)                         # success | partial | escalated
    outcome_notes = Column(Text)
    completed_at = Column(DateTime(timezone=True))
    status = Column(String, default="pending")       # pending | ready | active | completed
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ---------------- reference data ----------------
DEFAULT_DOMAINS = [
    {
        "domain_key": "prayer_space",
        "domain_name": "Prayer Space (Salah & Transitions)",
        "description": "Sacred space respect, wudu preparation, stillness during prayer, proper entry/exit",
        "expectations": ["Maintain wudu properly", "Enter prayer space with adab",
                         "Maintain stillness during salah", "Respectful entry and exit transitions"],
        "repair_menu_immediate": ["Redo entry with adab", "Silent line reset",
                                  "Apologize to affected peers", "Reset disrupted space"],
        "repair_menu_restorative": ["Write reflection on salah adab",
                                    "Help set up prayer space for next salah", "Staff commitment meeting"],
    },
    {
        "domain_key": "hallways",
        "domain_name": "Hallways & Transitions",
        "description": "Right-side flow, quiet voices, hands-to-self, respectful spacing",
        "expectations": ["Walk on right side", "Use quiet voices", "Keep hands to self",
                         "Maintain respectful spacing"],
        "repair_menu_immediate": ["Redo transition silently", "Flow correction practice",
                                  "Apologize for crowding or disruption"],
        "repair_menu_restorative": ["Greeting culture repair activity", "Reflection note on safety risks",
                                    "Hallway monitor helper duty"],
    },
    {
        "domain_key": "lunch_recess",
        "domain_name": "Lunch/Recess & Unstructured Time",
        "description": "Inclusion behaviors, environmental care, conflict resolution",
        "expectations": ["Include others in activities", "Care for shared space and environment",
                         "Resolve conflicts peacefully", "Follow adult directions promptly"],
        "repair_menu_immediate": ["Clean area fully", "Specific peer apology",
                                  "Supervised inclusion invitation to peer"],
        "repair_menu_restorative": ["Service repair (table/chair reset duty)",
                                    "Conflict replay writing exercise", "Lunch helper duty for week"],
    },
    {
        "domain_key": "respect",
        "domain_name": "Respect & Community",
        "description": "Appropriate speech, authority relationships, peer interactions, disagreement with dignity",
        "expectations": ["Use appropriate and respectful language", "Respect authority figures",
                         "Treat peers with kindness", "Disagree with dignity and respect"],
        "repair_menu_immediate": ["4-step apology format", "Public correction of public disrespect",
                                  "Private reflection time"],
        "repair_menu_restorative": ["72-hour respect contract", "Community service activity",
                                    "Restorative circle participation"],
    },
]

DEFAULT_THRESHOLDS = [
    ("10_point_threshold", "3-day Level B + daily checkmarks", 10, "level_b", 3,
     {"daily_checkmarks": True}),
    ("20_point_threshold", "2-week Level C-lite with check-in/out + 2 supports", 20, "level_c_lite", 14,
     {"check_in_out": True, "additional_supports_count": 2}),
    ("30_point_threshold", "Formal Level C with Student Support Plan", 30, "level_c", 28,
     {"support_plan_required": True}),
    ("35_point_threshold", "Mandatory Level C re-entry + 10-day monitoring", 35, "level_c_reentry", 10,
     {"mandatory_reentry": True, "intensive_monitoring": True}),
    ("40_point_threshold", "Administrative decision with intensive supports", 40, "admin_decision", 0,
     {"admin_decision_required": True, "intensive_supports": True}),
]

DEFAULT_CATEGORIES = [
    ("Respect", "Kind words to a peer", 5),
    ("Respect", "Adab in the prayer space", 5),
    ("Responsibility", "Homework on time", 5),
    ("Responsibility", "Leadership in group work", 10),
    ("Righteousness", "Honesty when it was hard", 10),
    ("Righteousness", "Helping without being asked", 5),
]


def seed_reference_data(db):
    if db.query(BehavioralDomain).count() == 0:
        db.add_all([BehavioralDomain(**d) for d in DEFAULT_DOMAINS])
    if db.query(InterventionThreshold).count() == 0:
        db.add_all([
            InterventionThreshold(threshold_name=name, description=desc, demerit_points=pts,
                                  intervention_level=level, intervention_duration_days=days,
                                  additional_supports=extra)
            for name, desc, pts, level, days, extra in DEFAULT_THRESHOLDS
        ])
    if db.query(MeritCategory).count() == 0:
        db.add_all([MeritCategory(r=r, subcategory=sub, points=pts) for r, sub, pts in DEFAULT_CATEGORIES])
    db.commit()
