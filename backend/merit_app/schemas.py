from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---------------- people ----------------
class StudentCreate(BaseModel):
    student_name: str
    grade: Optional[int] = None
    section: Optional[str] = None
    house: Optional[str] = None
    email: Optional[str] = None


class StudentOut(ORMModel):
    id: int
    student_name: str
    grade: Optional[int] = None
    section: Optional[str] = None
    house: Optional[str] = None
    email: Optional[str] = None


class StaffCreate(BaseModel):
    staff_name: str
    email: str
    house: Optional[str] = None
    department: Optional[str] = None
    role: Literal["staff", "admin", "super_admin"] = "staff"


class StaffOut(ORMModel):
    id: int
    staff_name: str
    email: str
    house: Optional[str] = None
    department: Optional[str] = None
    role: str


# ---------------- points ----------------
class CategoryOut(ORMModel):
    id: int
    r: str
    subcategory: str
    points: int


class AwardStudent(BaseModel):
    name: str
    student_id: Optional[int] = None
    grade: Optional[int] = None
    section: Optional[str] = None
    house: Optional[str] = None


class AwardRequest(BaseModel):
    mode: Literal["students", "house_competition"]
    category_id: Optional[int] = None
    students: List[AwardStudent] = []
    house: Optional[str] = None
    points: Optional[int] = None
    notes: Optional[str] = None
    event_date: Optional[date] = None


class PointCreate(BaseModel):
    student_name: str
    student_id: Optional[int] = None
    grade: Optional[int] = None
    section: Optional[str] = None
    house: Optional[str] = None
    r: str
    subcategory: str
    points: int   # negative => demerit
    notes: Optional[str] = None
    date_of_event: Optional[date] = None


class MeritEventOut(ORMModel):
    id: int
    student_id: Optional[int] = None
    student_name: Optional[str] = None
    staff_name: Optional[str] = None
    grade: Optional[int] = None
    section: Optional[str] = None
    house: Optional[str] = None
    r: Optional[str] = None
    subcategory: Optional[str] = None
    points: int
    notes: Optional[str] = None
    date_of_event: date


class AwardResponse(BaseModel):
    inserted: int


class HouseStanding(BaseModel):
    rank: int
    house: str
    points: float
    percentage: float


class MvpRow(BaseModel):
    student_name: str
    points: float


class LeaderboardResponse(BaseModel):
    start_date: date
    end_date: date
    standings: List[HouseStanding]
    mvps: Dict[str, List[MvpRow]]


# ---------------- analytics ----------------
class StaffMetric(BaseModel):
    points: float
    active_days: int
    last_active: Optional[date] = None


class StaffParticipationResponse(BaseModel):
    participation_rate: Optional[float]
    active_staff_count: int
    total_staff_count: int
    active_staff: List[str]
    inactive_staff: List[str]
    avg_points_per_staff: Optional[float]
    staff_metrics: Dict[str, StaffMetric]


class WeeklyPoints(BaseModel):
    week: str
    points: float


class PointEconomyResponse(BaseModel):
    total_points: float
    total_transactions: int
    points_per_student: Optional[float]
    points_per_staff: Optional[float]
    avg_points_per_transaction: Optional[float]
    weekly_trend: List[WeeklyPoints]


class CategoryBalanceResponse(BaseModel):
    category_distribution: Dict[str, float]
    category_percentages: Dict[str, float]
    dominant_category: Optional[str]
    is_balanced: bool
    balance_score: float


class HouseDistributionResponse(BaseModel):
    house_points: Dict[str, float]
    house_percentages: Dict[str, float]
    variance: float
    is_balanced: bool
    balance_score: float


class SnapshotOut(ORMModel):
    snapshot_date: date
    snapshot_type: str
    staff_participation_rate: Optional[float] = None
    active_staff_count: int
    total_staff_count: int
    points_per_student_avg: Optional[float] = None
    points_per_staff_avg: Optional[float] = None
    total_points_awarded: int
    total_transactions: int
    category_respect_pct: Optional[float] = None
    category_responsibility_pct: Optional[float] = None
    category_righteousness_pct: Optional[float] = None
    category_other_pct: Optional[float] = None
    house_balance_variance: Optional[float] = None
    house_points: Dict[str, float] = {}
    overall_health_score: int
    status: str
    participation_score: int
    category_balance_score: int
    house_balance_score: int
    consistency_score: int
    participation_change: Optional[float] = None
    points_change: Optional[float] = None


class HealthOverviewResponse(BaseModel):
    start_date: date
    end_date: date
    snapshot: SnapshotOut
    latest_saved: Optional[SnapshotOut] = None


class StaffEngagementRow(BaseModel):
    rank: int
    name: str
    email: str
    house: str
    tier: Literal["High", "Medium", "Low"]
    consistency: int
    streak: int
    points: float
    awards: int
    students: int
    last_active: Optional[str] = None


class StaffAnalyticsOut(ORMModel):
    staff_email: str
    staff_name: Optional[str] = None
    analysis_date: date
    analysis_period: str
    points_given_period: float
    active_days_period: int
    favorite_category: Optional[str] = None
    category_distribution: Optional[Dict[str, float]] = None
    house_bias_coefficient: Optional[float] = None
    house_distribution: Optional[Dict[str, float]] = None
    favored_house: Optional[str] = None
    outlier_flag: bool
    outlier_reason: Optional[str] = None
    z_score: Optional[float] = None
    school_avg_points: Optional[float] = None


# ---------------- behaviour ----------------
class UploadError(BaseModel):
    row: int
    message: str


class UploadResponse(BaseModel):
    upload_id: int
    analyzed: int
    students_updated: int
    errors: List[UploadError]


class ReprocessResponse(BaseModel):
    analyzed: int
    students_updated: int


class InsightOut(ORMModel):
    student_id: str
    time_window: str
    total_merits: int
    total_demerits: int
    net_score: int
    demerit_frequency: int
    trend: str
    risk_level: str
    primary_issue_type: Optional[str] = None
    interpretation: Optional[str] = None
    last_computed: Optional[datetime] = None


class PatternOut(ORMModel):
    student_id: str
    pattern_type: str
    pattern_description: Optional[str] = None
    confidence_score: float


# ---------------- interventions ----------------
class DomainOut(ORMModel):
    id: int
    domain_key: str
    domain_name: str
    description: Optional[str] = None
    expectations: List[str] = []
    repair_menu_immediate: List[str] = []
    repair_menu_restorative: List[str] = []


class ThresholdOut(ORMModel):
    threshold_name: str
    description: Optional[str] = None
    demerit_points: int
    intervention_level: str
    intervention_duration_days: Optional[int] = None
    additional_supports: Dict[str, Any] = {}


class IncidentAssessment(BaseModel):
    student_id: int
    domain_id: int
    is_safety_incident: bool = False
    demerit_assigned: bool = False
    ignored_prompts: int = Field(default=0, ge=0)
    affected_peers: bool = False
    disrupted_space: bool = False
    is_safety_risk: bool = False


class EscalationSummary(BaseModel):
    level: Literal["A", "B", "C"]
    color: str
    title: str
    description: str


class DecisionResponse(BaseModel):
    recommended_level: Literal["A", "B", "C"]
    reasons: List[str]
    is_pattern_student: bool
    prior_level_b_count: int
    summary: EscalationSummary


class LevelACreate(BaseModel):
    student_id: int
    domain_id: int
    intervention_type: Literal["pre_correct", "positive_narration", "quick_redirect", "redo",
                               "choice_consequence", "private_check", "micro_repair", "quick_reinforcement"]
    behavior_description: Optional[str] = None
    location: Optional[str] = None
    outcome: Literal["complied", "escalated", "partial"] = "complied"
    affected_others: bool = False


class LevelAOutcomeUpdate(BaseModel):
    outcome: Literal["complied", "escalated", "partial"]
    escalated_to_b: bool = False


class LevelAOut(ORMModel):
    id: int
    student_id: int
    staff_name: str
    domain_id: Optional[int] = None
    intervention_type: str
    behavior_description: Optional[str] = None
    location: Optional[str] = None
    outcome: str
    escalated_to_b: bool
    is_repeated_same_day: bool
    affected_others: bool
    is_pattern_student: bool
    event_timestamp: Optional[datetime] = None


class LevelAStats(BaseModel):
    total_count: int
    by_domain: Dict[str, int]
    by_outcome: Dict[str, int]
    escalation_rate: float


class LevelBCreate(BaseModel):
    student_id: int
    domain_id: int
    escalation_trigger: Literal["demerit_assigned", "3rd_incident_10days", "ignored_2plus_prompts",
                                "peer_impact", "space_disruption", "safety_risk", "threshold_10_points"]
    escalated_from_level_a_id: Optional[int] = None


class LevelBStepUpdate(BaseModel):
    step: int = Field(ge=1, le=7)
    data: Dict[str, Any]


class LevelBMonitoringStart(BaseModel):
    monitoring_method: Literal["checklist", "verbal_check", "written_log"]


class DailySuccessRate(BaseModel):
    date: date
    success_rate: float = Field(ge=0, le=100)


class LevelBOut(ORMModel):
    id: int
    student_id: int
    staff_name: str
    domain_id: Optional[int] = None
    escalation_trigger: str
    b1_regulate_completed: bool
    b1_regulate_notes: Optional[str] = None
    b2_pattern_naming_completed: bool
    b2_pattern_notes: Optional[str] = None
    b3_reflection_completed: bool
    b3_reflection_prompts_used: List[str] = []
    b4_repair_completed: bool
    b4_repair_action_selected: Optional[str] = None
    b5_replacement_completed: bool
    b5_replacement_skill_practiced: Optional[str] = None
    b6_reset_goal_completed: bool
    b6_reset_goal: Optional[str] = None
    b6_reset_goal_timeline_days: Optional[int] = None
    b7_documentation_completed: bool
    monitoring_start_date: Optional[date] = None
    monitoring_end_date: Optional[date] = None
    monitoring_method: Optional[str] = None
    daily_success_rates: Dict[str, float] = {}
    final_success_rate: Optional[float] = None
    status: str
    escalated_to_c: bool
    escalation_reason: Optional[str] = None
    escalated_from_level_a_id: Optional[int] = None
    completion_percentage: int = 0


class LevelBCompleteResponse(BaseModel):
    intervention: LevelBOut
    should_escalate: bool


class LevelCCreate(BaseModel):
    student_id: int
    trigger_type: Literal["safety_incident", "no_improvement_2_level_b", "chronic_pattern",
                          "post_oss_reentry", "threshold_20_points", "threshold_30_points",
                          "threshold_35_points", "threshold_40_points", "admin_referral"]
    case_type: Optional[Literal["standard", "lite", "intensive"]] = None
    domain_focus_id: Optional[int] = None
    case_manager_name: Optional[str] = None
    escalated_from_level_b_ids: List[int] = []
    sis_demerit_points_at_creation: Optional[int] = None


class CaseManagerAssign(BaseModel):
    case_manager_name: str


class ContextPacketUpdate(BaseModel):
    incident_summary: Optional[str] = None
    pattern_review: Optional[str] = None
    environmental_factors: Optional[List[str]] = None
    prior_interventions_summary: Optional[str] = None


class AdminResponseCreate(BaseModel):
    admin_response_type: Literal["detention", "iss", "oss", "behavior_contract", "parent_conference", "other"]
    admin_response_details: Optional[str] = None
    consequence_start_date: Optional[date] = None
    consequence_end_date: Optional[date] = None


class ChecklistItem(BaseModel):
    item: str
    completed: bool = False


class ReentryPlanCreate(BaseModel):
    support_plan_goal: str
    support_plan_strategies: List[str]
    adult_mentor_name: Optional[str] = None
    repair_actions: List[Dict[str, Any]] = []
    reentry_date: date
    reentry_type: Literal["standard", "restricted"] = "standard"
    reentry_restrictions: List[str] = []
    reentry_checklist: Optional[List[ChecklistItem]] = None


class DailyCheckIn(BaseModel):
    date: date
    rating: Optional[int] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = None


class CaseClose(BaseModel):
    outcome_status: Literal["closed_success", "closed_continued_support", "closed_escalated"]
    outcome_notes: Optional[str] = None
    closure_criteria: Optional[str] = None


class LevelCOut(ORMModel):
    id: int
    student_id: int
    case_manager_name: Optional[str] = None
    trigger_type: str
    case_type: str
    domain_focus_id: Optional[int] = None
    incident_summary: Optional[str] = None
    pattern_review: Optional[str] = None
    environmental_factors: List[str] = []
    prior_interventions_summary: Optional[str] = None
    context_packet_completed: bool
    admin_response_type: Optional[str] = None
    admin_response_details: Optional[str] = None
    consequence_start_date: Optional[date] = None
    consequence_end_date: Optional[date] = None
    admin_response_completed: bool
    support_plan_goal: Optional[str] = None
    support_plan_strategies: List[str] = []
    adult_mentor_name: Optional[str] = None
    repair_actions: List[Dict[str, Any]] = []
    reentry_date: Optional[date] = None
    reentry_type: Optional[str] = None
    reentry_restrictions: List[str] = []
    reentry_checklist: List[ChecklistItem] = []
    reentry_planning_completed: bool
    monitoring_duration_days: int
    monitoring_schedule: List[Dict[str, Any]] = []
    review_dates: List[str] = []
    daily_check_ins: List[Dict[str, Any]] = []
    closure_criteria: Optional[str] = None
    closure_date: Optional[date] = None
    outcome_status: Optional[str] = None
    outcome_notes: Optional[str] = None
    escalated_from_level_b_ids: List[int] = []
    sis_demerit_points_at_creation: Optional[int] = None
    status: str


class ReentryCreate(BaseModel):
    student_id: int
    source_type: Literal["level_b", "detention", "iss", "oss"]
    level_b_id: Optional[int] = None
    level_c_id: Optional[int] = None
    reentry_date: date
    reentry_time: Optional[str] = None
    receiving_teacher_name: Optional[str] = None
    monitoring_type: Literal["3_day", "5_day", "10_day"]


class ChecklistUpdate(BaseModel):
    checklist: List[ChecklistItem]


class ScriptRequest(BaseModel):
    reset_goal: str


class DailyLog(BaseModel):
    date: date
    met_goal: bool
    notes: Optional[str] = None


class ReentryComplete(BaseModel):
    outcome: Literal["success", "partial", "escalated"]
    notes: Optional[str] = None


class ReentryOut(ORMModel):
    id: int
    student_id: int
    source_type: str
    level_b_id: Optional[int] = None
    level_c_id: Optional[int] = None
    reentry_date: date
    reentry_time: Optional[str] = None
    receiving_teacher_name: Optional[str] = None
    readiness_checklist: List[ChecklistItem] = []
    readiness_verified_by: Optional[str] = None
    readiness_verified_at: Optional[datetime] = None
    teacher_script: Optional[str] = None
    reset_goal_from_intervention: Optional[str] = None
    first_behavioral_rep_completed: bool
    monitoring_start_date: Optional[date] = None
    monitoring_end_date: Optional[date] = None
    monitoring_type: Optional[str] = None
    monitoring_method: Optional[str] = None
    daily_logs: List[Dict[str, Any]] = []
    outcome: Optional[str] = None
    outcome_notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    status: str


class InterventionSummary(BaseModel):
    level_a_count: int
    level_b_count: int
    level_c_count: int
    reentry_count: int
    distribution_healthy: bool
    a_to_b_count: int
    a_to_b_rate: float
    b_to_c_count: int
    b_to_c_rate: float
    level_b_completed: int
    level_b_success_rate: float


# ---------------- alerts + cron ----------------
class AlertOut(ORMModel):
    id: int
    alert_type: str
    severity: str
    title: Optional[str] = None
    message: Optional[str] = None
    recommended_action: Optional[str] = None
    triggered_by_data: Optional[Dict[str, Any]] = None
    related_staff_email: Optional[str] = None
    related_metric: Optional[str] = None
    metric_value: Optional[float] = None
    threshold_value: Optional[float] = None
    status: str
    acknowledged_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class AlertResolve(BaseModel):
    notes: Optional[str] = None


class CronResponse(BaseModel):
    success: bool
    message: str
    results: Dict[str, Any]
    errors: List[str] = []


class StudentThresholdStatus(BaseModel):
    student_id: int
    demerit_points: int
    threshold: Optional[ThresholdOut] = None


class LoggingGuidance(BaseModel):
    should_log: bool
    reason: str
