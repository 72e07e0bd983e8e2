# models.py

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Optional
from enum import Enum


# ─────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────

class Category(str, Enum):
    # L'ordre de déclaration sert de départage (focus areas, diversité)
    PROSPECTING = "prospecting"
    NURTURING = "nurturing"
    CLIENT_CARE = "client_care"
    ADMINISTRATIVE = "administrative"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @property
    def rank(self) -> int:
        # 1 / 2 / 3, utilisé par la pénalité de fin de journée
        return {"easy": 1, "medium": 2, "hard": 3}[self.value]


class Unit(str, Enum):
    LEADS = "leads"
    CALLS = "calls"
    EMAILS = "emails"
    APPOINTMENTS = "appointments"
    TOUCHES = "touches"
    UPDATES = "updates"
    REVIEWS = "reviews"
    ANALYSES = "analyses"


class LeadSource(str, Enum):
    WEB_LEADS = "web_leads"
    DOORKNOCKING = "doorknocking"
    OPEN_HOUSES = "open_houses"
    SPHERE_INFLUENCE = "sphere_influence"
    REFERRALS = "referrals"
    SOCIAL_MEDIA = "social_media"
    PAID_ADS = "paid_ads"
    NETWORKING = "networking"


class PriorityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TrackStatus(str, Enum):
    AHEAD = "Ahead"
    ON_TRACK = "On-Track"
    BEHIND = "Behind"


class PlanStatus(str, Enum):
    GENERATED = "generated"
    IN_PROGRESS = "in_progress"
    EVALUATED = "evaluated"


class DealStatus(str, Enum):
    ACTIVE = "active"
    WON = "won"
    LOST = "lost"


# ─────────────────────────────────────────
# SÉRIALISATION
# ─────────────────────────────────────────

def to_json(obj):
    """
    Nettoie récursivement une structure pour JSON.
    date/datetime → ISO, Enum → valeur, tuple → list.
    """
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {
            (k.value if isinstance(k, Enum) else k): to_json(v)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [to_json(i) for i in obj]
    return obj


def parse_date(value) -> Optional[date]:
    """Accepte date, datetime ou chaîne ISO. Lève ValueError si illisible."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


# ─────────────────────────────────────────
# MÉTRIQUES BRUTES
# Un snapshot par agent et par jour, jamais modifié
# ─────────────────────────────────────────

@dataclass(frozen=True)
class PipelineCounts:
    prospecting: int = 0
    nurturing: int = 0
    client_care: int = 0
    closed: int = 0
    total_leads: int = 0


@dataclass(frozen=True)
class StageVelocity:
    # Jours moyens de transition (fenêtre glissante 30 jours)
    prospecting_to_nurturing: float = 0.0
    nurturing_to_client_care: float = 0.0
    client_care_to_close: float = 0.0
    overall: float = 0.0


@dataclass(frozen=True)
class ProspectingActivity:
    calls_logged: int = 0
    new_leads_added: int = 0
    appointments_set: int = 0
    social_engagements: int = 0


@dataclass(frozen=True)
class NurturingActivity:
    follow_up_calls: int = 0
    emails_sent: int = 0
    appointments_set: int = 0
    notes_added: int = 0


@dataclass(frozen=True)
class ClientCareActivity:
    client_touches: int = 0
    appointments_set: int = 0
    offers_created: int = 0
    escrow_activities: int = 0


@dataclass(frozen=True)
class AdministrativeActivity:
    crm_updates: int = 0
    contracts_reviewed: int = 0
    market_analyses: int = 0
    compliance_items: int = 0


@dataclass(frozen=True)
class ActivityVolume:
    prospecting: ProspectingActivity = field(default_factory=ProspectingActivity)
    nurturing: NurturingActivity = field(default_factory=NurturingActivity)
    client_care: ClientCareActivity = field(default_factory=ClientCareActivity)
    administrative: AdministrativeActivity = field(
        default_factory=AdministrativeActivity
    )

    def total(self) -> int:
        return sum(
            sum(asdict(section).values())
            for section in (
                self.prospecting, self.nurturing,
                self.client_care, self.administrative
            )
        )


@dataclass(frozen=True)
class DormantLeads:
    seven_days: int = 0
    thirty_days: int = 0
    sixty_days: int = 0
    ninety_days: int = 0
    total: int = 0


@dataclass(frozen=True)
class DataHygiene:
    duplicate_contacts: int = 0
    missing_tags: int = 0
    stale_deals: int = 0
    total_leads: int = 0

    @property
    def clean_ratio(self) -> float:
        # Base vide → considérée propre
        if self.total_leads <= 0:
            return 1.0
        dirty = self.duplicate_contacts + self.missing_tags
        return max(0.0, 1 - dirty / self.total_leads)


@dataclass(frozen=True)
class Targets:
    annual_goal: float = 0.0
    remaining_work_days: int = 1
    daily_lead_target: int = 1
    daily_activity_target: int = 2
    actual_gci: float = 0.0
    target_gci: float = 0.0


@dataclass(frozen=True)
class RawMetrics:
    user_id: str
    date: date
    pipeline: PipelineCounts = field(default_factory=PipelineCounts)
    velocity: StageVelocity = field(default_factory=StageVelocity)
    activity: ActivityVolume = field(default_factory=ActivityVolume)
    dormant: DormantLeads = field(default_factory=DormantLeads)
    hygiene: DataHygiene = field(default_factory=DataHygiene)
    targets: Targets = field(default_factory=Targets)

    def to_dict(self) -> dict:
        data = to_json(asdict(self))
        data["hygiene"]["clean_ratio"] = self.hygiene.clean_ratio
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RawMetrics":
        activity = data.get("activity") or {}
        hygiene = dict(data.get("hygiene") or {})
        hygiene.pop("clean_ratio", None)
        return cls(
            user_id=data["user_id"],
            date=parse_date(data["date"]),
            pipeline=PipelineCounts(**(data.get("pipeline") or {})),
            velocity=StageVelocity(**(data.get("velocity") or {})),
            activity=ActivityVolume(
                prospecting=ProspectingActivity(**(activity.get("prospecting") or {})),
                nurturing=NurturingActivity(**(activity.get("nurturing") or {})),
                client_care=ClientCareActivity(**(activity.get("client_care") or {})),
                administrative=AdministrativeActivity(
                    **(activity.get("administrative") or {})
                ),
            ),
            dormant=DormantLeads(**(data.get("dormant") or {})),
            hygiene=DataHygiene(**hygiene),
            targets=Targets(**(data.get("targets") or {})),
        )


# ─────────────────────────────────────────
# SCORES, GAPS, DELTAS
# ─────────────────────────────────────────

@dataclass(frozen=True)
class ScoreWeights:
    prospecting: float = 0.30
    nurturing: float = 0.30
    client_care: float = 0.25
    administrative: float = 0.15

    def for_category(self, category: Category) -> float:
        return getattr(self, Category(category).value)


@dataclass(frozen=True)
class SubScores:
    prospecting: int
    nurturing: int
    client_care: int
    administrative: int
    overall: int

    def for_category(self, category: Category) -> int:
        return getattr(self, Category(category).value)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ActivityGaps:
    prospecting: int
    nurturing: int
    client_care: int
    administrative: int

    def for_category(self, category: Category) -> int:
        return getattr(self, Category(category).value)

    def total(self) -> int:
        return sum(self.for_category(c) for c in Category)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ActivityGaps":
        return cls(**{c.value: int(data.get(c.value, 0)) for c in Category})


@dataclass(frozen=True)
class ProspectingDeltas:
    new_leads: int = 0
    calls: int = 0
    social_engagements: int = 0


@dataclass(frozen=True)
class NurturingDeltas:
    follow_up_calls: int = 0
    emails: int = 0
    appointments: int = 0


@dataclass(frozen=True)
class ClientCareDeltas:
    weekly_touches: int = 0
    showings: int = 0
    offers: int = 0


@dataclass(frozen=True)
class AdministrativeDeltas:
    crm_updates: int = 0
    contract_reviews: int = 0
    market_analyses: int = 0


@dataclass(frozen=True)
class ActivityDeltas:
    prospecting: ProspectingDeltas = field(default_factory=ProspectingDeltas)
    nurturing: NurturingDeltas = field(default_factory=NurturingDeltas)
    client_care: ClientCareDeltas = field(default_factory=ClientCareDeltas)
    administrative: AdministrativeDeltas = field(default_factory=AdministrativeDeltas)

    def for_category(self, category: Category):
        return getattr(self, Category(category).value)

    def get(self, category: Category, name: str) -> int:
        return getattr(self.for_category(category), name, 0)

    def total(self) -> int:
        return sum(
            sum(asdict(self.for_category(c)).values()) for c in Category
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ActivityDeltas":
        return cls(
            prospecting=ProspectingDeltas(**(data.get("prospecting") or {})),
            nurturing=NurturingDeltas(**(data.get("nurturing") or {})),
            client_care=ClientCareDeltas(**(data.get("client_care") or {})),
            administrative=AdministrativeDeltas(**(data.get("administrative") or {})),
        )


@dataclass(frozen=True)
class ActionPlan:
    date: date
    user_id: str
    focus_areas: tuple[Category, ...]
    gaps: ActivityGaps
    deltas: ActivityDeltas
    total_activities_needed: int
    priority_level: PriorityLevel

    def to_dict(self) -> dict:
        return to_json(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> "ActionPlan":
        return cls(
            date=parse_date(data["date"]),
            user_id=data["user_id"],
            focus_areas=tuple(Category(c) for c in data.get("focus_areas", [])),
            gaps=ActivityGaps.from_dict(data.get("gaps") or {}),
            deltas=ActivityDeltas.from_dict(data.get("deltas") or {}),
            total_activities_needed=int(data.get("total_activities_needed", 0)),
            priority_level=PriorityLevel(data.get("priority_level", "low")),
        )


# ─────────────────────────────────────────
# TÂCHES
# ─────────────────────────────────────────

@dataclass(frozen=True)
class TaskTemplate:
    id: str
    title: str                          # contient {target}
    description: str                    # contient {target}
    category: Category
    unit: Unit
    base_target: int
    max_auto_scale: int
    difficulty: Difficulty
    base_points: int
    lead_sources: tuple[str, ...] = ()  # vide = aucune restriction
    cooldown_days: int = 0

    def render_title(self, target: int) -> str:
        return self.title.replace("{target}", str(target))

    def render_description(self, target: int) -> str:
        return self.description.replace("{target}", str(target))


@dataclass
class GeneratedTask:
    # Identité
    id: str
    template_id: str
    title: str
    description: str
    category: Category

    # Objectif
    target: int
    unit: Unit
    difficulty: Difficulty
    points: int

    related_lead_sources: list[str] = field(default_factory=list)
    priority: float = 0.0
    focus_area: bool = False

    # Suivi
    pre_selected: bool = False
    progress: int = 0
    completed: bool = False
    completed_at: Optional[datetime] = None
    cooldown_until: Optional[date] = None

    def to_dict(self) -> dict:
        return to_json(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> "GeneratedTask":
        return cls(
            id=data["id"],
            template_id=data["template_id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            category=Category(data["category"]),
            target=int(data["target"]),
            unit=Unit(data["unit"]),
            difficulty=Difficulty(data["difficulty"]),
            points=int(data["points"]),
            related_lead_sources=list(data.get("related_lead_sources") or []),
            priority=float(data.get("priority", 0.0)),
            focus_area=bool(data.get("focus_area", False)),
            pre_selected=bool(data.get("pre_selected", False)),
            progress=int(data.get("progress", 0)),
            completed=bool(data.get("completed", False)),
            completed_at=parse_datetime(data.get("completed_at")),
            cooldown_until=parse_date(data.get("cooldown_until")),
        )


# ─────────────────────────────────────────
# STREAK
# ─────────────────────────────────────────

@dataclass
class StreakData:
    current_streak: int = 0
    longest_streak: int = 0
    last_completion_date: Optional[date] = None
    total_days: int = 0
    streak_broken: bool = False
    penalty_applied: int = 0
    milestone_rewards: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return to_json(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> "StreakData":
        return cls(
            current_streak=int(data.get("current_streak", 0)),
            longest_streak=int(data.get("longest_streak", 0)),
            last_completion_date=parse_date(data.get("last_completion_date")),
            total_days=int(data.get("total_days", 0)),
            streak_broken=bool(data.get("streak_broken", False)),
            penalty_applied=int(data.get("penalty_applied", 0)),
            milestone_rewards=[int(m) for m in data.get("milestone_rewards") or []],
        )


# ─────────────────────────────────────────
# PLAN QUOTIDIEN
# Un par agent et par date calendaire
# ─────────────────────────────────────────

REQUIRED_DAILY_POINTS = 70


@dataclass
class DailyTaskPlan:
    user_id: str
    date: date
    track_status: TrackStatus
    candidate_tasks: list[GeneratedTask] = field(default_factory=list)
    selected_task_ids: list[str] = field(default_factory=list)
    total_possible_points: int = 0
    required_points: int = REQUIRED_DAILY_POINTS
    completed_tasks: int = 0
    completed_points: int = 0
    streak: StreakData = field(default_factory=StreakData)
    status: PlanStatus = PlanStatus.GENERATED
    evaluation: Optional[dict] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_updated: datetime = field(default_factory=datetime.utcnow)

    @property
    def selected_tasks(self) -> list[GeneratedTask]:
        by_id = {t.id: t for t in self.candidate_tasks}
        return [by_id[i] for i in self.selected_task_ids if i in by_id]

    def find_candidate(self, task_id: str) -> Optional[GeneratedTask]:
        for task in self.candidate_tasks:
            if task.id == task_id:
                return task
        return None

    def to_dict(self) -> dict:
        data = to_json(asdict(self))
        data["selected_tasks"] = [t.to_dict() for t in self.selected_tasks]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "DailyTaskPlan":
        return cls(
            user_id=data["user_id"],
            date=parse_date(data["date"]),
            track_status=TrackStatus(data["track_status"]),
            candidate_tasks=[
                GeneratedTask.from_dict(t) for t in data.get("candidate_tasks") or []
            ],
            selected_task_ids=list(data.get("selected_task_ids") or []),
            total_possible_points=int(data.get("total_possible_points", 0)),
            required_points=int(data.get("required_points", REQUIRED_DAILY_POINTS)),
            completed_tasks=int(data.get("completed_tasks", 0)),
            completed_points=int(data.get("completed_points", 0)),
            streak=StreakData.from_dict(data.get("streak") or {}),
            status=PlanStatus(data.get("status", PlanStatus.GENERATED.value)),
            evaluation=data.get("evaluation"),
            created_at=parse_datetime(data.get("created_at")) or datetime.utcnow(),
            last_updated=parse_datetime(data.get("last_updated")) or datetime.utcnow(),
        )


@dataclass
class CompletionEvent:
    # Journal append-only : alimente cooldowns et volume d'activité
    user_id: str
    task_id: str
    template_id: str
    category: Category
    unit: Unit
    target: int
    points: int
    title: str = ""
    description: str = ""
    completed_at: datetime = field(default_factory=datetime.utcnow)
    cooldown_until: Optional[date] = None

    def to_dict(self) -> dict:
        return to_json(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> "CompletionEvent":
        return cls(
            user_id=data["user_id"],
            task_id=data["task_id"],
            template_id=data["template_id"],
            category=Category(data["category"]),
            unit=Unit(data["unit"]),
            target=int(data.get("target", 0)),
            points=int(data.get("points", 0)),
            title=data.get("title", ""),
            description=data.get("description", ""),
            completed_at=parse_datetime(data.get("completed_at")) or datetime.utcnow(),
            cooldown_until=parse_date(data.get("cooldown_until")),
        )


# ─────────────────────────────────────────
# CRM (normalisé par les connecteurs)
# ─────────────────────────────────────────

@dataclass
class Contact:
    id: str
    user_id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    stage: str = ""
    source: str = ""
    tags: list[str] = field(default_factory=list)

    created_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None

    # Méta
    connector_source: str = ""
    raw_id: str = ""


@dataclass
class Deal:
    id: str
    user_id: str
    title: str = ""
    amount: float = 0.0
    stage: str = ""
    status: DealStatus = DealStatus.ACTIVE

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    connector_source: str = ""
    raw_id: str = ""


@dataclass
class Activity:
    id: str
    user_id: str
    type: str = ""                     # "call", "email", "note"...
    contact_id: str = ""
    occurred_at: Optional[datetime] = None

    connector_source: str = ""
    raw_id: str = ""
