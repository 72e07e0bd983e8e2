# orchestrator/daily_plan.py

"""
Orchestrateur du plan quotidien, seul écrivain des plans et des streaks.

Cycle de vie par agent et par date :
    (aucun plan) → generated → in_progress → evaluated

Génération (une fois par jour) :
1. métriques → scores (poids trimestriels) → écarts → plan d'action
2. statut de rythme (Ahead / On-Track / Behind) depuis GCI réel / GCI cible
3. candidats : modèles hors cooldown, mis à l'échelle selon l'écart
4. diversité : la meilleure tâche de chaque catégorie < 90, puis
   complément par points jusqu'à 15
5. classement : 0.45 × poids d'écart + 0.35 × retard + 0.20 × préférence
6. 10 meilleurs candidats conservés, 5 pré-sélectionnés

Les opérations d'un même agent sur un même jour sont sérialisées
(verrou par clé, dans le process).
"""

import logging
import math
import os
import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Iterator, Optional
from zoneinfo import ZoneInfo

from engine.gap_analysis import calculate_gaps, create_action_plan
from engine.scoring import calculate_all_scores, get_quarterly_weights
from engine.task_generator import compute_points, is_lead_source_compatible
from engine.templates import TemplateLibrary, get_template_library
from models import (
    ActivityGaps,
    Category,
    CompletionEvent,
    DailyTaskPlan,
    GeneratedTask,
    PlanStatus,
    StreakData,
    SubScores,
    Targets,
    TaskTemplate,
    TrackStatus,
    parse_date,
)
from orchestrator.profile import get_agent_profile
from orchestrator.streak import (
    MIN_POINTS_FOR_STREAK,
    MIN_TASKS_FOR_STREAK,
    StreakTracker,
    daily_score_delta,
)
from services.database import (
    ACTION_PLANS,
    TASK_COMPLETIONS,
    BaseStore,
    get_store,
    plan_key,
    streak_key,
)
from services.metrics import MetricsCollector

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
# PARAMÈTRES
# ─────────────────────────────────────────

CATEGORY_SATISFIED_SCORE = 90
MAX_DIVERSE_CANDIDATES = 15
MAX_RANKED_CANDIDATES = 10
PRESELECTED_COUNT = 5

AHEAD_PACE = 1.05
ON_TRACK_PACE = 0.90

GAP_WEIGHT = 0.45
PACE_WEIGHT = 0.35
PREFERENCE_WEIGHT = 0.20
# Pas encore de signal de préférence réel : valeur fixe
PERSONAL_PREFERENCE = 0.5

PACE_PENALTIES = {
    TrackStatus.BEHIND: 1.0,
    TrackStatus.ON_TRACK: 0.5,
    TrackStatus.AHEAD: 0.0,
}

# Fenêtre de recherche des complétions pour les cooldowns
COOLDOWN_LOOKBACK_DAYS = 30

DEFAULT_TIMEZONE = "America/New_York"


def local_now() -> datetime:
    """Heure locale des agents (SCHEDULER_TIMEZONE), sans tzinfo."""
    tz = ZoneInfo(os.getenv("SCHEDULER_TIMEZONE", DEFAULT_TIMEZONE))
    return datetime.now(tz).replace(tzinfo=None)


# ─────────────────────────────────────────
# RÉSULTATS
# ─────────────────────────────────────────

class ResultStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"      # pas de plan, tâche inconnue
    INVALID = "invalid"          # entrée rejetée avant toute mutation


@dataclass
class PlanResult:
    status: ResultStatus
    plan: Optional[DailyTaskPlan] = None
    task: Optional[GeneratedTask] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.OK


@dataclass
class EvaluationResult:
    status: ResultStatus
    user_id: str
    date: Optional[date] = None
    qualified: bool = False
    completed_tasks: int = 0
    completed_points: int = 0
    streak: Optional[StreakData] = None
    penalty: int = 0
    new_milestones: list[int] = field(default_factory=list)
    bonus_points: int = 0
    score_delta: int = 0
    already_evaluated: bool = False
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.OK

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "user_id": self.user_id,
            "date": self.date.isoformat() if self.date else None,
            "qualified": self.qualified,
            "completed_tasks": self.completed_tasks,
            "completed_points": self.completed_points,
            "required_tasks": MIN_TASKS_FOR_STREAK,
            "required_points": MIN_POINTS_FOR_STREAK,
            "streak": self.streak.to_dict() if self.streak else None,
            "penalty": self.penalty,
            "new_milestones": list(self.new_milestones),
            "bonus_points": self.bonus_points,
            "score_delta": self.score_delta,
            "already_evaluated": self.already_evaluated,
            "error": self.error,
        }


# ─────────────────────────────────────────
# VERROUS PAR CLÉ
# ─────────────────────────────────────────

class KeyedLock:
    """
    Un threading.Lock par clé (user + jour, ou user pour le streak).
    L'entrée est supprimée quand plus aucun thread ne la tient ni ne l'attend.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # clé → [verrou, nombre de détenteurs + attentes]
        self._locks: dict[str, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def __call__(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


# ─────────────────────────────────────────
# FONCTIONS PURES
# ─────────────────────────────────────────

def determine_track_status(targets: Targets) -> TrackStatus:
    """Rythme = GCI réel / GCI cible à date (cible <= 0 traitée comme 1)."""
    target = targets.target_gci if targets.target_gci > 0 else 1
    pace = targets.actual_gci / target

    if pace >= AHEAD_PACE:
        return TrackStatus.AHEAD
    if pace >= ON_TRACK_PACE:
        return TrackStatus.ON_TRACK
    return TrackStatus.BEHIND


def priority_score(category: Category, gaps: ActivityGaps, track: TrackStatus) -> float:
    total = gaps.total()
    gap_weight = gaps.for_category(category) / total if total > 0 else 0.25

    return round(
        GAP_WEIGHT * gap_weight
        + PACE_WEIGHT * PACE_PENALTIES[track]
        + PREFERENCE_WEIGHT * PERSONAL_PREFERENCE,
        6
    )


def scaled_target(template: TaskTemplate, gap: int) -> int:
    """+1 unité par tranche (entamée) de 10 points d'écart, plafonné."""
    return min(template.base_target + math.ceil(gap / 10), template.max_auto_scale)


def apply_diversity_rule(
    tasks: list[GeneratedTask],
    subscores: SubScores
) -> tuple[list[GeneratedTask], set[str]]:
    """
    → la meilleure tâche (points) de chaque catégorie < 90
    → complément par points décroissants jusqu'à 15
    Retourne (candidats, ids garantis).
    """
    guaranteed: list[GeneratedTask] = []

    for category in Category:
        if subscores.for_category(category) >= CATEGORY_SATISFIED_SCORE:
            continue
        in_category = [t for t in tasks if t.category == category]
        if in_category:
            guaranteed.append(max(in_category, key=lambda t: t.points))

    guaranteed_ids = {t.id for t in guaranteed}
    remaining = sorted(
        (t for t in tasks if t.id not in guaranteed_ids),
        key=lambda t: -t.points
    )
    room = max(0, MAX_DIVERSE_CANDIDATES - len(guaranteed))

    return guaranteed + remaining[:room], guaranteed_ids


def rank_candidates(
    tasks: list[GeneratedTask],
    guaranteed_ids: set[str],
    gaps: ActivityGaps,
    track: TrackStatus
) -> list[GeneratedTask]:
    """
    Classe par priorité puis points, garde les 10 premiers.
    Les tâches garanties par la diversité ne sont jamais coupées.
    """
    for task in tasks:
        task.priority = priority_score(task.category, gaps, track)

    ranked = sorted(tasks, key=lambda t: (-t.priority, -t.points))

    kept = [t for t in ranked if t.id in guaranteed_ids][:MAX_RANKED_CANDIDATES]
    for task in ranked:
        if len(kept) >= MAX_RANKED_CANDIDATES:
            break
        if task.id not in guaranteed_ids:
            kept.append(task)

    return sorted(kept, key=lambda t: (-t.priority, -t.points))


# ─────────────────────────────────────────
# ORCHESTRATEUR
# ─────────────────────────────────────────

class DailyPlanOrchestrator:

    def __init__(
        self,
        store: Optional[BaseStore] = None,
        collector: Optional[MetricsCollector] = None,
        library: Optional[TemplateLibrary] = None,
        streaks: Optional[StreakTracker] = None,
        clock: Callable[[], datetime] = local_now
    ):
        self.store = store or get_store()
        self.collector = collector or MetricsCollector(self.store)
        self.library = library or get_template_library()
        self.streaks = streaks or StreakTracker(self.store)
        self.clock = clock
        self._locks = KeyedLock()

    def today(self) -> date:
        return self.clock().date()

    # ─────────────────────────────────────────
    # GÉNÉRATION
    # ─────────────────────────────────────────

    def get_todays_plan(self, user_id: str) -> DailyTaskPlan:
        """Plan du jour ; généré au premier appel, relu ensuite."""
        return self.generate_daily_plan(user_id, self.today())

    def generate_daily_plan(
        self,
        user_id: str,
        day: date,
        force: bool = False
    ) -> DailyTaskPlan:
        """
        Idempotent : un plan déjà persisté pour ce jour est retourné tel quel.
        force=True régénère, sauf si des tâches sont déjà complétées.
        """
        with self._locks(plan_key(user_id, day)):
            existing = self._load_plan(user_id, day)
            if existing is not None:
                if not force:
                    return existing
                if existing.completed_tasks > 0 or existing.status == PlanStatus.EVALUATED:
                    logger.warning(
                        f"[daily_plan] {user_id} {day} — régénération refusée, "
                        f"plan déjà entamé"
                    )
                    return existing

            plan = self._build_plan(user_id, day)
            self._save_plan(plan)

        logger.info(
            f"[daily_plan] {user_id} {day} — {len(plan.candidate_tasks)} candidats, "
            f"{len(plan.selected_task_ids)} pré-sélectionnés, {plan.track_status.value}"
        )
        return plan

    def _build_plan(self, user_id: str, day: date) -> DailyTaskPlan:
        metrics = self.collector.collect_raw_metrics(user_id, day)
        self.collector.save_metrics(metrics)

        subscores = calculate_all_scores(metrics, get_quarterly_weights(day))
        gaps = calculate_gaps(subscores)

        action_plan = create_action_plan(user_id, gaps, day)
        self.store.append(ACTION_PLANS, user_id, day, action_plan)

        track = determine_track_status(metrics.targets)
        profile = get_agent_profile(user_id, self.store)

        candidates = self._build_candidates(
            user_id, day, gaps, subscores,
            focus_areas=set(action_plan.focus_areas),
            lead_sources=profile.get("lead_sources") or [],
        )
        diverse, guaranteed_ids = apply_diversity_rule(candidates, subscores)
        ranked = rank_candidates(diverse, guaranteed_ids, gaps, track)

        selected = ranked[:PRESELECTED_COUNT]
        for task in selected:
            task.pre_selected = True

        now = self.clock()
        return DailyTaskPlan(
            user_id=user_id,
            date=day,
            track_status=track,
            candidate_tasks=ranked,
            selected_task_ids=[t.id for t in selected],
            total_possible_points=sum(t.points for t in ranked),
            streak=self.streaks.load(user_id),
            status=PlanStatus.GENERATED,
            created_at=now,
            last_updated=now,
        )

    def _build_candidates(
        self,
        user_id: str,
        day: date,
        gaps: ActivityGaps,
        subscores: SubScores,
        focus_areas: set,
        lead_sources: list[str]
    ) -> list[GeneratedTask]:
        on_cooldown = self._templates_on_cooldown(user_id, day)
        tasks = []

        for template in self.library:
            if template.id in on_cooldown:
                continue
            # Filtre par source seulement si l'agent en a déclaré
            if lead_sources and not is_lead_source_compatible(
                template.lead_sources, lead_sources
            ):
                continue

            target = scaled_target(template, gaps.for_category(template.category))
            if target <= 0:
                continue

            tasks.append(GeneratedTask(
                id=f"{template.id}-{day:%Y%m%d}",
                template_id=template.id,
                title=template.render_title(target),
                description=template.render_description(target),
                category=template.category,
                target=target,
                unit=template.unit,
                difficulty=template.difficulty,
                points=compute_points(target, template.unit, template.difficulty),
                related_lead_sources=list(template.lead_sources),
                focus_area=template.category in focus_areas,
            ))

        return tasks

    def _templates_on_cooldown(self, user_id: str, day: date) -> set[str]:
        """
        Dernière complétion par modèle ; indisponible tant que
        date_complétion + cooldown >= jour du plan.
        """
        events = self.store.query(
            TASK_COMPLETIONS, user_id,
            day - timedelta(days=COOLDOWN_LOOKBACK_DAYS),
            day + timedelta(days=1)
        )

        latest: dict[str, date] = {}
        for raw in events:
            template_id = raw.get("template_id")
            completed_at = parse_date(raw.get("completed_at"))
            if not template_id or completed_at is None:
                continue
            if template_id not in latest or completed_at > latest[template_id]:
                latest[template_id] = completed_at

        blocked = set()
        for template_id, completed_on in latest.items():
            cooldown = self.library.cooldown_days(template_id)
            if cooldown > 0 and completed_on + timedelta(days=cooldown) >= day:
                blocked.add(template_id)
        return blocked

    # ─────────────────────────────────────────
    # PROGRESSION
    # ─────────────────────────────────────────

    def update_task_progress(
        self,
        user_id: str,
        task_id: str,
        progress,
        day: Optional[date] = None
    ) -> PlanResult:
        if isinstance(progress, bool) or not isinstance(progress, (int, float)):
            return PlanResult(ResultStatus.INVALID, error="progress doit être un nombre")
        if math.isnan(progress):
            return PlanResult(ResultStatus.INVALID, error="progress invalide (NaN)")

        value = int(round(max(0, min(100, progress))))
        day = day or self.today()

        with self._locks(plan_key(user_id, day)):
            plan = self._load_plan(user_id, day)
            if plan is None:
                return PlanResult(ResultStatus.NOT_FOUND, error="Aucun plan pour aujourd'hui")
            if plan.status == PlanStatus.EVALUATED:
                return PlanResult(ResultStatus.INVALID, plan=plan, error="Journée déjà évaluée")
            if task_id not in plan.selected_task_ids:
                return PlanResult(ResultStatus.NOT_FOUND, plan=plan, error="Tâche introuvable")

            task = plan.find_candidate(task_id)

            if not task.completed:
                task.progress = value

                if value >= 100:
                    self._mark_completed(plan, task)

            plan.status = PlanStatus.IN_PROGRESS
            plan.last_updated = self.clock()
            self._save_plan(plan)

        return PlanResult(ResultStatus.OK, plan=plan, task=task)

    def complete_task(self, user_id: str, task_id: str, day: Optional[date] = None) -> PlanResult:
        return self.update_task_progress(user_id, task_id, 100, day)

    def _mark_completed(self, plan: DailyTaskPlan, task: GeneratedTask) -> None:
        now = self.clock()
        cooldown = self.library.cooldown_days(task.template_id)

        task.completed = True
        task.completed_at = now
        task.cooldown_until = plan.date + timedelta(days=cooldown) if cooldown else None

        plan.completed_tasks += 1
        plan.completed_points += task.points

        event = CompletionEvent(
            user_id=plan.user_id,
            task_id=task.id,
            template_id=task.template_id,
            category=task.category,
            unit=task.unit,
            target=task.target,
            points=task.points,
            title=task.title,
            description=task.description,
            completed_at=now,
            cooldown_until=task.cooldown_until,
        )
        self.store.append(TASK_COMPLETIONS, plan.user_id, now, event)

        logger.info(
            f"[daily_plan] {plan.user_id} — tâche {task.id} complétée "
            f"(+{task.points} pts, total {plan.completed_points})"
        )

    # ─────────────────────────────────────────
    # ÉCHANGE
    # ─────────────────────────────────────────

    def swap_task_selection(
        self,
        user_id: str,
        remove_task_id: str,
        add_task_id: str,
        day: Optional[date] = None
    ) -> PlanResult:
        day = day or self.today()

        with self._locks(plan_key(user_id, day)):
            plan = self._load_plan(user_id, day)
            if plan is None:
                return PlanResult(ResultStatus.NOT_FOUND, error="Aucun plan pour aujourd'hui")
            if plan.status == PlanStatus.EVALUATED:
                return PlanResult(ResultStatus.INVALID, plan=plan, error="Journée déjà évaluée")

            if remove_task_id not in plan.selected_task_ids:
                return PlanResult(
                    ResultStatus.NOT_FOUND, plan=plan,
                    error="Tâche à retirer absente de la sélection"
                )
            incoming = plan.find_candidate(add_task_id)
            if incoming is None:
                return PlanResult(
                    ResultStatus.NOT_FOUND, plan=plan,
                    error="Tâche à ajouter absente des candidats"
                )
            if add_task_id in plan.selected_task_ids:
                return PlanResult(ResultStatus.INVALID, plan=plan, error="Tâche déjà sélectionnée")

            outgoing = plan.find_candidate(remove_task_id)
            if outgoing.completed:
                return PlanResult(
                    ResultStatus.INVALID, plan=plan,
                    error="Impossible de retirer une tâche complétée"
                )

            position = plan.selected_task_ids.index(remove_task_id)
            plan.selected_task_ids[position] = add_task_id
            outgoing.pre_selected = False
            incoming.pre_selected = True

            plan.last_updated = self.clock()
            self._save_plan(plan)

        return PlanResult(ResultStatus.OK, plan=plan, task=incoming)

    # ─────────────────────────────────────────
    # ÉVALUATION DU SOIR
    # ─────────────────────────────────────────

    def evaluate_daily_completion(self, user_id: str, day=None) -> EvaluationResult:
        """
        Une seule évaluation par plan : un second appel retourne
        le rapport stocké sans toucher au streak.
        """
        try:
            day = parse_date(day) or self.today()
        except ValueError:
            return EvaluationResult(ResultStatus.INVALID, user_id, error=f"Date invalide : {day}")

        with self._locks(plan_key(user_id, day)):
            plan = self._load_plan(user_id, day)
            if plan is None:
                return EvaluationResult(
                    ResultStatus.NOT_FOUND, user_id, date=day,
                    error="Aucun plan pour cette date"
                )

            if plan.status == PlanStatus.EVALUATED and plan.evaluation:
                return self._stored_evaluation(user_id, day, plan.evaluation)

            with self._locks(streak_key(user_id)):
                update = self.streaks.apply_day(
                    user_id, day, plan.completed_tasks, plan.completed_points
                )

            result = EvaluationResult(
                status=ResultStatus.OK,
                user_id=user_id,
                date=day,
                qualified=update.qualified,
                completed_tasks=plan.completed_tasks,
                completed_points=plan.completed_points,
                streak=update.streak,
                penalty=update.penalty,
                new_milestones=update.new_milestones,
                bonus_points=update.bonus_points,
                score_delta=daily_score_delta(plan, update),
            )

            plan.status = PlanStatus.EVALUATED
            plan.evaluation = result.to_dict()
            plan.last_updated = self.clock()
            self._save_plan(plan)

        logger.info(
            f"[daily_plan] {user_id} {day} — évaluation : "
            f"{'validée' if result.qualified else 'ratée'}, "
            f"série {update.streak.current_streak}, delta {result.score_delta}"
        )
        return result

    def _stored_evaluation(self, user_id: str, day: date, stored: dict) -> EvaluationResult:
        streak = stored.get("streak")
        return EvaluationResult(
            status=ResultStatus.OK,
            user_id=user_id,
            date=day,
            qualified=bool(stored.get("qualified")),
            completed_tasks=int(stored.get("completed_tasks", 0)),
            completed_points=int(stored.get("completed_points", 0)),
            streak=StreakData.from_dict(streak) if streak else None,
            penalty=int(stored.get("penalty", 0)),
            new_milestones=list(stored.get("new_milestones") or []),
            bonus_points=int(stored.get("bonus_points", 0)),
            score_delta=int(stored.get("score_delta", 0)),
            already_evaluated=True,
        )

    # ─────────────────────────────────────────
    # HISTORIQUE & ANALYTICS
    # ─────────────────────────────────────────

    def load_plans(self, user_id: str, days: int, until: Optional[date] = None) -> list[DailyTaskPlan]:
        """Plans des `days` derniers jours (inclus), du plus récent au plus ancien."""
        until = until or self.today()
        start = until - timedelta(days=days - 1)

        plans = []
        for key in self.store.keys(f"plan:{user_id}:"):
            try:
                plan_day = parse_date(key.rsplit(":", 1)[1])
            except ValueError:
                logger.warning(f"[daily_plan] Clé de plan illisible : {key}")
                continue
            if start <= plan_day <= until:
                plan = self._load_plan(user_id, plan_day)
                if plan is not None:
                    plans.append(plan)

        return sorted(plans, key=lambda p: p.date, reverse=True)

    def get_task_history(self, user_id: str, days: int = 7) -> list[dict]:
        history = []
        for plan in self.load_plans(user_id, days):
            history.append({
                "date": plan.date.isoformat(),
                "track_status": plan.track_status.value,
                "status": plan.status.value,
                "selected_tasks": len(plan.selected_task_ids),
                "completed_tasks": plan.completed_tasks,
                "completed_points": plan.completed_points,
                "required_points": plan.required_points,
                "total_possible_points": plan.total_possible_points,
                "qualified": (plan.evaluation or {}).get("qualified"),
                "tasks": [
                    {
                        "id": t.id,
                        "title": t.title,
                        "category": t.category.value,
                        "points": t.points,
                        "completed": t.completed,
                    }
                    for t in plan.selected_tasks
                ],
            })
        return history

    def get_task_analytics(self, user_id: str, days: int = 30) -> dict:
        plans = self.load_plans(user_id, days)
        today = self.today()

        rates = [
            p.completed_tasks / len(p.selected_task_ids)
            for p in plans if p.selected_task_ids
        ]
        avg_rate = round(100 * sum(rates) / len(rates), 1) if rates else 0.0
        avg_points = round(
            sum(p.completed_points for p in plans) / len(plans), 1
        ) if plans else 0.0

        breakdown = defaultdict(lambda: {"completed": 0, "points": 0})
        events = self.store.query(
            TASK_COMPLETIONS, user_id,
            today - timedelta(days=days - 1), today + timedelta(days=1)
        )
        for raw in events:
            category = raw.get("category")
            if category:
                breakdown[category]["completed"] += 1
                breakdown[category]["points"] += int(raw.get("points", 0))

        return {
            "days": days,
            "plans_count": len(plans),
            "avg_completion_rate": avg_rate,
            "avg_points_per_day": avg_points,
            "streak": self.streaks.load(user_id).to_dict(),
            "category_breakdown": {
                c.value: breakdown.get(c.value, {"completed": 0, "points": 0})
                for c in Category
            },
            "recent_trends": [
                {
                    "date": p.date.isoformat(),
                    "completed_tasks": p.completed_tasks,
                    "completed_points": p.completed_points,
                }
                for p in plans[:7]
            ],
        }

    # ─────────────────────────────────────────
    # PERSISTANCE
    # ─────────────────────────────────────────

    def _load_plan(self, user_id: str, day: date) -> Optional[DailyTaskPlan]:
        raw = self.store.get(plan_key(user_id, day))
        return DailyTaskPlan.from_dict(raw) if raw else None

    def _save_plan(self, plan: DailyTaskPlan) -> None:
        self.store.put(plan_key(plan.user_id, plan.date), plan)


# ─────────────────────────────────────────
# INSTANCE PARTAGÉE
# Les verrous par clé n'ont de sens que sur une instance unique.
# ─────────────────────────────────────────

_orchestrator: Optional[DailyPlanOrchestrator] = None


def get_orchestrator() -> DailyPlanOrchestrator:
    global _orchestrator
    store = get_store()
    if _orchestrator is None or _orchestrator.store is not store:
        _orchestrator = DailyPlanOrchestrator(store)
    return _orchestrator
