# engine/task_generator.py

"""
Générateur de tâches, aucune I/O.

Plan d'action + bibliothèque de modèles
→ au plus 10 tâches, équilibrées par catégorie, avec points.

Étapes (dans cet ordre) :
1. filtrage des modèles (focus ou score < 90, sources de leads compatibles)
2. mise à l'échelle selon les deltas d'activité
3. plafond à 10 + au moins une tâche par catégorie < 90
4. attribution des points
5. tri final : focus d'abord, puis points, puis objectif
"""

import logging
import math
import random
from dataclasses import replace
from datetime import date
from typing import Iterable, Optional

from models import (
    ActionPlan,
    Category,
    Difficulty,
    GeneratedTask,
    RawMetrics,
    SubScores,
    TaskTemplate,
    Unit,
)
from engine.scoring import round_half_up
from engine.templates import TemplateLibrary

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
# TABLES FIXES
# ─────────────────────────────────────────

MAX_TASKS = 10
CATEGORY_SATISFIED_SCORE = 90

MIN_POINTS = 5
MAX_POINTS = 100

UNIT_POINT_VALUES = {
    Difficulty.EASY: {
        Unit.LEADS: 3, Unit.CALLS: 2, Unit.EMAILS: 1, Unit.APPOINTMENTS: 8,
        Unit.TOUCHES: 1, Unit.UPDATES: 1, Unit.REVIEWS: 4, Unit.ANALYSES: 6,
    },
    Difficulty.MEDIUM: {
        Unit.LEADS: 5, Unit.CALLS: 3, Unit.EMAILS: 2, Unit.APPOINTMENTS: 12,
        Unit.TOUCHES: 2, Unit.UPDATES: 2, Unit.REVIEWS: 6, Unit.ANALYSES: 10,
    },
    Difficulty.HARD: {
        Unit.LEADS: 8, Unit.CALLS: 5, Unit.EMAILS: 3, Unit.APPOINTMENTS: 18,
        Unit.TOUCHES: 3, Unit.UPDATES: 3, Unit.REVIEWS: 10, Unit.ANALYSES: 15,
    },
}

DIFFICULTY_MULTIPLIERS = {
    Difficulty.EASY: 1.0,
    Difficulty.MEDIUM: 1.5,
    Difficulty.HARD: 2.0,
}

# (catégorie, unité) → nom du delta correspondant
DELTA_FIELD_BY_UNIT = {
    (Category.PROSPECTING, Unit.CALLS): "calls",
    (Category.PROSPECTING, Unit.LEADS): "new_leads",
    (Category.PROSPECTING, Unit.TOUCHES): "social_engagements",
    (Category.NURTURING, Unit.CALLS): "follow_up_calls",
    (Category.NURTURING, Unit.EMAILS): "emails",
    (Category.NURTURING, Unit.APPOINTMENTS): "appointments",
    (Category.CLIENT_CARE, Unit.TOUCHES): "weekly_touches",
    (Category.CLIENT_CARE, Unit.APPOINTMENTS): "showings",
    (Category.CLIENT_CARE, Unit.UPDATES): "offers",
    (Category.ADMINISTRATIVE, Unit.UPDATES): "crm_updates",
    (Category.ADMINISTRATIVE, Unit.REVIEWS): "contract_reviews",
    (Category.ADMINISTRATIVE, Unit.ANALYSES): "market_analyses",
}

DEFAULT_TASK_COUNT = 3
SPARSE_ACTIVITY_THRESHOLD = 5

HOLIDAY_FACTOR = 0.5
MEGA_GOAL_THRESHOLD = 1_000_000
MEGA_GOAL_FACTOR = 0.8

# Défis rapides : quantité tirée selon la difficulté (bornes incluses)
QUICK_CHALLENGE_COUNTS = {
    Difficulty.EASY: (1, 3),
    Difficulty.MEDIUM: (2, 4),
    Difficulty.HARD: (3, 4),
}


# ─────────────────────────────────────────
# FONCTIONS UTILITAIRES
# ─────────────────────────────────────────

def compute_points(target: int, unit: Unit, difficulty: Difficulty) -> int:
    """
    points = round(target × valeur_unitaire × multiplicateur)
    borné à [5, 100].
    """
    difficulty = Difficulty(difficulty)
    unit_value = UNIT_POINT_VALUES[difficulty].get(Unit(unit), 1)
    raw = round_half_up(target * unit_value * DIFFICULTY_MULTIPLIERS[difficulty])
    return max(MIN_POINTS, min(raw, MAX_POINTS))


def is_lead_source_compatible(
    template_sources: Iterable[str],
    user_sources: Iterable[str]
) -> bool:
    """Aucune restriction, ou au moins une source en commun."""
    template_sources = set(template_sources)
    if not template_sources:
        return True
    return bool(template_sources & {str(getattr(s, "value", s)) for s in user_sources})


def is_sparse_activity(metrics: RawMetrics) -> bool:
    """Moins de 5 activités la veille → pas assez de données pour scorer."""
    return metrics.activity.total() < SPARSE_ACTIVITY_THRESHOLD


def is_mega_goal(annual_goal: float) -> bool:
    return (annual_goal or 0) > MEGA_GOAL_THRESHOLD


def _task_id(prefix: str, day: date) -> str:
    return f"{prefix}-{day:%Y%m%d}"


# ─────────────────────────────────────────
# GÉNÉRATEUR
# ─────────────────────────────────────────

class TaskGenerator:

    def __init__(self, library: TemplateLibrary):
        self.library = library

    # ── Génération principale ────────────────

    def generate_tasks(
        self,
        action_plan: ActionPlan,
        lead_sources: list[str],
        subscores: SubScores
    ) -> list[GeneratedTask]:
        focus_areas = set(action_plan.focus_areas)

        relevant = self._filter_templates(focus_areas, lead_sources, subscores)
        scaled = self._scale_templates(relevant, action_plan, focus_areas)
        capped = self._cap_and_balance(scaled, subscores)

        for task in capped:
            task.points = compute_points(task.target, task.unit, task.difficulty)

        tasks = sorted(
            capped,
            key=lambda t: (not t.focus_area, -t.points, -t.target)
        )

        logger.debug(
            f"[generator] {action_plan.user_id} — {len(relevant)} modèles retenus, "
            f"{len(tasks)} tâches générées"
        )
        return tasks

    def _filter_templates(
        self,
        focus_areas: set,
        lead_sources: list[str],
        subscores: SubScores
    ) -> list[TaskTemplate]:
        return [
            t for t in self.library
            if (t.category in focus_areas
                or subscores.for_category(t.category) < CATEGORY_SATISFIED_SCORE)
            and (not lead_sources or is_lead_source_compatible(t.lead_sources, lead_sources))
        ]

    def _scale_templates(
        self,
        templates: list[TaskTemplate],
        action_plan: ActionPlan,
        focus_areas: set
    ) -> list[GeneratedTask]:
        tasks = []

        for template in templates:
            delta_field = DELTA_FIELD_BY_UNIT.get((template.category, template.unit))
            delta = action_plan.deltas.get(template.category, delta_field) if delta_field else 0

            scale_factor = max(0.0, delta / template.base_target)
            target = min(
                template.base_target + round_half_up(template.base_target * scale_factor),
                template.max_auto_scale
            )
            if target <= 0:
                continue

            is_focus = template.category in focus_areas
            tasks.append(self._instantiate(
                template,
                target=target,
                points=0,
                task_id=_task_id(template.id, action_plan.date),
                focus_area=is_focus,
                priority=1.0 if is_focus else 0.5,
            ))

        return tasks

    def _cap_and_balance(
        self,
        tasks: list[GeneratedTask],
        subscores: SubScores
    ) -> list[GeneratedTask]:
        ordered = sorted(tasks, key=lambda t: (not t.focus_area, -t.target))

        selected: list[GeneratedTask] = []
        covered: set = set()

        # 1er passage : une tâche par catégorie encore sous 90
        for task in ordered:
            if len(selected) >= MAX_TASKS:
                break
            if (subscores.for_category(task.category) < CATEGORY_SATISFIED_SCORE
                    and task.category not in covered):
                selected.append(task)
                covered.add(task.category)

        # 2e passage : compléter jusqu'à 10
        for task in ordered:
            if len(selected) >= MAX_TASKS:
                break
            if task not in selected:
                selected.append(task)

        return selected

    # ── Données insuffisantes ────────────────

    def create_default_tasks(
        self,
        lead_sources: list[str],
        day: date
    ) -> list[GeneratedTask]:
        """
        Repli quand l'activité de la veille est trop faible :
        les 3 premiers modèles de prospection compatibles,
        objectif de base, points de base bornés à [5, 100].
        Sans source déclarée, toute la prospection est éligible.
        """
        prospecting = [
            t for t in self.library.by_category(Category.PROSPECTING)
            if not lead_sources or is_lead_source_compatible(t.lead_sources, lead_sources)
        ]
        # Aucune prospection compatible → modèles sans restriction de source
        chosen = (prospecting or [t for t in self.library if not t.lead_sources])[:DEFAULT_TASK_COUNT]

        return [
            self._instantiate(
                template,
                target=template.base_target,
                points=max(MIN_POINTS, min(template.base_points, MAX_POINTS)),
                task_id=_task_id(f"default-{template.id}", day),
                focus_area=True,
                priority=1.0,
            )
            for template in chosen
        ]

    # ── Ajustements ────────────────

    def apply_holiday_adjustments(self, tasks: list[GeneratedTask]) -> list[GeneratedTask]:
        """Mode vacances : objectif et points divisés par 2."""
        return [self._rescale(task, HOLIDAY_FACTOR) for task in tasks]

    def apply_mega_goal_throttling(
        self,
        tasks: list[GeneratedTask],
        enabled: bool
    ) -> list[GeneratedTask]:
        """Objectif annuel > 1M$ : objectif et points × 0.8."""
        if not enabled:
            return tasks
        return [self._rescale(task, MEGA_GOAL_FACTOR) for task in tasks]

    def _rescale(self, task: GeneratedTask, factor: float) -> GeneratedTask:
        target = max(1, math.floor(task.target * factor))
        points = max(MIN_POINTS, math.floor(task.points * factor))

        template = self.library.get(task.template_id)
        if template is None:
            return replace(task, target=target, points=points)

        return replace(
            task,
            target=target,
            points=points,
            title=template.render_title(target),
            description=template.render_description(target),
        )

    # ── Défis rapides ────────────────

    def generate_quick_challenges(
        self,
        lead_sources: list[str],
        day: date,
        rng: Optional[random.Random] = None
    ) -> list[GeneratedTask]:
        """
        Un défi par catégorie, tiré au hasard parmi les modèles compatibles.
        rng injectable pour des tirages reproductibles.
        """
        rng = rng or random.Random()
        challenges = []

        for category in Category:
            candidates = [
                q for q in self.library.quick_challenges
                if q.category == category
                and is_lead_source_compatible(q.lead_sources, lead_sources)
            ]
            if not candidates:
                continue

            template = candidates[rng.randrange(len(candidates))]
            low, high = QUICK_CHALLENGE_COUNTS[template.difficulty]
            count = rng.randint(low, high)

            user_sources = {str(getattr(s, "value", s)) for s in lead_sources}
            challenges.append(GeneratedTask(
                id=_task_id(template.id, day),
                template_id=template.id,
                title=template.title.replace("{target}", str(count)),
                description=template.description.replace("{target}", str(count)),
                category=template.category,
                target=count,
                unit=_QUICK_CHALLENGE_UNITS.get(template.category, Unit.TOUCHES),
                difficulty=template.difficulty,
                points=template.points,
                related_lead_sources=[
                    s for s in template.lead_sources if s in user_sources
                ],
            ))

        return challenges

    # ── Instanciation ────────────────

    def _instantiate(
        self,
        template: TaskTemplate,
        target: int,
        points: int,
        task_id: str,
        focus_area: bool,
        priority: float
    ) -> GeneratedTask:
        return GeneratedTask(
            id=task_id,
            template_id=template.id,
            title=template.render_title(target),
            description=template.render_description(target),
            category=template.category,
            target=target,
            unit=template.unit,
            difficulty=template.difficulty,
            points=points,
            related_lead_sources=list(template.lead_sources),
            priority=priority,
            focus_area=focus_area,
        )


_QUICK_CHALLENGE_UNITS = {
    Category.PROSPECTING: Unit.CALLS,
    Category.NURTURING: Unit.CALLS,
    Category.CLIENT_CARE: Unit.APPOINTMENTS,
    Category.ADMINISTRATIVE: Unit.UPDATES,
}
