# orchestrator/task_pipeline.py

"""
Pipeline de génération d'un lot de tâches (endpoint /tasks/generate).

Ordre des étapes :
1. métriques brutes de l'agent
2. scores pondérés par trimestre
3. écarts → plan d'action (archivé)
4. activité de la veille trop faible → tâches par défaut
   sinon → génération pilotée par les écarts
5. mode vacances (÷2)
6. objectif > 1M$ avec throttling activé (×0.8)

Contrairement au plan quotidien, le lot n'est pas persisté :
il sert d'aperçu et alimente les insights.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from engine.gap_analysis import (
    calculate_gaps,
    create_action_plan,
    get_recommended_actions,
)
from engine.scoring import calculate_all_scores, get_quarterly_weights
from engine.task_generator import TaskGenerator, is_mega_goal, is_sparse_activity
from engine.templates import TemplateLibrary, get_template_library
from models import ActionPlan, ActivityGaps, GeneratedTask, SubScores, to_json
from orchestrator.profile import get_agent_profile
from services.database import ACTION_PLANS, BaseStore, get_store
from services.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass
class TaskBatch:
    user_id: str
    date: date
    tasks: list[GeneratedTask]
    subscores: SubScores
    gaps: ActivityGaps
    action_plan: ActionPlan
    sparse_data: bool = False
    holiday_mode: bool = False
    mega_goal_throttled: bool = False
    recommendations: dict = field(default_factory=dict)

    @property
    def total_points(self) -> int:
        return sum(t.points for t in self.tasks)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "date": self.date.isoformat(),
            "tasks": [t.to_dict() for t in self.tasks],
            "total_points": self.total_points,
            "scores": self.subscores.to_dict(),
            "gaps": self.gaps.to_dict(),
            "action_plan": self.action_plan.to_dict(),
            "sparse_data": self.sparse_data,
            "holiday_mode": self.holiday_mode,
            "mega_goal_throttled": self.mega_goal_throttled,
            "recommendations": to_json(self.recommendations),
        }


class TaskPipeline:

    def __init__(
        self,
        store: Optional[BaseStore] = None,
        collector: Optional[MetricsCollector] = None,
        library: Optional[TemplateLibrary] = None
    ):
        self.store = store or get_store()
        self.collector = collector or MetricsCollector(self.store)
        self.generator = TaskGenerator(library or get_template_library())

    def generate(
        self,
        user_id: str,
        day: date,
        holiday_mode: Optional[bool] = None,
        mega_goal_throttling: Optional[bool] = None
    ) -> TaskBatch:
        """
        holiday_mode / mega_goal_throttling : None → valeur du profil.
        """
        profile = get_agent_profile(user_id, self.store)
        if holiday_mode is None:
            holiday_mode = bool(profile.get("holiday_mode"))
        if mega_goal_throttling is None:
            mega_goal_throttling = bool(profile.get("mega_goal_throttling", True))
        lead_sources = profile.get("lead_sources") or []

        metrics = self.collector.collect_raw_metrics(user_id, day)
        subscores = calculate_all_scores(metrics, get_quarterly_weights(day))
        gaps = calculate_gaps(subscores)

        action_plan = create_action_plan(user_id, gaps, day)
        self.store.append(ACTION_PLANS, user_id, day, action_plan)

        sparse = is_sparse_activity(metrics)
        if sparse:
            logger.info(
                f"[pipeline] {user_id} — activité de la veille insuffisante "
                f"({metrics.activity.total()}), tâches par défaut"
            )
            tasks = self.generator.create_default_tasks(lead_sources, day)
        else:
            tasks = self.generator.generate_tasks(action_plan, lead_sources, subscores)

        if holiday_mode:
            tasks = self.generator.apply_holiday_adjustments(tasks)

        throttled = mega_goal_throttling and is_mega_goal(metrics.targets.annual_goal)
        tasks = self.generator.apply_mega_goal_throttling(tasks, throttled)

        batch = TaskBatch(
            user_id=user_id,
            date=day,
            tasks=tasks,
            subscores=subscores,
            gaps=gaps,
            action_plan=action_plan,
            sparse_data=sparse,
            holiday_mode=holiday_mode,
            mega_goal_throttled=throttled,
            recommendations=get_recommended_actions(
                action_plan.deltas, list(action_plan.focus_areas)
            ),
        )

        logger.info(
            f"[pipeline] {user_id} {day} — {len(tasks)} tâches, "
            f"{batch.total_points} pts, santé {subscores.overall}"
        )
        return batch
