# api/routes/tasks.py

import logging
import random
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.dependencies import orchestrator_dependency, store_dependency, verify_api_key
from engine.gap_analysis import (
    analyze_effectiveness,
    calculate_gaps,
    create_action_plan,
    get_recommended_actions,
)
from engine.scoring import calculate_all_scores, get_quarterly_weights
from engine.task_generator import TaskGenerator
from engine.templates import get_template_library
from models import ActionPlan, RawMetrics, SubScores
from orchestrator.daily_plan import DailyPlanOrchestrator
from orchestrator.insights import generate_insights
from orchestrator.profile import calculate_goals, get_agent_profile
from orchestrator.task_pipeline import TaskPipeline
from services.database import ACTION_PLANS, TASK_COMPLETIONS, BaseStore
from services.metrics import MetricsCollector

router = APIRouter()
logger = logging.getLogger(__name__)

INSIGHT_WINDOW_DAYS = 30


# ─────────────────────────────────────────
# MODÈLES DE REQUÊTE
# ─────────────────────────────────────────

class GenerateTasksRequest(BaseModel):
    # None → valeur du profil
    holiday_mode: Optional[bool] = None
    mega_goal_throttling: Optional[bool] = None


# ─────────────────────────────────────────
# ROUTES
# ─────────────────────────────────────────

@router.post("/generate")
def generate_tasks(
    body: GenerateTasksRequest,
    user_id: str = Depends(verify_api_key),
    store: BaseStore = Depends(store_dependency),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    """Aperçu d'un lot de tâches (non persisté, plan d'action archivé)."""
    batch = TaskPipeline(store).generate(
        user_id,
        orchestrator.today(),
        holiday_mode=body.holiday_mode,
        mega_goal_throttling=body.mega_goal_throttling,
    )
    return batch.to_dict()


@router.get("/scores")
def get_scores(
    user_id: str = Depends(verify_api_key),
    store: BaseStore = Depends(store_dependency),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    """Scores, écarts, recommandations et objectifs, lecture seule."""
    day = orchestrator.today()
    metrics, subscores = _score_snapshot(user_id, store, day)

    gaps = calculate_gaps(subscores)
    action_plan = create_action_plan(user_id, gaps, day)
    previous = _previous_action_plan(user_id, store, day)

    return {
        "date": day.isoformat(),
        "scores": subscores.to_dict(),
        "gaps": gaps.to_dict(),
        "focus_areas": [c.value for c in action_plan.focus_areas],
        "priority_level": action_plan.priority_level.value,
        "recommendations": get_recommended_actions(
            action_plan.deltas, list(action_plan.focus_areas)
        ),
        "effectiveness": analyze_effectiveness(previous, gaps),
        "goals": calculate_goals(get_agent_profile(user_id, store)),
        "targets": metrics.to_dict()["targets"],
    }


@router.get("/insights")
def get_insights(
    user_id: str = Depends(verify_api_key),
    store: BaseStore = Depends(store_dependency),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    day = orchestrator.today()
    _, subscores = _score_snapshot(user_id, store, day)

    recent = store.query(
        TASK_COMPLETIONS, user_id,
        day - timedelta(days=INSIGHT_WINDOW_DAYS - 1), day + timedelta(days=1)
    )
    insights = generate_insights(
        get_agent_profile(user_id, store),
        subscores,
        orchestrator.streaks.load(user_id),
        recent,
    )
    return {"insights": insights}


@router.get("/challenges")
def get_quick_challenges(
    seed: Optional[int] = Query(default=None),
    user_id: str = Depends(verify_api_key),
    store: BaseStore = Depends(store_dependency),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    """Défis rapides, un par catégorie. seed → tirage reproductible."""
    profile = get_agent_profile(user_id, store)
    rng = random.Random(seed) if seed is not None else None

    challenges = TaskGenerator(get_template_library()).generate_quick_challenges(
        profile.get("lead_sources") or [], orchestrator.today(), rng=rng
    )
    return {"challenges": [c.to_dict() for c in challenges]}


@router.get("/metrics-history")
def get_metrics_history(
    days: int = Query(default=30, ge=1, le=365),
    user_id: str = Depends(verify_api_key),
    store: BaseStore = Depends(store_dependency),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    """Snapshots de métriques archivés à chaque génération de plan."""
    history = MetricsCollector(store).load_historical_metrics(
        user_id, days, today=orchestrator.today()
    )
    return {"days": days, "metrics": [m.to_dict() for m in history]}


# ─────────────────────────────────────────
# UTILITAIRES
# ─────────────────────────────────────────

def _score_snapshot(
    user_id: str,
    store: BaseStore,
    day: date
) -> tuple[RawMetrics, SubScores]:
    metrics = MetricsCollector(store).collect_raw_metrics(user_id, day)
    return metrics, calculate_all_scores(metrics, get_quarterly_weights(day))


def _previous_action_plan(
    user_id: str,
    store: BaseStore,
    day: date
) -> Optional[ActionPlan]:
    """Dernier plan d'action archivé avant aujourd'hui (30 jours max)."""
    archived = store.query(ACTION_PLANS, user_id, day - timedelta(days=30), day)
    if not archived:
        return None
    try:
        return ActionPlan.from_dict(archived[-1])
    except (KeyError, ValueError) as e:
        logger.warning(f"Plan d'action archivé illisible pour {user_id} : {e}")
        return None
