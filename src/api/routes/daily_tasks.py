# api/routes/daily_tasks.py

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.dependencies import orchestrator_dependency, raise_for_result, verify_api_key
from orchestrator.daily_plan import DailyPlanOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
# MODÈLES DE REQUÊTE
# ─────────────────────────────────────────

class GeneratePlanRequest(BaseModel):
    # défaut : aujourd'hui (fuseau des agents)
    day: Optional[date] = Field(default=None, alias="date")
    force: bool = False             # refusé si des tâches sont déjà faites


class ProgressRequest(BaseModel):
    progress: float = Field(..., ge=0, le=100)


class SwapRequest(BaseModel):
    remove_task_id: str
    add_task_id: str


class EvaluateRequest(BaseModel):
    # ISO, validé par l'orchestrateur (400 si illisible)
    day: Optional[str] = Field(default=None, alias="date")


# ─────────────────────────────────────────
# PLAN DU JOUR
# ─────────────────────────────────────────

@router.get("/today")
def get_today(
    user_id: str = Depends(verify_api_key),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    """Plan du jour, généré au premier appel."""
    return orchestrator.get_todays_plan(user_id).to_dict()


@router.post("/generate")
def generate_plan(
    body: GeneratePlanRequest,
    user_id: str = Depends(verify_api_key),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    day = body.day or orchestrator.today()
    plan = orchestrator.generate_daily_plan(user_id, day, force=body.force)
    return plan.to_dict()


# ─────────────────────────────────────────
# PROGRESSION
# ─────────────────────────────────────────

@router.put("/{task_id}/progress")
def update_progress(
    task_id: str,
    body: ProgressRequest,
    user_id: str = Depends(verify_api_key),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    result = orchestrator.update_task_progress(user_id, task_id, body.progress)
    raise_for_result(result)

    return {
        "task": result.task.to_dict(),
        "completed_tasks": result.plan.completed_tasks,
        "completed_points": result.plan.completed_points,
        "status": result.plan.status.value,
    }


@router.post("/{task_id}/complete")
def complete_task(
    task_id: str,
    user_id: str = Depends(verify_api_key),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    result = orchestrator.complete_task(user_id, task_id)
    raise_for_result(result)

    return {
        "task": result.task.to_dict(),
        "completed_tasks": result.plan.completed_tasks,
        "completed_points": result.plan.completed_points,
        "status": result.plan.status.value,
    }


@router.post("/swap")
def swap_task(
    body: SwapRequest,
    user_id: str = Depends(verify_api_key),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    result = orchestrator.swap_task_selection(
        user_id, body.remove_task_id, body.add_task_id
    )
    raise_for_result(result)
    return result.plan.to_dict()


# ─────────────────────────────────────────
# ÉVALUATION & SÉRIE
# ─────────────────────────────────────────

@router.post("/evaluate")
def evaluate_day(
    body: EvaluateRequest,
    user_id: str = Depends(verify_api_key),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    result = orchestrator.evaluate_daily_completion(user_id, body.day)
    raise_for_result(result)
    return result.to_dict()


@router.get("/streak")
def get_streak(
    user_id: str = Depends(verify_api_key),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    return orchestrator.streaks.load(user_id).to_dict()


# ─────────────────────────────────────────
# HISTORIQUE
# ─────────────────────────────────────────

@router.get("/analytics")
def get_analytics(
    days: int = Query(default=30, ge=1, le=365),
    user_id: str = Depends(verify_api_key),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    return orchestrator.get_task_analytics(user_id, days)


@router.get("/history")
def get_history(
    days: int = Query(default=7, ge=1, le=90),
    user_id: str = Depends(verify_api_key),
    orchestrator: DailyPlanOrchestrator = Depends(orchestrator_dependency),
) -> dict:
    return {"days": days, "history": orchestrator.get_task_history(user_id, days)}
