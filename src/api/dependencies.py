# api/dependencies.py

from fastapi import Header, HTTPException

from orchestrator.daily_plan import (
    DailyPlanOrchestrator,
    EvaluationResult,
    PlanResult,
    ResultStatus,
    get_orchestrator,
)
from orchestrator.profile import resolve_api_key
from services.database import BaseStore, get_store


def verify_api_key(x_api_key: str = Header(...)) -> str:
    """
    Une API key par agent.
    Retourne user_id si OK.
    Header attendu : X-API-KEY
    """
    user_id = resolve_api_key(x_api_key, get_store())
    if not user_id:
        raise HTTPException(status_code=401, detail="Non autorisé")
    return user_id


def orchestrator_dependency() -> DailyPlanOrchestrator:
    return get_orchestrator()


def store_dependency() -> BaseStore:
    return get_store()


def raise_for_result(result: PlanResult | EvaluationResult) -> None:
    """not_found → 404, invalid → 400."""
    if result.status == ResultStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail=result.error)
    if result.status == ResultStatus.INVALID:
        raise HTTPException(status_code=400, detail=result.error)
