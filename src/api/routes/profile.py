# api/routes/profile.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from api.dependencies import store_dependency, verify_api_key
from connectors import get_connector_for_profile
from models import LeadSource
from orchestrator.profile import calculate_goals, get_agent_profile, update_agent_profile
from services.database import BaseStore

router = APIRouter()
logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
# MODÈLES DE REQUÊTE
# ─────────────────────────────────────────

class CrmSettings(BaseModel):
    tool: str                       # "followupboss"
    credentials: dict = {}


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    commission_goal: Optional[float] = Field(default=None, ge=0)
    average_sales_price: Optional[float] = Field(default=None, ge=0)
    commission_rate: Optional[float] = Field(default=None, ge=0, le=1)
    conversion_rate: Optional[float] = Field(default=None, ge=0, le=1)
    ytd_commission: Optional[float] = Field(default=None, ge=0)
    lead_sources: Optional[list[LeadSource]] = None
    holiday_mode: Optional[bool] = None
    mega_goal_throttling: Optional[bool] = None
    crm: Optional[CrmSettings] = None


# ─────────────────────────────────────────
# ROUTES
# ─────────────────────────────────────────

@router.get("")
def get_profile(
    user_id: str = Depends(verify_api_key),
    store: BaseStore = Depends(store_dependency),
) -> dict:
    return _public(get_agent_profile(user_id, store))


@router.put("")
def put_profile(
    body: ProfileUpdateRequest,
    user_id: str = Depends(verify_api_key),
    store: BaseStore = Depends(store_dependency),
) -> dict:
    updates = body.model_dump(exclude_none=True, mode="json")
    if not updates:
        raise HTTPException(status_code=400, detail="Aucun champ à mettre à jour")

    return _public(update_agent_profile(user_id, updates, store))


@router.get("/goals")
def get_goals(
    user_id: str = Depends(verify_api_key),
    store: BaseStore = Depends(store_dependency),
) -> dict:
    return calculate_goals(get_agent_profile(user_id, store))


@router.post("/crm/test")
def check_crm_connection(
    user_id: str = Depends(verify_api_key),
    store: BaseStore = Depends(store_dependency),
) -> dict:
    """Vérifie les identifiants CRM enregistrés."""
    profile = get_agent_profile(user_id, store)
    connector = get_connector_for_profile(profile)
    if connector is None:
        raise HTTPException(status_code=404, detail="Aucun CRM configuré")

    connected = connector.connect()
    logger.info(f"Test CRM {user_id} — {'ok' if connected else 'échec'}")
    return {"tool": profile["crm"].get("tool"), "connected": connected}


def _public(profile: dict) -> dict:
    """Le profil renvoyé au front ne contient jamais les identifiants CRM."""
    crm = profile.get("crm") or {}
    return {
        **profile,
        "crm": {"tool": crm.get("tool"), "configured": bool(crm.get("credentials"))},
    }
