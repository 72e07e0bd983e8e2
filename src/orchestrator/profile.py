# orchestrator/profile.py

import copy
import logging
import math
import secrets
from typing import Optional

from services.database import BaseStore, api_key_key, get_store, profile_key

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
# PROFIL PAR DÉFAUT
# Si un paramètre n'est pas dans le profil agent,
# on utilise ces valeurs.
# ─────────────────────────────────────────

DEFAULT_PROFILE = {
    "name": "",
    "email": "",
    "active": True,

    # Objectifs (entrées en lecture seule pour le calcul des cibles)
    "commission_goal": 0.0,
    "average_sales_price": 1_200_000,
    "commission_rate": 0.025,
    "conversion_rate": 0.07,
    "ytd_commission": None,          # sinon estimé depuis les deals gagnés

    # Sources de leads déclarées (LeadSource)
    "lead_sources": [],

    # Ajustements
    "holiday_mode": False,
    "mega_goal_throttling": True,

    # CRM : {"tool": "followupboss", "credentials": {"api_key": "..."}}
    "crm": {},
}


# ─────────────────────────────────────────
# LECTURE
# ─────────────────────────────────────────

def get_agent_profile(user_id: str, store: Optional[BaseStore] = None) -> dict:
    """
    Profil complet d'un agent : valeurs stockées fusionnées
    sur DEFAULT_PROFILE. Un agent inconnu reçoit les defaults.
    """
    store = store or get_store()
    stored = store.get(profile_key(user_id)) or {}

    if not stored:
        logger.debug(f"Profil absent pour {user_id} — defaults utilisés")

    return _with_defaults(user_id, stored)


def _with_defaults(user_id: str, stored: dict) -> dict:
    # Copie : les listes / dicts de DEFAULT_PROFILE ne sont jamais partagés
    return {**copy.deepcopy(DEFAULT_PROFILE), **stored, "user_id": user_id}


def list_active_agents(store: Optional[BaseStore] = None) -> list[dict]:
    """Tous les agents actifs. Utilisé par le scheduler."""
    store = store or get_store()
    profiles = []

    for key in store.keys("profile:"):
        user_id = key.split(":", 1)[1]
        profile = get_agent_profile(user_id, store)
        if profile.get("active", True):
            profiles.append(profile)

    return profiles


# ─────────────────────────────────────────
# ÉCRITURE
# ─────────────────────────────────────────

def update_agent_profile(
    user_id: str,
    updates: dict,
    store: Optional[BaseStore] = None
) -> dict:
    """
    Fusionne des champs dans le profil stocké.
    Les clés inconnues sont ignorées.
    """
    store = store or get_store()
    stored = store.get(profile_key(user_id)) or {}

    accepted = {k: v for k, v in updates.items() if k in DEFAULT_PROFILE}
    ignored = set(updates) - set(accepted)
    if ignored:
        logger.warning(f"Profil {user_id} : champs ignorés {sorted(ignored)}")

    stored.update(accepted)
    store.put(profile_key(user_id), stored)

    logger.info(f"Profil {user_id} mis à jour : {sorted(accepted)}")
    return _with_defaults(user_id, stored)


def register_api_key(
    user_id: str,
    store: Optional[BaseStore] = None,
    api_key: Optional[str] = None
) -> str:
    """Associe une clé API à un agent. Générée si non fournie."""
    store = store or get_store()
    api_key = api_key or secrets.token_urlsafe(32)
    store.put(api_key_key(api_key), {"user_id": user_id})
    return api_key


def resolve_api_key(api_key: str, store: Optional[BaseStore] = None) -> Optional[str]:
    store = store or get_store()
    record = store.get(api_key_key(api_key))
    return record.get("user_id") if record else None


# ─────────────────────────────────────────
# OBJECTIFS
# ─────────────────────────────────────────

def calculate_goals(profile: dict) -> dict:
    """
    Décompose l'objectif de commission annuel :
    commission → ventes nécessaires → leads nécessaires
    → rythmes mensuel / hebdo / quotidien.

    Un dénominateur nul donne 0 (jamais de division par zéro).
    """
    goal = float(profile.get("commission_goal") or 0)
    price = float(profile.get("average_sales_price") or 0)
    rate = float(profile.get("commission_rate") or 0)
    conversion = float(profile.get("conversion_rate") or 0)

    commission_per_sale = price * rate
    closings = math.ceil(goal / commission_per_sale) if commission_per_sale > 0 else 0
    leads = math.ceil(closings / conversion) if conversion > 0 else 0

    return {
        "annual_goal": goal,
        "average_sales_price": price,
        "commission_rate": rate,
        "conversion_rate": conversion,
        "closings_needed": closings,
        "leads_needed": leads,
        "monthly_closings": math.ceil(closings / 12),
        "monthly_leads": math.ceil(leads / 12),
        "weekly_closings": math.ceil(closings / 52),
        "weekly_leads": math.ceil(leads / 52),
        "daily_leads": math.ceil(leads / 365),
    }
