# engine/gap_analysis.py

"""
Analyse des écarts, fonctions pures.

SubScores → écarts (100 - score) → deltas d'activité concrets
→ plan d'action (2 catégories prioritaires + niveau d'urgence).
"""

import logging
from datetime import date
from typing import Optional

from models import (
    ActionPlan,
    ActivityDeltas,
    ActivityGaps,
    AdministrativeDeltas,
    Category,
    ClientCareDeltas,
    NurturingDeltas,
    PriorityLevel,
    ProspectingDeltas,
    SubScores,
)
from engine.scoring import round_half_up

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
# TABLE DE CONVERSION
# Activité supplémentaire par tranche de 10 points d'écart
# ─────────────────────────────────────────

GAP_TO_DELTA_TABLE = {
    Category.PROSPECTING: {
        "new_leads": 12,
        "calls": 8,
        "social_engagements": 6,
    },
    Category.NURTURING: {
        "follow_up_calls": 8,
        "emails": 12,
        "appointments": 3,
    },
    Category.CLIENT_CARE: {
        "weekly_touches": 3,
        "showings": 4,
        "offers": 2,
    },
    Category.ADMINISTRATIVE: {
        "crm_updates": 10,
        "contract_reviews": 3,
        "market_analyses": 2,
    },
}

_DELTA_CLASSES = {
    Category.PROSPECTING: ProspectingDeltas,
    Category.NURTURING: NurturingDeltas,
    Category.CLIENT_CARE: ClientCareDeltas,
    Category.ADMINISTRATIVE: AdministrativeDeltas,
}

FOCUS_AREA_COUNT = 2

# Seuils d'amélioration (points d'écart) pour analyze_effectiveness
EFFECTIVE_THRESHOLD = 5


# ─────────────────────────────────────────
# ÉCARTS ET DELTAS
# ─────────────────────────────────────────

def calculate_gaps(subscores: SubScores) -> ActivityGaps:
    values = {
        category.value: max(0, min(100, 100 - subscores.for_category(category)))
        for category in Category
    }
    return ActivityGaps(**values)


def translate_gaps_to_deltas(gaps: ActivityGaps) -> ActivityDeltas:
    """
    delta = round(gap / 10 * base_par_10_points)
    Un écart de 25 en prospection → +30 leads, +20 appels, +15 social.
    """
    sections = {}
    for category in Category:
        gap = gaps.for_category(category)
        if gap < 0:
            raise ValueError(f"Écart négatif pour {category.value} : {gap}")

        sections[category.value] = _DELTA_CLASSES[category](**{
            name: round_half_up(gap / 10 * per_ten)
            for name, per_ten in GAP_TO_DELTA_TABLE[category].items()
        })

    return ActivityDeltas(**sections)


def apply_scale_factor(deltas: ActivityDeltas, factor: float) -> ActivityDeltas:
    """
    Multiplie tous les deltas (ex: 0.5 en mode vacances).
    Jamais négatif.
    """
    if factor < 0:
        raise ValueError(f"Facteur d'échelle négatif : {factor}")

    sections = {}
    for category in Category:
        current = deltas.for_category(category)
        sections[category.value] = _DELTA_CLASSES[category](**{
            name: round_half_up(getattr(current, name) * factor)
            for name in GAP_TO_DELTA_TABLE[category]
        })
    return ActivityDeltas(**sections)


# ─────────────────────────────────────────
# PRIORITÉS
# ─────────────────────────────────────────

def identify_focus_areas(gaps: ActivityGaps) -> list[Category]:
    """
    Les 2 catégories avec les plus gros écarts.
    Tri stable : à égalité, l'ordre de déclaration gagne.
    """
    ranked = sorted(Category, key=lambda c: gaps.for_category(c), reverse=True)
    return ranked[:FOCUS_AREA_COUNT]


def determine_priority_level(gaps: ActivityGaps) -> PriorityLevel:
    values = [gaps.for_category(c) for c in Category]
    max_gap = max(values)
    avg_gap = sum(values) / len(values)

    if max_gap >= 50 or avg_gap >= 30:
        return PriorityLevel.CRITICAL
    if max_gap >= 30 or avg_gap >= 20:
        return PriorityLevel.HIGH
    if max_gap >= 15 or avg_gap >= 10:
        return PriorityLevel.MEDIUM
    return PriorityLevel.LOW


def create_action_plan(user_id: str, gaps: ActivityGaps, day: date) -> ActionPlan:
    deltas = translate_gaps_to_deltas(gaps)
    focus_areas = identify_focus_areas(gaps)
    priority = determine_priority_level(gaps)

    plan = ActionPlan(
        date=day,
        user_id=user_id,
        focus_areas=tuple(focus_areas),
        gaps=gaps,
        deltas=deltas,
        total_activities_needed=deltas.total(),
        priority_level=priority,
    )

    logger.debug(
        f"[gaps] {user_id} {day} — priorité {priority.value}, "
        f"focus {[c.value for c in focus_areas]}"
    )
    return plan


# ─────────────────────────────────────────
# RECOMMANDATIONS (texte affiché à l'agent)
# ─────────────────────────────────────────

def get_recommended_actions(
    deltas: ActivityDeltas,
    focus_areas: list[Category]
) -> dict[str, list[str]]:
    """
    Phrases d'action par catégorie prioritaire.
    Une catégorie n'apparaît que si son premier delta est positif.
    """
    actions: dict[str, list[str]] = {}
    focus = {Category(c) for c in focus_areas}

    p = deltas.prospecting
    if Category.PROSPECTING in focus and p.new_leads > 0:
        actions[Category.PROSPECTING.value] = [
            f"Add {p.new_leads} new leads to your pipeline",
            f"Make {p.calls} prospecting calls",
            f"Engage with {p.social_engagements} prospects on social media",
        ]

    n = deltas.nurturing
    if Category.NURTURING in focus and n.follow_up_calls > 0:
        actions[Category.NURTURING.value] = [
            f"Make {n.follow_up_calls} follow-up calls to warm prospects",
            f"Send {n.emails} personalized follow-up emails",
            f"Schedule {n.appointments} appointments with qualified prospects",
        ]

    c = deltas.client_care
    if Category.CLIENT_CARE in focus and c.weekly_touches > 0:
        actions[Category.CLIENT_CARE.value] = [
            f"Increase client touches by {c.weekly_touches} per active client",
            f"Schedule {c.showings} additional property showings",
            f"Prepare {c.offers} offers for ready buyers",
        ]

    a = deltas.administrative
    if Category.ADMINISTRATIVE in focus and a.crm_updates > 0:
        actions[Category.ADMINISTRATIVE.value] = [
            f"Update {a.crm_updates} CRM records",
            f"Review {a.contract_reviews} contracts or agreements",
            f"Complete {a.market_analyses} market analyses",
        ]

    return actions


# ─────────────────────────────────────────
# EFFICACITÉ D'UN PLAN PRÉCÉDENT
# ─────────────────────────────────────────

def analyze_effectiveness(
    previous_plan: Optional[ActionPlan],
    current_gaps: ActivityGaps
) -> dict:
    """
    Compare les écarts d'un plan passé aux écarts actuels.
    → amélioration > 5 points : catégorie efficace
    → dégradation > 5 points  : catégorie en difficulté
    """
    if previous_plan is None:
        return {"improvement": 0, "effective_areas": [], "struggling_areas": []}

    improvements = {
        category: previous_plan.gaps.for_category(category)
        - current_gaps.for_category(category)
        for category in Category
    }

    return {
        "improvement": round_half_up(sum(improvements.values()) / len(improvements)),
        "effective_areas": [
            c.value for c, imp in improvements.items() if imp > EFFECTIVE_THRESHOLD
        ],
        "struggling_areas": [
            c.value for c, imp in improvements.items() if imp < -EFFECTIVE_THRESHOLD
        ],
    }
