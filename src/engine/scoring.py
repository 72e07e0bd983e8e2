# engine/scoring.py

"""
Moteur de scoring, fonctions pures, aucune I/O.

RawMetrics → 4 sous-scores (0-100) + un score global
(moyenne harmonique pondérée).

Règles communes :
→ chaque ratio est plafonné à 2 (bonus borné)
→ dénominateur nul → ratio 0, jamais de NaN / inf
→ arrondi "au plus proche", moitié vers le haut
"""

import math
from datetime import date
from typing import Optional

from models import Category, RawMetrics, ScoreWeights, SubScores


DEFAULT_WEIGHTS = ScoreWeights()

RATIO_CAP = 2.0

# Vitesses idéales (jours)
IDEAL_PROSPECTING_VELOCITY = 10
IDEAL_NURTURING_VELOCITY = 21
IDEAL_CLOSE_VELOCITY = 35

# Part de l'objectif d'activité quotidien par catégorie
PROSPECTING_ACTIVITY_SHARE = 0.40
NURTURING_ACTIVITY_SHARE = 0.35
ADMIN_ACTIVITY_SHARE = 0.25

TOUCHES_PER_ACTIVE_CLIENT = 3
EXPECTED_COMPLIANCE_ITEMS = 2


# ─────────────────────────────────────────
# UTILITAIRES
# ─────────────────────────────────────────

def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def safe_ratio(actual: float, target: float, cap: float = RATIO_CAP) -> float:
    """min(actual / target, cap), 0 si target <= 0."""
    if target <= 0:
        return 0.0
    return min(actual / target, cap)


def _clamp_score(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


# ─────────────────────────────────────────
# SOUS-SCORES
# ─────────────────────────────────────────

def calc_prospecting_score(metrics: RawMetrics) -> int:
    activity = metrics.activity.prospecting
    targets = metrics.targets

    actual_activity = (
        activity.calls_logged
        + activity.new_leads_added
        + activity.social_engagements
    )
    activity_ratio = safe_ratio(
        actual_activity,
        targets.daily_activity_target * PROSPECTING_ACTIVITY_SHARE
    )
    lead_ratio = safe_ratio(activity.new_leads_added, targets.daily_lead_target)

    # Plus la transition est rapide, meilleur est le score
    velocity_ratio = safe_ratio(
        IDEAL_PROSPECTING_VELOCITY,
        metrics.velocity.prospecting_to_nurturing
    )

    return _clamp_score(
        min(100, 40 * activity_ratio + 30 * lead_ratio + 30 * velocity_ratio)
    )


def calc_nurturing_score(metrics: RawMetrics) -> int:
    activity = metrics.activity.nurturing

    actual_activity = (
        activity.follow_up_calls
        + activity.emails_sent
        + activity.appointments_set
    )
    activity_ratio = safe_ratio(
        actual_activity,
        metrics.targets.daily_activity_target * NURTURING_ACTIVITY_SHARE
    )
    velocity_ratio = safe_ratio(
        IDEAL_NURTURING_VELOCITY,
        metrics.velocity.nurturing_to_client_care
    )

    # Part des leads sans contact depuis 30 jours ou plus
    dormant_penalty = safe_ratio(
        metrics.dormant.thirty_days, metrics.dormant.total, cap=1.0
    )

    return _clamp_score(
        min(100,
            50 * activity_ratio
            + 30 * velocity_ratio
            + 20 * (1 - dormant_penalty))
    )


def calc_client_care_score(metrics: RawMetrics) -> int:
    activity = metrics.activity.client_care

    actual_touches = activity.client_touches + activity.appointments_set
    target_touches = metrics.pipeline.client_care * TOUCHES_PER_ACTIVE_CLIENT
    touch_ratio = safe_ratio(actual_touches, target_touches)

    appointment_offer_ratio = safe_ratio(
        activity.offers_created, activity.appointments_set, cap=1.0
    )
    close_velocity_ratio = safe_ratio(
        IDEAL_CLOSE_VELOCITY,
        metrics.velocity.client_care_to_close
    )

    return _clamp_score(
        min(100,
            60 * touch_ratio
            + 25 * appointment_offer_ratio
            + 15 * close_velocity_ratio)
    )


def calc_administrative_score(metrics: RawMetrics) -> int:
    activity = metrics.activity.administrative

    admin_work = (
        activity.crm_updates
        + activity.contracts_reviewed
        + activity.market_analyses
    )
    task_completion_ratio = safe_ratio(
        admin_work,
        metrics.targets.daily_activity_target * ADMIN_ACTIVITY_SHARE
    )
    compliance_ratio = safe_ratio(
        activity.compliance_items, EXPECTED_COMPLIANCE_ITEMS, cap=1.0
    )

    return _clamp_score(
        min(100,
            50 * metrics.hygiene.clean_ratio
            + 25 * task_completion_ratio
            + 25 * compliance_ratio)
    )


# ─────────────────────────────────────────
# SCORE GLOBAL
# ─────────────────────────────────────────

def _validate_weights(weights: ScoreWeights) -> None:
    for category in Category:
        value = weights.for_category(category)
        if value is None or math.isnan(value) or value < 0:
            raise ValueError(f"Poids invalide pour {category.value} : {value}")


def calc_overall_health(
    subscores: dict[Category, int],
    weights: Optional[ScoreWeights] = None
) -> int:
    """
    Moyenne harmonique pondérée : 4 / Σ(w_i / max(s_i, 1)).
    Un sous-score à 0 est ramené à 1 pour éviter la division par zéro.
    Résultat plafonné à 100.
    """
    weights = weights or DEFAULT_WEIGHTS
    _validate_weights(weights)

    denominator = sum(
        weights.for_category(category) / max(subscores[category], 1)
        for category in Category
    )
    if denominator <= 0:
        return 0

    return _clamp_score(min(4 / denominator, 100))


def calculate_all_scores(
    metrics: RawMetrics,
    weights: Optional[ScoreWeights] = None
) -> SubScores:
    scores = {
        Category.PROSPECTING: calc_prospecting_score(metrics),
        Category.NURTURING: calc_nurturing_score(metrics),
        Category.CLIENT_CARE: calc_client_care_score(metrics),
        Category.ADMINISTRATIVE: calc_administrative_score(metrics),
    }

    return SubScores(
        prospecting=scores[Category.PROSPECTING],
        nurturing=scores[Category.NURTURING],
        client_care=scores[Category.CLIENT_CARE],
        administrative=scores[Category.ADMINISTRATIVE],
        overall=calc_overall_health(scores, weights),
    )


# ─────────────────────────────────────────
# DÉRIVE TRIMESTRIELLE
# ─────────────────────────────────────────

def get_quarter(day: date) -> int:
    return (day.month - 1) // 3 + 1


def get_quarterly_weights(day: date) -> ScoreWeights:
    """
    Chaque trimestre déplace 5 points de prospection/nurturing
    vers le suivi client.
    → Q1 : shift 0     → Q4 : shift 0.15
    → prospection / nurturing jamais sous 0.20
    → suivi client jamais au-dessus de 0.40
    """
    shift = 0.05 * (get_quarter(day) - 1)

    return ScoreWeights(
        prospecting=max(0.20, round(0.30 - shift, 4)),
        nurturing=max(0.20, round(0.30 - shift, 4)),
        client_care=min(0.40, round(0.25 + 2 * shift, 4)),
        administrative=0.15,
    )
