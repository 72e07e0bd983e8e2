# orchestrator/insights.py

"""
Insights personnalisés affichés sur le tableau de bord.

→ ANTHROPIC_API_KEY configurée : le LLM produit un tableau JSON
→ sinon, ou réponse inexploitable : règles déterministes
  (série faible, catégorie faible, régularité, note positive)
"""

import json
import logging
from typing import Optional

import prompts
from models import Category, StreakData, SubScores
from services import llm

logger = logging.getLogger(__name__)

LOW_STREAK = 3
WEAK_CATEGORY_SCORE = 70
MIN_MONTHLY_COMPLETIONS = 10

CATEGORY_LABELS = {
    Category.PROSPECTING: "Prospecting",
    Category.NURTURING: "Nurturing",
    Category.CLIENT_CARE: "Client Care",
    Category.ADMINISTRATIVE: "Administrative",
}


def generate_insights(
    profile: dict,
    subscores: SubScores,
    streak: StreakData,
    recent_completions: list[dict]
) -> list[dict]:
    if llm.is_configured():
        context = _build_context(profile, subscores, streak, recent_completions)
        raw = llm.coach(context, prompts.coaching_insights())

        parsed = parse_insights(raw)
        if parsed:
            return parsed

        logger.warning(
            f"[insights] {profile.get('user_id')} — réponse LLM inexploitable, repli"
        )

    return fallback_insights(subscores, streak, recent_completions)


def parse_insights(raw: str) -> Optional[list[dict]]:
    """
    Tableau JSON d'objets {type, title, message, priority}.
    Tolère un bloc ```json autour. None si invalide ou vide.
    """
    if not raw:
        return None

    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]

    try:
        data = json.loads(text)
    except ValueError:
        return None

    if not isinstance(data, list):
        return None

    insights = []
    for item in data:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        message = str(item.get("message") or "").strip()
        if not title or not message:
            continue

        kind = item.get("type")
        priority = item.get("priority")
        insights.append({
            "type": kind if kind in prompts.INSIGHT_TYPES else "performance",
            "title": title,
            "message": message,
            "priority": priority if priority in prompts.INSIGHT_PRIORITIES else "medium",
        })

    return insights or None


def fallback_insights(
    subscores: SubScores,
    streak: StreakData,
    recent_completions: list[dict]
) -> list[dict]:
    insights = []

    if streak.current_streak < LOW_STREAK:
        insights.append({
            "type": "motivation",
            "title": "Build Your Momentum",
            "message": (
                f"Your current streak is {streak.current_streak} day(s). "
                f"Complete 5 tasks and 70 points today to keep it growing."
            ),
            "priority": "high",
        })

    weakest = min(Category, key=subscores.for_category)
    weakest_score = subscores.for_category(weakest)
    if weakest_score < WEAK_CATEGORY_SCORE:
        label = CATEGORY_LABELS[weakest]
        insights.append({
            "type": "performance",
            "title": f"Boost Your {label}",
            "message": (
                f"Your {label.lower()} score is {weakest_score}/100. "
                f"Prioritize today's {label.lower()} tasks to close the gap."
            ),
            "priority": "medium",
        })

    if len(recent_completions) < MIN_MONTHLY_COMPLETIONS:
        insights.append({
            "type": "activity",
            "title": "Stay Consistent",
            "message": (
                f"You completed {len(recent_completions)} tasks in the last 30 days. "
                f"Consistency is key to reaching your goals."
            ),
            "priority": "medium",
        })

    points = sum(int(c.get("points", 0)) for c in recent_completions)
    insights.append({
        "type": "positive",
        "title": "Great Progress!",
        "message": (
            f"You've earned {points} points over the last 30 days "
            f"and your longest streak is {streak.longest_streak} days. Keep it up!"
        ),
        "priority": "low",
    })

    return insights


def _build_context(
    profile: dict,
    subscores: SubScores,
    streak: StreakData,
    recent_completions: list[dict]
) -> dict:
    by_category: dict[str, int] = {}
    for completion in recent_completions:
        category = completion.get("category", "unknown")
        by_category[category] = by_category.get(category, 0) + 1

    return {
        "agent": {
            "name": profile.get("name"),
            "annual_commission_goal": profile.get("commission_goal"),
            "lead_sources": profile.get("lead_sources"),
        },
        "scores": subscores.to_dict(),
        "streak": {
            "current": streak.current_streak,
            "longest": streak.longest_streak,
            "qualifying_days": streak.total_days,
        },
        "completions_last_30_days": len(recent_completions),
        "completions_by_category": by_category,
        "points_last_30_days": sum(int(c.get("points", 0)) for c in recent_completions),
    }
