# prompts.py

# ─────────────────────────────────────────
# INSIGHTS DU TABLEAU DE BORD
# ─────────────────────────────────────────

INSIGHT_TYPES = ("motivation", "performance", "activity", "positive")
INSIGHT_PRIORITIES = ("high", "medium", "low")


def coaching_insights(min_items: int = 2, max_items: int = 4) -> str:
    """
    Instruction pour les insights personnalisés.
    La réponse doit être un tableau JSON brut (parsé par orchestrator/insights.py).
    Utilisée avec llm.coach()
    """
    return (
        f"Analyze this real estate agent's performance and give "
        f"{min_items} to {max_items} specific, actionable insights. "
        f"Each insight is an object with the keys: "
        f"\"type\" (one of {', '.join(INSIGHT_TYPES)}), "
        f"\"title\" (max 6 words), "
        f"\"message\" (one or two sentences that cite the numbers above), "
        f"\"priority\" (one of {', '.join(INSIGHT_PRIORITIES)}). "
        f"Return only a valid JSON array. No markdown, no introduction."
    )
