# services/llm.py

import os
import logging
from typing import Optional
from anthropic import Anthropic

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────
# CONFIG ANTHROPIC
# Haiku pour les insights du tableau de bord.
# ─────────────────────────────────────────

HAIKU = "claude-haiku-4-5"

SYSTEM_PROMPT = (
    "You are PaceCoach, a performance coach for residential real-estate agents. "
    "You read an agent's real activity scores, streak and completed tasks. "
    "Your advice is short, concrete and encouraging, and always tied to the numbers given. "
    "Never invent figures. If the data is thin, say so plainly. "
    "Answer in English."
)

# Listes tronquées dans le contexte envoyé au modèle
MAX_LIST_ITEMS = 10

_client: Optional[Anthropic] = None


def is_configured() -> bool:
    """Sans clé API, les appelants passent directement au repli déterministe."""
    return bool(os.getenv("ANTHROPIC_API_KEY"))


def _get_client() -> Anthropic:
    global _client
    if _client is None:
        _client = Anthropic(api_key=os.environ["ANTHROPIC_API_KEY"])
    return _client


# ─────────────────────────────────────────
# APPELS
# ─────────────────────────────────────────

def ask(
    prompt: str,
    context: dict,
    model: str = HAIKU,
    max_tokens: int = 500,
    temperature: float = 0.3,
    system: str = SYSTEM_PROMPT,
) -> str:
    """
    Envoie les données de l'agent + une consigne au modèle.

    Jamais d'exception vers l'appelant : "" si le LLM n'est pas
    configuré ou si l'appel échoue, à lui de prévoir un repli.
    """
    if not is_configured():
        logger.debug("[llm] ANTHROPIC_API_KEY absente, appel ignoré")
        return ""

    content = "\n\n".join(part for part in (_format_context(context), prompt) if part)

    try:
        response = _get_client().messages.create(
            model=model,
            system=system,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": content}],
        )
    except Exception as e:
        logger.error(f"[llm] échec {model} : {e}")
        return ""

    usage = response.usage
    logger.info(f"[llm] {model} → {usage.input_tokens} tokens in, {usage.output_tokens} out")
    return response.content[0].text


def coach(data: dict, instruction: str) -> str:
    """Insights courts du tableau de bord (Haiku, 400 tokens)."""
    return ask(instruction, data, model=HAIKU, max_tokens=400, temperature=0.4)


# ─────────────────────────────────────────
# CONTEXTE → TEXTE
# ─────────────────────────────────────────

def _format_context(context: dict) -> str:
    """
    {"scores": {"prospecting": 42}, "streak": 3}
    devient :

        AGENT DATA:
        scores:
          prospecting: 42
        streak: 3

    Les valeurs None / "" sont omises.
    """
    if not context:
        return ""
    return "\n".join(["AGENT DATA:", *_render(context, depth=0)])


def _render(node, depth: int) -> list[str]:
    pad = "  " * depth
    out: list[str] = []

    if isinstance(node, list):
        for item in node[:MAX_LIST_ITEMS]:
            if isinstance(item, dict):
                out.append(f"{pad}-")
                out += _render(item, depth + 1)
            else:
                out.append(f"{pad}- {item}")
        return out

    for key, value in node.items():
        if isinstance(value, (dict, list)):
            out.append(f"{pad}{key}:")
            out += _render(value, depth + 1)
        elif value not in (None, ""):
            out.append(f"{pad}{key}: {value}")
    return out
