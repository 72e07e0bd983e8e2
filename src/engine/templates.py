# engine/templates.py

"""
Bibliothèque statique des modèles de tâches.

Chargée une seule fois au démarrage depuis un JSON versionné.
Fichier absent ou contenu invalide → TemplateLibraryError.
Sans bibliothèque, impossible de produire des tâches :
l'erreur n'est jamais rattrapée ici.

Chemin :
→ TASK_LIBRARY_PATH si défini
→ sinon engine/task_library.json (livré avec le package)
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from models import Category, Difficulty, TaskTemplate, Unit

logger = logging.getLogger(__name__)

DEFAULT_LIBRARY_PATH = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), "task_library.json"
)

# Les points générés sont bornés à 100
MAX_BASE_POINTS = 100


class TemplateLibraryError(Exception):
    """Bibliothèque de modèles absente ou invalide (erreur de configuration)."""


@dataclass(frozen=True)
class QuickChallengeTemplate:
    # Défis "rapides" : points fixes, quantité tirée au hasard
    id: str
    title: str
    description: str
    category: Category
    points: int
    difficulty: Difficulty
    lead_sources: tuple[str, ...] = ()


# ─────────────────────────────────────────
# BIBLIOTHÈQUE
# ─────────────────────────────────────────

class TemplateLibrary:

    def __init__(
        self,
        templates: list[TaskTemplate],
        quick_challenges: Optional[list[QuickChallengeTemplate]] = None,
        version: str = ""
    ):
        self.version = version
        self.templates = list(templates)
        self.quick_challenges = list(quick_challenges or [])
        self._by_id = {t.id: t for t in self.templates}

    def __len__(self) -> int:
        return len(self.templates)

    def __iter__(self):
        return iter(self.templates)

    def get(self, template_id: str) -> Optional[TaskTemplate]:
        return self._by_id.get(template_id)

    def by_category(self, category: Category) -> list[TaskTemplate]:
        return [t for t in self.templates if t.category == category]

    def cooldown_days(self, template_id: str) -> int:
        template = self.get(template_id)
        return template.cooldown_days if template else 0


# ─────────────────────────────────────────
# CHARGEMENT
# ─────────────────────────────────────────

def load_template_library(path: Optional[str] = None) -> TemplateLibrary:
    path = path or os.getenv("TASK_LIBRARY_PATH") or DEFAULT_LIBRARY_PATH

    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError as e:
        raise TemplateLibraryError(f"Bibliothèque introuvable : {path}") from e
    except json.JSONDecodeError as e:
        raise TemplateLibraryError(f"JSON invalide dans {path} : {e}") from e

    if not isinstance(raw, dict) or not raw.get("templates"):
        raise TemplateLibraryError(f"Aucun modèle de tâche dans {path}")

    templates = [_parse_template(item) for item in raw["templates"]]
    quick = [_parse_quick_challenge(item) for item in raw.get("quick_challenges") or []]

    ids = [t.id for t in templates] + [q.id for q in quick]
    duplicates = {i for i in ids if ids.count(i) > 1}
    if duplicates:
        raise TemplateLibraryError(f"Identifiants dupliqués : {sorted(duplicates)}")

    library = TemplateLibrary(templates, quick, version=str(raw.get("version", "")))
    logger.info(
        f"[templates] Bibliothèque v{library.version} chargée — "
        f"{len(templates)} modèles, {len(quick)} défis rapides"
    )
    return library


def _parse_template(item: dict) -> TaskTemplate:
    try:
        template = TaskTemplate(
            id=str(item["id"]),
            title=str(item["title"]),
            description=str(item.get("description", "")),
            category=Category(item["category"]),
            unit=Unit(item["unit"]),
            base_target=int(item["base_target"]),
            max_auto_scale=int(item["max_auto_scale"]),
            difficulty=Difficulty(item["difficulty"]),
            base_points=int(item["base_points"]),
            lead_sources=tuple(item.get("lead_sources") or ()),
            cooldown_days=int(item.get("cooldown_days", 0)),
        )
    except (KeyError, ValueError, TypeError) as e:
        raise TemplateLibraryError(
            f"Modèle invalide {item.get('id') if isinstance(item, dict) else item} : {e}"
        ) from e

    if template.base_target <= 0:
        raise TemplateLibraryError(f"{template.id} : base_target doit être > 0")
    if template.max_auto_scale < template.base_target:
        raise TemplateLibraryError(
            f"{template.id} : max_auto_scale < base_target"
        )
    if template.cooldown_days < 0:
        raise TemplateLibraryError(f"{template.id} : cooldown négatif")
    if not 1 <= template.base_points <= MAX_BASE_POINTS:
        raise TemplateLibraryError(
            f"{template.id} : base_points hors de [1, {MAX_BASE_POINTS}]"
        )
    if "{target}" not in template.title:
        raise TemplateLibraryError(f"{template.id} : titre sans {{target}}")

    return template


def _parse_quick_challenge(item: dict) -> QuickChallengeTemplate:
    try:
        return QuickChallengeTemplate(
            id=str(item["id"]),
            title=str(item["title"]),
            description=str(item.get("description", "")),
            category=Category(item["category"]),
            points=int(item["points"]),
            difficulty=Difficulty(item["difficulty"]),
            lead_sources=tuple(item.get("lead_sources") or ()),
        )
    except (KeyError, ValueError, TypeError) as e:
        raise TemplateLibraryError(f"Défi rapide invalide : {e}") from e


# ─────────────────────────────────────────
# INSTANCE PARTAGÉE
# ─────────────────────────────────────────

_library: Optional[TemplateLibrary] = None


def get_template_library() -> TemplateLibrary:
    global _library
    if _library is None:
        _library = load_template_library()
    return _library
