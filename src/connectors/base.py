# connectors/base.py

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from models import Activity, Contact, Deal

logger = logging.getLogger(__name__)

# Au-delà, un timestamp numérique est en millisecondes
_MS_THRESHOLD = 10_000_000_000


class ConnectorError(Exception):
    """
    CRM injoignable ou réponse HTTP en erreur.
    MetricsCollector l'attrape section par section et garde les valeurs par défaut.
    """


class BaseConnector(ABC):
    """
    Interface commune des connecteurs CRM (lecture seule).

    → connect()          : True si les identifiants sont acceptés
    → fetch_contacts()   : personnes / leads
    → fetch_deals()      : transactions
    → fetch_activities() : appels, emails, notes

    Échec réseau / HTTP → ConnectorError.
    Enregistrement illisible → ignoré avec un warning.
    """

    timeout = 10

    def __init__(self, user_id: str, credentials: dict):
        self.user_id = user_id
        self.credentials = credentials or {}

    @property
    @abstractmethod
    def source_name(self) -> str:
        ...

    @abstractmethod
    def connect(self) -> bool:
        ...

    @abstractmethod
    def fetch_contacts(self) -> list[Contact]:
        ...

    @abstractmethod
    def fetch_deals(self) -> list[Deal]:
        ...

    @abstractmethod
    def fetch_activities(self, since: Optional[datetime] = None) -> list[Activity]:
        ...

    # ─────────────────────────────────────────
    # NORMALISATION DES CHAMPS BRUTS
    # ─────────────────────────────────────────

    @staticmethod
    def _safe_float(value, default: float = 0.0) -> float:
        if value is None:
            return default
        try:
            return float(value)
        except (ValueError, TypeError):
            return default

    @staticmethod
    def _safe_str(value, default: str = "") -> str:
        text = "" if value is None else str(value).strip()
        return text or default

    @staticmethod
    def _parse_datetime(value) -> Optional[datetime]:
        """
        ISO 8601 (Z ou offset), "YYYY-MM-DD", "YYYY-MM-DD HH:MM:SS",
        timestamp en secondes ou millisecondes.
        → datetime naïf exprimé en UTC, None si illisible.
        """
        if value is None or value == "":
            return None

        try:
            if isinstance(value, datetime):
                parsed = value
            elif isinstance(value, (int, float)):
                seconds = value / 1000 if value > _MS_THRESHOLD else value
                parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
            else:
                parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except (ValueError, TypeError, OSError):
            logger.debug(f"[connector] date illisible : {value!r}")
            return None

        if parsed.tzinfo is None:
            return parsed
        return parsed.astimezone(timezone.utc).replace(tzinfo=None)
