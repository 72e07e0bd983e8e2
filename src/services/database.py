# services/database.py

"""
Persistance clé-valeur + journal d'événements.

Le cœur n'a besoin que de :
→ get / put par clé        (plans, streaks, profils)
→ append / query par user  (complétions, plans d'action, métriques)

Deux implémentations :
→ SupabaseStore : tables kv_records et event_records
→ MemoryStore   : en mémoire, pour les tests et le local

Clés :
    plan:{user_id}:{YYYY-MM-DD}
    streak:{user_id}
    profile:{user_id}
    api_key:{key}
"""

import os
import logging
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Optional

from supabase import create_client, Client

from models import to_json

logger = logging.getLogger(__name__)

KV_TABLE = "kv_records"
EVENTS_TABLE = "event_records"

# Collections du journal
TASK_COMPLETIONS = "task_completions"
ACTION_PLANS = "action_plans"
METRICS_HISTORY = "metrics_history"


# ─────────────────────────────────────────
# CLÉS
# ─────────────────────────────────────────

def plan_key(user_id: str, day: date) -> str:
    return f"plan:{user_id}:{day.isoformat()}"


def streak_key(user_id: str) -> str:
    return f"streak:{user_id}"


def profile_key(user_id: str) -> str:
    return f"profile:{user_id}"


def api_key_key(api_key: str) -> str:
    return f"api_key:{api_key}"


# ─────────────────────────────────────────
# CONTRAT
# ─────────────────────────────────────────

class BaseStore(ABC):

    @abstractmethod
    def get(self, key: str) -> Optional[dict]:
        pass

    @abstractmethod
    def put(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def keys(self, prefix: str) -> list[str]:
        pass

    @abstractmethod
    def append(
        self,
        collection: str,
        user_id: str,
        timestamp: date | datetime,
        payload: Any
    ) -> None:
        pass

    @abstractmethod
    def query(
        self,
        collection: str,
        user_id: str,
        start: Optional[date | datetime] = None,
        end: Optional[date | datetime] = None
    ) -> list[dict]:
        """
        Événements d'un user, triés par timestamp croissant.
        start inclus, end exclu.
        """
        pass


# ─────────────────────────────────────────
# SUPABASE
# ─────────────────────────────────────────

def get_client() -> Client:
    url = os.environ["SUPABASE_URL"]
    key = os.environ["SUPABASE_SERVICE_KEY"]
    return create_client(url, key)


class SupabaseStore(BaseStore):

    def __init__(self, client: Optional[Client] = None):
        self.client = client or get_client()

    def get(self, key: str) -> Optional[dict]:
        result = (
            self.client.table(KV_TABLE)
            .select("value")
            .eq("key", key)
            .limit(1)
            .execute()
        )
        return result.data[0]["value"] if result.data else None

    def put(self, key: str, value: Any) -> None:
        record = {
            "key": key,
            "value": _serialize(value),
            "updated_at": datetime.utcnow().isoformat(),
        }
        self.client.table(KV_TABLE).upsert(record, on_conflict="key").execute()

    def keys(self, prefix: str) -> list[str]:
        result = (
            self.client.table(KV_TABLE)
            .select("key")
            .like("key", f"{prefix}%")
            .execute()
        )
        return sorted(row["key"] for row in (result.data or []))

    def append(self, collection, user_id, timestamp, payload) -> None:
        event = {
            "collection": collection,
            "user_id": user_id,
            "timestamp": _timestamp(timestamp),
            "payload": _serialize(payload),
        }
        self.client.table(EVENTS_TABLE).insert(event).execute()

    def query(self, collection, user_id, start=None, end=None) -> list[dict]:
        query = (
            self.client.table(EVENTS_TABLE)
            .select("payload")
            .eq("collection", collection)
            .eq("user_id", user_id)
        )
        if start is not None:
            query = query.gte("timestamp", _timestamp(start))
        if end is not None:
            query = query.lt("timestamp", _timestamp(end))

        result = query.order("timestamp").execute()
        return [row["payload"] for row in (result.data or [])]


# ─────────────────────────────────────────
# MÉMOIRE
# ─────────────────────────────────────────

class MemoryStore(BaseStore):

    def __init__(self):
        self._lock = threading.RLock()
        self._kv: dict[str, dict] = {}
        self._events: list[dict] = []

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            value = self._kv.get(key)
            return _copy(value) if value is not None else None

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._kv[key] = _copy(_serialize(value))

    def keys(self, prefix: str) -> list[str]:
        with self._lock:
            return sorted(k for k in self._kv if k.startswith(prefix))

    def append(self, collection, user_id, timestamp, payload) -> None:
        with self._lock:
            self._events.append({
                "collection": collection,
                "user_id": user_id,
                "timestamp": _timestamp(timestamp),
                "payload": _copy(_serialize(payload)),
            })

    def query(self, collection, user_id, start=None, end=None) -> list[dict]:
        low = _timestamp(start) if start is not None else None
        high = _timestamp(end) if end is not None else None

        with self._lock:
            matches = [
                e for e in self._events
                if e["collection"] == collection
                and e["user_id"] == user_id
                and (low is None or e["timestamp"] >= low)
                and (high is None or e["timestamp"] < high)
            ]
            matches.sort(key=lambda e: e["timestamp"])
            return [_copy(e["payload"]) for e in matches]


# ─────────────────────────────────────────
# INSTANCE PARTAGÉE
# ─────────────────────────────────────────

_store: Optional[BaseStore] = None


def get_store() -> BaseStore:
    """
    Supabase si SUPABASE_URL est défini, sinon mémoire
    (les données ne survivent pas au redémarrage).
    """
    global _store
    if _store is None:
        if os.getenv("SUPABASE_URL"):
            _store = SupabaseStore()
        else:
            logger.warning("SUPABASE_URL absent — stockage en mémoire")
            _store = MemoryStore()
    return _store


def set_store(store: Optional[BaseStore]) -> None:
    global _store
    _store = store


# ─────────────────────────────────────────
# UTILITAIRE INTERNE
# ─────────────────────────────────────────

def _serialize(value: Any) -> Any:
    """
    Convertit un dataclass (ou une structure) en dict compatible JSON.
    Préfère to_dict() quand le modèle en fournit un.
    """
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if hasattr(value, "__dataclass_fields__"):
        from dataclasses import asdict
        return to_json(asdict(value))
    return to_json(value)


def _timestamp(value: date | datetime | str) -> str:
    if isinstance(value, str):
        return value
    return value.isoformat()


def _copy(value):
    # Copie profonde des structures JSON (isole l'appelant du stockage)
    if isinstance(value, dict):
        return {k: _copy(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy(v) for v in value]
    return value
