# connectors/__init__.py

"""
Point d'entrée des connecteurs CRM.

    from connectors import get_connector_for_profile

    connector = get_connector_for_profile(profile)
    if connector and connector.connect():
        deals = connector.fetch_deals()
"""

import importlib
import logging
from typing import Optional

from connectors.base import BaseConnector, ConnectorError

logger = logging.getLogger(__name__)

# Alias outil → "module:Classe", importé à la demande
_REGISTRY = {
    "followupboss": "connectors.crm.followupboss:FollowUpBossConnector",
    "fub":          "connectors.crm.followupboss:FollowUpBossConnector",
}


def get_connector(tool_name: str, user_id: str, credentials: dict) -> Optional[BaseConnector]:
    """None si l'outil n'est pas supporté."""
    target = _REGISTRY.get((tool_name or "").strip().lower())
    if target is None:
        logger.warning(f"[connectors] outil CRM non supporté : {tool_name!r}")
        return None

    module_path, class_name = target.split(":")
    connector_cls = getattr(importlib.import_module(module_path), class_name)
    return connector_cls(user_id, credentials)


def get_connector_for_profile(profile: dict) -> Optional[BaseConnector]:
    """
    profile["crm"] = {"tool": "followupboss", "credentials": {"api_key": ...}}
    None tant que l'outil ou les identifiants manquent.
    """
    crm = profile.get("crm") or {}
    if not crm.get("tool") or not crm.get("credentials"):
        return None
    return get_connector(crm["tool"], profile.get("user_id", ""), crm["credentials"])


def list_supported_tools() -> list[str]:
    return sorted(_REGISTRY)


__all__ = [
    "BaseConnector",
    "ConnectorError",
    "get_connector",
    "get_connector_for_profile",
    "list_supported_tools",
]
