# connectors/crm/followupboss.py

import os
import requests
from datetime import datetime
from typing import Optional
from models import Activity, Contact, Deal, DealStatus
from connectors.base import BaseConnector, ConnectorError
import logging

logger = logging.getLogger(__name__)

FUB_DEFAULT_URL = "https://api.followupboss.com/v1"

PAGE_SIZE = 100
# Borne haute par ressource, évite de paginer indéfiniment
MAX_RECORDS = 5000

WON_KEYWORDS = ("closed", "sold", "won")
LOST_KEYWORDS = ("lost", "dead", "cancel")


class FollowUpBossConnector(BaseConnector):
    """
    Follow Up Boss, API REST v1.
    Auth Basic : clé API en utilisateur, mot de passe vide.
    Pagination limit / offset, total dans "_metadata.total" ou "totalCount".
    """

    source_name = "followupboss"

    @property
    def base_url(self) -> str:
        return (
            self.credentials.get("api_url")
            or os.getenv("FUB_API_URL")
            or FUB_DEFAULT_URL
        ).rstrip("/")

    def _auth(self) -> tuple[str, str]:
        return (self.credentials.get("api_key", ""), "")

    # ─────────────────────────────────────────
    # CONNEXION
    # ─────────────────────────────────────────

    def connect(self) -> bool:
        try:
            response = requests.get(
                f"{self.base_url}/people",
                params={"limit": 1},
                auth=self._auth(),
                timeout=self.timeout
            )
            return response.status_code == 200

        except requests.RequestException as e:
            logger.error(f"[fub] Connexion : {e}")
            return False

    # ─────────────────────────────────────────
    # PAGINATION
    # ─────────────────────────────────────────

    def _fetch_all(self, endpoint: str, key: str, params: Optional[dict] = None) -> list[dict]:
        records = []
        offset = 0

        while offset < MAX_RECORDS:
            try:
                response = requests.get(
                    f"{self.base_url}/{endpoint}",
                    params={**(params or {}), "limit": PAGE_SIZE, "offset": offset},
                    auth=self._auth(),
                    timeout=self.timeout
                )
                response.raise_for_status()
                data = response.json()

            except (requests.RequestException, ValueError) as e:
                raise ConnectorError(f"[fub] {endpoint} : {e}") from e

            if not isinstance(data, dict):
                raise ConnectorError(
                    f"[fub] {endpoint} : réponse inattendue ({type(data).__name__})"
                )

            page = data.get(key) or []
            records.extend(page)

            total = (
                data.get("totalCount")
                or (data.get("_metadata") or {}).get("total")
                or 0
            )
            offset += len(page)

            if not page:
                break
            if total and offset >= total:
                break
            if not total and len(page) < PAGE_SIZE:
                break

        return records

    # ─────────────────────────────────────────
    # CONTACTS
    # ─────────────────────────────────────────

    def fetch_contacts(self) -> list[Contact]:
        raw_people = self._fetch_all("people", "people", {"sort": "-updated"})

        contacts = []
        for raw in raw_people:
            contact = self._normalize_contact(raw)
            if contact:
                contacts.append(contact)

        logger.info(f"[fub] {self.user_id} : {len(contacts)} contacts")
        return contacts

    def _normalize_contact(self, raw: dict) -> Optional[Contact]:
        try:
            raw_id = self._safe_str(raw.get("id"))
            if not raw_id:
                return None

            emails = raw.get("emails") or []
            email = ""
            if isinstance(emails, list) and emails:
                first = emails[0]
                email = first.get("value", "") if isinstance(first, dict) else str(first)

            first_name = self._safe_str(raw.get("firstName"))
            last_name = self._safe_str(raw.get("lastName"))
            if not first_name and raw.get("name"):
                parts = self._safe_str(raw.get("name")).split(" ", 1)
                first_name = parts[0]
                last_name = parts[1] if len(parts) > 1 else ""

            return Contact(
                id=f"fub_{raw_id}",
                user_id=self.user_id,
                email=email.strip().lower(),
                first_name=first_name,
                last_name=last_name,
                stage=self._safe_str(raw.get("stage")),
                source=self._safe_str(raw.get("source"), "unknown"),
                tags=[str(t) for t in (raw.get("tags") or [])],
                created_at=self._parse_datetime(raw.get("created")),
                last_activity_at=self._parse_datetime(
                    raw.get("lastActivity") or raw.get("updated")
                ),
                connector_source=self.source_name,
                raw_id=raw_id
            )

        except Exception as e:
            logger.error(f"[fub] normalize_contact {raw.get('id')} : {e}")
            return None

    # ─────────────────────────────────────────
    # DEALS
    # ─────────────────────────────────────────

    def fetch_deals(self) -> list[Deal]:
        raw_deals = self._fetch_all("deals", "deals")

        deals = []
        for raw in raw_deals:
            deal = self._normalize_deal(raw)
            if deal:
                deals.append(deal)

        logger.info(f"[fub] {self.user_id} : {len(deals)} deals")
        return deals

    def _normalize_deal(self, raw: dict) -> Optional[Deal]:
        try:
            raw_id = self._safe_str(raw.get("id"))
            if not raw_id:
                return None

            stage_raw = raw.get("stage") or raw.get("stageName") or "new"
            if isinstance(stage_raw, dict):
                stage_raw = stage_raw.get("name", "new")
            stage = self._safe_str(stage_raw, "new")

            lowered = stage.lower()
            if any(k in lowered for k in WON_KEYWORDS):
                status = DealStatus.WON
            elif any(k in lowered for k in LOST_KEYWORDS):
                status = DealStatus.LOST
            else:
                status = DealStatus.ACTIVE

            updated_at = self._parse_datetime(raw.get("updated"))
            closed_at = self._parse_datetime(
                raw.get("closeDate") or raw.get("closedAt")
            )
            if status == DealStatus.WON and closed_at is None:
                closed_at = updated_at

            return Deal(
                id=f"fub_{raw_id}",
                user_id=self.user_id,
                title=self._safe_str(raw.get("name"), "Untitled Deal"),
                amount=self._safe_float(raw.get("price") or raw.get("value")),
                stage=stage,
                status=status,
                created_at=self._parse_datetime(raw.get("created")),
                updated_at=updated_at,
                closed_at=closed_at,
                connector_source=self.source_name,
                raw_id=raw_id
            )

        except Exception as e:
            logger.error(f"[fub] normalize_deal {raw.get('id')} : {e}")
            return None

    # ─────────────────────────────────────────
    # ACTIVITÉS
    # ─────────────────────────────────────────

    def fetch_activities(self, since: Optional[datetime] = None) -> list[Activity]:
        raw_events = self._fetch_all("events", "events", {"sort": "-created"})

        activities = []
        for raw in raw_events:
            activity = self._normalize_activity(raw)
            if activity is None:
                continue
            if since and activity.occurred_at and activity.occurred_at < since:
                continue
            activities.append(activity)

        logger.info(f"[fub] {self.user_id} : {len(activities)} activités")
        return activities

    def _normalize_activity(self, raw: dict) -> Optional[Activity]:
        try:
            raw_id = self._safe_str(raw.get("id"))
            if not raw_id:
                return None

            return Activity(
                id=f"fub_{raw_id}",
                user_id=self.user_id,
                type=self._safe_str(raw.get("type"), "note").lower(),
                contact_id=self._safe_str(raw.get("personId")),
                occurred_at=self._parse_datetime(raw.get("created")),
                connector_source=self.source_name,
                raw_id=raw_id
            )

        except Exception as e:
            logger.error(f"[fub] normalize_activity {raw.get('id')} : {e}")
            return None
