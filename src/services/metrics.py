# services/metrics.py

"""
Collecteur de métriques brutes.

Assemble un RawMetrics complet pour un agent et une date :
→ pipeline, vélocité, leads dormants, hygiène : CRM
→ volume d'activité : journal des tâches complétées la veille
→ cibles : objectifs du profil agent

Le résultat est TOUJOURS complet. Si le CRM est absent ou en
erreur, chaque section concernée retombe sur des valeurs d'exemple
fixes (log warning, jamais d'erreur remontée à l'utilisateur).
"""

import logging
import math
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from connectors import get_connector_for_profile
from connectors.base import BaseConnector, ConnectorError
from models import (
    ActivityVolume,
    AdministrativeActivity,
    Category,
    ClientCareActivity,
    CompletionEvent,
    Contact,
    DataHygiene,
    Deal,
    DealStatus,
    DormantLeads,
    NurturingActivity,
    PipelineCounts,
    ProspectingActivity,
    RawMetrics,
    StageVelocity,
    Targets,
    Unit,
)
from orchestrator.profile import get_agent_profile
from services.database import (
    BaseStore,
    METRICS_HISTORY,
    TASK_COMPLETIONS,
    get_store,
)

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
# VALEURS PAR DÉFAUT (CRM indisponible)
# ─────────────────────────────────────────

DEFAULT_PIPELINE = PipelineCounts(
    prospecting=45, nurturing=32, client_care=18, closed=8, total_leads=103
)
DEFAULT_VELOCITY = StageVelocity(
    prospecting_to_nurturing=14,
    nurturing_to_client_care=28,
    client_care_to_close=45,
    overall=87,
)
DEFAULT_DORMANT = DormantLeads(
    seven_days=12, thirty_days=28, sixty_days=45, ninety_days=67, total=152
)
DEFAULT_HYGIENE = DataHygiene(
    duplicate_contacts=5, missing_tags=23, stale_deals=12, total_leads=150
)

VELOCITY_WINDOW_DAYS = 30
STALE_DEAL_DAYS = 90
DORMANT_BUCKETS = (7, 30, 60, 90)
WORK_DAY_RATIO = 0.7
ACTIVITIES_PER_LEAD = 2

# Mots-clés d'étape CRM → catégorie du pipeline (premier match gagne)
STAGE_KEYWORDS = (
    (("prospect", "lead"), "prospecting"),
    (("nurtur", "follow"), "nurturing"),
    (("client", "contract", "escrow"), "client_care"),
    (("closed", "sold"), "closed"),
)

# (catégorie, unité) → champ du volume d'activité
ACTIVITY_FIELDS = {
    (Category.PROSPECTING, Unit.CALLS): "calls_logged",
    (Category.PROSPECTING, Unit.LEADS): "new_leads_added",
    (Category.PROSPECTING, Unit.TOUCHES): "social_engagements",
    (Category.PROSPECTING, Unit.APPOINTMENTS): "appointments_set",
    (Category.NURTURING, Unit.CALLS): "follow_up_calls",
    (Category.NURTURING, Unit.EMAILS): "emails_sent",
    (Category.NURTURING, Unit.APPOINTMENTS): "appointments_set",
    (Category.CLIENT_CARE, Unit.TOUCHES): "client_touches",
    (Category.CLIENT_CARE, Unit.APPOINTMENTS): "appointments_set",
    (Category.CLIENT_CARE, Unit.UPDATES): "offers_created",
    (Category.ADMINISTRATIVE, Unit.UPDATES): "crm_updates",
    (Category.ADMINISTRATIVE, Unit.REVIEWS): "contracts_reviewed",
    (Category.ADMINISTRATIVE, Unit.ANALYSES): "market_analyses",
}

# Modèles dont le champ ne se déduit pas de (catégorie, unité)
TEMPLATE_ACTIVITY_OVERRIDES = {
    "admin-compliance": "compliance_items",
}


class MetricsCollector:

    def __init__(
        self,
        store: Optional[BaseStore] = None,
        connector_factory: Callable[[dict], Optional[BaseConnector]] = get_connector_for_profile
    ):
        self.store = store or get_store()
        self.connector_factory = connector_factory

    # ─────────────────────────────────────────
    # POINT D'ENTRÉE
    # ─────────────────────────────────────────

    def collect_raw_metrics(self, user_id: str, day: date) -> RawMetrics:
        profile = get_agent_profile(user_id, self.store)
        contacts, deals = self._fetch_crm(profile)

        actual_gci = self._actual_gci(profile, deals, day)

        metrics = RawMetrics(
            user_id=user_id,
            date=day,
            pipeline=self._pipeline_counts(contacts, deals),
            velocity=self._stage_velocity(deals, day),
            activity=self._activity_volume(user_id, day - timedelta(days=1)),
            dormant=self._dormant_leads(contacts, day),
            hygiene=self._data_hygiene(contacts, deals, day),
            targets=calculate_targets(profile, day, actual_gci),
        )

        logger.info(
            f"[metrics] {user_id} {day} — activité veille "
            f"{metrics.activity.total()}, lead cible "
            f"{metrics.targets.daily_lead_target}/jour"
        )
        return metrics

    # ─────────────────────────────────────────
    # CRM
    # ─────────────────────────────────────────

    def _fetch_crm(
        self,
        profile: dict
    ) -> tuple[Optional[list[Contact]], Optional[list[Deal]]]:
        """
        Retourne (contacts, deals). None pour une ressource
        indisponible → la section retombe sur les defaults.
        """
        connector = self.connector_factory(profile)
        if connector is None:
            return None, None

        contacts = deals = None
        try:
            contacts = connector.fetch_contacts()
        except ConnectorError as e:
            logger.warning(f"[metrics] Contacts CRM indisponibles : {e}")
        try:
            deals = connector.fetch_deals()
        except ConnectorError as e:
            logger.warning(f"[metrics] Deals CRM indisponibles : {e}")

        return contacts, deals

    def _pipeline_counts(self, contacts, deals) -> PipelineCounts:
        if contacts is None or deals is None:
            return DEFAULT_PIPELINE

        counts = defaultdict(int)
        for deal in deals:
            counts[_stage_category(deal.stage)] += 1

        return PipelineCounts(
            prospecting=counts["prospecting"],
            nurturing=counts["nurturing"],
            client_care=counts["client_care"],
            closed=counts["closed"],
            total_leads=len(contacts),
        )

    def _stage_velocity(self, deals, day: date) -> StageVelocity:
        """
        Cycle moyen des deals gagnés sur 30 jours, réparti entre
        les étapes selon les proportions de référence.
        """
        if deals is None:
            return DEFAULT_VELOCITY

        window_start = _start_of(day) - timedelta(days=VELOCITY_WINDOW_DAYS)
        cycles = [
            (d.closed_at - d.created_at).days
            for d in deals
            if d.status == DealStatus.WON
            and d.closed_at and d.created_at
            and window_start <= d.closed_at <= _end_of(day)
            and d.closed_at >= d.created_at
        ]
        if not cycles:
            return DEFAULT_VELOCITY

        overall = max(1.0, sum(cycles) / len(cycles))
        reference = DEFAULT_VELOCITY.overall

        return StageVelocity(
            prospecting_to_nurturing=round(
                overall * DEFAULT_VELOCITY.prospecting_to_nurturing / reference, 1
            ),
            nurturing_to_client_care=round(
                overall * DEFAULT_VELOCITY.nurturing_to_client_care / reference, 1
            ),
            client_care_to_close=round(
                overall * DEFAULT_VELOCITY.client_care_to_close / reference, 1
            ),
            overall=round(overall, 1),
        )

    def _dormant_leads(self, contacts, day: date) -> DormantLeads:
        if contacts is None:
            return DEFAULT_DORMANT

        reference = _end_of(day)
        buckets = dict.fromkeys(DORMANT_BUCKETS, 0)

        for contact in contacts:
            last = contact.last_activity_at
            # Jamais d'activité → dormant dans toutes les tranches
            days_idle = (reference - last).days if last else math.inf
            for threshold in DORMANT_BUCKETS:
                if days_idle >= threshold:
                    buckets[threshold] += 1

        return DormantLeads(
            seven_days=buckets[7],
            thirty_days=buckets[30],
            sixty_days=buckets[60],
            ninety_days=buckets[90],
            total=len(contacts),
        )

    def _data_hygiene(self, contacts, deals, day: date) -> DataHygiene:
        if contacts is None or deals is None:
            return DEFAULT_HYGIENE

        emails = [c.email.lower() for c in contacts if c.email]
        duplicates = len(emails) - len(set(emails))
        missing_tags = sum(1 for c in contacts if not c.tags)

        reference = _end_of(day)
        stale = 0
        for deal in deals:
            if deal.status != DealStatus.ACTIVE:
                continue
            last = deal.updated_at or deal.created_at
            if last is None or (reference - last).days > STALE_DEAL_DAYS:
                stale += 1

        return DataHygiene(
            duplicate_contacts=duplicates,
            missing_tags=missing_tags,
            stale_deals=stale,
            total_leads=len(contacts),
        )

    def _actual_gci(self, profile: dict, deals, day: date) -> float:
        """
        Commission encaissée depuis le 1er janvier.
        → ytd_commission du profil si renseigné
        → sinon deals gagnés cette année × taux de commission
        """
        if profile.get("ytd_commission") is not None:
            return float(profile["ytd_commission"])
        if not deals:
            return 0.0

        rate = float(profile.get("commission_rate") or 0)
        won_volume = sum(
            d.amount for d in deals
            if d.status == DealStatus.WON
            and d.closed_at
            and d.closed_at.year == day.year
            and d.closed_at.date() <= day
        )
        return round(won_volume * rate, 2)

    # ─────────────────────────────────────────
    # ACTIVITÉ (journal local)
    # ─────────────────────────────────────────

    def _activity_volume(self, user_id: str, day: date) -> ActivityVolume:
        events = self.store.query(
            TASK_COMPLETIONS, user_id, day, day + timedelta(days=1)
        )

        sections = {c: defaultdict(int) for c in Category}
        for raw in events:
            try:
                event = CompletionEvent.from_dict(raw)
            except (KeyError, ValueError) as e:
                logger.warning(f"[metrics] Complétion illisible ignorée : {e}")
                continue

            field_name = TEMPLATE_ACTIVITY_OVERRIDES.get(event.template_id) or \
                ACTIVITY_FIELDS.get((event.category, event.unit))
            if field_name:
                sections[event.category][field_name] += event.target

        return ActivityVolume(
            prospecting=ProspectingActivity(**sections[Category.PROSPECTING]),
            nurturing=NurturingActivity(**sections[Category.NURTURING]),
            client_care=ClientCareActivity(**sections[Category.CLIENT_CARE]),
            administrative=AdministrativeActivity(**sections[Category.ADMINISTRATIVE]),
        )

    # ─────────────────────────────────────────
    # HISTORIQUE
    # ─────────────────────────────────────────

    def save_metrics(self, metrics: RawMetrics) -> None:
        self.store.append(METRICS_HISTORY, metrics.user_id, metrics.date, metrics)

    def load_historical_metrics(
        self,
        user_id: str,
        days: int = 30,
        today: Optional[date] = None
    ) -> list[RawMetrics]:
        """Snapshots des `days` derniers jours, aujourd'hui inclus."""
        today = today or date.today()
        records = self.store.query(
            METRICS_HISTORY, user_id,
            today - timedelta(days=days - 1), today + timedelta(days=1)
        )

        history = []
        for record in records:
            try:
                history.append(RawMetrics.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[metrics] Snapshot illisible ignoré : {e}")
        return history


# ─────────────────────────────────────────
# CIBLES
# ─────────────────────────────────────────

def calculate_targets(profile: dict, day: date, actual_gci: float = 0.0) -> Targets:
    """
    → jours ouvrés restants = 70% des jours jusqu'au 31/12 (min 1)
    → leads / jour = commission restante / (prix × taux × conversion)
                     / jours ouvrés, arrondi au supérieur, min 1
    → activités / jour = 2 × leads / jour
    → GCI cible à date = objectif × fraction de l'année écoulée
    """
    goal = float(profile.get("commission_goal") or 0)
    price = float(profile.get("average_sales_price") or 0)
    rate = float(profile.get("commission_rate") or 0)
    conversion = float(profile.get("conversion_rate") or 0)

    remaining_days = (date(day.year, 12, 31) - day).days
    remaining_work_days = max(1, math.floor(remaining_days * WORK_DAY_RATIO))

    remaining_commission = max(0.0, goal - actual_gci)
    commission_per_lead = price * rate * conversion

    if commission_per_lead > 0:
        daily_leads = math.ceil(
            remaining_commission / commission_per_lead / remaining_work_days
        )
    else:
        daily_leads = 0
    daily_lead_target = max(1, daily_leads)

    days_in_year = (date(day.year, 12, 31) - date(day.year, 1, 1)).days + 1
    elapsed = day.timetuple().tm_yday / days_in_year

    return Targets(
        annual_goal=goal,
        remaining_work_days=remaining_work_days,
        daily_lead_target=daily_lead_target,
        daily_activity_target=daily_lead_target * ACTIVITIES_PER_LEAD,
        actual_gci=actual_gci,
        target_gci=round(goal * elapsed, 2),
    )


# ─────────────────────────────────────────
# UTILITAIRES INTERNES
# ─────────────────────────────────────────

def _stage_category(stage: str) -> str:
    lowered = (stage or "").lower()
    for keywords, category in STAGE_KEYWORDS:
        if any(k in lowered for k in keywords):
            return category
    return "nurturing"


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _end_of(day: date) -> datetime:
    return datetime.combine(day, time.max)
