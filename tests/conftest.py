# tests/conftest.py

import pytest
from datetime import date, datetime, timedelta

from models import (
    ActivityVolume,
    AdministrativeActivity,
    ClientCareActivity,
    CompletionEvent,
    DataHygiene,
    DormantLeads,
    NurturingActivity,
    PipelineCounts,
    ProspectingActivity,
    RawMetrics,
    StageVelocity,
    Targets,
)


# ─────────────────────────────────────────
# FIXTURES, DONNÉES RÉALISTES
# Un agent américain typique, un mardi de mai,
# sans CRM connecté (valeurs d'exemple du collecteur).
# ─────────────────────────────────────────

TODAY = date(2026, 5, 12)
NOW = datetime(2026, 5, 12, 9, 30)


@pytest.fixture
def user_id():
    return "agent-42"


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def fixed_clock():
    return lambda: NOW


@pytest.fixture
def store():
    from services.database import MemoryStore
    return MemoryStore()


@pytest.fixture
def library():
    from engine.templates import load_template_library
    return load_template_library()


@pytest.fixture
def agent_profile(store, user_id):
    """
    Objectif 150k$, 40k$ déjà encaissés.
    Au 12 mai la cible à date est ~54k$ → agent "Behind".
    """
    from orchestrator.profile import update_agent_profile
    return update_agent_profile(user_id, {
        "name": "Jordan Reyes",
        "email": "jordan@reyesrealty.com",
        "commission_goal": 150_000,
        "average_sales_price": 1_200_000,
        "commission_rate": 0.025,
        "conversion_rate": 0.07,
        "ytd_commission": 40_000,
        "lead_sources": ["web_leads", "referrals", "sphere_influence"],
    }, store)


@pytest.fixture
def collector(store):
    from services.metrics import MetricsCollector
    # Aucun CRM : chaque section retombe sur les valeurs d'exemple
    return MetricsCollector(store, connector_factory=lambda profile: None)


@pytest.fixture
def orchestrator(store, collector, library, fixed_clock, agent_profile):
    from orchestrator.daily_plan import DailyPlanOrchestrator
    return DailyPlanOrchestrator(
        store=store,
        collector=collector,
        library=library,
        clock=fixed_clock,
    )


@pytest.fixture
def make_metrics(user_id, today):
    """
    Fabrique de RawMetrics : tout à zéro sauf ce qu'on précise.
    make_metrics(prospecting={"calls_logged": 4}, targets={"daily_lead_target": 3})
    """
    def _make(**sections):
        activity = ActivityVolume(
            prospecting=ProspectingActivity(**sections.get("prospecting", {})),
            nurturing=NurturingActivity(**sections.get("nurturing", {})),
            client_care=ClientCareActivity(**sections.get("client_care", {})),
            administrative=AdministrativeActivity(**sections.get("administrative", {})),
        )
        return RawMetrics(
            user_id=user_id,
            date=today,
            pipeline=PipelineCounts(**sections.get("pipeline", {})),
            velocity=StageVelocity(**sections.get("velocity", {})),
            activity=activity,
            dormant=DormantLeads(**sections.get("dormant", {})),
            hygiene=DataHygiene(**sections.get("hygiene", {})),
            targets=Targets(**sections.get("targets", {})),
        )
    return _make


@pytest.fixture
def log_completion(store, user_id, library):
    """Écrit une complétion dans le journal, comme le ferait l'orchestrateur."""
    from engine.task_generator import compute_points
    from services.database import TASK_COMPLETIONS

    def _log(template_id: str, when: datetime, target: int = None):
        template = library.get(template_id)
        target = target or template.base_target
        event = CompletionEvent(
            user_id=user_id,
            task_id=f"{template_id}-{when:%Y%m%d}",
            template_id=template_id,
            category=template.category,
            unit=template.unit,
            target=target,
            points=compute_points(target, template.unit, template.difficulty),
            title=template.render_title(target),
            completed_at=when,
        )
        store.append(TASK_COMPLETIONS, user_id, when, event)
        return event
    return _log


# ─────────────────────────────────────────
# FOLLOW UP BOSS, réponses API réalistes
# ─────────────────────────────────────────

@pytest.fixture
def fub_people():
    now = datetime(2026, 5, 12, 8, 0)
    return [
        {
            "id": 1101,
            "created": (now - timedelta(days=120)).isoformat() + "Z",
            "updated": (now - timedelta(days=3)).isoformat() + "Z",
            "lastActivity": (now - timedelta(days=3)).isoformat() + "Z",
            "name": "Avery Collins",
            "firstName": "Avery",
            "lastName": "Collins",
            "stage": "Lead",
            "source": "Zillow",
            "tags": ["buyer", "pre-approved"],
            "emails": [{"value": "Avery.Collins@gmail.com", "type": "home"}],
        },
        {
            "id": 1102,
            "created": (now - timedelta(days=200)).isoformat() + "Z",
            "updated": (now - timedelta(days=45)).isoformat() + "Z",
            "name": "Morgan Patel",
            "stage": "Nurture",
            "source": "Open House",
            "tags": [],
            "emails": [{"value": "morgan.patel@outlook.com"}],
        },
        {
            "id": 1103,
            "created": (now - timedelta(days=30)).isoformat() + "Z",
            "updated": (now - timedelta(days=95)).isoformat() + "Z",
            "firstName": "Sam",
            "lastName": "Okafor",
            "stage": "Active Client",
            "source": "Referral",
            "tags": ["seller"],
            "emails": [{"value": "avery.collins@gmail.com"}],
        },
    ]


@pytest.fixture
def fub_deals():
    now = datetime(2026, 5, 12, 8, 0)
    return [
        {
            "id": 501,
            "name": "412 Maple Ave — Collins purchase",
            "stage": {"id": 3, "name": "Under Contract"},
            "price": 865000,
            "created": (now - timedelta(days=40)).isoformat() + "Z",
            "updated": (now - timedelta(days=2)).isoformat() + "Z",
        },
        {
            "id": 502,
            "name": "88 Harbor Rd — Okafor listing",
            "stage": "Closed",
            "price": 1_240_000,
            "created": (now - timedelta(days=70)).isoformat() + "Z",
            "updated": (now - timedelta(days=10)).isoformat() + "Z",
            "closeDate": (now - timedelta(days=10)).isoformat() + "Z",
        },
        {
            "id": 503,
            "name": "17 Birch Ct — Patel purchase",
            "stage": "Lost - went with other agent",
            "price": 540000,
            "created": (now - timedelta(days=150)).isoformat() + "Z",
            "updated": (now - timedelta(days=100)).isoformat() + "Z",
        },
    ]
