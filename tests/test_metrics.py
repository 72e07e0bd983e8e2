# tests/test_metrics.py

"""
Ce qu'on teste :
→ Sans CRM : sections remplies par les valeurs d'exemple
→ Avec CRM : pipeline, vélocité, dormants, hygiène calculés
→ CRM en erreur : repli section par section, jamais d'exception
→ Volume d'activité = complétions de la veille
→ Cibles quotidiennes et GCI
→ Historique des snapshots
"""

import pytest
from datetime import date, datetime
from unittest.mock import MagicMock

from models import DealStatus


DAY = date(2026, 5, 12)


@pytest.fixture
def fub_connector(fub_people, fub_deals):
    """Faux connecteur qui renvoie les données FUB normalisées."""
    from connectors.crm.followupboss import FollowUpBossConnector

    real = FollowUpBossConnector("agent-42", {"api_key": "fake"})
    connector = MagicMock()
    connector.fetch_contacts.return_value = [real._normalize_contact(p) for p in fub_people]
    connector.fetch_deals.return_value = [real._normalize_deal(d) for d in fub_deals]
    return connector


class TestDefaults:

    def test_no_crm_uses_sample_values(self, collector, agent_profile, user_id):
        from services.metrics import (
            DEFAULT_DORMANT,
            DEFAULT_HYGIENE,
            DEFAULT_PIPELINE,
            DEFAULT_VELOCITY,
        )

        metrics = collector.collect_raw_metrics(user_id, DAY)

        assert metrics.pipeline == DEFAULT_PIPELINE
        assert metrics.velocity == DEFAULT_VELOCITY
        assert metrics.dormant == DEFAULT_DORMANT
        assert metrics.hygiene == DEFAULT_HYGIENE
        assert metrics.activity.total() == 0
        assert metrics.targets.actual_gci == 40_000

    def test_unknown_agent_still_gets_metrics(self, collector):
        metrics = collector.collect_raw_metrics("nobody", DAY)

        assert metrics.user_id == "nobody"
        assert metrics.targets.daily_lead_target == 1


class TestCrmMetrics:

    @pytest.fixture
    def crm_collector(self, store, fub_connector, agent_profile):
        from services.metrics import MetricsCollector
        return MetricsCollector(store, connector_factory=lambda profile: fub_connector)

    def test_pipeline_by_stage(self, crm_collector, user_id):
        """Under Contract → suivi client, Closed → clôturé, Lost → nurturing (défaut)."""
        pipeline = crm_collector.collect_raw_metrics(user_id, DAY).pipeline

        assert pipeline.prospecting == 0
        assert pipeline.nurturing == 1
        assert pipeline.client_care == 1
        assert pipeline.closed == 1
        assert pipeline.total_leads == 3

    def test_velocity_from_won_deals(self, crm_collector, user_id):
        """Un deal gagné en 60 jours, réparti selon les proportions 14/28/45 sur 87."""
        velocity = crm_collector.collect_raw_metrics(user_id, DAY).velocity

        assert velocity.overall == 60.0
        assert velocity.prospecting_to_nurturing == 9.7
        assert velocity.nurturing_to_client_care == 19.3
        assert velocity.client_care_to_close == 31.0

    def test_dormant_buckets(self, crm_collector, user_id):
        dormant = crm_collector.collect_raw_metrics(user_id, DAY).dormant

        assert dormant.seven_days == 2
        assert dormant.thirty_days == 2
        assert dormant.sixty_days == 1
        assert dormant.ninety_days == 1
        assert dormant.total == 3

    def test_data_hygiene(self, crm_collector, user_id):
        """Même email (casse différente) → doublon ; contact sans tag → manquant."""
        hygiene = crm_collector.collect_raw_metrics(user_id, DAY).hygiene

        assert hygiene.duplicate_contacts == 1
        assert hygiene.missing_tags == 1
        assert hygiene.stale_deals == 0
        assert hygiene.total_leads == 3

    def test_gci_from_won_deals(self, store, fub_connector, user_id):
        """Pas de ytd_commission → deals gagnés de l'année × taux."""
        from orchestrator.profile import update_agent_profile
        from services.metrics import MetricsCollector

        update_agent_profile(user_id, {
            "commission_goal": 150_000, "commission_rate": 0.025, "ytd_commission": None
        }, store)
        collector = MetricsCollector(store, connector_factory=lambda profile: fub_connector)

        assert collector.collect_raw_metrics(user_id, DAY).targets.actual_gci == 31_000

    def test_connector_error_falls_back_per_section(self, store, fub_connector, agent_profile, user_id):
        from connectors.base import ConnectorError
        from services.metrics import DEFAULT_DORMANT, DEFAULT_PIPELINE, MetricsCollector

        fub_connector.fetch_contacts.side_effect = ConnectorError("503")
        collector = MetricsCollector(store, connector_factory=lambda profile: fub_connector)

        metrics = collector.collect_raw_metrics(user_id, DAY)

        # Contacts indisponibles → sections dépendantes par défaut
        assert metrics.pipeline == DEFAULT_PIPELINE
        assert metrics.dormant == DEFAULT_DORMANT
        # Deals disponibles → vélocité calculée
        assert metrics.velocity.overall == 60.0

    def test_no_recent_won_deal_uses_default_velocity(self, store, agent_profile, user_id):
        from models import Deal
        from services.metrics import DEFAULT_VELOCITY, MetricsCollector

        connector = MagicMock()
        connector.fetch_contacts.return_value = []
        connector.fetch_deals.return_value = [Deal(
            id="fub_1", user_id=user_id, title="Old", amount=500_000,
            stage="Closed", status=DealStatus.WON,
            created_at=datetime(2025, 1, 1), closed_at=datetime(2025, 3, 1),
        )]
        collector = MetricsCollector(store, connector_factory=lambda profile: connector)

        metrics = collector.collect_raw_metrics(user_id, DAY)
        assert metrics.velocity == DEFAULT_VELOCITY
        # Base vide : aucun dormant, propreté maximale
        assert metrics.dormant.total == 0
        assert metrics.hygiene.clean_ratio == 1.0


class TestActivityVolume:

    def test_previous_day_completions(self, collector, agent_profile, user_id, log_completion):
        log_completion("prospect-calls", datetime(2026, 5, 11, 10, 0))
        log_completion("client-showings", datetime(2026, 5, 11, 16, 0))
        log_completion("admin-compliance", datetime(2026, 5, 11, 18, 0))
        log_completion("nurture-emails", datetime(2026, 5, 11, 23, 59))
        # Même jour que le plan → ignoré
        log_completion("prospect-leads", datetime(2026, 5, 12, 8, 0))
        # Avant-veille → ignoré
        log_completion("admin-crm", datetime(2026, 5, 10, 12, 0))

        activity = collector.collect_raw_metrics(user_id, DAY).activity

        assert activity.prospecting.calls_logged == 5
        assert activity.prospecting.new_leads_added == 0
        assert activity.client_care.appointments_set == 3
        assert activity.administrative.compliance_items == 2
        assert activity.administrative.crm_updates == 0
        assert activity.nurturing.emails_sent == 10
        assert activity.total() == 20


class TestTargets:

    def test_behind_agent_targets(self, agent_profile):
        from services.metrics import calculate_targets

        targets = calculate_targets(agent_profile, DAY, actual_gci=40_000)

        assert targets.remaining_work_days == 163
        assert targets.daily_lead_target == 1
        assert targets.daily_activity_target == 2
        assert targets.target_gci == pytest.approx(54_246.58, abs=0.01)

    def test_big_goal(self):
        from services.metrics import calculate_targets

        targets = calculate_targets({
            "commission_goal": 3_000_000, "average_sales_price": 1_200_000,
            "commission_rate": 0.025, "conversion_rate": 0.07,
        }, DAY)

        assert targets.daily_lead_target == 9
        assert targets.daily_activity_target == 18

    def test_missing_economics(self):
        """Prix ou taux nuls → minimum 1 lead par jour, pas de division par zéro."""
        from services.metrics import calculate_targets

        targets = calculate_targets({"commission_goal": 100_000}, DAY)
        assert targets.daily_lead_target == 1

    @pytest.mark.parametrize("profile", [
        {"commission_goal": 0},
        {"commission_goal": -50_000},
        {},
    ])
    def test_no_goal_keeps_minimum_targets(self, profile):
        """Objectif nul, négatif ou absent → 1 lead et 2 activités par jour."""
        from services.metrics import calculate_targets

        targets = calculate_targets({
            **profile,
            "average_sales_price": 1_200_000,
            "commission_rate": 0.025,
            "conversion_rate": 0.07,
        }, DAY)

        assert targets.daily_lead_target == 1
        assert targets.daily_activity_target == 2
        assert targets.remaining_work_days == 163

    def test_last_day_of_year(self, agent_profile):
        from services.metrics import calculate_targets

        targets = calculate_targets(agent_profile, date(2026, 12, 31), actual_gci=0)
        assert targets.remaining_work_days == 1
        assert targets.target_gci == 150_000


class TestHistory:

    def test_save_and_load(self, collector, agent_profile, user_id):
        for day in (date(2026, 5, 10), date(2026, 5, 11), DAY):
            collector.save_metrics(collector.collect_raw_metrics(user_id, day))

        history = collector.load_historical_metrics(user_id, days=2, today=DAY)

        assert [m.date for m in history] == [date(2026, 5, 11), DAY]
        assert history[-1].targets.actual_gci == 40_000
        assert history[-1].pipeline.total_leads == 103

    def test_window_includes_today_only_for_one_day(self, collector, agent_profile, user_id):
        for day in (date(2026, 5, 11), DAY):
            collector.save_metrics(collector.collect_raw_metrics(user_id, day))

        history = collector.load_historical_metrics(user_id, days=1, today=DAY)
        assert [m.date for m in history] == [DAY]
