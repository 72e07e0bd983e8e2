# tests/test_scheduler.py

"""
Ce qu'on teste :
→ Job du matin : un plan par agent actif, un agent en erreur n'arrête pas la boucle
→ Job du soir : évaluation de chaque agent, plans absents ignorés
→ Configuration APScheduler (ids, horaires, fuseau)
"""

import pytest
from unittest.mock import MagicMock, patch


@pytest.fixture
def agents(store):
    from orchestrator.profile import update_agent_profile

    for user_id in ("agent-1", "agent-2", "agent-3"):
        update_agent_profile(user_id, {
            "commission_goal": 150_000,
            "ytd_commission": 40_000,
            "lead_sources": ["web_leads"],
        }, store)
    return ["agent-1", "agent-2", "agent-3"]


@pytest.fixture
def scheduled(store, collector, library, fixed_clock, agents):
    """Orchestrateur de test injecté dans le module scheduler."""
    import scheduler
    from orchestrator.daily_plan import DailyPlanOrchestrator
    from orchestrator.profile import list_active_agents

    orchestrator = DailyPlanOrchestrator(
        store=store, collector=collector, library=library, clock=fixed_clock
    )
    with patch.object(scheduler, "get_orchestrator", return_value=orchestrator), \
         patch.object(scheduler, "list_active_agents", lambda: list_active_agents(store)):
        yield scheduler, orchestrator


class TestMorningJob:

    def test_plans_generated_for_every_agent(self, scheduled, agents):
        scheduler, orchestrator = scheduled

        assert scheduler.run_morning_plans() == 3
        for user_id in agents:
            assert orchestrator.load_plans(user_id, days=1)

    def test_failing_agent_does_not_stop_loop(self, scheduled):
        scheduler, orchestrator = scheduled
        real = orchestrator.generate_daily_plan

        def flaky(user_id, day, force=False):
            if user_id == "agent-2":
                raise RuntimeError("CRM down")
            return real(user_id, day, force)

        with patch.object(orchestrator, "generate_daily_plan", side_effect=flaky):
            assert scheduler.run_morning_plans() == 2


class TestEveningJob:

    def test_only_agents_with_plans_evaluated(self, scheduled):
        scheduler, orchestrator = scheduled
        orchestrator.generate_daily_plan("agent-1", orchestrator.today())

        assert scheduler.run_evening_evaluation() == 1
        assert orchestrator.get_todays_plan("agent-1").status.value == "evaluated"

    def test_second_run_is_idempotent(self, scheduled):
        scheduler, orchestrator = scheduled
        scheduler.run_morning_plans()

        scheduler.run_evening_evaluation()
        scheduler.run_evening_evaluation()

        streak = orchestrator.streaks.load("agent-1")
        # Journée ratée une seule fois : pénalité de base, pas cumulée
        assert streak.penalty_applied == 5
        assert streak.current_streak == 0


class TestBuildScheduler:

    def test_jobs(self, monkeypatch):
        import scheduler

        monkeypatch.setenv("SCHEDULER_TIMEZONE", "America/Chicago")
        built = scheduler.build_scheduler()

        jobs = {job.id: job for job in built.get_jobs()}
        assert set(jobs) == {"morning_plans", "evening_evaluation"}
        assert str(jobs["morning_plans"].trigger.fields[5]) == "6"
        assert str(jobs["evening_evaluation"].trigger.fields[5]) == "23"
        assert str(jobs["evening_evaluation"].trigger.fields[6]) == "55"
        assert str(built.timezone) == "America/Chicago"

    def test_listener_logs_failures(self):
        import scheduler

        event = MagicMock(exception=RuntimeError("boom"), job_id="morning_plans")
        with patch.object(scheduler.logger, "error") as log_error:
            scheduler._on_job_executed(event)
        log_error.assert_called_once()
