# tests/test_daily_plan.py

"""
Ce qu'on teste :
→ Génération du plan : rythme, candidats, diversité, classement, pré-sélection
→ Idempotence (un plan par jour) et régénération forcée
→ Cooldowns calculés depuis le journal des complétions
→ Progression, complétion, échange de tâches
→ Évaluation du soir (une seule fois) et mise à jour du streak
→ Historique et analytics
→ Concurrence : complétions et évaluation simultanées sérialisées par agent + jour
"""

import threading
import pytest
from datetime import date, datetime, timedelta
from unittest.mock import patch

from models import ActivityGaps, Targets, TrackStatus


DAY = date(2026, 5, 12)

# Avec le profil de test et sans activité la veille :
# scores 21/39/12/41 → écarts 79/61/88/59, agent "Behind"
EXPECTED_CANDIDATES = [
    "client-showings",
    "client-consultations",
    "client-offers",
    "client-updates",
    "prospect-leads",
    "prospect-calls",
    "prospect-social",
    "nurture-appointments",
    "nurture-coffee",
    "admin-contracts",
]
EXPECTED_SELECTED = EXPECTED_CANDIDATES[:5]


def _task_id(template_id, day=DAY):
    return f"{template_id}-{day:%Y%m%d}"


def _complete_selection(orchestrator, user_id, plan):
    for task_id in list(plan.selected_task_ids):
        result = orchestrator.complete_task(user_id, task_id)
        assert result.ok


# ─────────────────────────────────────────
# FONCTIONS PURES
# ─────────────────────────────────────────

class TestTrackStatus:

    @pytest.mark.parametrize("actual, target, expected", [
        (110_000, 100_000, TrackStatus.AHEAD),
        (105_000, 100_000, TrackStatus.AHEAD),
        (95_000, 100_000, TrackStatus.ON_TRACK),
        (90_000, 100_000, TrackStatus.ON_TRACK),
        (40_000, 54_246.58, TrackStatus.BEHIND),
    ])
    def test_pace_thresholds(self, actual, target, expected):
        from orchestrator.daily_plan import determine_track_status

        targets = Targets(actual_gci=actual, target_gci=target)
        assert determine_track_status(targets) == expected

    def test_zero_target_treated_as_one(self):
        """Cible nulle (1er janvier, pas d'objectif) → aucun crash."""
        from orchestrator.daily_plan import determine_track_status

        assert determine_track_status(Targets(actual_gci=0, target_gci=0)) == TrackStatus.BEHIND
        assert determine_track_status(Targets(actual_gci=10, target_gci=0)) == TrackStatus.AHEAD


class TestPriorityScore:

    def test_gap_share_and_pace(self):
        """0.45 × 88/287 + 0.35 × 1 + 0.20 × 0.5"""
        from orchestrator.daily_plan import priority_score
        from models import Category

        gaps = ActivityGaps(79, 61, 88, 59)
        score = priority_score(Category.CLIENT_CARE, gaps, TrackStatus.BEHIND)
        assert score == pytest.approx(0.45 * 88 / 287 + 0.35 + 0.10, abs=1e-6)

    def test_no_gap_uses_even_share(self):
        from orchestrator.daily_plan import priority_score
        from models import Category

        gaps = ActivityGaps(0, 0, 0, 0)
        score = priority_score(Category.PROSPECTING, gaps, TrackStatus.AHEAD)
        assert score == pytest.approx(0.45 * 0.25 + 0.10)

    def test_scaled_target(self, library):
        from orchestrator.daily_plan import scaled_target

        calls = library.get("prospect-calls")      # base 5, max 20
        assert scaled_target(calls, 0) == 5
        assert scaled_target(calls, 1) == 6         # tranche entamée
        assert scaled_target(calls, 79) == 13
        assert scaled_target(calls, 100) == 15
        assert scaled_target(library.get("client-offers"), 88) == 3


# ─────────────────────────────────────────
# GÉNÉRATION
# ─────────────────────────────────────────

class TestGeneration:

    def test_plan_for_behind_agent(self, orchestrator, user_id):
        plan = orchestrator.generate_daily_plan(user_id, DAY)

        assert plan.track_status == TrackStatus.BEHIND
        assert [t.template_id for t in plan.candidate_tasks] == EXPECTED_CANDIDATES
        assert plan.selected_task_ids == [_task_id(t) for t in EXPECTED_SELECTED]
        assert [t.points for t in plan.selected_tasks] == [100, 100, 18, 14, 100]
        assert plan.total_possible_points == 651
        assert plan.required_points == 70
        assert plan.status.value == "generated"

    def test_preselection_flags(self, orchestrator, user_id):
        plan = orchestrator.generate_daily_plan(user_id, DAY)

        flagged = [t.id for t in plan.candidate_tasks if t.pre_selected]
        assert flagged == plan.selected_task_ids

    def test_every_weak_category_represented(self, orchestrator, user_id):
        plan = orchestrator.generate_daily_plan(user_id, DAY)

        categories = {t.category.value for t in plan.candidate_tasks}
        assert categories == {"prospecting", "nurturing", "client_care", "administrative"}

    def test_lead_source_filter(self, orchestrator, user_id):
        """Doorknocking non déclaré → modèle jamais proposé."""
        plan = orchestrator.generate_daily_plan(user_id, DAY)
        assert "prospect-doorknock" not in {t.template_id for t in plan.candidate_tasks}

    def test_titles_are_rendered(self, orchestrator, user_id):
        plan = orchestrator.generate_daily_plan(user_id, DAY)
        showings = plan.find_candidate(_task_id("client-showings"))

        assert showings.target == 12
        assert showings.title == "Schedule 12 property showings"

    def test_side_effects_are_archived(self, orchestrator, user_id, store):
        from services.database import ACTION_PLANS, METRICS_HISTORY

        orchestrator.generate_daily_plan(user_id, DAY)

        assert len(store.query(ACTION_PLANS, user_id)) == 1
        assert len(store.query(METRICS_HISTORY, user_id)) == 1


class TestIdempotence:

    def test_same_plan_returned(self, orchestrator, user_id, store):
        from services.database import ACTION_PLANS

        first = orchestrator.generate_daily_plan(user_id, DAY)
        second = orchestrator.generate_daily_plan(user_id, DAY)

        assert first.to_dict() == second.to_dict()
        assert len(store.query(ACTION_PLANS, user_id)) == 1

    def test_todays_plan_uses_clock(self, orchestrator, user_id):
        plan = orchestrator.get_todays_plan(user_id)
        assert plan.date == DAY

    def test_force_regenerates_untouched_plan(self, orchestrator, user_id, store):
        from services.database import ACTION_PLANS

        orchestrator.generate_daily_plan(user_id, DAY)
        orchestrator.generate_daily_plan(user_id, DAY, force=True)

        assert len(store.query(ACTION_PLANS, user_id)) == 2

    def test_force_refused_once_tasks_completed(self, orchestrator, user_id, store):
        from services.database import ACTION_PLANS

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        orchestrator.complete_task(user_id, plan.selected_task_ids[0])

        again = orchestrator.generate_daily_plan(user_id, DAY, force=True)

        assert again.completed_tasks == 1
        assert len(store.query(ACTION_PLANS, user_id)) == 1


class TestCooldowns:

    def test_recent_completion_blocks_template(self, orchestrator, user_id, log_completion):
        """Café fait le 10 mai, cooldown 3 jours → bloqué jusqu'au 13 inclus."""
        log_completion("nurture-coffee", datetime(2026, 5, 10, 17, 0))

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        assert "nurture-coffee" not in {t.template_id for t in plan.candidate_tasks}

    def test_cooldown_boundary(self, orchestrator, user_id, log_completion):
        """Consultation (cooldown 1) faite le 10 → disponible le 12."""
        log_completion("client-consultations", datetime(2026, 5, 10, 11, 0))

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        assert "client-consultations" in {t.template_id for t in plan.candidate_tasks}

    def test_cooldown_blocks_day_after(self, orchestrator, user_id, log_completion):
        log_completion("client-consultations", datetime(2026, 5, 11, 11, 0))

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        assert "client-consultations" not in {t.template_id for t in plan.candidate_tasks}

    def test_templates_without_cooldown_always_available(
        self, orchestrator, user_id, log_completion
    ):
        log_completion("client-showings", datetime(2026, 5, 11, 15, 0))

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        assert "client-showings" in {t.template_id for t in plan.candidate_tasks}


# ─────────────────────────────────────────
# PROGRESSION
# ─────────────────────────────────────────

class TestProgress:

    def test_partial_progress(self, orchestrator, user_id):
        plan = orchestrator.generate_daily_plan(user_id, DAY)
        task_id = plan.selected_task_ids[0]

        result = orchestrator.update_task_progress(user_id, task_id, 42.6)

        assert result.ok
        assert result.task.progress == 43
        assert result.task.completed is False
        assert result.plan.status.value == "in_progress"
        assert result.plan.completed_points == 0

    def test_progress_is_clamped(self, orchestrator, user_id):
        plan = orchestrator.generate_daily_plan(user_id, DAY)
        task_id = plan.selected_task_ids[3]

        assert orchestrator.update_task_progress(user_id, task_id, -20).task.progress == 0
        result = orchestrator.update_task_progress(user_id, task_id, 250)
        assert result.task.progress == 100
        assert result.task.completed is True

    def test_completion_records_event(self, orchestrator, user_id, store):
        from services.database import TASK_COMPLETIONS

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        task_id = _task_id("client-consultations")

        result = orchestrator.complete_task(user_id, task_id)

        assert result.plan.completed_tasks == 1
        assert result.plan.completed_points == 100
        assert result.task.completed_at == datetime(2026, 5, 12, 9, 30)
        assert result.task.cooldown_until == date(2026, 5, 13)

        events = store.query(TASK_COMPLETIONS, user_id)
        assert len(events) == 1
        assert events[0]["template_id"] == "client-consultations"
        assert events[0]["points"] == 100

    def test_completed_task_counted_once(self, orchestrator, user_id, store):
        from services.database import TASK_COMPLETIONS

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        task_id = plan.selected_task_ids[0]

        orchestrator.complete_task(user_id, task_id)
        result = orchestrator.update_task_progress(user_id, task_id, 30)

        assert result.ok
        assert result.task.progress == 100
        assert result.plan.completed_tasks == 1
        assert len(store.query(TASK_COMPLETIONS, user_id)) == 1

    @pytest.mark.parametrize("value", ["50", None, True, float("nan")])
    def test_invalid_progress(self, orchestrator, user_id, value):
        from orchestrator.daily_plan import ResultStatus

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        result = orchestrator.update_task_progress(user_id, plan.selected_task_ids[0], value)
        assert result.status == ResultStatus.INVALID

    def test_unselected_task_not_found(self, orchestrator, user_id):
        from orchestrator.daily_plan import ResultStatus

        orchestrator.generate_daily_plan(user_id, DAY)
        result = orchestrator.update_task_progress(user_id, _task_id("prospect-calls"), 100)
        assert result.status == ResultStatus.NOT_FOUND

    def test_no_plan_not_found(self, orchestrator, user_id):
        from orchestrator.daily_plan import ResultStatus

        result = orchestrator.complete_task(user_id, _task_id("client-showings"))
        assert result.status == ResultStatus.NOT_FOUND

    def test_progress_after_evaluation_rejected(self, orchestrator, user_id):
        from orchestrator.daily_plan import ResultStatus

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        orchestrator.evaluate_daily_completion(user_id, DAY)

        result = orchestrator.complete_task(user_id, plan.selected_task_ids[0])
        assert result.status == ResultStatus.INVALID


# ─────────────────────────────────────────
# ÉCHANGE
# ─────────────────────────────────────────

class TestSwap:

    def test_swap_keeps_position(self, orchestrator, user_id):
        orchestrator.generate_daily_plan(user_id, DAY)
        remove, add = _task_id("client-offers"), _task_id("prospect-calls")

        result = orchestrator.swap_task_selection(user_id, remove, add)

        assert result.ok
        assert result.plan.selected_task_ids[2] == add
        assert remove not in result.plan.selected_task_ids
        assert result.plan.find_candidate(add).pre_selected is True
        assert result.plan.find_candidate(remove).pre_selected is False

        # Persisté
        assert orchestrator.get_todays_plan(user_id).selected_task_ids[2] == add

    def test_swap_errors(self, orchestrator, user_id):
        from orchestrator.daily_plan import ResultStatus

        orchestrator.generate_daily_plan(user_id, DAY)
        selected = [_task_id(t) for t in EXPECTED_SELECTED]

        unknown = orchestrator.swap_task_selection(user_id, "nope", _task_id("prospect-calls"))
        assert unknown.status == ResultStatus.NOT_FOUND

        not_candidate = orchestrator.swap_task_selection(
            user_id, selected[0], _task_id("prospect-doorknock")
        )
        assert not_candidate.status == ResultStatus.NOT_FOUND

        duplicate = orchestrator.swap_task_selection(user_id, selected[0], selected[1])
        assert duplicate.status == ResultStatus.INVALID

    def test_completed_task_cannot_be_swapped_out(self, orchestrator, user_id):
        from orchestrator.daily_plan import ResultStatus

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        done = plan.selected_task_ids[0]
        orchestrator.complete_task(user_id, done)

        result = orchestrator.swap_task_selection(user_id, done, _task_id("prospect-calls"))
        assert result.status == ResultStatus.INVALID


# ─────────────────────────────────────────
# ÉVALUATION
# ─────────────────────────────────────────

class TestEvaluation:

    def test_qualifying_day(self, orchestrator, user_id):
        plan = orchestrator.generate_daily_plan(user_id, DAY)
        _complete_selection(orchestrator, user_id, plan)

        result = orchestrator.evaluate_daily_completion(user_id, DAY)

        assert result.ok
        assert result.qualified is True
        assert result.completed_tasks == 5
        assert result.completed_points == 332
        assert result.streak.current_streak == 1
        assert result.penalty == 0
        assert result.score_delta == 332

    def test_failed_day(self, orchestrator, user_id):
        """
        2 tâches sur 5 : pénalité 5, tâches manquées :
        offres (difficile) 6 + mises à jour (facile) 2 + leads (difficile) 6.
        """
        orchestrator.generate_daily_plan(user_id, DAY)
        orchestrator.complete_task(user_id, _task_id("client-showings"))
        orchestrator.complete_task(user_id, _task_id("client-consultations"))

        result = orchestrator.evaluate_daily_completion(user_id, "2026-05-12")

        assert result.qualified is False
        assert result.completed_points == 200
        assert result.penalty == 5
        assert result.score_delta == 200 - 14 - 5
        assert result.streak.streak_broken is True

    def test_evaluation_is_idempotent(self, orchestrator, user_id):
        plan = orchestrator.generate_daily_plan(user_id, DAY)
        _complete_selection(orchestrator, user_id, plan)

        first = orchestrator.evaluate_daily_completion(user_id, DAY)
        second = orchestrator.evaluate_daily_completion(user_id, DAY)

        assert second.already_evaluated is True
        assert second.streak.current_streak == 1
        assert second.score_delta == first.score_delta
        assert orchestrator.streaks.load(user_id).current_streak == 1

    def test_plan_marked_evaluated(self, orchestrator, user_id):
        orchestrator.generate_daily_plan(user_id, DAY)
        orchestrator.evaluate_daily_completion(user_id, DAY)

        plan = orchestrator.get_todays_plan(user_id)
        assert plan.status.value == "evaluated"
        assert plan.evaluation["qualified"] is False

    def test_missing_plan(self, orchestrator, user_id):
        from orchestrator.daily_plan import ResultStatus

        result = orchestrator.evaluate_daily_completion(user_id, date(2026, 5, 1))
        assert result.status == ResultStatus.NOT_FOUND

    def test_invalid_date(self, orchestrator, user_id):
        from orchestrator.daily_plan import ResultStatus

        result = orchestrator.evaluate_daily_completion(user_id, "12/05/2026")
        assert result.status == ResultStatus.INVALID

    def test_streak_spans_days(self, store, collector, library, agent_profile, user_id):
        """Deux journées validées consécutives → série de 2."""
        from orchestrator.daily_plan import DailyPlanOrchestrator

        for offset in range(2):
            day = DAY + timedelta(days=offset)
            orchestrator = DailyPlanOrchestrator(
                store=store, collector=collector, library=library,
                clock=lambda d=day: datetime.combine(d, datetime.min.time()),
            )
            plan = orchestrator.get_todays_plan(user_id)
            _complete_selection(orchestrator, user_id, plan)
            orchestrator.evaluate_daily_completion(user_id)

        streak = orchestrator.streaks.load(user_id)
        assert streak.current_streak == 2
        assert streak.longest_streak == 2
        assert streak.last_completion_date == DAY + timedelta(days=1)


# ─────────────────────────────────────────
# CONCURRENCE (même agent, même jour)
# ─────────────────────────────────────────

def _run_together(*calls):
    """Lance chaque appel dans son thread, départ simultané, retourne les résultats."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(index, fn):
        barrier.wait()
        results[index] = fn()

    threads = [
        threading.Thread(target=worker, args=(i, fn)) for i, fn in enumerate(calls)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return results


class TestConcurrency:

    def test_parallel_completions_all_counted(self, orchestrator, user_id, store):
        from services.database import TASK_COMPLETIONS

        plan = orchestrator.generate_daily_plan(user_id, DAY)

        results = _run_together(*[
            (lambda t=task_id: orchestrator.complete_task(user_id, t))
            for task_id in plan.selected_task_ids
        ])

        assert all(r.ok for r in results)
        stored = orchestrator.get_todays_plan(user_id)
        assert stored.completed_tasks == 5
        assert stored.completed_points == 332
        assert len(store.query(TASK_COMPLETIONS, user_id)) == 5

        result = orchestrator.evaluate_daily_completion(user_id, DAY)
        assert result.qualified is True
        assert result.streak.current_streak == 1

    def test_completions_racing_evaluation(self, orchestrator, user_id, store):
        """
        Complétions et évaluations simultanées : chaque complétion passe
        avant ou après l'évaluation, jamais pendant. Un seul passage sur le streak.
        """
        from orchestrator.daily_plan import ResultStatus
        from services.database import TASK_COMPLETIONS

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        apply_day = orchestrator.streaks.apply_day

        with patch.object(orchestrator.streaks, "apply_day", wraps=apply_day) as spy:
            results = _run_together(
                *[(lambda t=task_id: orchestrator.complete_task(user_id, t))
                  for task_id in plan.selected_task_ids],
                lambda: orchestrator.evaluate_daily_completion(user_id, DAY),
                lambda: orchestrator.evaluate_daily_completion(user_id, DAY),
            )

        completions, evaluations = results[:5], results[5:]
        accepted = [r for r in completions if r.ok]
        assert all(r.status == ResultStatus.INVALID for r in completions if not r.ok)

        assert spy.call_count == 1
        assert sorted(e.already_evaluated for e in evaluations) == [False, True]

        stored = orchestrator.get_todays_plan(user_id)
        assert stored.status.value == "evaluated"
        assert stored.completed_tasks == len(accepted)
        assert len(store.query(TASK_COMPLETIONS, user_id)) == len(accepted)
        assert {e.completed_tasks for e in evaluations} == {stored.completed_tasks}

        again = orchestrator.evaluate_daily_completion(user_id, DAY)
        assert again.already_evaluated is True
        assert again.completed_tasks == stored.completed_tasks
        assert orchestrator.streaks.load(user_id).total_days == (1 if again.qualified else 0)

    def test_locks_released_after_use(self, orchestrator, user_id):
        from orchestrator.daily_plan import KeyedLock

        plan = orchestrator.generate_daily_plan(user_id, DAY)
        orchestrator.complete_task(user_id, plan.selected_task_ids[0])
        orchestrator.evaluate_daily_completion(user_id, DAY)
        assert len(orchestrator._locks) == 0

        locks = KeyedLock()
        with locks("agent-1:2026-05-12"):
            with locks("agent-1"):
                assert len(locks) == 2
        assert len(locks) == 0

# ─────────────────────────────────────────
# HISTORIQUE & ANALYTICS
# ─────────────────────────────────────────

class TestHistory:

    def test_history(self, orchestrator, user_id):
        orchestrator.generate_daily_plan(user_id, DAY - timedelta(days=1))
        orchestrator.generate_daily_plan(user_id, DAY)
        orchestrator.complete_task(user_id, _task_id("client-showings"))

        history = orchestrator.get_task_history(user_id, days=7)

        assert [h["date"] for h in history] == ["2026-05-12", "2026-05-11"]
        assert history[0]["completed_tasks"] == 1
        assert history[0]["selected_tasks"] == 5
        assert history[0]["tasks"][0]["completed"] is True

    def test_history_window(self, orchestrator, user_id):
        orchestrator.generate_daily_plan(user_id, DAY - timedelta(days=10))
        orchestrator.generate_daily_plan(user_id, DAY)

        assert len(orchestrator.get_task_history(user_id, days=7)) == 1

    def test_analytics(self, orchestrator, user_id):
        plan = orchestrator.generate_daily_plan(user_id, DAY)
        _complete_selection(orchestrator, user_id, plan)

        analytics = orchestrator.get_task_analytics(user_id, days=30)

        assert analytics["plans_count"] == 1
        assert analytics["avg_completion_rate"] == 100.0
        assert analytics["avg_points_per_day"] == 332.0
        assert analytics["category_breakdown"]["client_care"] == {"completed": 4, "points": 232}
        assert analytics["category_breakdown"]["prospecting"] == {"completed": 1, "points": 100}
        assert analytics["category_breakdown"]["administrative"] == {"completed": 0, "points": 0}

    def test_analytics_without_plans(self, orchestrator, user_id):
        analytics = orchestrator.get_task_analytics(user_id, days=30)

        assert analytics["plans_count"] == 0
        assert analytics["avg_completion_rate"] == 0.0
        assert analytics["recent_trends"] == []
