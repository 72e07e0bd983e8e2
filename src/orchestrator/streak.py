# orchestrator/streak.py

"""
Suivi des séries (streaks), un enregistrement par agent.

Journée validée : au moins 5 tâches ET au moins 70 points.
→ validée : série +1, record mis à jour, bonus de palier
            la première fois que la série atteint 7 / 14 / 30 / 60
→ ratée   : série remise à 0, pénalité 5 + série_précédente // 2

Les paliers déjà accordés sont oubliés quand la série casse :
une nouvelle série de 7 jours redonne le bonus.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from models import DailyTaskPlan, StreakData
from services.database import BaseStore, get_store, streak_key

logger = logging.getLogger(__name__)

MIN_TASKS_FOR_STREAK = 5
MIN_POINTS_FOR_STREAK = 70

# jours de série → points bonus
MILESTONE_BONUSES = {7: 10, 14: 15, 30: 30, 60: 50}

BASE_PENALTY = 5


@dataclass
class StreakUpdate:
    qualified: bool
    streak: StreakData
    previous_streak: int
    penalty: int = 0
    new_milestones: list[int] = field(default_factory=list)

    @property
    def bonus_points(self) -> int:
        return sum(MILESTONE_BONUSES[m] for m in self.new_milestones)


def is_qualifying_day(completed_tasks: int, completed_points: int) -> bool:
    return (completed_tasks >= MIN_TASKS_FOR_STREAK
            and completed_points >= MIN_POINTS_FOR_STREAK)


def break_penalty(previous_streak: int) -> int:
    return BASE_PENALTY + previous_streak // 2


def daily_score_delta(plan: DailyTaskPlan, update: StreakUpdate) -> int:
    """
    Variation de score du jour (affichage uniquement) :
    points gagnés − Σ(difficulté × 2 des tâches sélectionnées non faites)
    − pénalité de rupture + bonus de palier.
    """
    missed = sum(
        task.difficulty.rank * 2
        for task in plan.selected_tasks
        if not task.completed
    )
    return plan.completed_points - missed - update.penalty + update.bonus_points


class StreakTracker:

    def __init__(self, store: Optional[BaseStore] = None):
        self.store = store or get_store()

    def load(self, user_id: str) -> StreakData:
        raw = self.store.get(streak_key(user_id))
        return StreakData.from_dict(raw) if raw else StreakData()

    def save(self, user_id: str, streak: StreakData) -> None:
        self.store.put(streak_key(user_id), streak)

    def apply_day(
        self,
        user_id: str,
        day: date,
        completed_tasks: int,
        completed_points: int
    ) -> StreakUpdate:
        """
        Applique le résultat d'une journée et persiste la série.
        À appeler une seule fois par jour (l'orchestrateur garantit l'idempotence).
        """
        streak = self.load(user_id)
        previous = streak.current_streak

        if is_qualifying_day(completed_tasks, completed_points):
            streak.current_streak += 1
            streak.total_days += 1
            streak.last_completion_date = day
            streak.streak_broken = False
            streak.penalty_applied = 0
            streak.longest_streak = max(streak.longest_streak, streak.current_streak)

            new_milestones = [
                m for m in sorted(MILESTONE_BONUSES)
                if streak.current_streak == m and m not in streak.milestone_rewards
            ]
            streak.milestone_rewards.extend(new_milestones)

            for milestone in new_milestones:
                logger.info(
                    f"[streak] {user_id} — palier {milestone} jours "
                    f"(+{MILESTONE_BONUSES[milestone]} pts)"
                )

            update = StreakUpdate(
                qualified=True,
                streak=streak,
                previous_streak=previous,
                new_milestones=new_milestones,
            )

        else:
            penalty = break_penalty(previous)
            streak.current_streak = 0
            streak.streak_broken = True
            streak.penalty_applied = penalty
            streak.milestone_rewards = []

            if previous > 0:
                logger.info(
                    f"[streak] {user_id} — série de {previous} jours cassée "
                    f"(-{penalty} pts)"
                )

            update = StreakUpdate(
                qualified=False,
                streak=streak,
                previous_streak=previous,
                penalty=penalty,
            )

        self.save(user_id, streak)
        return update
