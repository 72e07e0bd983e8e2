# scheduler.py

import logging
import os
from typing import Callable

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from dotenv import load_dotenv

from orchestrator.daily_plan import DEFAULT_TIMEZONE, get_orchestrator
from orchestrator.profile import list_active_agents

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(levelname)s] %(name)s : %(message)s"
)
logger = logging.getLogger(__name__)


def _timezone() -> str:
    return os.environ.get("SCHEDULER_TIMEZONE", DEFAULT_TIMEZONE)


def _for_each_agent(tag: str, action: Callable[[str], bool]) -> int:
    """
    Applique action(user_id) à chaque agent actif.
    Compte les True. Une exception est loggée, l'agent suivant est traité.
    """
    done = 0
    for profile in list_active_agents():
        user_id = profile["user_id"]
        try:
            if action(user_id):
                done += 1
        except Exception as e:
            logger.error(f"[{tag}] {user_id} : {e}")
    return done


# ─────────────────────────────────────────
# JOBS
# ─────────────────────────────────────────

def run_morning_plans() -> int:
    """Plan du jour de chaque agent actif. Retourne le nombre de plans prêts."""
    orchestrator = get_orchestrator()
    day = orchestrator.today()

    def plan_for(user_id: str) -> bool:
        plan = orchestrator.generate_daily_plan(user_id, day)
        logger.info(
            f"[morning] {user_id} → {len(plan.selected_task_ids)} tâches "
            f"({plan.track_status.value})"
        )
        return True

    return _for_each_agent("morning", plan_for)


def run_evening_evaluation() -> int:
    """Clôture la journée et met à jour les séries. Retourne le nombre d'évaluations."""
    orchestrator = get_orchestrator()
    day = orchestrator.today()

    def evaluate(user_id: str) -> bool:
        result = orchestrator.evaluate_daily_completion(user_id, day)
        if not result.ok:
            logger.info(f"[evening] {user_id} ignoré : {result.error}")
            return False
        outcome = "validée" if result.qualified else "ratée"
        logger.info(
            f"[evening] {user_id} → journée {outcome}, "
            f"série {result.streak.current_streak}"
        )
        return True

    return _for_each_agent("evening", evaluate)


def _on_job_executed(event) -> None:
    if event.exception:
        logger.error(f"[scheduler] {event.job_id} a levé : {event.exception!r}")


# ─────────────────────────────────────────
# CONFIG APSCHEDULER
# (id, fonction, heure, minute, libellé)
# ─────────────────────────────────────────

JOBS = (
    ("morning_plans",      run_morning_plans,      6,  0,  "Plans du matin"),
    ("evening_evaluation", run_evening_evaluation, 23, 55, "Évaluation du soir"),
)


def build_scheduler() -> BlockingScheduler:
    tz = _timezone()
    scheduler = BlockingScheduler(timezone=tz)
    scheduler.add_listener(_on_job_executed, EVENT_JOB_ERROR | EVENT_JOB_EXECUTED)

    for job_id, func, hour, minute, label in JOBS:
        scheduler.add_job(
            func,
            trigger=CronTrigger(hour=hour, minute=minute, timezone=tz),
            id=job_id,
            name=label,
            max_instances=1,
            coalesce=True,
        )
    return scheduler


def main() -> None:
    scheduler = build_scheduler()
    logger.info(f"[scheduler] démarrage ({_timezone()})")
    for job in scheduler.get_jobs():
        logger.info(f"[scheduler]   → {job.id} : {job.trigger}")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("[scheduler] arrêt")


if __name__ == "__main__":
    main()
