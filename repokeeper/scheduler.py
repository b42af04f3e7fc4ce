"""
APScheduler configuration for repokeeper.

Manages:
- The recurring mirror pass (cron expression from SYNC_SCHEDULE_CRON)
- Manual "run now" triggers
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from repokeeper.mirror.executor import execute_mirror_pass


logger = logging.getLogger(__name__)

MIRROR_JOB_ID = 'mirror_pass'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    # A single worker keeps passes sequential; they share destination directories
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Never overlap two passes
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    schedule = app.config.get('SYNC_SCHEDULE_CRON')
    if schedule:
        scheduler.add_job(
            func=_execute_pass_wrapper,
            trigger=CronTrigger.from_crontab(schedule, timezone='UTC'),
            id=MIRROR_JOB_ID,
            name='Scheduled Mirror Pass',
            replace_existing=True
        )
        logger.info(f"Mirror pass scheduled ({schedule})")
    else:
        logger.info("No SYNC_SCHEDULE_CRON configured, only manual passes will run")

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def _execute_pass_wrapper(dry_run: Optional[bool] = None):
    """
    Run a mirror pass from a scheduler thread.

    Args:
        dry_run: Override SYNC_DRY_RUN for this pass
    """
    try:
        records = execute_mirror_pass(flask_app, dry_run=dry_run)
        logger.info(f"Mirror pass finished with {len(records)} syncs")
    except Exception:
        logger.exception("Mirror pass failed")


def trigger_mirror_now(dry_run: Optional[bool] = None) -> str:
    """
    Run a mirror pass as soon as the worker is free.

    Args:
        dry_run: Override SYNC_DRY_RUN for this pass

    Returns:
        ID of the one-shot scheduler job

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    job_id = f"manual_{int(now.timestamp())}"

    # 1 second delay to avoid racing the scheduler's wakeup
    scheduler.add_job(
        func=_execute_pass_wrapper,
        kwargs={'dry_run': dry_run},
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=job_id,
        name='Manual Mirror Pass',
        replace_existing=True
    )

    logger.info(f"Manually triggered mirror pass {job_id} (dry_run={dry_run})")
    return job_id


def get_scheduler_diagnostics() -> dict:
    """
    Get scheduler state and scheduled jobs.

    Returns:
        Dict with scheduler state, jobs and next run times
    """
    if scheduler is None:
        return {
            'initialized': False,
            'running': False,
            'jobs': []
        }

    jobs = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, 'next_run_time', None)
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return {
        'initialized': True,
        'running': scheduler.running,
        'state': str(scheduler.state),
        'jobs': jobs
    }
