# src/utils/scheduler.py

import threading

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.base import JobLookupError

from config import get_config
from services.expiration import find_expired_unnotified
from services.notification_dispatcher import NotificationDispatcher, DispatchResult
from utils.errors import StoreError
from utils.logger import setup_logger

logger = setup_logger(__name__)
cfg = get_config()

_inflight_guard = threading.Lock()
_inflight = {}


def _cycle_lock(guard_id):
    with _inflight_guard:
        lock = _inflight.get(guard_id)
        if lock is None:
            lock = _inflight[guard_id] = threading.Lock()
        return lock


def _forget_cycle_lock(guard_id):
    """Drop an idle guard's lock once its session ends; a running cycle keeps it."""
    with _inflight_guard:
        lock = _inflight.get(guard_id)
        if lock is not None and lock.acquire(blocking=False):
            del _inflight[guard_id]
            lock.release()


def run_expiration_cycle(store, guard_id, now=None):
    """Dispatch a notification for every expired, unnotified visit of ``guard_id``."""
    lock = _cycle_lock(guard_id)
    if not lock.acquire(blocking=False):
        logger.info(f"⏭️ Expiration cycle already running for guard {guard_id}, skipping")
        return {"status": "skipped", "guard_id": guard_id}

    summary = {
        "status": "completed",
        "guard_id": guard_id,
        "checked": 0,
        DispatchResult.SUCCESS.value: 0,
        DispatchResult.ALREADY_SENT.value: 0,
        DispatchResult.FAILURE.value: 0,
    }
    try:
        try:
            visits = find_expired_unnotified(store, guard_id, now)
        except StoreError as e:
            logger.error(f"💥 Expiration cycle for guard {guard_id} skipped, store unavailable: {str(e)}")
            summary["status"] = "failed"
            return summary

        logger.info(f"📋 Found {len(visits)} expired visits without notification for guard {guard_id}")
        dispatcher = NotificationDispatcher(store)
        for visit in visits:
            summary["checked"] += 1
            try:
                result = dispatcher.dispatch(visit)
            except Exception as e:
                logger.error(f"❌ Dispatch crashed for visit {visit.id}: {str(e)}")
                result = DispatchResult.FAILURE
            summary[result.value] += 1

        logger.info(
            f"✅ Expiration cycle for guard {guard_id}: {summary['success']} sent, "
            f"{summary['alreadySent']} already sent, {summary['failure']} failed"
        )
        return summary
    finally:
        lock.release()


def run_expiration_job(store, guard_id):
    """Scheduler entry point; owns the worker thread's DB session."""
    try:
        return run_expiration_cycle(store, guard_id)
    except Exception as e:
        logger.error(f"💥 run_expiration_job() failed for guard {guard_id}: {str(e)}")
    finally:
        store.close()
        logger.debug("🧹 DB session closed after expiration cycle")


def job_id_for(guard_id):
    return f"expiration_cycle:{guard_id}"


class ExpirationScheduler:
    """One interval job per active guard session."""

    def __init__(self, scheduler=None, interval_minutes=None):
        self.interval_minutes = interval_minutes or cfg.EXPIRY_CHECK_INTERVAL_MINUTES
        self.scheduler = scheduler or BackgroundScheduler({
            'apscheduler.job_defaults.max_instances': 1,
            'apscheduler.job_defaults.coalesce': True,
        })

    def start(self):
        try:
            if not self.scheduler.running:
                self.scheduler.start()
                logger.info("Scheduler started")
        except Exception as e:
            logger.error(f"Error starting scheduler: {str(e)}")
            raise

    def add_guard(self, store, guard_id):
        job = self.scheduler.add_job(
            run_expiration_job,
            trigger="interval",
            minutes=self.interval_minutes,
            id=job_id_for(guard_id),
            replace_existing=True,
            args=[store, guard_id],
        )
        logger.info(f"⏰ Expiration cycle every {self.interval_minutes} min scheduled for guard {guard_id}")
        return job

    def remove_guard(self, guard_id):
        try:
            self.scheduler.remove_job(job_id_for(guard_id))
            logger.info(f"Expiration cycle unscheduled for guard {guard_id}")
        except JobLookupError:
            logger.debug(f"No expiration job for guard {guard_id}")
        _forget_cycle_lock(guard_id)

    def shutdown(self, wait=False):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")
