import unittest
from unittest.mock import MagicMock, patch

from apscheduler.jobstores.base import JobLookupError

from helpers import make_store, add_visit, count_notifications, GUARD_ID, EVAL_2300_LOCAL
from services.guard_session import GuardSession
from utils.errors import TransientIO
from utils.scheduler import (
    ExpirationScheduler, run_expiration_cycle, run_expiration_job, job_id_for, _cycle_lock, _inflight,
)


class TestExpirationCycle(unittest.TestCase):

    def setUp(self):
        self.store = make_store()

    def test_dispatches_every_expired_visit(self):
        add_visit(self.store, code="VST-ONE001")
        add_visit(self.store, code="VST-TWO002")
        summary = run_expiration_cycle(self.store, GUARD_ID, EVAL_2300_LOCAL)
        self.assertEqual(summary["status"], "completed")
        self.assertEqual(summary["checked"], 2)
        self.assertEqual(summary["success"], 2)
        self.assertEqual(count_notifications(self.store), 2)

    def test_second_cycle_is_a_no_op(self):
        add_visit(self.store)
        run_expiration_cycle(self.store, GUARD_ID, EVAL_2300_LOCAL)
        summary = run_expiration_cycle(self.store, GUARD_ID, EVAL_2300_LOCAL)
        self.assertEqual(summary["checked"], 0)
        self.assertEqual(count_notifications(self.store), 1)

    def test_overlapping_cycle_is_skipped(self):
        add_visit(self.store)
        lock = _cycle_lock(GUARD_ID)
        lock.acquire()
        try:
            summary = run_expiration_cycle(self.store, GUARD_ID, EVAL_2300_LOCAL)
        finally:
            lock.release()
        self.assertEqual(summary["status"], "skipped")
        self.assertEqual(count_notifications(self.store), 0)

    def test_other_guard_is_not_blocked(self):
        add_visit(self.store, guard_id="guard-other")
        lock = _cycle_lock(GUARD_ID)
        lock.acquire()
        try:
            summary = run_expiration_cycle(self.store, "guard-other", EVAL_2300_LOCAL)
        finally:
            lock.release()
        self.assertEqual(summary["success"], 1)

    def test_failure_on_one_visit_does_not_stop_the_rest(self):
        first = add_visit(self.store, code="VST-BAD001")
        add_visit(self.store, code="VST-GOOD02")
        real_insert = self.store.insert_notification

        def flaky_insert(guard_id, visit_id, content):
            if visit_id == first.id:
                raise TransientIO("timeout")
            return real_insert(guard_id, visit_id, content)

        with patch.object(self.store, "insert_notification", side_effect=flaky_insert):
            summary = run_expiration_cycle(self.store, GUARD_ID, EVAL_2300_LOCAL)

        self.assertEqual(summary["failure"], 1)
        self.assertEqual(summary["success"], 1)
        self.assertFalse(self.store.get_visit(first.id).notification_sent)

        # Retried on the next cycle
        summary = run_expiration_cycle(self.store, GUARD_ID, EVAL_2300_LOCAL)
        self.assertEqual(summary["success"], 1)
        self.assertEqual(count_notifications(self.store), 2)

    def test_query_failure_fails_the_cycle(self):
        with patch.object(self.store, "select_visits", side_effect=TransientIO("down")):
            summary = run_expiration_cycle(self.store, GUARD_ID, EVAL_2300_LOCAL)
        self.assertEqual(summary["status"], "failed")
        # Lock released for the next attempt
        self.assertTrue(_cycle_lock(GUARD_ID).acquire(blocking=False))
        _cycle_lock(GUARD_ID).release()

    def test_job_releases_session(self):
        store = MagicMock()
        with patch("utils.scheduler.run_expiration_cycle", side_effect=RuntimeError("boom")):
            self.assertIsNone(run_expiration_job(store, GUARD_ID))
        store.close.assert_called_once()


class TestExpirationScheduler(unittest.TestCase):

    def setUp(self):
        self.backend = MagicMock()
        self.backend.running = False
        self.scheduler = ExpirationScheduler(scheduler=self.backend, interval_minutes=5)

    def test_add_guard_schedules_interval_job(self):
        store = MagicMock()
        self.scheduler.add_guard(store, GUARD_ID)
        kwargs = self.backend.add_job.call_args.kwargs
        self.assertEqual(self.backend.add_job.call_args.args[0], run_expiration_job)
        self.assertEqual(kwargs["trigger"], "interval")
        self.assertEqual(kwargs["minutes"], 5)
        self.assertEqual(kwargs["id"], job_id_for(GUARD_ID))
        self.assertTrue(kwargs["replace_existing"])
        self.assertEqual(kwargs["args"], [store, GUARD_ID])

    def test_remove_unknown_guard_is_quiet(self):
        self.backend.remove_job.side_effect = JobLookupError(job_id_for(GUARD_ID))
        self.scheduler.remove_guard(GUARD_ID)
        self.backend.remove_job.assert_called_once_with(job_id_for(GUARD_ID))

    def test_remove_guard_forgets_idle_lock(self):
        _cycle_lock(GUARD_ID)
        self.scheduler.remove_guard(GUARD_ID)
        self.assertNotIn(GUARD_ID, _inflight)

    def test_remove_guard_keeps_lock_of_running_cycle(self):
        lock = _cycle_lock(GUARD_ID)
        lock.acquire()
        try:
            self.scheduler.remove_guard(GUARD_ID)
            self.assertIs(_cycle_lock(GUARD_ID), lock)
        finally:
            lock.release()

    def test_start_and_shutdown(self):
        self.scheduler.start()
        self.backend.start.assert_called_once()
        self.backend.running = True
        self.scheduler.shutdown()
        self.backend.shutdown.assert_called_once_with(wait=False)


class TestGuardSession(unittest.TestCase):

    def setUp(self):
        self.store = make_store()
        self.scheduler = MagicMock()
        self.session = GuardSession(GUARD_ID, self.store, scheduler=self.scheduler)

    def test_start_and_stop_own_feed_and_job(self):
        self.session.start()
        self.assertTrue(self.session.feed.connected)
        self.scheduler.add_guard.assert_called_once_with(self.store, GUARD_ID)

        self.session.stop()
        self.assertFalse(self.session.feed.connected)
        self.assertEqual(self.store.hub.subscription_count, 0)
        self.scheduler.remove_guard.assert_called_once_with(GUARD_ID)

    def test_refresh_feeds_the_live_list(self):
        visit = add_visit(self.store)
        with self.session:
            self.session.refresh(now=EVAL_2300_LOCAL)
            self.assertEqual(self.session.unread_count, 1)

            self.session.time_out(visit.id)
            self.assertEqual(self.session.unread_count, 1)

            self.session.mark_all_read()
            self.assertEqual(self.session.unread_count, 0)

    def test_clear_all_and_mark_read(self):
        add_visit(self.store, code="VST-ONE001")
        add_visit(self.store, code="VST-TWO002")
        with self.session:
            self.session.refresh(now=EVAL_2300_LOCAL)
            first = self.session.notifications[0]
            self.session.mark_read(first["id"])
            self.assertEqual(self.session.unread_count, 1)
            self.session.clear_all()
            self.assertEqual(self.session.notifications, [])

    def test_refresh_after_stop_is_discarded(self):
        self.session.start()
        self.session.stop()
        self.assertEqual(self.session.refresh(now=EVAL_2300_LOCAL)["status"], "discarded")

    def test_refresh_retries_failed_load(self):
        with patch.object(self.store, "select_notifications", side_effect=TransientIO("down")):
            self.session.feed.open()
        self.assertTrue(self.session.feed.load_failed)
        self.session.active = True
        self.session.refresh(now=EVAL_2300_LOCAL)
        self.assertFalse(self.session.feed.load_failed)
        self.session.stop()


if __name__ == '__main__':
    unittest.main()
