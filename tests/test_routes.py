import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from helpers import add_visit, GUARD_ID
from app import create_app
from utils.errors import TransientIO
from utils.scheduler import ExpirationScheduler, job_id_for

LONG_AGO = datetime(2020, 1, 1, 14, 0, tzinfo=timezone.utc)


class TestRoutes(unittest.TestCase):

    def setUp(self):
        self.app = create_app("sqlite://")
        self.app.config["TESTING"] = True
        self.backend = MagicMock()
        self.app.config["SCHEDULER"] = ExpirationScheduler(scheduler=self.backend, interval_minutes=5)
        self.store = self.app.config["STORE"]
        self.client = self.app.test_client()

    def _expired_visit(self, code="VST-OLD001"):
        return add_visit(self.store, code=code, entry=LONG_AGO.replace(hour=1), expiration=LONG_AGO)

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["status"], "ok")

    def test_check_in(self):
        response = self.client.post("/visits", json={
            "name": "Juan Dela Cruz",
            "card_type": "Driver's License",
            "id_number": "1234-5678-9012-3456",
            "purpose": "Delivery",
            "guard_id": GUARD_ID,
        })
        self.assertEqual(response.status_code, 201)
        body = response.get_json()
        self.assertRegex(body["visit_code"], r"^VST-[A-Z0-9]{6}$")
        self.assertEqual(body["security_id"], GUARD_ID)
        self.assertFalse(body["notification_sent"])

    def test_check_in_requires_name_and_id_number(self):
        response = self.client.post("/visits", json={"name": "Juan"})
        self.assertEqual(response.status_code, 400)

    def test_time_out(self):
        visit = self._expired_visit()
        response = self.client.post(f"/visits/{visit.id}/time-out")
        self.assertEqual(response.status_code, 200)
        self.assertIsNotNone(self.store.get_visit(visit.id).time_out)

        self.assertEqual(self.client.post("/visits/9999/time-out").status_code, 404)

    def test_expired_visits_carry_status_and_names(self):
        self._expired_visit()
        response = self.client.get(f"/visits/expired?guard_id={GUARD_ID}")
        self.assertEqual(response.status_code, 200)
        visits = response.get_json()["visits"]
        self.assertEqual(len(visits), 1)
        self.assertEqual(visits[0]["status"], "expired_unacknowledged")
        self.assertEqual(visits[0]["visitor_name"], "Unknown Visitor")

        self.assertEqual(self.client.get("/visits/expired").status_code, 400)

    def test_visit_log(self):
        self._expired_visit()
        response = self.client.get("/visits/log")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["count"], 1)

    def test_refresh_then_acknowledge(self):
        self._expired_visit("VST-OLD001")
        self._expired_visit("VST-OLD002")

        response = self.client.post(f"/guards/{GUARD_ID}/refresh")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["success"], 2)

        body = self.client.get(f"/notifications?guard_id={GUARD_ID}").get_json()
        self.assertEqual(body["unread_count"], 2)
        note_id = body["notifications"][0]["id"]

        response = self.client.post(f"/notifications/{note_id}/read", json={"guard_id": GUARD_ID})
        self.assertEqual(response.get_json()["updated"], 1)

        response = self.client.post(f"/notifications/read-all?guard_id={GUARD_ID}")
        self.assertEqual(response.get_json()["updated"], 1)
        body = self.client.get(f"/notifications?guard_id={GUARD_ID}&unread_only=true").get_json()
        self.assertEqual(body["unread_count"], 0)

        response = self.client.delete(f"/notifications?guard_id={GUARD_ID}")
        self.assertEqual(response.get_json()["deleted"], 2)

    def test_notifications_require_guard(self):
        self.assertEqual(self.client.get("/notifications").status_code, 400)
        self.assertEqual(self.client.post("/notifications/read-all").status_code, 400)

    def test_store_outage_is_503(self):
        with patch.object(self.store, "select_notifications", side_effect=TransientIO("down")):
            response = self.client.get(f"/notifications?guard_id={GUARD_ID}")
        self.assertEqual(response.status_code, 503)

    def test_guard_schedule(self):
        response = self.client.post(f"/guards/{GUARD_ID}/session")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["interval_minutes"], 5)
        self.assertEqual(self.backend.add_job.call_args.kwargs["id"], job_id_for(GUARD_ID))

        response = self.client.delete(f"/guards/{GUARD_ID}/session")
        self.assertEqual(response.status_code, 200)
        self.backend.remove_job.assert_called_once_with(job_id_for(GUARD_ID))


if __name__ == '__main__':
    unittest.main()
