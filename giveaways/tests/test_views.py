from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone

from giveaways.job_status import record_run


class JobStatusViewTests(TestCase):
    def setUp(self):
        cache.clear()

    def test_all_jobs(self):
        now = timezone.now()
        record_run("lifecycle", now, now, "success", {"campaigns_transitioned": 2})

        resp = self.client.get("/api/jobs/status/")

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["jobs"]["lifecycle"]["counts"], {"campaigns_transitioned": 2})
        self.assertIsNone(body["jobs"]["distribution"])

    def test_single_job(self):
        now = timezone.now()
        record_run("distribution", now, now, "partial", {"users_failed": 1})

        resp = self.client.get("/api/jobs/status/", {"job": "distribution"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["outcome"], "partial")
        self.assertEqual(resp.json()["last_run_finished_at"], now.isoformat())

    def test_unknown_and_missing_jobs(self):
        self.assertEqual(self.client.get("/api/jobs/status/", {"job": "payroll"}).status_code, 400)
        self.assertEqual(self.client.get("/api/jobs/status/", {"job": "lifecycle"}).status_code, 404)

    def test_only_get_is_allowed(self):
        self.assertEqual(self.client.post("/api/jobs/status/").status_code, 405)
