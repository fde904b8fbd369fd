import unittest
from datetime import timedelta
from unittest.mock import patch

from apscheduler.triggers.interval import IntervalTrigger

import config
from app import create_app
from proworkflow import UpstreamUnavailable
from response_cache import ResponseCache

from fakes import FakeProWorkflow

PROJECTS = {
    "/projects": {"projects": [{"id": 1, "title": "Website", "managerid": 4, "managername": "Alice Adams"}]},
    "/projects/1": {"project": {"id": 1, "title": "Website", "managerid": 4, "managername": "Alice Adams",
                                "customstatus": "In Progress"}},
    "/projects/1/messages": {"messages": [
        {"id": 1, "date": "2024-03-01 09:00:00", "authorname": "Sam", "content": "Kickoff"},
        {"id": 2, "date": "2024-03-02 09:00:00", "authorname": "Alice", "content": "Thanks",
         "originalmessageid": 1},
    ]},
    "/projects/1/tasks?status=all": {"tasks": [{"id": 10, "name": "Design", "order1": 1}]},
    "/tasks/10": {"task": {"id": 10, "status": "active", "contacts": [{"name": "Alice Adams"}]}},
    "/tasks/10/messages": {"messages": []},
}


class RoutesTestCase(unittest.TestCase):
    def make_client(self, responses=None):
        self.upstream = FakeProWorkflow(PROJECTS if responses is None else responses)
        self.cache = ResponseCache()
        app = create_app(request_fn=self.upstream, cache=self.cache, start_scheduler=False)
        app.config["TESTING"] = True
        return app.test_client()


class StatusRouteTests(RoutesTestCase):
    def test_health(self):
        response = self.make_client().get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["status"], "OK")

    def test_cache_status_and_invalidate(self):
        client = self.make_client()
        client.get("/api/projects-table")

        snapshot = client.get("/api/cache-status").get_json()
        self.assertIn("projects", snapshot["dependency_index"])
        self.assertGreater(snapshot["stats"]["size"], 0)

        response = client.post("/api/cache/invalidate", json={"tag": "projects"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["removed"], 1)
        self.assertIsNotNone(self.cache.get("/projects/1"))

    def test_invalidate_requires_tag(self):
        response = self.make_client().post("/api/cache/invalidate", json={})
        self.assertEqual(response.status_code, 400)

    def test_clear(self):
        client = self.make_client()
        client.get("/api/projects-table")
        # project list, project detail, project messages
        self.assertEqual(client.post("/api/cache/clear").get_json()["removed"], 3)
        self.assertEqual(len(self.cache), 0)


class ReadRouteTests(RoutesTestCase):
    def test_projects_table(self):
        response = self.make_client().get("/api/projects-table?sort=title")

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual([row["project_id"] for row in body["rows"]], [1])
        self.assertEqual(body["facets"]["managers"], [{"id": 4, "name": "Alice Adams"}])

    def test_projects_table_upstream_failure_is_502(self):
        client = self.make_client({"/projects": UpstreamUnavailable("down", "/projects", 503)})
        response = client.get("/api/projects-table")
        self.assertEqual(response.status_code, 502)
        self.assertIn("error", response.get_json())

    def test_missing_project_is_404(self):
        response = self.make_client().get("/api/project/42")
        self.assertEqual(response.status_code, 404)

    def test_project_messages_are_threaded(self):
        body = self.make_client().get("/api/project/1/messages").get_json()
        self.assertEqual(body["count"], 2)
        self.assertEqual([m["id"] for m in body["messages"]], [1])
        self.assertEqual(body["messages"][0]["replies"][0]["id"], 2)

    def test_project_tasks(self):
        body = self.make_client().get("/api/project/1/tasks?limit=5").get_json()
        self.assertEqual([t["id"] for t in body["tasks"]], [10])
        self.assertEqual(body["tasks"][0]["assigned_to"], "Alice Adams")

    def test_project_tasks_rejects_bad_limit(self):
        response = self.make_client().get("/api/project/1/tasks?limit=0")
        self.assertEqual(response.status_code, 400)


class WriteRouteTests(RoutesTestCase):
    def test_update_status(self):
        client = self.make_client()
        response = client.put("/api/project/1/status", json={"status_id": 3})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()["success"])
        self.assertIn(("PUT", "/projects/1", {"customstatusid": 3}), self.upstream.calls)

    def test_update_status_requires_status(self):
        response = self.make_client().put("/api/project/1/status", json={})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.get_json()["success"])

    def test_update_task_dates(self):
        client = self.make_client()
        response = client.put("/api/task/10", json={"due_date": "2024-03-29"})

        self.assertEqual(response.status_code, 200)
        self.assertIn(("PUT", "/tasks/10", {"duedate": "2024-03-29"}), self.upstream.calls)

    def test_failed_write_is_502(self):
        responses = dict(PROJECTS)
        responses[("PUT", "/tasks/10/reactivate")] = UpstreamUnavailable("down", "/tasks/10/reactivate", 500)

        response = self.make_client(responses).put("/api/task/10/reactivate")
        self.assertEqual(response.status_code, 502)

    def test_unexpected_write_error_is_json_500(self):
        responses = dict(PROJECTS)
        responses[("PUT", "/projects/1")] = RuntimeError("boom")

        response = self.make_client(responses).put("/api/project/1/status", json={"status_id": 3})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"error": "boom"})


class AssignmentQueueRouteTests(RoutesTestCase):
    def test_project_requests(self):
        client = self.make_client({"/projectrequests": {"projectrequests": [
            {"id": 7, "title": "Poster", "recipientgroupname": "Creative Services"},
        ]}})

        body = client.get("/api/project-requests").get_json()

        self.assertEqual(body["count"], 1)
        self.assertEqual(body["project_requests"][0]["id"], 7)

    def test_unexpected_queue_error_is_json_500(self):
        client = self.make_client({"/projectrequests": RuntimeError("bad payload")})

        response = client.get("/api/project-requests")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"error": "bad payload"})


class SchedulerTests(unittest.TestCase):
    @patch("app.atexit")
    def test_create_app_schedules_cache_sweep(self, mock_atexit):
        cache = ResponseCache()
        app = create_app(request_fn=FakeProWorkflow(), cache=cache, start_scheduler=True)
        scheduler = app.extensions["cache_scheduler"]
        self.addCleanup(scheduler.shutdown, wait=False)

        job = scheduler.get_job("cache_sweep")

        self.assertIsNotNone(job)
        self.assertIsInstance(job.trigger, IntervalTrigger)
        self.assertEqual(job.trigger.interval, timedelta(seconds=config.CACHE_SWEEP_INTERVAL_SECONDS))
        self.assertEqual(job.func, cache.sweep_expired)
        self.assertTrue(scheduler.running)
        mock_atexit.register.assert_called_once()

    def test_scheduler_is_optional(self):
        app = create_app(request_fn=FakeProWorkflow(), start_scheduler=False)
        self.assertNotIn("cache_scheduler", app.extensions)


if __name__ == "__main__":
    unittest.main()
