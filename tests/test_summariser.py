"""
Tests for ai/summariser.py - the summary proxy client, the direct
OpenAI summariser and the background summary worker.

No network: requests and OpenAI clients are mocked.
"""

import sys
import threading
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from ai.summariser import (
    OpenAISummariser,
    SummaryProxyClient,
    SummaryWorker,
    build_payload,
    create_summary_backend,
)
from core.errors import SummaryProxyFailure, SummaryTimeout
from core.reflection import ReflectionTrigger
from tracking.recorder import AI_STATUS_DONE, AI_STATUS_ERROR, SessionRecorder
from tracking.session import ActivityEvent

ENDPOINT = "https://summary.example.workers.dev/v1/summary"


def make_response(status_code=200, body=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("No JSON")
        response.text = text
    else:
        response.json.return_value = body
        response.text = str(body)
    return response


def make_recorded_session(recorder: SessionRecorder) -> int:
    start = datetime(2025, 3, 10, 9, 0, 0)
    session_id = recorder.create_session(start, 25)
    recorder.finalize_session(session_id, datetime(2025, 3, 10, 9, 25, 0))
    recorder.record_app_usage(session_id, "com.microsoft.VSCode", 1200)
    recorder.record_app_usage(session_id, "com.apple.Safari", 300)
    recorder.record_event(session_id, ActivityEvent(start, "app", "com.microsoft.VSCode", "parser.py"))
    return session_id


class TestBuildPayload(unittest.TestCase):

    def test_payload_shape(self):
        recorder = SessionRecorder(":memory:")
        session_id = make_recorded_session(recorder)

        payload = build_payload(recorder, session_id)
        self.assertEqual(payload["sessionId"], session_id)
        self.assertEqual(payload["startedAt"], "2025-03-10T09:00:00")
        self.assertEqual(payload["endedAt"], "2025-03-10T09:25:00")
        self.assertEqual(payload["durationMin"], 25)
        self.assertEqual(payload["apps"][0], {"bundleId": "com.microsoft.VSCode", "seconds": 1200})
        self.assertEqual(payload["events"], [{
            "t": "2025-03-10T09:00:00",
            "kind": "app",
            "title": "com.microsoft.VSCode",
            "detail": "parser.py",
        }])
        recorder.close()

    def test_missing_session(self):
        recorder = SessionRecorder(":memory:")
        with self.assertRaises(SummaryProxyFailure):
            build_payload(recorder, 42)
        recorder.close()


class TestSummaryProxyClient(unittest.TestCase):
    """Test the POST + poll flow against a mocked requests session."""

    def setUp(self):
        self.http = MagicMock()
        self.client = SummaryProxyClient(
            endpoint=ENDPOINT + "/",
            client_secret="s3cret",
            http=self.http,
            poll_interval=0,
            max_polls=3,
        )
        self.payload = {"sessionId": 1, "events": [], "apps": []}

    def test_immediate_summary(self):
        self.http.post.return_value = make_response(body={"summary": " Wrote tests. "})
        self.assertEqual(self.client.summarise(self.payload), "Wrote tests.")

        args, kwargs = self.http.post.call_args
        self.assertEqual(args[0], ENDPOINT)
        self.assertEqual(kwargs["json"], self.payload)
        self.assertEqual(kwargs["headers"][config.SUMMARY_CLIENT_SECRET_HEADER], "s3cret")
        self.http.get.assert_not_called()

    def test_no_secret_header_when_unset(self):
        self.client.client_secret = ""
        self.http.post.return_value = make_response(body={"summary": "ok"})
        self.client.summarise(self.payload)
        headers = self.http.post.call_args[1]["headers"]
        self.assertNotIn(config.SUMMARY_CLIENT_SECRET_HEADER, headers)

    def test_plain_text_summary(self):
        self.http.post.return_value = make_response(text="Focused on docs.")
        self.assertEqual(self.client.summarise(self.payload), "Focused on docs.")

    def test_job_is_polled_until_done(self):
        self.http.post.return_value = make_response(202, {"jobId": "abc"})
        self.http.get.side_effect = [
            make_response(body={"status": "queued"}),
            make_response(body={"status": "done", "summary": "Refactored the engine."}),
        ]
        jobs = []
        self.assertEqual(self.client.summarise(self.payload, on_job=jobs.append), "Refactored the engine.")
        self.assertEqual(jobs, ["abc"])
        self.assertEqual(self.http.get.call_args[0][0], ENDPOINT + "/abc")

    def test_job_error(self):
        self.http.post.return_value = make_response(202, {"jobId": "abc"})
        self.http.get.return_value = make_response(body={"status": "error", "error": "model overloaded"})
        with self.assertRaises(SummaryProxyFailure) as ctx:
            self.client.summarise(self.payload)
        self.assertIn("model overloaded", str(ctx.exception))

    def test_job_never_finishes(self):
        self.http.post.return_value = make_response(202, {"jobId": "abc"})
        self.http.get.return_value = make_response(body={"status": "running"})
        with self.assertRaises(SummaryTimeout):
            self.client.summarise(self.payload)
        self.assertEqual(self.http.get.call_count, 3)

    def test_transient_poll_error_is_retried(self):
        self.http.post.return_value = make_response(202, {"jobId": "abc"})
        self.http.get.side_effect = [
            requests.exceptions.ConnectionError("reset"),
            make_response(body={"status": "done", "summary": "Done."}),
        ]
        self.assertEqual(self.client.summarise(self.payload), "Done.")

    def test_http_error(self):
        self.http.post.return_value = make_response(500, {"error": "boom"})
        with self.assertRaises(SummaryProxyFailure):
            self.client.summarise(self.payload)

    def test_connection_error(self):
        self.http.post.side_effect = requests.exceptions.ConnectionError("offline")
        with self.assertRaises(SummaryProxyFailure):
            self.client.summarise(self.payload)

    def test_unexpected_body(self):
        self.http.post.return_value = make_response(body={"hello": "world"})
        with self.assertRaises(SummaryProxyFailure):
            self.client.summarise(self.payload)

    def test_cancelled_polling(self):
        self.http.post.return_value = make_response(202, {"jobId": "abc"})
        cancelled = threading.Event()
        cancelled.set()
        with self.assertRaises(SummaryProxyFailure):
            self.client.summarise(self.payload, cancelled=cancelled)
        self.http.get.assert_not_called()


class TestOpenAISummariser(unittest.TestCase):
    """Test the direct OpenAI path with a mocked client."""

    def _completion(self, content):
        message = MagicMock()
        message.content = content
        choice = MagicMock()
        choice.message = message
        response = MagicMock()
        response.choices = [choice]
        return response

    def setUp(self):
        self.client = MagicMock()
        self.summariser = OpenAISummariser(api_key="test-key", model="gpt-4o-mini", client=self.client)
        self.payload = {
            "sessionId": 1,
            "durationMin": 25,
            "apps": [{"bundleId": "com.microsoft.VSCode", "seconds": 1200},
                     {"bundleId": "com.apple.Music", "seconds": 30}],
            "events": [{"t": "2025-03-10T09:00:00", "kind": "app",
                        "title": "com.microsoft.VSCode", "detail": "parser.py"}],
        }

    def test_summary(self):
        self.client.chat.completions.create.return_value = self._completion("Built the parser.")
        self.assertEqual(self.summariser.summarise(self.payload), "Built the parser.")
        kwargs = self.client.chat.completions.create.call_args[1]
        self.assertEqual(kwargs["model"], "gpt-4o-mini")

    @patch.object(config, "OPENAI_RETRY_DELAY", 0)
    def test_retries_then_succeeds(self):
        self.client.chat.completions.create.side_effect = [
            RuntimeError("rate limited"),
            self._completion("Second try."),
        ]
        self.assertEqual(self.summariser.summarise(self.payload), "Second try.")
        self.assertEqual(self.client.chat.completions.create.call_count, 2)

    @patch.object(config, "OPENAI_RETRY_DELAY", 0)
    def test_all_attempts_fail(self):
        self.client.chat.completions.create.side_effect = RuntimeError("down")
        with self.assertRaises(SummaryProxyFailure):
            self.summariser.summarise(self.payload)
        self.assertEqual(self.client.chat.completions.create.call_count, config.OPENAI_MAX_RETRIES)

    def test_prompt_contents(self):
        prompt = self.summariser._create_prompt(self.payload)
        self.assertIn("25 minute focus session", prompt)
        self.assertIn("VS Code: 20 min", prompt)
        self.assertNotIn("Music", prompt)
        self.assertIn("Switched to VS Code - parser.py", prompt)

    def test_prompt_lists_music(self):
        self.payload["events"] += [
            {"t": "2025-03-10T09:01:00", "kind": "media", "title": "Weightless", "detail": "Marconi Union"},
            {"t": "2025-03-10T09:09:00", "kind": "media", "title": "Weightless", "detail": "Marconi Union"},
            {"t": "2025-03-10T09:12:00", "kind": "media", "title": "Lo-fi Beats", "detail": None},
        ]
        prompt = self.summariser._create_prompt(self.payload)
        self.assertIn("Music:\n- Weightless by Marconi Union\n- Lo-fi Beats\n", prompt)
        self.assertEqual(prompt.count("Weightless"), 1)
        self.assertNotIn("Switched to Weightless", prompt)

    def test_prompt_is_truncated(self):
        self.payload["events"] = [
            {"t": f"2025-03-10T09:{i:02d}:00", "kind": "app",
             "title": "com.microsoft.VSCode", "detail": "x" * 400}
            for i in range(10)
        ]
        prompt = self.summariser._create_prompt(self.payload)
        self.assertLessEqual(len(prompt), config.OPENAI_MAX_PROMPT_CHARS + 60)
        self.assertTrue(prompt.endswith("Provide a brief summary of this focus session."))

    def test_missing_client(self):
        with patch.object(config, "OPENAI_API_KEY", ""):
            summariser = OpenAISummariser(api_key="")
        self.assertFalse(summariser.enabled)
        with self.assertRaises(SummaryProxyFailure):
            summariser.summarise(self.payload)


class TestCreateSummaryBackend(unittest.TestCase):

    def test_disabled_without_endpoint(self):
        with patch.object(config, "SUMMARY_PROVIDER", "proxy"), patch.object(config, "SUMMARY_ENDPOINT", ""):
            self.assertIsNone(create_summary_backend())

    def test_proxy_with_endpoint(self):
        with patch.object(config, "SUMMARY_PROVIDER", "proxy"), patch.object(config, "SUMMARY_ENDPOINT", ENDPOINT):
            backend = create_summary_backend()
        self.assertIsInstance(backend, SummaryProxyClient)
        self.assertEqual(backend.endpoint, ENDPOINT)

    def test_openai_without_key(self):
        with patch.object(config, "SUMMARY_PROVIDER", "openai"), patch.object(config, "OPENAI_API_KEY", ""):
            self.assertIsNone(create_summary_backend())


class TestSummaryWorker(unittest.TestCase):
    """Test background summaries and their recorded status."""

    def setUp(self):
        self.recorder = SessionRecorder(":memory:")
        self.session_id = make_recorded_session(self.recorder)
        self.backend = MagicMock()
        self.results = []
        self.worker = SummaryWorker(self.recorder, self.backend,
                                    on_summary=lambda sid, text: self.results.append((sid, text)))

    def tearDown(self):
        self.worker.shutdown()
        self.recorder.close()

    def test_summary_saved(self):
        self.backend.summarise.return_value = "Shipped the release."
        thread = self.worker.request(self.session_id)
        thread.join(timeout=5)

        row = self.recorder.get_session(self.session_id)
        self.assertEqual(row["ai_summary"], "Shipped the release.")
        self.assertEqual(row["ai_status"], AI_STATUS_DONE)
        self.assertEqual(self.results, [(self.session_id, "Shipped the release.")])
        payload = self.backend.summarise.call_args[0][0]
        self.assertEqual(payload["sessionId"], self.session_id)

    def test_job_id_recorded(self):
        def summarise(payload, on_job=None, cancelled=None):
            on_job("job-7")
            return "Done."
        self.backend.summarise.side_effect = summarise
        self.worker.request(self.session_id).join(timeout=5)
        self.assertEqual(self.recorder.get_session(self.session_id)["ai_job_id"], "job-7")

    def test_timeout_recorded_as_error(self):
        self.backend.summarise.side_effect = SummaryTimeout("still running")
        self.worker.request(self.session_id).join(timeout=5)

        row = self.recorder.get_session(self.session_id)
        self.assertEqual(row["ai_status"], AI_STATUS_ERROR)
        self.assertTrue(row["ai_error"].startswith("timeout"))
        self.assertIsNone(row["ai_summary"])
        self.assertTrue(row["completed"])
        self.assertEqual(self.results, [(self.session_id, None)])

    def test_failure_reaches_reflection_as_unavailable(self):
        trigger = ReflectionTrigger(summary_worker=self.worker)
        delivered = []
        trigger.on_summary = lambda sid, text: delivered.append((sid, text))
        self.backend.summarise.side_effect = SummaryProxyFailure("HTTP 502")

        trigger.handoff(self.session_id, [("com.microsoft.VSCode", 1200)])
        for thread in list(self.worker._threads):
            thread.join(timeout=5)

        self.assertEqual(delivered, [(self.session_id, config.NO_SUMMARY_TEXT)])
        self.assertEqual(trigger.summary_text(self.session_id), config.NO_SUMMARY_TEXT)

    def test_disabled_worker(self):
        worker = SummaryWorker(self.recorder, None)
        self.assertFalse(worker.enabled)
        self.assertIsNone(worker.request(self.session_id))

    def test_no_session_id(self):
        self.assertIsNone(self.worker.request(None))
        self.backend.summarise.assert_not_called()


if __name__ == "__main__":
    unittest.main()
