import os
import unittest
from unittest.mock import MagicMock, patch

from video_status_monitor import workflow
from video_status_monitor.models import VideoStatusSnapshot

SNAPSHOT = VideoStatusSnapshot(
    video_id="VID-0003",
    title="Title 3",
    main_status="Approved",
    script_approved="Approved",
)


class TestWebhookWorkflow(unittest.TestCase):
    def setUp(self):
        self.workflow = workflow.WebhookWorkflow("https://pipeline.example/hook")

    @patch("video_status_monitor.workflow.requests.post")
    def test_process_approved_script(self, mock_post):
        mock_post.return_value = MagicMock(status_code=202)

        self.assertTrue(self.workflow.process_approved_script(SNAPSHOT))

        payload = mock_post.call_args.kwargs["json"]
        self.assertEqual(payload["event"], "approved_script")
        self.assertEqual(payload["videoId"], "VID-0003")
        self.assertEqual(payload["scriptApproved"], "Approved")
        self.assertEqual(mock_post.call_args.args[0], "https://pipeline.example/hook")

    @patch("video_status_monitor.workflow.requests.post")
    def test_events(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)
        self.workflow.regenerate_script(SNAPSHOT)
        self.workflow.sync_status(SNAPSHOT)
        events = [c.kwargs["json"]["event"] for c in mock_post.call_args_list]
        self.assertEqual(events, ["regenerate_script", "sync_status"])

    @patch("video_status_monitor.workflow.requests.post")
    def test_error_status_returns_false(self, mock_post):
        mock_post.return_value = MagicMock(status_code=500, text="oops")
        self.assertFalse(self.workflow.sync_status(SNAPSHOT))


class TestGetWorkflow(unittest.TestCase):
    def test_from_env(self):
        with patch.dict(os.environ, {"WORKFLOW_WEBHOOK_URL": "https://hook"}):
            result = workflow.get_workflow()
        self.assertIsInstance(result, workflow.WebhookWorkflow)
        self.assertTrue(result.configured)
        self.assertEqual(result.url, "https://hook")

    def test_unconfigured(self):
        with patch.dict(os.environ, {}, clear=True):
            result = workflow.get_workflow()
        self.assertIsInstance(result, workflow.NullWorkflow)
        self.assertFalse(result.configured)


if __name__ == "__main__":
    unittest.main()
