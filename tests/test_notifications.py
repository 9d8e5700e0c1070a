"""Tests for desktop notifications."""

from unittest.mock import patch, MagicMock

from sdlcflow.notifications import notify, notify_failed


@patch("sdlcflow.notifications.subprocess.run")
@patch("sdlcflow.notifications.shutil.which")
class TestNotify:
    def test_skipped_without_notify_send(self, mock_which, mock_run):
        mock_which.return_value = None
        notify("title", "message")
        mock_run.assert_not_called()

    def test_sends(self, mock_which, mock_run):
        mock_which.return_value = "/usr/bin/notify-send"
        mock_run.return_value = MagicMock(returncode=0, stderr="")
        notify_failed("run-1", "implementation", "TypeMismatch")
        cmd = mock_run.call_args[0][0]
        assert cmd[:3] == ["notify-send", "--urgency", "critical"]
        assert cmd[-1] == "Run run-1 stopped at implementation: TypeMismatch"

    def test_invalid_urgency_and_long_message(self, mock_which, mock_run):
        mock_which.return_value = "/usr/bin/notify-send"
        mock_run.return_value = MagicMock(returncode=0, stderr="")
        notify("title", "x" * 300, urgency="urgent")
        cmd = mock_run.call_args[0][0]
        assert cmd[2] == "normal"
        assert cmd[-1] == "x" * 200 + "..."

    def test_failure_does_not_raise(self, mock_which, mock_run):
        mock_which.return_value = "/usr/bin/notify-send"
        mock_run.side_effect = OSError("no display")
        notify("title", "message")
