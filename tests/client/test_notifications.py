"""Tests for notification system."""

import subprocess
from unittest.mock import MagicMock, patch

from sheetsync.client.notifications import (
    Notification,
    NotificationType,
    deliver,
    notify_backup_failed,
    notify_conflicts,
    notify_error,
    send_notification,
)


class TestNotification:
    """Tests for Notification dataclass."""

    def test_notification_default_type(self) -> None:
        """Should default to INFO type."""
        notif = Notification(title="Title", message="Message")
        assert notif.type == NotificationType.INFO


class TestNotificationHelpers:
    """Tests for the sync event helpers."""

    def test_notify_conflicts(self) -> None:
        """Should name the sheet, the count and the rule."""
        sink = MagicMock()

        notify_conflicts("Budget", 3, "remote-always-wins", sink=sink)

        notif = sink.call_args[0][0]
        assert "Conflict" in notif.title
        assert notif.message == "Budget: 3 conflict(s) resolved using remote-always-wins. Backup created."
        assert notif.type == NotificationType.CONFLICT

    def test_notify_error(self) -> None:
        sink = MagicMock()

        notify_error("Budget", "Sheet was deleted", sink=sink)

        notif = sink.call_args[0][0]
        assert "Error" in notif.title
        assert notif.message == "Budget: Sheet was deleted"
        assert notif.type == NotificationType.ERROR

    def test_notify_backup_failed(self) -> None:
        sink = MagicMock()

        notify_backup_failed("Budget", "disk full", sink=sink)

        notif = sink.call_args[0][0]
        assert "Backup Failed" in notif.title
        assert notif.type == NotificationType.WARNING

    @patch("sheetsync.client.notifications.deliver")
    def test_default_sink_runs_in_background(self, mock_deliver: MagicMock) -> None:
        """Should deliver on a daemon thread without blocking the caller."""
        with patch("sheetsync.client.notifications.threading.Thread") as mock_thread:
            send_notification(Notification(title="T", message="M"))

        kwargs = mock_thread.call_args.kwargs
        assert kwargs["target"] is mock_deliver
        assert kwargs["daemon"] is True
        mock_thread.return_value.start.assert_called_once()


class TestDeliver:
    """Tests for platform dispatch."""

    @patch("sheetsync.client.notifications._notify_windows")
    @patch("sheetsync.client.notifications.platform.system")
    def test_windows_notification(self, mock_system: MagicMock, mock_notify: MagicMock) -> None:
        """Should use Windows notification on Windows."""
        mock_system.return_value = "Windows"
        mock_notify.return_value = True

        notif = Notification(title="Test", message="Message")

        assert deliver(notif) is True
        mock_notify.assert_called_once_with(notif)

    @patch("sheetsync.client.notifications._notify_macos")
    @patch("sheetsync.client.notifications.platform.system")
    def test_macos_notification(self, mock_system: MagicMock, mock_notify: MagicMock) -> None:
        """Should use macOS notification on Darwin."""
        mock_system.return_value = "Darwin"
        mock_notify.return_value = True

        notif = Notification(title="Test", message="Message")

        assert deliver(notif) is True
        mock_notify.assert_called_once_with(notif)

    @patch("sheetsync.client.notifications.subprocess.run")
    @patch("sheetsync.client.notifications.platform.system")
    def test_linux_urgency(self, mock_system: MagicMock, mock_run: MagicMock) -> None:
        """Should raise urgency for errors and conflicts."""
        mock_system.return_value = "Linux"

        assert deliver(Notification(title="T", message="M", type=NotificationType.CONFLICT)) is True

        args = mock_run.call_args[0][0]
        assert args[0] == "notify-send"
        assert args[args.index("--urgency") + 1] == "critical"

    @patch("sheetsync.client.notifications.subprocess.run")
    @patch("sheetsync.client.notifications.platform.system")
    def test_linux_tool_missing(self, mock_system: MagicMock, mock_run: MagicMock) -> None:
        """Should report failure instead of raising."""
        mock_system.return_value = "Linux"
        mock_run.side_effect = FileNotFoundError()

        assert deliver(Notification(title="T", message="M")) is False

    @patch("sheetsync.client.notifications.subprocess.run")
    @patch("sheetsync.client.notifications.platform.system")
    def test_macos_failure(self, mock_system: MagicMock, mock_run: MagicMock) -> None:
        mock_system.return_value = "Darwin"
        mock_run.side_effect = subprocess.CalledProcessError(1, "osascript")

        assert deliver(Notification(title="T", message="M")) is False

    @patch("sheetsync.client.notifications.platform.system")
    def test_unsupported_platform(self, mock_system: MagicMock) -> None:
        """Should return False on unsupported platform."""
        mock_system.return_value = "FreeBSD"

        assert deliver(Notification(title="Test", message="Message")) is False
