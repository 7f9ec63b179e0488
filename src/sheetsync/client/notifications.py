"""Cross-platform desktop notifications for sheetsync.

This module provides:
- Native OS notifications (Windows toast, macOS notification center, Linux notify-send)
- Fire-and-forget delivery on a daemon thread; failures are only logged
- Helpers for the conflict, error and backup-failure events of a sync
"""

from __future__ import annotations

import logging
import platform
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto

logger = logging.getLogger(__name__)

APP_NAME = "SheetSync"


class NotificationType(Enum):
    """Type of notification."""

    INFO = auto()
    WARNING = auto()
    ERROR = auto()
    CONFLICT = auto()


@dataclass
class Notification:
    """Represents a notification to display."""

    title: str
    message: str
    type: NotificationType = NotificationType.INFO


NotificationSink = Callable[[Notification], None]


def _notify_windows(notification: Notification) -> bool:
    """Send notification on Windows using a PowerShell toast."""
    try:
        ps_script = f'''
        [Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, ContentType = WindowsRuntime] | Out-Null
        [Windows.Data.Xml.Dom.XmlDocument, Windows.Data.Xml.Dom.XmlDocument, ContentType = WindowsRuntime] | Out-Null

        $template = @"
        <toast>
            <visual>
                <binding template="ToastText02">
                    <text id="1">{notification.title}</text>
                    <text id="2">{notification.message}</text>
                </binding>
            </visual>
        </toast>
"@

        $xml = New-Object Windows.Data.Xml.Dom.XmlDocument
        $xml.LoadXml($template)
        $toast = New-Object Windows.UI.Notifications.ToastNotification $xml
        [Windows.UI.Notifications.ToastNotificationManager]::CreateToastNotifier("{APP_NAME}").Show($toast)
        '''

        subprocess.run(
            ["powershell", "-ExecutionPolicy", "Bypass", "-Command", ps_script],
            capture_output=True,
            check=False,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
        return True
    except OSError as e:
        logger.debug("Windows notification failed: %s", e)
        return False


def _notify_macos(notification: Notification) -> bool:
    """Send notification on macOS using osascript."""
    try:
        title = notification.title.replace('"', '\\"')
        message = notification.message.replace('"', '\\"')

        script = f'display notification "{message}" with title "{title}"'
        subprocess.run(["osascript", "-e", script], capture_output=True, check=True)
        return True
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug("macOS notification failed: %s", e)
        return False


def _notify_linux(notification: Notification) -> bool:
    """Send notification on Linux using notify-send."""
    urgency_map = {
        NotificationType.INFO: "normal",
        NotificationType.WARNING: "normal",
        NotificationType.ERROR: "critical",
        NotificationType.CONFLICT: "critical",
    }
    urgency = urgency_map.get(notification.type, "normal")

    try:
        subprocess.run(
            [
                "notify-send",
                "--urgency", urgency,
                "--app-name", APP_NAME,
                notification.title,
                notification.message,
            ],
            capture_output=True,
            check=True,
        )
        return True
    except FileNotFoundError:
        logger.debug("notify-send not found")
        return False
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug("Linux notification failed: %s", e)
        return False


def deliver(notification: Notification) -> bool:
    """Send a system notification, blocking until the OS tool returns.

    Returns:
        True if notification was sent, False if failed or unavailable.
    """
    system = platform.system()

    if system == "Windows":
        return _notify_windows(notification)
    if system == "Darwin":
        return _notify_macos(notification)
    if system == "Linux":
        return _notify_linux(notification)

    logger.warning("Notifications not supported on %s", system)
    return False


def send_notification(notification: Notification) -> None:
    """Send a system notification without waiting for it."""
    thread = threading.Thread(
        target=deliver,
        args=(notification,),
        name="notification",
        daemon=True,
    )
    thread.start()


def notify_conflicts(
    sheet_name: str,
    count: int,
    rule: str,
    sink: NotificationSink = send_notification,
) -> None:
    """Report conflicts resolved during a sync.

    Args:
        sheet_name: Name of the synced spreadsheet.
        count: Number of conflicting cells.
        rule: Winner rule that was applied.
        sink: Delivery function.
    """
    sink(Notification(
        title="Conflicts Resolved",
        message=f"{sheet_name}: {count} conflict(s) resolved using {rule}. Backup created.",
        type=NotificationType.CONFLICT,
    ))


def notify_error(sheet_name: str, message: str, sink: NotificationSink = send_notification) -> None:
    """Report a sync failure that needs attention."""
    sink(Notification(
        title=f"{APP_NAME} - Sync Error",
        message=f"{sheet_name}: {message}",
        type=NotificationType.ERROR,
    ))


def notify_backup_failed(sheet_name: str, message: str, sink: NotificationSink = send_notification) -> None:
    """Report a backup that could not be created."""
    sink(Notification(
        title=f"{APP_NAME} - Backup Failed",
        message=f"{sheet_name}: {message}",
        type=NotificationType.WARNING,
    ))
