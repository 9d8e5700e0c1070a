"""
Desktop notifications for sdlcflow.

Uses notify-send (freedesktop compliant) for notifications.
Works with mako, dunst, GNOME, KDE notification daemons. Silently skipped
where notify-send is not installed (CI, containers).
"""

import subprocess
import shutil
import logging

logger = logging.getLogger(__name__)


VALID_URGENCIES = ("low", "normal", "critical")

MAX_NOTIFICATION_LENGTH = 200


def notify(title: str, message: str, urgency: str = "normal"):
    """
    Send desktop notification.

    Args:
        title: Notification title
        message: Notification body
        urgency: One of "low", "normal", "critical"
    """
    if urgency not in VALID_URGENCIES:
        logger.warning(f"Invalid urgency '{urgency}', using 'normal'")
        urgency = "normal"

    if not shutil.which("notify-send"):
        logger.debug("notify-send not found, skipping notification")
        return

    if len(message) > MAX_NOTIFICATION_LENGTH:
        message = message[:MAX_NOTIFICATION_LENGTH] + "..."

    try:
        result = subprocess.run([
            "notify-send",
            "--urgency", urgency,
            "--app-name", "sdlcflow",
            title,
            message
        ], capture_output=True, text=True, timeout=5)

        if result.returncode != 0:
            logger.warning(f"notify-send failed (exit {result.returncode}): {result.stderr}")
    except subprocess.TimeoutExpired:
        logger.warning("notify-send timed out")
    except OSError as e:
        logger.warning(f"Failed to run notify-send: {e}")


def notify_awaiting_approval(gate: str, run_id: str):
    """Notify that a gate is waiting for a reviewer."""
    notify(f"sdlcflow: {gate}", f"Waiting for approval (run {run_id})", "normal")


def notify_complete(run_id: str):
    """Notify that a run finished successfully."""
    notify("sdlcflow", f"Run {run_id} complete", "low")


def notify_failed(run_id: str, stage: str, category: str):
    """Notify that a run stopped at a stage."""
    notify("sdlcflow", f"Run {run_id} stopped at {stage}: {category}", "critical")
