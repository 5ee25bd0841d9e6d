"""
Error report files for the notification consumers.

Used when the delivery log itself cannot be written: the outcome of the send
is then kept in a timestamped file next to this module so it is not lost.
"""

import os
import uuid
from datetime import datetime
from typing import Any

DEFAULT_LOG_DIR = os.path.join(os.path.dirname(__file__), "logs")


def log_notification_error(
    error_type: str,
    error_message: str,
    context: dict[str, Any] | None = None,
    log_dir: str | None = None,
) -> str:
    """
    Write a notification error report to a timestamped file.

    Args:
        error_type: Type of error (e.g., 'delivery_log', 'sending')
        error_message: The error message
        context: Optional dictionary with additional context (subscription_id, recipient, etc.)
        log_dir: Directory for report files (default: notifications/logs)

    Returns:
        Path to the report file created

    Raises:
        OSError: If the report cannot be written
    """
    log_dir = log_dir or DEFAULT_LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    # Reports from concurrent handlers can share a second
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = os.path.join(
        log_dir, f"notification_error_{timestamp}_{uuid.uuid4().hex[:8]}.txt"
    )

    with open(filename, "w", encoding="utf-8") as f:
        f.write(f"Notification Error Report - {datetime.now()}\n")
        f.write("=" * 60 + "\n\n")
        f.write(f"Error Type: {error_type}\n")
        f.write(f"Error Message: {error_message}\n\n")

        if context:
            f.write("Context:\n")
            f.write("-" * 60 + "\n")
            for key, value in context.items():
                f.write(f"{key}: {value}\n")

    return filename
