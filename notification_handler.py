# Author: Omi Shrestha

import time
from collections import deque

DEFAULT_HISTORY_LIMIT = 100


class NotificationLog:
    """
    Bounded log of operator-facing notifications (errors, alerts, notices).

    Notifications are non-blocking: they are printed and stored, and the
    presentation layer fetches them when it wants to.
    """

    def __init__(self, limit=DEFAULT_HISTORY_LIMIT):
        self._history = deque(maxlen=limit)

    def notify(self, message, level="info"):
        """
        Record a notification.

        Args:
            message: Human readable text
            level: "info", "warning", "error" or "alert"
        """
        timestamp = time.strftime("%H:%M:%S")
        print(f"[NOTIFICATION] [{timestamp}] {level.upper()} {message}")

        entry = {
            'timestamp': timestamp,
            'level': level,
            'message': message,
        }
        self._history.append(entry)
        return entry

    def history(self, limit=10):
        """
        Get the most recent notifications, oldest first.
        """
        entries = list(self._history)
        return entries[-limit:] if len(entries) > limit else entries

    def __len__(self):
        return len(self._history)
