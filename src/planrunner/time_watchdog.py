"""Idle watchdog - cancels an agent that has gone quiet.

The agent streams output continuously while it works. If nothing arrives for
the configured window the subprocess is treated as hung and cancelled.
"""

import time
from typing import Optional


class IdleWatchdog:
    """Inactivity timer reset by every line of agent output.

    A window of ``None`` (or 0) disables the watchdog.
    """

    def __init__(self, max_idle_sec: Optional[float] = 3600):
        """Initialize watchdog.

        Args:
            max_idle_sec: Seconds without output before the watchdog fires (default: 1 hour)
        """
        self.max_idle = max_idle_sec or None
        self.start_time: Optional[float] = None
        self.last_activity: Optional[float] = None

    @property
    def enabled(self) -> bool:
        return self.max_idle is not None

    def start(self) -> None:
        """Start tracking activity."""
        self.start_time = time.monotonic()
        self.last_activity = self.start_time

    def touch(self) -> None:
        """Record output activity."""
        self.last_activity = time.monotonic()

    def check(self) -> tuple[bool, float]:
        """Check if the idle window has been exceeded.

        Returns:
            Tuple of (exceeded: bool, idle_sec: float)
        """
        if self.last_activity is None:
            return False, 0.0

        idle = time.monotonic() - self.last_activity
        exceeded = self.enabled and idle > self.max_idle

        return exceeded, idle

    def get_remaining_sec(self) -> Optional[float]:
        """Seconds left before the watchdog fires, or None when disabled."""
        if not self.enabled:
            return None
        if self.last_activity is None:
            return self.max_idle

        return self.max_idle - (time.monotonic() - self.last_activity)

    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        return time.monotonic() - self.start_time

    @staticmethod
    def format_elapsed(elapsed_sec: float) -> str:
        """Format elapsed time as human-readable string.

        Args:
            elapsed_sec: Elapsed time in seconds

        Returns:
            Formatted string (e.g., "1h 23m 45s")
        """
        hours = int(elapsed_sec // 3600)
        minutes = int((elapsed_sec % 3600) // 60)
        seconds = int(elapsed_sec % 60)

        parts = []
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        parts.append(f"{seconds}s")

        return " ".join(parts)
