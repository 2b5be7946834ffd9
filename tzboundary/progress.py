"""
Progress tracking for long-running build stages.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional


logger = logging.getLogger(__name__)

# Type alias for progress callback (progress: float 0-1, status: str)
ProgressCallback = Optional[Callable[[float, str], None]]


class ProgressStats:
    """
    Counts finished tasks of a stage and estimates the time left.

    Args:
        tracker_name: Name of the stage shown in every message
        total_tasks: Number of tasks expected
        progress_callback: Optional callback receiving (fraction done, message)
    """

    def __init__(self, tracker_name: str, total_tasks: int, progress_callback: ProgressCallback = None):
        self.tracker_name = tracker_name
        self.total_tasks = total_tasks
        self.task_counter = 0
        self.begin_time: Optional[float] = None
        self._progress_callback = progress_callback

    def log_next(self) -> None:
        self.task_counter += 1
        if self.begin_time is None:
            self.begin_time = time.monotonic()

    def begin_task(self, message: str, log_time_left: bool = False) -> None:
        """Print the current progress, then count the task."""
        self.print_stats(message, log_time_left)
        self.log_next()

    def print_stats(self, message: str, log_time_left: bool = False) -> None:
        message = f"{message}; {self.tracker_name} progress: {self.get_percentage()}% done"
        if log_time_left:
            message = f"{message} - {self.get_time_left()} left"
        logger.info(message)
        if self._progress_callback:
            self._progress_callback(self.get_percentage() / 100.0, message)

    def get_percentage(self) -> float:
        if self.total_tasks <= 0:
            return 100.0
        return round(self.task_counter / self.total_tasks * 1000.0) / 10.0

    def get_time_left(self) -> str:
        if self.task_counter == 0 or self.begin_time is None:
            return "?"
        average = (time.monotonic() - self.begin_time) / self.task_counter
        seconds_left = average * (self.total_tasks - self.task_counter)
        return format_seconds(seconds_left)


def format_seconds(seconds: float) -> str:
    """Human readable duration."""
    if seconds < 60:
        return f"{seconds:.1f} seconds"
    if seconds < 60 * 60:
        return f"{seconds / 60:.1f} minutes"
    if seconds < 60 * 60 * 24:
        return f"{seconds / 3600:.1f} hours"
    return f"{seconds / 86400:.1f} days"
