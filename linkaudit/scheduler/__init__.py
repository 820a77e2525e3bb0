"""Persistent audit job scheduling."""

from linkaudit.scheduler.scheduler import Scheduler, SchedulerConfig

__all__ = ["Scheduler", "SchedulerConfig"]
