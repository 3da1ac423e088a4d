"""Scheduler module for the monitoring cycles."""

from .coordinator import CycleGuard, MonitorCoordinator
from .job_scheduler import JobScheduler

__all__ = ["CycleGuard", "JobScheduler", "MonitorCoordinator"]
