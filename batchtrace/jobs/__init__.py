"""
Background Jobs Module

Handles scheduled tasks for:
- Daily lifecycle scan (expiry, calibration, corrective actions, recalls,
  supplier documents)
"""

from batchtrace.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from batchtrace.jobs.lifecycle_scanner import LifecycleScanner, run_lifecycle_scan

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "LifecycleScanner",
    "run_lifecycle_scan",
]
