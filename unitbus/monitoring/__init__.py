"""Unit monitoring - snapshot diffing and polling subscriptions"""

from .diff import build_snapshot, diff_snapshots, ignore_job_fields
from .subscription import UnitSubscription

__all__ = ["build_snapshot", "diff_snapshots", "ignore_job_fields", "UnitSubscription"]
