"""Job tracking - correlating queued jobs with their completion signals"""

from .correlator import JobCorrelator, JobState, JobWaiter

__all__ = ["JobCorrelator", "JobState", "JobWaiter"]
