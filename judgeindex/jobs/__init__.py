"""
Scheduled jobs.
"""

from judgeindex.jobs.scheduler import JobScheduler, job_scheduler

__all__ = ["JobScheduler", "job_scheduler"]
