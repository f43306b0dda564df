"""
Job Dispatcher

Redis-backed order queue with a bounded worker pool and exponential backoff.
"""

from .backoff import backoff_delay_ms, should_retry
from .job_store import RedisJobStore
from .dispatcher import JobDispatcher

__all__ = [
    "backoff_delay_ms",
    "should_retry",
    "RedisJobStore",
    "JobDispatcher",
]
