"""
Background job processing for form submissions.

This package provides:
- Durable job store with atomic, owner-guarded state transitions
- Scheduler that dispatches up to a concurrency cap
- Executor with per-call timeouts and transient/permanent retry policy
- Stuck-job reaper and admin operations for the dashboard
"""
