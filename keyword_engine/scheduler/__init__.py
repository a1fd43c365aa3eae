"""Discovery Job Scheduler.

Accepts bulk-discovery requests and runs them as jobs:
  - Job state machine (pending → running → completed | failed)
  - Priority job queue for inline execution
  - Bounded worker pool per job, gated by the request budget
  - Retry with exponential backoff and region cooldowns
  - Cancellation and job-level timeouts with partial results
"""
