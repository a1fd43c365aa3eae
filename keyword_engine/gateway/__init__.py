"""SERP request budget layer.

Guards every outbound search request:
  - Token-bucket rate limiter per (tenant, region) with a hard ceiling
  - Region-wide cooldown after the source blocks us
  - Retry policy (exponential backoff with jitter) used by the scheduler
"""
