"""
Crop Advisory Coordinator - agent task lifecycle for the farmer advisory app

Accepts agent tasks (diagnosis, treatment plans, weather alerts, marketplace
search, image processing), dispatches them by priority, retries failures with
exponential backoff and keeps an audit log of every coordinator decision.

Features:
- Priority dispatch with a periodic sweep of pending work
- Retry with capped exponential backoff and cancellable timers
- Circuit breaker and timeout around every agent call
- Decision log with per-agent performance metrics
- Document store backed by PostgreSQL JSONB
"""

__version__ = "1.0.0"
__author__ = "Crop Advisory Team"
