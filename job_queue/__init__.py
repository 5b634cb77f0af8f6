"""
Job Queue — Carries scheduled notifications from producers to the worker.

- The scheduler and suppression engine PRODUCE and CANCEL keyed delayed jobs
- The worker CONSUMES due jobs and dispatches them
- Supports Redis sorted sets (production) and in-memory dicts (dev)
"""
