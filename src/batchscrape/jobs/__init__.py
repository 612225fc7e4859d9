"""
Batch job subsystem.

Components:
- job_models.py: data structures (Job, Task, Statistics, BatchSettings, ...)
- job_store.py: SQLite-backed storage, statistics recompute, change subscriptions
- retry_policy.py: exponential backoff with jitter
- job_runner.py: per-job draining loop (bounded concurrency, pause/cancel)
- runner_registry.py: active runners by job id + start/pause/resume/cancel/retry commands
- url_utils.py: URL list validation and job naming
- job_api.py: small high-level helpers used by the CLI
"""
