"""One-off job entrypoints.

These modules are designed to run as:

  python -m api.app.jobs.status_check
  python -m api.app.jobs.migrate

They run the same code paths as the API process, for cron-style deployments
that disable the in-process scheduler (ENABLE_SCHEDULER=false).
"""
