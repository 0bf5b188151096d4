"""Convenience entry point for running the payment Celery worker.

Most deployments will invoke the standard Celery CLI, but keeping a small
script makes local testing or Procfile-style runners straightforward.
"""
from __future__ import annotations

import sys

from .config.celery import celery_app


def main() -> None:
    argv = ["worker", "--loglevel=INFO", "--queues=high,default,low", "--hostname=payments@%h"]
    celery_app.worker_main(argv=argv + sys.argv[1:])


if __name__ == "__main__":
    main()
