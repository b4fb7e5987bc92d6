"""Entry point for a payments worker.

Deployments usually call the Celery CLI (``celery -A infrastructure.tasks worker -B``);
this script runs a worker that also consumes the low-priority housekeeping queue.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(
        argv=[
            "worker",
            "--hostname=payments@%h",
            "--queues=default,low",
            "--loglevel=INFO",
        ]
    )


if __name__ == "__main__":
    main()
