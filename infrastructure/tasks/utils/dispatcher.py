"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any, Dict

from ..config.celery import celery_app


class TaskDispatcher:
    """Facade used by operators and scripts to schedule payment tasks by name."""

    def replay_webhook(self, webhook_id: int) -> None:
        celery_app.send_task("payments.replay_webhook", kwargs={"webhook_id": webhook_id})

    def purge_orphan_webhooks(self, retention_days: int | None = None) -> None:
        celery_app.send_task("payments.purge_orphan_webhooks", kwargs={"retention_days": retention_days})

    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None:
        """Generic escape hatch for scheduling arbitrary tasks by name."""
        celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {})
