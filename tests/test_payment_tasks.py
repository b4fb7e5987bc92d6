from datetime import datetime, timedelta, timezone

from application.services.webhook_reconciler import WebhookReconciler
from domain.payment.entity import WebhookEvent, WebhookStatus
from infrastructure.tasks import TaskDispatcher, celery_app
from infrastructure.tasks.tasks import payments as payment_tasks


def test_beat_schedule_points_at_registered_tasks():
    schedule = celery_app.conf.beat_schedule
    names = {entry["task"] for entry in schedule.values()}
    assert names == {"payments.purge_orphan_webhooks", "payments.report_pending_transactions"}
    assert payment_tasks.purge_orphan_webhooks.name in names


def test_housekeeping_routes_to_low_queue():
    routes = celery_app.conf.task_routes
    assert routes["payments.purge_orphan_webhooks"]["queue"] == "low"
    assert routes["payments.replay_webhook"]["queue"] == "default"


def test_purge_task_uses_configured_reconciler(monkeypatch, uow_factory, store):
    old = WebhookEvent(
        id=1,
        provider="wompi",
        event_type="transaction.updated",
        payload={},
        status=WebhookStatus.RECEIVED,
        external_transaction_id="E1",
        received_at=datetime.now(timezone.utc) - timedelta(days=30),
    )
    store.webhooks[old.id] = old
    monkeypatch.setattr(
        payment_tasks,
        "build_reconciler",
        lambda settings, uow: WebhookReconciler(uow_factory, orphan_retention_days=7),
    )

    result = payment_tasks.purge_orphan_webhooks.apply().get()

    assert result == {"removed": 1}
    assert store.webhooks == {}


def test_dispatcher_sends_tasks_by_name(monkeypatch):
    sent = []
    monkeypatch.setattr(celery_app, "send_task", lambda name, **kw: sent.append((name, kw)))

    dispatcher = TaskDispatcher()
    dispatcher.replay_webhook(42)
    dispatcher.enqueue("payments.report_pending_transactions", kwargs={"older_than_minutes": 60})

    assert sent[0] == ("payments.replay_webhook", {"kwargs": {"webhook_id": 42}})
    assert sent[1][0] == "payments.report_pending_transactions"
