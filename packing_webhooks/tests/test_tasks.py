"""Tests for the maintenance actors and the purge_webhook_data command."""

from datetime import timedelta
from io import StringIO
from unittest.mock import MagicMock, patch

import dramatiq
import pytest
from django.core.management import call_command
from django.db import IntegrityError, OperationalError
from django.utils import timezone
from requests.exceptions import ConnectionError, Timeout

from packing_webhooks.models import IndividualAssortment, WebhookOrder
from packing_webhooks.services import store
from packing_webhooks.tasks import (
    PACKING_WEBHOOK_QUEUE,
    purge_old_webhooks,
    purge_stale_assortments,
    should_retry,
)
from packing_webhooks.tests.conftest import make_assortment, make_order_payload

pytestmark = pytest.mark.django_db


def _age_order(order_name, days):
    WebhookOrder.objects.filter(order_name=order_name).update(
        received_at=timezone.now() - timedelta(days=days)
    )


class TestShouldRetry:
    @pytest.mark.parametrize(
        "exc",
        [OperationalError("database is locked"), ConnectionError(), Timeout(), OSError()],
    )
    def test_transient(self, exc):
        assert should_retry(0, exc) is True

    @pytest.mark.parametrize("exc", [IntegrityError("dup"), ValueError(), KeyError("x")])
    def test_permanent(self, exc):
        assert should_retry(0, exc) is False


class TestActors:
    def test_registered_on_queue(self):
        broker = dramatiq.get_broker()
        assert PACKING_WEBHOOK_QUEUE in broker.get_declared_queues()
        assert purge_old_webhooks.queue_name == PACKING_WEBHOOK_QUEUE
        assert purge_stale_assortments.queue_name == PACKING_WEBHOOK_QUEUE

    def test_purge_old_webhooks(self):
        store.save_order_webhook("OLD", make_order_payload())
        store.save_order_webhook("NEW", make_order_payload())
        _age_order("OLD", 10)

        assert purge_old_webhooks(7) == 1
        assert list(WebhookOrder.objects.values_list("order_name", flat=True)) == ["NEW"]

    def test_purge_old_webhooks_uses_retention_setting(self, settings):
        settings.PACKING_RETENTION_DAYS = 5
        store.save_order_webhook("OLD", make_order_payload())
        _age_order("OLD", 6)
        assert purge_old_webhooks() == 1

    def test_purge_stale_assortments(self):
        store.save_individual_assortment(make_assortment())
        IndividualAssortment.objects.update(
            last_accessed_at=timezone.now() - timedelta(days=60), access_count=1
        )
        assert purge_stale_assortments() == 1
        assert not IndividualAssortment.objects.exists()


class TestPurgeCommand:
    def test_runs_inline(self):
        store.save_order_webhook("OLD", make_order_payload())
        _age_order("OLD", 45)

        out = StringIO()
        call_command("purge_webhook_data", stdout=out)

        assert "DONE: purge_old_webhooks deleted 1 records" in out.getvalue()
        assert "purge_stale_assortments" in out.getvalue()
        assert not WebhookOrder.objects.exists()

    def test_async_enqueues(self):
        out = StringIO()
        with patch.object(purge_old_webhooks, "send", MagicMock()) as send_orders, patch.object(
            purge_stale_assortments, "send", MagicMock()
        ) as send_assortments:
            call_command("purge_webhook_data", "--async", "--older-than-days", "14", stdout=out)

        send_orders.assert_called_once_with(14)
        send_assortments.assert_called_once_with(14)
        assert "QUEUED: purge_old_webhooks" in out.getvalue()

    def test_skip_assortments(self):
        out = StringIO()
        call_command("purge_webhook_data", "--skip-assortments", stdout=out)
        assert "purge_stale_assortments" not in out.getvalue()

    def test_rejects_non_positive_window(self):
        err = StringIO()
        call_command("purge_webhook_data", "--older-than-days", "0", stderr=err)
        assert "must be at least 1" in err.getvalue()
