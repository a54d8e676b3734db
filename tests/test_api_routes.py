"""
Tests for the HTTP routes

The app is built around a mocked service container with the scheduler
disabled, so only request parsing and status mapping are exercised here.
"""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from api_server import AppServices, create_app
from jobs.base import JobRunSummary
from jobs.scheduler import JobAlreadyRunning
from services.notification_service import NoRecipients, RecipientNotFound
from services.topup_service import InvoiceNotFound, InvalidCallbackToken
from services.xendit_service import XenditAPIError

CRON_TOKEN = "cron-secret"


@pytest.fixture
def services():
    scheduler = MagicMock()
    scheduler.trigger = AsyncMock()
    scheduler.status.return_value = {"schedulerRunning": False, "jobs": {}}

    topup = MagicMock()
    topup.create_invoice = AsyncMock(return_value={"invoiceUrl": "https://x/inv", "externalId": "topup-u-1-1"})
    topup.check_invoice = AsyncMock(return_value={"status": "PENDING"})
    topup.handle_webhook = AsyncMock(return_value={"processed": True, "credited": True})

    notifications = MagicMock()
    notifications.send_announcement = AsyncMock()
    notifications.send_chat_notification = AsyncMock(return_value={"success": True})

    live = MagicMock()
    live.create_room = AsyncMock(return_value={"id": "room-1"})
    live.generate_app_token.return_value = "signed.jwt.token"

    return AppServices(
        store=MagicMock(),
        scheduler=scheduler,
        topup=topup,
        notifications=notifications,
        live=live,
        cron_token=CRON_TOKEN,
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services, start_scheduler=False)) as test_client:
        yield test_client


def _summary(job_id, **counts) -> JobRunSummary:
    summary = JobRunSummary(job_id=job_id, **counts)
    summary.finished_at = summary.started_at
    return summary


class TestCronRoutes:

    def test_auto_complete_returns_summary(self, client, services):
        services.scheduler.trigger.return_value = _summary("escrow_settlement", candidate_count=2, completed_count=2)

        response = client.get("/cron/auto-complete-transactions", headers={"X-Cron-Token": CRON_TOKEN})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["completedCount"] == 2
        services.scheduler.trigger.assert_awaited_once_with("escrow_settlement")

    def test_failed_run_returns_500_with_summary(self, client, services):
        summary = _summary("return_timeout")
        summary.mark_failed(RuntimeError("database unavailable"))
        services.scheduler.trigger.return_value = summary

        response = client.get("/cron/auto-approve-returns", headers={"X-Cron-Token": CRON_TOKEN})

        assert response.status_code == 500
        assert response.json()["error"] == "RuntimeError: database unavailable"

    def test_concurrent_trigger_returns_409(self, client, services):
        services.scheduler.trigger.side_effect = JobAlreadyRunning("return_timeout")

        response = client.get("/cron/auto-approve-returns", headers={"X-Cron-Token": CRON_TOKEN})

        assert response.status_code == 409

    def test_missing_cron_token_returns_403(self, client, services):
        response = client.get("/cron/auto-complete-transactions")

        assert response.status_code == 403
        services.scheduler.trigger.assert_not_awaited()

    def test_cleanup_returns_deleted_count(self, client, services):
        services.scheduler.trigger.return_value = _summary("cart_cleanup", completed_count=4)

        response = client.get("/cleanup-expired-cart-items")

        assert response.status_code == 200
        assert response.json() == {"success": True, "deletedCount": 4}

    def test_cleanup_failure_returns_500(self, client, services):
        summary = _summary("cart_cleanup")
        summary.mark_failed(RuntimeError("boom"))
        services.scheduler.trigger.return_value = summary

        response = client.get("/cleanup-expired-cart-items")

        assert response.status_code == 500


class TestPaymentRoutes:

    def test_create_invoice(self, client, services):
        response = client.post("/create-invoice", json={"amount": 50000, "userId": "u-1", "email": "u@x.com"})

        assert response.status_code == 200
        assert response.json()["externalId"] == "topup-u-1-1"
        services.topup.create_invoice.assert_awaited_once_with(Decimal("50000"), "u-1", "u@x.com")

    @pytest.mark.parametrize("payload", [
        {"userId": "u-1", "email": "u@x.com"},
        {"amount": -5, "userId": "u-1", "email": "u@x.com"},
        {"amount": 100, "email": "u@x.com"},
    ])
    def test_create_invoice_rejects_bad_input(self, client, services, payload):
        response = client.post("/create-invoice", json=payload)

        assert response.status_code == 400
        services.topup.create_invoice.assert_not_awaited()

    def test_create_invoice_xendit_failure(self, client, services):
        services.topup.create_invoice.side_effect = XenditAPIError("bad request", status=400)

        response = client.post("/create-invoice", json={"amount": 100, "userId": "u-1", "email": "u@x.com"})

        assert response.status_code == 500

    def test_check_invoice_not_found(self, client, services):
        services.topup.check_invoice.side_effect = InvoiceNotFound("topup-x-1")

        response = client.get("/check-invoice/topup-x-1")

        assert response.status_code == 404

    def test_check_invoice_status(self, client):
        response = client.get("/check-invoice/topup-u-1-1")

        assert response.status_code == 200
        assert response.json() == {"status": "PENDING"}

    def test_webhook_received(self, client, services):
        response = client.post(
            "/xendit-webhook",
            json={"external_id": "topup-u-1-1", "status": "PAID"},
            headers={"x-callback-token": "tok"},
        )

        assert response.status_code == 200
        assert response.text == "Webhook received"
        args = services.topup.handle_webhook.await_args.args
        assert args == ({"external_id": "topup-u-1-1", "status": "PAID"}, "tok")

    def test_webhook_bad_token(self, client, services):
        services.topup.handle_webhook.side_effect = InvalidCallbackToken("Invalid callback token")

        response = client.post("/xendit-webhook", json={"status": "PAID"})

        assert response.status_code == 403
        assert response.text == "Forbidden: Invalid callback token"

    def test_webhook_store_failure(self, client, services):
        services.topup.handle_webhook.side_effect = RuntimeError("db down")

        response = client.post("/xendit-webhook", json={"status": "PAID"})

        assert response.status_code == 500
        assert response.text == "Error updating database"


class TestNotificationRoutes:

    def test_announcement_missing_fields(self, client):
        response = client.post("/send-announcement", json={"title": "Hi"})

        assert response.status_code == 400

    def test_announcement_no_recipients(self, client, services):
        services.notifications.send_announcement.side_effect = NoRecipients("No recipients found")

        response = client.post("/send-announcement", json={"title": "Hi", "body": "B", "senderId": "admin"})

        assert response.status_code == 404

    def test_announcement_success(self, client, services):
        services.notifications.send_announcement.return_value = {
            "success": True, "message": "Announcement sent", "sentTo": 3, "totalRecipients": 3, "failedCount": 0,
        }

        response = client.post("/send-announcement", json={"title": "Hi", "body": "B", "senderId": "admin"})

        assert response.status_code == 200
        assert response.json()["sentTo"] == 3

    def test_chat_recipient_not_found(self, client, services):
        services.notifications.send_chat_notification.side_effect = RecipientNotFound("Recipient not found")

        response = client.post(
            "/sendNotification", json={"recipientId": "ghost", "senderName": "Sari", "messageText": "hi"}
        )

        assert response.status_code == 404

    def test_chat_invalid_json(self, client):
        response = client.post(
            "/sendNotification", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400


class TestLiveRoutes:

    def test_create_room(self, client):
        response = client.post("/create-room", json={})

        assert response.status_code == 200
        assert response.json() == {"roomId": "room-1"}

    def test_token_requires_fields(self, client):
        response = client.post("/get100msToken", json={"roomId": "room-1"})

        assert response.status_code == 400

    def test_token(self, client, services):
        response = client.post("/get100msToken", json={"roomId": "room-1", "userId": "u-1", "role": "host"})

        assert response.status_code == 200
        assert response.json() == {"token": "signed.jwt.token"}
        services.live.generate_app_token.assert_called_once_with("room-1", "u-1", "host")


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
