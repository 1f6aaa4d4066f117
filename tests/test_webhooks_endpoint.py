"""
Tests for the Monnify webhook endpoint.

Verifies that /api/v1/webhooks/monnify:
- Returns 400 when the monnify-signature header is missing or invalid
- Returns the service result for processed and replayed deliveries
- Returns 200 with processing_error when processing fails, so the gateway
  does not keep re-sending while the scheduled re-verification runs
"""

from unittest.mock import AsyncMock, patch

from payflow.services.payment.exceptions import (
    PaymentNotFoundError,
    WebhookSignatureError,
)

WEBHOOK_MODULE = "payflow.api.v1.endpoints.webhooks"
WEBHOOK_URL = "/api/v1/webhooks/monnify"
BODY = b'{"eventType":"SUCCESSFUL_TRANSACTION","eventData":{"transactionReference":"TRX-1","paymentStatus":"PAID"}}'


def _post(client, signature="a" * 128):
    headers = {"Content-Type": "application/json"}
    if signature:
        headers["monnify-signature"] = signature
    return client.post(WEBHOOK_URL, content=BODY, headers=headers)


class TestMonnifyWebhook:
    def test_missing_signature_returns_400(self, test_client):
        response = _post(test_client, signature=None)

        assert response.status_code == 400
        assert "Missing signature" in response.json()["detail"]

    @patch(f"{WEBHOOK_MODULE}.PaymentVerificationService")
    def test_invalid_signature_returns_400(self, mock_service_cls, test_client):
        mock_service_cls.return_value.verify_webhook = AsyncMock(
            side_effect=WebhookSignatureError("Invalid webhook signature")
        )

        response = _post(test_client)

        assert response.status_code == 400
        assert "Invalid signature" in response.json()["detail"]

    @patch(f"{WEBHOOK_MODULE}.PaymentVerificationService")
    def test_raw_body_is_passed_for_verification(self, mock_service_cls, test_client):
        """The signature is checked against the exact bytes received."""
        mock_service_cls.return_value.verify_webhook = AsyncMock(
            return_value={
                "status": "processed",
                "transactionReference": "TRX-1",
                "paymentStatus": "COMPLETED",
            }
        )

        response = _post(test_client, signature="abc123")

        assert response.status_code == 200
        assert response.json()["paymentStatus"] == "COMPLETED"
        mock_service_cls.return_value.verify_webhook.assert_awaited_once_with(BODY, "abc123")

    @patch(f"{WEBHOOK_MODULE}.PaymentVerificationService")
    def test_replay_returns_already_processed(self, mock_service_cls, test_client):
        mock_service_cls.return_value.verify_webhook = AsyncMock(
            return_value={"status": "already_processed", "transactionReference": "TRX-1"}
        )

        response = _post(test_client)

        assert response.status_code == 200
        assert response.json()["status"] == "already_processed"

    @patch(f"{WEBHOOK_MODULE}.PaymentVerificationService")
    def test_processing_error_returns_200(self, mock_service_cls, test_client):
        mock_service_cls.return_value.verify_webhook = AsyncMock(
            side_effect=PaymentNotFoundError("Payment not found for webhook: TRX-1")
        )

        response = _post(test_client)

        assert response.status_code == 200
        assert response.json() == {
            "status": "processing_error",
            "message": "Payment not found for webhook: TRX-1",
        }

    @patch(f"{WEBHOOK_MODULE}.PaymentVerificationService")
    def test_unexpected_error_returns_200(self, mock_service_cls, test_client):
        """Internal error details are not echoed back to the caller."""
        mock_service_cls.return_value.verify_webhook = AsyncMock(
            side_effect=RuntimeError("connection pool exhausted")
        )

        response = _post(test_client)

        assert response.status_code == 200
        assert response.json()["status"] == "processing_error"
        assert "pool" not in response.json()["message"]
