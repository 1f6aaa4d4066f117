"""
Tests for the webhook re-verification Celery tasks.

Tasks are called directly (synchronously); the DB session, ledger crud and
verification service are mocked.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from payflow import tasks
from payflow.schemas.payment import TransactionStatus
from payflow.services.payment.exceptions import GatewayError

TRANSACTION_REF = "TRX-1700000000000-abc123def"

_SESSION_PATCH = "payflow.tasks.SessionLocal"
_CRUD_PATCH = "payflow.tasks.crud"
_SERVICE_PATCH = "payflow.tasks.PaymentVerificationService"
_SCHEDULER_PATCH = "payflow.tasks.WebhookRetryScheduler"


def _make_retry(**overrides):
    """Create a mock WebhookRetry row."""
    defaults = {
        "id": "whr_abc123",
        "transaction_ref": TRANSACTION_REF,
        "status": "pending",
        "attempt_count": 0,
        "max_attempts": 3,
        "is_retryable": True,
        "next_attempt_at": datetime.now(timezone.utc),
    }
    defaults.update(overrides)
    mock = MagicMock()
    for key, val in defaults.items():
        setattr(mock, key, val)
    return mock


@patch(_SCHEDULER_PATCH)
@patch(_SERVICE_PATCH)
@patch(_CRUD_PATCH)
@patch(_SESSION_PATCH)
class TestRetryWebhookVerification:
    def test_success_marks_row_succeeded(
        self, mock_session_cls, mock_crud, mock_service_cls, mock_scheduler_cls
    ):
        retry = _make_retry()
        mock_crud.webhook_retry.get.return_value = retry
        mock_service_cls.return_value.verify_payment = AsyncMock(
            return_value=MagicMock(status=TransactionStatus.COMPLETED)
        )

        assert tasks.retry_webhook_verification("whr_abc123") is True

        mock_service_cls.return_value.verify_payment.assert_awaited_once_with(TRANSACTION_REF)
        mock_crud.webhook_retry.mark_succeeded.assert_called_once()
        mock_session_cls.return_value.close.assert_called_once()

    def test_failure_reschedules_with_backoff(
        self, mock_session_cls, mock_crud, mock_service_cls, mock_scheduler_cls
    ):
        """The second attempt waits twice the base delay."""
        retry = _make_retry()
        mock_crud.webhook_retry.get.return_value = retry
        mock_crud.webhook_retry.record_failure.return_value = _make_retry(attempt_count=1)
        mock_service_cls.return_value.verify_payment = AsyncMock(
            side_effect=GatewayError("Gateway request timed out", retryable=True)
        )

        assert tasks.retry_webhook_verification("whr_abc123") is False

        failure = mock_crud.webhook_retry.record_failure.call_args.kwargs
        assert failure["error"] == "Gateway request timed out"
        assert failure["delay_seconds"] == 2 * tasks.settings.WEBHOOK_RETRY_BASE_DELAY_SECONDS
        mock_scheduler_cls.return_value.enqueue.assert_called_once()
        mock_crud.audit_log.log_action.assert_not_called()
        mock_session_cls.return_value.rollback.assert_called_once()

    def test_exhausted_retries_are_audited(
        self, mock_session_cls, mock_crud, mock_service_cls, mock_scheduler_cls
    ):
        mock_crud.webhook_retry.get.return_value = _make_retry(attempt_count=2)
        mock_crud.webhook_retry.record_failure.return_value = _make_retry(
            attempt_count=3, status="exhausted"
        )
        mock_crud.payment.get_by_transaction_ref.return_value = MagicMock(
            id="pay_abc123", user_id="usr_1"
        )
        mock_service_cls.return_value.verify_payment = AsyncMock(
            side_effect=GatewayError("still failing")
        )

        assert tasks.retry_webhook_verification("whr_abc123") is False

        mock_scheduler_cls.return_value.enqueue.assert_not_called()
        audit = mock_crud.audit_log.log_action.call_args.kwargs
        assert audit["action"] == "WEBHOOK_RETRY_EXHAUSTED"
        assert audit["details"]["attempts"] == 3
        assert audit["details"]["lastError"] == "still failing"

    def test_settled_row_is_skipped(
        self, mock_session_cls, mock_crud, mock_service_cls, mock_scheduler_cls
    ):
        mock_crud.webhook_retry.get.return_value = _make_retry(
            status="succeeded", is_retryable=False
        )

        assert tasks.retry_webhook_verification("whr_abc123") is False

        mock_service_cls.assert_not_called()

    def test_early_duplicate_is_skipped(
        self, mock_session_cls, mock_crud, mock_service_cls, mock_scheduler_cls
    ):
        """A copy delivered well before next_attempt_at does nothing."""
        mock_crud.webhook_retry.get.return_value = _make_retry(
            next_attempt_at=datetime.now(timezone.utc) + timedelta(minutes=5)
        )

        assert tasks.retry_webhook_verification("whr_abc123") is False

        mock_service_cls.assert_not_called()
        mock_crud.webhook_retry.record_failure.assert_not_called()


@patch("payflow.tasks.retry_webhook_verification")
@patch(_CRUD_PATCH)
@patch(_SESSION_PATCH)
class TestRequeueDueWebhookRetries:
    def test_overdue_rows_are_reenqueued(self, mock_session_cls, mock_crud, mock_task):
        mock_crud.webhook_retry.get_due.return_value = [
            _make_retry(id="whr_1"),
            _make_retry(id="whr_2"),
        ]

        assert tasks.requeue_due_webhook_retries() == 2

        enqueued = [c.kwargs["args"] for c in mock_task.apply_async.call_args_list]
        assert enqueued == [["whr_1"], ["whr_2"]]
        cutoff = mock_crud.webhook_retry.get_due.call_args.kwargs["now"]
        assert cutoff < datetime.now(timezone.utc)

    def test_nothing_due(self, mock_session_cls, mock_crud, mock_task):
        mock_crud.webhook_retry.get_due.return_value = []

        assert tasks.requeue_due_webhook_retries() == 0

        mock_task.apply_async.assert_not_called()
        mock_session_cls.return_value.close.assert_called_once()
