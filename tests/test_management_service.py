"""
Tests for refunds, cancellation, BVN verification, history and method
status in PaymentManagementService.
"""

import asyncio
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from payflow.schemas.payment import BVNVerificationInput, PaymentMethod, TransactionStatus
from payflow.services.payment.exceptions import (
    BVNVerificationError,
    CancellationIneligibleError,
    GatewayError,
    RefundIneligibleError,
    ValidationError,
)
from payflow.services.payment.management_service import PaymentManagementService, mask
from payflow.services.payment.provider_interface import BVNDetails, RefundResult

USER_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"
TRANSACTION_REF = "TRX-1700000000000-abc123def"

_CRUD_PATCH = "payflow.services.payment.management_service.crud"


def run_async(coro):
    """Helper to run async coroutines in sync tests."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _make_payment(**overrides):
    """Create a mock Payment row."""
    defaults = {
        "id": "pay_abc123",
        "transaction_ref": TRANSACTION_REF,
        "user_id": USER_ID,
        "amount": Decimal("1125.00"),
        "status": "FAILED",
        "payment_method": "TRANSFER",
        "monnify_ref": "MNFY|PAY|002",
        "payment_details": {"paymentType": "product", "baseAmount": 1000.0, "totalAmount": 1125.0},
        "provider": MagicMock(supports_refund=True),
    }
    defaults.update(overrides)
    mock = MagicMock()
    for key, val in defaults.items():
        setattr(mock, key, val)
    if mock.provider is not None:
        mock.provider.name = "Monnify"
    return mock


def _make_gateway():
    gateway = MagicMock()
    gateway.name = "Monnify"
    gateway.code = "monnify"
    gateway.is_remote = True
    gateway.supports_feature.return_value = True
    gateway.refund = AsyncMock(
        return_value=RefundResult(refund_reference="REF-001", refund_status="COMPLETED")
    )
    return gateway


def _audited_actions(mock_crud):
    return [c.kwargs["action"] for c in mock_crud.audit_log.log_action.call_args_list]


class _ManagementTestBase:
    def setup_method(self):
        self.mock_db = MagicMock()
        self.gateway = _make_gateway()
        self.factory = MagicMock()
        self.factory.get_registered.return_value = self.gateway
        self.factory.get_settlement_gateway.return_value = self.gateway
        self.notifier = MagicMock()
        self.service = PaymentManagementService(
            self.mock_db,
            gateway_factory=self.factory,
            notifier=self.notifier,
            logger=MagicMock(),
        )


# ================================================================== #
# Refunds
# ================================================================== #


class TestProcessRefund(_ManagementTestBase):
    def _refund(self, amount=Decimal("1125.00")):
        return run_async(
            self.service.process_refund(
                transaction_ref=TRANSACTION_REF, user_id=USER_ID, amount=amount
            )
        )

    @patch(_CRUD_PATCH)
    def test_refund_of_failed_payment(self, mock_crud):
        """Status, refund metadata and audit entry land in one commit."""
        mock_crud.payment.get_by_transaction_ref.return_value = _make_payment()
        mock_crud.payment.transition_status.return_value = True

        self._refund()

        request = self.gateway.refund.call_args.args[0]
        assert request.transaction_ref == "MNFY|PAY|002"
        assert request.refund_reference.startswith("REF-")
        assert request.amount == Decimal("1125.00")

        transition = mock_crud.payment.transition_status.call_args.kwargs
        assert transition["from_statuses"] == ["FAILED"]
        assert transition["to_status"] == "REFUND"
        assert transition["commit"] is False
        assert transition["payment_details"]["refund"] == {
            "refundReference": "REF-001",
            "refundStatus": "COMPLETED",
            "refundAmount": 1125.0,
        }

        assert _audited_actions(mock_crud) == ["REFUND_INITIATED"]
        assert mock_crud.audit_log.log_action.call_args.kwargs["commit"] is False
        self.mock_db.commit.assert_called_once()
        assert self.notifier.send_transactional_message.call_args.args[0] == "PAYMENT_REFUNDED"

    @patch(_CRUD_PATCH)
    def test_completed_payment_is_not_refundable(self, mock_crud):
        mock_crud.payment.get_by_transaction_ref.return_value = _make_payment(status="COMPLETED")

        with pytest.raises(RefundIneligibleError, match="COMPLETED"):
            self._refund()

        self.gateway.refund.assert_not_awaited()
        assert _audited_actions(mock_crud) == ["REFUND_FAILED"]

    @patch(_CRUD_PATCH)
    def test_provider_without_refund_support(self, mock_crud):
        mock_crud.payment.get_by_transaction_ref.return_value = _make_payment(
            provider=MagicMock(supports_refund=False)
        )

        with pytest.raises(RefundIneligibleError, match="not supported"):
            self._refund()

        self.gateway.refund.assert_not_awaited()

    @patch(_CRUD_PATCH)
    def test_amount_above_payment_amount(self, mock_crud):
        mock_crud.payment.get_by_transaction_ref.return_value = _make_payment()

        with pytest.raises(ValidationError, match="cannot exceed"):
            self._refund(amount=Decimal("1125.01"))

    @patch(_CRUD_PATCH)
    def test_gateway_rejection_is_audited(self, mock_crud):
        mock_crud.payment.get_by_transaction_ref.return_value = _make_payment()
        self.gateway.refund = AsyncMock(side_effect=GatewayError("Refund window closed"))

        with pytest.raises(GatewayError):
            self._refund()

        mock_crud.payment.transition_status.assert_not_called()
        assert _audited_actions(mock_crud) == ["REFUND_FAILED"]
        self.notifier.send_transactional_message.assert_not_called()

    @patch(_CRUD_PATCH)
    def test_status_change_during_refund(self, mock_crud):
        mock_crud.payment.get_by_transaction_ref.return_value = _make_payment()
        mock_crud.payment.transition_status.return_value = False

        with pytest.raises(RefundIneligibleError, match="changed status"):
            self._refund()

        self.mock_db.rollback.assert_called_once()
        assert _audited_actions(mock_crud) == ["REFUND_FAILED"]


# ================================================================== #
# Cancellation
# ================================================================== #


class TestCancelPayment(_ManagementTestBase):
    @patch(_CRUD_PATCH)
    def test_cancel_pending_payment(self, mock_crud):
        mock_crud.payment.get_for_user.return_value = _make_payment(status="PENDING")
        mock_crud.payment.transition_status.return_value = True

        self.service.cancel_payment(transaction_ref=TRANSACTION_REF, user_id=USER_ID)

        transition = mock_crud.payment.transition_status.call_args.kwargs
        assert transition["from_statuses"] == ["PENDING"]
        assert transition["to_status"] == "CANCELLED"
        audit = mock_crud.audit_log.log_action.call_args.kwargs
        assert audit["action"] == "PAYMENT_CANCELLED"
        assert audit["details"]["previousStatus"] == "PENDING"
        self.mock_db.commit.assert_called_once()
        assert self.notifier.send_transactional_message.call_args.args[0] == "PAYMENT_CANCELLED"

    @patch(_CRUD_PATCH)
    def test_completed_payment_cannot_be_cancelled(self, mock_crud):
        """The error names the current status and the attempt is audited."""
        mock_crud.payment.get_for_user.return_value = _make_payment(status="COMPLETED")

        with pytest.raises(CancellationIneligibleError, match="COMPLETED"):
            self.service.cancel_payment(transaction_ref=TRANSACTION_REF, user_id=USER_ID)

        mock_crud.payment.transition_status.assert_not_called()
        assert _audited_actions(mock_crud) == ["PAYMENT_CANCELLATION_FAILED"]
        self.notifier.send_transactional_message.assert_not_called()

    @patch(_CRUD_PATCH)
    def test_lost_race_reports_new_status(self, mock_crud):
        payment = _make_payment(status="PENDING")
        mock_crud.payment.get_for_user.return_value = payment
        mock_crud.payment.transition_status.return_value = False

        def _refresh(obj):
            obj.status = "COMPLETED"

        self.mock_db.refresh.side_effect = _refresh

        with pytest.raises(CancellationIneligibleError, match="COMPLETED"):
            self.service.cancel_payment(transaction_ref=TRANSACTION_REF, user_id=USER_ID)


# ================================================================== #
# BVN
# ================================================================== #


class TestVerifyBVN(_ManagementTestBase):
    def setup_method(self):
        super().setup_method()
        self.input = BVNVerificationInput(
            bvn="12345678901", account_number="0123456789", bank_code="058"
        )

    def _configure(self, mock_crud):
        mock_crud.user.get.return_value = MagicMock(first_name="Ada", last_name="Obi")
        mock_crud.bvn_verification.create.return_value = MagicMock(id="bvn_001")

    @patch(_CRUD_PATCH)
    def test_matching_name_links_account(self, mock_crud):
        self._configure(mock_crud)
        self.gateway.lookup_bvn = AsyncMock(
            return_value=BVNDetails(
                first_name=" ada ",
                last_name="OBI",
                raw={"accountNumber": "0123456789", "bankName": "GTBank"},
            )
        )

        result = run_async(self.service.verify_bvn(user_id=USER_ID, input_data=self.input))

        assert result.verified is True
        assert result.bank_account_linked is True
        assert result.verification_id == "bvn_001"
        created = mock_crud.bvn_verification.create.call_args.kwargs["obj_in"]
        assert created["masked_bvn"] == "****8901"
        mock_crud.user.mark_bvn_verified.assert_called_once()
        mock_crud.bank_account.upsert.assert_called_once()
        audit = mock_crud.audit_log.log_action.call_args.kwargs
        assert audit["action"] == "BVN_VERIFIED"
        assert audit["details"]["bvn"] == "****8901"
        self.mock_db.commit.assert_called_once()

    @patch(_CRUD_PATCH)
    def test_name_mismatch_never_links(self, mock_crud):
        self._configure(mock_crud)
        self.gateway.lookup_bvn = AsyncMock(
            return_value=BVNDetails(first_name="Chidi", last_name="Obi")
        )

        with pytest.raises(BVNVerificationError, match="does not match"):
            run_async(self.service.verify_bvn(user_id=USER_ID, input_data=self.input))

        failed = mock_crud.bvn_verification.set_status.call_args.kwargs
        assert failed["status"] == "FAILED"
        assert failed["failure_reason"] == "BVN name mismatch"
        mock_crud.bank_account.upsert.assert_not_called()
        mock_crud.user.mark_bvn_verified.assert_not_called()
        assert _audited_actions(mock_crud) == ["BVN_VERIFICATION_FAILED"]

    @patch(_CRUD_PATCH)
    def test_lookup_failure(self, mock_crud):
        self._configure(mock_crud)
        self.gateway.lookup_bvn = AsyncMock(side_effect=GatewayError("BVN service unavailable"))

        with pytest.raises(BVNVerificationError, match="BVN service unavailable"):
            run_async(self.service.verify_bvn(user_id=USER_ID, input_data=self.input))

        assert mock_crud.bvn_verification.set_status.call_args.kwargs["status"] == "FAILED"

    @patch(_CRUD_PATCH)
    def test_user_without_names(self, mock_crud):
        mock_crud.user.get.return_value = MagicMock(first_name="Ada", last_name=None)

        with pytest.raises(ValidationError, match="first and last name"):
            run_async(self.service.verify_bvn(user_id=USER_ID, input_data=self.input))

        mock_crud.bvn_verification.create.assert_not_called()

    def test_invalid_bvn(self):
        bad = BVNVerificationInput(bvn="1234", account_number="0123456789", bank_code="058")

        with pytest.raises(ValidationError, match="11 digits"):
            run_async(self.service.verify_bvn(user_id=USER_ID, input_data=bad))

    def test_mask(self):
        assert mask("12345678901") == "****8901"


# ================================================================== #
# History and method status
# ================================================================== #


class TestQueries(_ManagementTestBase):
    @patch(_CRUD_PATCH)
    def test_history_pagination(self, mock_crud):
        row = _make_payment(
            status="COMPLETED",
            product_type="product",
            service_type=None,
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            updated_at=None,
        )
        mock_crud.payment.get_history.return_value = ([row], 21)

        history = self.service.get_transaction_history(
            user_id=USER_ID, page=3, limit=10, status=TransactionStatus.COMPLETED
        )

        kwargs = mock_crud.payment.get_history.call_args.kwargs
        assert kwargs["skip"] == 20
        assert kwargs["status"] == "COMPLETED"
        assert history.total == 21
        assert history.transactions[0].provider == "Monnify"

    @pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), (1, 101)])
    def test_history_bounds(self, page, limit):
        with pytest.raises(ValidationError):
            self.service.get_transaction_history(user_id=USER_ID, page=page, limit=limit)

    @patch(_CRUD_PATCH)
    def test_missing_config_is_disabled(self, mock_crud):
        mock_crud.payment_config.get_by_method.return_value = None

        status = self.service.check_payment_method_status(PaymentMethod.CARD)

        assert status.is_enabled is False
        assert status.gateway is None

    @patch(_CRUD_PATCH)
    def test_mismatched_gateway_is_disabled(self, mock_crud):
        mock_crud.payment_config.get_by_method.return_value = MagicMock(
            is_enabled=True, gateway="paystack", updated_at=None, updated_by=None
        )
        self.factory.gateway_matches.return_value = False

        status = self.service.check_payment_method_status(PaymentMethod.CARD)

        assert status.is_enabled is False
        assert status.gateway == "paystack"

    @patch(_CRUD_PATCH)
    def test_enabled_method(self, mock_crud):
        mock_crud.payment_config.get_by_method.return_value = MagicMock(
            is_enabled=True, gateway="monnify", updated_at=None, updated_by="admin_1"
        )
        self.factory.gateway_matches.return_value = True

        status = self.service.check_payment_method_status(PaymentMethod.CARD)

        assert status.is_enabled is True
        assert status.updated_by == "admin_1"
