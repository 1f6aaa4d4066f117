"""
Tests for recipient resolution (admin merchant account vs vendor sub-accounts).
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from payflow.schemas.payment import RecipientKind
from payflow.services.payment.exceptions import GatewayError, RecipientResolutionError
from payflow.services.payment.provider_interface import AccountDetails
from payflow.services.payment.recipient_resolver import RecipientResolver

RESOLVER_MODULE = "payflow.services.payment.recipient_resolver"


def run_async(coro):
    """Helper to run async coroutines in sync tests."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _make_wallet(**overrides):
    defaults = {
        "id": "vwl_001",
        "item_account_reference": "ITEM-REF-1",
        "delivery_account_reference": "DLV-REF-1",
    }
    defaults.update(overrides)
    mock = MagicMock()
    for key, val in defaults.items():
        setattr(mock, key, val)
    return mock


@patch(f"{RESOLVER_MODULE}.crud")
class TestRecipientResolver:
    def setup_method(self):
        self.gateway = MagicMock()
        self.gateway.get_merchant_account = AsyncMock(
            return_value=AccountDetails(account_number="0001112223", bank_name="Wema")
        )
        self.gateway.get_reserved_account = AsyncMock(
            side_effect=[
                AccountDetails(account_number="1111111111", bank_name="Moniepoint"),
                AccountDetails(account_number="2222222222", bank_name="Moniepoint"),
            ]
        )
        self.resolver = RecipientResolver(MagicMock(), self.gateway, logger=MagicMock())

    def test_admin_item_routes_to_merchant_account(self, mock_crud):
        """No item id means an admin-listed item."""
        recipient = run_async(self.resolver.resolve(product_type="product"))

        assert recipient.kind == RecipientKind.ADMIN
        assert recipient.merchant_account.account_number == "0001112223"
        mock_crud.vendor_wallet.get_for_product.assert_not_called()

    def test_vendor_item_keeps_both_accounts(self, mock_crud):
        """Item and delivery proceeds settle into separate accounts."""
        mock_crud.vendor_wallet.get_for_product.return_value = _make_wallet()

        recipient = run_async(
            self.resolver.resolve(product_type="product", item_id="prd_001")
        )

        assert recipient.kind == RecipientKind.VENDOR
        assert recipient.item_account.account_number == "1111111111"
        assert recipient.delivery_account.account_number == "2222222222"
        self.gateway.get_merchant_account.assert_not_awaited()

    def test_service_item_uses_service_lookup(self, mock_crud):
        mock_crud.vendor_wallet.get_for_service.return_value = _make_wallet()

        run_async(self.resolver.resolve(service_type="gas", item_id="svc_001"))

        mock_crud.vendor_wallet.get_for_service.assert_called_once()

    def test_missing_delivery_reference_is_hard_failure(self, mock_crud):
        """Never falls back to admin routing."""
        mock_crud.vendor_wallet.get_for_product.return_value = _make_wallet(
            delivery_account_reference=None
        )

        with pytest.raises(RecipientResolutionError):
            run_async(self.resolver.resolve(product_type="product", item_id="prd_001"))

        self.gateway.get_merchant_account.assert_not_awaited()

    def test_failed_account_lookup_is_hard_failure(self, mock_crud):
        mock_crud.vendor_wallet.get_for_product.return_value = _make_wallet()
        self.gateway.get_reserved_account = AsyncMock(side_effect=GatewayError("timeout"))

        with pytest.raises(RecipientResolutionError, match="Vendor account retrieval failed"):
            run_async(self.resolver.resolve(product_type="product", item_id="prd_001"))

    def test_missing_wallet(self, mock_crud):
        mock_crud.vendor_wallet.get_for_product.return_value = None

        with pytest.raises(RecipientResolutionError, match="wallet not found"):
            run_async(self.resolver.resolve(product_type="product", item_id="prd_404"))
