"""
Tests for gateway selection.
"""

import pytest
from unittest.mock import MagicMock, patch

from payflow.schemas.payment import PaymentMethod
from payflow.services.payment.exceptions import ConfigurationError, ValidationError
from payflow.services.payment.gateway_factory import GatewayFactory
from payflow.services.payment.providers.pay_on_delivery import PayOnDeliveryAdapter

FACTORY_MODULE = "payflow.services.payment.gateway_factory"


def _make_config(gateway="monnify", is_enabled=True):
    config = MagicMock()
    config.gateway = gateway
    config.is_enabled = is_enabled
    return config


def _make_remote_adapter():
    adapter = MagicMock()
    adapter.code = "monnify"
    adapter.name = "Monnify"
    adapter.is_remote = True
    return adapter


@patch(f"{FACTORY_MODULE}.crud")
class TestGatewayFactory:
    def setup_method(self):
        self.db = MagicMock()
        self.factory = GatewayFactory(logger=MagicMock())
        self.monnify = _make_remote_adapter()
        self.factory.register(PaymentMethod.CARD, self.monnify)
        self.factory.register(PaymentMethod.MONNIFY, self.monnify)
        self.factory.register(PaymentMethod.PAY_ON_DELIVERY, PayOnDeliveryAdapter(logger=MagicMock()))

    def test_returns_adapter_for_enabled_method(self, mock_crud):
        mock_crud.payment_config.get_by_method.return_value = _make_config()

        assert self.factory.get_gateway(self.db, PaymentMethod.CARD) is self.monnify

    def test_wallet_is_never_accepted(self, mock_crud):
        """WALLET fails validation before any config lookup."""
        with pytest.raises(ValidationError, match="WALLET"):
            self.factory.get_gateway(self.db, PaymentMethod.WALLET)

        mock_crud.payment_config.get_by_method.assert_not_called()

    def test_unregistered_method(self, mock_crud):
        with pytest.raises(ConfigurationError, match="No gateway registered"):
            self.factory.get_gateway(self.db, PaymentMethod.TRANSFER)

    def test_missing_config_counts_as_disabled(self, mock_crud):
        mock_crud.payment_config.get_by_method.return_value = None

        with pytest.raises(ConfigurationError, match="disabled"):
            self.factory.get_gateway(self.db, PaymentMethod.CARD)

    def test_disabled_config(self, mock_crud):
        mock_crud.payment_config.get_by_method.return_value = _make_config(is_enabled=False)

        with pytest.raises(ConfigurationError, match="disabled"):
            self.factory.get_gateway(self.db, PaymentMethod.CARD)

    def test_gateway_mismatch(self, mock_crud):
        """A CARD config pointing at another provider is a configuration error."""
        mock_crud.payment_config.get_by_method.return_value = _make_config(gateway="paystack")

        with pytest.raises(ConfigurationError, match="not configured for Monnify"):
            self.factory.get_gateway(self.db, PaymentMethod.CARD)

    def test_gateway_match_is_case_insensitive(self, mock_crud):
        mock_crud.payment_config.get_by_method.return_value = _make_config(gateway="MONNIFY")

        assert self.factory.get_gateway(self.db, PaymentMethod.CARD) is self.monnify

    def test_pay_on_delivery_accepts_any_gateway(self, mock_crud):
        mock_crud.payment_config.get_by_method.return_value = _make_config(gateway="internal")

        adapter = self.factory.get_gateway(self.db, PaymentMethod.PAY_ON_DELIVERY)

        assert adapter.is_remote is False

    def test_is_enabled(self, mock_crud):
        mock_crud.payment_config.get_by_method.side_effect = [
            _make_config(),
            _make_config(is_enabled=False),
            None,
        ]

        assert self.factory.is_enabled(self.db, PaymentMethod.CARD) is True
        assert self.factory.is_enabled(self.db, PaymentMethod.CARD) is False
        assert self.factory.is_enabled(self.db, PaymentMethod.CARD) is False

    def test_settlement_gateway_is_monnify(self, mock_crud):
        """Account lookups go through the MONNIFY registration without a config check."""
        assert self.factory.get_settlement_gateway() is self.monnify
        mock_crud.payment_config.get_by_method.assert_not_called()

    def test_list_methods(self, mock_crud):
        assert set(self.factory.list_methods()) == {
            PaymentMethod.CARD,
            PaymentMethod.MONNIFY,
            PaymentMethod.PAY_ON_DELIVERY,
        }
