# payflow/services/payment/gateway_factory.py
"""
Registry mapping payment methods to gateway adapters.

Adding a method is a `register` call. Several methods may share one
adapter instance (today CARD, TRANSFER, VIRTUAL_ACCOUNT and MONNIFY all
map to Monnify) and can be pointed at separate providers later without
touching callers.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from payflow import crud
from payflow.core.logging import payment_logger
from payflow.models.payment_config import PaymentConfig
from payflow.schemas.payment import PaymentMethod
from .exceptions import ConfigurationError, ValidationError
from .provider_interface import GatewayAdapter
from .providers.monnify_provider import MonnifyConfig, MonnifyProvider
from .providers.pay_on_delivery import PayOnDeliveryAdapter


class GatewayFactory:
    """
    Selects the adapter for a payment method.

    The factory never substitutes another method when the requested one is
    disabled; fallback is the orchestrator's decision.
    """

    settlement_method = PaymentMethod.MONNIFY

    def __init__(self, logger: logging.Logger = payment_logger):
        self.logger = logger
        self._gateways: Dict[PaymentMethod, GatewayAdapter] = {}

    def register(self, payment_method: PaymentMethod, adapter: GatewayAdapter) -> None:
        self._gateways[payment_method] = adapter
        self.logger.info(f"Registered {adapter.code} gateway for {payment_method.value}")

    def initialize_default_gateways(self) -> None:
        """Register the gateways available in the current configuration."""
        monnify = MonnifyProvider(MonnifyConfig.from_settings(), logger=self.logger)
        for method in (
            PaymentMethod.CARD,
            PaymentMethod.TRANSFER,
            PaymentMethod.VIRTUAL_ACCOUNT,
            PaymentMethod.MONNIFY,
        ):
            self.register(method, monnify)
        self.register(PaymentMethod.PAY_ON_DELIVERY, PayOnDeliveryAdapter(logger=self.logger))

    def get_registered(self, payment_method: PaymentMethod) -> GatewayAdapter:
        """Look up an adapter without consulting PaymentConfig."""
        if payment_method == PaymentMethod.WALLET:
            raise ValidationError("WALLET payment method is not supported")
        adapter = self._gateways.get(payment_method)
        if adapter is None:
            raise ConfigurationError(
                f"No gateway registered for payment method {payment_method.value}"
            )
        return adapter

    def get_settlement_gateway(self) -> GatewayAdapter:
        """
        The remote gateway used for account lookups, disbursement and BVN
        checks, whichever method the customer pays with.
        """
        return self.get_registered(self.settlement_method)

    def gateway_matches(self, payment_method: PaymentMethod, config: Optional[PaymentConfig]) -> bool:
        """
        Check a PaymentConfig row points at the gateway registered for the method.
        Local methods (pay on delivery) accept any gateway value.
        """
        adapter = self._gateways.get(payment_method)
        if adapter is None or config is None:
            return False
        if not adapter.is_remote:
            return True
        return (config.gateway or "").lower() == adapter.code

    def is_enabled(self, db: Session, payment_method: PaymentMethod) -> bool:
        config = crud.payment_config.get_by_method(db, payment_method=payment_method.value)
        return bool(
            config
            and config.is_enabled
            and self.gateway_matches(payment_method, config)
        )

    def get_gateway(self, db: Session, payment_method: PaymentMethod) -> GatewayAdapter:
        """
        Return the adapter for an enabled, correctly configured method.

        A missing PaymentConfig row counts as disabled.
        """
        adapter = self.get_registered(payment_method)

        config = crud.payment_config.get_by_method(db, payment_method=payment_method.value)
        if config is None or not config.is_enabled:
            self.logger.warning(f"Payment method {payment_method.value} is disabled")
            raise ConfigurationError(
                f"Payment method {payment_method.value} is currently disabled"
            )
        if not self.gateway_matches(payment_method, config):
            self.logger.warning(
                f"Payment method {payment_method.value} configured with gateway "
                f"{config.gateway}, expected {adapter.code}"
            )
            raise ConfigurationError(
                f"Payment method {payment_method.value} is not configured for {adapter.name}"
            )
        return adapter

    def list_methods(self) -> List[PaymentMethod]:
        return list(self._gateways.keys())


# Singleton instance
_factory_instance: Optional[GatewayFactory] = None


def get_gateway_factory() -> GatewayFactory:
    """Get the gateway factory, registering the default gateways on first use."""
    global _factory_instance
    if _factory_instance is None:
        _factory_instance = GatewayFactory()
        _factory_instance.initialize_default_gateways()
    return _factory_instance
