# payflow/services/payment/__init__.py
from .gateway_factory import GatewayFactory, get_gateway_factory
from .management_service import PaymentManagementService
from .payment_service import PaymentService
from .provider_interface import GatewayAdapter
from .verification_service import PaymentVerificationService

__all__ = [
    "GatewayAdapter",
    "GatewayFactory",
    "get_gateway_factory",
    "PaymentService",
    "PaymentVerificationService",
    "PaymentManagementService",
]
