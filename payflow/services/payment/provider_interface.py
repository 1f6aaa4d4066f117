# payflow/services/payment/provider_interface.py
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from payflow.schemas.payment import ChannelDetails, PaymentMethod, TransactionStatus


class GatewayFeature(str, Enum):
    """Capabilities a gateway may offer."""
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    VIRTUAL_ACCOUNT = "virtual_account"
    THREE_D_SECURE = "3d_secure"
    DISBURSEMENT = "disbursement"
    REFUNDS = "refunds"
    BVN_LOOKUP = "bvn_lookup"
    WEBHOOKS = "webhooks"


class SecondFactorKind(str, Enum):
    OTP = "otp"
    THREE_DS = "3ds"


# Provider charge statuses for card payments
CARD_STATUS_MAP = {
    "SUCCESS": TransactionStatus.COMPLETED,
    "PENDING": TransactionStatus.PENDING,
    "BANK_AUTHORIZATION_REQUIRED": TransactionStatus.PENDING,
}

# Provider transaction statuses for status queries and webhooks
QUERY_STATUS_MAP = {
    "paid": TransactionStatus.COMPLETED,
    "pending": TransactionStatus.PENDING,
    "expired": TransactionStatus.CANCELLED,
}


def map_query_status(provider_status: Optional[str]) -> TransactionStatus:
    """Map a provider payment status; anything unknown is a failure."""
    return QUERY_STATUS_MAP.get((provider_status or "").lower(), TransactionStatus.FAILED)


@dataclass
class ChargeRequest:
    transaction_ref: str
    amount: Decimal
    payment_method: PaymentMethod
    payment_type: str
    customer_name: str
    customer_email: str
    card: Optional[Dict[str, Any]] = None
    device_information: Optional[Dict[str, Any]] = None
    client_ip: Optional[str] = None


@dataclass
class ChargeResult:
    status: TransactionStatus
    channel: ChannelDetails
    provider_reference: Optional[str] = None
    redirect_url: Optional[str] = None


@dataclass
class SecondFactorRequest:
    kind: SecondFactorKind
    transaction_ref: str
    payment_reference: Optional[str] = None
    token_id: Optional[str] = None
    token: Optional[str] = None
    card: Optional[Dict[str, Any]] = None


@dataclass
class TransactionQueryResult:
    transaction_ref: str
    provider_status: str
    amount: Decimal
    payment_reference: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> TransactionStatus:
        return map_query_status(self.provider_status)


@dataclass
class DisbursementRequest:
    reference: str
    amount: Decimal
    narration: str
    destination_bank_code: str
    destination_account_number: str


@dataclass
class DisbursementResult:
    reference: str
    status: str  # provider status, 'SUCCESS' when settled

    @property
    def succeeded(self) -> bool:
        return self.status == "SUCCESS"


@dataclass
class AccountDetails:
    account_number: str
    bank_name: str
    account_reference: Optional[str] = None
    account_type: Optional[str] = None  # 'TEMPORARY' or 'PERMANENT'


@dataclass
class RefundRequest:
    transaction_ref: str
    refund_reference: str
    amount: Decimal
    narration: str


@dataclass
class RefundResult:
    refund_reference: str
    refund_status: str


@dataclass
class BVNDetails:
    first_name: str
    last_name: str
    raw: Dict[str, Any] = field(default_factory=dict)


class GatewayAdapter(ABC):
    """
    Abstract interface for payment gateways.

    A single adapter may back several payment methods; the registry in
    gateway_factory decides which adapter serves which method.
    """

    @property
    @abstractmethod
    def code(self) -> str:
        """Gateway identifier, e.g. 'monnify'."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name as stored in payment_providers."""
        pass

    @property
    def is_remote(self) -> bool:
        """False for methods settled without contacting a gateway."""
        return True

    def validate_classification(
        self,
        *,
        product_type: Optional[str],
        service_type: Optional[str],
        is_wallet_top_up: bool,
    ) -> None:
        """Reject transaction classes this method cannot carry."""
        return None

    @abstractmethod
    async def initiate_charge(self, request: ChargeRequest) -> ChargeResult:
        """Start a charge. May return PENDING with a second-factor artifact."""
        pass

    @abstractmethod
    async def authorize_second_factor(self, request: SecondFactorRequest) -> ChargeResult:
        """Complete phase two of an OTP or 3-D Secure card charge."""
        pass

    @abstractmethod
    async def query_status(self, transaction_ref: str) -> TransactionQueryResult:
        pass

    @abstractmethod
    async def disburse(self, request: DisbursementRequest) -> DisbursementResult:
        """Push funds to a third-party bank account."""
        pass

    @abstractmethod
    async def get_reserved_account(self, account_reference: str) -> AccountDetails:
        pass

    @abstractmethod
    async def get_merchant_account(self) -> AccountDetails:
        pass

    @abstractmethod
    async def refund(self, request: RefundRequest) -> RefundResult:
        pass

    @abstractmethod
    async def lookup_bvn(
        self, *, bvn: str, account_number: str, bank_code: str
    ) -> BVNDetails:
        pass

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """Verify a webhook signature computed over the raw body."""
        pass

    @abstractmethod
    def supports_feature(self, feature: GatewayFeature) -> bool:
        pass
