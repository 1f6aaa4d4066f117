# payflow/schemas/payment.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel


# ============================================
# Enums
# ============================================

class PaymentMethod(str, Enum):
    CARD = "CARD"
    TRANSFER = "TRANSFER"
    VIRTUAL_ACCOUNT = "VIRTUAL_ACCOUNT"
    MONNIFY = "MONNIFY"
    PAY_ON_DELIVERY = "PAY_ON_DELIVERY"
    WALLET = "WALLET"  # Declared by clients, never accepted


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    PENDING_MANUAL = "PENDING_MANUAL"
    PENDING_DELIVERY = "PENDING_DELIVERY"
    REFUND = "REFUND"


class VoucherContext(str, Enum):
    PRODUCT = "PRODUCT"
    SERVICE = "SERVICE"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class RecipientKind(str, Enum):
    ADMIN = "admin"
    VENDOR = "vendor"


# Monetary values are Decimal in code and plain numbers in stored JSON.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================
# Payment details (stored on Payment.payment_details)
# ============================================

class AccountInfo(CamelModel):
    account_number: str
    bank_name: str


class RecipientInfo(CamelModel):
    kind: RecipientKind
    merchant_account: Optional[AccountInfo] = None
    vendor_id: Optional[str] = None
    item_account: Optional[AccountInfo] = None
    delivery_account: Optional[AccountInfo] = None


class CardDetails(CamelModel):
    kind: Literal["card"] = "card"
    provider_status: Optional[str] = None
    payment_reference: Optional[str] = None
    token_id: Optional[str] = None
    secure3d_data: Optional[Dict[str, Any]] = None
    authorized_amount: Optional[Money] = None


class BankTransferDetails(CamelModel):
    kind: Literal["bankTransfer"] = "bankTransfer"
    account_reference: str
    account_number: str
    bank_name: str
    account_expiration: str
    narration: str
    transfer_amount: str
    payment_reference: Optional[str] = None
    checkout_url: Optional[str] = None


class VirtualAccountDetails(CamelModel):
    kind: Literal["virtualAccount"] = "virtualAccount"
    account_reference: str
    account_number: str
    bank_name: str
    note: str
    amount: str
    payment_reference: Optional[str] = None
    checkout_url: Optional[str] = None


class PayOnDeliveryDetails(CamelModel):
    kind: Literal["payOnDelivery"] = "payOnDelivery"
    confirmation_code: str


ChannelDetails = Annotated[
    Union[CardDetails, BankTransferDetails, VirtualAccountDetails, PayOnDeliveryDetails],
    Field(discriminator="kind"),
]

CHANNEL_KINDS = ("card", "bankTransfer", "virtualAccount", "payOnDelivery")


class RefundInfo(CamelModel):
    refund_reference: str
    refund_status: str
    refund_amount: Money


class DisbursementInfo(CamelModel):
    reference: str
    status: str
    destination_bank_code: str
    destination_account_number: str


class PaymentDetails(CamelModel):
    """
    Common envelope for fee breakdown and voucher metadata, plus exactly one
    method-specific channel block.

    In storage the channel block sits under its own tag, e.g.
    ``{"totalAmount": 1125.0, "bankTransfer": {"accountNumber": ...}}``.
    """

    payment_type: str
    base_amount: Money
    voucher_code: Optional[str] = None
    voucher_discount: Optional[Money] = None
    service_fee: Optional[Money] = None
    topup_charge: Optional[Money] = None
    vat: Money = Decimal("0")
    total_amount: Money
    recipient: Optional[RecipientInfo] = None

    channel: Optional[ChannelDetails] = None

    refund: Optional[RefundInfo] = None
    disbursement: Optional[DisbursementInfo] = None
    electricity_token: Optional[str] = None

    def to_storage(self) -> Dict[str, Any]:
        data = self.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude={"channel"}
        )
        if self.channel is not None:
            data[self.channel.kind] = self.channel.model_dump(
                mode="json", by_alias=True, exclude_none=True, exclude={"kind"}
            )
        return data

    @classmethod
    def from_storage(cls, data: Optional[Dict[str, Any]]) -> "PaymentDetails":
        data = dict(data or {})
        for kind in CHANNEL_KINDS:
            if kind in data:
                data["channel"] = {"kind": kind, **data.pop(kind)}
                break
        return cls.model_validate(data)


# ============================================
# Inputs
# ============================================

class CardInput(CamelModel):
    number: str = Field(..., min_length=12, max_length=19)
    cvv: str = Field(..., min_length=3, max_length=4)
    expiry_month: str
    expiry_year: str
    pin: Optional[str] = None

    def to_gateway(self) -> Dict[str, Any]:
        card = {
            "number": self.number,
            "cvv": self.cvv,
            "expiryMonth": self.expiry_month,
            "expiryYear": self.expiry_year,
        }
        if self.pin:
            card["pin"] = self.pin
        return card


class ProcessPaymentInput(CamelModel):
    user_id: Optional[str] = None  # taken from the token at the HTTP layer
    amount: Decimal
    payment_method: PaymentMethod
    product_type: Optional[str] = None
    service_type: Optional[str] = None
    item_id: Optional[str] = None
    transaction_ref: Optional[str] = None
    voucher_code: Optional[str] = None
    is_wallet_top_up: bool = False
    card: Optional[CardInput] = None
    device_information: Optional[Dict[str, Any]] = None
    client_ip: Optional[str] = None
    allow_fallback: bool = False


class BillPaymentInput(CamelModel):
    user_id: Optional[str] = None
    amount: Decimal
    payment_method: PaymentMethod
    meter_number: str
    destination_bank_code: str
    destination_account_number: str
    transaction_ref: Optional[str] = None
    voucher_code: Optional[str] = None
    item_id: Optional[str] = None
    card: Optional[CardInput] = None
    device_information: Optional[Dict[str, Any]] = None
    client_ip: Optional[str] = None


class AuthorizeOtpInput(CamelModel):
    token: str


class Authorize3DSInput(CamelModel):
    card: CardInput


class RefundInput(CamelModel):
    amount: Decimal
    narration: Optional[str] = None


class BVNVerificationInput(CamelModel):
    bvn: str
    account_number: str
    bank_code: str


# ============================================
# Results
# ============================================

class PaymentResult(CamelModel):
    transaction_ref: str
    payment_id: str
    status: TransactionStatus
    payment_details: Dict[str, Any] = {}
    redirect_url: Optional[str] = None
    electricity_token: Optional[str] = None
    message: Optional[str] = None


class TransactionHistoryItem(CamelModel):
    id: str
    transaction_ref: str
    amount: Money
    status: str
    payment_method: str
    product_type: Optional[str] = None
    service_type: Optional[str] = None
    provider: Optional[str] = None
    payment_details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TransactionHistory(CamelModel):
    transactions: List[TransactionHistoryItem]
    total: int
    page: int
    limit: int


class PaymentMethodStatus(CamelModel):
    payment_method: str
    is_enabled: bool
    gateway: Optional[str] = None
    last_updated: Optional[datetime] = None
    updated_by: Optional[str] = None


class BVNVerificationResult(CamelModel):
    verified: bool
    bank_account_linked: bool
    verification_id: str
