# payflow/services/payment/payment_service.py
import logging
import re
import secrets
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payflow import crud
from payflow.core.logging import payment_logger
from payflow.models.payment import Payment
from payflow.schemas.payment import (
    BillPaymentInput,
    CardDetails,
    CardInput,
    DisbursementInfo,
    PaymentDetails,
    PaymentMethod,
    PaymentResult,
    ProcessPaymentInput,
    TransactionStatus,
    VoucherContext,
)
from payflow.services.notifications import NotificationService, get_notification_service
from .exceptions import (
    ConfigurationError,
    GatewayError,
    IdempotencyConflict,
    PaymentError,
    PaymentNotFoundError,
    ValidationError,
    VoucherInvalidError,
)
from .fee_calculator import AdminRates, FeeCalculator, fee_calculator as default_fee_calculator
from .gateway_factory import GatewayFactory, get_gateway_factory
from .provider_interface import (
    ChargeRequest,
    ChargeResult,
    DisbursementRequest,
    GatewayAdapter,
    SecondFactorKind,
    SecondFactorRequest,
)
from .recipient_resolver import RecipientResolver
from .voucher_service import AppliedVoucher, VoucherService

USER_ID_PATTERN = re.compile(r"^[0-9a-fA-F-]{36}$")
METER_NUMBER_PATTERN = re.compile(r"^[0-9]{10,13}$")
ACCOUNT_NUMBER_PATTERN = re.compile(r"^[0-9]{10}$")

PRODUCT_TYPES = ("product", "wallet_topup")
SERVICE_TYPES = ("gas", "petrol", "diesel", "electricity")
ELECTRICITY = "electricity"
MAX_BILL_AMOUNT = Decimal("1000000")

# Walked in order when the requested method is disabled and fallback is allowed
FALLBACK_METHODS = (
    PaymentMethod.PAY_ON_DELIVERY,
    PaymentMethod.TRANSFER,
    PaymentMethod.VIRTUAL_ACCOUNT,
    PaymentMethod.CARD,
    PaymentMethod.MONNIFY,
)


def generate_reference(prefix: str) -> str:
    """`<prefix>-<uuid>-<epoch ms>`"""
    return f"{prefix}-{uuid.uuid4()}-{int(time.time() * 1000)}"


def validate_user_id(user_id: Optional[str]) -> None:
    if not user_id or not USER_ID_PATTERN.match(user_id):
        raise ValidationError("Invalid user ID: must be a UUID")


def validate_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("Invalid amount: must be a positive number")
    if value.is_nan() or value <= 0:
        raise ValidationError("Invalid amount: must be a positive number")
    return value


def payment_result(payment: Payment, message: Optional[str] = None) -> PaymentResult:
    details = payment.payment_details or {}
    return PaymentResult(
        transaction_ref=payment.transaction_ref,
        payment_id=payment.id,
        status=TransactionStatus(payment.status),
        payment_details=details,
        electricity_token=details.get("electricityToken"),
        message=message,
    )


class PaymentService:
    """
    Top-level entry point for starting payments.

    Owns the lifecycle of a new payment:
    - validates input and method availability (fail closed)
    - prices the payment (voucher, fees, VAT)
    - resolves where the proceeds settle
    - persists the PENDING payment together with the voucher redemption
    - dispatches to the gateway and merges its artifacts back

    Every failure after input validation is audited as PAYMENT_FAILED and
    re-raised to the caller.
    """

    def __init__(
        self,
        db: Session,
        *,
        gateway_factory: Optional[GatewayFactory] = None,
        notifier: Optional[NotificationService] = None,
        fee_calculator: Optional[FeeCalculator] = None,
        logger: logging.Logger = payment_logger,
    ):
        self.db = db
        self.gateways = gateway_factory or get_gateway_factory()
        self.notifier = notifier or get_notification_service()
        self.fee_calculator = fee_calculator or default_fee_calculator
        self.logger = logger
        self.vouchers = VoucherService(db, logger=logger)

    # ------------------------------------------------------------------ #
    # Method selection
    # ------------------------------------------------------------------ #

    def select_payment_method(
        self,
        preferred: PaymentMethod,
        *,
        product_type: Optional[str] = None,
        service_type: Optional[str] = None,
        is_wallet_top_up: bool = False,
        has_card: bool = True,
    ) -> PaymentMethod:
        """
        Return `preferred` if enabled, else the first enabled fallback that
        can carry this kind of transaction.
        """
        if self.gateways.is_enabled(self.db, preferred):
            return preferred

        for method in FALLBACK_METHODS:
            if not self.gateways.is_enabled(self.db, method):
                continue
            if method == PaymentMethod.CARD and not has_card:
                continue
            try:
                self.gateways.get_gateway(self.db, method).validate_classification(
                    product_type=product_type,
                    service_type=service_type,
                    is_wallet_top_up=is_wallet_top_up,
                )
            except (ConfigurationError, ValidationError) as e:
                self.logger.info(f"Skipping fallback {method.value}: {e.message}")
                continue
            self.logger.info(f"Falling back from {preferred.value} to {method.value}")
            return method

        raise ConfigurationError("No payment methods are currently available")

    # ------------------------------------------------------------------ #
    # Payments
    # ------------------------------------------------------------------ #

    async def process_payment(self, input_data: ProcessPaymentInput) -> PaymentResult:
        """
        Start a payment for a product, service or wallet top-up.

        Returns the stored state unchanged when a payment already exists
        for the transaction reference.
        """
        validate_user_id(input_data.user_id)
        amount = validate_amount(input_data.amount)
        if input_data.payment_method == PaymentMethod.WALLET:
            raise ValidationError("WALLET payment method is not supported")

        product_type = input_data.product_type
        service_type = input_data.service_type
        is_wallet_top_up = input_data.is_wallet_top_up or product_type == "wallet_topup"
        if is_wallet_top_up and not product_type:
            product_type = "wallet_topup"

        method = input_data.payment_method
        if input_data.allow_fallback:
            method = self.select_payment_method(
                method,
                product_type=product_type,
                service_type=service_type,
                is_wallet_top_up=is_wallet_top_up,
                has_card=input_data.card is not None,
            )
        gateway = self.gateways.get_gateway(self.db, method)

        context = self._validate_classification(
            product_type=product_type,
            service_type=service_type,
            is_wallet_top_up=is_wallet_top_up,
            voucher_code=input_data.voucher_code,
        )
        if service_type == ELECTRICITY:
            raise ValidationError(
                "Electricity payments must be processed using the bill payment flow"
            )
        gateway.validate_classification(
            product_type=product_type,
            service_type=service_type,
            is_wallet_top_up=is_wallet_top_up,
        )
        if method == PaymentMethod.CARD and not input_data.card:
            raise ValidationError("Card details are required for card payments")

        prefix = "COD" if method == PaymentMethod.PAY_ON_DELIVERY else "TRX"
        transaction_ref = input_data.transaction_ref or generate_reference(prefix)

        # A replay returns the stored payment even if its voucher is now used up
        existing = crud.payment.get_by_transaction_ref(self.db, transaction_ref=transaction_ref)
        if existing:
            self.logger.info(f"Payment {transaction_ref} already exists; returning stored state")
            return payment_result(existing, message="Payment already exists")

        user = self._get_user(input_data.user_id)

        applied = None
        if input_data.voucher_code:
            applied = self.vouchers.validate(
                user_id=input_data.user_id,
                code=input_data.voucher_code,
                context=context,
                amount=amount,
            )

        self.logger.info(
            f"Processing {product_type or service_type} payment {transaction_ref} "
            f"for user {input_data.user_id} via {method.value}"
        )

        payment = None
        try:
            details = await self._price(
                amount=amount,
                applied=applied,
                is_wallet_top_up=is_wallet_top_up,
                payment_type=product_type or service_type,
                product_type=product_type,
                service_type=service_type,
                item_id=input_data.item_id,
                gateway=gateway,
            )
            payment = self._persist_pending(
                transaction_ref=transaction_ref,
                user_id=input_data.user_id,
                amount=amount,
                method=method,
                gateway=gateway,
                details=details,
                applied=applied,
                product_type=product_type,
                service_type=service_type,
            )
        except IdempotencyConflict:
            existing = crud.payment.get_by_transaction_ref(self.db, transaction_ref=transaction_ref)
            return payment_result(existing, message="Payment already exists")
        except Exception as e:
            self._record_failure(
                None, user_id=input_data.user_id, transaction_ref=transaction_ref, error=e
            )
            raise

        self._audit(
            payment,
            "PAYMENT_INITIATED",
            {
                "transactionRef": transaction_ref,
                "paymentMethod": method.value,
                "amount": float(payment.amount),
                "voucherCode": applied.code if applied else None,
            },
        )

        result = await self._dispatch(
            payment,
            gateway,
            details,
            ChargeRequest(
                transaction_ref=transaction_ref,
                amount=Decimal(str(payment.amount)),
                payment_method=method,
                payment_type=details.payment_type,
                customer_name=self._customer_name(user),
                customer_email=user.email or "",
                card=input_data.card.to_gateway() if input_data.card else None,
                device_information=input_data.device_information,
                client_ip=input_data.client_ip,
            ),
        )

        self.notifier.send_transactional_message(
            "PAYMENT_INITIATED",
            [input_data.user_id],
            {"transactionRef": transaction_ref, "paymentDetails": details.to_storage()},
        )
        return PaymentResult(
            transaction_ref=transaction_ref,
            payment_id=payment.id,
            status=result.status,
            payment_details=details.to_storage(),
            redirect_url=result.redirect_url,
        )

    async def process_bill_payment(self, input_data: BillPaymentInput) -> PaymentResult:
        """
        Pay an electricity bill.

        After the charge reaches PENDING or COMPLETED the bill amount is
        disbursed to the destination account. A settled disbursement
        completes the payment and issues the electricity token.
        """
        validate_user_id(input_data.user_id)
        amount = validate_amount(input_data.amount)
        if amount > MAX_BILL_AMOUNT:
            raise ValidationError(f"Bill amount cannot exceed {MAX_BILL_AMOUNT}")
        if input_data.payment_method == PaymentMethod.WALLET:
            raise ValidationError("WALLET payment method is not supported")
        if not input_data.meter_number or not METER_NUMBER_PATTERN.match(input_data.meter_number):
            raise ValidationError("Invalid meter number: must be 10 to 13 digits")
        if not input_data.destination_bank_code:
            raise ValidationError("Destination bank code is required")
        if not ACCOUNT_NUMBER_PATTERN.match(input_data.destination_account_number or ""):
            raise ValidationError("Invalid destination account number: must be 10 digits")

        method = input_data.payment_method
        gateway = self.gateways.get_gateway(self.db, method)
        gateway.validate_classification(
            product_type=None, service_type=ELECTRICITY, is_wallet_top_up=False
        )
        if method == PaymentMethod.CARD and not input_data.card:
            raise ValidationError("Card details are required for card payments")

        transaction_ref = input_data.transaction_ref or generate_reference("BILL")
        existing = crud.payment.get_by_transaction_ref(self.db, transaction_ref=transaction_ref)
        if existing:
            return payment_result(existing, message="Payment already exists")

        user = self._get_user(input_data.user_id)

        applied = None
        if input_data.voucher_code:
            applied = self.vouchers.validate(
                user_id=input_data.user_id,
                code=input_data.voucher_code,
                context=VoucherContext.SERVICE,
                amount=amount,
            )

        payment = None
        try:
            details = await self._price(
                amount=amount,
                applied=applied,
                is_wallet_top_up=False,
                payment_type=ELECTRICITY,
                product_type=None,
                service_type=ELECTRICITY,
                item_id=input_data.item_id,
                gateway=gateway,
            )
            payment = self._persist_pending(
                transaction_ref=transaction_ref,
                user_id=input_data.user_id,
                amount=amount,
                method=method,
                gateway=gateway,
                details=details,
                applied=applied,
                product_type=None,
                service_type=ELECTRICITY,
                meter_number=input_data.meter_number,
            )
        except IdempotencyConflict:
            existing = crud.payment.get_by_transaction_ref(self.db, transaction_ref=transaction_ref)
            return payment_result(existing, message="Payment already exists")
        except Exception as e:
            self._record_failure(
                None,
                user_id=input_data.user_id,
                transaction_ref=transaction_ref,
                error=e,
                action="BILL_PAYMENT_FAILED",
            )
            raise

        self._audit(
            payment,
            "BILL_PAYMENT_INITIATED",
            {
                "transactionRef": transaction_ref,
                "meterNumber": input_data.meter_number,
                "paymentMethod": method.value,
                "amount": float(payment.amount),
            },
        )

        result = await self._dispatch(
            payment,
            gateway,
            details,
            ChargeRequest(
                transaction_ref=transaction_ref,
                amount=Decimal(str(payment.amount)),
                payment_method=method,
                payment_type=ELECTRICITY,
                customer_name=self._customer_name(user),
                customer_email=user.email or "",
                card=input_data.card.to_gateway() if input_data.card else None,
                device_information=input_data.device_information,
                client_ip=input_data.client_ip,
            ),
            failure_action="BILL_PAYMENT_FAILED",
        )

        status = result.status
        if status in (TransactionStatus.PENDING, TransactionStatus.COMPLETED):
            status = await self._settle_bill(payment, details, input_data, amount, status)

        if details.electricity_token:
            self.notifier.send_transactional_message(
                "ELECTRICITY_TOKEN_ISSUED",
                [input_data.user_id],
                {
                    "transactionRef": transaction_ref,
                    "meterNumber": input_data.meter_number,
                    "electricityToken": details.electricity_token,
                },
            )

        return PaymentResult(
            transaction_ref=transaction_ref,
            payment_id=payment.id,
            status=status,
            payment_details=details.to_storage(),
            redirect_url=result.redirect_url,
            electricity_token=details.electricity_token,
        )

    # ------------------------------------------------------------------ #
    # Card second factor
    # ------------------------------------------------------------------ #

    async def authorize_card_otp(
        self, *, transaction_ref: str, user_id: str, token: str
    ) -> PaymentResult:
        return await self._authorize_second_factor(
            SecondFactorKind.OTP, transaction_ref=transaction_ref, user_id=user_id, token=token
        )

    async def authorize_card_3ds(
        self, *, transaction_ref: str, user_id: str, card: CardInput
    ) -> PaymentResult:
        return await self._authorize_second_factor(
            SecondFactorKind.THREE_DS, transaction_ref=transaction_ref, user_id=user_id, card=card
        )

    async def _authorize_second_factor(
        self,
        kind: SecondFactorKind,
        *,
        transaction_ref: str,
        user_id: str,
        token: Optional[str] = None,
        card: Optional[CardInput] = None,
    ) -> PaymentResult:
        validate_user_id(user_id)
        label = "OTP" if kind == SecondFactorKind.OTP else "3DS"

        payment = crud.payment.get_for_user(
            self.db, transaction_ref=transaction_ref, user_id=user_id
        )
        if payment is None:
            raise PaymentNotFoundError(f"Payment not found for transaction: {transaction_ref}")
        if payment.payment_method != PaymentMethod.CARD.value:
            raise ValidationError(f"{label} authorization only applies to card payments")
        if payment.status != TransactionStatus.PENDING.value:
            raise ValidationError(
                f"{label} authorization not allowed for payment in {payment.status} status"
            )

        details = PaymentDetails.from_storage(payment.payment_details)
        card_details = details.channel if isinstance(details.channel, CardDetails) else CardDetails()
        if kind == SecondFactorKind.OTP and not card_details.token_id:
            raise ValidationError("No pending OTP authorization for this payment")

        gateway = self.gateways.get_registered(PaymentMethod.CARD)
        try:
            result = await gateway.authorize_second_factor(
                SecondFactorRequest(
                    kind=kind,
                    transaction_ref=transaction_ref,
                    payment_reference=card_details.payment_reference or payment.monnify_ref,
                    token_id=card_details.token_id,
                    token=token,
                    card=card.to_gateway() if card else None,
                )
            )
        except Exception as e:
            self._fail_payment(
                payment,
                e,
                actions=(f"CARD_{label}_AUTHORIZATION_FAILED",),
            )
            raise

        merged = result.channel.model_copy(
            update={
                "token_id": result.channel.token_id or card_details.token_id,
                "payment_reference": result.channel.payment_reference
                or card_details.payment_reference,
            }
        )
        details.channel = merged
        changed = crud.payment.transition_status(
            self.db,
            payment_id=payment.id,
            from_statuses=[TransactionStatus.PENDING.value],
            to_status=result.status.value,
            payment_details=details.to_storage(),
        )
        if not changed:
            self.db.refresh(payment)
            self.logger.warning(
                f"Payment {transaction_ref} changed to {payment.status} during {label} authorization"
            )
            return payment_result(payment)

        self._audit(
            payment,
            f"CARD_{label}_AUTHORIZATION_SUCCESS",
            {"transactionRef": transaction_ref, "status": result.status.value},
        )
        return PaymentResult(
            transaction_ref=transaction_ref,
            payment_id=payment.id,
            status=result.status,
            payment_details=details.to_storage(),
            redirect_url=result.redirect_url,
        )

    # ------------------------------------------------------------------ #
    # Pipeline steps
    # ------------------------------------------------------------------ #

    def _validate_classification(
        self,
        *,
        product_type: Optional[str],
        service_type: Optional[str],
        is_wallet_top_up: bool,
        voucher_code: Optional[str],
    ) -> Optional[VoucherContext]:
        """Check the product/service classification; return the voucher context."""
        if product_type and service_type:
            raise ValidationError("Cannot specify both productType and serviceType")
        if not product_type and not service_type:
            raise ValidationError("Either productType or serviceType is required")
        if product_type and product_type not in PRODUCT_TYPES:
            raise ValidationError(
                f"Invalid productType: {product_type}. Must be one of {', '.join(PRODUCT_TYPES)}"
            )
        if service_type and service_type not in SERVICE_TYPES:
            raise ValidationError(
                f"Invalid serviceType: {service_type}. Must be one of {', '.join(SERVICE_TYPES)}"
            )
        if is_wallet_top_up and product_type != "wallet_topup":
            raise ValidationError("Wallet top-up cannot have a product or service type")

        if product_type == "wallet_topup":
            if voucher_code:
                raise ValidationError("Vouchers cannot be applied to wallet top-up transactions")
            return None
        if product_type == "product":
            return VoucherContext.PRODUCT
        return VoucherContext.SERVICE

    def _get_user(self, user_id: str):
        user = crud.user.get(self.db, id=user_id)
        if user is None:
            raise ValidationError("User not found")
        return user

    @staticmethod
    def _customer_name(user) -> str:
        name = " ".join(part for part in (user.first_name, user.last_name) if part)
        return name or "Customer"

    async def _price(
        self,
        *,
        amount: Decimal,
        applied: Optional[AppliedVoucher],
        is_wallet_top_up: bool,
        payment_type: str,
        product_type: Optional[str],
        service_type: Optional[str],
        item_id: Optional[str],
        gateway: GatewayAdapter,
    ) -> PaymentDetails:
        """
        Resolve the recipient, then compute fees into a details envelope.

        Local methods (pay on delivery) settle outside the gateway, so no
        recipient is looked up for them.
        """
        recipient = None
        if gateway.is_remote:
            resolver = RecipientResolver(
                self.db, self.gateways.get_settlement_gateway(), logger=self.logger
            )
            recipient = await resolver.resolve(
                product_type=product_type, service_type=service_type, item_id=item_id
            )

        rates = AdminRates.from_settings(crud.admin_settings.get_current(self.db))
        discount = applied.discount if applied else Decimal("0")
        fees = self.fee_calculator.calculate(amount, discount, is_wallet_top_up, rates)

        return PaymentDetails(
            payment_type=payment_type,
            base_amount=amount,
            voucher_code=applied.code if applied else None,
            voucher_discount=discount if applied else None,
            service_fee=None if is_wallet_top_up else fees.service_fee,
            topup_charge=fees.topup_charge if is_wallet_top_up else None,
            vat=fees.vat,
            total_amount=fees.total_amount,
            recipient=recipient,
        )

    def _persist_pending(
        self,
        *,
        transaction_ref: str,
        user_id: str,
        amount: Decimal,
        method: PaymentMethod,
        gateway: GatewayAdapter,
        details: PaymentDetails,
        applied: Optional[AppliedVoucher],
        product_type: Optional[str],
        service_type: Optional[str],
        meter_number: Optional[str] = None,
    ) -> Payment:
        """
        Insert the PENDING payment and redeem the voucher in one commit.

        Raises IdempotencyConflict if a concurrent request inserted the same
        transaction reference first, and VoucherInvalidError if the voucher
        ran out of uses in the meantime.
        """
        provider_id = None
        if gateway.is_remote:
            provider = crud.payment_provider.get_by_name(self.db, name=gateway.name)
            if provider is None:
                raise ConfigurationError(f"Payment provider {gateway.name} not found")
            provider_id = provider.id

        try:
            if applied and not crud.voucher.claim_use(self.db, voucher_id=applied.voucher.id):
                raise VoucherInvalidError("Invalid or inapplicable voucher: usage limit reached")

            payment = crud.payment.add_pending(
                self.db,
                obj_in={
                    "transaction_ref": transaction_ref,
                    "user_id": user_id,
                    "amount": details.total_amount,
                    "requested_amount": amount,
                    "payment_method": method.value,
                    "product_type": product_type,
                    "service_type": service_type,
                    "meter_number": meter_number,
                    "provider_id": provider_id,
                    "payment_details": details.to_storage(),
                },
            )
            if applied:
                crud.voucher.add_usage(
                    self.db,
                    voucher_id=applied.voucher.id,
                    user_id=user_id,
                    payment_id=payment.id,
                    discount=applied.discount,
                )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if crud.payment.get_by_transaction_ref(self.db, transaction_ref=transaction_ref):
                raise IdempotencyConflict(transaction_ref) from e
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(payment)
        return payment

    async def _dispatch(
        self,
        payment: Payment,
        gateway: GatewayAdapter,
        details: PaymentDetails,
        request: ChargeRequest,
        failure_action: str = "PAYMENT_FAILED",
    ) -> ChargeResult:
        """Run the gateway charge and merge its artifacts into the payment."""
        is_card = request.payment_method == PaymentMethod.CARD
        try:
            result = await gateway.initiate_charge(request)
        except Exception as e:
            actions = ("CARD_CHARGE_FAILED",) if is_card else ()
            self._fail_payment(payment, e, actions=actions + (failure_action,))
            raise

        details.channel = result.channel
        crud.payment.update_details(
            self.db,
            payment=payment,
            payment_details=details.to_storage(),
            status=result.status.value,
            monnify_ref=result.provider_reference,
        )
        if is_card:
            self._audit(
                payment,
                "CARD_CHARGE_INITIATED",
                {
                    "transactionRef": payment.transaction_ref,
                    "paymentReference": result.provider_reference,
                    "status": result.status.value,
                },
            )
        self.logger.info(
            f"Payment {payment.transaction_ref} dispatched via {gateway.code}: {result.status.value}"
        )
        return result

    async def _settle_bill(
        self,
        payment: Payment,
        details: PaymentDetails,
        input_data: BillPaymentInput,
        amount: Decimal,
        status: TransactionStatus,
    ) -> TransactionStatus:
        """
        Disburse the bill amount. A failed disbursement is recorded on the
        payment (the charge itself stands) and re-raised.
        """
        reference = payment.transaction_ref
        settlement = self.gateways.get_settlement_gateway()
        disbursement = DisbursementInfo(
            reference=reference,
            status="PENDING",
            destination_bank_code=input_data.destination_bank_code,
            destination_account_number=input_data.destination_account_number,
        )

        try:
            outcome = await settlement.disburse(
                DisbursementRequest(
                    reference=reference,
                    amount=amount,
                    narration=f"Electricity Bill Payment - {reference}",
                    destination_bank_code=input_data.destination_bank_code,
                    destination_account_number=input_data.destination_account_number,
                )
            )
        except GatewayError as e:
            details.disbursement = disbursement.model_copy(update={"status": "FAILED"})
            crud.payment.update_details(
                self.db, payment=payment, payment_details=details.to_storage()
            )
            self._audit(
                payment,
                "BILL_PAYMENT_FAILED",
                {"transactionRef": reference, "stage": "disbursement", "error": e.message},
            )
            raise

        details.disbursement = disbursement.model_copy(update={"status": outcome.status})
        if outcome.succeeded:
            details.electricity_token = f"TOKEN-{secrets.randbelow(10 ** 10):010d}"
            status = TransactionStatus.COMPLETED

        # The token is persisted before anything else can fail.
        crud.payment.update_details(
            self.db,
            payment=payment,
            payment_details=details.to_storage(),
            status=status.value,
        )
        self.logger.info(
            f"Bill payment {reference} disbursement {outcome.status}; status {status.value}"
        )
        return status

    # ------------------------------------------------------------------ #
    # Failure and audit helpers
    # ------------------------------------------------------------------ #

    def _audit(self, payment: Payment, action: str, details: dict) -> None:
        crud.audit_log.log_action(
            self.db,
            action=action,
            entity_type="Payment",
            entity_id=payment.id,
            user_id=payment.user_id,
            details=details,
        )

    def _fail_payment(self, payment: Payment, error: Exception, actions=("PAYMENT_FAILED",)) -> None:
        """Mark a persisted payment FAILED and audit each action."""
        message = error.message if isinstance(error, PaymentError) else str(error)
        self.logger.error(f"Payment {payment.transaction_ref} failed: {message}")

        self.db.rollback()
        crud.payment.transition_status(
            self.db,
            payment_id=payment.id,
            from_statuses=[TransactionStatus.PENDING.value],
            to_status=TransactionStatus.FAILED.value,
        )
        for action in actions:
            self._audit(
                payment,
                action,
                {"transactionRef": payment.transaction_ref, "error": message},
            )

    def _record_failure(
        self,
        payment: Optional[Payment],
        *,
        user_id: str,
        transaction_ref: str,
        error: Exception,
        action: str = "PAYMENT_FAILED",
    ) -> None:
        """Audit a failure that happened before or without a persisted payment."""
        message = error.message if isinstance(error, PaymentError) else str(error)
        self.logger.error(f"Payment {transaction_ref} failed before dispatch: {message}")
        crud.audit_log.log_action(
            self.db,
            action=action,
            entity_type="Payment",
            entity_id=payment.id if payment else None,
            user_id=user_id,
            details={"transactionRef": transaction_ref, "error": message},
        )
