# payflow/services/payment/recipient_resolver.py
"""
Decides where the proceeds of a transaction settle.

Admin-listed items (no item id) settle to the platform merchant account.
Vendor items settle to two distinct reserved accounts on the vendor's
wallet: one for the item price, one for delivery.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from payflow import crud
from payflow.core.logging import payment_logger
from payflow.schemas.payment import AccountInfo, RecipientInfo, RecipientKind
from .exceptions import GatewayError, RecipientResolutionError
from .provider_interface import GatewayAdapter


class RecipientResolver:
    def __init__(
        self,
        db: Session,
        gateway: GatewayAdapter,
        logger: logging.Logger = payment_logger,
    ):
        self.db = db
        self.gateway = gateway
        self.logger = logger

    async def resolve(
        self,
        *,
        product_type: Optional[str] = None,
        service_type: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> RecipientInfo:
        if not item_id:
            if not (product_type or service_type):
                raise RecipientResolutionError("Item ID required for vendor lookup")
            return await self._resolve_admin()
        return await self._resolve_vendor(
            product_type=product_type, service_type=service_type, item_id=item_id
        )

    async def _resolve_admin(self) -> RecipientInfo:
        try:
            account = await self.gateway.get_merchant_account()
        except GatewayError as e:
            self.logger.error(f"Admin merchant account lookup failed: {e.message}")
            raise RecipientResolutionError("Admin merchant account retrieval failed") from e

        return RecipientInfo(
            kind=RecipientKind.ADMIN,
            merchant_account=AccountInfo(
                account_number=account.account_number, bank_name=account.bank_name
            ),
        )

    async def _resolve_vendor(
        self, *, product_type: Optional[str], service_type: Optional[str], item_id: str
    ) -> RecipientInfo:
        if product_type:
            wallet = crud.vendor_wallet.get_for_product(self.db, product_id=item_id)
        elif service_type:
            wallet = crud.vendor_wallet.get_for_service(self.db, service_id=item_id)
        else:
            wallet = None

        if wallet is None:
            raise RecipientResolutionError(f"Vendor wallet not found for item {item_id}")
        if not wallet.item_account_reference or not wallet.delivery_account_reference:
            raise RecipientResolutionError("Vendor account details incomplete in wallet")

        try:
            item_account = await self.gateway.get_reserved_account(
                wallet.item_account_reference
            )
            delivery_account = await self.gateway.get_reserved_account(
                wallet.delivery_account_reference
            )
        except GatewayError as e:
            self.logger.error(
                f"Vendor account lookup failed for wallet {wallet.id} "
                f"(item={wallet.item_account_reference}, "
                f"delivery={wallet.delivery_account_reference}): {e.message}"
            )
            raise RecipientResolutionError("Vendor account retrieval failed") from e

        return RecipientInfo(
            kind=RecipientKind.VENDOR,
            vendor_id=wallet.id,
            item_account=AccountInfo(
                account_number=item_account.account_number,
                bank_name=item_account.bank_name,
            ),
            delivery_account=AccountInfo(
                account_number=delivery_account.account_number,
                bank_name=delivery_account.bank_name,
            ),
        )
