# payflow/crud/crud_vendor_wallet.py
from typing import Optional
from sqlalchemy.orm import Session

from payflow.crud.base import CRUDBase
from payflow.models.vendor_wallet import VendorWallet
from payflow.models.catalog import Product, Service


class CRUDVendorWallet(CRUDBase[VendorWallet]):
    """Resolves the wallet of the vendor that owns a catalog item."""

    def get_for_product(self, db: Session, *, product_id: str) -> Optional[VendorWallet]:
        return (
            db.query(self.model)
            .join(Product, Product.owner_id == self.model.user_id)
            .filter(Product.id == product_id)
            .first()
        )

    def get_for_service(self, db: Session, *, service_id: str) -> Optional[VendorWallet]:
        return (
            db.query(self.model)
            .join(Service, Service.provider_id == self.model.user_id)
            .filter(Service.id == service_id)
            .first()
        )


vendor_wallet = CRUDVendorWallet(VendorWallet)
