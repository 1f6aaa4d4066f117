# payflow/crud/__init__.py

from .crud_payment import payment
from .crud_audit_log import audit_log
from .crud_voucher import voucher
from .crud_fraud_alert import fraud_alert
from .crud_payment_config import payment_config, payment_provider, admin_settings
from .crud_vendor_wallet import vendor_wallet
from .crud_user import user, bank_account, bvn_verification
from .crud_webhook_retry import webhook_retry
