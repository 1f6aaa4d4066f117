# payflow/models/__init__.py
from .user import User
from .payment_provider import PaymentProvider
from .payment import Payment
from .audit_log import AuditLog
from .voucher import Voucher, VoucherUsage
from .fraud_alert import FraudAlert
from .payment_config import PaymentConfig
from .admin_settings import AdminSettings
from .vendor_wallet import VendorWallet
from .catalog import Product, Service
from .bank_account import BankAccount
from .bvn_verification import BVNVerification
from .webhook_retry import WebhookRetry
