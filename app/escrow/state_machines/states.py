"""
State enums for escrow models.

These are Django TextChoices for database storage and admin integration.
Payment carries two independent django-fsm fields: ``status`` follows the
buyer-side charge, ``transfer_status`` follows the supplier payout, because a
charge can sit fully paid in escrow while its payout is pending, failed or
being retried.

State Machines Overview:

Payment.status:
    pending → processing → in_escrow → transfer_pending → completed
    pending/processing → overdue → in_escrow (late payment)
    pending/processing/overdue → cancelled
    pending/processing → failed (gateway rejected the charge)

Payment.transfer_status:
    none → pending → completed
    none/pending → failed → pending (retry)

GatewayEvent.status:
    pending → processing → processed
    processing → failed → processing (retry)
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    Buyer-side lifecycle of a Payment.

    Terminal states: COMPLETED, FAILED, CANCELLED

    COMPLETED is only reached when the gateway confirms the supplier
    transfer; releasing escrow stops at TRANSFER_PENDING.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    IN_ESCROW = "in_escrow", "In Escrow"
    TRANSFER_PENDING = "transfer_pending", "Transfer Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    OVERDUE = "overdue", "Overdue"
    CANCELLED = "cancelled", "Cancelled"


class TransferStatus(models.TextChoices):
    """
    Supplier payout lifecycle of a Payment.

    State Flow:
        NONE → PENDING → COMPLETED
        NONE/PENDING → FAILED → PENDING (retry)
    """

    NONE = "none", "None"
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class PaymentMethod(models.TextChoices):
    """Buyer payment method; UNDETERMINED until the buyer picks one."""

    PIX = "pix", "PIX"
    BOLETO = "boleto", "Boleto"
    CREDIT_CARD = "credit_card", "Credit Card"
    UNDETERMINED = "undetermined", "Undetermined"


class ReleaseErrorType(models.TextChoices):
    """Why a payout attempt failed."""

    MISSING_BANK_DATA = "missing_bank_data", "Missing Bank Data"
    TRANSFER_FAILED = "transfer_failed", "Transfer Failed"


class QuoteStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    SENT = "sent", "Sent"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    CANCELLED = "cancelled", "Cancelled"


class DeliveryStatus(models.TextChoices):
    SCHEDULED = "scheduled", "Scheduled"
    IN_TRANSIT = "in_transit", "In Transit"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"


class PixKeyType(models.TextChoices):
    """PIX key kinds understood by the gateway transfer API."""

    CPF = "CPF", "CPF"
    CNPJ = "CNPJ", "CNPJ"
    EMAIL = "EMAIL", "E-mail"
    PHONE = "PHONE", "Phone"
    EVP = "EVP", "Random Key"


class GatewayEventStatus(models.TextChoices):
    """
    Processing status for inbound gateway webhooks.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PROCESSING → FAILED → PROCESSING (retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class PanelType(models.TextChoices):
    """Which side of the marketplace produced an audit record."""

    CLIENT = "client", "Client"
    SUPPLIER = "supplier", "Supplier"
    ADMIN = "admin", "Admin"
    SYSTEM = "system", "System"


class NotificationPriority(models.TextChoices):
    LOW = "low", "Low"
    NORMAL = "normal", "Normal"
    HIGH = "high", "High"


# Payment states the Status Synchronizer may still move
OPEN_PAYMENT_STATUSES = (
    PaymentStatus.PENDING,
    PaymentStatus.PROCESSING,
    PaymentStatus.OVERDUE,
)

# A Payment in these states no longer blocks a new charge for its quote
CLOSED_CHARGE_STATUSES = (
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
)

# Funds have been collected from the buyer
FUNDED_PAYMENT_STATUSES = (
    PaymentStatus.IN_ESCROW,
    PaymentStatus.TRANSFER_PENDING,
    PaymentStatus.COMPLETED,
)
