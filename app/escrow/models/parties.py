"""
Marketplace parties: buyers (clients) and sellers (suppliers).

Only the fields the settlement engine reads or writes live here. Profile
editing, onboarding wizards and permissions belong to the surrounding
marketplace.

Usage:
    from escrow.models import Client, Supplier

    supplier = Supplier.objects.get(id=supplier_id)
    if supplier.gateway_wallet_id:
        ...  # has a payout destination on file
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import PixKeyType


class Client(UUIDPrimaryKeyMixin, BaseModel):
    """
    Buyer organisation that approves quotes and pays charges.

    Fields:
        tax_id: CPF or CNPJ, digits only
        gateway_customer_id: Buyer record at the gateway, created once
        members: Users allowed to confirm deliveries on the client's behalf
    """

    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True, default="")
    tax_id = models.CharField(
        max_length=18,
        blank=True,
        default="",
        help_text="CPF/CNPJ (digits only)",
    )
    phone = models.CharField(max_length=20, blank=True, default="")
    gateway_customer_id = models.CharField(
        max_length=100,
        blank=True,
        default="",
        db_index=True,
        help_text="Customer id at the payment gateway (cus_xxx)",
    )
    members = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        blank=True,
        related_name="escrow_clients",
    )

    class Meta:
        ordering = ["name"]
        verbose_name = "Client"
        verbose_name_plural = "Clients"

    def __str__(self) -> str:
        return self.name


class Supplier(UUIDPrimaryKeyMixin, BaseModel):
    """
    Seller organisation that receives payouts.

    Embeds the payout destination: the gateway sub-account wallet used for
    charge splits plus the PIX key and bank account used for transfers.
    Only the destination healer and the supplier's own banking update
    write these fields.

    Fields:
        gateway_account_id: Sub-account id at the gateway
        gateway_wallet_id: Wallet id receiving split proceeds
        pix_key / pix_key_type: Preferred transfer route
        bank_*: Full bank account, used when no PIX key is on file
        declared_monthly_revenue: Business metadata for sub-account income value
    """

    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True, default="")
    tax_id = models.CharField(
        max_length=18,
        blank=True,
        default="",
        help_text="CPF/CNPJ (digits only)",
    )
    phone = models.CharField(max_length=20, blank=True, default="")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="escrow_suppliers",
        help_text="User who receives payout notifications",
    )

    # ==========================================================================
    # Business Metadata
    # ==========================================================================

    business_type = models.CharField(
        max_length=30,
        blank=True,
        default="",
        help_text="Company size / legal form (mei, me, epp, ltda, sa)",
    )
    specialties = models.JSONField(default=list, blank=True)
    declared_monthly_revenue = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
    )
    birth_date = models.DateField(
        null=True,
        blank=True,
        help_text="Required by the gateway for individual (CPF) sub-accounts",
    )
    address = models.CharField(max_length=255, blank=True, default="")
    address_number = models.CharField(max_length=20, blank=True, default="")
    province = models.CharField(max_length=100, blank=True, default="")
    postal_code = models.CharField(max_length=10, blank=True, default="")

    # ==========================================================================
    # Payout Destination
    # ==========================================================================

    gateway_account_id = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Gateway sub-account id",
    )
    gateway_wallet_id = models.CharField(
        max_length=100,
        blank=True,
        default="",
        db_index=True,
        help_text="Gateway wallet id that receives split proceeds",
    )
    pix_key = models.CharField(max_length=140, blank=True, default="")
    pix_key_type = models.CharField(
        max_length=10,
        choices=PixKeyType.choices,
        blank=True,
        default="",
    )
    bank_code = models.CharField(max_length=10, blank=True, default="")
    bank_agency = models.CharField(max_length=10, blank=True, default="")
    bank_agency_digit = models.CharField(max_length=2, blank=True, default="")
    bank_account = models.CharField(max_length=20, blank=True, default="")
    bank_account_digit = models.CharField(max_length=2, blank=True, default="")
    bank_account_type = models.CharField(
        max_length=20,
        blank=True,
        default="CONTA_CORRENTE",
    )
    bank_holder_name = models.CharField(max_length=255, blank=True, default="")
    bank_holder_tax_id = models.CharField(max_length=18, blank=True, default="")
    bank_data_verified_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["name"]
        verbose_name = "Supplier"
        verbose_name_plural = "Suppliers"

    def __str__(self) -> str:
        return self.name

    @property
    def has_pix_key(self) -> bool:
        return bool(self.pix_key.strip())

    @property
    def bank_fields(self) -> dict[str, str]:
        """Bank account fields keyed by their model attribute name."""
        return {
            "bank_code": self.bank_code,
            "bank_agency": self.bank_agency,
            "bank_agency_digit": self.bank_agency_digit,
            "bank_account": self.bank_account,
            "bank_account_digit": self.bank_account_digit,
            "bank_account_type": self.bank_account_type,
            "bank_holder_name": self.bank_holder_name,
            "bank_holder_tax_id": self.bank_holder_tax_id,
        }
