"""
Escrow app for marketplace payment settlement.

This app handles:
- Charging approved quotes with buyer-borne gateway fees
- Holding funds in escrow until the buyer confirms delivery
- Validating and healing supplier payout destinations
- Releasing the supplier's net amount and retrying failed transfers
- Gateway webhook event handling

Related apps:
    - core: Base models, exceptions and ServiceResult

Usage:
    from escrow.services import ChargeService, ReleaseService

    # Charge an approved quote
    result = ChargeService().create_charge(quote_id, payment_method="pix")

    # Release escrow after delivery confirmation
    result = ReleaseService().release(payment_id, confirmation_code="ABC123")
"""
