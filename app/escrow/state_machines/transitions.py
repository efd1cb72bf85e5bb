"""
Central transition function for Payment state.

Services never call the django-fsm methods on Payment directly; they go
through ``apply_transition`` so that every status or transfer_status change
is validated, logged and rejected the same way.

Callers are expected to hold the row (select_for_update inside
transaction.atomic) so the source state checked here is the state at write
time.

Usage:
    from escrow.state_machines.transitions import apply_transition

    with transaction.atomic():
        payment = Payment.objects.select_for_update().get(id=payment_id)
        apply_transition(payment, "request_transfer")
        apply_transition(payment, "begin_transfer")
        payment.save()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django_fsm import can_proceed

from escrow.exceptions import InvalidStateTransitionError

if TYPE_CHECKING:
    from typing import Any

    from escrow.models import Payment


logger = logging.getLogger(__name__)


# Action name -> FSM field it moves
PAYMENT_ACTIONS: dict[str, str] = {
    "start_processing": "status",
    "mark_in_escrow": "status",
    "mark_overdue": "status",
    "cancel": "status",
    "fail": "status",
    "request_transfer": "status",
    "complete": "status",
    "begin_transfer": "transfer_status",
    "confirm_transfer": "transfer_status",
    "fail_transfer": "transfer_status",
}


def can_apply(payment: Payment, action: str) -> bool:
    """Check whether ``action`` is allowed from the payment's current state."""
    if action not in PAYMENT_ACTIONS:
        return False
    return can_proceed(getattr(payment, action))


def apply_transition(payment: Payment, action: str, **kwargs: Any) -> Payment:
    """
    Apply a named transition to a payment. Does not save.

    Args:
        payment: Payment instance (ideally locked for update)
        action: One of PAYMENT_ACTIONS
        **kwargs: Passed to the transition method (e.g. reason, error)

    Returns:
        The same payment, mutated

    Raises:
        InvalidStateTransitionError: Unknown action or not allowed from the
            current state
    """
    field_name = PAYMENT_ACTIONS.get(action)
    if field_name is None:
        raise InvalidStateTransitionError(
            f"Unknown payment action '{action}'",
            details={"action": action},
        )

    current = getattr(payment, field_name)
    if not can_apply(payment, action):
        raise InvalidStateTransitionError(
            f"Cannot {action} payment in '{current}' {field_name}",
            details={
                "payment_id": str(payment.pk),
                "field": field_name,
                "current_state": current,
                "action": action,
            },
        )

    getattr(payment, action)(**kwargs)

    logger.info(
        "Payment transition applied",
        extra={
            "payment_id": str(payment.pk),
            "field": field_name,
            "action": action,
            "from_state": current,
            "to_state": getattr(payment, field_name),
        },
    )
    return payment
