"""
Order status lifecycle.

    pending ──┐
              ├──> payment_pending ──> paid
    pending_payment ┘       │  ▲
                            │  └─ re-initiation (new payment reference)
                            └──> payment_failed

`pending_payment` is the status older records were created with for
mobile-money orders; it behaves like `pending`.
"""
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_PENDING = "payment_pending"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"


TERMINAL_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.PAYMENT_FAILED})

TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAYMENT_PENDING}),
    OrderStatus.PENDING_PAYMENT: frozenset({OrderStatus.PAYMENT_PENDING}),
    OrderStatus.PAYMENT_PENDING: frozenset({
        OrderStatus.PAYMENT_PENDING,
        OrderStatus.PAID,
        OrderStatus.PAYMENT_FAILED,
    }),
    OrderStatus.PAID: frozenset(),
    OrderStatus.PAYMENT_FAILED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return OrderStatus(target) in TRANSITIONS[OrderStatus(current)]


def is_terminal(status: str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def sources_for(target: OrderStatus) -> tuple:
    """Statuses an order may be in for `target` to be a legal next status."""
    return tuple(s.value for s, targets in TRANSITIONS.items() if target in targets)
