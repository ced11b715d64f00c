"""
Order state machine.

Pure rules: which status may follow which, who may ask for it, and which
timestamp a transition stamps. Persistence (compare-and-set) lives in
tracking.services.orders.
"""

from typing import Optional

from tracking.exceptions import InvalidTransition, NotAuthorized
from tracking.models import OrderStatus


# Valid state transitions
TRANSITIONS = {
    OrderStatus.PENDING: [OrderStatus.ASSIGNED, OrderStatus.CANCELLED],
    OrderStatus.ACCEPTED: [OrderStatus.CANCELLED],  # Legacy value, only cancellation leaves it
    OrderStatus.ASSIGNED: [OrderStatus.PICKED, OrderStatus.CANCELLED],
    OrderStatus.PICKED: [OrderStatus.IN_TRANSIT, OrderStatus.CANCELLED],
    OrderStatus.IN_TRANSIT: [OrderStatus.DELIVERED, OrderStatus.CANCELLED],
    OrderStatus.DELIVERED: [],  # Terminal state
    OrderStatus.CANCELLED: [],  # Terminal state
}

# Roles allowed to request each target status; ownership is checked afterwards
ROLE_PERMISSIONS = {
    OrderStatus.ASSIGNED: {'vendor'},
    OrderStatus.PICKED: {'courier'},
    OrderStatus.IN_TRANSIT: {'courier'},
    OrderStatus.DELIVERED: {'courier'},
    OrderStatus.CANCELLED: {'vendor', 'admin', 'system'},
}

TIMESTAMP_FIELDS = {
    OrderStatus.ASSIGNED: 'assigned_at',
    OrderStatus.PICKED: 'picked_at',
    OrderStatus.IN_TRANSIT: 'in_transit_at',
    OrderStatus.DELIVERED: 'delivered_at',
    OrderStatus.CANCELLED: 'cancelled_at',
}


def can_transition(from_state: str, to_state: str) -> bool:
    """Check if transition is valid."""
    return to_state in TRANSITIONS.get(from_state, [])


def actor_role(user) -> str:
    """Map a user (or None for internal callers) to a transition role."""
    if user is None:
        return 'system'
    if getattr(user, 'is_platform_admin', False):
        return 'admin'
    if getattr(user, 'is_vendor', False):
        return 'vendor'
    if getattr(user, 'is_courier', False):
        return 'courier'
    return 'customer'


def check_role(user, to_state: str) -> str:
    """
    Reject callers whose role can never request `to_state`.

    Runs before the transition table so that a customer learns nothing
    about the order's state, while a courier asking for a step out of
    order gets InvalidTransition rather than a misleading 403.
    """
    role = actor_role(user)
    if role not in ROLE_PERMISSIONS.get(to_state, set()):
        raise NotAuthorized(f"Le rôle '{role}' ne peut pas passer une commande en '{to_state}'.")
    return role


def check_ownership(order, user, role: str) -> None:
    """The vendor must own the order, the courier must be the assigned one."""
    if role in ('system', 'admin'):
        return
    if role == 'vendor' and order.vendor_id == user.pk:
        return
    if role == 'courier' and order.courier_id is not None and order.courier_id == user.pk:
        return
    raise NotAuthorized()


def validate(order, user, to_state: str, from_state: Optional[str] = None) -> str:
    """
    Full validation of `from_state -> to_state` requested by `user`.

    Order of checks: role, transition table, ownership. Returns the
    resolved actor role.

    Raises:
        NotAuthorized: role or ownership rule not satisfied
        InvalidTransition: the table does not allow the step
    """
    if to_state not in TRANSITIONS:
        raise InvalidTransition(f"Statut inconnu: {to_state}")

    role = check_role(user, to_state)

    current = from_state if from_state is not None else order.status
    if not can_transition(current, to_state):
        raise InvalidTransition(current=current, target=to_state)

    check_ownership(order, user, role)
    return role


def path_is_valid(statuses) -> bool:
    """True if the sequence starts at pending and every step is in the table."""
    statuses = list(statuses)
    if not statuses or statuses[0] != OrderStatus.PENDING:
        return False
    return all(can_transition(a, b) for a, b in zip(statuses, statuses[1:]))
