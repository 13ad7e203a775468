"""Roles and the capabilities they grant."""
import logging
from enum import Enum
from typing import Iterable, Union
from errors import Forbidden, Unauthorized


class Role(str, Enum):
    CUSTOMER = "customer"
    BUSINESS_CLIENT = "business_client"
    STAFF = "staff"
    OUTLET_MANAGER = "outlet_manager"
    ADMIN = "admin"
    OWNER = "owner"
    SUPER_ADMIN = "super_admin"


class Capability(str, Enum):
    VERIFY_PAYMENTS = "verify_payments"
    UPDATE_ORDERS = "update_orders"
    VIEW_ALL_ORDERS = "view_all_orders"
    VIEW_ANALYTICS = "view_analytics"
    PLACE_ORDER = "place_order"
    CANCEL_OWN_ORDER = "cancel_own_order"
    PURCHASE_MEMBERSHIP = "purchase_membership"


_CUSTOMER_CAPABILITIES = frozenset({
    Capability.PLACE_ORDER, Capability.CANCEL_OWN_ORDER, Capability.PURCHASE_MEMBERSHIP
})
_STAFF_CAPABILITIES = frozenset({Capability.UPDATE_ORDERS, Capability.VIEW_ALL_ORDERS, Capability.VIEW_ANALYTICS})
_ADMIN_CAPABILITIES = _STAFF_CAPABILITIES | {Capability.VERIFY_PAYMENTS}

ROLE_CAPABILITIES = {
    Role.CUSTOMER: _CUSTOMER_CAPABILITIES,
    Role.BUSINESS_CLIENT: _CUSTOMER_CAPABILITIES,
    Role.STAFF: _STAFF_CAPABILITIES,
    Role.OUTLET_MANAGER: _ADMIN_CAPABILITIES,
    Role.ADMIN: _ADMIN_CAPABILITIES,
    Role.OWNER: _ADMIN_CAPABILITIES,
    Role.SUPER_ADMIN: _ADMIN_CAPABILITIES,
}


def has_capability(role: Union[Role, str, None], required: Union[Capability, Iterable[Capability]]) -> bool:
    """Return True if ``role`` grants every capability in ``required``.

    Unknown or missing roles grant nothing.
    """
    if not role:
        return False
    try:
        role = Role(role)
    except ValueError:
        return False
    if isinstance(required, Capability):
        required = {required}
    return set(required) <= ROLE_CAPABILITIES[role]


def require_capability(user, required: Union[Capability, Iterable[Capability]]) -> None:
    """Raise Unauthorized without a user, Forbidden when its role lacks ``required``."""
    if user is None:
        raise Unauthorized()
    if not has_capability(user.role, required):
        logging.warning(f"User {user.id} with role {user.role} denied {required}")
        raise Forbidden()
