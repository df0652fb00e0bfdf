# Overview: Permission system package.
# Re-exports the catalog, default role map and lookup helpers.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    CATALOG_PERMISSIONS,
    CUSTOMER_PERMISSIONS,
    SALES_PERMISSIONS,
    CASH_PERMISSIONS,
    RETURN_PERMISSIONS,
    PROMOTION_PERMISSIONS,
    LOYALTY_PERMISSIONS,
    USER_PERMISSIONS,
    ORGANIZATION_PERMISSIONS,
    SYSTEM_PERMISSIONS,
)
from .roles import DEFAULT_ROLE_PERMISSIONS
from .helpers import (
    get_all_permission_codes,
    get_permission_categories,
    validate_permission_code,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "CATALOG_PERMISSIONS",
    "CUSTOMER_PERMISSIONS",
    "SALES_PERMISSIONS",
    "CASH_PERMISSIONS",
    "RETURN_PERMISSIONS",
    "PROMOTION_PERMISSIONS",
    "LOYALTY_PERMISSIONS",
    "USER_PERMISSIONS",
    "ORGANIZATION_PERMISSIONS",
    "SYSTEM_PERMISSIONS",
    "DEFAULT_ROLE_PERMISSIONS",
    "get_all_permission_codes",
    "get_permission_categories",
    "validate_permission_code",
]
