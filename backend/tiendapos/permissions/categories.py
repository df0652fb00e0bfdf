# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    CATALOG = "CATALOG"
    CUSTOMERS = "CUSTOMERS"
    SALES = "SALES"
    CASH = "CASH"
    RETURNS = "RETURNS"
    PROMOTIONS = "PROMOTIONS"
    LOYALTY = "LOYALTY"
    USERS = "USERS"
    ORGANIZATION = "ORGANIZATION"
    SYSTEM = "SYSTEM"
