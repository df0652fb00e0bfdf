# Overview: Default permission sets for the roles every organization starts with.

from .helpers import get_all_permission_codes


DEFAULT_ROLE_PERMISSIONS = {
    # Admin gets ALL permissions
    "admin": get_all_permission_codes(),

    "manager": [
        "VIEW_PRODUCTS",
        "MANAGE_PRODUCTS",
        "VIEW_SUPPLIERS",
        "MANAGE_SUPPLIERS",
        "VIEW_CUSTOMERS",
        "MANAGE_CUSTOMERS",
        "VIEW_SALES",
        "CREATE_SALE",
        "VIEW_CASH",
        "OPEN_CASH_SESSION",
        "CLOSE_CASH_SESSION",
        "RECORD_CASH_MOVEMENT",
        "RECONCILE_CASH",
        "VIEW_RETURNS",
        "CREATE_RETURN",
        "UPDATE_RETURN",
        "DELETE_RETURN",
        "VIEW_PROMOTIONS",
        "MANAGE_PROMOTIONS",
        "VIEW_COUPONS",
        "MANAGE_COUPONS",
        "APPLY_COUPONS",
        "VIEW_LOYALTY",
        "MANAGE_LOYALTY",
        "ADJUST_POINTS",
        "REDEEM_REWARDS",
        "VIEW_USERS",
    ],

    # Cashier: point of sale only
    "cashier": [
        "VIEW_PRODUCTS",
        "VIEW_CUSTOMERS",
        "VIEW_SALES",
        "CREATE_SALE",
        "VIEW_CASH",
        "OPEN_CASH_SESSION",
        "CLOSE_CASH_SESSION",
        "RECORD_CASH_MOVEMENT",
        "VIEW_RETURNS",
        "CREATE_RETURN",
        "VIEW_PROMOTIONS",
        "VIEW_COUPONS",
        "APPLY_COUPONS",
        "VIEW_LOYALTY",
        "REDEEM_REWARDS",
    ],
}
