# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- CATALOG --

CATALOG_PERMISSIONS = [
    ("VIEW_PRODUCTS", "View Products", "View the product catalog and stock levels", PermissionCategory.CATALOG),
    ("MANAGE_PRODUCTS", "Manage Products", "Create, edit, deactivate products and adjust stock", PermissionCategory.CATALOG),
    ("VIEW_SUPPLIERS", "View Suppliers", "View suppliers and their price history", PermissionCategory.CATALOG),
    ("MANAGE_SUPPLIERS", "Manage Suppliers", "Create and edit suppliers, record supplier prices", PermissionCategory.CATALOG),
]


# -- CUSTOMERS --

CUSTOMER_PERMISSIONS = [
    ("VIEW_CUSTOMERS", "View Customers", "View customers and purchase history", PermissionCategory.CUSTOMERS),
    ("MANAGE_CUSTOMERS", "Manage Customers", "Create, edit and deactivate customers", PermissionCategory.CUSTOMERS),
]


# -- SALES --

SALES_PERMISSIONS = [
    ("VIEW_SALES", "View Sales", "View sales, daily summary and dashboard analytics", PermissionCategory.SALES),
    ("CREATE_SALE", "Create Sale", "Ring up sales at the point of sale", PermissionCategory.SALES),
]


# -- CASH --

CASH_PERMISSIONS = [
    ("VIEW_CASH", "View Cash", "View cash sessions, movements and exports", PermissionCategory.CASH),
    ("OPEN_CASH_SESSION", "Open Cash Session", "Open the cash register with an opening float", PermissionCategory.CASH),
    ("CLOSE_CASH_SESSION", "Close Cash Session", "Close the cash register with a closing count", PermissionCategory.CASH),
    ("RECORD_CASH_MOVEMENT", "Record Cash Movement", "Record cash in/out and adjustments", PermissionCategory.CASH),
    ("RECONCILE_CASH", "Reconcile Cash", "Report discrepancies and replace denomination counts", PermissionCategory.CASH),
]


# -- RETURNS --

RETURN_PERMISSIONS = [
    ("VIEW_RETURNS", "View Returns", "View return documents", PermissionCategory.RETURNS),
    ("CREATE_RETURN", "Create Return", "Create PENDING returns against a sale", PermissionCategory.RETURNS),
    ("UPDATE_RETURN", "Update Return", "Approve, reject and complete returns", PermissionCategory.RETURNS),
    ("DELETE_RETURN", "Delete Return", "Delete PENDING returns", PermissionCategory.RETURNS),
]


# -- PROMOTIONS --

PROMOTION_PERMISSIONS = [
    ("VIEW_PROMOTIONS", "View Promotions", "View promotions and current offers", PermissionCategory.PROMOTIONS),
    ("MANAGE_PROMOTIONS", "Manage Promotions", "Create, edit and delete promotions", PermissionCategory.PROMOTIONS),
    ("APPROVE_PROMOTIONS", "Approve Promotions", "Approve or reject promotions", PermissionCategory.PROMOTIONS),
    ("VIEW_COUPONS", "View Coupons", "View coupons", PermissionCategory.PROMOTIONS),
    ("MANAGE_COUPONS", "Manage Coupons", "Create, edit, delete and seed coupons", PermissionCategory.PROMOTIONS),
    ("APPLY_COUPONS", "Apply Coupons", "Validate coupons at checkout", PermissionCategory.PROMOTIONS),
]


# -- LOYALTY --

LOYALTY_PERMISSIONS = [
    ("VIEW_LOYALTY", "View Loyalty", "View programs, members, rewards and analytics", PermissionCategory.LOYALTY),
    ("MANAGE_LOYALTY", "Manage Loyalty", "Configure programs, tiers and rewards; enroll customers", PermissionCategory.LOYALTY),
    ("ADJUST_POINTS", "Adjust Points", "Manually adjust customer points balances", PermissionCategory.LOYALTY),
    ("REDEEM_REWARDS", "Redeem Rewards", "Redeem and use rewards for customers", PermissionCategory.LOYALTY),
]


# -- USERS --

USER_PERMISSIONS = [
    ("VIEW_USERS", "View Users", "View users, roles and permissions", PermissionCategory.USERS),
    ("MANAGE_USERS", "Manage Users", "Create users and assign roles", PermissionCategory.USERS),
    ("MANAGE_PERMISSIONS", "Manage Permissions", "Grant and revoke role permissions", PermissionCategory.USERS),
]


# -- ORGANIZATION --

ORGANIZATION_PERMISSIONS = [
    ("MANAGE_ORGANIZATION", "Manage Organization", "Edit organization profile, subdomain and custom domain", PermissionCategory.ORGANIZATION),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    ("SYSTEM_ADMIN", "System Admin", "Full administrative access", PermissionCategory.SYSTEM),
]


# Combined list of all permissions (preserves original ordering)
PERMISSION_DEFINITIONS = (
    CATALOG_PERMISSIONS
    + CUSTOMER_PERMISSIONS
    + SALES_PERMISSIONS
    + CASH_PERMISSIONS
    + RETURN_PERMISSIONS
    + PROMOTION_PERMISSIONS
    + LOYALTY_PERMISSIONS
    + USER_PERMISSIONS
    + ORGANIZATION_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
