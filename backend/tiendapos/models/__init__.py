from .tenancy import Organization, Store
from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken, UserPermissionOverride
from .security import SecurityEvent
from .catalog import Product, InventoryMovement, Supplier, SupplierPriceHistory
from .customers import Customer
from .cash import CashSession, CashMovement, CashCount, CashDiscrepancy
from .sales import Sale, SaleItem
from .returns import Return, ReturnItem
from .promotions import Promotion, PromotionProduct, Coupon
from .loyalty import LoyaltyProgram, LoyaltyTier, CustomerLoyalty, PointsTransaction, Reward, CustomerReward

__all__ = [
    'Organization', 'Store',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission',
    'SessionToken', 'UserPermissionOverride', 'SecurityEvent',
    'Product', 'InventoryMovement', 'Supplier', 'SupplierPriceHistory',
    'Customer',
    'CashSession', 'CashMovement', 'CashCount', 'CashDiscrepancy',
    'Sale', 'SaleItem',
    'Return', 'ReturnItem',
    'Promotion', 'PromotionProduct', 'Coupon',
    'LoyaltyProgram', 'LoyaltyTier', 'CustomerLoyalty', 'PointsTransaction', 'Reward', 'CustomerReward',
]
