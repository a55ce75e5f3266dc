from .stores import ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, VALID_ROLES, Store, User
from .customers import Customer
from .inventory import Product
from .sales import Sale, SaleItem, SaleRefund
from .repairs import Repair, RepairPriceSnapshot, RepairTimelineEntry

__all__ = [
    'ROLE_ADMIN', 'ROLE_MANAGER', 'ROLE_STAFF', 'VALID_ROLES',
    'Store', 'User',
    'Customer',
    'Product',
    'Sale', 'SaleItem', 'SaleRefund',
    'Repair', 'RepairPriceSnapshot', 'RepairTimelineEntry',
]
