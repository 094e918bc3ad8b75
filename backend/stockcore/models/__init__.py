from .tenancy import Organization, DocumentSequence
from .inventory import Category, Product, ProductVariant, PriceHistoryEntry, StockAdjustment, product_categories
from .sales import Sale, SaleLine, Payment, HeldOrder
from .purchasing import PurchaseOrder, PurchaseOrderLine
from .shifts import Shift
from .communications import Notification
from .documents import DeletionRecord

__all__ = [
    'Organization', 'DocumentSequence',
    'Category', 'Product', 'ProductVariant', 'PriceHistoryEntry', 'StockAdjustment', 'product_categories',
    'Sale', 'SaleLine', 'Payment', 'HeldOrder',
    'PurchaseOrder', 'PurchaseOrderLine',
    'Shift',
    'Notification',
    'DeletionRecord',
]
