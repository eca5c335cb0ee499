from .inventory import Product, ProductVariant, StockMovement
from .sales import SaleTransaction, SaleItem
from .customers import Customer

__all__ = [
    'Product', 'ProductVariant', 'StockMovement',
    'SaleTransaction', 'SaleItem',
    'Customer',
]
