from .catalog import Product, StockHistoryEntry, STOCK_CHANGE_TYPES
from .billing import SalesBill, RentalBill, BillSequence, BILL_MODELS, BILL_VARIANTS, TAX_MODES

__all__ = [
    'Product', 'StockHistoryEntry', 'STOCK_CHANGE_TYPES',
    'SalesBill', 'RentalBill', 'BillSequence',
    'BILL_MODELS', 'BILL_VARIANTS', 'TAX_MODES',
]
