from .tenancy import Store
from .inventory import Product, InventoryRecord, CostLayer, COST_LAYER_SOURCES
from .sales import Sale, SaleLine, HeldTransaction
from .documents import Return, ReturnLine, MasterLedgerEvent, DocumentSequence

__all__ = [
    'Store',
    'Product', 'InventoryRecord', 'CostLayer', 'COST_LAYER_SOURCES',
    'Sale', 'SaleLine', 'HeldTransaction',
    'Return', 'ReturnLine', 'MasterLedgerEvent', 'DocumentSequence',
]
