from .organizations import Organization
from .catalog import Literature
from .inventory import InventoryRecord, InventoryTransaction
from .orders import Order, OrderItem, OrderEvent, OrderSequence

__all__ = [
    'Organization',
    'Literature',
    'InventoryRecord', 'InventoryTransaction',
    'Order', 'OrderItem', 'OrderEvent', 'OrderSequence',
]
