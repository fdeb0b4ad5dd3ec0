from .auth import User, SessionToken
from .supply import SupplyRecord, Payment
from .stock import InventoryLot, ProductionRecord, StockMovement
from .sequences import IdentifierSequence
from .settings import AppSetting, UnitPriceHistory

__all__ = [
    'User', 'SessionToken',
    'SupplyRecord', 'Payment',
    'InventoryLot', 'ProductionRecord', 'StockMovement',
    'IdentifierSequence',
    'AppSetting', 'UnitPriceHistory',
]
