from .auth import User, SessionToken
from .inventory import Product, StockTransaction
from .planning import WeeklyStockPlan, LowStockAlert

__all__ = [
    'User', 'SessionToken',
    'Product', 'StockTransaction',
    'WeeklyStockPlan', 'LowStockAlert',
]
