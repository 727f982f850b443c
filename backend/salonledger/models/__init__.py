from .inventory import Product, StockMovement, StockLevel
from .commissions import Commission, CommissionSettlement
from .wallets import Wallet, WalletTransaction

__all__ = [
    'Product', 'StockMovement', 'StockLevel',
    'Commission', 'CommissionSettlement',
    'Wallet', 'WalletTransaction',
]
