from .auth import User, SessionToken
from .customers import Customer
from .products import Product, ProductOptionGroup, ProductOptionValue
from .sales import Order, Transaction, TransactionItem
from .ledger import IncomeExpense
from .preview import PreviewSnapshot

__all__ = [
    'User', 'SessionToken',
    'Customer',
    'Product', 'ProductOptionGroup', 'ProductOptionValue',
    'Order', 'Transaction', 'TransactionItem',
    'IncomeExpense',
    'PreviewSnapshot',
]
