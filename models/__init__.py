"""Models package."""

from .account import Account, AccountTier
from .credit_transaction import CreditTransaction, TransactionType
from .credit_package import CreditPackage
