"""
Gift Card Store-Credit Ledger

This package provides:
- Collision-checked gift card code generation
- A durable card ledger with atomic balance debits
- Redemption rules capping usable credit by balance and purchase total
- Idempotent issuance and finalization per purchase
"""

from .models import (
    CardStatus,
    RedemptionStatus,
    GiftCard,
    GiftCardSpec,
    LineItem,
    PendingRedemption,
    CardFilters,
    CardPage,
)
from .errors import (
    GiftCardError,
    DuplicateCodeError,
    PersistenceError,
    ConcurrentDebitError,
    PurchaseNotFoundError,
)
from .repository import LedgerStore
from .calculator import RedemptionCalculator
from .codes import CodeGenerator
from .service import GiftCardService

__all__ = [
    "CardStatus",
    "RedemptionStatus",
    "GiftCard",
    "GiftCardSpec",
    "LineItem",
    "PendingRedemption",
    "CardFilters",
    "CardPage",
    "GiftCardError",
    "DuplicateCodeError",
    "PersistenceError",
    "ConcurrentDebitError",
    "PurchaseNotFoundError",
    "LedgerStore",
    "RedemptionCalculator",
    "CodeGenerator",
    "GiftCardService",
]
