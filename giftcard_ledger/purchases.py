import threading
from typing import Optional, Protocol

from .models import PurchaseRecord


class PurchaseStore(Protocol):
    """Purchase metadata owned by the commerce host.

    The workflows only need to load a record and write it back whole.
    """

    def get(self, purchase_id: str) -> Optional[PurchaseRecord]: ...

    def save(self, record: PurchaseRecord) -> None: ...


class InMemoryPurchaseStore:
    def __init__(self):
        self.purchases: dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, purchase_id: str) -> Optional[PurchaseRecord]:
        with self._lock:
            data = self.purchases.get(purchase_id)
            return PurchaseRecord(**data) if data else None

    def save(self, record: PurchaseRecord) -> None:
        with self._lock:
            self.purchases[record.purchase_id] = record.model_dump()
