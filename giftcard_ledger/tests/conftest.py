from decimal import Decimal

import pytest

from giftcard_ledger.config import Settings
from giftcard_ledger.db import init_db, make_engine, make_session_factory
from giftcard_ledger.models import NewGiftCard
from giftcard_ledger.purchases import InMemoryPurchaseStore
from giftcard_ledger.repository import LedgerStore
from giftcard_ledger.service import GiftCardService


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", store_currency="EUR", code_prefix="GC-", code_length=16)


@pytest.fixture
def engine(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine, settings):
    return LedgerStore(make_session_factory(engine), settings.debit_max_attempts)


@pytest.fixture
def purchases():
    return InMemoryPurchaseStore()


@pytest.fixture
def service(store, purchases, settings):
    return GiftCardService(store=store, purchases=purchases, settings=settings)


@pytest.fixture
def make_card(store):
    def _make(code="GC-TEST0001", amount="100.00", currency="EUR", order_id="seed-order", **extra):
        store.create(NewGiftCard(
            code=code,
            initial_amount=Decimal(amount),
            currency=currency,
            source_order_id=order_id,
            **extra,
        ))
        return store.get_by_code(code)
    return _make
