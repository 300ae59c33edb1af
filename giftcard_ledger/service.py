import logging
import threading
from decimal import Decimal
from typing import Optional

from .calculator import RedemptionCalculator
from .codes import CodeGenerator
from .config import Settings, get_settings
from .db import init_db, make_engine, make_session_factory
from .errors import DuplicateCodeError, PersistenceError, PurchaseNotFoundError
from .models import (
    ApplyResult,
    CardFilters,
    CardPage,
    FinalizeResult,
    GiftCard,
    LineItem,
    NewGiftCard,
    PendingRedemption,
    PurchaseRecord,
)
from .money import ZERO, round_money
from .purchases import InMemoryPurchaseStore, PurchaseStore
from .repository import LedgerStore

logger = logging.getLogger("giftcard-ledger.service")


class GiftCardService:
    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        purchases: Optional[PurchaseStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or self._default_store()
        self.purchases = purchases or InMemoryPurchaseStore()
        self.calculator = RedemptionCalculator(self.store)
        self.generator = CodeGenerator(
            self.store.exists,
            prefix=self.settings.code_prefix,
            length=self.settings.code_length,
            max_attempts=self.settings.code_max_attempts,
        )
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _default_store(self) -> LedgerStore:
        engine = make_engine(self.settings.database_url)
        init_db(engine)
        return LedgerStore(make_session_factory(engine), self.settings.debit_max_attempts)

    # Issuance

    def issue_cards(
        self,
        purchase_id: str,
        line_items: list[LineItem],
        purchaser_contact: Optional[str],
        currency: str,
    ) -> list[str]:
        with self._purchase_lock(purchase_id):
            record = self.purchases.get(purchase_id) or PurchaseRecord(
                purchase_id=purchase_id,
                currency=currency.upper(),
                purchaser_contact=purchaser_contact,
            )

            if record.gift_cards_created:
                logger.info("Gift cards for purchase %s already created, skipping", purchase_id)
                return list(record.gift_card_codes)

            codes: list[str] = []
            for item in line_items:
                code = self._issue_line_item(record, item, purchaser_contact, currency)
                if code:
                    codes.append(code)

            record.gift_cards_created = True
            record.gift_card_codes = codes
            if codes:
                record.notes.append(f"Created {len(codes)} gift card(s).")
            else:
                record.notes.append("No gift cards created for this purchase.")
            self.purchases.save(record)

        logger.info("Issued %d gift card(s) for purchase %s", len(codes), purchase_id)
        return codes

    def _issue_line_item(
        self,
        record: PurchaseRecord,
        item: LineItem,
        purchaser_contact: Optional[str],
        currency: str,
    ) -> Optional[str]:
        if not item.spec.is_gift_card:
            return None

        per_unit = round_money(item.spec.per_unit_amount)
        if per_unit <= 0:
            logger.warning("Line item %s of purchase %s has no gift card amount, skipped",
                           item.line_item_id, record.purchase_id)
            record.notes.append(f"Line item {item.line_item_id} skipped: no gift card amount.")
            return None

        if item.quantity < 1:
            record.notes.append(f"Line item {item.line_item_id} skipped: quantity {item.quantity}.")
            return None

        try:
            code = self.generator.generate()
            card = NewGiftCard(
                code=code,
                initial_amount=per_unit * item.quantity,
                currency=currency,
                source_order_id=record.purchase_id,
                source_line_item_id=item.line_item_id,
                purchaser_contact=purchaser_contact or None,
                recipient_contact=item.recipient_contact or purchaser_contact or None,
            )
            card_id = self.store.create(card)
        except (DuplicateCodeError, PersistenceError) as e:
            logger.error("Could not create gift card for line item %s of purchase %s: %s",
                         item.line_item_id, record.purchase_id, e)
            record.notes.append(f"Line item {item.line_item_id} failed: {e}")
            return None

        item.gift_card_code = code
        record.line_item_codes[item.line_item_id] = code
        record.notes.append(
            f"Line item {item.line_item_id}: created {code} (id {card_id}, {card.initial_amount} {card.currency})."
        )
        return code

    # Redemption

    def apply_code(self, code: str, purchase_total: Decimal, currency: Optional[str] = None) -> ApplyResult:
        code = (code or "").strip()
        if not code:
            return ApplyResult(success=True, message="", pending=None)

        result = self.calculator.calculate_usable_amount(code, purchase_total, currency or self.settings.store_currency)
        if not result.is_valid or result.usable_amount <= 0:
            return ApplyResult(success=False, usable_amount=ZERO, message=result.message or "", pending=None)

        pending = PendingRedemption(code=code, amount=result.usable_amount)
        return ApplyResult(
            success=True,
            usable_amount=result.usable_amount,
            message=f"Gift card applied. Discount: {result.usable_amount}",
            pending=pending,
        )

    def recompute(
        self,
        pending: Optional[PendingRedemption],
        purchase_total: Decimal,
        currency: Optional[str] = None,
    ) -> ApplyResult:
        if pending is None:
            return ApplyResult(success=False, pending=None)

        result = self.calculator.calculate_usable_amount(
            pending.code, purchase_total, currency or self.settings.store_currency
        )
        if not result.is_valid:
            logger.info("Pending gift card %s no longer applies: %s", pending.code, result.message)
            return ApplyResult(success=False, message=result.message or "", pending=None)

        amount = min(round_money(pending.amount), result.usable_amount)
        if amount <= 0:
            return ApplyResult(success=False, pending=None)

        return ApplyResult(
            success=True,
            usable_amount=amount,
            message="",
            pending=PendingRedemption(code=pending.code, amount=amount),
        )

    def remove(self, pending: Optional[PendingRedemption]) -> None:
        if pending is not None:
            logger.debug("Pending gift card %s removed from session", pending.code)

    def attach_to_purchase(
        self,
        purchase_id: str,
        pending: Optional[PendingRedemption],
        currency: Optional[str] = None,
        purchaser_contact: Optional[str] = None,
    ) -> PurchaseRecord:
        with self._purchase_lock(purchase_id):
            record = self.purchases.get(purchase_id)
            if record is None:
                record = PurchaseRecord(
                    purchase_id=purchase_id,
                    currency=(currency or self.settings.store_currency).upper(),
                    purchaser_contact=purchaser_contact,
                )
                self.purchases.save(record)

            if record.redeemed:
                logger.warning("Purchase %s already redeemed, pending gift card ignored", purchase_id)
                return record
            if pending is None or pending.amount <= 0:
                return record

            record.pending_redemption = PendingRedemption(code=pending.code, amount=round_money(pending.amount))
            self.purchases.save(record)
            return record

    def finalize_redemption(self, purchase_id: str) -> Optional[FinalizeResult]:
        with self._purchase_lock(purchase_id):
            record = self.purchases.get(purchase_id)
            if record is None:
                raise PurchaseNotFoundError(f"Purchase {purchase_id} not found")

            if record.redeemed:
                return None

            pending = record.pending_redemption
            if pending is None or pending.amount <= 0:
                return None

            requested = round_money(pending.amount)
            card = self.store.get_by_code(pending.code)
            debit = None
            if card is not None and card.currency.upper() == record.currency.upper():
                debit = self.store.debit(pending.code, requested)

            if debit is None:
                logger.warning("Gift card %s no longer valid at finalization of purchase %s; nothing debited",
                               pending.code, purchase_id)
                record.notes.append(f"Gift card {pending.code} was no longer valid; no credit was used.")
                record.redeemed = True
                self.purchases.save(record)
                return FinalizeResult(
                    purchase_id=purchase_id,
                    code=pending.code,
                    requested=requested,
                    debited=ZERO,
                    new_remaining=round_money(card.remaining_amount) if card else ZERO,
                    stale=True,
                )

            if debit.debited < requested:
                logger.warning("Gift card %s covered only %s of %s on purchase %s",
                               pending.code, debit.debited, requested, purchase_id)
                record.notes.append(
                    f"Gift card {pending.code} covered only {debit.debited} of {requested} {record.currency}."
                )

            record.notes.append(
                f"Gift card {pending.code} used: {debit.debited} {record.currency}, "
                f"remaining credit: {debit.new_remaining} {record.currency}."
            )
            record.redeemed = True
            self.purchases.save(record)

        logger.info("Debited %s from gift card %s for purchase %s (remaining %s)",
                    debit.debited, pending.code, purchase_id, debit.new_remaining)
        return FinalizeResult(
            purchase_id=purchase_id,
            code=pending.code,
            requested=requested,
            debited=debit.debited,
            new_remaining=debit.new_remaining,
        )

    # Administration

    def list_cards(
        self,
        filters: Optional[CardFilters] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> CardPage:
        filters = filters or CardFilters()
        page = max(1, page)
        page_size = max(1, page_size or self.settings.default_page_size)
        return CardPage(
            items=self.store.search(filters, page, page_size),
            total_count=self.store.count(filters),
            page=page,
            page_size=page_size,
        )

    def cards_for_purchase(self, purchase_id: str) -> list[GiftCard]:
        record = self.purchases.get(purchase_id)
        if record is None:
            raise PurchaseNotFoundError(f"Purchase {purchase_id} not found")
        return self.store.get_by_source_order_and_codes(purchase_id, record.gift_card_codes)

    def cancel_card(self, code: str) -> bool:
        cancelled = self.store.cancel(code)
        if cancelled:
            logger.info("Gift card %s cancelled", code)
        return cancelled

    def _purchase_lock(self, purchase_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(purchase_id)
            if lock is None:
                lock = self._locks[purchase_id] = threading.Lock()
            return lock
