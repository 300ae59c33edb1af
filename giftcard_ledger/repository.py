import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db import GiftCardRow, utcnow
from .errors import ConcurrentDebitError, DuplicateCodeError, PersistenceError
from .models import CardFilters, CardStatus, DebitResult, GiftCard, NewGiftCard
from .money import ZERO, round_money

logger = logging.getLogger("giftcard-ledger.store")

_STATUSES = {s.value for s in CardStatus}


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class LedgerStore:
    """Durable gift card rows.

    Every method opens its own short transaction, so each call is atomic
    with respect to a single card row.
    """

    def __init__(self, session_factory: sessionmaker, debit_max_attempts: int = 3):
        self.session_factory = session_factory
        self.debit_max_attempts = debit_max_attempts

    def create(self, card: NewGiftCard) -> int:
        now = utcnow()
        row = GiftCardRow(
            code=card.code,
            initial_amount=card.initial_amount,
            remaining_amount=card.initial_amount,
            currency=card.currency,
            status=CardStatus.ACTIVE.value,
            source_order_id=card.source_order_id,
            source_line_item_id=card.source_line_item_id,
            purchaser_contact=card.purchaser_contact,
            recipient_contact=card.recipient_contact,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.session_factory.begin() as session:
                session.add(row)
                session.flush()
                return row.id
        except IntegrityError as e:
            if self._code_exists(card.code):
                raise DuplicateCodeError(card.code) from e
            raise PersistenceError(f"Could not insert gift card {card.code}: {e}") from e
        except SQLAlchemyError as e:
            logger.exception("Gift card insert failed: %s", card.code)
            raise PersistenceError(f"Could not insert gift card {card.code}: {e}") from e

    def get_by_code(self, code: str) -> Optional[GiftCard]:
        try:
            with self.session_factory() as session:
                row = session.execute(
                    select(GiftCardRow).where(GiftCardRow.code == code)
                ).scalar_one_or_none()
                return GiftCard.model_validate(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read gift card {code}: {e}") from e

    def exists(self, code: str) -> bool:
        return self._code_exists(code)

    def update_balance(self, code: str, new_remaining: Decimal) -> bool:
        # Unconditional overwrite; callers validate new_remaining first.
        return self._update(code, remaining_amount=round_money(new_remaining))

    def mark_used_up(self, code: str) -> bool:
        return self._update(code, status=CardStatus.USED_UP.value)

    def cancel(self, code: str) -> bool:
        try:
            with self.session_factory.begin() as session:
                result = session.execute(
                    update(GiftCardRow)
                    .where(
                        GiftCardRow.code == code,
                        GiftCardRow.status.in_([CardStatus.ACTIVE.value, CardStatus.USED_UP.value]),
                    )
                    .values(status=CardStatus.CANCELLED.value, updated_at=utcnow())
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not cancel gift card {code}: {e}") from e

    def debit(self, code: str, amount: Decimal) -> Optional[DebitResult]:
        """Atomically take up to ``amount`` from an active card.

        Compare-and-set on the observed balance: the UPDATE only matches
        while ``remaining_amount`` still holds the value that was read, so
        two concurrent debits can never both apply against the same balance.
        Returns None when the card is missing, not active or empty.
        """
        amount = round_money(amount)
        for attempt in range(1, self.debit_max_attempts + 1):
            card = self.get_by_code(code)
            if card is None or card.status != CardStatus.ACTIVE or card.remaining_amount <= 0:
                return None

            observed = round_money(card.remaining_amount)
            new_remaining = max(ZERO, observed - amount)
            new_status = CardStatus.USED_UP if new_remaining <= 0 else CardStatus.ACTIVE

            try:
                with self.session_factory.begin() as session:
                    result = session.execute(
                        update(GiftCardRow)
                        .where(
                            GiftCardRow.code == code,
                            GiftCardRow.status == CardStatus.ACTIVE.value,
                            GiftCardRow.remaining_amount == observed,
                        )
                        .values(
                            remaining_amount=new_remaining,
                            status=new_status.value,
                            updated_at=utcnow(),
                        )
                    )
                    matched = result.rowcount == 1
            except SQLAlchemyError as e:
                raise PersistenceError(f"Could not debit gift card {code}: {e}") from e

            if matched:
                return DebitResult(
                    code=code,
                    previous_remaining=observed,
                    debited=observed - new_remaining,
                    new_remaining=new_remaining,
                    status=new_status,
                )
            logger.info("Debit of %s lost a race (attempt %d), re-reading", code, attempt)

        raise ConcurrentDebitError(
            f"Gift card {code} changed concurrently {self.debit_max_attempts} times; debit not applied"
        )

    def search(self, filters: CardFilters, page: int, page_size: int) -> list[GiftCard]:
        page_size = max(1, page_size)
        offset = max(0, (page - 1) * page_size)
        stmt = (
            select(GiftCardRow)
            .where(*self._filter_clauses(filters))
            .order_by(GiftCardRow.created_at.desc(), GiftCardRow.id.desc())
            .limit(page_size)
            .offset(offset)
        )
        try:
            with self.session_factory() as session:
                rows = session.execute(stmt).scalars().all()
                return [GiftCard.model_validate(r) for r in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Gift card search failed: {e}") from e

    def count(self, filters: CardFilters) -> int:
        stmt = select(func.count(GiftCardRow.id)).where(*self._filter_clauses(filters))
        try:
            with self.session_factory() as session:
                return int(session.execute(stmt).scalar_one())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Gift card count failed: {e}") from e

    def get_by_source_order_and_codes(self, order_id: str, codes: list[str]) -> list[GiftCard]:
        if not codes:
            return []
        stmt = (
            select(GiftCardRow)
            .where(and_(GiftCardRow.source_order_id == order_id, GiftCardRow.code.in_(codes)))
            .order_by(GiftCardRow.created_at.asc(), GiftCardRow.id.asc())
        )
        try:
            with self.session_factory() as session:
                return [GiftCard.model_validate(r) for r in session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read gift cards for order {order_id}: {e}") from e

    def _filter_clauses(self, filters: CardFilters) -> list:
        clauses = []
        if filters.status and filters.status in _STATUSES:
            clauses.append(GiftCardRow.status == filters.status)
        if filters.search_text:
            like = f"%{_escape_like(filters.search_text)}%"
            clauses.append(or_(
                GiftCardRow.code.like(like, escape="\\"),
                GiftCardRow.purchaser_contact.like(like, escape="\\"),
                GiftCardRow.recipient_contact.like(like, escape="\\"),
            ))
        return clauses

    def _update(self, code: str, **values) -> bool:
        values["updated_at"] = utcnow()
        try:
            with self.session_factory.begin() as session:
                result = session.execute(
                    update(GiftCardRow).where(GiftCardRow.code == code).values(**values)
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error("Gift card update failed for %s: %s", code, e)
            return False

    def _code_exists(self, code: str) -> bool:
        try:
            with self.session_factory() as session:
                found = session.execute(
                    select(GiftCardRow.id).where(GiftCardRow.code == code)
                ).scalar_one_or_none()
                return found is not None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read gift card {code}: {e}") from e
