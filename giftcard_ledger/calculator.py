from decimal import Decimal
from typing import Protocol, Optional

from .models import CardStatus, GiftCard, RedemptionResult, RedemptionStatus
from .money import ZERO, round_money

MSG_INVALID = "This gift card is not valid or has already been fully used."
MSG_NO_CREDIT = "This gift card has no remaining credit."
MSG_CURRENCY = "The gift card currency does not match the store currency."
MSG_ZERO_TOTAL = "A gift card cannot be applied to an order with a zero total."


class CardReader(Protocol):
    def get_by_code(self, code: str) -> Optional[GiftCard]: ...


class RedemptionCalculator:
    def __init__(self, store: CardReader):
        self.store = store

    def calculate_usable_amount(self, code: str, purchase_total: Decimal, currency: str) -> RedemptionResult:
        card = self.store.get_by_code(code)

        # Deliberately generic so callers cannot probe which codes exist.
        if card is None:
            return self._invalid(MSG_INVALID)

        if card.status != CardStatus.ACTIVE:
            message = MSG_NO_CREDIT if card.status == CardStatus.USED_UP else MSG_INVALID
            return self._invalid(message, card)

        if card.remaining_amount <= 0:
            return self._invalid(MSG_NO_CREDIT, card)

        if (currency or "").upper() != card.currency.upper():
            return self._invalid(MSG_CURRENCY, card)

        total = round_money(purchase_total)
        if total <= 0:
            return self._invalid(MSG_ZERO_TOTAL, card)

        return RedemptionResult(
            status=RedemptionStatus.VALID,
            usable_amount=min(round_money(card.remaining_amount), total),
            card=card,
        )

    @staticmethod
    def _invalid(message: str, card: Optional[GiftCard] = None) -> RedemptionResult:
        return RedemptionResult(
            status=RedemptionStatus.INVALID,
            usable_amount=ZERO,
            message=message,
            card=card,
        )
