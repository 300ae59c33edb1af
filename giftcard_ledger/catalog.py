from decimal import Decimal
from typing import Optional

from .models import CatalogItem, GiftCardSpec
from .money import ZERO, round_money


def _positive(amount) -> Optional[Decimal]:
    if amount is None:
        return None
    amount = round_money(amount)
    return amount if amount > 0 else None


def resolve_gift_card_spec(item: CatalogItem) -> GiftCardSpec:
    """Resolve gift card flag and unit amount for a product or variant.

    A variant counts as a gift card when it or its parent is flagged. Its own
    amount wins over the parent's; a missing or non-positive amount resolves
    to zero, which issuance skips.
    """
    parent = item.parent
    is_gift_card = item.is_gift_card or bool(parent and parent.is_gift_card)
    if not is_gift_card:
        return GiftCardSpec(is_gift_card=False, per_unit_amount=ZERO)

    amount = _positive(item.gift_card_amount)
    if amount is None and parent is not None:
        amount = _positive(parent.gift_card_amount)

    return GiftCardSpec(is_gift_card=True, per_unit_amount=amount or ZERO)
