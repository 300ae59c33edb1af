from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

from .money import round_money


class CardStatus(str, Enum):
    ACTIVE = "active"
    USED_UP = "used_up"
    CANCELLED = "cancelled"


class RedemptionStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"


class GiftCard(BaseModel):
    id: int
    code: str
    initial_amount: Decimal
    remaining_amount: Decimal
    currency: str
    status: CardStatus
    source_order_id: str
    source_line_item_id: Optional[str] = None
    purchaser_contact: Optional[str] = None
    recipient_contact: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NewGiftCard(BaseModel):
    code: str
    initial_amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    source_order_id: str
    source_line_item_id: Optional[str] = None
    purchaser_contact: Optional[str] = None
    recipient_contact: Optional[str] = None

    @field_validator("initial_amount")
    @classmethod
    def _round_amount(cls, v: Decimal) -> Decimal:
        return round_money(v)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()


class CardFilters(BaseModel):
    status: Optional[str] = None
    search_text: Optional[str] = None


class CardPage(BaseModel):
    items: list[GiftCard]
    total_count: int
    page: int
    page_size: int


class RedemptionResult(BaseModel):
    status: RedemptionStatus
    usable_amount: Decimal = Decimal("0.00")
    message: Optional[str] = None
    card: Optional[GiftCard] = None

    @property
    def is_valid(self) -> bool:
        return self.status == RedemptionStatus.VALID


class PendingRedemption(BaseModel):
    """Code and provisional discount held by the caller's checkout session."""

    code: str
    amount: Decimal

    model_config = ConfigDict(frozen=True)


class ApplyResult(BaseModel):
    success: bool
    usable_amount: Decimal = Decimal("0.00")
    message: str = ""
    pending: Optional[PendingRedemption] = None


class DebitResult(BaseModel):
    code: str
    previous_remaining: Decimal
    debited: Decimal
    new_remaining: Decimal
    status: CardStatus


class FinalizeResult(BaseModel):
    purchase_id: str
    code: str
    requested: Decimal
    debited: Decimal
    new_remaining: Decimal
    stale: bool = False


class GiftCardSpec(BaseModel):
    is_gift_card: bool = False
    per_unit_amount: Decimal = Decimal("0.00")


class CatalogItem(BaseModel):
    """Product or variant metadata as read from the host catalog."""

    item_id: str
    is_gift_card: bool = False
    gift_card_amount: Optional[Decimal] = None
    parent: Optional["CatalogItem"] = None


CatalogItem.model_rebuild()


class LineItem(BaseModel):
    line_item_id: str
    quantity: int = 1
    spec: GiftCardSpec
    recipient_contact: Optional[str] = None
    gift_card_code: Optional[str] = None


class PurchaseRecord(BaseModel):
    purchase_id: str
    currency: str
    purchaser_contact: Optional[str] = None
    gift_cards_created: bool = False
    gift_card_codes: list[str] = Field(default_factory=list)
    line_item_codes: dict[str, str] = Field(default_factory=dict)
    pending_redemption: Optional[PendingRedemption] = None
    redeemed: bool = False
    notes: list[str] = Field(default_factory=list)


class IssueCardsRequest(BaseModel):
    line_items: list[LineItem]
    purchaser_contact: Optional[str] = None
    currency: str = Field(..., min_length=3, max_length=3)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "line_items": [
                {
                    "line_item_id": "17",
                    "quantity": 2,
                    "spec": {"is_gift_card": True, "per_unit_amount": "50.00"},
                    "recipient_contact": "friend@example.com",
                }
            ],
            "purchaser_contact": "buyer@example.com",
            "currency": "EUR",
        }
    })


class IssueCardsResponse(BaseModel):
    purchase_id: str
    codes: list[str]


class ApplyCodeRequest(BaseModel):
    code: str = ""
    purchase_total: Decimal
    currency: Optional[str] = None


class RecomputeRequest(BaseModel):
    pending: Optional[PendingRedemption] = None
    purchase_total: Decimal
    currency: Optional[str] = None
