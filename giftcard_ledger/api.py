from typing import Optional

from fastapi import FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from .config import configure_logging, get_settings
from .errors import ConcurrentDebitError, PersistenceError, PurchaseNotFoundError
from .models import (
    ApplyCodeRequest, ApplyResult, CardFilters, CardPage, FinalizeResult, GiftCard,
    IssueCardsRequest, IssueCardsResponse, PendingRedemption, PurchaseRecord, RecomputeRequest,
)
from .service import GiftCardService


def create_app(service: Optional[GiftCardService] = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Gift Card Ledger API",
        description="Store-credit ledger: gift card issuance, balances and redemption",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    gift_cards = service or GiftCardService(settings=settings)
    app.state.gift_cards = gift_cards

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "giftcard-ledger"}

    @app.post(
        "/purchases/{purchase_id}/gift-cards",
        response_model=IssueCardsResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Issuance"],
    )
    def issue_cards(purchase_id: str, request: IssueCardsRequest):
        try:
            codes = gift_cards.issue_cards(
                purchase_id, request.line_items, request.purchaser_contact, request.currency
            )
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
        return IssueCardsResponse(purchase_id=purchase_id, codes=codes)

    @app.get("/purchases/{purchase_id}/gift-cards", response_model=list[GiftCard], tags=["Issuance"])
    def purchase_gift_cards(purchase_id: str):
        try:
            return gift_cards.cards_for_purchase(purchase_id)
        except PurchaseNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    @app.post("/redemptions/apply", response_model=ApplyResult, tags=["Redemption"])
    def apply_code(request: ApplyCodeRequest):
        try:
            return gift_cards.apply_code(request.code, request.purchase_total, request.currency)
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    @app.post("/redemptions/recompute", response_model=ApplyResult, tags=["Redemption"])
    def recompute(request: RecomputeRequest):
        try:
            return gift_cards.recompute(request.pending, request.purchase_total, request.currency)
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    @app.put("/purchases/{purchase_id}/redemption", response_model=PurchaseRecord, tags=["Redemption"])
    def attach_redemption(purchase_id: str, pending: PendingRedemption, currency: Optional[str] = None):
        return gift_cards.attach_to_purchase(purchase_id, pending, currency)

    @app.post("/purchases/{purchase_id}/finalize", response_model=Optional[FinalizeResult], tags=["Redemption"])
    def finalize(purchase_id: str):
        try:
            return gift_cards.finalize_redemption(purchase_id)
        except PurchaseNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except ConcurrentDebitError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    @app.get("/gift-cards", response_model=CardPage, tags=["Administration"])
    def list_cards(
        status_filter: Optional[str] = Query(None, alias="status"),
        search: Optional[str] = None,
        page: int = Query(1, ge=1),
        page_size: Optional[int] = Query(None, ge=1),
    ):
        filters = CardFilters(status=status_filter, search_text=search)
        try:
            return gift_cards.list_cards(filters, page, page_size)
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    @app.post("/gift-cards/{code}/cancel", response_model=GiftCard, tags=["Administration"])
    def cancel_card(code: str):
        if gift_cards.store.get_by_code(code) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Gift card {code} not found")
        gift_cards.cancel_card(code)
        return gift_cards.store.get_by_code(code)

    return app
