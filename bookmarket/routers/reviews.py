"""Reviews and the review eligibility probe."""

from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, Depends

from bookmarket.auth import BoundIdentity, ensure_self
from bookmarket.database import MarketplaceDatabaseService
from bookmarket.deps import get_db_service, require_user
from bookmarket.errors import AlreadyExists, Forbidden
from bookmarket.models import (
    ReviewCreate, ReviewCreateResponse, ReviewEligibility, ReviewIneligibility
)

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Reviews"])


@router.post("/reviews", response_model=ReviewCreateResponse)
async def create_review(
    review: ReviewCreate,
    identity: BoundIdentity = Depends(require_user),
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    """
    Submit a review and recompute the book's aggregate rating.

    Only a user with a paid order for the book may review it, once.
    """
    ensure_self(identity, review.user_email)

    eligibility = await db_service.check_review_eligibility(review.book_id, review.user_email)
    if eligibility.reason == ReviewIneligibility.NOT_ORDERED:
        raise Forbidden(
            "You can only review books you have purchased.",
            reason=ReviewIneligibility.NOT_ORDERED.value,
        )
    if eligibility.reason == ReviewIneligibility.ALREADY_REVIEWED:
        raise AlreadyExists(
            "You have already reviewed this book.",
            reason=ReviewIneligibility.ALREADY_REVIEWED.value,
            existingReview=eligibility.existing_review,
        )

    document = {
        "bookId": review.book_id,
        "userEmail": review.user_email,
        "userName": review.user_name,
        "rating": review.rating,
        "reviewText": review.review_text,
    }
    inserted_id = await db_service.insert_review(document)
    average, count = await db_service.refresh_book_rating(review.book_id)

    logger.info("Review submitted", book_id=review.book_id, rating=review.rating)
    return ReviewCreateResponse(
        inserted_id=inserted_id,
        new_average_rating=average,
        review_count=count,
    )


@router.get("/reviews/{book_id}", response_model=List[Dict[str, Any]])
async def get_reviews(
    book_id: str,
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    return await db_service.get_reviews_for_book(book_id)


@router.get("/user-can-review/{book_id}/{email}", response_model=ReviewEligibility)
async def user_can_review(
    book_id: str,
    email: str,
    db_service: MarketplaceDatabaseService = Depends(get_db_service),
):
    return await db_service.check_review_eligibility(book_id, email)
