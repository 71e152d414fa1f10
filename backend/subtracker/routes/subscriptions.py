"""
Subscription routes: on-demand detection, tracked subscriptions and suggestion review.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from subtracker.database import get_db
from subtracker.deps import get_catalog_cache, get_clock
from subtracker.errors import SuggestionStateError
from subtracker.models import SuggestedSubscription, UserSubscription, SUGGESTION_STATUSES
from subtracker.schemas import (
    DetectRequest,
    DetectResponse,
    SubscriptionResponse,
    SuggestionList,
    SuggestionResponse,
    SuggestionReviewRequest,
)
from subtracker.services.catalog_cache import CatalogCache
from subtracker.services.decision_policy import SubscriptionDecisionPolicy
from subtracker.services.pipeline import run_detection

router = APIRouter()


@router.post("/detect", response_model=DetectResponse)
def detect_subscriptions(
    request: DetectRequest,
    db: Session = Depends(get_db),
    catalog_cache: CatalogCache = Depends(get_catalog_cache),
    clock=Depends(get_clock),
):
    """
    Run subscription detection over the user's last year of transactions.

    High-confidence matches become active subscriptions, medium-confidence
    ones become pending suggestions.
    """
    result = run_detection(
        db,
        request.user_id,
        catalog_cache,
        clock=clock,
        min_transactions=request.min_transactions,
    )

    message = (
        f"Detected {result['detected']} recurring pattern(s): "
        f"created {result['created']} subscription(s), "
        f"suggested {result['suggested']}."
    )
    return DetectResponse(
        detected=result["detected"],
        created=result["created"],
        suggested=result["suggested"],
        message=message,
    )


@router.get("", response_model=List[SubscriptionResponse])
def list_subscriptions(
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    """List a user's tracked subscriptions, active first."""
    subscriptions = db.query(UserSubscription).filter(
        UserSubscription.user_id == user_id
    ).order_by(UserSubscription.status.asc(), UserSubscription.service_name.asc()).all()
    return subscriptions


@router.get("/suggestions", response_model=SuggestionList)
def list_suggestions(
    user_id: str = Query(..., min_length=1),
    status: Optional[str] = Query("pending", description="pending, accepted or rejected"),
    db: Session = Depends(get_db),
):
    """List suggestions for review, highest confidence first."""
    if status and status not in SUGGESTION_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

    query = db.query(SuggestedSubscription).filter(SuggestedSubscription.user_id == user_id)
    if status:
        query = query.filter(SuggestedSubscription.status == status)

    suggestions = query.order_by(
        SuggestedSubscription.confidence_score.desc(),
        SuggestedSubscription.created_at.desc(),
    ).all()
    return SuggestionList(
        suggestions=[SuggestionResponse.model_validate(s) for s in suggestions],
        total=len(suggestions),
    )


@router.post("/suggestions/{suggestion_id}/accept", response_model=SubscriptionResponse)
def accept_suggestion(
    suggestion_id: UUID,
    request: SuggestionReviewRequest,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Accept a pending suggestion, creating the subscription if it is not tracked yet."""
    policy = SubscriptionDecisionPolicy(db, request.user_id, clock=clock)
    try:
        return policy.accept_suggestion(suggestion_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    except SuggestionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/suggestions/{suggestion_id}/reject", response_model=SuggestionResponse)
def reject_suggestion(
    suggestion_id: UUID,
    request: SuggestionReviewRequest,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Reject a pending suggestion. Rejected merchants are not suggested again."""
    policy = SubscriptionDecisionPolicy(db, request.user_id, clock=clock)
    try:
        return policy.reject_suggestion(suggestion_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    except SuggestionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
