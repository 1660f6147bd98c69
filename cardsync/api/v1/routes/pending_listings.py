"""
Pending listing staging and publishing.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from cardsync.api.dependencies import get_pending_listing_queue, get_publishing_queue
from cardsync.api.v1.schemas import (
    PendingListingCreate,
    PendingListingPage,
    PendingListingResponse,
    PendingListingUpdate,
    PublishFailure,
    PublishResponse,
    StageListingResponse,
)
from cardsync.services.pending_listings import PendingListingQueue

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/pending-listings", tags=["pending-listings"])


@router.get("", response_model=PendingListingPage)
async def list_pending_listings(
    is_synced: Optional[bool] = None,
    has_error: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    queue: PendingListingQueue = Depends(get_pending_listing_queue),
) -> PendingListingPage:
    items, total = await queue.list(
        is_synced=is_synced,
        has_error=has_error,
        page=page,
        page_size=page_size,
    )
    return PendingListingPage(
        items=[PendingListingResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("", response_model=StageListingResponse)
async def stage_pending_listing(
    request: PendingListingCreate,
    response: Response,
    queue: PendingListingQueue = Depends(get_pending_listing_queue),
) -> StageListingResponse:
    """
    Stage a listing.

    Returns 201 for a new row, 200 when the quantity was added to an
    existing unsynced duplicate.
    """
    listing, created = await queue.stage(request.to_listing_fields())
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    message = (
        "Pending listing created successfully"
        if created
        else f"Quantity added to existing item. New total: {listing.quantity}"
    )
    return StageListingResponse(
        message=message,
        merged=not created,
        listing=PendingListingResponse.model_validate(listing),
    )


@router.post("/publish", response_model=PublishResponse)
async def publish_pending_listings(
    queue: PendingListingQueue = Depends(get_publishing_queue),
) -> PublishResponse:
    """Publish every unsynced listing to CardTrader."""
    summary = await queue.publish_all()
    return PublishResponse(
        message=f"Sync completed. Success: {summary.success}, Errors: {summary.errors}",
        total=summary.total,
        success=summary.success,
        errors=summary.errors,
        failures=[PublishFailure(**failure) for failure in summary.failures],
    )


@router.get("/{listing_id}", response_model=PendingListingResponse)
async def get_pending_listing(
    listing_id: int,
    queue: PendingListingQueue = Depends(get_pending_listing_queue),
) -> PendingListingResponse:
    return PendingListingResponse.model_validate(await queue.get(listing_id))


@router.put("/{listing_id}", response_model=PendingListingResponse)
async def update_pending_listing(
    listing_id: int,
    request: PendingListingUpdate,
    queue: PendingListingQueue = Depends(get_pending_listing_queue),
) -> PendingListingResponse:
    listing = await queue.update(listing_id, request.to_listing_fields())
    return PendingListingResponse.model_validate(listing)


@router.delete("/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_pending_listing(
    listing_id: int,
    queue: PendingListingQueue = Depends(get_pending_listing_queue),
) -> Response:
    await queue.delete(listing_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
