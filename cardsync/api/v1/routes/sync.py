"""
API endpoint for selective CardTrader synchronization.
"""
import logging

from fastapi import APIRouter, Depends, Response, status

from cardsync.api.dependencies import get_sync_orchestrator
from cardsync.api.v1.schemas import SyncRequest, SyncResponse
from cardsync.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("", response_model=SyncResponse)
async def run_sync(
    request: SyncRequest,
    response: Response,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
) -> SyncResponse:
    """
    Run a selective sync and wait for it to finish.

    Phase failures are reported per entity in a 200 response. An empty
    selection answers 400; a sync already holding the lease answers 409.
    """
    logger.info("Received sync request", extra={"selection": request.model_dump()})
    selection = request.to_selection()
    result = await orchestrator.sync(selection)

    if selection.is_empty():
        response.status_code = status.HTTP_400_BAD_REQUEST
        return SyncResponse.from_result(result, message=result.error_message or "")

    totals = result.totals
    logger.info(
        f"Sync completed. Added: {totals['added']}, Updated: {totals['updated']}, "
        f"Failed: {totals['failed']}, Skipped: {totals['skipped']}"
    )
    message = (
        "Synchronization completed successfully"
        if result.success
        else "Synchronization completed with errors"
    )
    return SyncResponse.from_result(result, message=message)
