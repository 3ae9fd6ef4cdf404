"""POST /process-batch: schedule one AI sweep over rows with blank AI columns."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends

from cosmocard.dependencies import get_batch_service, require_webhook_secret
from cosmocard.schemas.card import BatchStartedResponse
from cosmocard.schemas.common import ErrorResponse
from cosmocard.services.batch_service import BatchService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Batch"])


@router.post(
    "/process-batch",
    status_code=202,
    response_model=BatchStartedResponse,
    dependencies=[Depends(require_webhook_secret)],
    responses={401: {"model": ErrorResponse}},
    summary="Start a background AI sweep",
)
async def process_batch(
    background_tasks: BackgroundTasks,
    batch: BatchService = Depends(get_batch_service),
) -> BatchStartedResponse:
    background_tasks.add_task(batch.process_pending)
    logger.info("Batch sweep scheduled")
    return BatchStartedResponse()
