from fastapi import APIRouter, Depends

from api.dependencies import get_broadcaster, get_dispatcher
from api.schemas.responses import BroadcasterStatsResponse, QueueStatsResponse
from services.dispatcher import JobDispatcher
from services.notifications import NotificationBroadcaster

router = APIRouter(prefix="/api", tags=["System"])


@router.get("/queue/stats", response_model=QueueStatsResponse)
async def get_queue_stats(
    dispatcher: JobDispatcher = Depends(get_dispatcher)
):
    """Job dispatcher queue depth and configured concurrency"""
    return QueueStatsResponse.model_validate(await dispatcher.get_stats())


@router.get("/ws/stats", response_model=BroadcasterStatsResponse)
async def get_ws_stats(
    broadcaster: NotificationBroadcaster = Depends(get_broadcaster)
):
    """Live subscriber counts"""
    return BroadcasterStatsResponse.model_validate(broadcaster.get_stats())
