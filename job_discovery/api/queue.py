"""Work queue monitoring endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from job_discovery.api.deps import get_queue
from job_discovery.queue.service import QueueService

router = APIRouter()


class QueueStatsResponse(BaseModel):
    waiting: int
    active: int
    completed: int
    failed: int
    mode: Literal["broker", "in-memory"]


@router.get("/stats", response_model=QueueStatsResponse)
async def queue_stats(queue: QueueService = Depends(get_queue)):
    return QueueStatsResponse(**await queue.get_stats())
