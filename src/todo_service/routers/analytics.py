from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query

from ..aggregation import AggregationEngine
from ..dependencies import get_aggregation
from ..models import CompletionStats, TodoAnalytics, TodoTrends
from ..schemas import TodoOut

router = APIRouter(
    prefix="/api/v1/analytics",
    tags=["analytics"],
)


# PUBLIC_INTERFACE
@router.get("/", summary="Analytics", description="Totals, completion rate, priority distribution and today's activity.")
async def get_analytics(engine: AggregationEngine = Depends(get_aggregation)) -> TodoAnalytics:
    return await engine.get_analytics()


# PUBLIC_INTERFACE
@router.get(
    "/trends",
    summary="Trends",
    description="Daily creation and completion counts over the last `days` days, and priority shares.",
)
async def get_trends(
    days: int = Query(7, ge=1, le=365, description="Size of the window in days"),
    engine: AggregationEngine = Depends(get_aggregation),
) -> TodoTrends:
    return await engine.get_trends(days)


# PUBLIC_INTERFACE
@router.get("/completion", summary="Completion Statistics")
async def get_completion_stats(engine: AggregationEngine = Depends(get_aggregation)) -> CompletionStats:
    return await engine.get_completion_stats()


# PUBLIC_INTERFACE
@router.get(
    "/top-priority",
    response_model=List[TodoOut],
    summary="Top Priority Todos",
    description="Pending todos ordered by priority (high first), newest first within a priority.",
)
async def get_top_priority(
    limit: int = Query(10, ge=1, le=100, description="Maximum number of todos"),
    engine: AggregationEngine = Depends(get_aggregation),
) -> List[TodoOut]:
    return [TodoOut(**t) for t in await engine.get_top_priority_todos(limit)]


# PUBLIC_INTERFACE
@router.get(
    "/recently-completed",
    response_model=List[TodoOut],
    summary="Recently Completed Todos",
)
async def get_recently_completed(
    limit: int = Query(10, ge=1, le=100, description="Maximum number of todos"),
    engine: AggregationEngine = Depends(get_aggregation),
) -> List[TodoOut]:
    return [TodoOut(**t) for t in await engine.get_recently_completed(limit)]
