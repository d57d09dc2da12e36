"""
Read-only analytics over the todo collection.

The engine queries the DocumentStore directly: counts, grouped counts and
day-bucketed counts. Calendar days ("today", trend dates) are taken in the
configured timezone. Every operation tolerates an empty collection.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List

from .models import (
    PRIORITY_RANK,
    CompletionStats,
    DailyCount,
    PriorityTrend,
    TodoAnalytics,
    TodoEntity,
    TodoPriority,
    TodoTrends,
    todo_from_document,
)
from .store import DocumentStore
from .utils import day_window, round_half_up, utcnow


# PUBLIC_INTERFACE
class AggregationEngine:
    """Analytics, trends and completion statistics for todos."""

    def __init__(
        self,
        store: DocumentStore,
        timezone: str = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._timezone = timezone
        self._clock = clock

    async def _priority_distribution(self) -> Dict[str, int]:
        distribution = {p.value: 0 for p in TodoPriority}
        for row in await self._store.aggregate_group_count("priority"):
            if row.key in distribution:
                distribution[row.key] = row.count
        return distribution

    # PUBLIC_INTERFACE
    async def get_analytics(self) -> TodoAnalytics:
        """
        Totals, completion rate (percent, 2 decimals), priority distribution
        and today's created/completed counts.
        """
        start, end = day_window(self._clock(), self._timezone)
        today = {"$gte": start, "$lt": end}

        total, completed, distribution, created_today, completed_today = await asyncio.gather(
            self._store.count({}),
            self._store.count({"completed": True}),
            self._priority_distribution(),
            self._store.count({"created_at": today}),
            self._store.count({"completed": True, "updated_at": today}),
        )

        rate = round_half_up(completed / total * 100, 2) if total > 0 else 0
        return TodoAnalytics(
            total_todos=total,
            completion_rate=rate,
            priority_distribution=distribution,
            average_completion_time=0,
            todos_created_today=created_today,
            todos_completed_today=completed_today,
        )

    async def _daily_counts(self, field: str, match: dict) -> List[DailyCount]:
        rows = await self._store.aggregate_group_count(field, match=match, day_timezone=self._timezone)
        return [DailyCount(date=row.key, count=row.count) for row in rows]

    async def _priority_trends(self) -> List[PriorityTrend]:
        distribution, total = await asyncio.gather(self._priority_distribution(), self._store.count({}))
        return [
            PriorityTrend(
                priority=p,
                count=distribution[p.value],
                percentage=int(round_half_up(distribution[p.value] / total * 100)) if total > 0 else 0,
            )
            for p in TodoPriority
        ]

    # PUBLIC_INTERFACE
    async def get_trends(self, days: int = 7) -> TodoTrends:
        """
        Daily creation and completion counts over the last `days` days, plus
        the share of each priority in the whole collection.

        Daily series are sparse: days without activity are left out.
        """
        end = self._clock()
        start = end - timedelta(days=days)
        window = {"$gte": start, "$lte": end}

        daily_creation, daily_completion, priority_trends = await asyncio.gather(
            self._daily_counts("created_at", {"created_at": window}),
            self._daily_counts("updated_at", {"completed": True, "updated_at": window}),
            self._priority_trends(),
        )
        return TodoTrends(
            daily_creation=daily_creation,
            daily_completion=daily_completion,
            priority_trends=priority_trends,
        )

    # PUBLIC_INTERFACE
    async def get_completion_stats(self) -> CompletionStats:
        """Completed and pending counts. Due-date buckets are always zero."""
        completed, pending = await asyncio.gather(
            self._store.count({"completed": True}),
            self._store.count({"completed": False}),
        )
        return CompletionStats(completed=completed, pending=pending)

    # PUBLIC_INTERFACE
    async def get_top_priority_todos(self, limit: int = 10) -> List[TodoEntity]:
        """
        Pending todos, most urgent priority first, newest first within a
        priority. Queries one priority at a time until `limit` is filled.
        """
        result: List[TodoEntity] = []
        for priority in sorted(TodoPriority, key=PRIORITY_RANK.__getitem__):
            remaining = limit - len(result)
            if remaining <= 0:
                break
            docs = await self._store.find_many(
                {"completed": False, "priority": priority.value},
                sort=[("created_at", -1), ("_id", -1)],
                limit=remaining,
            )
            result.extend(todo_from_document(d) for d in docs)
        return result

    # PUBLIC_INTERFACE
    async def get_recently_completed(self, limit: int = 10) -> List[TodoEntity]:
        """Completed todos, most recently updated first. A non-positive limit yields no todos."""
        if limit <= 0:
            return []
        docs = await self._store.find_many(
            {"completed": True},
            sort=[("updated_at", -1), ("_id", -1)],
            limit=limit,
        )
        return [todo_from_document(d) for d in docs]
