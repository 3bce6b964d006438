"""Analytics Engine for relayed orders"""
from datetime import datetime, timedelta
from typing import Dict, Any, List
import logging

from ..models import DailyStats

logger = logging.getLogger(__name__)

COUNTERS = ('orders_count', 'items_sold', 'revenue_cents', 'ss_orders_count', 'imported_count')


def day_key(when: datetime) -> str:
    return when.strftime('%Y-%m-%d')


class AnalyticsEngine:
    """Track per-shop daily order statistics"""

    def __init__(self, db=None):
        self.db = db

    async def _increment(self, shop: str, when: datetime, **counters):
        await self.db.daily_stats.update_one(
            {'shop': shop, 'date': day_key(when or datetime.utcnow())},
            {'$inc': counters},
            upsert=True,
        )

    async def record_order(self, shop: str, total_cents: int, items: int, when: datetime = None):
        """Count a relevant webhook order"""
        await self._increment(shop, when, orders_count=1, items_sold=items, revenue_cents=total_cents)

    async def record_supplier_order(self, shop: str, when: datetime = None):
        await self._increment(shop, when, ss_orders_count=1)

    async def record_import(self, shop: str, count: int = 1, when: datetime = None):
        await self._increment(shop, when, imported_count=count)

    async def get_daily_stats(self, shop: str, date: str) -> DailyStats:
        doc = await self.db.daily_stats.find_one({'shop': shop, 'date': date})
        return DailyStats(**doc) if doc else DailyStats(shop=shop, date=date)

    async def get_range(self, shop: str, start: datetime, end: datetime) -> List[DailyStats]:
        """Stats for every day in [start, end], zero-filled, oldest first"""
        docs = await self.db.daily_stats.find({
            'shop': shop,
            'date': {'$gte': day_key(start), '$lte': day_key(end)},
        }).to_list(None)
        by_date = {d['date']: DailyStats(**d) for d in docs}

        days = []
        day = start.replace(hour=0, minute=0, second=0, microsecond=0)
        while day <= end:
            key = day_key(day)
            days.append(by_date.get(key, DailyStats(shop=shop, date=key)))
            day += timedelta(days=1)
        return days

    def summarize(self, stats: List[DailyStats]) -> Dict[str, Any]:
        """Totals over a list of days"""
        totals = {name: sum(getattr(s, name) for s in stats) for name in COUNTERS}
        orders = totals['orders_count']
        totals['avg_order_cents'] = totals['revenue_cents'] // orders if orders else 0
        totals['period_days'] = len(stats)
        return totals
