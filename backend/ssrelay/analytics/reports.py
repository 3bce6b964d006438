"""Report Generator for relay analytics"""
from datetime import datetime, timedelta
from typing import Dict, Any, List

from ..utils.money import format_cents, percent_change

PERIODS = {'7d': 7, '30d': 30, '90d': 90}


class ReportGenerator:
    """Generate period reports from daily stats"""

    def __init__(self, analytics_engine, db=None):
        self.analytics = analytics_engine
        self.db = db

    async def generate_period_report(self, shop: str, period: str = '30d',
                                     now: datetime = None) -> Dict[str, Any]:
        """Totals for the period with change against the period before it"""
        if period not in PERIODS:
            raise ValueError(f"Unknown period {period}; expected one of {', '.join(PERIODS)}")
        days = PERIODS[period]
        now = now or datetime.utcnow()
        start = now - timedelta(days=days - 1)
        prev_end = start - timedelta(days=1)
        prev_start = prev_end - timedelta(days=days - 1)

        current = await self.analytics.get_range(shop, start, now)
        previous = await self.analytics.get_range(shop, prev_start, prev_end)
        totals = self.analytics.summarize(current)
        prev_totals = self.analytics.summarize(previous)

        changes = {}
        for key in ['orders_count', 'items_sold', 'revenue_cents', 'ss_orders_count']:
            changes[f'{key}_change'] = percent_change(prev_totals[key], totals[key])

        return {
            'report_type': 'period',
            'period': period,
            'from': current[0].date,
            'to': current[-1].date,
            'totals': totals,
            'revenue': format_cents(totals['revenue_cents']),
            'vs_previous_period': changes,
            'daily_breakdown': [s.model_dump() for s in current],
            'generated_at': datetime.utcnow().isoformat()
        }

    async def generate_monthly_breakdown(self, shop: str, months: int = 6,
                                         now: datetime = None) -> Dict[str, Any]:
        """Per-month totals, oldest first"""
        now = now or datetime.utcnow()
        year, month = now.year, now.month
        for _ in range(months - 1):
            year, month = (year - 1, 12) if month == 1 else (year, month - 1)
        start = datetime(year, month, 1)

        stats = await self.analytics.get_range(shop, start, now)
        by_month: Dict[str, List] = {}
        for s in stats:
            by_month.setdefault(s.date[:7], []).append(s)

        breakdown = []
        for key, days in by_month.items():
            totals = self.analytics.summarize(days)
            breakdown.append({
                'month': key,
                'orders_count': totals['orders_count'],
                'items_sold': totals['items_sold'],
                'revenue_cents': totals['revenue_cents'],
                'ss_orders_count': totals['ss_orders_count'],
            })

        return {
            'report_type': 'monthly',
            'months': breakdown,
            'generated_at': datetime.utcnow().isoformat()
        }

    def format_report_text(self, report: Dict) -> str:
        """Format report as readable text"""
        lines = []
        lines.append("=" * 50)
        lines.append(f"{report.get('report_type', 'Report').upper()} REPORT")
        lines.append(f"Generated: {report.get('generated_at', 'Unknown')}")
        lines.append("=" * 50)

        if 'totals' in report:
            totals = report['totals']
            lines.append(f"Revenue: ${format_cents(totals.get('revenue_cents', 0))}")
            lines.append(f"Orders: {totals.get('orders_count', 0)}")
            lines.append(f"Items: {totals.get('items_sold', 0)}")
            lines.append(f"SSActiveWear orders: {totals.get('ss_orders_count', 0)}")

        for month in report.get('months', []):
            lines.append(f"{month['month']}: {month['orders_count']} orders, "
                         f"${format_cents(month['revenue_cents'])}")

        return "\n".join(lines)
