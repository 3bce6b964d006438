"""Daily stats and reports"""
from datetime import datetime

import pytest


class TestAnalyticsEngine:

    async def test_record_order_accumulates_per_day(self, relay, shop):
        day = datetime(2024, 3, 15, 9, 0)
        await relay.analytics.record_order(shop, 4800, 3, when=day)
        await relay.analytics.record_order(shop, 1200, 1, when=day.replace(hour=18))

        stats = await relay.analytics.get_daily_stats(shop, '2024-03-15')
        assert stats.orders_count == 2
        assert stats.items_sold == 4
        assert stats.revenue_cents == 6000

    async def test_range_is_zero_filled(self, relay, shop):
        await relay.analytics.record_order(shop, 1000, 1, when=datetime(2024, 3, 14))
        days = await relay.analytics.get_range(shop, datetime(2024, 3, 13), datetime(2024, 3, 15, 12))

        assert [d.date for d in days] == ['2024-03-13', '2024-03-14', '2024-03-15']
        assert [d.orders_count for d in days] == [0, 1, 0]

    async def test_stats_are_per_shop(self, relay, shop):
        await relay.analytics.record_order(shop, 1000, 1, when=datetime(2024, 3, 14))
        stats = await relay.analytics.get_daily_stats('other.myshopify.com', '2024-03-14')
        assert stats.orders_count == 0

    def test_summarize(self, relay, shop):
        from ssrelay.models import DailyStats
        totals = relay.analytics.summarize([
            DailyStats(shop=shop, date='2024-03-14', orders_count=2, revenue_cents=3000),
            DailyStats(shop=shop, date='2024-03-15', orders_count=1, revenue_cents=1500),
        ])
        assert totals['orders_count'] == 3
        assert totals['avg_order_cents'] == 1500
        assert totals['period_days'] == 2


class TestReports:

    async def test_period_report_with_change(self, relay, shop):
        now = datetime(2024, 3, 15, 12)
        await relay.analytics.record_order(shop, 1000, 1, when=datetime(2024, 3, 5))
        await relay.analytics.record_order(shop, 1000, 1, when=datetime(2024, 3, 10))
        await relay.analytics.record_order(shop, 2000, 2, when=datetime(2024, 3, 15))

        report = await relay.reports.generate_period_report(shop, '7d', now=now)

        assert report['from'] == '2024-03-09'
        assert report['to'] == '2024-03-15'
        assert report['totals']['orders_count'] == 2
        assert report['revenue'] == '30.00'
        assert report['vs_previous_period']['orders_count_change'] == 100.0
        assert report['vs_previous_period']['revenue_cents_change'] == 200.0

    async def test_unknown_period(self, relay, shop):
        with pytest.raises(ValueError):
            await relay.reports.generate_period_report(shop, '2w')

    async def test_monthly_breakdown(self, relay, shop):
        await relay.analytics.record_order(shop, 1000, 1, when=datetime(2024, 1, 20))
        await relay.analytics.record_order(shop, 2500, 2, when=datetime(2024, 3, 2))

        report = await relay.reports.generate_monthly_breakdown(shop, 3, now=datetime(2024, 3, 15))

        assert [m['month'] for m in report['months']] == ['2024-01', '2024-02', '2024-03']
        assert [m['revenue_cents'] for m in report['months']] == [1000, 0, 2500]
        assert '2024-03: 1 orders, $25.00' in relay.reports.format_report_text(report)
