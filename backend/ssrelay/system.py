"""Main SSActiveWear relay system"""
from datetime import datetime, timedelta
from typing import Dict, Any, Optional

from .config import scheduler as scheduler_config
from .analytics import AnalyticsEngine, ReportGenerator
from .automation import (
    FulfillmentEngine, InventoryManager, PricingEngine, ShipmentTracker, ShopifyClient,
    SupplierClient, VolumePricingService,
)
from .models import JobType, ScheduledJob
from .utils import AlertManager, ScheduledJobRunner


class RelaySystem:
    """Wires the relay services around one database"""

    def __init__(self, db=None, shopify_client=None, supplier_client=None):
        self.db = db

        # Initialize components
        self.shopify = shopify_client or ShopifyClient()
        self.supplier = supplier_client or SupplierClient()
        self.alerts = AlertManager(db)
        self.analytics = AnalyticsEngine(db)
        self.reports = ReportGenerator(self.analytics, db)
        self.volume_pricing = VolumePricingService(db)
        self.pricing = PricingEngine(self.shopify, db)
        self.inventory = InventoryManager(self.supplier, db, self.alerts, self.analytics)
        self.fulfillment = FulfillmentEngine(self.shopify, self.supplier, db, self.alerts, self.analytics)
        self.tracking = ShipmentTracker(self.supplier, self.fulfillment, db)
        self.scheduler = ScheduledJobRunner(db, alerts=self.alerts)

        self.scheduler.register_handler(JobType.CATALOG_SYNC, self._catalog_sync)
        self.scheduler.register_handler(JobType.INVENTORY_SYNC, self._inventory_sync)
        self.scheduler.register_handler(JobType.PRICE_UPDATE, self._price_update)
        self.scheduler.register_handler(JobType.ORDER_STATUS, self._order_status)
        self.scheduler.register_handler(JobType.CLEANUP, self._cleanup)

    async def ensure_indexes(self):
        """Unique keys backing the idempotent upserts"""
        await self.db.product_maps.create_index([('shop', 1), ('shopify_product_id', 1)], unique=True)
        await self.db.order_jobs.create_index([('shop', 1), ('shopify_order_id', 1)], unique=True)
        await self.db.shipment_tracking.create_index([('shop', 1), ('order_job_id', 1)], unique=True)
        await self.db.scheduled_jobs.create_index([('shop', 1), ('job_type', 1)], unique=True)
        await self.db.daily_stats.create_index([('shop', 1), ('date', 1)], unique=True)
        await self.db.auto_order_settings.create_index('shop', unique=True)

    # Scheduled job handlers
    async def _catalog_sync(self, job: ScheduledJob) -> Dict[str, Any]:
        return await self.inventory.sync_catalog(job.shop)

    async def _inventory_sync(self, job: ScheduledJob) -> Dict[str, Any]:
        return await self.inventory.sync_inventory(job.shop)

    async def _price_update(self, job: ScheduledJob) -> Dict[str, Any]:
        return await self.pricing.apply_price_rules(job.shop)

    async def _order_status(self, job: ScheduledJob) -> Dict[str, Any]:
        synced = await self.tracking.sync_supplier_orders(job.shop)
        refreshed = await self.tracking.refresh_all_tracking(job.shop)
        return {**synced, **refreshed}

    async def _cleanup(self, job: ScheduledJob) -> Dict[str, Any]:
        days = job.config.get('retention_days', scheduler_config.cleanup_retention_days)
        cutoff = datetime.utcnow() - timedelta(days=days)
        result = await self.db.webhook_logs.delete_many({'shop': job.shop, 'created_at': {'$lt': cutoff}})
        alerts_removed = self.alerts.prune_acknowledged(job.shop, days)
        return {'webhook_logs_removed': result.deleted_count, 'alerts_removed': alerts_removed}

    def start_automation(self):
        """Start the scheduled job loop"""
        self.scheduler.start()
        return {'status': 'automation_started'}

    def stop_automation(self):
        """Stop the scheduled job loop"""
        self.scheduler.stop()
        return {'status': 'automation_stopped'}

    def get_status(self) -> Dict[str, Any]:
        """Get full system status"""
        return {
            'system': 'SSActiveWear Relay',
            'version': '1.0.0',
            'integrations': {
                'shopify': self.shopify.get_status(),
                'ssactivewear': {
                    'configured': self.supplier.is_configured,
                    'status': 'ready' if self.supplier.is_configured else 'needs_api_credentials'
                }
            },
            'scheduler': self.scheduler.get_status(),
            'alerts': {
                'unacknowledged': len(self.alerts.get_alerts(unacknowledged_only=True))
            },
            'timestamp': datetime.utcnow().isoformat()
        }


# Global instance
_system_instance: Optional[RelaySystem] = None


def get_system(db=None) -> RelaySystem:
    """Get or create the relay system instance"""
    global _system_instance
    if _system_instance is None:
        _system_instance = RelaySystem(db)
    return _system_instance
