"""Catalog and inventory sync from SSActiveWear"""
from datetime import datetime
from typing import Dict, Any, List, Optional
import logging

from ..config import alerts as alert_config
from ..errors import ExternalWriteError, NotFoundError
from ..models import ProductMap
from ..utils.money import to_cents

logger = logging.getLogger(__name__)


class InventoryManager:
    """Keeps the product map in step with the supplier catalog"""

    def __init__(self, supplier_client, db=None, alerts=None, analytics=None):
        self.supplier = supplier_client
        self.db = db
        self.alerts = alerts
        self.analytics = analytics

    # Product map
    async def map_product(self, shop: str, shopify_product_id: str, ss_style_id: str,
                          style_name: str = None, brand_name: str = None,
                          base_price_cents: int = None) -> ProductMap:
        """Record an imported product"""
        product = ProductMap(
            shop=shop,
            shopify_product_id=shopify_product_id,
            ss_style_id=str(ss_style_id),
            style_name=style_name,
            brand_name=brand_name,
            base_price_cents=base_price_cents,
        )
        result = await self.db.product_maps.update_one(
            {'shop': shop, 'shopify_product_id': shopify_product_id},
            {'$setOnInsert': product.model_dump(exclude={'shop', 'shopify_product_id'})},
            upsert=True,
        )
        if result.upserted_id is not None and self.analytics:
            await self.analytics.record_import(shop, 1)
        doc = await self.db.product_maps.find_one({'shop': shop, 'shopify_product_id': shopify_product_id})
        return ProductMap(**doc)

    async def list_products(self, shop: str) -> List[ProductMap]:
        docs = await self.db.product_maps.find({'shop': shop}).to_list(None)
        return [ProductMap(**d) for d in docs]

    async def remove_product(self, shop: str, shopify_product_id: str) -> bool:
        result = await self.db.product_maps.delete_one({'shop': shop, 'shopify_product_id': shopify_product_id})
        if result.deleted_count == 0:
            raise NotFoundError(f"Product {shopify_product_id} is not mapped")
        return True

    async def brands(self, shop: str) -> List[str]:
        products = await self.list_products(shop)
        return sorted({p.brand_name for p in products if p.brand_name})

    # Sync jobs
    async def sync_catalog(self, shop: str) -> Dict[str, Any]:
        """Refresh style name, brand and base price of mapped products"""
        products = await self.list_products(shop)
        updated = failed = 0
        for product in products:
            try:
                styles = await self.supplier.get_style_details(product.ss_style_id)
            except ExternalWriteError as e:
                logger.warning(f"Catalog sync failed for style {product.ss_style_id}: {e}")
                failed += 1
                continue
            if not styles:
                failed += 1
                continue
            style = styles[0]
            fields = {
                'style_name': style.get('styleName') or product.style_name,
                'brand_name': style.get('brandName') or product.brand_name,
                'updated_at': datetime.utcnow(),
            }
            if style.get('basePrice') is not None:
                fields['base_price_cents'] = to_cents(style['basePrice'])
            await self.db.product_maps.update_one({'id': product.id}, {'$set': fields})
            updated += 1

        logger.info(f"Catalog sync for {shop}: {updated} updated, {failed} failed")
        return {'total': len(products), 'updated': updated, 'failed': failed}

    async def sync_inventory(self, shop: str) -> Dict[str, Any]:
        """Total supplier stock per mapped product, with low stock alerts"""
        products = await self.list_products(shop)
        updated = failed = 0
        low_stock = []
        for product in products:
            try:
                inventory = await self.supplier.get_inventory_by_style(product.ss_style_id)
            except ExternalWriteError as e:
                logger.warning(f"Inventory sync failed for style {product.ss_style_id}: {e}")
                failed += 1
                continue

            qty = stock_total(inventory)
            await self.db.product_maps.update_one(
                {'id': product.id}, {'$set': {'stock_qty': qty, 'updated_at': datetime.utcnow()}}
            )
            updated += 1
            if qty < alert_config.low_stock_threshold:
                low_stock.append({'product': product.style_name, 'style': product.ss_style_id, 'quantity': qty})
                if self.alerts:
                    self.alerts.low_stock_alert(shop, product.style_name or product.ss_style_id,
                                                product.ss_style_id, qty)

        logger.info(f"Inventory sync for {shop}: {updated} updated, {failed} failed")
        return {
            'total': len(products),
            'updated': updated,
            'failed': failed,
            'low_stock': low_stock,
            'checked_at': datetime.utcnow().isoformat()
        }


def stock_total(inventory: Optional[List[Dict[str, Any]]]) -> int:
    """Sum warehouse quantities across every SKU of a style"""
    total = 0
    for item in inventory or []:
        for warehouse in item.get('warehouses') or []:
            total += warehouse.get('qty') or 0
    return total
