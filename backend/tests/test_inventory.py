"""Product map, catalog and inventory sync"""
from unittest.mock import AsyncMock

import pytest

from ssrelay.automation.inventory import stock_total
from ssrelay.errors import ExternalWriteError, NotFoundError


def test_stock_total_sums_all_warehouses():
    inventory = [
        {'sku': 'B00760003', 'warehouses': [{'warehouseAbbr': 'IL', 'qty': 40}, {'warehouseAbbr': 'NV', 'qty': 2}]},
        {'sku': 'B00760004', 'warehouses': [{'warehouseAbbr': 'IL', 'qty': 8}]},
        {'sku': 'B00760005'},
    ]
    assert stock_total(inventory) == 50
    assert stock_total(None) == 0


class TestProductMap:

    async def test_map_is_idempotent_and_counts_import_once(self, relay, shop, db):
        await relay.inventory.map_product(shop, '111', '39', base_price_cents=1000)
        await relay.inventory.map_product(shop, '111', '39', base_price_cents=1000)

        assert len(await relay.inventory.list_products(shop)) == 1
        stats = await db.daily_stats.find_one({'shop': shop})
        assert stats['imported_count'] == 1

    async def test_remove(self, relay, shop, mapped_product):
        await relay.inventory.remove_product(shop, mapped_product.shopify_product_id)
        with pytest.raises(NotFoundError):
            await relay.inventory.remove_product(shop, mapped_product.shopify_product_id)

    async def test_brands(self, relay, shop):
        await relay.inventory.map_product(shop, '1', '39', brand_name='Gildan')
        await relay.inventory.map_product(shop, '2', '40', brand_name='Bella + Canvas')
        await relay.inventory.map_product(shop, '3', '41', brand_name='Gildan')
        assert await relay.inventory.brands(shop) == ['Bella + Canvas', 'Gildan']


class TestSync:

    async def test_catalog_sync_updates_style_data(self, relay, shop, mapped_product, supplier_client):
        supplier_client.get_style_details = AsyncMock(return_value=[
            {'styleID': 39, 'styleName': '5000', 'brandName': 'Gildan', 'basePrice': '3.12'}
        ])
        result = await relay.inventory.sync_catalog(shop)

        assert result == {'total': 1, 'updated': 1, 'failed': 0}
        product = (await relay.inventory.list_products(shop))[0]
        assert product.base_price_cents == 312

    async def test_catalog_sync_counts_failures(self, relay, shop, mapped_product, supplier_client):
        supplier_client.get_style_details = AsyncMock(side_effect=ExternalWriteError('401 Unauthorized'))
        result = await relay.inventory.sync_catalog(shop)
        assert result['failed'] == 1

    async def test_inventory_sync_raises_low_stock_alert(self, relay, shop, mapped_product, supplier_client):
        supplier_client.get_inventory_by_style = AsyncMock(return_value=[
            {'sku': 'B00760004', 'warehouses': [{'qty': 3}, {'qty': 4}]},
        ])
        result = await relay.inventory.sync_inventory(shop)

        assert result['updated'] == 1
        assert result['low_stock'][0]['quantity'] == 7
        product = (await relay.inventory.list_products(shop))[0]
        assert product.stock_qty == 7
        alert = relay.alerts.get_alerts()[0]
        assert alert['type'] == 'low_stock'
        assert alert['severity'] == 'warning'
