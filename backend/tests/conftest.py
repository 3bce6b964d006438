"""Pytest configuration and fixtures."""
from unittest.mock import AsyncMock, MagicMock

import pytest
from mongomock_motor import AsyncMongoMockClient

from ssrelay.models import CarrierStatus, TrackingStatus
from ssrelay.system import RelaySystem

SHOP = 'test-shop.myshopify.com'


@pytest.fixture
def shop():
    return SHOP


@pytest.fixture
def db():
    """In-memory motor database, fresh per test"""
    return AsyncMongoMockClient()['ssrelay_test']


@pytest.fixture
def shopify_client():
    """Shopify client double; price writes and order lookups succeed"""
    client = MagicMock()
    client.is_configured = True
    client.get_status.return_value = {'configured': True}
    client.update_product_price = AsyncMock(return_value={'product_id': 'x', 'updated_variants': 1})
    client.get_order = AsyncMock(return_value={
        'id': 'gid://shopify/Order/1001',
        'name': '#1001',
        'shippingAddress': {
            'firstName': 'Ada',
            'lastName': 'Lovelace',
            'address1': '1 Main St',
            'city': 'Springfield',
            'provinceCode': 'IL',
            'zip': '62701',
        },
        'lineItems': {'edges': [{'node': {'sku': 'B00760004', 'quantity': 30}}]},
    })
    return client


@pytest.fixture
def supplier_client():
    """SSActiveWear client double"""
    client = MagicMock()
    client.is_configured = True
    client.place_order = AsyncMock(return_value=[{'orderNumber': 'SS-5001'}])
    client.get_orders = AsyncMock(return_value=[])
    client.get_tracking_status = AsyncMock(
        return_value=CarrierStatus(status=TrackingStatus.IN_TRANSIT, last_location='Memphis, TN')
    )
    client.get_style_details = AsyncMock(return_value=[])
    client.get_inventory_by_style = AsyncMock(return_value=[])
    return client


@pytest.fixture
def relay(db, shopify_client, supplier_client):
    return RelaySystem(db, shopify_client=shopify_client, supplier_client=supplier_client)


@pytest.fixture
async def mapped_product(relay, shop):
    """One imported product: Gildan 5000, $10.00 base"""
    return await relay.inventory.map_product(
        shop, 'gid://shopify/Product/111', '39', style_name='5000', brand_name='Gildan',
        base_price_cents=1000,
    )


@pytest.fixture
def order_payload():
    """Builds orders/create webhook bodies"""
    def build(order_id=1001, product_id=111, total_price='48.00', tags='', quantity=3):
        return {
            'id': order_id,
            'order_number': order_id,
            'name': f'#{order_id}',
            'total_price': total_price,
            'tags': tags,
            'line_items': [{'product_id': product_id, 'quantity': quantity, 'vendor': 'Gildan'}],
        }
    return build
