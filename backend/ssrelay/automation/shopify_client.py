"""Shopify GraphQL Admin API integration (requires API credentials)"""
import aiohttp
from typing import Dict, Any, List, Optional
import logging

from ..config import shopify as shopify_config
from ..errors import ExternalWriteError

logger = logging.getLogger(__name__)

PRODUCT_VARIANTS_QUERY = """
query productVariants($id: ID!) {
  product(id: $id) {
    variants(first: 100) { edges { node { id } } }
  }
}
"""

VARIANTS_BULK_UPDATE = """
mutation productVariantsBulkUpdate($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
  productVariantsBulkUpdate(productId: $productId, variants: $variants) {
    product { id }
    userErrors { field message }
  }
}
"""

ORDER_QUERY = """
query getOrder($id: ID!) {
  order(id: $id) {
    name
    email
    tags
    shippingAddress {
      address1 address2 city zip province provinceCode country firstName lastName
    }
    lineItems(first: 50) {
      edges { node { sku quantity variant { id sku } } }
    }
  }
}
"""

DELIVERY_PROFILES_QUERY = """
query deliveryProfiles {
  deliveryProfiles(first: 10) {
    edges {
      node {
        id
        name
        profileLocationGroups {
          locationGroupZones(first: 20) {
            edges {
              node {
                zone { name }
                methodDefinitions(first: 20) {
                  edges { node { name rateProvider { ... on DeliveryRateDefinition { price { amount } } } } }
                }
              }
            }
          }
        }
      }
    }
  }
}
"""


def product_gid(product_id: str) -> str:
    product_id = str(product_id)
    return product_id if product_id.startswith('gid://') else f"gid://shopify/Product/{product_id}"


class ShopifyClient:
    """Client for the Shopify GraphQL Admin API"""

    def __init__(self, config=None):
        self.config = config or shopify_config
        self.headers = {
            'Content-Type': 'application/json',
            'X-Shopify-Access-Token': self.config.access_token or ''
        }

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def get_status(self) -> Dict[str, Any]:
        return {
            'configured': self.is_configured,
            'store_url': self.config.store_url,
            'api_version': self.config.api_version,
            'message': 'Ready' if self.is_configured else 'Shopify API credentials required'
        }

    async def graphql(self, query: str, variables: Dict = None) -> Dict[str, Any]:
        """Run a GraphQL query; transport and GraphQL errors come back under 'error'"""
        if not self.is_configured:
            return {'error': 'Shopify not configured', 'needs': ['SHOPIFY_STORE_URL', 'SHOPIFY_ACCESS_TOKEN']}

        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.config.graphql_url, headers=self.headers,
                                        json={'query': query, 'variables': variables or {}}) as resp:
                    result = await resp.json()
                    if resp.status >= 400:
                        return {'error': result, 'status': resp.status}
                    if result.get('errors'):
                        return {'error': result['errors']}
                    return result.get('data') or {}
        except Exception as e:
            logger.error(f"Shopify GraphQL request failed: {e}")
            return {'error': str(e)}

    async def get_variant_ids(self, product_id: str) -> List[str]:
        data = await self.graphql(PRODUCT_VARIANTS_QUERY, {'id': product_gid(product_id)})
        if 'error' in data:
            raise ExternalWriteError(f"Could not load variants: {data['error']}")
        product = data.get('product') or {}
        return [e['node']['id'] for e in product.get('variants', {}).get('edges', [])]

    async def update_product_price(self, product_id: str, price: str) -> Dict[str, Any]:
        """Set every variant of a product to price. Writing the same price twice is harmless."""
        variant_ids = await self.get_variant_ids(product_id)
        if not variant_ids:
            raise ExternalWriteError(f"Product {product_id} has no variants")

        data = await self.graphql(VARIANTS_BULK_UPDATE, {
            'productId': product_gid(product_id),
            'variants': [{'id': vid, 'price': price} for vid in variant_ids],
        })
        if 'error' in data:
            raise ExternalWriteError(str(data['error']))
        result = data.get('productVariantsBulkUpdate') or {}
        user_errors = result.get('userErrors') or []
        if user_errors:
            raise ExternalWriteError('; '.join(e.get('message', '') for e in user_errors))
        return result

    async def get_order(self, order_gid: str) -> Optional[Dict[str, Any]]:
        data = await self.graphql(ORDER_QUERY, {'id': order_gid})
        if 'error' in data:
            raise ExternalWriteError(f"Could not load order {order_gid}: {data['error']}")
        return data.get('order')

    async def get_delivery_profiles(self) -> Dict[str, Any]:
        """Delivery profiles with their zone shipping rates"""
        data = await self.graphql(DELIVERY_PROFILES_QUERY)
        if 'error' in data:
            return data
        profiles = []
        for edge in data.get('deliveryProfiles', {}).get('edges', []):
            node = edge['node']
            rates = []
            for group in node.get('profileLocationGroups', []):
                for zone_edge in group.get('locationGroupZones', {}).get('edges', []):
                    zone = zone_edge['node']
                    for method in zone.get('methodDefinitions', {}).get('edges', []):
                        price = (method['node'].get('rateProvider') or {}).get('price') or {}
                        rates.append({
                            'zone': zone['zone']['name'],
                            'method': method['node']['name'],
                            'price': price.get('amount'),
                        })
            profiles.append({'id': node['id'], 'name': node['name'], 'rates': rates})
        return {'profiles': profiles}
