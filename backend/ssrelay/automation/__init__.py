from .shopify_client import ShopifyClient
from .supplier_client import SupplierClient
from .volume_pricing import VolumePricingService
from .pricing import PricingEngine
from .inventory import InventoryManager
from .fulfillment import FulfillmentEngine
from .tracking import ShipmentTracker

__all__ = [
    'ShopifyClient', 'SupplierClient', 'VolumePricingService', 'PricingEngine',
    'InventoryManager', 'FulfillmentEngine', 'ShipmentTracker',
]
