"""SSActiveWear REST API v2 integration"""
import aiohttp
from datetime import datetime
from typing import Dict, Any, List, Optional
import logging

from ..config import supplier as supplier_config
from ..errors import ExternalWriteError, TrackingRefreshError
from ..models import CarrierStatus, TrackingStatus

logger = logging.getLogger(__name__)

# Supplier shipment status text -> tracking status
_STATUS_MAP = {
    'delivered': TrackingStatus.DELIVERED,
    'in transit': TrackingStatus.IN_TRANSIT,
    'in_transit': TrackingStatus.IN_TRANSIT,
    'out for delivery': TrackingStatus.IN_TRANSIT,
    'picked up': TrackingStatus.IN_TRANSIT,
    'shipped': TrackingStatus.IN_TRANSIT,
}


def map_tracking_status(text: Optional[str]) -> TrackingStatus:
    return _STATUS_MAP.get((text or '').strip().lower(), TrackingStatus.PENDING)


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00')).replace(tzinfo=None)
    except ValueError:
        return None


class SupplierClient:
    """Client for the SSActiveWear API"""

    def __init__(self, config=None):
        self.config = config or supplier_config
        if not self.config.is_configured:
            logger.warning("SSActiveWear credentials not found in environment")

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    async def _request(self, method: str, endpoint: str, data: Dict = None) -> Any:
        """Make API request to SSActiveWear; raises on any failure"""
        if not self.is_configured:
            raise ExternalWriteError("SSActiveWear API credentials not configured")

        url = f"{self.config.base_url}/{endpoint.lstrip('/')}"
        auth = aiohttp.BasicAuth(self.config.user_id, self.config.api_key)
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
        try:
            async with aiohttp.ClientSession(auth=auth, timeout=timeout) as session:
                async with session.request(method, url, json=data,
                                           headers={'Content-Type': 'application/json'}) as resp:
                    result = await resp.json(content_type=None)
                    if resp.status >= 400:
                        raise ExternalWriteError(f"SSActiveWear {method} {endpoint} -> {resp.status}: {result}")
                    return result
        except ExternalWriteError:
            raise
        except Exception as e:
            logger.error(f"SSActiveWear {method} {endpoint} failed: {e}")
            raise ExternalWriteError(str(e)) from e

    # Catalog
    async def get_style_details(self, style_id: str) -> List[Dict[str, Any]]:
        return await self._request('GET', f'styles/{style_id}')

    async def get_inventory_by_style(self, style_id: str) -> List[Dict[str, Any]]:
        return await self._request('GET', f'inventory/?styleid={style_id}')

    # Orders
    async def place_order(self, order_data: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._request('POST', 'orders/', order_data)

    async def get_orders(self, all_orders: bool = False) -> List[Dict[str, Any]]:
        return await self._request('GET', 'orders/?All=True' if all_orders else 'orders/')

    # Tracking
    async def get_tracking_status(self, carrier: Optional[str], tracking_number: str) -> CarrierStatus:
        """Current carrier status for a shipment"""
        try:
            data = await self._request('GET', f'trackingdata/{tracking_number}')
        except ExternalWriteError as e:
            raise TrackingRefreshError(f"{carrier or 'carrier'} {tracking_number}: {e}") from e

        record = data[0] if isinstance(data, list) and data else data
        if not isinstance(record, dict) or not record:
            raise TrackingRefreshError(f"No tracking data for {tracking_number}")

        return CarrierStatus(
            status=map_tracking_status(record.get('status')),
            last_location=record.get('lastLocation') or record.get('location'),
            estimated_delivery=_parse_date(record.get('estimatedDelivery')),
        )
