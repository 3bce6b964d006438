"""Shipment tracking for relayed orders"""
from datetime import datetime
from typing import Dict, Any, List, Optional
import logging

from pymongo import ReturnDocument

from ..errors import InvalidTransitionError, NotFoundError, TrackingRefreshError
from ..models import JobStatus, ShipmentTracking, TrackingStatus

logger = logging.getLogger(__name__)


def carrier_url(carrier: Optional[str], tracking_number: Optional[str]) -> Optional[str]:
    """Public tracking page for FedEx, UPS and USPS shipments"""
    if not tracking_number:
        return None
    code = (carrier or '').upper()
    if 'FEDEX' in code or code in ('FXG', 'FXE'):
        return f"https://www.fedex.com/fedextrack/?trknbr={tracking_number}"
    if 'UPS' in code and 'USPS' not in code or code == 'UPG':
        return f"https://www.ups.com/track?tracknum={tracking_number}"
    if 'USPS' in code or code == 'USP':
        return f"https://tools.usps.com/go/TrackConfirmAction?tLabels={tracking_number}"
    return None


def tracking_payload(tracking: ShipmentTracking) -> Dict[str, Any]:
    """Stored tracking plus the carrier's public tracking page"""
    return {**tracking.model_dump(), 'tracking_url': carrier_url(tracking.carrier, tracking.tracking_number)}


class ShipmentTracker:
    """Keeps ShipmentTracking records in step with the carrier"""

    def __init__(self, carrier_source, fulfillment, db=None):
        self.carrier = carrier_source
        self.fulfillment = fulfillment
        self.db = db

    async def get_tracking(self, shop: str, tracking_id: str) -> ShipmentTracking:
        doc = await self.db.shipment_tracking.find_one({'shop': shop, 'id': tracking_id})
        if not doc:
            raise NotFoundError(f"Tracking {tracking_id} not found")
        return ShipmentTracking(**doc)

    async def get_tracking_for_job(self, shop: str, job_id: str) -> Optional[ShipmentTracking]:
        doc = await self.db.shipment_tracking.find_one({'shop': shop, 'order_job_id': job_id})
        return ShipmentTracking(**doc) if doc else None

    async def create_tracking(self, shop: str, job_id: str, carrier: str,
                              tracking_number: str) -> ShipmentTracking:
        """Mark a submitted job shipped, then attach its shipment"""
        job = await self.fulfillment.get_job(shop, job_id)
        existing = await self.get_tracking_for_job(shop, job_id)
        if existing:
            if job.status == JobStatus.SUBMITTED:
                # Row left behind by an earlier attempt whose transition failed
                await self.fulfillment.transition(shop, job_id, JobStatus.SHIPPED,
                                                  f"shipped via {existing.carrier} {existing.tracking_number}")
            return existing
        if job.status != JobStatus.SUBMITTED:
            raise InvalidTransitionError(job.status, JobStatus.SHIPPED)

        # Only the caller that wins the transition writes the record
        await self.fulfillment.transition(shop, job_id, JobStatus.SHIPPED,
                                          f"shipped via {carrier} {tracking_number}")
        tracking = ShipmentTracking(
            shop=shop,
            order_job_id=job_id,
            carrier=carrier,
            tracking_number=tracking_number,
            last_update=datetime.utcnow(),
        )
        await self.db.shipment_tracking.update_one(
            {'shop': shop, 'order_job_id': job_id},
            {'$setOnInsert': tracking.model_dump(exclude={'shop', 'order_job_id'})},
            upsert=True,
        )
        logger.info(f"Tracking {tracking.id} created for job {job_id}")
        return await self.get_tracking_for_job(shop, job_id)

    async def refresh_tracking(self, shop: str, tracking_id: str, override: bool = False,
                               now: datetime = None) -> Dict[str, Any]:
        """Pull the carrier status. Failures leave the record as it was."""
        tracking = await self.get_tracking(shop, tracking_id)
        if tracking.status == TrackingStatus.DELIVERED and not override:
            return {'tracking_id': tracking_id, 'status': tracking.status, 'updated': False}

        try:
            if not tracking.tracking_number:
                raise TrackingRefreshError(f"Tracking {tracking_id} has no tracking number")
            carrier_status = await self.carrier.get_tracking_status(tracking.carrier, tracking.tracking_number)
        except TrackingRefreshError as e:
            logger.warning(f"Tracking refresh failed for {tracking_id}: {e}")
            return {'tracking_id': tracking_id, 'status': tracking.status, 'updated': False, 'error': str(e)}

        now = now or datetime.utcnow()
        query = {'shop': shop, 'id': tracking_id}
        if not override:
            query['status'] = {'$ne': TrackingStatus.DELIVERED.value}
        doc = await self.db.shipment_tracking.find_one_and_update(
            query,
            {'$set': {
                'status': carrier_status.status,
                'last_location': carrier_status.last_location,
                'estimated_delivery': carrier_status.estimated_delivery,
                'last_update': now,
            }},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            # Delivered by a concurrent refresh
            current = await self.get_tracking(shop, tracking_id)
            return {'tracking_id': tracking_id, 'status': current.status, 'updated': False}

        updated = ShipmentTracking(**doc)
        if updated.status == TrackingStatus.DELIVERED:
            await self._mark_job_delivered(shop, updated.order_job_id)
        return {'tracking_id': tracking_id, 'status': updated.status, 'updated': True}

    async def _mark_job_delivered(self, shop: str, job_id: str):
        job = await self.fulfillment.get_job(shop, job_id)
        if job.status == JobStatus.SHIPPED:
            await self.fulfillment.transition(shop, job_id, JobStatus.DELIVERED, 'delivered')

    async def list_in_flight(self, shop: str) -> List[ShipmentTracking]:
        """Non-delivered shipments of submitted or shipped jobs"""
        jobs = await self.fulfillment.list_jobs(shop, [JobStatus.SUBMITTED, JobStatus.SHIPPED], limit=None)
        if not jobs:
            return []
        docs = await self.db.shipment_tracking.find({
            'shop': shop,
            'order_job_id': {'$in': [j.id for j in jobs]},
            'status': {'$ne': TrackingStatus.DELIVERED.value},
        }).to_list(None)
        return [ShipmentTracking(**d) for d in docs]

    async def refresh_all_tracking(self, shop: str) -> Dict[str, Any]:
        """Refresh every in-flight shipment of the shop"""
        trackings = await self.list_in_flight(shop)
        refreshed = failed = 0
        for tracking in trackings:
            result = await self.refresh_tracking(shop, tracking.id)
            if 'error' in result:
                failed += 1
            else:
                refreshed += 1
        logger.info(f"Tracking refresh for {shop}: {refreshed} refreshed, {failed} failed")
        return {'total': len(trackings), 'refreshed': refreshed, 'failed': failed}

    async def sync_supplier_orders(self, shop: str) -> Dict[str, Any]:
        """Attach tracking numbers reported by SSActiveWear to submitted jobs"""
        jobs = await self.fulfillment.list_jobs(shop, [JobStatus.SUBMITTED], limit=None)
        by_number = {j.ss_order_number: j for j in jobs if j.ss_order_number}
        if not by_number:
            return {'shipped': 0}

        supplier_orders = await self.fulfillment.supplier.get_orders()
        shipped = 0
        for order in supplier_orders or []:
            job = by_number.get(order.get('orderNumber'))
            tracking_number = order.get('trackingNumber')
            if not (job and tracking_number):
                continue
            try:
                await self.create_tracking(shop, job.id, order.get('shippingCarrier') or order.get('carrier'),
                                           tracking_number)
            except InvalidTransitionError as e:
                logger.warning(f"Could not ship order job {job.id}: {e}")
                continue
            shipped += 1
        return {'shipped': shipped}
