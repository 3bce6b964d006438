"""Order intake, automation routing and order job lifecycle"""
from datetime import datetime
from typing import Dict, Any, Container, Iterable, List, Optional
import logging

from pymongo import ReturnDocument

from ..config import automation as automation_config, supplier as supplier_config
from ..errors import (
    DuplicateClassificationError, ExternalWriteError, InvalidTransitionError, NotFoundError,
)
from ..models import (
    AutoOrderSettings, JobStatus, OrderJob, Routing, RoutingDecision, WebhookLineItem, WebhookOrder,
)
from ..utils.money import format_cents
from .volume_pricing import product_id_variants

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    JobStatus.PENDING_APPROVAL: {JobStatus.SUBMITTED, JobStatus.ERROR},
    JobStatus.SUBMITTED: {JobStatus.SHIPPED, JobStatus.ERROR},
    JobStatus.SHIPPED: {JobStatus.DELIVERED, JobStatus.ERROR},
    JobStatus.ERROR: {JobStatus.PENDING_APPROVAL},
    JobStatus.DELIVERED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return JobStatus(target) in ALLOWED_TRANSITIONS[JobStatus(current)]


def classify(line_items: Iterable[WebhookLineItem], product_map: Container) -> bool:
    """True if any line item's product is in the product map; stops at the first hit"""
    for item in line_items:
        if not item.product_id:
            continue
        if any(pid in product_map for pid in product_id_variants(item.product_id)):
            return True
    return False


def decide_routing(order, settings: AutoOrderSettings) -> RoutingDecision:
    """Auto-submit only when automation is on, auto_submit is set and every gate passes.

    ``order`` needs ``total_cents`` and ``tags``.
    """
    if not settings.is_enabled:
        return RoutingDecision(routing=Routing.PENDING_APPROVAL, reasons=['automation disabled'])

    reasons = []
    if order.total_cents < settings.min_order_value_cents:
        reasons.append(
            f"order total {format_cents(order.total_cents)} below minimum "
            f"{format_cents(settings.min_order_value_cents)}"
        )
    excluded = settings.excluded_tags & {t.strip().lower() for t in order.tags}
    if excluded:
        reasons.append(f"excluded tags: {', '.join(sorted(excluded))}")
    if not settings.auto_submit:
        reasons.append('auto-submit off')

    if reasons:
        return RoutingDecision(routing=Routing.PENDING_APPROVAL, reasons=reasons)
    return RoutingDecision(routing=Routing.AUTO_SUBMITTED)


def build_supplier_order(order: Dict[str, Any], po_number: str, shipping_method: str) -> Dict[str, Any]:
    """SSActiveWear order payload from a Shopify order"""
    lines = []
    for edge in order.get('lineItems', {}).get('edges', []):
        item = edge['node']
        sku = item.get('sku') or (item.get('variant') or {}).get('sku')
        if sku:
            lines.append({'identifier': sku, 'qty': item.get('quantity', 0)})
    if not lines:
        raise ExternalWriteError("No mappable items found")

    address = order.get('shippingAddress')
    if not address:
        raise ExternalWriteError("Order has no shipping address")
    customer = f"{address.get('firstName') or ''} {address.get('lastName') or ''}".strip()

    return {
        'shippingAddress': {
            'customer': customer,
            'attn': customer,
            'address': address.get('address1'),
            'city': address.get('city'),
            'state': address.get('provinceCode'),
            'zip': address.get('zip'),
            'residential': True,
        },
        'lines': lines,
        'poNumber': po_number,
        'shippingMethod': automation_config.shipping_method_codes.get(shipping_method, '1'),
        'testOrder': supplier_config.test_orders,
    }


class FulfillmentEngine:
    """Relays supplier orders from Shopify webhooks to SSActiveWear"""

    def __init__(self, shopify_client, supplier_client, db=None, alerts=None, analytics=None):
        self.shopify = shopify_client
        self.supplier = supplier_client
        self.db = db
        self.alerts = alerts
        self.analytics = analytics

    # Settings
    async def get_settings(self, shop: str) -> AutoOrderSettings:
        """Shop automation settings, created with defaults on first access"""
        doc = await self.db.auto_order_settings.find_one({'shop': shop})
        if doc:
            return AutoOrderSettings(**doc)
        settings = AutoOrderSettings(shop=shop, default_shipping_method=automation_config.default_shipping_method)
        await self.db.auto_order_settings.update_one(
            {'shop': shop},
            {'$setOnInsert': settings.model_dump(exclude={'shop'})},
            upsert=True,
        )
        return settings

    async def save_settings(self, shop: str, **fields) -> AutoOrderSettings:
        current = await self.get_settings(shop)
        settings = AutoOrderSettings(**{**current.model_dump(), **fields, 'updated_at': datetime.utcnow()})
        await self.db.auto_order_settings.update_one(
            {'shop': shop}, {'$set': settings.model_dump(exclude={'shop'})}, upsert=True
        )
        logger.info(f"Saved automation settings for {shop}")
        return settings

    async def toggle_enabled(self, shop: str) -> AutoOrderSettings:
        current = await self.get_settings(shop)
        return await self.save_settings(shop, is_enabled=not current.is_enabled)

    # Intake
    async def is_relevant(self, shop: str, order: WebhookOrder) -> bool:
        """Product map lookup per line item, stopping at the first match"""
        for item in order.line_items:
            if not item.product_id:
                continue
            match = await self.db.product_maps.find_one({
                'shop': shop,
                'shopify_product_id': {'$in': product_id_variants(item.product_id)},
            })
            if match:
                return True
        return False

    async def _log_webhook(self, shop: str, topic: str, order: WebhookOrder, outcome: str):
        await self.db.webhook_logs.insert_one({
            'shop': shop,
            'topic': topic,
            'shopify_order_id': order.gid,
            'outcome': outcome,
            'created_at': datetime.utcnow(),
        })

    async def _create_job(self, job: OrderJob) -> OrderJob:
        """Insert the job unless one exists for the same shop and order"""
        result = await self.db.order_jobs.update_one(
            {'shop': job.shop, 'shopify_order_id': job.shopify_order_id},
            {'$setOnInsert': job.model_dump(exclude={'shop', 'shopify_order_id'})},
            upsert=True,
        )
        if result.upserted_id is None:
            raise DuplicateClassificationError(job.shopify_order_id)
        return job

    async def intake_order(self, shop: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Handle a verified orders/create payload"""
        order = WebhookOrder(**payload)

        if not await self.is_relevant(shop, order):
            await self._log_webhook(shop, 'orders/create', order, 'ignored')
            return {'relevant': False, 'shopify_order_id': order.gid}

        job = OrderJob(
            shop=shop,
            shopify_order_id=order.gid,
            shopify_order_number=order.display_number,
            total_cents=order.total_cents,
            tags=order.tags,
            logs=[f"{datetime.utcnow().isoformat()} queued from webhook"],
        )
        try:
            await self._create_job(job)
        except DuplicateClassificationError:
            # Shopify redelivered the webhook; the first delivery owns the job
            existing = await self.get_job_by_order(shop, order.gid)
            logger.info(f"Order {order.gid} already classified as job {existing.id}")
            await self._log_webhook(shop, 'orders/create', order, 'duplicate')
            return {'relevant': True, 'duplicate': True, 'job': existing.model_dump()}

        if self.analytics:
            await self.analytics.record_order(shop, job.total_cents, order.item_count)

        settings = await self.get_settings(shop)
        decision = decide_routing(job, settings)
        logger.info(f"[Webhook] Order {order.gid} ({order.display_number}) -> {decision.routing}")

        if decision.routing == Routing.AUTO_SUBMITTED:
            try:
                job = await self.submit_job(shop, job.id)
            except InvalidTransitionError as e:
                # an operator approval got there first
                logger.info(f"Auto-submit of job {job.id} skipped: {e}")
                job = await self.get_job(shop, job.id)
        elif self.alerts:
            self.alerts.approval_needed_alert(shop, job.shopify_order_number or job.shopify_order_id,
                                              job.total_cents, decision.reasons)

        await self._log_webhook(shop, 'orders/create', order, decision.routing)
        return {
            'relevant': True,
            'duplicate': False,
            'routing': decision.routing,
            'reasons': decision.reasons,
            'job': job.model_dump(),
        }

    # Lifecycle
    async def get_job(self, shop: str, job_id: str) -> OrderJob:
        doc = await self.db.order_jobs.find_one({'shop': shop, 'id': job_id})
        if not doc:
            raise NotFoundError(f"Order job {job_id} not found")
        return OrderJob(**doc)

    async def get_job_by_order(self, shop: str, shopify_order_id: str) -> OrderJob:
        doc = await self.db.order_jobs.find_one({'shop': shop, 'shopify_order_id': shopify_order_id})
        if not doc:
            raise NotFoundError(f"No job for order {shopify_order_id}")
        return OrderJob(**doc)

    async def list_jobs(self, shop: str, statuses: Optional[List[str]] = None,
                        limit: int = 50) -> List[OrderJob]:
        query: Dict[str, Any] = {'shop': shop}
        if statuses:
            query['status'] = {'$in': [JobStatus(s).value for s in statuses]}
        docs = await self.db.order_jobs.find(query).sort('created_at', -1).to_list(limit)
        return [OrderJob(**d) for d in docs]

    async def transition(self, shop: str, job_id: str, target: JobStatus, message: str,
                         claimed: bool = False, **fields) -> OrderJob:
        """Move a job to target; the status check and the write are one update.

        A job claimed for submission only moves through the claimant (``claimed=True``),
        which also releases the claim.
        """
        job = await self.get_job(shop, job_id)
        if not can_transition(job.status, target):
            raise InvalidTransitionError(job.status, target)

        now = datetime.utcnow()
        query = {'shop': shop, 'id': job_id, 'status': JobStatus(job.status).value}
        if claimed:
            query['submitting'] = True
            fields['submitting'] = False
        else:
            query['submitting'] = {'$ne': True}
        doc = await self.db.order_jobs.find_one_and_update(
            query,
            {
                '$set': {'status': JobStatus(target).value, 'updated_at': now, **fields},
                '$push': {'logs': f"{now.isoformat()} {message}"},
            },
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            # Someone else moved or claimed the job between the read and the write
            latest = await self.get_job(shop, job_id)
            raise InvalidTransitionError(latest.status, target)
        return OrderJob(**doc)

    async def _claim_for_submission(self, shop: str, job_id: str) -> OrderJob:
        """Mark a queued job as being submitted; only one caller wins"""
        doc = await self.db.order_jobs.find_one_and_update(
            {
                'shop': shop,
                'id': job_id,
                'status': JobStatus.PENDING_APPROVAL.value,
                'submitting': {'$ne': True},
            },
            {'$set': {'submitting': True, 'updated_at': datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            latest = await self.get_job(shop, job_id)
            raise InvalidTransitionError(latest.status, JobStatus.SUBMITTED)
        return OrderJob(**doc)

    async def submit_job(self, shop: str, job_id: str) -> OrderJob:
        """Place the supplier order; failures leave the job in error"""
        job = await self._claim_for_submission(shop, job_id)

        try:
            settings = await self.get_settings(shop)
            order = await self.shopify.get_order(job.shopify_order_id)
            if not order:
                raise ExternalWriteError("Order not found in Shopify")
            payload = build_supplier_order(order, order.get('name') or job.shopify_order_number,
                                           settings.default_shipping_method)
            response = await self.supplier.place_order(payload)
        except Exception as e:
            logger.error(f"Submitting order job {job_id} failed: {e}")
            if self.alerts:
                self.alerts.order_failed_alert(shop, job.shopify_order_number or job.shopify_order_id, str(e))
            return await self.transition(shop, job_id, JobStatus.ERROR, f"submission failed: {e}",
                                         claimed=True)

        ss_order_number = None
        if isinstance(response, list) and response:
            ss_order_number = response[0].get('orderNumber')
        elif isinstance(response, dict):
            ss_order_number = response.get('orderNumber')

        logger.info(f"Order job {job_id} submitted as SSActiveWear order {ss_order_number}")
        if self.analytics:
            await self.analytics.record_supplier_order(shop)
        return await self.transition(shop, job_id, JobStatus.SUBMITTED, 'submitted to SSActiveWear',
                                     claimed=True, ss_order_number=ss_order_number)

    async def approve_job(self, shop: str, job_id: str) -> OrderJob:
        """Operator approval of a queued order"""
        return await self.submit_job(shop, job_id)

    async def retry_job(self, shop: str, job_id: str) -> OrderJob:
        return await self.transition(shop, job_id, JobStatus.PENDING_APPROVAL, 'requeued for approval')

    async def mark_error(self, shop: str, job_id: str, reason: str) -> OrderJob:
        return await self.transition(shop, job_id, JobStatus.ERROR, reason)

    async def process_pending_orders(self, shop: str) -> Dict[str, Any]:
        """Re-run routing over queued jobs, e.g. after settings change"""
        settings = await self.get_settings(shop)
        jobs = await self.list_jobs(shop, [JobStatus.PENDING_APPROVAL], limit=None)
        submitted = failed = held = skipped = 0
        for job in jobs:
            if decide_routing(job, settings).routing != Routing.AUTO_SUBMITTED:
                held += 1
                continue
            try:
                result = await self.submit_job(shop, job.id)
            except InvalidTransitionError as e:
                logger.info(f"Skipping order job {job.id}: {e}")
                skipped += 1
                continue
            if result.status == JobStatus.SUBMITTED:
                submitted += 1
            else:
                failed += 1
        return {'total': len(jobs), 'submitted': submitted, 'failed': failed, 'held': held,
                'skipped': skipped}
