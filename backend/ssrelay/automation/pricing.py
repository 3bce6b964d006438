"""Bulk price adjustment"""
import asyncio
from datetime import datetime
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Dict, Any, List, Optional
import logging

from ..config import pricing as pricing_config
from ..errors import ExternalWriteError, NotFoundError
from ..models import AdjustType, PriceAdjustment, PriceRule, ProductMap, RoundingPolicy
from ..utils.money import clamp_price, format_cents, percent_change, quantize_cents

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


def _transform(current: Decimal, adjust_type: str, value: Decimal) -> Decimal:
    if adjust_type == AdjustType.PERCENT_INCREASE:
        return current * (1 + value / HUNDRED)
    if adjust_type == AdjustType.PERCENT_DECREASE:
        return current * (1 - value / HUNDRED)
    if adjust_type == AdjustType.FIXED_INCREASE:
        return current + value * HUNDRED
    if adjust_type == AdjustType.FIXED_DECREASE:
        return current - value * HUNDRED
    if adjust_type == AdjustType.MULTIPLIER:
        return current * value
    if adjust_type == AdjustType.SET_FIXED:
        return value * HUNDRED
    raise ValueError(f"Unknown adjustment type: {adjust_type}")


def _round(cents: Decimal, rounding: str) -> int:
    dollars = cents / HUNDRED
    if rounding == RoundingPolicy.NINETY_NINE:
        return int(dollars.to_integral_value(rounding=ROUND_FLOOR)) * 100 + 99
    if rounding == RoundingPolicy.NINETY_FIVE:
        return int(dollars.to_integral_value(rounding=ROUND_FLOOR)) * 100 + 95
    if rounding == RoundingPolicy.NEAREST:
        return int(dollars.to_integral_value(rounding=ROUND_HALF_UP)) * 100
    if rounding == RoundingPolicy.UP:
        return int(dollars.to_integral_value(rounding=ROUND_CEILING)) * 100
    return quantize_cents(cents)


def compute_adjusted_price(current_price_cents: int, adjust_type: str, adjust_value: float,
                           rounding: str = RoundingPolicy.NONE) -> int:
    """Transform, then round, then clamp to one cent"""
    adjusted = _transform(Decimal(current_price_cents), adjust_type, Decimal(str(adjust_value)))
    return clamp_price(_round(adjusted, rounding))


class PricingEngine:
    """Preview and apply bulk price adjustments across a shop's imported products"""

    def __init__(self, shopify_client, db=None):
        self.shopify = shopify_client
        self.db = db

    async def _load_products(self, shop: str, brand_filter: Optional[str] = None) -> List[ProductMap]:
        query = {'shop': shop, 'base_price_cents': {'$ne': None}}
        if brand_filter:
            query['brand_name'] = brand_filter
        docs = await self.db.product_maps.find(query).to_list(None)
        return [ProductMap(**d) for d in docs]

    def plan_adjustments(self, products: List[ProductMap],
                         adjustment: PriceAdjustment) -> List[Dict[str, Any]]:
        """New price per product. Preview and apply both use this."""
        plan = []
        for product in products:
            old = product.base_price_cents
            new = compute_adjusted_price(old, adjustment.adjust_type, adjustment.adjust_value,
                                         adjustment.rounding)
            plan.append({
                'product_map_id': product.id,
                'shopify_product_id': product.shopify_product_id,
                'ss_style_id': product.ss_style_id,
                'style_name': product.style_name or f"Style {product.ss_style_id}",
                'brand_name': product.brand_name or 'Unknown',
                'old_price_cents': old,
                'new_price_cents': new,
                'percent_change': percent_change(old, new),
            })
        return plan

    async def preview(self, shop: str, adjustment: PriceAdjustment) -> Dict[str, Any]:
        """Compute the adjustment without writing anything"""
        products = await self._load_products(shop, adjustment.brand_filter)
        plan = self.plan_adjustments(products, adjustment)
        avg_change = round(sum(p['percent_change'] for p in plan) / len(plan), 1) if plan else 0

        return {
            'mode': 'preview',
            'total_products': len(plan),
            'avg_change_percent': avg_change,
            'changes': plan,
            'sample': plan[:pricing_config.preview_limit],
            'calculated_at': datetime.utcnow().isoformat()
        }

    async def _write_price(self, change: Dict[str, Any], semaphore: asyncio.Semaphore) -> Dict[str, Any]:
        """One product's write; any failure is reported on the change, never raised"""
        async with semaphore:
            try:
                await asyncio.wait_for(
                    self.shopify.update_product_price(
                        change['shopify_product_id'], format_cents(change['new_price_cents'])
                    ),
                    timeout=pricing_config.write_timeout_seconds,
                )
                await self.db.product_maps.update_one(
                    {'id': change['product_map_id']},
                    {'$set': {'last_price_cents': change['new_price_cents'], 'updated_at': datetime.utcnow()}},
                )
            except asyncio.TimeoutError:
                logger.warning(f"Price write timed out for {change['shopify_product_id']}")
                return {**change, 'status': 'failed', 'error': 'timeout'}
            except ExternalWriteError as e:
                logger.warning(f"Price write failed for {change['shopify_product_id']}: {e}")
                return {**change, 'status': 'failed', 'error': str(e)}
            except Exception as e:
                logger.error(f"Unexpected error writing price for {change['shopify_product_id']}: {e}")
                return {**change, 'status': 'failed', 'error': str(e) or type(e).__name__}

        return {**change, 'status': 'updated'}

    async def apply(self, shop: str, adjustment: PriceAdjustment) -> Dict[str, Any]:
        """Write adjusted prices to Shopify; one failed product never stops the batch"""
        products = await self._load_products(shop, adjustment.brand_filter)
        plan = self.plan_adjustments(products, adjustment)

        semaphore = asyncio.Semaphore(max(1, pricing_config.write_concurrency))
        results = await asyncio.gather(*(self._write_price(c, semaphore) for c in plan))

        updated = sum(1 for r in results if r['status'] == 'updated')
        failed = len(results) - updated
        logger.info(f"Bulk price apply for {shop}: {updated} updated, {failed} failed")

        return {
            'mode': 'apply',
            'total_products': len(plan),
            'updated': updated,
            'failed': failed,
            'message': f"{updated} updated, {failed} failed",
            'results': results,
            'executed_at': datetime.utcnow().isoformat()
        }

    # Saved price rules, applied by the price_update job
    async def create_price_rule(self, shop: str, name: str, adjustment: PriceAdjustment,
                                priority: int = 0, is_active: bool = True) -> PriceRule:
        rule = PriceRule(shop=shop, name=name, adjustment=adjustment, priority=priority,
                         is_active=is_active)
        await self.db.price_rules.insert_one(rule.model_dump())
        return rule

    async def list_price_rules(self, shop: str, active_only: bool = False) -> List[PriceRule]:
        query = {'shop': shop}
        if active_only:
            query['is_active'] = True
        docs = await self.db.price_rules.find(query).sort('priority', 1).to_list(None)
        return [PriceRule(**d) for d in docs]

    async def toggle_price_rule(self, shop: str, rule_id: str) -> PriceRule:
        doc = await self.db.price_rules.find_one({'shop': shop, 'id': rule_id})
        if not doc:
            raise NotFoundError(f"Price rule {rule_id} not found")
        await self.db.price_rules.update_one({'id': rule_id}, {'$set': {'is_active': not doc['is_active']}})
        return PriceRule(**{**doc, 'is_active': not doc['is_active']})

    async def delete_price_rule(self, shop: str, rule_id: str) -> bool:
        result = await self.db.price_rules.delete_one({'shop': shop, 'id': rule_id})
        return result.deleted_count == 1

    async def apply_price_rules(self, shop: str) -> Dict[str, Any]:
        """Apply every active price rule in priority order"""
        rules = await self.list_price_rules(shop, active_only=True)
        summary = []
        for rule in rules:
            result = await self.apply(shop, rule.adjustment)
            summary.append({'rule': rule.name, 'updated': result['updated'], 'failed': result['failed']})
        return {
            'rules_applied': len(summary),
            'updated': sum(s['updated'] for s in summary),
            'failed': sum(s['failed'] for s in summary),
            'rules': summary,
        }
