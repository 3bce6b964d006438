"""Quantity-tier pricing for volume price rules"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, List, Optional, Sequence
import logging

from ..errors import NoMatchingTierError, NotFoundError
from ..models import (
    DiscountType, RuleProduct, SizePremium, Tier, VolumePriceRule, validate_tiers,
)
from ..utils.money import clamp_price, format_cents, quantize_cents, to_cents

logger = logging.getLogger(__name__)


def select_tier(quantity: int, tiers: Sequence[Tier]) -> Tier:
    """Pick the tier covering quantity; on overlap the lowest min_qty wins"""
    for tier in sorted(tiers, key=lambda t: t.min_qty):
        if tier.covers(quantity):
            return tier
    raise NoMatchingTierError(quantity)


def apply_discount(base_price_cents: int, tier: Tier) -> int:
    base = Decimal(base_price_cents)
    if tier.discount_type == DiscountType.PERCENTAGE:
        return quantize_cents(base * (1 - Decimal(str(tier.discount_value)) / 100))
    return base_price_cents - to_cents(tier.discount_value)


def resolve_unit_price(base_price_cents: int, quantity: int, tiers: Sequence[Tier],
                       size_premium_cents: int = 0) -> int:
    """Discounted unit price for quantity; premium is added after the discount"""
    if quantity < 1:
        raise ValueError("Quantity must be at least 1")
    tier = select_tier(quantity, tiers)
    return clamp_price(apply_discount(base_price_cents, tier) + size_premium_cents)


def size_premium_cents(size: Optional[str], premiums: Sequence[SizePremium],
                       base_price_cents: int) -> int:
    """Premium for a size label (e.g. '2XL'); percentage premiums are taken on the base price"""
    if not size:
        return 0
    wanted = size.strip().lower()
    for premium in premiums:
        if premium.size_pattern.strip().lower() == wanted:
            if premium.premium_type == DiscountType.PERCENTAGE:
                return quantize_cents(Decimal(base_price_cents) * Decimal(str(premium.premium_value)) / 100)
            return to_cents(premium.premium_value)
    return 0


def product_id_variants(product_id: str) -> List[str]:
    """Numeric and GID forms of a Shopify product id"""
    product_id = str(product_id)
    if product_id.startswith('gid://'):
        return [product_id, product_id.rsplit('/', 1)[-1]]
    return [product_id, f"gid://shopify/Product/{product_id}"]


class VolumePricingService:
    """Volume price rules: storage and quoting"""

    def __init__(self, db):
        self.db = db

    @property
    def collection(self):
        return self.db.volume_price_rules

    async def create_rule(self, shop: str, name: str, description: str = None,
                          priority: int = 0) -> VolumePriceRule:
        """Create a rule seeded with the default 7-tier schedule"""
        rule = VolumePriceRule(shop=shop, name=name, description=description, priority=priority)
        await self.collection.insert_one(rule.model_dump())
        logger.info(f"Created volume price rule {rule.id} for {shop}")
        return rule

    async def get_rule(self, shop: str, rule_id: str) -> VolumePriceRule:
        doc = await self.collection.find_one({'shop': shop, 'id': rule_id})
        if not doc:
            raise NotFoundError(f"Volume price rule {rule_id} not found")
        return VolumePriceRule(**doc)

    async def list_rules(self, shop: str) -> List[VolumePriceRule]:
        docs = await self.collection.find({'shop': shop}).sort('priority', 1).to_list(None)
        return [VolumePriceRule(**d) for d in docs]

    async def _update(self, shop: str, rule_id: str, fields: Dict[str, Any]) -> VolumePriceRule:
        fields['updated_at'] = datetime.utcnow()
        result = await self.collection.update_one({'shop': shop, 'id': rule_id}, {'$set': fields})
        if result.matched_count == 0:
            raise NotFoundError(f"Volume price rule {rule_id} not found")
        return await self.get_rule(shop, rule_id)

    async def update_settings(self, shop: str, rule_id: str, name: str = None,
                              description: str = None, priority: int = None) -> VolumePriceRule:
        fields = {k: v for k, v in (('name', name), ('description', description), ('priority', priority))
                  if v is not None}
        return await self._update(shop, rule_id, fields)

    async def save_tiers(self, shop: str, rule_id: str, tiers: List[Dict[str, Any]]) -> VolumePriceRule:
        """Replace a rule's tiers; rejected before writing if they overlap or are out of order"""
        parsed = validate_tiers([Tier(**t) for t in tiers])
        return await self._update(shop, rule_id, {'tiers': [t.model_dump() for t in parsed]})

    async def save_size_premiums(self, shop: str, rule_id: str,
                                 premiums: List[Dict[str, Any]]) -> VolumePriceRule:
        parsed = [SizePremium(**p) for p in premiums]
        return await self._update(shop, rule_id, {'size_premiums': [p.model_dump() for p in parsed]})

    async def assign_products(self, shop: str, rule_id: str,
                              products: List[Dict[str, Any]]) -> VolumePriceRule:
        parsed = [RuleProduct(**p) for p in products]
        return await self._update(shop, rule_id, {'products': [p.model_dump() for p in parsed]})

    async def toggle_rule(self, shop: str, rule_id: str) -> VolumePriceRule:
        rule = await self.get_rule(shop, rule_id)
        return await self._update(shop, rule_id, {'is_active': not rule.is_active})

    async def delete_rule(self, shop: str, rule_id: str) -> bool:
        # Tiers, premiums and product assignments are embedded and go with the rule
        result = await self.collection.delete_one({'shop': shop, 'id': rule_id})
        return result.deleted_count == 1

    async def find_rule_for_product(self, shop: str, product_id: str) -> Optional[VolumePriceRule]:
        """First active rule (by priority) that includes the product"""
        docs = await self.collection.find({
            'shop': shop,
            'is_active': True,
            'products.shopify_product_id': {'$in': product_id_variants(product_id)},
        }).sort('priority', 1).to_list(None)
        return VolumePriceRule(**docs[0]) if docs else None

    async def get_storefront_tiers(self, shop: str, product_id: str) -> Dict[str, Any]:
        """Tier table for the storefront cart widget"""
        rule = await self.find_rule_for_product(shop, product_id)
        if rule is None:
            return {'tiers': [], 'size_premiums': []}

        base_price_cents = self._base_price(rule, product_id) or 0
        return {
            'rule_id': rule.id,
            'base_price': format_cents(base_price_cents),
            'tiers': [
                {
                    'min': t.min_qty,
                    'max': t.max_qty,
                    'type': t.discount_type,
                    'value': t.discount_value,
                    'unit_price': format_cents(clamp_price(apply_discount(base_price_cents, t))),
                }
                for t in rule.tiers
            ],
            'size_premiums': [
                {'pattern': p.size_pattern, 'type': p.premium_type, 'value': p.premium_value}
                for p in rule.size_premiums
            ],
        }

    def _base_price(self, rule: VolumePriceRule, product_id: str) -> Optional[int]:
        for pid in product_id_variants(product_id):
            product = rule.product(pid)
            if product is not None:
                return product.base_price_cents
        return None

    async def quote(self, shop: str, product_id: str, quantity: int, size: str = None,
                    base_price_cents: int = None) -> Dict[str, Any]:
        """Unit and line price for a product at a quantity"""
        rule = await self.find_rule_for_product(shop, product_id)
        if base_price_cents is None:
            base_price_cents = (self._base_price(rule, product_id) if rule else None) or 0

        if rule is None:
            return {
                'product_id': product_id,
                'quantity': quantity,
                'unit_price_cents': base_price_cents,
                'line_total_cents': base_price_cents * quantity,
                'tier': None,
                'rule_id': None,
            }

        premium = size_premium_cents(size, rule.size_premiums, base_price_cents)
        try:
            tier = select_tier(quantity, rule.tiers)
            unit_price = resolve_unit_price(base_price_cents, quantity, rule.tiers, premium)
            tier_label = tier.label
        except NoMatchingTierError:
            logger.warning(f"Rule {rule.id} has no tier for quantity {quantity}; using base price")
            unit_price = clamp_price(base_price_cents + premium)
            tier_label = None

        return {
            'product_id': product_id,
            'quantity': quantity,
            'unit_price_cents': unit_price,
            'line_total_cents': unit_price * quantity,
            'tier': tier_label,
            'rule_id': rule.id,
        }
