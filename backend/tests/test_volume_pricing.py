"""Volume pricing tier resolution and rule storage"""
import pytest

from ssrelay.automation.volume_pricing import (
    product_id_variants, resolve_unit_price, select_tier, size_premium_cents,
)
from ssrelay.errors import NoMatchingTierError, NotFoundError, ValidationError
from ssrelay.models import DiscountType, SizePremium, Tier, default_tiers, validate_tiers


class TestResolveUnitPrice:
    """Unit price at a quantity"""

    def test_thirty_shirts_at_twenty_dollars(self):
        assert resolve_unit_price(2000, 30, default_tiers()) == 1600

    def test_first_tier_is_full_price(self):
        assert resolve_unit_price(2000, 1, default_tiers()) == 2000
        assert resolve_unit_price(2000, 11, default_tiers()) == 2000

    def test_unbounded_last_tier(self):
        assert resolve_unit_price(2000, 10_000, default_tiers()) == 800

    def test_price_never_increases_with_quantity(self):
        tiers = default_tiers()
        prices = [resolve_unit_price(1999, q, tiers) for q in range(1, 400)]
        assert all(a >= b for a, b in zip(prices, prices[1:]))

    def test_fixed_discount(self):
        tiers = [Tier(min_qty=1, max_qty=9), Tier(min_qty=10, discount_type=DiscountType.FIXED, discount_value=2.5)]
        assert resolve_unit_price(1000, 10, tiers) == 750

    def test_fixed_discount_clamps_to_one_cent(self):
        tiers = [Tier(min_qty=1, discount_type=DiscountType.FIXED, discount_value=50)]
        assert resolve_unit_price(1000, 5, tiers) == 1

    def test_size_premium_added_after_discount(self):
        assert resolve_unit_price(2000, 30, default_tiers(), size_premium_cents=200) == 1800

    def test_quantity_below_one_rejected(self):
        with pytest.raises(ValueError):
            resolve_unit_price(2000, 0, default_tiers())

    def test_gap_raises_no_matching_tier(self):
        tiers = [Tier(min_qty=1, max_qty=5), Tier(min_qty=10, max_qty=20)]
        with pytest.raises(NoMatchingTierError) as exc:
            resolve_unit_price(2000, 7, tiers)
        assert exc.value.quantity == 7

    def test_overlap_picks_lowest_min_qty(self):
        # Stored records can predate validation
        tiers = [
            Tier(min_qty=10, max_qty=30, discount_value=50),
            Tier(min_qty=5, max_qty=20, discount_value=10),
        ]
        assert select_tier(15, tiers).min_qty == 5
        assert resolve_unit_price(1000, 15, tiers) == 900


class TestTierValidation:
    """Tier schedules are checked before storage"""

    def test_default_schedule_is_valid(self):
        assert len(validate_tiers(default_tiers())) == 7

    def test_overlapping_tiers_rejected(self):
        with pytest.raises(ValidationError):
            validate_tiers([Tier(min_qty=1, max_qty=12), Tier(min_qty=12, max_qty=24)])

    def test_unbounded_tier_must_be_last(self):
        with pytest.raises(ValidationError):
            validate_tiers([Tier(min_qty=1), Tier(min_qty=12, max_qty=24)])

    def test_max_below_min_rejected(self):
        with pytest.raises(ValueError):
            Tier(min_qty=10, max_qty=5)

    def test_percentage_above_hundred_rejected(self):
        with pytest.raises(ValueError):
            Tier(min_qty=1, discount_value=120)


class TestSizePremiums:

    def test_fixed_premium_case_insensitive(self):
        premiums = [SizePremium(size_pattern='2XL', premium_value=2)]
        assert size_premium_cents('2xl', premiums, 1000) == 200

    def test_percentage_premium_on_base(self):
        premiums = [SizePremium(size_pattern='3XL', premium_type=DiscountType.PERCENTAGE, premium_value=15)]
        assert size_premium_cents('3XL', premiums, 2000) == 300

    def test_unknown_size_has_no_premium(self):
        premiums = [SizePremium(size_pattern='2XL', premium_value=2)]
        assert size_premium_cents('M', premiums, 1000) == 0
        assert size_premium_cents(None, premiums, 1000) == 0


def test_product_id_variants():
    assert product_id_variants('111') == ['111', 'gid://shopify/Product/111']
    assert product_id_variants('gid://shopify/Product/111') == ['gid://shopify/Product/111', '111']


class TestVolumePricingService:
    """Rules stored in Mongo"""

    async def test_create_rule_seeds_default_tiers(self, relay, shop):
        rule = await relay.volume_pricing.create_rule(shop, 'Bulk tees')
        stored = await relay.volume_pricing.get_rule(shop, rule.id)
        assert [t.min_qty for t in stored.tiers] == [1, 12, 25, 37, 73, 145, 289]

    async def test_save_invalid_tiers_keeps_previous(self, relay, shop):
        rule = await relay.volume_pricing.create_rule(shop, 'Bulk tees')
        with pytest.raises(ValidationError):
            await relay.volume_pricing.save_tiers(shop, rule.id, [
                {'min_qty': 1, 'max_qty': 10},
                {'min_qty': 5, 'max_qty': 20},
            ])
        stored = await relay.volume_pricing.get_rule(shop, rule.id)
        assert len(stored.tiers) == 7

    async def test_quote_uses_first_active_rule_by_priority(self, relay, shop):
        svc = relay.volume_pricing
        low = await svc.create_rule(shop, 'Primary', priority=0)
        high = await svc.create_rule(shop, 'Secondary', priority=5)
        await svc.save_tiers(shop, high.id, [{'min_qty': 1, 'discount_value': 90}])
        for rule in (low, high):
            await svc.assign_products(shop, rule.id, [
                {'shopify_product_id': 'gid://shopify/Product/111', 'base_price_cents': 2000}
            ])

        quote = await svc.quote(shop, '111', 30)
        assert quote['rule_id'] == low.id
        assert quote['unit_price_cents'] == 1600
        assert quote['line_total_cents'] == 48000
        assert quote['tier'] == '25-36'

    async def test_quote_falls_back_to_base_on_gap(self, relay, shop):
        svc = relay.volume_pricing
        rule = await svc.create_rule(shop, 'Gappy')
        await svc.save_tiers(shop, rule.id, [
            {'min_qty': 1, 'max_qty': 5},
            {'min_qty': 10, 'max_qty': 20, 'discount_value': 10},
        ])
        await svc.assign_products(shop, rule.id, [{'shopify_product_id': '111', 'base_price_cents': 2000}])

        quote = await svc.quote(shop, '111', 7)
        assert quote['unit_price_cents'] == 2000
        assert quote['tier'] is None

    async def test_inactive_rule_ignored(self, relay, shop):
        svc = relay.volume_pricing
        rule = await svc.create_rule(shop, 'Off')
        await svc.assign_products(shop, rule.id, [{'shopify_product_id': '111', 'base_price_cents': 2000}])
        await svc.toggle_rule(shop, rule.id)

        tiers = await svc.get_storefront_tiers(shop, '111')
        assert tiers['tiers'] == []

    async def test_storefront_tiers(self, relay, shop):
        svc = relay.volume_pricing
        rule = await svc.create_rule(shop, 'Bulk tees')
        await svc.assign_products(shop, rule.id, [{'shopify_product_id': '111', 'base_price_cents': 2000}])

        tiers = await svc.get_storefront_tiers(shop, 'gid://shopify/Product/111')
        assert tiers['base_price'] == '20.00'
        assert tiers['tiers'][2]['unit_price'] == '16.00'

    async def test_rules_are_scoped_per_shop(self, relay, shop):
        rule = await relay.volume_pricing.create_rule(shop, 'Mine')
        with pytest.raises(NotFoundError):
            await relay.volume_pricing.get_rule('other-shop.myshopify.com', rule.id)
