"""Калькулятор цены на источниках в памяти"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import FakeStore, fake_promo_validator
from modules.pricing import (
    BUNDLE_TIERS,
    InvalidQuantityError,
    PricingService,
    TariffPriceNotFoundError,
    find_bundle_tier,
)

NOW = datetime(2026, 1, 15, 12, 0, 0)


def make_service(store=None, codes=None, currency='USD'):
    return PricingService(
        store or FakeStore(),
        promo_validator=fake_promo_validator(codes or {}),
        currency=currency,
        clock=lambda: NOW,
    )


class TestScenarios:

    def test_single_subscription_without_discounts(self):
        quote = make_service().calculate_price(user_id=1, tariff_id=1)

        assert quote.base_price == Decimal('10')
        assert quote.total_discount == 0
        assert quote.final_price == Decimal('10')
        assert quote.applied_discounts == ()

    def test_bundle_of_three(self):
        quote = make_service().calculate_price(user_id=1, tariff_id=1, quantity=3)

        assert quote.base_price == Decimal('30')
        assert quote.bundle_discount == Decimal('3')
        assert quote.final_price == Decimal('27')
        assert [d.kind for d in quote.applied_discounts] == ['bundle']

    def test_personal_discount(self):
        store = FakeStore(prices={(1, None): 100}, personal=20)
        quote = make_service(store).calculate_price(user_id=1, tariff_id=1)

        assert quote.personal_discount == Decimal('20')
        assert quote.final_price == Decimal('80')

    def test_purchase_discount_is_taken_from_remainder(self):
        store = FakeStore(prices={(1, None): 100}, personal=20, purchase=(10, None))
        quote = make_service(store).calculate_price(user_id=1, tariff_id=1)

        assert quote.personal_discount == Decimal('20')
        assert quote.purchase_discount == Decimal('8')
        assert quote.final_price == Decimal('72')
        assert [d.kind for d in quote.applied_discounts] == ['personal', 'purchase']

    def test_invalid_promocode_is_ignored(self):
        service = make_service(codes={'REAL': ('PERCENT', 50)})

        with_code = service.calculate_price(user_id=1, tariff_id=1, promo_code='EXPIRED')
        without_code = service.calculate_price(user_id=1, tariff_id=1)

        assert with_code.promocode_discount == 0
        assert with_code == without_code


class TestComposition:

    def test_promocode_applies_after_personal_discount(self):
        store = FakeStore(prices={(1, None): 100}, personal=20)
        quote = make_service(store, codes={'TEN': ('PERCENT', 10)}).calculate_price(
            user_id=1, tariff_id=1, promo_code='TEN',
        )

        # 10% от 80, а не от 100
        assert quote.promocode_discount == Decimal('8')
        assert quote.final_price == Decimal('72')
        assert [d.kind for d in quote.applied_discounts] == ['personal', 'promocode']

    def test_fixed_promocode_after_personal_differs_from_reverse_order(self):
        store = FakeStore(prices={(1, None): 100}, personal=20)
        quote = make_service(store, codes={'FIX10': ('FIXED', 10)}).calculate_price(
            user_id=1, tariff_id=1, promo_code='FIX10',
        )

        assert quote.personal_discount == Decimal('20')
        assert quote.promocode_discount == Decimal('10')
        assert quote.total_discount == Decimal('30')
        # обратный порядок: 10 фиксированных, затем 20% от 90 = 18, итого 28
        assert quote.total_discount != Decimal('28')

    def test_percentage_sources_commute(self):
        # два процента подряд дают одно и то же независимо от того, какой из них первый;
        # порядок важен только когда среди источников есть фиксированная сумма
        first = make_service(FakeStore(prices={(1, None): 100}, personal=20, purchase=(10, None)))
        swapped = make_service(FakeStore(prices={(1, None): 100}, personal=10, purchase=(20, None)))

        a = first.calculate_price(user_id=1, tariff_id=1)
        b = swapped.calculate_price(user_id=1, tariff_id=1)

        assert a.final_price == b.final_price == Decimal('72')
        assert a.total_discount == b.total_discount

    def test_percentage_promocode_compounds_with_bundle_and_personal(self):
        store = FakeStore(prices={(1, None): 50}, personal=10)
        quote = make_service(store, codes={'P20': ('PERCENT', 20)}).calculate_price(
            user_id=1, tariff_id=1, quantity=2, promo_code='P20',
        )

        # 100 * 0.95 * 0.90 * 0.80 = 68.40, а не 100 - (5 + 10 + 20)
        assert quote.final_price == Decimal('68.40')

    def test_full_chain_order(self):
        store = FakeStore(prices={(1, None): 20}, personal=10, purchase=(50, None))
        quote = make_service(store, codes={'FIX': ('FIXED', 5)}).calculate_price(
            user_id=1, tariff_id=1, quantity=5, promo_code='FIX',
        )

        # 100 -> bundle 15% = 15 -> 85 -> personal 10% = 8.50 -> 76.50
        # -> purchase 50% = 38.25 -> 38.25 -> fixed 5 -> 33.25
        assert quote.base_price == Decimal('100')
        assert quote.bundle_discount == Decimal('15')
        assert quote.personal_discount == Decimal('8.50')
        assert quote.purchase_discount == Decimal('38.25')
        assert quote.promocode_discount == Decimal('5')
        assert quote.final_price == Decimal('33.25')
        assert [d.kind for d in quote.applied_discounts] == ['bundle', 'personal', 'purchase', 'promocode']

    def test_fixed_promocode_is_capped_by_remaining_amount(self):
        store = FakeStore(prices={(1, None): 100}, personal=50)
        quote = make_service(store, codes={'BIG': ('FIXED', 500)}).calculate_price(
            user_id=1, tariff_id=1, promo_code='BIG',
        )

        assert quote.promocode_discount == Decimal('50')
        assert quote.total_discount == quote.base_price
        assert quote.final_price == 0

    def test_non_price_promocode_gives_no_discount(self):
        quote = make_service(codes={'DAYS7': ('DAYS', 7)}).calculate_price(user_id=1, tariff_id=1, promo_code='DAYS7')

        assert quote.promocode_discount == 0
        assert quote.applied_discounts == ()

    def test_percent_over_hundred_is_clamped(self):
        store = FakeStore(prices={(1, None): 40}, personal=150, purchase=(30, None))
        quote = make_service(store).calculate_price(user_id=1, tariff_id=1)

        assert quote.personal_discount == Decimal('40')
        assert quote.purchase_discount == 0
        assert quote.final_price == 0

    def test_zero_sources_are_computed_but_not_listed(self):
        store = FakeStore(prices={(1, None): 50}, purchase=(10, None))
        quote = make_service(store).calculate_price(user_id=1, tariff_id=1)

        assert quote.bundle_discount == 0
        assert quote.personal_discount == 0
        assert quote.promocode_discount == 0
        assert quote.purchase_discount == Decimal('5')
        assert len(quote.applied_discounts) == 1

    def test_rounding_to_minor_units(self):
        store = FakeStore(prices={(1, None): '9.99'}, personal=15)
        quote = make_service(store).calculate_price(user_id=1, tariff_id=1)

        # 9.99 * 15% = 1.4985 -> 1.50
        assert quote.personal_discount == Decimal('1.50')
        assert quote.final_price == Decimal('8.49')

    def test_duration_price_is_used(self):
        store = FakeStore(prices={(1, None): 10, (1, 3): 51})
        quote = make_service(store).calculate_price(user_id=1, tariff_id=1, duration_id=3, quantity=2)

        assert quote.base_price == Decimal('102')
        assert ('price', 1, 3) in store.calls

    def test_currency_comes_from_service(self):
        quote = make_service(currency='EUR').calculate_price(user_id=1, tariff_id=1)
        assert quote.currency == 'EUR'


class TestInvariants:

    @pytest.mark.parametrize('personal', [0, 10, 55, 100])
    @pytest.mark.parametrize('purchase', [0, 25, 100])
    @pytest.mark.parametrize('code', [None, 'P30', 'F7', 'F1000'])
    def test_final_price_never_negative(self, personal, purchase, code):
        store = FakeStore(prices={(1, None): '7.35'}, personal=personal, purchase=(purchase, None))
        service = make_service(store, codes={'P30': ('PERCENT', 30), 'F7': ('FIXED', 7), 'F1000': ('FIXED', 1000)})

        for quantity in range(1, 13):
            quote = service.calculate_price(user_id=1, tariff_id=1, quantity=quantity, promo_code=code)
            assert quote.final_price >= 0
            assert quote.total_discount <= quote.base_price
            assert quote.total_discount == (
                quote.bundle_discount + quote.personal_discount + quote.purchase_discount + quote.promocode_discount
            )
            assert quote.final_price == quote.base_price - quote.total_discount

    def test_same_inputs_give_same_quote(self):
        store = FakeStore(prices={(1, None): 12}, personal=5, purchase=(10, None))
        service = make_service(store, codes={'X': ('PERCENT', 15)})

        first = service.calculate_price(user_id=1, tariff_id=1, quantity=4, promo_code='X')
        second = service.calculate_price(user_id=1, tariff_id=1, quantity=4, promo_code='X')

        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_unit_price_does_not_grow_with_quantity(self):
        service = make_service()
        previous = None
        for quantity in range(1, 16):
            quote = service.calculate_price(user_id=1, tariff_id=1, quantity=quantity)
            per_unit = quote.final_price / quantity
            if previous is not None:
                assert per_unit <= previous
            previous = per_unit

    def test_crossing_tier_threshold_lowers_unit_price(self):
        service = make_service()
        four = service.calculate_price(user_id=1, tariff_id=1, quantity=4)
        five = service.calculate_price(user_id=1, tariff_id=1, quantity=5)

        assert five.final_price / 5 < four.final_price / 4


class TestResolvers:

    @pytest.mark.parametrize('quantity,percent', [
        (1, None), (2, 5), (3, 10), (4, 10), (5, 15), (9, 15), (10, 25), (100, 25),
    ])
    def test_find_bundle_tier(self, quantity, percent):
        tier = find_bundle_tier(quantity)
        assert (tier.discount_percent if tier else None) == percent

    def test_bundle_tiers_are_sorted(self):
        assert list(BUNDLE_TIERS) == sorted(BUNDLE_TIERS, key=lambda t: t.quantity)

    def test_bundle_discount(self):
        bundle = make_service().calculate_bundle_discount(1, 10, Decimal('4'))
        assert bundle.percent == 25
        assert bundle.discount == Decimal('10')

    def test_bundle_discount_without_tariff_is_zero(self):
        bundle = make_service().calculate_bundle_discount(None, 10, Decimal('4'))
        assert bundle.discount == 0

    def test_active_personal_discount_wins_over_legacy(self):
        service = make_service(FakeStore(personal=15, legacy=30))
        assert service.get_personal_discount(1) == 15

    def test_legacy_personal_discount_is_fallback(self):
        service = make_service(FakeStore(personal=0, legacy=30))
        assert service.get_personal_discount(1) == 30

    def test_purchase_discount_expired(self):
        service = make_service(FakeStore(purchase=(10, NOW - timedelta(seconds=1))))
        assert service.get_purchase_discount(1).percent == 0

    def test_purchase_discount_not_yet_expired(self):
        expires_at = NOW + timedelta(days=2)
        discount = make_service(FakeStore(purchase=(10, expires_at))).get_purchase_discount(1)

        assert discount.percent == 10
        assert discount.expires_at == expires_at

    def test_purchase_discount_with_aware_expiry(self):
        expires_at = (NOW - timedelta(hours=1)).replace(tzinfo=timezone.utc)
        service = make_service(FakeStore(purchase=(10, expires_at)))
        assert service.get_purchase_discount(1).percent == 0

    def test_purchase_discount_unknown_user(self):
        assert make_service(FakeStore(purchase=None)).get_purchase_discount(1).percent == 0

    def test_promo_discount_without_validator(self):
        service = PricingService(FakeStore())
        assert service.calculate_promo_discount('ANY', Decimal('10'), 1).discount == 0

    def test_promo_discount_kind(self):
        promo = make_service(codes={'P': ('PERCENT', 10)}).calculate_promo_discount('P', Decimal('50'), 1)
        assert promo.kind == 'percentage'
        assert promo.discount == Decimal('5')


class TestErrors:

    def test_missing_price_raises(self):
        with pytest.raises(TariffPriceNotFoundError) as exc:
            make_service().calculate_price(user_id=1, tariff_id=99)
        assert exc.value.tariff_id == 99

    @pytest.mark.parametrize('quantity', [0, -3, 'abc', 2.9, 0.5, True, False, float('nan'), float('inf')])
    def test_invalid_quantity(self, quantity):
        with pytest.raises(InvalidQuantityError):
            make_service().calculate_price(user_id=1, tariff_id=1, quantity=quantity)

    def test_quantity_from_string(self):
        quote = make_service().calculate_price(user_id=1, tariff_id=1, quantity='3')
        assert quote.base_price == Decimal('30')

    def test_whole_float_quantity(self):
        quote = make_service().calculate_price(user_id=1, tariff_id=1, quantity=3.0)
        assert quote.base_price == Decimal('30')

    def test_store_errors_propagate(self):
        class BrokenStore(FakeStore):
            def get_active_personal_discount_percent(self, user_id):
                raise ConnectionError("database is down")

        with pytest.raises(ConnectionError):
            make_service(BrokenStore()).calculate_price(user_id=1, tariff_id=1)


class TestBulkRenewal:

    def test_groups_by_tariff(self):
        store = FakeStore(prices={(1, None): 10, (2, None): 20})
        quote = make_service(store).calculate_bulk_renewal_price(user_id=1, tariff_ids=[1, 2, 1, 1])

        assert [(item.tariff_id, item.quantity) for item in quote.items] == [(1, 3), (2, 1)]
        assert quote.base_price == Decimal('50')
        assert quote.total_discount == Decimal('3')
        assert quote.final_price == Decimal('47')

    def test_promocode_applied_once_to_largest_group(self):
        store = FakeStore(prices={(1, None): 10, (2, None): 20})
        quote = make_service(store, codes={'TEN': ('PERCENT', 10)}).calculate_bulk_renewal_price(
            user_id=1, tariff_ids=[1, 1, 1, 2], promo_code='TEN',
        )

        by_tariff = {item.tariff_id: item.quote for item in quote.items}
        assert by_tariff[1].promocode_discount == Decimal('2.70')
        assert by_tariff[2].promocode_discount == 0
        assert quote.final_price == Decimal('44.30')

    def test_duration_is_resolved_per_tariff(self):
        store = FakeStore(
            prices={(1, 11): 25, (2, 21): 55},
            durations={(1, 90): 11, (2, 90): 21},
        )
        quote = make_service(store).calculate_bulk_renewal_price(user_id=1, tariff_ids=[1, 2], duration_days=90)

        assert [(item.tariff_id, item.duration_id) for item in quote.items] == [(1, 11), (2, 21)]
        assert quote.base_price == Decimal('80')
        assert ('price', 1, 11) in store.calls
        assert ('price', 2, 21) in store.calls

    def test_missing_duration_for_one_tariff(self):
        store = FakeStore(prices={(1, 11): 25, (2, None): 20}, durations={(1, 90): 11})

        with pytest.raises(TariffPriceNotFoundError) as exc:
            make_service(store).calculate_bulk_renewal_price(user_id=1, tariff_ids=[1, 2], duration_days=90)
        assert exc.value.tariff_id == 2

    def test_empty_renewal(self):
        with pytest.raises(InvalidQuantityError):
            make_service().calculate_bulk_renewal_price(user_id=1, tariff_ids=[])

    def test_to_dict(self):
        data = make_service().calculate_bulk_renewal_price(user_id=1, tariff_ids=[1, 1]).to_dict()

        assert data['base_price'] == 20.0
        assert data['final_price'] == 19.0
        assert data['items'][0]['quote']['applied_discounts'][0]['type'] == 'bundle'


def test_quote_to_dict():
    store = FakeStore(prices={(1, None): 100}, personal=20, purchase=(10, None))
    data = make_service(store).calculate_price(user_id=1, tariff_id=1).to_dict()

    assert data == {
        'base_price': 100.0,
        'bundle_discount': 0.0,
        'personal_discount': 20.0,
        'purchase_discount': 8.0,
        'promocode_discount': 0.0,
        'total_discount': 28.0,
        'final_price': 72.0,
        'currency': 'USD',
        'applied_discounts': [
            {'type': 'personal', 'value': 20.0, 'description': 'Personal discount (20%)'},
            {'type': 'purchase', 'value': 8.0, 'description': 'First purchase discount (10%)'},
        ],
    }
