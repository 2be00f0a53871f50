"""
Расчёт итоговой цены тарифа со всеми скидками

Порядок применения скидок фиксирован и влияет на результат:

    пакетная (bundle) -> персональная -> на первую покупку -> промокод

Каждая следующая скидка считается от остатка после предыдущих, а не от
базовой цены. Сумма скидок никогда не превышает базовую цену.

Сервис ничего не пишет: источники данных (store) и проверка промокода
(promo_validator) передаются в конструктор. Погашение промокода и сброс
скидки на первую покупку выполняются вызывающим кодом после оплаты.
"""
import logging
from collections import namedtuple
from dataclasses import dataclass, field
from typing import List, Optional

from modules.currency import (
    ZERO,
    clamp_percent,
    money_to_float,
    percent_of,
    quantize_money,
    to_money,
    to_naive_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

DISCOUNT_BUNDLE = 'bundle'
DISCOUNT_PERSONAL = 'personal'
DISCOUNT_PURCHASE = 'purchase'
DISCOUNT_PROMOCODE = 'promocode'

BundleTier = namedtuple('BundleTier', ['quantity', 'discount_percent'])

# Пакетные скидки за покупку нескольких подписок сразу, по возрастанию порога
BUNDLE_TIERS = (
    BundleTier(2, 5),
    BundleTier(3, 10),
    BundleTier(5, 15),
    BundleTier(10, 25),
)

PROMO_KIND_NAMES = {
    'PERCENT': 'percentage',
    'FIXED': 'fixed',
}


class PricingError(Exception):
    """Базовая ошибка расчёта цены"""


class TariffPriceNotFoundError(PricingError):
    """Для тарифа/периода не найдена цена"""

    def __init__(self, tariff_id, duration_id=None):
        self.tariff_id = tariff_id
        self.duration_id = duration_id
        super().__init__(f"Price not found for tariff {tariff_id} (duration {duration_id})")


class InvalidQuantityError(PricingError):
    """Количество подписок меньше 1"""


BundleDiscount = namedtuple('BundleDiscount', ['discount', 'percent'])
PurchaseDiscount = namedtuple('PurchaseDiscount', ['percent', 'expires_at'])
PromoDiscount = namedtuple('PromoDiscount', ['discount', 'kind', 'promo_id'])


@dataclass(frozen=True)
class AppliedDiscount:
    kind: str
    amount: object
    description: str

    def to_dict(self):
        return {
            'type': self.kind,
            'value': money_to_float(self.amount),
            'description': self.description,
        }


@dataclass(frozen=True)
class PriceQuote:
    """Разбивка цены. Создаётся на каждый запрос и не сохраняется."""
    base_price: object
    bundle_discount: object
    personal_discount: object
    purchase_discount: object
    promocode_discount: object
    total_discount: object
    final_price: object
    currency: str
    applied_discounts: tuple = ()

    def to_dict(self):
        return {
            'base_price': money_to_float(self.base_price),
            'bundle_discount': money_to_float(self.bundle_discount),
            'personal_discount': money_to_float(self.personal_discount),
            'purchase_discount': money_to_float(self.purchase_discount),
            'promocode_discount': money_to_float(self.promocode_discount),
            'total_discount': money_to_float(self.total_discount),
            'final_price': money_to_float(self.final_price),
            'currency': self.currency,
            'applied_discounts': [d.to_dict() for d in self.applied_discounts],
        }


@dataclass
class BulkRenewalItem:
    tariff_id: object
    quantity: int
    quote: PriceQuote
    duration_id: object = None

    def to_dict(self):
        return {
            'tariff_id': self.tariff_id,
            'duration_id': self.duration_id,
            'quantity': self.quantity,
            'quote': self.quote.to_dict(),
        }


@dataclass
class BulkRenewalQuote:
    items: List[BulkRenewalItem] = field(default_factory=list)
    base_price: object = ZERO
    total_discount: object = ZERO
    final_price: object = ZERO
    currency: str = 'USD'

    def to_dict(self):
        return {
            'items': [item.to_dict() for item in self.items],
            'base_price': money_to_float(self.base_price),
            'total_discount': money_to_float(self.total_discount),
            'final_price': money_to_float(self.final_price),
            'currency': self.currency,
        }


def find_bundle_tier(quantity, tiers=BUNDLE_TIERS):
    """Самый крупный порог, не превышающий quantity, или None"""
    applicable = None
    for tier in tiers:
        if tier.quantity <= quantity:
            applicable = tier
        else:
            break
    return applicable


class PricingService:
    """
    Калькулятор цены.

    store должен предоставлять:
        get_unit_price(tariff_id, duration_id) -> число или None
        get_active_personal_discount_percent(user_id) -> число
        get_legacy_personal_discount_percent(user_id) -> число
        get_purchase_discount_fields(user_id) -> (percent, expires_at) или None
        get_duration_id(tariff_id, duration_days) -> id периода или None

    promo_validator(code, user_id, amount) возвращает объект с полями
    valid, discount и promo_type (см. modules.promo.validate_promo_code).
    """

    def __init__(self, store, promo_validator=None, currency='USD', clock=None, bundle_tiers=BUNDLE_TIERS):
        self.store = store
        self.promo_validator = promo_validator
        self.currency = currency
        self.clock = clock or utcnow
        self.bundle_tiers = tuple(sorted(bundle_tiers, key=lambda t: t.quantity))

    def calculate_price(self, user_id, tariff_id, duration_id=None, quantity=1, promo_code=None, is_renewal=False):
        """Итоговая цена со всеми скидками"""
        quantity = self._validate_quantity(quantity)

        unit_price = self.get_unit_price(tariff_id, duration_id)
        base_price = quantize_money(unit_price * quantity)
        applied = []

        bundle_amount = ZERO
        if quantity > 1:
            bundle = self.calculate_bundle_discount(tariff_id, quantity, unit_price)
            bundle_amount = min(bundle.discount, base_price)
            if bundle_amount > ZERO:
                applied.append(AppliedDiscount(DISCOUNT_BUNDLE, bundle_amount, f"Bundle discount ({quantity}x, {bundle.percent}%)"))

        remaining = base_price - bundle_amount
        personal_percent = self.get_personal_discount(user_id)
        personal_amount = min(percent_of(remaining, personal_percent), remaining)
        if personal_amount > ZERO:
            applied.append(AppliedDiscount(DISCOUNT_PERSONAL, personal_amount, f"Personal discount ({float(personal_percent):g}%)"))

        remaining -= personal_amount
        purchase = self.get_purchase_discount(user_id)
        purchase_amount = min(percent_of(remaining, purchase.percent), remaining)
        if purchase_amount > ZERO:
            applied.append(AppliedDiscount(DISCOUNT_PURCHASE, purchase_amount, f"First purchase discount ({float(purchase.percent):g}%)"))

        remaining -= purchase_amount
        promo_amount = ZERO
        if promo_code:
            promo = self.calculate_promo_discount(promo_code, remaining, user_id)
            promo_amount = promo.discount
            if promo_amount > ZERO:
                applied.append(AppliedDiscount(DISCOUNT_PROMOCODE, promo_amount, f"Promocode discount ({promo.kind})"))

        total_discount = bundle_amount + personal_amount + purchase_amount + promo_amount
        final_price = max(ZERO, base_price - total_discount)

        logger.debug(
            "[PRICING] user=%s tariff=%s duration=%s qty=%s renewal=%s base=%s discount=%s final=%s",
            user_id, tariff_id, duration_id, quantity, is_renewal, base_price, total_discount, final_price,
        )

        return PriceQuote(
            base_price=base_price,
            bundle_discount=bundle_amount,
            personal_discount=personal_amount,
            purchase_discount=purchase_amount,
            promocode_discount=promo_amount,
            total_discount=total_discount,
            final_price=final_price,
            currency=self.currency,
            applied_discounts=tuple(applied),
        )

    def calculate_bulk_renewal_price(self, user_id, tariff_ids, duration_days=None, promo_code=None):
        """
        Цена продления сразу нескольких подписок.

        Подписки одного тарифа считаются одной покупкой (для пакетной скидки),
        промокод применяется один раз - к группе с наибольшим остатком.
        Период задаётся длительностью в днях: у каждого тарифа берётся
        его собственный период с такой длительностью.
        """
        if not tariff_ids:
            raise InvalidQuantityError("At least one subscription is required")

        groups = {}
        for tariff_id in tariff_ids:
            groups[tariff_id] = groups.get(tariff_id, 0) + 1

        durations = {tariff_id: self.resolve_duration(tariff_id, duration_days) for tariff_id in groups}

        quotes = {
            tariff_id: self.calculate_price(user_id, tariff_id, durations[tariff_id], quantity, is_renewal=True)
            for tariff_id, quantity in groups.items()
        }

        if promo_code:
            target = max(quotes, key=lambda t: quotes[t].final_price)
            quotes[target] = self.calculate_price(
                user_id, target, durations[target], groups[target], promo_code=promo_code, is_renewal=True,
            )

        result = BulkRenewalQuote(currency=self.currency)
        for tariff_id, quantity in groups.items():
            quote = quotes[tariff_id]
            result.items.append(BulkRenewalItem(tariff_id, quantity, quote, durations[tariff_id]))
            result.base_price += quote.base_price
            result.total_discount += quote.total_discount
            result.final_price += quote.final_price
        return result

    def get_unit_price(self, tariff_id, duration_id=None):
        """Цена одной подписки; отсутствие цены - ошибка данных"""
        price = self.store.get_unit_price(tariff_id, duration_id)
        if price is None:
            logger.warning("[PRICING] No price for tariff %s, duration %s", tariff_id, duration_id)
            raise TariffPriceNotFoundError(tariff_id, duration_id)
        return quantize_money(max(to_money(price), ZERO))

    def resolve_duration(self, tariff_id, duration_days):
        """ID периода тарифа с заданной длительностью; None - базовая цена тарифа"""
        if duration_days is None:
            return None
        duration_id = self.store.get_duration_id(tariff_id, duration_days)
        if duration_id is None:
            logger.warning("[PRICING] No %s-day duration for tariff %s", duration_days, tariff_id)
            raise TariffPriceNotFoundError(tariff_id)
        return duration_id

    def calculate_bundle_discount(self, tariff_id, quantity, unit_price):
        """Пакетная скидка за quantity подписок тарифа"""
        tier = find_bundle_tier(quantity, self.bundle_tiers)
        if tier is None or tariff_id is None:
            return BundleDiscount(ZERO, 0)
        total = to_money(unit_price) * quantity
        return BundleDiscount(percent_of(total, tier.discount_percent), tier.discount_percent)

    def get_personal_discount(self, user_id):
        """
        Процент персональной скидки.

        Активная запись user_personal_discounts важнее старого поля
        пользователя; старое поле используется, только если записи нет.
        """
        percent = clamp_percent(self.store.get_active_personal_discount_percent(user_id))
        if percent > ZERO:
            return percent
        return clamp_percent(self.store.get_legacy_personal_discount_percent(user_id))

    def get_purchase_discount(self, user_id):
        """Разовая скидка на первую покупку, если она ещё не истекла"""
        fields = self.store.get_purchase_discount_fields(user_id)
        if not fields:
            return PurchaseDiscount(ZERO, None)

        percent, expires_at = fields
        percent = clamp_percent(percent)
        if percent <= ZERO:
            return PurchaseDiscount(ZERO, None)

        expires_at = to_naive_utc(expires_at)
        if expires_at and expires_at < to_naive_utc(self.clock()):
            return PurchaseDiscount(ZERO, None)

        return PurchaseDiscount(percent, expires_at)

    def calculate_promo_discount(self, code, amount, user_id):
        """Скидка по промокоду от оставшейся суммы; невалидный код даёт ноль"""
        amount = to_money(amount)
        if not code or self.promo_validator is None or amount <= ZERO:
            return PromoDiscount(ZERO, None, None)

        result = self.promo_validator(code, user_id, amount)
        if not result.valid:
            logger.info("[PRICING] Promocode %s ignored for user %s: %s", code, user_id, getattr(result, 'error', None))
            return PromoDiscount(ZERO, None, None)

        discount = min(quantize_money(max(to_money(result.discount), ZERO)), amount)
        promo = getattr(result, 'promo', None)
        kind = PROMO_KIND_NAMES.get(result.promo_type, (result.promo_type or '').lower())
        return PromoDiscount(discount, kind, promo.id if promo is not None else None)

    @staticmethod
    def _validate_quantity(quantity):
        if quantity is None:
            return 1
        # true/false из JSON и дробные количества не округляем молча
        if isinstance(quantity, bool):
            raise InvalidQuantityError(f"Invalid quantity: {quantity!r}")
        if isinstance(quantity, float) and not quantity.is_integer():
            raise InvalidQuantityError(f"Quantity must be a whole number, got {quantity!r}")
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise InvalidQuantityError(f"Invalid quantity: {quantity!r}")
        if quantity < 1:
            raise InvalidQuantityError(f"Quantity must be at least 1, got {quantity}")
        return quantity


__all__ = [
    'BUNDLE_TIERS',
    'BundleTier',
    'AppliedDiscount',
    'PriceQuote',
    'BulkRenewalItem',
    'BulkRenewalQuote',
    'PricingService',
    'PricingError',
    'TariffPriceNotFoundError',
    'InvalidQuantityError',
    'find_bundle_tier',
]
