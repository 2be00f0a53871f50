"""
Проверка и погашение промокодов

validate_promo_code только читает данные и используется при расчёте цены.
redeem_promo_code вызывается отдельно, после подтверждённой оплаты.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from modules.core import get_db
from modules.currency import percent_of, quantize_money, to_money, to_naive_utc, utcnow, ZERO
from modules.models.payment import Payment, PAYMENT_PAID
from modules.models.promo import (
    PromoCode,
    PromoCodeActivation,
    PROMO_FIXED,
    PROMO_PERCENT,
    AVAILABILITY_ALL,
    AVAILABILITY_NEW,
    AVAILABILITY_EXISTING,
    AVAILABILITY_INVITED,
    AVAILABILITY_ALLOWED,
)
from modules.models.user import User

db = get_db()
logger = logging.getLogger(__name__)


class PromoCodeError(Exception):
    """Промокод нельзя погасить"""


@dataclass
class PromoValidation:
    valid: bool
    error: Optional[str] = None
    promo: Optional[PromoCode] = None
    discount: object = ZERO  # Decimal, рассчитывается только если передана сумма

    @property
    def promo_type(self):
        return self.promo.promo_type if self.promo else None

    def to_dict(self):
        if not self.valid:
            return {"valid": False, "message": self.error}
        return {
            "valid": True,
            "promo_type": self.promo.promo_type,
            "value": self.promo.value,
            "description": self.promo.description or self.promo.describe(),
            "discount": float(self.discount),
        }


def normalize_code(code):
    return (code or '').strip().upper()


def find_promo_code(code):
    """Найти промокод без учёта регистра"""
    code = normalize_code(code)
    if not code:
        return None
    return PromoCode.query.filter_by(code=code).first()


def count_user_activations(promo_id, user_id):
    return PromoCodeActivation.query.filter_by(promo_code_id=promo_id, user_id=user_id).count()


def _has_paid_payments(user_id):
    return db.session.query(Payment.id).filter_by(user_id=user_id, status=PAYMENT_PAID).first() is not None


def is_user_eligible(promo, user_id):
    """Проверка аудитории промокода"""
    availability = promo.availability or AVAILABILITY_ALL
    if availability == AVAILABILITY_ALL:
        return True
    if availability == AVAILABILITY_NEW:
        return not _has_paid_payments(user_id)
    if availability == AVAILABILITY_EXISTING:
        return _has_paid_payments(user_id)
    if availability == AVAILABILITY_INVITED:
        user = db.session.get(User, user_id)
        return bool(user and user.referrer_id)
    if availability == AVAILABILITY_ALLOWED:
        return user_id in promo.get_allowed_user_ids()
    logger.warning("[PROMO] Unknown availability '%s' for code %s", availability, promo.code)
    return False


def calculate_discount(promo, amount):
    """Скидка промокода от суммы amount, не больше самой суммы"""
    amount = to_money(amount)
    if amount <= ZERO:
        return ZERO
    if promo.promo_type == PROMO_PERCENT:
        discount = percent_of(amount, promo.value)
    elif promo.promo_type == PROMO_FIXED:
        discount = quantize_money(max(to_money(promo.value), ZERO))
    else:
        # DAYS и прочие не уменьшают цену
        return ZERO
    return min(discount, amount)


def validate_promo_code(code, user_id, amount=None, now=None):
    """
    Проверить промокод для пользователя.

    Порядок проверок: существование, активность, начало и конец действия,
    общий лимит, аудитория, лимит на пользователя. Ничего не изменяет.
    """
    now = to_naive_utc(now) or utcnow()

    promo = find_promo_code(code)
    if not promo:
        return PromoValidation(False, "Invalid promo code")

    if not promo.is_active:
        return PromoValidation(False, "Promo code is inactive")

    if promo.starts_at and to_naive_utc(promo.starts_at) > now:
        return PromoValidation(False, "Promo code has not started yet")

    if promo.expires_at and to_naive_utc(promo.expires_at) < now:
        return PromoValidation(False, "Promo code has expired")

    if promo.max_uses >= 0 and (promo.used_count or 0) >= promo.max_uses:
        return PromoValidation(False, "Promo code is no longer valid")

    if not is_user_eligible(promo, user_id):
        return PromoValidation(False, "Promo code is not available for this account")

    if promo.max_uses_per_user >= 0 and count_user_activations(promo.id, user_id) >= promo.max_uses_per_user:
        return PromoValidation(False, "You have already used this promo code")

    discount = calculate_discount(promo, amount) if amount is not None else ZERO
    return PromoValidation(True, promo=promo, discount=discount)


def redeem_promo_code(code, user_id, payment=None, amount=None, discount=None):
    """
    Погасить промокод после подтверждённой покупки:
    увеличить счётчик использований и записать активацию.
    """
    validation = validate_promo_code(code, user_id, amount=amount)
    if not validation.valid:
        logger.info("[PROMO] Redeem rejected: code=%s user=%s reason=%s", normalize_code(code), user_id, validation.error)
        raise PromoCodeError(validation.error)

    promo = validation.promo
    if discount is None:
        discount = validation.discount

    promo.used_count = (promo.used_count or 0) + 1
    activation = PromoCodeActivation(
        promo_code_id=promo.id,
        user_id=user_id,
        payment_id=payment.id if payment is not None else None,
        purchase_amount=float(to_money(amount)) if amount is not None else None,
        discount_applied=float(to_money(discount)),
    )
    db.session.add(activation)
    if payment is not None:
        payment.promo_code_id = promo.id
    db.session.commit()

    logger.info("[PROMO] Redeemed %s by user %s, uses left: %s", promo.code, user_id, promo.uses_left())
    return activation


__all__ = [
    'PromoCodeError',
    'PromoValidation',
    'find_promo_code',
    'validate_promo_code',
    'calculate_discount',
    'redeem_promo_code',
]
