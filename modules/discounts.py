"""
Источники данных для расчёта цены на базе SQLAlchemy моделей
"""
import logging

from sqlalchemy import func

from modules.core import get_app, get_cache, get_db
from modules.currency import utcnow
from modules.models.personal_discount import UserPersonalDiscount
from modules.models.tariff import Tariff, TariffDuration
from modules.models.user import User
from modules.pricing import PricingService
from modules.promo import validate_promo_code

db = get_db()
cache = get_cache()
logger = logging.getLogger(__name__)


def _price_cache_key(tariff_id, duration_id):
    return f'tariff_price_{tariff_id}_{"base" if duration_id is None else duration_id}'


class DatabasePricingStore:
    """
    Чтение цен тарифов, персональных скидок и полей пользователя из базы.

    Цены активных тарифов кэшируются на cache_timeout секунд. После изменения
    цены или отключения тарифа нужно вызвать invalidate_price, иначе до
    истечения кэша будет отдаваться старая цена.
    """

    def __init__(self, cache_timeout=None, price_cache=None):
        self.cache_timeout = cache_timeout
        self.cache = price_cache if price_cache is not None else cache

    def get_unit_price(self, tariff_id, duration_id=None):
        key = _price_cache_key(tariff_id, duration_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        price = self._load_unit_price(tariff_id, duration_id)
        if price is not None:
            self.cache.set(key, price, timeout=self.cache_timeout)
        return price

    def invalidate_price(self, tariff_id, duration_ids=()):
        """Сбросить кэш базовой цены тарифа и цен его периодов"""
        self.cache.delete_many(*[_price_cache_key(tariff_id, d) for d in (None, *duration_ids)])

    def get_duration_id(self, tariff_id, duration_days):
        duration = (
            TariffDuration.query
            .filter_by(tariff_id=tariff_id, duration_days=duration_days)
            .first()
        )
        return duration.id if duration else None

    def _load_unit_price(self, tariff_id, duration_id):
        if duration_id is None:
            tariff = db.session.get(Tariff, tariff_id)
            if not tariff or not tariff.is_active:
                return None
            return tariff.price_usd

        duration = (
            TariffDuration.query
            .join(Tariff)
            .filter(TariffDuration.id == duration_id, TariffDuration.tariff_id == tariff_id, Tariff.is_active.is_(True))
            .first()
        )
        return duration.price if duration else None

    def get_active_personal_discount_percent(self, user_id):
        now = utcnow()
        percent = (
            db.session.query(func.max(UserPersonalDiscount.discount_percent))
            .filter(
                UserPersonalDiscount.user_id == user_id,
                UserPersonalDiscount.is_active.is_(True),
                (UserPersonalDiscount.expires_at.is_(None)) | (UserPersonalDiscount.expires_at > now),
                (UserPersonalDiscount.max_uses == -1) | (UserPersonalDiscount.used_count < UserPersonalDiscount.max_uses),
            )
            .scalar()
        )
        return percent or 0

    def get_legacy_personal_discount_percent(self, user_id):
        user = db.session.get(User, user_id)
        return (user.personal_discount_percent or 0) if user else 0

    def get_purchase_discount_fields(self, user_id):
        user = db.session.get(User, user_id)
        if not user:
            return None
        return user.purchase_discount_percent or 0, user.purchase_discount_expires_at


def create_pricing_service():
    """Собрать PricingService с источниками из базы и настройками приложения"""
    app = get_app()
    store = DatabasePricingStore(cache_timeout=app.config.get('PRICING_CACHE_TIMEOUT'))
    return PricingService(
        store,
        promo_validator=validate_promo_code,
        currency=app.config.get('PRICING_CURRENCY', 'USD'),
    )


def get_tariff_durations(tariff_id):
    """Периоды оплаты тарифа; None если тариф не найден"""
    tariff = db.session.get(Tariff, tariff_id)
    if not tariff or not tariff.is_active:
        return None
    return [d.to_dict() for d in tariff.durations]


def consume_purchase_discount(user_id):
    """Сбросить разовую скидку на первую покупку после оплаты"""
    user = db.session.get(User, user_id)
    if not user or not user.purchase_discount_percent:
        return False
    logger.info("[PRICING] First purchase discount %s%% consumed by user %s", user.purchase_discount_percent, user_id)
    user.purchase_discount_percent = 0
    user.purchase_discount_expires_at = None
    db.session.commit()
    return True


def migrate_legacy_personal_discounts():
    """
    Перенести старое поле User.personal_discount_percent в таблицу
    user_personal_discounts (source_type='legacy') и обнулить поле.
    Возвращает количество созданных записей.

    Если у пользователя уже есть действующая запись, старое поле при расчёте
    не использовалось: оно только обнуляется, новая запись не создаётся.
    """
    store = DatabasePricingStore()
    migrated = 0
    users = User.query.filter(User.personal_discount_percent > 0).all()
    for user in users:
        if store.get_active_personal_discount_percent(user.id) > 0:
            logger.info(
                "[PRICING] User %s has an active personal discount, legacy %s%% dropped",
                user.id, user.personal_discount_percent,
            )
            user.personal_discount_percent = 0
            continue
        db.session.add(UserPersonalDiscount(
            user_id=user.id,
            discount_percent=user.personal_discount_percent,
            source_type='legacy',
            source_id=str(user.id),
        ))
        user.personal_discount_percent = 0
        migrated += 1
    db.session.commit()
    logger.info("[PRICING] Migrated %s of %s legacy personal discounts", migrated, len(users))
    return migrated


__all__ = [
    'DatabasePricingStore',
    'create_pricing_service',
    'get_tariff_durations',
    'consume_purchase_discount',
    'migrate_legacy_personal_discounts',
]
