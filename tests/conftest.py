"""
Общие фикстуры: одно приложение на весь прогон (in-memory SQLite, кэш
отключён, лимитер выключен), чистая база на каждый тест.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app import create_app

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'CACHE_TYPE': 'NullCache',
    'RATELIMIT_ENABLED': False,
    'JWT_SECRET_KEY': 'test-secret-key-for-pricing-tests',
    'PRICING_CURRENCY': 'USD',
}

flask_app = create_app(TEST_CONFIG)

from modules.core import get_db  # noqa: E402
from modules.models import (  # noqa: E402
    Payment,
    PromoCode,
    Tariff,
    TariffDuration,
    User,
    UserPersonalDiscount,
)

db = get_db()


def utc(days=0):
    """naive UTC со сдвигом в днях"""
    return datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(days=days)


@pytest.fixture
def app():
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make(**kwargs):
        counter['n'] += 1
        kwargs.setdefault('email', f"user{counter['n']}@example.com")
        user = User(**kwargs)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def make_tariff(app):
    def _make(price=10.0, durations=(), **kwargs):
        kwargs.setdefault('name', 'Basic')
        kwargs.setdefault('duration_days', 30)
        tariff = Tariff(price_usd=price, **kwargs)
        for days, duration_price in durations:
            tariff.durations.append(TariffDuration(duration_days=days, price=duration_price))
        db.session.add(tariff)
        db.session.commit()
        return tariff
    return _make


@pytest.fixture
def make_promo(app):
    def _make(code='SALE10', promo_type='PERCENT', value=10, **kwargs):
        kwargs.setdefault('max_uses', -1)
        promo = PromoCode(code=code, promo_type=promo_type, value=value, **kwargs)
        db.session.add(promo)
        db.session.commit()
        return promo
    return _make


@pytest.fixture
def make_personal_discount(app):
    def _make(user, percent, **kwargs):
        discount = UserPersonalDiscount(user_id=user.id, discount_percent=percent, **kwargs)
        db.session.add(discount)
        db.session.commit()
        return discount
    return _make


@pytest.fixture
def make_paid_payment(app):
    def _make(user, amount=10.0):
        payment = Payment(user_id=user.id, amount=amount, status='PAID')
        db.session.add(payment)
        db.session.commit()
        return payment
    return _make


@pytest.fixture
def auth_headers(app):
    from modules.auth import create_local_jwt

    def _headers(user):
        return {'Authorization': f'Bearer {create_local_jwt(user.id)}'}
    return _headers


class FakeStore:
    """Источник данных в памяти для тестов калькулятора без базы"""

    def __init__(self, prices=None, personal=0, legacy=0, purchase=None, durations=None):
        self.prices = {(1, None): 10} if prices is None else prices
        self.durations = durations or {}
        self.personal = personal
        self.legacy = legacy
        self.purchase = purchase
        self.calls = []

    def get_unit_price(self, tariff_id, duration_id=None):
        self.calls.append(('price', tariff_id, duration_id))
        return self.prices.get((tariff_id, duration_id))

    def get_active_personal_discount_percent(self, user_id):
        return self.personal

    def get_legacy_personal_discount_percent(self, user_id):
        return self.legacy

    def get_purchase_discount_fields(self, user_id):
        return self.purchase

    def get_duration_id(self, tariff_id, duration_days):
        return self.durations.get((tariff_id, duration_days))


def fake_promo_validator(codes):
    """
    codes: {'CODE': ('PERCENT' | 'FIXED' | 'DAYS', value)}; неизвестные коды невалидны.
    """
    def _validate(code, user_id, amount):
        if code not in codes:
            return SimpleNamespace(valid=False, error='Invalid promo code', discount=Decimal('0'), promo_type=None, promo=None)
        promo_type, value = codes[code]
        amount = Decimal(str(amount))
        if promo_type == 'PERCENT':
            discount = (amount * Decimal(str(value)) / 100).quantize(Decimal('0.01'))
        elif promo_type == 'FIXED':
            discount = Decimal(str(value))
        else:
            discount = Decimal('0')
        return SimpleNamespace(valid=True, error=None, discount=discount, promo_type=promo_type, promo=None)
    return _validate
