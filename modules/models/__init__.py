"""
SQLAlchemy модели для StealthNET

Все модели экспортируются отсюда для удобства импорта:
    from modules.models import User, Tariff, PromoCode, etc.
"""

from modules.models.user import User
from modules.models.tariff import Tariff, TariffDuration
from modules.models.personal_discount import UserPersonalDiscount
from modules.models.promo import PromoCode, PromoCodeActivation
from modules.models.payment import Payment

__all__ = [
    'User',
    'Tariff', 'TariffDuration',
    'UserPersonalDiscount',
    'PromoCode', 'PromoCodeActivation',
    'Payment',
]
