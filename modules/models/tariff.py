"""
Модель тарифа и его периодов оплаты
"""
from modules.core import get_db

db = get_db()


class Tariff(db.Model):
    """Тариф подписки"""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)
    price_usd = db.Column(db.Float, nullable=False)
    tier = db.Column(db.String(20), nullable=True)  # 'basic', 'pro', 'elite'
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    durations = db.relationship(
        'TariffDuration',
        backref='tariff',
        order_by='TariffDuration.duration_days',
        cascade='all, delete-orphan',
    )


class TariffDuration(db.Model):
    """Период оплаты тарифа (30/90/180/365 дней) со своей ценой"""

    __tablename__ = 'tariff_duration'

    id = db.Column(db.Integer, primary_key=True)
    tariff_id = db.Column(db.Integer, db.ForeignKey('tariff.id'), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Float, default=0, nullable=False)  # Только для отображения
    price = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'tariff_id': self.tariff_id,
            'duration_days': self.duration_days,
            'discount_percent': self.discount_percent,
            'price': self.price,
        }
