"""
Модель платежа
"""
from modules.core import get_db
from modules.currency import utcnow

db = get_db()

PAYMENT_PENDING = 'PENDING'
PAYMENT_PAID = 'PAID'
PAYMENT_FAILED = 'FAILED'


class Payment(db.Model):
    """Платёж за тариф"""
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(100), unique=True, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    tariff_id = db.Column(db.Integer, db.ForeignKey('tariff.id'), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=PAYMENT_PENDING)
    amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(5), nullable=False, default='USD')
    payment_provider = db.Column(db.String(50), nullable=True)
    promo_code_id = db.Column(db.Integer, db.ForeignKey('promo_code.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f'<Payment {self.id}: {self.amount} {self.currency} {self.status}>'
