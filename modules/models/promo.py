"""
Модель промокода и его активаций
"""
import json
from modules.core import get_db
from modules.currency import utcnow

db = get_db()

# Типы промокодов
PROMO_PERCENT = 'PERCENT'    # процент от суммы
PROMO_FIXED = 'FIXED'        # фиксированная сумма
PROMO_DAYS = 'DAYS'          # бесплатные дни, активируется отдельно

# Кому доступен промокод
AVAILABILITY_ALL = 'all'
AVAILABILITY_NEW = 'new'            # ещё ничего не покупали
AVAILABILITY_EXISTING = 'existing'  # есть хотя бы одна оплата
AVAILABILITY_INVITED = 'invited'    # пришли по реферальной ссылке
AVAILABILITY_ALLOWED = 'allowed'    # явный список пользователей


class PromoCode(db.Model):
    """Промокод"""
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    promo_type = db.Column(db.String(20), nullable=False, default=PROMO_PERCENT)
    value = db.Column(db.Float, nullable=False)

    availability = db.Column(db.String(20), nullable=False, default=AVAILABILITY_ALL)
    allowed_user_ids = db.Column(db.Text, nullable=True)  # JSON массив id пользователей

    max_uses = db.Column(db.Integer, nullable=False, default=1)  # -1 = без ограничений
    used_count = db.Column(db.Integer, nullable=False, default=0)
    max_uses_per_user = db.Column(db.Integer, nullable=False, default=1)

    starts_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    activations = db.relationship('PromoCodeActivation', backref='promo_code', lazy='dynamic')

    def get_allowed_user_ids(self):
        """Список id пользователей из JSON"""
        if not self.allowed_user_ids:
            return []
        try:
            return [int(x) for x in json.loads(self.allowed_user_ids)]
        except (ValueError, TypeError):
            return []

    def set_allowed_user_ids(self, user_ids):
        self.allowed_user_ids = json.dumps([int(x) for x in user_ids]) if user_ids else None

    def uses_left(self):
        """Оставшееся количество использований, None = без ограничений"""
        if self.max_uses < 0:
            return None
        return max(0, self.max_uses - (self.used_count or 0))

    def describe(self):
        if self.promo_type == PROMO_PERCENT:
            return f"{self.value:g}% discount"
        if self.promo_type == PROMO_FIXED:
            return f"{self.value:g} fixed discount"
        if self.promo_type == PROMO_DAYS:
            return f"{self.value:g} free days"
        return "Unknown reward"


class PromoCodeActivation(db.Model):
    """Факт использования промокода пользователем"""

    __tablename__ = 'promo_code_activation'

    id = db.Column(db.Integer, primary_key=True)
    promo_code_id = db.Column(db.Integer, db.ForeignKey('promo_code.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey('payment.id'), nullable=True)
    purchase_amount = db.Column(db.Float, nullable=True)
    discount_applied = db.Column(db.Float, nullable=True)
    activated_at = db.Column(db.DateTime, default=utcnow)
