"""
Модель персональной скидки пользователя
"""
from modules.core import get_db
from modules.currency import utcnow

db = get_db()


class UserPersonalDiscount(db.Model):
    """Персональная скидка (процент), привязанная к пользователю"""

    __tablename__ = 'user_personal_discounts'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    discount_percent = db.Column(db.Float, nullable=False)

    # manual | promocode | referral | loyalty | legacy
    source_type = db.Column(db.String(20), nullable=True, default='manual')
    source_id = db.Column(db.String(100), nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=True)
    max_uses = db.Column(db.Integer, default=-1, nullable=False)  # -1 = без ограничений
    used_count = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f'<UserPersonalDiscount {self.id}: user={self.user_id} {self.discount_percent}%>'
