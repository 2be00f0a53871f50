"""
Модель пользователя
"""
from modules.core import get_db
from modules.currency import utcnow

db = get_db()


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=True)
    role = db.Column(db.String(20), nullable=False, default='CLIENT')
    referrer_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    telegram_id = db.Column(db.String(50), unique=True, nullable=True)
    telegram_username = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    # Старое поле персональной скидки (до таблицы user_personal_discounts).
    # Переносится командой `flask migrate-legacy-discounts`
    personal_discount_percent = db.Column(db.Float, nullable=True, default=0)

    # Разовая скидка на первую покупку
    purchase_discount_percent = db.Column(db.Float, nullable=True, default=0)
    purchase_discount_expires_at = db.Column(db.DateTime, nullable=True)

    # Связь с реферером
    referrer = db.relationship('User', remote_side=[id], backref='referrals')
