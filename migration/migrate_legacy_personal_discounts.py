#!/usr/bin/env python3
"""
Миграция: перенос старого поля user.personal_discount_percent
в таблицу user_personal_discounts (source_type='legacy').

После миграции поле обнуляется, и расчёт цены берёт персональную
скидку только из таблицы.

Использование:
    flask --app app migrate-legacy-discounts
    python3 migration/migrate_legacy_personal_discounts.py
"""
import logging
import os
import sys

# Добавляем корневую директорию проекта в путь
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logger = logging.getLogger(__name__)


def migrate(app_instance=None):
    """Перенести персональные скидки, вернуть количество пользователей"""
    if app_instance is None:
        from app import create_app
        app_instance = create_app()

    with app_instance.app_context():
        from modules.core import get_db
        from modules.discounts import migrate_legacy_personal_discounts

        db = get_db()
        try:
            migrated = migrate_legacy_personal_discounts()
        except Exception:
            db.session.rollback()
            logger.exception("Ошибка миграции персональных скидок")
            raise

        if migrated:
            logger.info("Перенесено персональных скидок: %s", migrated)
        else:
            logger.info("Старых персональных скидок не найдено")
        return migrated


if __name__ == '__main__':
    migrate()
