import logging
import os

import click
from flask import Flask
from dotenv import load_dotenv

# --- ЗАГРУЗКА ПЕРЕМЕННЫХ ОКРУЖЕНИЯ ---
load_dotenv()

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=os.getenv("LOG_LEVEL", "INFO").upper()
)
logger = logging.getLogger(__name__)


def create_app(config=None):
    """
    Создать приложение. Маршруты регистрируются на первом созданном
    экземпляре, поэтому в процессе вызывается один раз.
    """
    flask_app = Flask(__name__)

    from modules.core import init_app, get_db
    init_app(flask_app, config)

    # Модели и маршруты импортируются только после init_app
    import modules.models  # noqa: F401
    from modules.api import register_all_routes
    register_all_routes()
    register_commands(flask_app)

    with flask_app.app_context():
        get_db().create_all()

    return flask_app


def register_commands(flask_app):

    @flask_app.cli.command("quote-price")
    @click.argument("user_id", type=int)
    @click.argument("tariff_id", type=int)
    @click.option("--duration", "duration_id", type=int, default=None, help="ID периода оплаты")
    @click.option("--quantity", type=int, default=1, show_default=True)
    @click.option("--promo", "promo_code", default=None)
    def quote_price(user_id, tariff_id, duration_id, quantity, promo_code):
        """Показать разбивку цены для пользователя"""
        from modules.discounts import create_pricing_service
        from modules.pricing import PricingError

        try:
            quote = create_pricing_service().calculate_price(
                user_id, tariff_id, duration_id=duration_id, quantity=quantity, promo_code=promo_code,
            )
        except PricingError as e:
            raise click.ClickException(str(e))

        click.echo(f"Base price:  {quote.base_price} {quote.currency}")
        for discount in quote.applied_discounts:
            click.echo(f"  - {discount.description}: -{discount.amount}")
        click.echo(f"Discount:    {quote.total_discount}")
        click.echo(f"Final price: {quote.final_price} {quote.currency}")

    @flask_app.cli.command("migrate-legacy-discounts")
    def migrate_legacy_discounts():
        """Перенести старые персональные скидки в user_personal_discounts"""
        from migration.migrate_legacy_personal_discounts import migrate
        migrate(flask_app)


if __name__ == '__main__':
    create_app().run(port=5000, debug=False)
