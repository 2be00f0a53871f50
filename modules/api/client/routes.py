"""
API эндпоинты клиента

- POST /api/client/calculate-price - Расчёт цены тарифа со скидками
- POST /api/client/bulk-renewal/calculate - Расчёт продления нескольких подписок
- POST /api/client/check-promocode - Проверка промокода
"""

import logging
import math

from flask import request, jsonify

from modules.core import get_app, get_limiter
from modules.auth import login_required
from modules.discounts import create_pricing_service
from modules.pricing import InvalidQuantityError, TariffPriceNotFoundError
from modules.promo import normalize_code, validate_promo_code

app = get_app()
limiter = get_limiter()
logger = logging.getLogger(__name__)


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _promo_from(data):
    code = data.get('promo_code') or data.get('promoCode') or data.get('code')
    if code is None or isinstance(code, (dict, list)):
        return None
    return normalize_code(str(code)) or None


def _optional_id(value):
    """Целое положительное число или None; ValueError для всего остального"""
    if value is None:
        return None
    if isinstance(value, bool) or isinstance(value, (dict, list)):
        raise ValueError(value)
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(value)
    value = int(value)
    if value < 1:
        raise ValueError(value)
    return value


# ============================================================================
# PRICING
# ============================================================================

@app.route('/api/client/calculate-price', methods=['POST'])
@limiter.limit("60 per minute")
@login_required
def calculate_price(current_user):
    """Расчёт цены тарифа с учётом всех скидок пользователя"""
    data = _json_body()
    try:
        tariff_id = _optional_id(data.get('tariff_id'))
        duration_id = _optional_id(data.get('duration_id'))
    except (TypeError, ValueError):
        return jsonify({"message": "Invalid tariff_id or duration_id"}), 400
    if not tariff_id:
        return jsonify({"message": "tariff_id is required"}), 400

    service = create_pricing_service()
    try:
        quote = service.calculate_price(
            user_id=current_user.id,
            tariff_id=tariff_id,
            duration_id=duration_id,
            quantity=data.get('quantity', 1),
            promo_code=_promo_from(data),
            is_renewal=bool(data.get('is_renewal', False)),
        )
    except InvalidQuantityError as e:
        return jsonify({"message": str(e)}), 400
    except TariffPriceNotFoundError:
        return jsonify({"message": "Тариф не найден"}), 404

    return jsonify(quote.to_dict()), 200


@app.route('/api/client/bulk-renewal/calculate', methods=['POST'])
@limiter.limit("30 per minute")
@login_required
def calculate_bulk_renewal(current_user):
    """Расчёт стоимости продления нескольких подписок на одинаковый срок"""
    data = _json_body()
    tariff_ids = data.get('tariff_ids') or []
    if not isinstance(tariff_ids, list) or not tariff_ids:
        return jsonify({"message": "tariff_ids is required"}), 400
    try:
        tariff_ids = [_optional_id(t) for t in tariff_ids]
        duration_days = _optional_id(data.get('duration_days'))
    except (TypeError, ValueError):
        return jsonify({"message": "Invalid tariff_ids or duration_days"}), 400
    if None in tariff_ids:
        return jsonify({"message": "Invalid tariff_ids or duration_days"}), 400

    service = create_pricing_service()
    try:
        quote = service.calculate_bulk_renewal_price(
            user_id=current_user.id,
            tariff_ids=tariff_ids,
            duration_days=duration_days,
            promo_code=_promo_from(data),
        )
    except InvalidQuantityError as e:
        return jsonify({"message": str(e)}), 400
    except TariffPriceNotFoundError as e:
        return jsonify({"message": f"Тариф {e.tariff_id} не найден"}), 404

    return jsonify(quote.to_dict()), 200


# ============================================================================
# PROMOCODES
# ============================================================================

@app.route('/api/client/check-promocode', methods=['POST'])
@limiter.limit("20 per minute")
@login_required
def check_promocode(current_user):
    """Проверка промокода без его погашения"""
    data = _json_body()
    promo_code = _promo_from(data)
    if not promo_code:
        return jsonify({"message": "Promo code is required"}), 400

    amount = data.get('amount')
    try:
        amount = float(amount) if amount is not None else None
    except (TypeError, ValueError):
        return jsonify({"message": "Invalid amount"}), 400
    if amount is not None and (not math.isfinite(amount) or amount < 0):
        return jsonify({"message": "Invalid amount"}), 400

    result = validate_promo_code(promo_code, current_user.id, amount=amount)
    logger.info("[PROMO] Check %s for user %s: %s", promo_code, current_user.id, "ok" if result.valid else result.error)
    if not result.valid:
        return jsonify(result.to_dict()), 400

    return jsonify(result.to_dict()), 200
