"""
Публичные API эндпоинты

- GET /api/public/tariffs/<id>/durations - Периоды оплаты тарифа и их цены
"""

from flask import jsonify

from modules.core import get_app
from modules.discounts import get_tariff_durations

app = get_app()


@app.route('/api/public/tariffs/<int:tariff_id>/durations', methods=['GET'])
def public_tariff_durations(tariff_id):
    durations = get_tariff_durations(tariff_id)
    if durations is None:
        return jsonify({"message": "Тариф не найден"}), 404
    return jsonify({"tariff_id": tariff_id, "durations": durations}), 200
