"""
API модули StealthNET

Структура:
- client/    - Клиентские эндпоинты (расчёт цены, промокоды)
- public/    - Публичные эндпоинты (периоды оплаты тарифов)
"""

def register_all_routes():
    """Регистрирует все маршруты API"""
    # Импортируем все модули маршрутов
    from modules.api.client import routes as client_routes
    from modules.api.public import routes as public_routes
