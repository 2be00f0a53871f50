"""
Денежная арифметика и работа с датами для расчёта цен

Все суммы считаются в Decimal и округляются до копеек (центов).
Даты в базе хранятся как naive UTC.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation


MINOR_UNIT = Decimal('0.01')
ZERO = Decimal('0')
HUNDRED = Decimal('100')


def to_money(value):
    """Привести число (float/int/str/Decimal/None) к Decimal"""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        try:
            # через str, чтобы 0.1 не превратился в 0.1000000000000000055...
            value = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return ZERO
    # NaN и бесконечность деньгами не считаются
    return value if value.is_finite() else ZERO


def quantize_money(amount):
    """Округлить до минимальной денежной единицы"""
    return to_money(amount).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def clamp_percent(percent):
    """Процент в диапазоне [0, 100]"""
    percent = to_money(percent)
    if percent < ZERO:
        return ZERO
    if percent > HUNDRED:
        return HUNDRED
    return percent


def percent_of(amount, percent):
    """percent % от amount, округлённые до копеек"""
    return quantize_money(to_money(amount) * clamp_percent(percent) / HUNDRED)


def money_to_float(amount):
    return float(quantize_money(amount))


def utcnow():
    """Текущее время в naive UTC (как хранится в базе)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value):
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


__all__ = [
    'MINOR_UNIT',
    'ZERO',
    'HUNDRED',
    'to_money',
    'quantize_money',
    'clamp_percent',
    'percent_of',
    'money_to_float',
    'utcnow',
    'to_naive_utc',
]
