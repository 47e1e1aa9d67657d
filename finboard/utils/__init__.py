from .dates import (
    clamp_day,
    days_in_month,
    get_month_key,
    get_month_start,
    get_month_start_from_key,
    is_month_key,
    shift_month,
    start_of_day,
)
from .money import money_float, round_money, round_quantity, to_decimal

__all__ = [
    "clamp_day",
    "days_in_month",
    "get_month_key",
    "get_month_start",
    "get_month_start_from_key",
    "is_month_key",
    "shift_month",
    "start_of_day",
    "money_float",
    "round_money",
    "round_quantity",
    "to_decimal",
]
