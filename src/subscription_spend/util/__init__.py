from .dates import parse_date
from .money import round_money, round_percent, to_decimal

__all__ = ["parse_date", "to_decimal", "round_money", "round_percent"]
