from .dates import parse_day_month_year, parse_portal_date
from .money import format_amount, parse_amount

__all__ = ["parse_portal_date", "parse_day_month_year", "parse_amount", "format_amount"]
