"""
Utility modules for the promotion engine.

This package contains reusable helpers and constants:
- helpers: date formatting and payload parsing
- constants: transition statuses and the default class progression
"""

from promotion_engine.utils.helpers import format_utc_iso, parse_iso_date
from promotion_engine.utils.constants import (
    STATUS_PROMOTED,
    STATUS_DROP_OUT,
    STATUS_GRADUATED,
)

__all__ = [
    'format_utc_iso',
    'parse_iso_date',
    'STATUS_PROMOTED',
    'STATUS_DROP_OUT',
    'STATUS_GRADUATED',
]
